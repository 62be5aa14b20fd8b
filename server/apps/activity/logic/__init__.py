"""Business logic layer for activity app.

Recording, querying, exporting and clearing the activity log.
"""
