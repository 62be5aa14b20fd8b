"""Infrastructure layer for objects app.

This package contains integrations with external systems:
- S3-compatible storage backend implementing the ObjectStore protocol
- Key and prefix conventions (trash prefix, parent prefixes)
- Preference persistence for favourites and trash toggles
"""
