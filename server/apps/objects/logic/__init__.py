"""Business logic layer for objects app.

This package contains the relocation logic for a key-addressed store:
- Move, copy, duplicate, rename with copy-then-delete-then-verify
- Trash (soft delete), restore and empty trash
- Name collision resolution for copies and uploads
- Destination folder tree and transfer jobs

Store access goes through the ObjectStore protocol only; concrete
adapters live in the infrastructure package.
"""
