"""Relocation engine and transfer settings."""

from server.settings.components import config

# Reserved prefix holding soft-deleted objects in every container
TRASH_PREFIX = config('TRASH_PREFIX', default='.trash/')

# Worker threads running transfer batches in the background
TRANSFER_MAX_WORKERS = config('TRANSFER_MAX_WORKERS', cast=int, default=4)

# Minimum seconds between two progress callbacks for the same job
TRANSFER_PROGRESS_INTERVAL = config(
    'TRANSFER_PROGRESS_INTERVAL',
    cast=float,
    default=0.5,
)
