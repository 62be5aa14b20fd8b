"""Object store client configuration.

Each connection record opens its own S3-compatible client (AWS, R2,
MinIO, ...). These settings hold the client defaults shared by all of
them: per-call timeouts and retry budget applied through botocore.
"""

from typing import Any, Final

from server.settings.components import config

# Seconds to wait for a TCP connection to the store endpoint
OBJECT_STORE_CONNECT_TIMEOUT = config(
    'OBJECT_STORE_CONNECT_TIMEOUT',
    cast=float,
    default=10,
)

# Seconds to wait for a response on an established connection
OBJECT_STORE_READ_TIMEOUT = config(
    'OBJECT_STORE_READ_TIMEOUT',
    cast=float,
    default=60,
)

# Total attempts per store call, including the first one
OBJECT_STORE_MAX_ATTEMPTS = config(
    'OBJECT_STORE_MAX_ATTEMPTS',
    cast=int,
    default=3,
)

# Static files stay on the local filesystem; user objects never go
# through Django's default storage.
STORAGES: Final[dict[str, dict[str, Any]]] = {
    'default': {
        'BACKEND': 'django.core.files.storage.FileSystemStorage',
    },
    'staticfiles': {
        'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage',
    },
}
