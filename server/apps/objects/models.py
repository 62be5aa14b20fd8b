"""Database models for objects app."""

from typing import ClassVar, Final, final, override

from django.db import models

# Constants for field max lengths
_NAME_MAX_LENGTH: Final = 100
_PROVIDER_MAX_LENGTH: Final = 20
_REGION_MAX_LENGTH: Final = 64
_BUCKET_MAX_LENGTH: Final = 63  # S3 bucket naming limit
_CREDENTIAL_MAX_LENGTH: Final = 255
_PREFERENCE_KEY_MAX_LENGTH: Final = 200


class Provider(models.TextChoices):
    """S3-compatible providers a connection can point at."""

    AWS = 'aws', 'Amazon S3'
    CLOUDFLARE = 'cloudflare', 'Cloudflare R2'
    MINIO = 'minio', 'MinIO'
    DIGITALOCEAN = 'digitalocean', 'DigitalOcean Spaces'
    WASABI = 'wasabi', 'Wasabi'
    BACKBLAZE = 'backblaze', 'Backblaze B2'
    RAILWAY = 'railway', 'Railway'
    CUSTOM = 'custom', 'Custom'


class AccessMode(models.TextChoices):
    """Write permission detected for a connection."""

    READ_ONLY = 'read-only', 'Read-only'
    READ_WRITE = 'read-write', 'Read-write'


@final
class Connection(models.Model):
    """An account on an S3-compatible object store.

    A connection plus a bucket name identifies a container. Trash and
    activity logging are opt-in per connection.
    """

    name = models.CharField(max_length=_NAME_MAX_LENGTH)

    provider = models.CharField(
        max_length=_PROVIDER_MAX_LENGTH,
        choices=Provider.choices,
        default=Provider.AWS,
    )

    endpoint_url = models.CharField(
        max_length=_CREDENTIAL_MAX_LENGTH,
        blank=True,
        default='',
        help_text='Empty for AWS; e.g. https://<id>.r2.cloudflarestorage.com',
    )

    region = models.CharField(
        max_length=_REGION_MAX_LENGTH,
        default='us-east-1',
    )

    bucket_name = models.CharField(
        max_length=_BUCKET_MAX_LENGTH,
        help_text='Default bucket opened for this connection',
    )

    access_key_id = models.CharField(max_length=_CREDENTIAL_MAX_LENGTH)

    secret_access_key = models.CharField(max_length=_CREDENTIAL_MAX_LENGTH)

    access_mode = models.CharField(
        max_length=_PROVIDER_MAX_LENGTH,
        choices=AccessMode.choices,
        default=AccessMode.READ_WRITE,
    )

    enable_trash = models.BooleanField(
        default=False,
        help_text='Soft-delete objects under the trash prefix',
    )

    enable_activity_log = models.BooleanField(
        default=False,
        help_text='Record every mutating operation in the activity log',
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'Connection'  # type: ignore[mutable-override]
        verbose_name_plural = 'Connections'  # type: ignore[mutable-override]
        ordering: ClassVar[list[str]] = ['name']

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.name} ({self.provider}:{self.bucket_name})'

    @property
    def is_read_only(self) -> bool:
        """Whether the connection lacks write permission."""
        return self.access_mode == AccessMode.READ_ONLY

    def shares_endpoint_with(self, other: 'Connection') -> bool:
        """Check if server-side copies between two connections are possible.

        Args:
            other: Connection on the other side of a copy.

        Returns:
            True when both use the same endpoint and credentials.
        """
        return (
            self.endpoint_url == other.endpoint_url
            and self.access_key_id == other.access_key_id
        )


@final
class Preference(models.Model):
    """Persisted UI state, stored as JSON under a string key."""

    key = models.CharField(
        max_length=_PREFERENCE_KEY_MAX_LENGTH,
        unique=True,
    )

    value = models.JSONField(default=dict)

    modified_at = models.DateTimeField(auto_now=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'Preference'  # type: ignore[mutable-override]
        verbose_name_plural = 'Preferences'  # type: ignore[mutable-override]

    @override
    def __str__(self) -> str:
        """String representation."""
        return self.key
