"""Database models for activity app."""

import enum
from typing import ClassVar, Final, final, override

from django.db import models

from server.apps.objects.logic.types import ActivityAction, ActivityStatus

# Constants for field max lengths
_ACTION_MAX_LENGTH: Final = 32
_STATUS_MAX_LENGTH: Final = 16
_PROVIDER_MAX_LENGTH: Final = 20
_BUCKET_MAX_LENGTH: Final = 63
_ACTOR_MAX_LENGTH: Final = 150
_PATH_MAX_LENGTH: Final = 1024  # S3 key length limit
_SOURCE_MAX_LENGTH: Final = 32


def _choices(values: type[enum.StrEnum]) -> list[tuple[str, str]]:
    return [
        (member.value, member.value.replace('_', ' ').capitalize())
        for member in values
    ]


@final
class ActivityLogEntry(models.Model):
    """One mutating attempt against a container, successful or not."""

    timestamp = models.DateTimeField(auto_now_add=True, db_index=True)

    connection_id = models.BigIntegerField(db_index=True)

    provider = models.CharField(max_length=_PROVIDER_MAX_LENGTH)

    bucket_name = models.CharField(max_length=_BUCKET_MAX_LENGTH)

    actor = models.CharField(
        max_length=_ACTOR_MAX_LENGTH,
        default='user',
    )

    action_type = models.CharField(
        max_length=_ACTION_MAX_LENGTH,
        choices=_choices(ActivityAction),
        db_index=True,
    )

    object_path_before = models.CharField(
        max_length=_PATH_MAX_LENGTH,
        blank=True,
        default='',
    )

    object_path_after = models.CharField(
        max_length=_PATH_MAX_LENGTH,
        blank=True,
        default='',
    )

    status = models.CharField(
        max_length=_STATUS_MAX_LENGTH,
        choices=_choices(ActivityStatus),
        db_index=True,
    )

    error_message = models.TextField(blank=True, default='')

    file_size = models.BigIntegerField(null=True, blank=True)

    source = models.CharField(
        max_length=_SOURCE_MAX_LENGTH,
        default='user',
        help_text='What triggered the operation (user, transfer, command)',
    )

    class Meta:
        """Model metadata."""

        verbose_name = 'Activity Log Entry'  # type: ignore[mutable-override]
        verbose_name_plural = 'Activity Log'  # type: ignore[mutable-override]
        ordering: ClassVar[list[str]] = ['-timestamp', '-id']

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.action_type} {self.object_path_before} ({self.status})'
