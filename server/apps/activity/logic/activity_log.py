"""Business logic for the activity log.

Recording is fire-and-forget: a failure to write an entry is logged and
swallowed, never propagated into the operation being recorded.
"""

import csv
import io
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Final

from django.core.serializers.json import DjangoJSONEncoder
from django.db.models import Q, QuerySet

from server.apps.activity.models import ActivityLogEntry
from server.apps.objects.logic.types import ActivityEvent, ActivityRecorder
from server.apps.objects.models import Connection

logger = logging.getLogger(__name__)

_DEFAULT_LIMIT: Final = 100

_EXPORT_FIELDS: Final = (
    'id',
    'timestamp',
    'connection_id',
    'provider',
    'bucket_name',
    'actor',
    'action_type',
    'object_path_before',
    'object_path_after',
    'status',
    'error_message',
    'file_size',
    'source',
)


def should_log_activity(connection: Connection) -> bool:
    """Check if a connection records activity.

    Args:
        connection: Connection being operated on.

    Returns:
        True when the connection is saved and has logging enabled.
    """
    return connection.pk is not None and connection.enable_activity_log


def log_activity(  # noqa: WPS211
    connection: Connection,
    bucket: str,
    event: ActivityEvent,
    actor: str = 'user',
    source: str = 'user',
) -> ActivityLogEntry | None:
    """Record one activity event (best effort).

    Args:
        connection: Connection the operation ran against.
        bucket: Bucket the operation ran against.
        event: Event emitted by the operation.
        actor: Who performed the operation.
        source: What triggered it (user, transfer, command).

    Returns:
        Created entry, or None if logging is disabled or failed.
    """
    if not should_log_activity(connection):
        return None

    try:
        return ActivityLogEntry.objects.create(
            connection_id=connection.pk,
            provider=connection.provider,
            bucket_name=bucket,
            actor=actor,
            action_type=event.action_type,
            object_path_before=event.path_before,
            object_path_after=event.path_after,
            status=event.status,
            error_message=event.error_message,
            file_size=event.size,
            source=source,
        )
    except Exception:
        # Logging should never block or fail the operation
        logger.exception(
            'Failed to log activity: %s %s',
            event.action_type,
            event.path_before,
        )
        return None


def make_recorder(
    connection: Connection,
    bucket: str,
    actor: str = 'user',
    source: str = 'user',
) -> ActivityRecorder:
    """Bind a connection and bucket into an activity recorder.

    Args:
        connection: Connection the operations run against.
        bucket: Bucket the operations run against.
        actor: Who performs the operations.
        source: What triggers them.

    Returns:
        Callable accepting ActivityEvent instances.
    """
    def record(event: ActivityEvent) -> None:
        log_activity(connection, bucket, event, actor=actor, source=source)

    return record


@dataclass(frozen=True, slots=True)
class ActivityFilters:
    """Optional filters for querying and exporting the log."""

    connection_id: int | None = None
    bucket: str | None = None
    action_type: str | None = None
    status: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    search: str | None = None


def filter_log(filters: ActivityFilters | None = None) -> QuerySet[ActivityLogEntry]:
    """Build a queryset of entries matching the filters.

    Args:
        filters: Filters to apply; None returns everything.

    Returns:
        QuerySet of entries, newest first.
    """
    queryset = ActivityLogEntry.objects.all()
    if filters is None:
        return queryset

    if filters.connection_id is not None:
        queryset = queryset.filter(connection_id=filters.connection_id)
    if filters.bucket:
        queryset = queryset.filter(bucket_name=filters.bucket)
    if filters.action_type:
        queryset = queryset.filter(action_type=filters.action_type)
    if filters.status:
        queryset = queryset.filter(status=filters.status)
    if filters.start:
        queryset = queryset.filter(timestamp__gte=filters.start)
    if filters.end:
        queryset = queryset.filter(timestamp__lte=filters.end)
    if filters.search:
        queryset = queryset.filter(
            Q(object_path_before__icontains=filters.search)
            | Q(object_path_after__icontains=filters.search)
            | Q(error_message__icontains=filters.search),
        )
    return queryset


def query_log(
    filters: ActivityFilters | None = None,
    limit: int = _DEFAULT_LIMIT,
    offset: int = 0,
) -> list[ActivityLogEntry]:
    """Query a page of the activity log.

    Args:
        filters: Filters to apply.
        limit: Maximum entries to return.
        offset: Entries to skip.

    Returns:
        Entries, newest first.
    """
    return list(filter_log(filters)[offset:offset + limit])


def export_log(export_format: str, filters: ActivityFilters | None = None) -> str:
    """Export the activity log as CSV or JSON.

    Args:
        export_format: 'csv' or 'json'.
        filters: Filters to apply.

    Returns:
        Serialized log.

    Raises:
        ValueError: If the format is not supported.
    """
    rows = list(filter_log(filters).values(*_EXPORT_FIELDS))
    logger.info('Exporting %d activity entries as %s', len(rows), export_format)

    if export_format == 'json':
        return json.dumps(rows, cls=DjangoJSONEncoder, indent=2)

    if export_format == 'csv':
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=_EXPORT_FIELDS)
        writer.writeheader()
        writer.writerows(rows)
        return buffer.getvalue()

    raise ValueError(f'Unsupported export format: {export_format}')


def clear_log(
    connection_id: int | None = None,
    before: datetime | None = None,
) -> int:
    """Delete activity entries.

    Args:
        connection_id: Only clear entries of this connection.
        before: Only clear entries older than this moment.

    Returns:
        Number of entries deleted.
    """
    queryset = ActivityLogEntry.objects.all()
    if connection_id is not None:
        queryset = queryset.filter(connection_id=connection_id)
    if before is not None:
        queryset = queryset.filter(timestamp__lt=before)

    deleted, _ = queryset.delete()
    logger.info('Cleared %d activity entries', deleted)
    return deleted
