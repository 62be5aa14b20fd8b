"""Business logic for batch uploads into a container prefix."""

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from server.apps.objects.exceptions import (
    EmptySelectionError,
    NoActiveContainerError,
    ObjectStoreError,
)
from server.apps.objects.infrastructure.paths import normalize_prefix
from server.apps.objects.logic.conflicts import (
    ConflictResolver,
    PolicyConflictPort,
)
from server.apps.objects.logic.types import (
    ActivityAction,
    ActivityEvent,
    ActivityRecorder,
    ActivityStatus,
    BatchResult,
    ConflictAction,
    ConflictPort,
    Container,
    FailureReason,
    ItemFailure,
    ObjectStore,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class UploadItem:
    """One file to upload.

    ``name`` is a file name or a relative path for folder uploads
    (e.g. 'photos/2024/a.jpg').
    """

    name: str
    content: Any


def upload_batch(  # noqa: WPS211
    store: ObjectStore,
    container: Container | None,
    items: Sequence[UploadItem],
    dest_prefix: str = '',
    conflict_port: ConflictPort | None = None,
    activity: ActivityRecorder | None = None,
    cancel_event: threading.Event | None = None,
) -> BatchResult:
    """Upload files under a prefix, resolving name collisions.

    The destination is listed once; names claimed by earlier items of
    the batch count as taken for later ones.

    Args:
        store: Object store to write to.
        container: Active container.
        items: Files to upload, in order.
        dest_prefix: Destination prefix ('' for the root).
        conflict_port: Asked about collisions; overwrite when None.
        activity: Receives one upload event per attempted file.
        cancel_event: Checked between files.

    Returns:
        Aggregate result of the batch.

    Raises:
        NoActiveContainerError: If no container is open.
        EmptySelectionError: If there is nothing to upload.
        ObjectStoreError: If the destination cannot be listed.
    """
    if container is None:
        raise NoActiveContainerError('No container is open')
    if not items:
        raise EmptySelectionError('No files selected')

    prefix = normalize_prefix(dest_prefix)
    listing = store.list_objects(container, prefix)
    resolver = ConflictResolver(
        (ref.name for ref in listing),
        conflict_port or PolicyConflictPort(ConflictAction.OVERWRITE),
        is_batch=len(items) > 1,
    )

    result = BatchResult()
    for index, item in enumerate(items):
        if cancel_event is not None and cancel_event.is_set():
            result.cancelled.extend(pending.name for pending in items[index:])
            logger.info('Upload cancelled, %d files not started', len(items) - index)
            break

        resolution = resolver.resolve(item.name)
        if resolution.final_name is None:
            result.skipped.append(item.name)
            continue

        key = prefix + resolution.final_name
        try:
            size = store.upload_object(container, key, item.content)
        except ObjectStoreError as error:
            logger.warning('Upload of %s failed: %s', key, error)
            result.failed.append(ItemFailure(
                name=item.name,
                reason=FailureReason.UPLOAD_FAILURE,
                message=str(error),
            ))
            _record(activity, ActivityEvent(
                action_type=ActivityAction.UPLOAD,
                path_before=key,
                status=ActivityStatus.FAILED,
                error_message=str(error),
            ))
            continue

        result.succeeded.append(item.name)
        _record(activity, ActivityEvent(
            action_type=ActivityAction.UPLOAD,
            path_before=key,
            status=ActivityStatus.SUCCESS,
            size=size,
        ))

    logger.info(
        'Upload to %s/%s finished: %d succeeded, %d failed, %d skipped',
        container,
        prefix,
        len(result.succeeded),
        len(result.failed),
        len(result.skipped),
    )
    return result


def _record(activity: ActivityRecorder | None, event: ActivityEvent) -> None:
    if activity is None:
        return
    try:
        activity(event)
    except Exception:
        logger.exception('Activity recorder failed for %s', event.path_before)
