"""Entry points for the presentation layer.

Each batch entry point opens the engine for a container session, runs
the batch and returns the aggregate result together with a fresh
listing of the prefix being shown.
"""

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field

from server.apps.activity.logic.activity_log import make_recorder
from server.apps.objects.exceptions import (
    EmptySelectionError,
    NoActiveContainerError,
    ReadOnlyConnectionError,
)
from server.apps.objects.infrastructure.paths import (
    get_trash_prefix,
    normalize_prefix,
    parent_prefix,
)
from server.apps.objects.infrastructure.preferences import (
    PreferenceStore,
    is_trash_enabled,
)
from server.apps.objects.infrastructure.storage import S3ObjectStore
from server.apps.objects.logic.folder_tree import (
    DestinationOption,
    build_folder_tree,
    legal_destinations,
)
from server.apps.objects.logic.relocation import RelocationEngine
from server.apps.objects.logic.transfers import (
    ProgressListener,
    TransferJobTracker,
)
from server.apps.objects.logic.types import (
    ActivityRecorder,
    BatchResult,
    ConflictPort,
    Container,
    ObjectRef,
    ObjectStore,
    RelocationMode,
    RelocationRequest,
)
from server.apps.objects.logic.uploads import UploadItem, upload_batch
from server.apps.objects.models import Connection

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ContainerSession:
    """An open container with the collaborators operations need."""

    connection: Connection
    container: Container
    store: ObjectStore
    activity: ActivityRecorder
    preferences: PreferenceStore | None = None

    def engine(
        self,
        conflict_port: ConflictPort | None = None,
        cancel_event: threading.Event | None = None,
    ) -> RelocationEngine:
        """Build an engine bound to this session's container.

        Args:
            conflict_port: Asked about destination name collisions.
            cancel_event: Checked between items.

        Returns:
            RelocationEngine for the container.
        """
        return RelocationEngine(
            self.store,
            self.container,
            activity=self.activity,
            trash_enabled=is_trash_enabled(self.connection, self.preferences),
            cancel_event=cancel_event,
            conflict_port=conflict_port,
        )


@dataclass(slots=True)
class OperationResult:
    """Batch result, user-facing message and refreshed listing."""

    result: BatchResult
    message: str
    listing: list[ObjectRef] = field(default_factory=list)


def open_session(  # noqa: WPS211
    connection: Connection,
    bucket: str | None = None,
    store: ObjectStore | None = None,
    preferences: PreferenceStore | None = None,
    actor: str = 'user',
    source: str = 'user',
) -> ContainerSession:
    """Open a container of a connection.

    Args:
        connection: Connection holding endpoint and credentials.
        bucket: Bucket to open, defaults to the connection's bucket.
        store: Store to use, defaults to an S3 store for the connection.
        preferences: Preference store with per-connection overrides.
        actor: Who performs the operations, for the activity log.
        source: What triggers them, for the activity log.

    Returns:
        ContainerSession for the bucket.

    Raises:
        NoActiveContainerError: If no bucket is given or configured.
    """
    bucket_name = bucket or connection.bucket_name
    if not bucket_name:
        raise NoActiveContainerError(f'No bucket selected for {connection.name}')

    return ContainerSession(
        connection=connection,
        container=Container(connection_id=connection.pk, bucket=bucket_name),
        store=store or S3ObjectStore([connection]),
        activity=make_recorder(connection, bucket_name, actor=actor, source=source),
        preferences=preferences,
    )


def list_container(session: ContainerSession, prefix: str = '') -> list[ObjectRef]:
    """List one level of a container.

    The trash prefix is hidden from the root listing.

    Args:
        session: Open container.
        prefix: Prefix to list ('' for the root).

    Returns:
        Folders first, then files.
    """
    normalized = normalize_prefix(prefix)
    listing = session.store.list_objects(session.container, normalized)
    if normalized:
        return listing
    trash_prefix = get_trash_prefix()
    return [ref for ref in listing if not ref.key.startswith(trash_prefix)]


def list_trash(session: ContainerSession) -> list[ObjectRef]:
    """List the top level of the trash."""
    return session.store.list_objects(session.container, get_trash_prefix())


def destination_options(
    session: ContainerSession,
    items: Sequence[ObjectRef],
) -> list[DestinationOption]:
    """Build the destination picker for a selection.

    Args:
        session: Open container.
        items: Selected objects.

    Returns:
        Flattened folder tree with legality flags.
    """
    listing = session.store.list_objects(session.container, '', recursive=True)
    return legal_destinations(build_folder_tree(listing), items)


def move_objects(
    session: ContainerSession,
    items: Sequence[ObjectRef],
    dest_prefix: str,
    conflict_port: ConflictPort | None = None,
) -> OperationResult:
    """Move a selection and refresh the prefix it came from.

    Args:
        session: Open container.
        items: Selected objects.
        dest_prefix: Destination prefix.
        conflict_port: Asked about destination name collisions.

    Returns:
        OperationResult with the source prefix listing.
    """
    _require_writable(session)
    prefix = normalize_prefix(dest_prefix)
    result = session.engine(conflict_port).move(items, prefix)
    return _finish(session, result, result.summary('Moved', prefix or '/'), items)


def copy_objects(
    session: ContainerSession,
    items: Sequence[ObjectRef],
    dest_prefix: str,
    conflict_port: ConflictPort | None = None,
) -> OperationResult:
    """Copy a selection and refresh the prefix it came from.

    Args:
        session: Open container.
        items: Selected objects.
        dest_prefix: Destination prefix.
        conflict_port: Asked about destination name collisions.

    Returns:
        OperationResult with the source prefix listing.
    """
    _require_writable(session)
    prefix = normalize_prefix(dest_prefix)
    result = session.engine(conflict_port).copy(items, prefix)
    return _finish(session, result, result.summary('Copied', prefix or '/'), items)


def duplicate_objects(
    session: ContainerSession,
    items: Sequence[ObjectRef],
) -> OperationResult:
    """Duplicate a selection next to itself."""
    _require_writable(session)
    result = session.engine().duplicate(items)
    return _finish(session, result, result.summary('Duplicated'), items)


def delete_objects(
    session: ContainerSession,
    items: Sequence[ObjectRef],
) -> OperationResult:
    """Delete a selection, to trash when the connection enables it."""
    _require_writable(session)
    result = session.engine().delete(items)
    return _finish(session, result, result.summary('Deleted'), items)


def restore_objects(
    session: ContainerSession,
    items: Sequence[ObjectRef],
) -> OperationResult:
    """Restore trashed items and refresh the trash listing."""
    _require_writable(session)
    result = session.engine().restore(items)
    return OperationResult(
        result=result,
        message=result.summary('Restored'),
        listing=list_trash(session),
    )


def empty_trash(session: ContainerSession) -> OperationResult:
    """Permanently delete the trash and refresh the root listing."""
    _require_writable(session)
    result = session.engine().empty_trash()
    message = 'Trash emptied' if not result.failed else result.summary('Emptied')
    return OperationResult(
        result=result,
        message=message,
        listing=list_container(session),
    )


def rename_object(
    session: ContainerSession,
    item: ObjectRef,
    new_name: str,
    conflict_port: ConflictPort | None = None,
) -> OperationResult:
    """Rename an object within its prefix.

    Args:
        session: Open container.
        item: Object to rename.
        new_name: New name.
        conflict_port: Asked when the new name is taken.

    Returns:
        OperationResult with the item's prefix listing.
    """
    _require_writable(session)
    result = session.engine(conflict_port).rename(item, new_name)
    if result.skipped:
        message = f'Rename of "{item.name}" skipped'
    else:
        message = result.summary('Renamed')
    return _finish(session, result, message, [item])


def create_folder(
    session: ContainerSession,
    prefix: str,
    name: str,
    conflict_port: ConflictPort | None = None,
) -> OperationResult:
    """Create an empty folder and refresh the prefix it was created in.

    Args:
        session: Open container.
        prefix: Prefix to create the folder in.
        name: Folder name.
        conflict_port: Asked when the name is taken.

    Returns:
        OperationResult with the prefix listing.
    """
    _require_writable(session)
    parent = normalize_prefix(prefix)
    result = session.engine(conflict_port).create_folder(parent, name)
    location = f'inside "{parent}"' if parent else f'in "{session.container.bucket}"'
    if result.skipped:
        message = f'Folder "{name.strip()}" skipped'
    elif result.failed:
        message = result.summary('Created')
    else:
        message = f'Created folder "{name.strip()}" {location}'
    logger.info('%s (%s)', message, session.container)
    return OperationResult(
        result=result,
        message=message,
        listing=list_container(session, parent),
    )


def upload_files(
    session: ContainerSession,
    files: Sequence[UploadItem],
    dest_prefix: str = '',
    conflict_port: ConflictPort | None = None,
) -> OperationResult:
    """Upload files under a prefix and refresh it.

    Args:
        session: Open container.
        files: Files to upload.
        dest_prefix: Destination prefix.
        conflict_port: Asked about name collisions.

    Returns:
        OperationResult with the destination prefix listing.
    """
    _require_writable(session)
    prefix = normalize_prefix(dest_prefix)
    result = upload_batch(
        session.store,
        session.container,
        files,
        prefix,
        conflict_port=conflict_port,
        activity=session.activity,
    )
    return OperationResult(
        result=result,
        message=result.summary('Uploaded', prefix),
        listing=list_container(session, prefix),
    )


def _require_writable(session: ContainerSession) -> None:
    if session.connection.is_read_only:
        raise ReadOnlyConnectionError(
            f'Connection {session.connection.name} is read-only',
        )


def _finish(
    session: ContainerSession,
    result: BatchResult,
    message: str,
    items: Sequence[ObjectRef],
) -> OperationResult:
    shown_prefix = parent_prefix(items[0].key) if items else ''
    logger.info('%s (%s)', message, session.container)
    return OperationResult(
        result=result,
        message=message,
        listing=list_container(session, shown_prefix),
    )


def create_transfer_tracker(
    connections: Sequence[Connection],
    listener: ProgressListener | None = None,
    activity: ActivityRecorder | None = None,
) -> TransferJobTracker:
    """Create a tracker able to move objects between the connections.

    Connection rows are captured up front; the worker threads never
    query the database.

    Args:
        connections: Connections whose containers jobs may address.
        listener: Called with progress reports of every job.
        activity: Receives one event per job attempt.

    Returns:
        TransferJobTracker with its own worker pool.
    """
    return TransferJobTracker(
        S3ObjectStore(connections),
        activity=activity,
        listener=listener,
    )


def transfer_objects(  # noqa: WPS211
    tracker: TransferJobTracker,
    source: ContainerSession,
    destination: ContainerSession,
    items: Sequence[ObjectRef],
    dest_prefix: str = '',
    mode: RelocationMode = RelocationMode.COPY,
) -> list[str]:
    """Submit a cross-container transfer as trackable jobs.

    Args:
        tracker: Tracker running the jobs.
        source: Container the items live in.
        destination: Container receiving them.
        items: Selected objects.
        dest_prefix: Destination prefix.
        mode: Copy keeps the sources, move deletes them.

    Returns:
        Identifiers of the submitted jobs.

    Raises:
        EmptySelectionError: If nothing is selected.
        ReadOnlyConnectionError: If a side that is written to is read-only.
    """
    if not items:
        raise EmptySelectionError('No items selected')
    _require_writable(destination)
    if mode == RelocationMode.MOVE:
        _require_writable(source)

    prefix = normalize_prefix(dest_prefix)
    return tracker.submit(
        RelocationRequest(
            source_ref=item,
            source_container=source.container,
            dest_prefix=prefix,
            dest_container=destination.container,
            mode=mode,
        )
        for item in items
    )
