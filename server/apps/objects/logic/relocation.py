"""Business logic for relocating objects inside and between containers.

The store offers no atomic rename, so every relocation is a copy followed
by a delete of the source. A failed delete is verified against a fresh
listing before it is reported: the source may be gone even though the
store returned an error.
"""

import logging
import threading
from collections.abc import Iterable, Sequence
from typing import Final, final

from django.core.exceptions import ValidationError

from server.apps.objects.exceptions import (
    EmptySelectionError,
    NoActiveContainerError,
    ObjectStoreError,
)
from server.apps.objects.infrastructure.paths import (
    get_trash_prefix,
    is_trashed,
    normalize_prefix,
    parent_prefix,
    restore_key,
    split_extension,
    to_trash_key,
    trash_metadata,
    validate_destination,
)
from server.apps.objects.logic.conflicts import (
    ConflictResolver,
    PolicyConflictPort,
)
from server.apps.objects.logic.types import (
    FOLDER_SUFFIX,
    ActivityAction,
    ActivityEvent,
    ActivityRecorder,
    ActivityStatus,
    BatchResult,
    ConflictAction,
    ConflictPort,
    Container,
    FailureReason,
    ObjectRef,
    ObjectStore,
    ProgressCallback,
    RelocationMode,
    RelocationOutcome,
    RelocationRequest,
    RelocationState,
    destination_key,
)

logger = logging.getLogger(__name__)

_COPY_SUFFIX: Final = '_copy'

# Counter used for the second duplicate of the same name
_FIRST_DUPLICATE_COUNTER: Final = 2

_MODE_ACTIONS: Final = {
    RelocationMode.COPY: ActivityAction.COPY,
    RelocationMode.MOVE: ActivityAction.MOVE,
}


def duplicate_name(item: ObjectRef, taken_names: Iterable[str]) -> str:
    """Pick the name for a duplicate of ``item``.

    Example: 'report.pdf' -> 'report_copy.pdf', then 'report_copy_2.pdf'.
    Folders have no extension: 'photos/' -> 'photos_copy/'.

    Args:
        item: Object being duplicated.
        taken_names: Names present in the item's prefix.

    Returns:
        First free duplicate name (without a folder slash).
    """
    taken = set(taken_names)
    if item.is_folder:
        base, extension = item.name, ''
    else:
        base, extension = split_extension(item.name)

    candidate = f'{base}{_COPY_SUFFIX}{extension}'
    counter = _FIRST_DUPLICATE_COUNTER
    while candidate in taken:
        candidate = f'{base}{_COPY_SUFFIX}_{counter}{extension}'
        counter += 1
    return candidate


def validate_new_name(new_name: str) -> None:
    """Validate a name typed by the user for rename.

    Args:
        new_name: Proposed name (single path segment).

    Raises:
        ValidationError: If the name is empty or contains a slash.
    """
    if not new_name.strip():
        raise ValidationError('Name cannot be empty')
    if FOLDER_SUFFIX in new_name:
        raise ValidationError('Name cannot contain "/"')


@final
class RelocationEngine:
    """Runs move, copy, delete, restore, rename and folder batches.

    Items of a batch run one after another; each item finishes its
    copy, delete and verification before the next one starts. Failures
    are recorded per item and never abort the batch.
    """

    def __init__(  # noqa: WPS211
        self,
        store: ObjectStore,
        container: Container | None,
        activity: ActivityRecorder | None = None,
        trash_enabled: bool = False,
        cancel_event: threading.Event | None = None,
        conflict_port: ConflictPort | None = None,
    ) -> None:
        """Initialize the engine for one active container.

        Args:
            store: Object store the engine calls.
            container: Active container; None when nothing is open.
            activity: Receives one event per mutating attempt.
            trash_enabled: Whether delete moves items to trash.
            cancel_event: Checked between items; set to stop a batch.
            conflict_port: Asked about destination name collisions.
                Without a port colliding names are overwritten.
        """
        self._store = store
        self._container = container
        self._activity = activity
        self._trash_enabled = trash_enabled
        self._cancel_event = cancel_event or threading.Event()
        self._conflict_port = conflict_port

    @property
    def container(self) -> Container | None:
        """Container the batch operations act on."""
        return self._container

    def move(
        self,
        items: Sequence[ObjectRef],
        dest_prefix: str,
        dest_container: Container | None = None,
    ) -> BatchResult:
        """Move items under a destination prefix.

        Args:
            items: Selected objects.
            dest_prefix: Destination prefix ('' for the root).
            dest_container: Target container, defaults to the active one.

        Returns:
            Aggregate result of the batch.
        """
        return self._relocate_batch(
            items,
            dest_prefix,
            dest_container,
            RelocationMode.MOVE,
        )

    def copy(
        self,
        items: Sequence[ObjectRef],
        dest_prefix: str,
        dest_container: Container | None = None,
    ) -> BatchResult:
        """Copy items under a destination prefix.

        Args:
            items: Selected objects.
            dest_prefix: Destination prefix ('' for the root).
            dest_container: Target container, defaults to the active one.

        Returns:
            Aggregate result of the batch.
        """
        return self._relocate_batch(
            items,
            dest_prefix,
            dest_container,
            RelocationMode.COPY,
        )

    def duplicate(self, items: Sequence[ObjectRef]) -> BatchResult:
        """Copy items next to themselves under a ``_copy`` name.

        The item's prefix is listed before each copy, so a batch never
        reuses a name produced earlier in the same batch.

        Args:
            items: Selected objects.

        Returns:
            Aggregate result of the batch.
        """
        container = self._require(items)
        result = BatchResult()
        for index, item in enumerate(items):
            if self._cancelled(items, index, result):
                break

            prefix = parent_prefix(item.key)
            try:
                listing = self._store.list_objects(container, prefix)
            except ObjectStoreError as error:
                outcome = RelocationOutcome(
                    name=item.name,
                    source_key=item.key,
                    dest_key='',
                )
                self._fail(outcome, FailureReason.COPY_FAILURE, str(error))
            else:
                name = duplicate_name(item, (ref.name for ref in listing))
                outcome = self._relocate_one(
                    item,
                    container,
                    container,
                    destination_key(item, prefix, name),
                    RelocationMode.COPY,
                )
            self._emit(ActivityAction.DUPLICATE, item, outcome)
            result.record(outcome)

        self._log_batch('Duplicate', result)
        return result

    def delete(
        self,
        items: Sequence[ObjectRef],
        trash_enabled: bool | None = None,
    ) -> BatchResult:
        """Delete items, to trash when enabled.

        Items already in trash are always deleted permanently.

        Args:
            items: Selected objects.
            trash_enabled: Overrides the engine's trash setting.

        Returns:
            Aggregate result of the batch.
        """
        container = self._require(items)
        use_trash = self._trash_enabled if trash_enabled is None else trash_enabled
        result = BatchResult()
        for index, item in enumerate(items):
            if self._cancelled(items, index, result):
                break

            if use_trash and not is_trashed(item.key):
                outcome = self._relocate_one(
                    item,
                    container,
                    container,
                    to_trash_key(item.key),
                    RelocationMode.MOVE,
                    metadata=None if item.is_folder else trash_metadata(item.key),
                )
                self._emit(ActivityAction.DELETE, item, outcome)
            else:
                outcome = self._delete_one(item, container)
                self._emit(ActivityAction.PERMANENT_DELETE, item, outcome)
            result.record(outcome)

        self._log_batch('Delete', result)
        return result

    def restore(self, items: Sequence[ObjectRef]) -> BatchResult:
        """Move trashed items back to their original keys.

        A trashed file goes back to the original path recorded in its
        metadata; folders, and files without usable metadata, go back
        to their key with the trash prefix stripped.

        Args:
            items: Objects under the trash prefix.

        Returns:
            Aggregate result of the batch.
        """
        container = self._require(items)
        result = BatchResult()
        for index, item in enumerate(items):
            if self._cancelled(items, index, result):
                break

            try:
                original_key = restore_key(
                    item.key,
                    self._trash_metadata(item, container),
                )
            except ValidationError as error:
                outcome = RelocationOutcome(
                    name=item.name,
                    source_key=item.key,
                    dest_key='',
                )
                self._fail(outcome, FailureReason.VALIDATION_ERROR, error.messages[0])
            else:
                outcome = self._relocate_one(
                    item,
                    container,
                    container,
                    original_key,
                    RelocationMode.MOVE,
                )
            self._emit(ActivityAction.RESTORE, item, outcome)
            result.record(outcome)

        self._log_batch('Restore', result)
        return result

    def empty_trash(self) -> BatchResult:
        """Permanently delete everything under the trash prefix.

        Returns:
            Result with the trash prefix as its only item.

        Raises:
            NoActiveContainerError: If no container is open.
        """
        if self._container is None:
            raise NoActiveContainerError('No container is open')

        trash = ObjectRef.from_key(get_trash_prefix())
        outcome = self._delete_one(trash, self._container)
        self._emit(ActivityAction.EMPTY_TRASH, trash, outcome)

        result = BatchResult()
        result.record(outcome)
        self._log_batch('Empty trash', result)
        return result

    def rename(self, item: ObjectRef, new_name: str) -> BatchResult:
        """Rename an object within its prefix.

        A taken name is resolved through the conflict port; a folder is
        renamed by relocating its whole subtree.

        Args:
            item: Object to rename.
            new_name: New last path segment.

        Returns:
            Result with one succeeded, failed or skipped item.
        """
        container = self._require([item])
        result = BatchResult()
        prefix = parent_prefix(item.key)
        outcome = RelocationOutcome(name=item.name, source_key=item.key, dest_key='')

        try:
            validate_new_name(new_name)
            validate_destination(item, destination_key(item, prefix, new_name))
        except ValidationError as error:
            self._fail(outcome, FailureReason.VALIDATION_ERROR, error.messages[0])
            self._emit(ActivityAction.RENAME, item, outcome)
            result.record(outcome)
            return result

        try:
            listing = self._store.list_objects(container, prefix)
        except ObjectStoreError as error:
            self._fail(outcome, FailureReason.COPY_FAILURE, str(error))
            self._emit(ActivityAction.RENAME, item, outcome)
            result.record(outcome)
            return result

        taken = {ref.name for ref in listing if ref.key != item.key}
        resolution = ConflictResolver(taken, self._port()).resolve(new_name)
        if resolution.final_name is None:
            result.skipped.append(item.name)
            return result

        outcome = self._relocate_one(
            item,
            container,
            container,
            destination_key(item, prefix, resolution.final_name),
            RelocationMode.MOVE,
        )
        self._emit(ActivityAction.RENAME, item, outcome)
        result.record(outcome)
        return result

    def create_folder(self, prefix: str, name: str) -> BatchResult:
        """Create an empty folder under a prefix.

        The folder is a zero-byte ``name/`` marker. A taken name is
        resolved through the conflict port.

        Args:
            prefix: Prefix the folder is created in ('' for the root).
            name: Folder name (single path segment).

        Returns:
            Result with one succeeded, failed or skipped item.

        Raises:
            NoActiveContainerError: If no container is open.
        """
        if self._container is None:
            raise NoActiveContainerError('No container is open')
        container = self._container
        parent = normalize_prefix(prefix)
        folder_name = name.strip()
        marker = ObjectRef.from_key(f'{parent}{folder_name}{FOLDER_SUFFIX}')
        outcome = RelocationOutcome(
            name=folder_name,
            source_key=marker.key,
            dest_key='',
        )
        result = BatchResult()

        try:
            validate_new_name(folder_name)
            if is_trashed(marker.key):
                raise ValidationError('Cannot create a folder in the trash')
        except ValidationError as error:
            self._fail(outcome, FailureReason.VALIDATION_ERROR, error.messages[0])
            self._emit(ActivityAction.CREATE_FOLDER, marker, outcome)
            result.record(outcome)
            return result

        try:
            listing = self._store.list_objects(container, parent)
        except ObjectStoreError as error:
            self._fail(outcome, FailureReason.UPLOAD_FAILURE, str(error))
            self._emit(ActivityAction.CREATE_FOLDER, marker, outcome)
            result.record(outcome)
            return result

        resolver = ConflictResolver((ref.name for ref in listing), self._port())
        resolution = resolver.resolve(folder_name)
        if resolution.final_name is None:
            result.skipped.append(folder_name)
            return result

        marker = ObjectRef.from_key(
            f'{parent}{resolution.final_name}{FOLDER_SUFFIX}',
        )
        outcome.source_key = marker.key
        try:
            self._store.create_folder(container, marker.key)
        except ObjectStoreError as error:
            self._fail(outcome, FailureReason.UPLOAD_FAILURE, str(error))
        else:
            self._advance(outcome, RelocationState.SUCCEEDED)
        self._emit(ActivityAction.CREATE_FOLDER, marker, outcome)
        result.record(outcome)
        return result

    def relocate(
        self,
        request: RelocationRequest,
        on_progress: ProgressCallback | None = None,
    ) -> RelocationOutcome:
        """Relocate a single object between any two containers.

        Args:
            request: What to relocate and where.
            on_progress: Called with byte increments during the copy.

        Returns:
            Terminal outcome of the attempt.
        """
        outcome = self._relocate_one(
            request.source_ref,
            request.source_container,
            request.dest_container,
            request.dest_key,
            request.mode,
            on_progress,
        )
        self._emit(_MODE_ACTIONS[request.mode], request.source_ref, outcome)
        return outcome

    def _relocate_batch(
        self,
        items: Sequence[ObjectRef],
        dest_prefix: str,
        dest_container: Container | None,
        mode: RelocationMode,
    ) -> BatchResult:
        source = self._require(items)
        dest_prefix = normalize_prefix(dest_prefix)
        target = dest_container or source
        result = BatchResult()
        logger.info(
            '%s %d items to %s/%s',
            mode.capitalize(),
            len(items),
            target,
            dest_prefix,
        )

        # Destination names, listed once on the first item that passes
        # validation; None until then
        resolver: ConflictResolver | None = None

        for index, item in enumerate(items):
            if self._cancelled(items, index, result):
                break

            outcome = RelocationOutcome(
                name=item.name,
                source_key=item.key,
                dest_key=destination_key(item, dest_prefix),
            )
            if self._validate(outcome, item, source, target):
                if self._conflict_port is not None and resolver is None:
                    try:
                        listing = self._store.list_objects(target, dest_prefix)
                    except ObjectStoreError as error:
                        self._fail(outcome, FailureReason.COPY_FAILURE, str(error))
                        self._emit(_MODE_ACTIONS[mode], item, outcome)
                        result.record(outcome)
                        continue
                    resolver = ConflictResolver(
                        (ref.name for ref in listing),
                        self._conflict_port,
                        is_batch=len(items) > 1,
                    )

                if resolver is not None:
                    resolution = resolver.resolve(item.name)
                    if resolution.final_name is None:
                        result.skipped.append(item.name)
                        continue
                    outcome.dest_key = destination_key(
                        item,
                        dest_prefix,
                        resolution.final_name,
                    )

                self._transfer(outcome, item, source, target, mode)

            self._emit(_MODE_ACTIONS[mode], item, outcome)
            result.record(outcome)

        self._log_batch(mode.capitalize(), result)
        return result

    def _relocate_one(  # noqa: WPS211
        self,
        item: ObjectRef,
        source: Container,
        target: Container,
        dest_key: str,
        mode: RelocationMode,
        on_progress: ProgressCallback | None = None,
        metadata: dict[str, str] | None = None,
    ) -> RelocationOutcome:
        outcome = RelocationOutcome(
            name=item.name,
            source_key=item.key,
            dest_key=dest_key,
        )
        if self._validate(outcome, item, source, target):
            self._transfer(
                outcome,
                item,
                source,
                target,
                mode,
                on_progress,
                metadata,
            )
        return outcome

    def _validate(
        self,
        outcome: RelocationOutcome,
        item: ObjectRef,
        source: Container,
        target: Container,
    ) -> bool:
        try:
            if source == target:
                validate_destination(item, outcome.dest_key)
            elif not outcome.dest_key.strip(FOLDER_SUFFIX):
                raise ValidationError('Destination key cannot be empty')
        except ValidationError as error:
            self._fail(outcome, FailureReason.VALIDATION_ERROR, error.messages[0])
            return False
        return True

    def _transfer(  # noqa: WPS211
        self,
        outcome: RelocationOutcome,
        item: ObjectRef,
        source: Container,
        target: Container,
        mode: RelocationMode,
        on_progress: ProgressCallback | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None:
        self._advance(outcome, RelocationState.COPYING)
        try:
            self._store.copy_object(
                source,
                item.key,
                target,
                outcome.dest_key,
                on_progress,
                metadata,
            )
        except ObjectStoreError as error:
            self._fail(outcome, FailureReason.COPY_FAILURE, str(error))
            return

        if mode == RelocationMode.COPY:
            self._advance(outcome, RelocationState.SUCCEEDED)
            return

        self._advance(outcome, RelocationState.DELETING)
        self._finish_delete(outcome, item, source)

    def _delete_one(self, item: ObjectRef, container: Container) -> RelocationOutcome:
        outcome = RelocationOutcome(
            name=item.name,
            source_key=item.key,
            dest_key='',
            state=RelocationState.DELETING,
        )
        return self._finish_delete(outcome, item, container)

    def _finish_delete(
        self,
        outcome: RelocationOutcome,
        item: ObjectRef,
        container: Container,
    ) -> RelocationOutcome:
        try:
            self._store.delete_object(container, item.key)
        except ObjectStoreError as error:
            self._advance(outcome, RelocationState.VERIFYING)
            return self._verify_deleted(outcome, item, container, str(error))

        self._advance(outcome, RelocationState.SUCCEEDED)
        return outcome

    def _verify_deleted(
        self,
        outcome: RelocationOutcome,
        item: ObjectRef,
        container: Container,
        delete_error: str,
    ) -> RelocationOutcome:
        """Decide whether a failed delete actually left the source behind."""
        prefix = parent_prefix(item.key)
        try:
            listing = self._store.list_objects(container, prefix)
        except ObjectStoreError as error:
            self._fail(
                outcome,
                FailureReason.VERIFICATION_FAILURE,
                f'{delete_error}; verification failed: {error}',
            )
            return outcome

        if any(ref.key == item.key for ref in listing):
            self._fail(outcome, FailureReason.DELETE_FAILURE_CONFIRMED, delete_error)
            return outcome

        logger.warning(
            'Delete of %s reported an error but the key is gone: %s',
            item.key,
            delete_error,
        )
        outcome.spurious_delete_error = True
        self._advance(outcome, RelocationState.SUCCEEDED)
        return outcome

    def _require(self, items: Sequence[ObjectRef]) -> Container:
        if self._container is None:
            raise NoActiveContainerError('No container is open')
        if not items:
            raise EmptySelectionError('No items selected')
        return self._container

    def _cancelled(
        self,
        items: Sequence[ObjectRef],
        index: int,
        result: BatchResult,
    ) -> bool:
        if not self._cancel_event.is_set():
            return False
        result.cancelled.extend(item.name for item in items[index:])
        logger.info('Batch cancelled, %d items not started', len(items) - index)
        return True

    def _trash_metadata(self, item: ObjectRef, container: Container) -> dict[str, str]:
        if item.is_folder or not is_trashed(item.key):
            return {}
        try:
            return self._store.get_metadata(container, item.key)
        except ObjectStoreError as error:
            logger.warning(
                'Metadata of %s unavailable, restoring by key: %s',
                item.key,
                error,
            )
            return {}

    def _port(self) -> ConflictPort:
        if self._conflict_port is not None:
            return self._conflict_port
        return PolicyConflictPort(ConflictAction.OVERWRITE)

    def _emit(
        self,
        action: ActivityAction,
        item: ObjectRef,
        outcome: RelocationOutcome,
    ) -> None:
        if self._activity is None:
            return
        event = ActivityEvent(
            action_type=action,
            path_before=item.key,
            path_after=outcome.dest_key,
            status=(
                ActivityStatus.SUCCESS if outcome.succeeded
                else ActivityStatus.FAILED
            ),
            error_message=outcome.message,
            size=None if item.is_folder else item.size,
        )
        try:
            self._activity(event)
        except Exception:
            # Activity recording never fails the operation
            logger.exception('Activity recorder failed for %s', item.key)

    @staticmethod
    def _advance(outcome: RelocationOutcome, state: RelocationState) -> None:
        logger.debug('%s: %s -> %s', outcome.source_key, outcome.state, state)
        outcome.state = state

    @classmethod
    def _fail(
        cls,
        outcome: RelocationOutcome,
        reason: FailureReason,
        message: str,
    ) -> None:
        cls._advance(outcome, RelocationState.FAILED)
        outcome.reason = reason
        outcome.message = message
        logger.warning('%s failed (%s): %s', outcome.source_key, reason, message)

    @staticmethod
    def _log_batch(label: str, result: BatchResult) -> None:
        logger.info(
            '%s finished: %d succeeded, %d failed, %d skipped, %d cancelled',
            label,
            len(result.succeeded),
            len(result.failed),
            len(result.skipped),
            len(result.cancelled),
        )
