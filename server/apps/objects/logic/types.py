"""Value types shared by the relocation logic.

Everything here is an ephemeral value rebuilt from a fresh store listing
on every operation. Nothing is persisted or cached between calls.
"""

import enum
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Final, Protocol

FOLDER_SUFFIX: Final = '/'


@dataclass(frozen=True, slots=True)
class Container:
    """An account-scoped bucket identity."""

    connection_id: int
    bucket: str

    def __str__(self) -> str:
        """String representation."""
        return f'{self.connection_id}:{self.bucket}'


@dataclass(frozen=True, slots=True)
class ObjectRef:
    """One entry of a container listing.

    Folder keys end with ``/``. Folders are a naming convention, not a
    separate storage entity.
    """

    key: str
    size: int = 0
    last_modified: datetime | None = None
    is_folder: bool = False

    @property
    def name(self) -> str:
        """Last path segment of the key, without the folder slash."""
        return self.key.rstrip(FOLDER_SUFFIX).rsplit(FOLDER_SUFFIX, 1)[-1]

    @classmethod
    def from_key(cls, key: str, size: int = 0) -> 'ObjectRef':
        """Build a reference, deriving the folder flag from the key.

        Args:
            key: Full object key.
            size: Object size in bytes.

        Returns:
            ObjectRef for the key.
        """
        return cls(key=key, size=size, is_folder=key.endswith(FOLDER_SUFFIX))


class RelocationMode(enum.StrEnum):
    """Whether a relocation keeps or removes the source."""

    COPY = 'copy'
    MOVE = 'move'


@dataclass(frozen=True, slots=True)
class RelocationRequest:
    """Relocate one object to a prefix, possibly in another container."""

    source_ref: ObjectRef
    source_container: Container
    dest_prefix: str
    dest_container: Container
    mode: RelocationMode = RelocationMode.COPY

    @property
    def dest_key(self) -> str:
        """Destination key computed from the prefix and source name."""
        return destination_key(self.source_ref, self.dest_prefix)


def destination_key(item: ObjectRef, dest_prefix: str, name: str | None = None) -> str:
    """Compute where ``item`` lands under ``dest_prefix``.

    Args:
        item: Object being relocated.
        dest_prefix: Destination prefix ('' for the container root).
        name: Replacement name, defaults to the item's own name.

    Returns:
        Destination key, with a trailing slash for folders.
    """
    target = dest_prefix + (name or item.name)
    if item.is_folder:
        return target + FOLDER_SUFFIX
    return target


class ConflictAction(enum.StrEnum):
    """What to do when a name is already taken at the destination."""

    OVERWRITE = 'overwrite'
    SKIP = 'skip'
    RENAME = 'rename'


@dataclass(frozen=True, slots=True)
class ConflictDecision:
    """A user or policy answer to a naming collision."""

    action: ConflictAction
    sticky_for_batch: bool = False


class ConflictPort(Protocol):
    """Asks the presentation layer how to resolve a naming collision."""

    def __call__(self, candidate_name: str, is_batch: bool) -> ConflictDecision:
        """Return the decision for ``candidate_name``."""


class FailureReason(enum.StrEnum):
    """Why a single item of a batch did not succeed."""

    VALIDATION_ERROR = 'validation_error'
    COPY_FAILURE = 'copy_failure'
    DELETE_FAILURE_CONFIRMED = 'delete_failure_confirmed'
    VERIFICATION_FAILURE = 'verification_failure'
    UPLOAD_FAILURE = 'upload_failure'


class RelocationState(enum.StrEnum):
    """Steps of a single relocation attempt."""

    VALIDATING = 'validating'
    COPYING = 'copying'
    DELETING = 'deleting'
    VERIFYING = 'verifying'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


@dataclass(frozen=True, slots=True)
class ItemFailure:
    """A failed item with the reason and the underlying message."""

    name: str
    reason: FailureReason
    message: str = ''


@dataclass(slots=True)
class RelocationOutcome:
    """Terminal result of one relocation attempt."""

    name: str
    source_key: str
    dest_key: str
    state: RelocationState = RelocationState.VALIDATING
    reason: FailureReason | None = None
    message: str = ''
    # Delete reported an error but the source turned out to be gone
    spurious_delete_error: bool = False

    @property
    def succeeded(self) -> bool:
        """Whether the attempt ended in the succeeded state."""
        return self.state == RelocationState.SUCCEEDED


class BatchOutcome(enum.StrEnum):
    """Overall shape of a batch result, for user-facing messages."""

    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    PARTIAL = 'partial'


@dataclass(slots=True)
class BatchResult:
    """Aggregate result of a batch call.

    Skipped items were excluded by a conflict decision and do not count
    as failures. Cancelled items were never started.
    """

    succeeded: list[str] = field(default_factory=list)
    failed: list[ItemFailure] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)

    def record(self, outcome: RelocationOutcome) -> None:
        """Add a terminal relocation outcome to the aggregate.

        Args:
            outcome: Outcome in a terminal state.
        """
        if outcome.succeeded:
            self.succeeded.append(outcome.name)
        else:
            self.failed.append(ItemFailure(
                name=outcome.name,
                reason=outcome.reason or FailureReason.COPY_FAILURE,
                message=outcome.message,
            ))

    @property
    def outcome(self) -> BatchOutcome:
        """Classify the batch as all-succeeded, all-failed or partial."""
        if not self.failed:
            return BatchOutcome.SUCCEEDED
        if not self.succeeded:
            return BatchOutcome.FAILED
        return BatchOutcome.PARTIAL

    def summary(self, verb: str, destination: str = '') -> str:
        """Render a one-line message for the user.

        Args:
            verb: Past-tense verb, e.g. 'Moved'.
            destination: Optional destination label, e.g. 'docs/'.

        Returns:
            Human-readable summary of the batch.
        """
        done = len(self.succeeded)
        target = f' to "{destination}"' if destination else ''
        if self.outcome == BatchOutcome.SUCCEEDED:
            return f'{verb} {_pluralize(done)}{target}'
        if self.outcome == BatchOutcome.FAILED:
            reasons = '; '.join(
                f'{failure.name}: {failure.message or failure.reason}'
                for failure in self.failed
            )
            return f'Failed: {reasons}'
        return (
            f'{verb} {_pluralize(done)}{target}, '
            f'but {len(self.failed)} failed'
        )


def _pluralize(count: int) -> str:
    suffix = '' if count == 1 else 's'
    return f'{count} item{suffix}'


class TransferStatus(enum.StrEnum):
    """Lifecycle of a transfer job."""

    PENDING = 'pending'
    ACTIVE = 'active'
    COMPLETED = 'completed'
    ERROR = 'error'


@dataclass(frozen=True, slots=True)
class TransferProgress:
    """Progress report emitted for a transfer job."""

    job_id: str
    bytes_transferred: int
    total_bytes: int
    speed: float
    status: TransferStatus
    error: str | None = None


def progress_percent(bytes_transferred: int, total_bytes: int) -> int:
    """Derive a 0-100 progress percentage.

    Args:
        bytes_transferred: Bytes done so far.
        total_bytes: Expected total; zero for empty objects and folders.

    Returns:
        Rounded percentage, 0 when the total is unknown.
    """
    if total_bytes <= 0:
        return 0
    return round(bytes_transferred / total_bytes * 100)


ProgressCallback = Callable[[int], None]


class ActivityAction(enum.StrEnum):
    """Mutating operations reported to the activity log."""

    UPLOAD = 'upload'
    DELETE = 'delete'
    MOVE = 'move'
    COPY = 'copy'
    DUPLICATE = 'duplicate'
    RESTORE = 'restore'
    RENAME = 'rename'
    PERMANENT_DELETE = 'permanent_delete'
    EMPTY_TRASH = 'empty_trash'
    CREATE_FOLDER = 'create_folder'


class ActivityStatus(enum.StrEnum):
    """Outcome reported with an activity event."""

    SUCCESS = 'success'
    FAILED = 'failed'


@dataclass(frozen=True, slots=True)
class ActivityEvent:
    """One mutating attempt, emitted whether it succeeded or not."""

    action_type: ActivityAction
    path_before: str
    status: ActivityStatus
    path_after: str = ''
    error_message: str = ''
    size: int | None = None


ActivityRecorder = Callable[[ActivityEvent], None]


class ObjectStore(Protocol):
    """Narrow contract the relocation logic needs from an object store.

    Every call is a blocking round trip and may raise ObjectStoreError.
    """

    def list_objects(
        self,
        container: Container,
        prefix: str,
        recursive: bool = False,
    ) -> list[ObjectRef]:
        """List objects under ``prefix``.

        Non-recursive listings report each direct subfolder once, as a
        folder ref; recursive listings return every key.
        """

    def copy_object(
        self,
        src_container: Container,
        src_key: str,
        dest_container: Container,
        dest_key: str,
        on_progress: ProgressCallback | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None:
        """Copy one object, or every object under a folder key.

        With ``metadata`` the copies carry exactly that user metadata;
        without it they keep the metadata of their source.
        """

    def delete_object(self, container: Container, key: str) -> None:
        """Delete one object, or everything under a folder key."""

    def upload_object(self, container: Container, key: str, content: object) -> int:
        """Write ``content`` to ``key`` and return the bytes written."""

    def create_folder(self, container: Container, key: str) -> None:
        """Write an empty folder marker at ``key`` (ending with ``/``)."""

    def get_metadata(self, container: Container, key: str) -> dict[str, str]:
        """Return the user metadata stored on ``key``."""
