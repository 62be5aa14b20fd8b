"""Exceptions for objects app."""


class ObjectStoreError(Exception):
    """Raised when a call to the object store fails.

    Wraps provider and transport errors so the relocation logic handles
    one failure type regardless of the client library underneath.
    """

    def __init__(self, operation: str, key: str, reason: str) -> None:
        """Initialize ObjectStoreError.

        Args:
            operation: Store primitive that failed (list, copy, delete...).
            key: Object key or prefix the call was made for.
            reason: Provider error message.
        """
        self.operation = operation
        self.key = key
        self.reason = reason
        super().__init__(f'{operation} failed for {key!r}: {reason}')


class NoActiveContainerError(Exception):
    """Raised when a batch operation is started without a container."""


class EmptySelectionError(Exception):
    """Raised when a batch operation is started with no items."""


class InvalidJobTransitionError(Exception):
    """Raised when a transfer job is moved to a state it cannot enter."""

    def __init__(self, job_id: str, current: str, target: str) -> None:
        """Initialize InvalidJobTransitionError.

        Args:
            job_id: Identifier of the transfer job.
            current: Status the job is in.
            target: Status that was requested.
        """
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(
            f'Transfer job {job_id} cannot go from {current} to {target}',
        )


class TransferJobNotFoundError(LookupError):
    """Raised when a transfer job identifier is unknown to the tracker."""


class ReadOnlyConnectionError(Exception):
    """Raised when a mutating operation targets a read-only connection."""


class TransferTrackerClosedError(RuntimeError):
    """Raised when jobs are submitted to a tracker that was shut down."""
