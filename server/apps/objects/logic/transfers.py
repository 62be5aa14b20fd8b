"""Asynchronous transfer jobs between containers.

Each submitted group of requests becomes one run on a worker pool. A run
processes its jobs in order through the relocation engine and reports
throttled progress for the job in flight.
"""

import concurrent.futures
import dataclasses
import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Final, final

from django.conf import settings

from server.apps.objects.exceptions import (
    InvalidJobTransitionError,
    TransferJobNotFoundError,
    TransferTrackerClosedError,
)
from server.apps.objects.logic.relocation import RelocationEngine
from server.apps.objects.logic.types import (
    ActivityRecorder,
    ObjectStore,
    RelocationRequest,
    TransferProgress,
    TransferStatus,
    progress_percent,
)

logger = logging.getLogger(__name__)

_DEFAULT_MAX_WORKERS: Final = 4
_DEFAULT_PROGRESS_INTERVAL: Final = 0.5
_CANCELLED_MESSAGE: Final = 'Cancelled before start'
_CLOSED_MESSAGE: Final = 'Transfer tracker is shut down'

# Jobs that may be removed individually
_CLEARABLE: Final = frozenset({TransferStatus.COMPLETED, TransferStatus.ERROR})

# Pending jobs may fail without starting when their run is cancelled
_ALLOWED_TRANSITIONS: Final = {
    TransferStatus.PENDING: frozenset({TransferStatus.ACTIVE, TransferStatus.ERROR}),
    TransferStatus.ACTIVE: frozenset({TransferStatus.COMPLETED, TransferStatus.ERROR}),
    TransferStatus.ERROR: frozenset({TransferStatus.PENDING}),
    TransferStatus.COMPLETED: frozenset(),
}

ProgressListener = Callable[[TransferProgress], None]


def get_max_workers() -> int:
    """Get the size of the transfer worker pool.

    Returns:
        Number of runs that may execute at the same time.
    """
    return getattr(settings, 'TRANSFER_MAX_WORKERS', _DEFAULT_MAX_WORKERS)


def get_progress_interval() -> float:
    """Get the minimum delay between two progress reports of a job.

    Returns:
        Interval in seconds.
    """
    return getattr(settings, 'TRANSFER_PROGRESS_INTERVAL', _DEFAULT_PROGRESS_INTERVAL)


@dataclass(slots=True)
class TransferJob:
    """A relocation request tracked as a long-running job."""

    id: str  # noqa: WPS125
    request: RelocationRequest
    status: TransferStatus = TransferStatus.PENDING
    bytes_transferred: int = 0
    total_bytes: int = 0
    speed: float = 0.0
    error: str | None = None
    attempts: int = 1

    @property
    def progress_pct(self) -> int:
        """Completion percentage, derived from the byte counters."""
        return progress_percent(self.bytes_transferred, self.total_bytes)

    def to_progress(self) -> TransferProgress:
        """Build the progress report for this job.

        Returns:
            Immutable progress snapshot.
        """
        return TransferProgress(
            job_id=self.id,
            bytes_transferred=self.bytes_transferred,
            total_bytes=self.total_bytes,
            speed=self.speed,
            status=self.status,
            error=self.error,
        )


@final
class TransferJobTracker:
    """Registry and worker pool for transfer jobs.

    All job state lives behind one lock; callers only ever receive
    copies. Progress listeners are called outside the lock.
    """

    def __init__(
        self,
        store: ObjectStore,
        activity: ActivityRecorder | None = None,
        listener: ProgressListener | None = None,
        max_workers: int | None = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            store: Object store the jobs run against.
            activity: Receives one event per job attempt.
            listener: Called with progress reports of every job.
            max_workers: Pool size, defaults to TRANSFER_MAX_WORKERS.
        """
        self._engine = RelocationEngine(store, container=None, activity=activity)
        self._listener = listener
        self._interval = get_progress_interval()
        self._lock = threading.Lock()
        self._jobs: dict[str, TransferJob] = {}
        self._runs: dict[concurrent.futures.Future[None], threading.Event] = {}
        self._closed = False
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers or get_max_workers(),
            thread_name_prefix='transfer',
        )

    def submit(self, requests: Iterable[RelocationRequest]) -> list[str]:
        """Create jobs for the requests and start them as one run.

        Args:
            requests: Relocations to perform, in order.

        Returns:
            Identifiers of the created jobs.

        Raises:
            TransferTrackerClosedError: If the tracker was shut down.
        """
        with self._lock:
            self._ensure_open()
            job_ids = []
            for request in requests:
                job = TransferJob(
                    id=uuid.uuid4().hex,
                    request=request,
                    total_bytes=request.source_ref.size,
                )
                self._jobs[job.id] = job
                job_ids.append(job.id)

        if job_ids:
            logger.info('Submitting transfer run with %d jobs', len(job_ids))
            self._start_run(job_ids)
        return job_ids

    def retry(self, job_id: str) -> TransferJob:
        """Reset a failed job and run it again under the same identifier.

        Args:
            job_id: Job in the error state.

        Returns:
            Copy of the reset job.

        Raises:
            TransferJobNotFoundError: If the job is unknown.
            InvalidJobTransitionError: If the job is not in the error state.
            TransferTrackerClosedError: If the tracker was shut down.
        """
        with self._lock:
            self._ensure_open()
            job = self._get(job_id)
            self._transition(job, TransferStatus.PENDING)
            job.bytes_transferred = 0
            job.speed = 0.0
            job.error = None
            job.attempts += 1
            snapshot = dataclasses.replace(job)

        logger.info('Retrying transfer %s (attempt %d)', job_id, snapshot.attempts)
        self._notify(snapshot.to_progress())
        self._start_run([job_id])
        return snapshot

    def clear(self, job_id: str) -> bool:
        """Remove a completed or failed job from the registry.

        Args:
            job_id: Job identifier.

        Returns:
            True if removed, False if the job is pending or active.

        Raises:
            TransferJobNotFoundError: If the job is unknown.
        """
        with self._lock:
            job = self._get(job_id)
            if job.status not in _CLEARABLE:
                return False
            del self._jobs[job_id]
        return True

    def clear_all(self) -> int:
        """Remove every completed job.

        Returns:
            Number of jobs removed.
        """
        with self._lock:
            completed = [
                job_id for job_id, job in self._jobs.items()
                if job.status == TransferStatus.COMPLETED
            ]
            for job_id in completed:
                del self._jobs[job_id]
        return len(completed)

    def get(self, job_id: str) -> TransferJob:
        """Get a copy of a job.

        Args:
            job_id: Job identifier.

        Returns:
            Copy of the job.

        Raises:
            TransferJobNotFoundError: If the job is unknown.
        """
        with self._lock:
            return dataclasses.replace(self._get(job_id))

    def jobs(self) -> list[TransferJob]:
        """List copies of all jobs in submission order."""
        with self._lock:
            return [dataclasses.replace(job) for job in self._jobs.values()]

    def cancel(self) -> None:
        """Stop every run after the job it is currently processing."""
        with self._lock:
            events = list(self._runs.values())
        for event in events:
            event.set()
        logger.info('Cancel requested for %d transfer runs', len(events))

    def wait(self, timeout: float | None = None) -> bool:
        """Wait for the runs started so far.

        Args:
            timeout: Seconds to wait, None waits forever.

        Returns:
            True if every run finished.
        """
        with self._lock:
            futures = list(self._runs)
        _, not_done = concurrent.futures.wait(futures, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        """Stop the worker pool.

        Args:
            wait: Block until running jobs finish; otherwise queued runs
                are dropped and running ones are cancelled.
        """
        with self._lock:
            self._closed = True
        if not wait:
            self.cancel()
        self._executor.shutdown(wait=wait, cancel_futures=not wait)

    def _ensure_open(self) -> None:
        if self._closed:
            raise TransferTrackerClosedError(_CLOSED_MESSAGE)

    def _start_run(self, job_ids: list[str]) -> None:
        cancel_event = threading.Event()
        try:
            future = self._executor.submit(self._run, job_ids, cancel_event)
        except RuntimeError as error:
            # Pool shut down after the jobs were registered
            for job_id in job_ids:
                self._finish(job_id, TransferStatus.ERROR, _CLOSED_MESSAGE)
            raise TransferTrackerClosedError(_CLOSED_MESSAGE) from error
        with self._lock:
            self._runs[future] = cancel_event
        future.add_done_callback(self._forget_run)

    def _forget_run(self, future: concurrent.futures.Future[None]) -> None:
        with self._lock:
            self._runs.pop(future, None)
        error = future.exception() if not future.cancelled() else None
        if error is not None:
            logger.error('Transfer run crashed: %s', error)

    def _run(self, job_ids: list[str], cancel_event: threading.Event) -> None:
        for job_id in job_ids:
            if cancel_event.is_set():
                self._finish(job_id, TransferStatus.ERROR, _CANCELLED_MESSAGE)
                continue
            self._run_job(job_id)

    def _run_job(self, job_id: str) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return
            self._transition(job, TransferStatus.ACTIVE)
            request = job.request
            snapshot = job.to_progress()
        self._notify(snapshot)

        reporter = _ProgressReporter(self, job_id, self._interval)
        try:
            outcome = self._engine.relocate(request, on_progress=reporter)
        except Exception as error:
            logger.exception('Transfer %s crashed', job_id)
            self._finish(job_id, TransferStatus.ERROR, str(error))
            return

        if outcome.succeeded:
            self._finish(job_id, TransferStatus.COMPLETED)
        else:
            self._finish(
                job_id,
                TransferStatus.ERROR,
                outcome.message or str(outcome.reason),
            )

    def _finish(
        self,
        job_id: str,
        status: TransferStatus,
        error: str | None = None,
    ) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return
            self._transition(job, status)
            job.error = error
            if status == TransferStatus.COMPLETED:
                job.bytes_transferred = max(job.bytes_transferred, job.total_bytes)
            snapshot = job.to_progress()

        if error:
            logger.warning('Transfer %s failed: %s', job_id, error)
        else:
            logger.info('Transfer %s completed', job_id)
        self._notify(snapshot)

    def _add_bytes(
        self,
        job_id: str,
        increment: int,
        started_at: float,
    ) -> TransferProgress | None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            job.bytes_transferred += increment
            elapsed = time.monotonic() - started_at
            if elapsed > 0:
                job.speed = job.bytes_transferred / elapsed
            return job.to_progress()

    def _notify(self, progress: TransferProgress) -> None:
        if self._listener is None:
            return
        try:
            self._listener(progress)
        except Exception:
            logger.exception('Progress listener failed for %s', progress.job_id)

    def _get(self, job_id: str) -> TransferJob:
        try:
            return self._jobs[job_id]
        except KeyError as error:
            raise TransferJobNotFoundError(job_id) from error

    @staticmethod
    def _transition(job: TransferJob, target: TransferStatus) -> None:
        if target not in _ALLOWED_TRANSITIONS[job.status]:
            raise InvalidJobTransitionError(job.id, job.status, target)
        logger.debug('Transfer %s: %s -> %s', job.id, job.status, target)
        job.status = target


@final
class _ProgressReporter:
    """Byte-count callback handed to the store, throttled per job.

    The store may call it from its own transfer threads.
    """

    def __init__(
        self,
        tracker: TransferJobTracker,
        job_id: str,
        interval: float,
    ) -> None:
        self._tracker = tracker
        self._job_id = job_id
        self._interval = interval
        self._started_at = time.monotonic()
        self._last_report = 0.0
        self._lock = threading.Lock()

    def __call__(self, increment: int) -> None:
        progress = self._tracker._add_bytes(  # noqa: SLF001
            self._job_id,
            increment,
            self._started_at,
        )
        if progress is None:
            return
        now = time.monotonic()
        with self._lock:
            if now - self._last_report < self._interval:
                return
            self._last_report = now
        self._tracker._notify(progress)  # noqa: SLF001
