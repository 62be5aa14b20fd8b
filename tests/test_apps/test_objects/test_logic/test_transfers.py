"""Tests for the transfer job tracker."""

import threading

import pytest

from server.apps.objects.exceptions import (
    InvalidJobTransitionError,
    TransferJobNotFoundError,
    TransferTrackerClosedError,
)
from server.apps.objects.logic.transfers import TransferJob, TransferJobTracker
from server.apps.objects.logic.types import (
    ObjectRef,
    RelocationMode,
    RelocationRequest,
    TransferStatus,
)

_WAIT_SECONDS = 10


def _request(container, other_container, key, mode=RelocationMode.COPY):
    return RelocationRequest(
        source_ref=ObjectRef.from_key(key, size=4),
        source_container=container,
        dest_prefix='incoming/',
        dest_container=other_container,
        mode=mode,
    )


@pytest.fixture
def progress_reports():
    """Collected progress reports.

    Returns:
        List the tracker listener appends to.
    """
    return []


@pytest.fixture
def tracker(store, settings, progress_reports):
    """Tracker over the in-memory store without progress throttling.

    Yields:
        TransferJobTracker instance.
    """
    settings.TRANSFER_PROGRESS_INTERVAL = 0
    job_tracker = TransferJobTracker(store, listener=progress_reports.append)
    yield job_tracker
    job_tracker.shutdown()


def test_progress_percent_is_derived():
    """Test the percentage is computed from the byte counters."""
    job = TransferJob(
        id='job',
        request=None,
        bytes_transferred=1,
        total_bytes=3,
    )

    assert job.progress_pct == 33
    job.total_bytes = 0
    assert job.progress_pct == 0


def test_submit_runs_jobs(tracker, store, container, other_container):
    """Test submitted jobs complete and report progress."""
    store.put(container, 'a.txt')
    store.put(container, 'b.txt')

    job_ids = tracker.submit([
        _request(container, other_container, 'a.txt'),
        _request(container, other_container, 'b.txt', RelocationMode.MOVE),
    ])
    assert tracker.wait(_WAIT_SECONDS)

    jobs = tracker.jobs()
    assert [job.id for job in jobs] == job_ids
    assert all(job.status == TransferStatus.COMPLETED for job in jobs)
    assert all(job.progress_pct == 100 for job in jobs)
    assert store.keys(other_container) == ['incoming/a.txt', 'incoming/b.txt']
    assert store.keys(container) == ['a.txt']


def test_progress_reports_statuses(
    tracker,
    store,
    container,
    other_container,
    progress_reports,
):
    """Test the listener sees the job go active then completed."""
    store.put(container, 'a.txt')

    job_id = tracker.submit([_request(container, other_container, 'a.txt')])[0]
    assert tracker.wait(_WAIT_SECONDS)

    statuses = [report.status for report in progress_reports]
    assert statuses[0] == TransferStatus.ACTIVE
    assert statuses[-1] == TransferStatus.COMPLETED
    assert all(report.job_id == job_id for report in progress_reports)
    assert progress_reports[-1].bytes_transferred == 4


def test_failed_job_and_retry(tracker, store, container, other_container):
    """Test retry reruns a failed job under the same identifier."""
    store.put(container, 'a.txt')
    store.copy_failures.add('a.txt')

    job_id = tracker.submit([_request(container, other_container, 'a.txt')])[0]
    assert tracker.wait(_WAIT_SECONDS)
    failed = tracker.get(job_id)
    assert failed.status == TransferStatus.ERROR
    assert 'copy rejected' in failed.error

    store.copy_failures.clear()
    retried = tracker.retry(job_id)
    assert retried.attempts == 2
    assert tracker.wait(_WAIT_SECONDS)

    job = tracker.get(job_id)
    assert job.status == TransferStatus.COMPLETED
    assert job.error is None
    assert len(tracker.jobs()) == 1


def test_retry_completed_job_rejected(tracker, store, container, other_container):
    """Test only failed jobs can be retried."""
    store.put(container, 'a.txt')
    job_id = tracker.submit([_request(container, other_container, 'a.txt')])[0]
    assert tracker.wait(_WAIT_SECONDS)

    with pytest.raises(InvalidJobTransitionError):
        tracker.retry(job_id)


def test_clear_finished_jobs(tracker, store, container, other_container):
    """Test clear removes finished jobs and clear_all keeps failed ones."""
    store.put(container, 'a.txt')
    store.put(container, 'b.txt')
    store.put(container, 'c.txt')
    store.copy_failures.add('b.txt')

    done_id, failed_id, other_done_id = tracker.submit([
        _request(container, other_container, 'a.txt'),
        _request(container, other_container, 'b.txt'),
        _request(container, other_container, 'c.txt'),
    ])
    assert tracker.wait(_WAIT_SECONDS)

    assert tracker.clear_all() == 2
    assert [job.id for job in tracker.jobs()] == [failed_id]
    assert tracker.clear(failed_id)
    assert tracker.jobs() == []
    with pytest.raises(TransferJobNotFoundError):
        tracker.get(done_id)
    with pytest.raises(TransferJobNotFoundError):
        tracker.get(other_done_id)


def test_clear_single_completed_job(tracker, store, container, other_container):
    """Test clear removes one completed job."""
    store.put(container, 'a.txt')
    job_id = tracker.submit([_request(container, other_container, 'a.txt')])[0]
    assert tracker.wait(_WAIT_SECONDS)

    assert tracker.clear(job_id)
    assert tracker.jobs() == []


def test_clear_running_jobs_refused(settings, store, container, other_container):
    """Test active and pending jobs stay in the registry."""
    started = threading.Event()
    release = threading.Event()
    copy_object = store.copy_object

    def blocking_copy(*args, **kwargs):
        started.set()
        release.wait(_WAIT_SECONDS)
        copy_object(*args, **kwargs)

    store.copy_object = blocking_copy
    store.put(container, 'a.txt')
    store.put(container, 'b.txt')
    settings.TRANSFER_PROGRESS_INTERVAL = 0
    tracker = TransferJobTracker(store)

    active_id, pending_id = tracker.submit([
        _request(container, other_container, 'a.txt'),
        _request(container, other_container, 'b.txt'),
    ])
    assert started.wait(_WAIT_SECONDS)

    assert not tracker.clear(active_id)
    assert not tracker.clear(pending_id)
    assert tracker.get(active_id).status == TransferStatus.ACTIVE
    assert tracker.get(pending_id).status == TransferStatus.PENDING

    release.set()
    assert tracker.wait(_WAIT_SECONDS)
    tracker.shutdown()
    assert tracker.get(pending_id).status == TransferStatus.COMPLETED


def test_submit_after_shutdown(tracker, store, container, other_container):
    """Test a closed tracker refuses new jobs without registering them."""
    store.put(container, 'a.txt')
    tracker.shutdown()

    with pytest.raises(TransferTrackerClosedError):
        tracker.submit([_request(container, other_container, 'a.txt')])

    assert tracker.jobs() == []


def test_retry_after_shutdown(tracker, store, container, other_container):
    """Test a failed job stays failed when the tracker is closed."""
    store.put(container, 'a.txt')
    store.copy_failures.add('a.txt')
    job_id = tracker.submit([_request(container, other_container, 'a.txt')])[0]
    assert tracker.wait(_WAIT_SECONDS)
    tracker.shutdown()

    with pytest.raises(TransferTrackerClosedError):
        tracker.retry(job_id)

    job = tracker.get(job_id)
    assert job.status == TransferStatus.ERROR
    assert job.attempts == 1



def test_unknown_job(tracker):
    """Test unknown identifiers raise."""
    with pytest.raises(TransferJobNotFoundError):
        tracker.retry('missing')


def test_cancel_between_jobs(settings, store, container, other_container):
    """Test cancel lets the running job finish and fails the rest."""
    started = threading.Event()
    release = threading.Event()
    copy_object = store.copy_object

    def blocking_copy(*args, **kwargs):
        started.set()
        release.wait(_WAIT_SECONDS)
        copy_object(*args, **kwargs)

    store.copy_object = blocking_copy
    store.put(container, 'a.txt')
    store.put(container, 'b.txt')
    settings.TRANSFER_PROGRESS_INTERVAL = 0
    tracker = TransferJobTracker(store)

    first_id, second_id = tracker.submit([
        _request(container, other_container, 'a.txt'),
        _request(container, other_container, 'b.txt'),
    ])
    assert started.wait(_WAIT_SECONDS)
    tracker.cancel()
    release.set()
    assert tracker.wait(_WAIT_SECONDS)
    tracker.shutdown()

    assert tracker.get(first_id).status == TransferStatus.COMPLETED
    cancelled = tracker.get(second_id)
    assert cancelled.status == TransferStatus.ERROR
    assert cancelled.bytes_transferred == 0
