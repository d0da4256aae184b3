"""Tests for scheduler job tracking and retry functionality."""

from unittest.mock import AsyncMock, patch

import pytest

from taskcycle.core.scheduler_tracker import JobTracker, retry_job_with_backoff


@pytest.fixture(autouse=True)
def no_backoff_sleep():
    """Skip real backoff delays."""
    with patch("taskcycle.core.scheduler_tracker.asyncio.sleep", new=AsyncMock()) as mock_sleep:
        yield mock_sleep


@pytest.fixture
def job_tracker() -> JobTracker:
    return JobTracker()


@pytest.mark.unit
def test_record_job_start(job_tracker: JobTracker) -> None:
    """Test recording a job start."""
    job_tracker.record_job_start("reconcile:g1")

    status = job_tracker.get_job_status("reconcile:g1")
    assert status["currently_running"] is True
    assert status["current_run_started"] is not None


@pytest.mark.unit
def test_record_job_success(job_tracker: JobTracker) -> None:
    """Test recording a job success."""
    job_tracker.record_job_start("reconcile:g1")
    job_tracker.record_job_success("reconcile:g1")

    status = job_tracker.get_job_status("reconcile:g1")
    assert status["last_success"] is not None
    assert status["consecutive_failures"] == 0
    assert status["success_count"] == 1
    assert status["currently_running"] is False


@pytest.mark.unit
def test_consecutive_failures_reset_on_success(job_tracker: JobTracker) -> None:
    """Test a success resets the consecutive failure count."""
    assert job_tracker.record_job_failure("reconcile:g1", "Error 1") == 1
    assert job_tracker.record_job_failure("reconcile:g1", "Error 2") == 2

    job_tracker.record_job_success("reconcile:g1")

    status = job_tracker.get_job_status("reconcile:g1")
    assert status["consecutive_failures"] == 0
    assert status["failure_count"] == 2
    assert status["last_error"] == "Error 2"


@pytest.mark.unit
def test_dead_letter_queue_keeps_latest_entries(job_tracker: JobTracker) -> None:
    """Test the dead letter queue keeps only the latest entries."""
    for i in range(150):
        job_tracker.add_to_dead_letter_queue(f"job_{i}", f"error_{i}", "context")

    dlq = job_tracker.get_dead_letter_queue()
    assert len(dlq) == 100
    assert dlq[-1] == {"job_name": "job_149", "error": "error_149", "context": "context"}


@pytest.mark.unit
def test_get_job_status_for_job_that_never_ran(job_tracker: JobTracker) -> None:
    """Test status of a job that never ran."""
    status = job_tracker.get_job_status("nonexistent_job")

    assert status["job_name"] == "nonexistent_job"
    assert status["last_success"] is None
    assert status["consecutive_failures"] == 0
    assert status["currently_running"] is False


@pytest.mark.unit
def test_error_truncation(job_tracker: JobTracker) -> None:
    """Test long error messages are truncated."""
    job_tracker.record_job_failure("reconcile:g1", "x" * 1000)

    assert len(job_tracker.get_job_status("reconcile:g1")["last_error"]) == 500


@pytest.mark.unit
async def test_retry_succeeds_first_try(job_tracker: JobTracker, no_backoff_sleep: AsyncMock) -> None:
    """Test a job that succeeds at once is not retried."""
    job = AsyncMock()

    assert await retry_job_with_backoff(job, "reconcile:g1", tracker=job_tracker) is True

    job.assert_called_once()
    no_backoff_sleep.assert_not_called()
    assert job_tracker.get_job_status("reconcile:g1")["success_count"] == 1


@pytest.mark.unit
async def test_retry_succeeds_after_backoff(job_tracker: JobTracker, no_backoff_sleep: AsyncMock) -> None:
    """Test a job succeeds after backing off."""
    job = AsyncMock(side_effect=[Exception("Error 1"), Exception("Error 2"), None])

    assert await retry_job_with_backoff(job, "reconcile:g1", max_retries=3, base_delay=2.0, tracker=job_tracker)

    assert job.call_count == 3
    assert [c.args[0] for c in no_backoff_sleep.call_args_list] == [2.0, 4.0]


@pytest.mark.unit
async def test_retry_exhausted_records_failure(job_tracker: JobTracker) -> None:
    """Test exhausted retries are recorded as a failure."""
    job = AsyncMock(side_effect=Exception("Persistent error"))

    assert await retry_job_with_backoff(job, "reconcile:g1", max_retries=3, tracker=job_tracker) is False

    assert job.call_count == 3
    status = job_tracker.get_job_status("reconcile:g1")
    assert status["consecutive_failures"] == 1
    assert "Persistent error" in status["last_error"]
    assert job_tracker.get_dead_letter_queue() == []


@pytest.mark.unit
async def test_repeated_exhaustion_lands_in_dead_letter_queue(job_tracker: JobTracker) -> None:
    """Test repeated exhaustion lands the job in the dead letter queue."""
    job = AsyncMock(side_effect=Exception("Persistent error"))

    for _ in range(3):
        await retry_job_with_backoff(job, "reconcile:g1", max_retries=2, tracker=job_tracker)

    dlq = job_tracker.get_dead_letter_queue()
    assert len(dlq) == 1
    assert dlq[0]["job_name"] == "reconcile:g1"
    assert dlq[0]["context"] == "Failed 3 consecutive times"
