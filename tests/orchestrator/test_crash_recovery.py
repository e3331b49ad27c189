"""Tests for requeueing jobs interrupted by a dispatcher crash."""

from fakes import START
from renote.orchestrator.crash_recovery import INTERRUPTED_MESSAGE, recover_interrupted_jobs
from renote.orchestrator.models import JobRecord, JobStatus, JobType, TriggerType


def _create(queue, job_id: str, status: JobStatus, retry_count: int = 0) -> None:
    queue.create(
        JobRecord(
            job_id=job_id,
            job_type=JobType.SYNC_ENTITY,
            status=status,
            priority=5,
            trigger_type=TriggerType.SCHEDULED,
            retry_count=retry_count,
            created_at=START,
            updated_at=START,
        )
    )


def test_active_jobs_are_requeued_and_due_immediately(queue):
    _create(queue, "interrupted", JobStatus.ACTIVE, retry_count=1)
    _create(queue, "waiting", JobStatus.CREATED)
    _create(queue, "finished", JobStatus.COMPLETED)

    report = recover_interrupted_jobs(queue, now=START)

    assert report.was_successful()
    assert report.jobs_active_before == 1
    assert report.jobs_requeued == 1
    assert report.job_ids == ["interrupted"]

    job = queue.get("interrupted")
    assert job.status == JobStatus.RETRY
    assert job.retry_count == 1
    assert job.next_retry_at == START
    assert job.error == INTERRUPTED_MESSAGE
    assert {j.job_id for j in queue.fetch_due(START, limit=10)} == {"interrupted", "waiting"}
    assert queue.get("finished").status == JobStatus.COMPLETED


def test_recovery_with_nothing_interrupted(queue):
    _create(queue, "waiting", JobStatus.CREATED)

    report = recover_interrupted_jobs(queue, now=START)

    assert report.jobs_active_before == 0
    assert report.jobs_requeued == 0
    assert report.was_successful()
    assert report.recovery_duration_seconds >= 0
