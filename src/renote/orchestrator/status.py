"""Queue status collection for the operator CLI."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from .models import JobStatus, utc_now
from .queue import JobQueue


def collect_status_report(
    *,
    database_path: Path,
    job_queue: Optional[JobQueue] = None,
    owner_id: Optional[str] = None,
    recent_limit: int = 5,
) -> Dict[str, Any]:
    """Collect job queue status.

    Args:
        database_path: Job store location (opened if ``job_queue`` is not given)
        job_queue: Optional open JobQueue instance
        owner_id: Restrict counts to one workspace user
        recent_limit: Number of recent jobs to include

    Returns:
        Status report dict with keys:
        - database: Job store path and whether it exists
        - queue: Job counts by status plus pending/finished-in-24h totals
        - next_retry_at: Earliest scheduled retry, if any
        - recent: Most recent jobs as dictionaries
    """
    database_path = Path(database_path)
    owns_queue = False
    if job_queue is None and database_path.exists():
        job_queue = JobQueue(database_path)
        owns_queue = True

    try:
        return {
            "database": {
                "path": str(database_path),
                "exists": database_path.exists(),
            },
            **_collect_queue_metrics(job_queue, owner_id, recent_limit),
        }
    finally:
        if owns_queue and job_queue is not None:
            job_queue.close()


def _collect_queue_metrics(
    job_queue: Optional[JobQueue],
    owner_id: Optional[str],
    recent_limit: int,
) -> Dict[str, Any]:
    if job_queue is None:
        counts = {status.value: 0 for status in JobStatus}
        return {
            "queue": {**counts, "pending": 0, "completed_24h": 0, "failed_24h": 0},
            "next_retry_at": None,
            "recent": [],
        }

    counts = job_queue.count_by_status(owner_id)
    since = utc_now() - timedelta(days=1)
    finished = job_queue.query(
        statuses=[JobStatus.COMPLETED, JobStatus.FAILED],
        owner_id=owner_id,
    )
    completed_24h = sum(
        1 for job in finished
        if job.status == JobStatus.COMPLETED and job.completed_at and job.completed_at >= since
    )
    failed_24h = sum(
        1 for job in finished
        if job.status == JobStatus.FAILED and job.completed_at and job.completed_at >= since
    )

    retries = job_queue.query(statuses=[JobStatus.RETRY], owner_id=owner_id)
    retry_times = [job.next_retry_at for job in retries if job.next_retry_at]
    next_retry = min(retry_times) if retry_times else None

    recent = job_queue.query(owner_id=owner_id, newest_first=True, limit=recent_limit)
    return {
        "queue": {
            **counts,
            "pending": counts[JobStatus.CREATED.value] + counts[JobStatus.RETRY.value],
            "completed_24h": completed_24h,
            "failed_24h": failed_24h,
        },
        "next_retry_at": next_retry.isoformat() if next_retry else None,
        "recent": [job.to_dict() for job in recent],
    }
