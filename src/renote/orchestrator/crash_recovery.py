"""Recovery of jobs interrupted by a previous process.

A job is only ``active`` while a dispatcher is running its handler. Any
``active`` rows found at startup belong to a process that died mid-job;
they are moved back to ``retry`` and become due immediately. The retry
count is left untouched since the handler never reported an outcome.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .exceptions import InvalidStateTransitionError, StateTransitionRaceError
from .models import JobStatus, utc_now
from .queue import JobQueue

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Interrupted by dispatcher restart"


@dataclass
class CrashRecoveryReport:
    """Report of the startup recovery pass.

    Attributes:
        recovered_at: Timestamp when recovery completed
        jobs_active_before: Jobs found ``active`` at startup
        jobs_requeued: Jobs moved back to ``retry``
        recovery_duration_seconds: Time taken by the pass
        errors: Messages for jobs that could not be requeued
    """

    recovered_at: datetime
    jobs_active_before: int
    jobs_requeued: int
    recovery_duration_seconds: float
    job_ids: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def was_successful(self) -> bool:
        return not self.errors


def recover_interrupted_jobs(
    queue: JobQueue,
    *,
    now: Optional[datetime] = None,
) -> CrashRecoveryReport:
    """Requeue jobs left ``active`` by a previous process."""
    start = time.perf_counter()
    now = now or utc_now()
    interrupted = queue.query(statuses=[JobStatus.ACTIVE])

    requeued: List[str] = []
    errors: List[str] = []
    for job in interrupted:
        try:
            queue.transition(
                job.job_id,
                JobStatus.RETRY,
                next_retry_at=now,
                error=INTERRUPTED_MESSAGE,
                updated_at=now,
            )
        except (StateTransitionRaceError, InvalidStateTransitionError) as exc:
            errors.append(f"{job.job_id}: {exc}")
            continue
        requeued.append(job.job_id)

    report = CrashRecoveryReport(
        recovered_at=utc_now(),
        jobs_active_before=len(interrupted),
        jobs_requeued=len(requeued),
        recovery_duration_seconds=time.perf_counter() - start,
        job_ids=requeued,
        errors=errors,
    )
    if interrupted:
        logger.warning(
            "Requeued interrupted jobs",
            extra={
                "jobs_active_before": report.jobs_active_before,
                "jobs_requeued": report.jobs_requeued,
                "errors": len(errors),
            },
        )
    return report
