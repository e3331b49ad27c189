"""Retry policy for failed jobs.

Failed jobs are retried with exponential backoff measured in minutes: the
k-th failure schedules the next attempt ``base * multiplier**k`` minutes
out (2, 4, 8, ... with the defaults).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .exceptions import PermanentJobError
from .models import JobRecord


class FailureType(str, Enum):
    """Failure classification for retry decisions."""

    TRANSIENT = "transient"  # Handler raised; worth another attempt
    PERMANENT = "permanent"  # Handler signalled the failure cannot be retried
    UNREGISTERED = "unregistered"  # No handler for the job type


def classify_failure(exc: BaseException) -> FailureType:
    if isinstance(exc, PermanentJobError):
        return FailureType.PERMANENT
    return FailureType.TRANSIENT


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of applying the policy to a failed job."""

    retry: bool
    retry_count: int
    next_retry_at: Optional[datetime] = None
    delay_minutes: float = 0.0


class RetryPolicy(BaseModel):
    """Exponential backoff policy.

    Attributes:
        base_delay_minutes: Delay unit in minutes (0.0-1440.0)
        backoff_multiplier: Exponential growth factor (1.0-10.0)
        max_delay_minutes: Upper bound on a single delay
    """

    base_delay_minutes: float = Field(default=1.0, ge=0.0, le=1440.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0, le=10.0)
    max_delay_minutes: float = Field(default=24 * 60, ge=0.0)

    def delay_minutes(self, retry_count: int) -> float:
        """Delay before the attempt following the ``retry_count``-th failure."""
        delay = self.base_delay_minutes * (self.backoff_multiplier ** retry_count)
        return min(delay, self.max_delay_minutes)

    def decide(
        self,
        job: JobRecord,
        now: datetime,
        failure_type: FailureType = FailureType.TRANSIENT,
    ) -> RetryDecision:
        """Decide whether a failed job is retried and when.

        The retry count only grows while budget remains, so a job that runs
        out of retries ends with ``retry_count == max_retries``.
        """
        if failure_type != FailureType.TRANSIENT or job.retry_count >= job.max_retries:
            return RetryDecision(retry=False, retry_count=job.retry_count)

        retry_count = job.retry_count + 1
        delay = self.delay_minutes(retry_count)
        return RetryDecision(
            retry=True,
            retry_count=retry_count,
            next_retry_at=now + timedelta(minutes=delay),
            delay_minutes=delay,
        )
