"""State machine validation for the job lifecycle.

Every status change written by the job store goes through
``validate_transition`` so that terminal jobs stay terminal and the
``next_retry_at`` / ``completed_at`` invariants can be maintained in one
place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Optional

from .exceptions import InvalidStateTransitionError
from .models import JobStatus, TERMINAL_STATUSES, utc_now

logger = logging.getLogger(__name__)


VALID_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.CREATED: frozenset({
        JobStatus.ACTIVE,  # Picked up by the dispatcher
        JobStatus.CANCELLED,
        JobStatus.FAILED,  # No handler registered for the type
    }),
    JobStatus.ACTIVE: frozenset({
        JobStatus.COMPLETED,
        JobStatus.RETRY,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    }),
    JobStatus.RETRY: frozenset({
        JobStatus.ACTIVE,
        JobStatus.CANCELLED,
        JobStatus.FAILED,  # No handler registered for the type
    }),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


@dataclass
class StateTransition:
    """Records a validated state transition."""

    job_id: str
    from_status: JobStatus
    to_status: JobStatus
    timestamp: datetime = field(default_factory=utc_now)
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def is_valid(self) -> bool:
        return self.to_status in VALID_TRANSITIONS.get(self.from_status, frozenset())


def validate_transition(
    job_id: str,
    from_status: JobStatus,
    to_status: JobStatus,
    *,
    reason: Optional[str] = None,
) -> StateTransition:
    """Validate a state transition before it is written.

    Raises:
        InvalidStateTransitionError: If the transition is not allowed
    """
    transition = StateTransition(
        job_id=job_id,
        from_status=from_status,
        to_status=to_status,
        reason=reason,
    )
    if not transition.is_valid():
        logger.error(
            "Invalid state transition",
            extra={
                "job_id": job_id,
                "from_status": from_status.value,
                "to_status": to_status.value,
            },
        )
        if from_status in TERMINAL_STATUSES:
            raise InvalidStateTransitionError(
                f"Job {job_id} is {from_status.value}; terminal jobs cannot change state"
            )
        raise InvalidStateTransitionError(
            f"Invalid transition: {from_status.value} → {to_status.value}"
        )
    return transition
