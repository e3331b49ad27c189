"""Domain models for the sync orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class JobType(str, Enum):
    SYNC_ENTITY = "sync-entity"
    GENERATE_DERIVED_CONTENT = "generate-derived-content"
    CLEANUP = "cleanup"


class JobStatus(str, Enum):
    """Job lifecycle states."""

    CREATED = "created"  # Queued, never picked up
    RETRY = "retry"  # Failed, waiting for next_retry_at
    ACTIVE = "active"  # Handler running
    COMPLETED = "completed"
    FAILED = "failed"  # Retries exhausted or not retryable
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
PENDING_STATUSES = frozenset({JobStatus.CREATED, JobStatus.RETRY})


class TriggerType(str, Enum):
    USER = "user"
    SCHEDULED = "scheduled"
    BULK = "bulk"


# 1 = most urgent, 10 = least urgent
DEFAULT_PRIORITIES: Dict[TriggerType, int] = {
    TriggerType.USER: 1,
    TriggerType.SCHEDULED: 5,
    TriggerType.BULK: 9,
}

MIN_PRIORITY = 1
MAX_PRIORITY = 10
DEFAULT_MAX_RETRIES = 3


def default_priority(trigger_type: TriggerType) -> int:
    return DEFAULT_PRIORITIES[trigger_type]


def entity_reference(payload: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    """Derive the (entity_id, entity_type) a payload refers to.

    Payloads naming an ``entity_id`` point at that entity (a page unless the
    payload says otherwise); payloads naming only an ``account_id`` point at
    the account.
    """
    if payload.get("entity_id"):
        return str(payload["entity_id"]), str(payload.get("entity_type") or "page")
    if payload.get("account_id"):
        return str(payload["account_id"]), "account"
    return None, None


@dataclass(slots=True)
class JobRecord:
    """A unit of deferred work as persisted in the job store."""

    job_id: str
    job_type: Union[JobType, str]
    status: JobStatus
    priority: int
    trigger_type: TriggerType
    payload: Dict[str, Any] = field(default_factory=dict)
    owner_id: Optional[str] = None
    entity_id: Optional[str] = None
    entity_type: Optional[str] = None
    result: Any = None
    error: Optional[str] = None
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    next_retry_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def job_type_value(self) -> str:
        return self.job_type.value if isinstance(self.job_type, JobType) else str(self.job_type)

    def is_due(self, now: datetime) -> bool:
        if self.status == JobStatus.CREATED:
            return True
        return (
            self.status == JobStatus.RETRY
            and self.next_retry_at is not None
            and self.next_retry_at <= now
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""

        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "job_id": self.job_id,
            "job_type": self.job_type_value,
            "status": self.status.value,
            "priority": self.priority,
            "trigger_type": self.trigger_type.value,
            "owner_id": self.owner_id,
            "entity_id": self.entity_id,
            "entity_type": self.entity_type,
            "payload": self.payload,
            "result": self.result,
            "error": self.error,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "next_retry_at": _iso(self.next_retry_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "duration_seconds": self.duration_seconds,
        }
