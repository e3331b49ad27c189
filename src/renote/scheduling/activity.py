"""Edit-recency classification of tracked entities."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from ..ingestion.workspace.models import WorkspaceEntity
from ..orchestrator.models import utc_now

HIGH_TIER_HOURS = 2
MEDIUM_TIER_HOURS = 24
LOW_TIER_CAP_MINUTES = 120


class PriorityTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class ActivityRecord:
    """Scheduling view of one entity, held in memory only."""

    entity_id: str
    account_id: Optional[str]
    last_modified: Optional[datetime]
    edit_frequency: float
    last_processed: Optional[datetime]
    tier: PriorityTier
    next_sync_due: datetime

    def is_due(self, now: datetime) -> bool:
        return now > self.next_sync_due

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "account_id": self.account_id,
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
            "edit_frequency": self.edit_frequency,
            "last_processed": self.last_processed.isoformat() if self.last_processed else None,
            "tier": self.tier.value,
            "next_sync_due": self.next_sync_due.isoformat(),
        }


def _whole_hours(delta: timedelta) -> int:
    return int(delta.total_seconds() // 3600)


def classify_tier(hours_since_modified: Optional[int]) -> PriorityTier:
    if hours_since_modified is None:
        return PriorityTier.LOW
    if hours_since_modified < HIGH_TIER_HOURS:
        return PriorityTier.HIGH
    if hours_since_modified < MEDIUM_TIER_HOURS:
        return PriorityTier.MEDIUM
    return PriorityTier.LOW


def sync_interval_minutes(tier: PriorityTier, base_interval_minutes: float) -> float:
    """Minutes between syncs for a tier; every tier is a multiple of the base."""
    if tier == PriorityTier.HIGH:
        return base_interval_minutes
    if tier == PriorityTier.MEDIUM:
        return base_interval_minutes * 2
    return min(base_interval_minutes * 4, LOW_TIER_CAP_MINUTES)


def estimate_edit_frequency(created_time: Optional[datetime], now: datetime) -> float:
    """Edits per day, estimated as the inverse of the entity's age in days."""
    if created_time is None:
        return 1.0
    days_since_created = max(1.0, _whole_hours(now - created_time) / 24)
    return 1.0 / days_since_created


def calculate_activity(
    entity: WorkspaceEntity,
    base_interval_minutes: float,
    now: Optional[datetime] = None,
    last_processed: Optional[datetime] = None,
) -> ActivityRecord:
    now = now or utc_now()
    last_modified = entity.last_edited_time
    hours = _whole_hours(now - last_modified) if last_modified else None
    tier = classify_tier(hours)
    return ActivityRecord(
        entity_id=entity.id,
        account_id=entity.account_id,
        last_modified=last_modified,
        edit_frequency=estimate_edit_frequency(entity.created_time, now),
        last_processed=last_processed,
        tier=tier,
        next_sync_due=now + timedelta(minutes=sync_interval_minutes(tier, base_interval_minutes)),
    )
