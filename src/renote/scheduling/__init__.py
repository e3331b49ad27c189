"""Time-based sync scheduling."""

from .activity import ActivityRecord, PriorityTier, calculate_activity
from .sync_scheduler import MultiTierSyncScheduler

__all__ = [
    "ActivityRecord",
    "MultiTierSyncScheduler",
    "PriorityTier",
    "calculate_activity",
]
