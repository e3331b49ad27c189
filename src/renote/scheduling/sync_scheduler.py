"""Multi-tier sync scheduler.

Three independent interval timers drive the workspace sync:

* frequent: scan every account and queue derived-content generation for
  each entity that changed enough to matter;
* regular: during off-hours, queue a full account sync and a cleanup of
  stale derived content, unless the scan found nothing changed;
* deep: during off-hours, queue a bulk reprocessing pass per account.

Each run also refreshes the in-memory activity map that classifies
entities into recency tiers.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..ingestion.workspace.change_scan import ChangeScanner, ChangeScanResult
from ..ingestion.workspace.client import WorkspaceClient
from ..ingestion.workspace.models import WorkspaceEntity
from ..orchestrator.config import SchedulingConfig
from ..orchestrator.dispatcher import JobDispatcher
from ..orchestrator.models import JobType, TriggerType, utc_now
from .activity import ActivityRecord, PriorityTier, calculate_activity, sync_interval_minutes

logger = logging.getLogger(__name__)

FREQUENT_PRIORITY = 5
REGULAR_SYNC_PRIORITY = 7
CLEANUP_PRIORITY = 9
CLEANUP_DAYS_OLD = 30
DEEP_THRESHOLD_NO_CHANGES = 50
DEEP_THRESHOLD_WITH_CHANGES = 10

FREQUENT_OPTIONS: Dict[str, Any] = {
    "question_types": ["multiple_choice", "short_answer"],
    "difficulty": "medium",
    "count": 3,
}
DEEP_OPTIONS: Dict[str, Any] = {
    "question_types": ["multiple_choice", "short_answer", "flashcard", "essay"],
    "difficulty": "medium",
    "count": 5,
}

FREQUENT_JOB_ID = "frequent-sync"
REGULAR_JOB_ID = "regular-sync"
DEEP_JOB_ID = "deep-sync"


class MultiTierSyncScheduler:
    """Arms the three sync tiers and tracks entity activity."""

    def __init__(
        self,
        dispatcher: JobDispatcher,
        scanner: ChangeScanner,
        client: WorkspaceClient,
        config: Optional[SchedulingConfig] = None,
        *,
        scheduler: Optional[AsyncIOScheduler] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._dispatcher = dispatcher
        self._scanner = scanner
        self._client = client
        self._config = config or SchedulingConfig()
        self._scheduler = scheduler
        self._clock = clock
        self._activities: Dict[str, ActivityRecord] = {}
        self._running = False

    @property
    def config(self) -> SchedulingConfig:
        return self._config

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle

    async def start(self, config: Optional[SchedulingConfig] = None) -> None:
        """Analyse current activity and arm the tier timers."""
        if config is not None:
            self._config = config
        if self._running:
            await self.stop()

        await self.recalculate_activities()

        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(timezone=ZoneInfo(self._config.timezone))
        self._arm_timers()
        self._scheduler.start()
        self._running = True
        logger.info(
            "Sync scheduler started",
            extra={
                "owner_id": self._config.owner_id,
                "frequent_interval_minutes": self._config.frequent_interval_minutes,
                "tracked_entities": len(self._activities),
            },
        )

    async def stop(self) -> None:
        if not self._running:
            return
        if self._scheduler is not None:
            for job_id in (FREQUENT_JOB_ID, REGULAR_JOB_ID, DEEP_JOB_ID):
                if self._scheduler.get_job(job_id) is not None:
                    self._scheduler.remove_job(job_id)
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        self._running = False
        logger.info("Sync scheduler stopped")

    def _arm_timers(self) -> None:
        assert self._scheduler is not None
        config = self._config
        tz = ZoneInfo(config.timezone)
        first_run = datetime.now(tz) + timedelta(
            seconds=config.initial_sync_delay_seconds
        )
        self._scheduler.add_job(
            self.run_frequent_sync,
            trigger=IntervalTrigger(minutes=config.frequent_interval_minutes, timezone=tz),
            id=FREQUENT_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=first_run,
        )
        self._scheduler.add_job(
            self._regular_tick,
            trigger=IntervalTrigger(hours=config.regular_interval_hours, timezone=tz),
            id=REGULAR_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.add_job(
            self._deep_tick,
            trigger=IntervalTrigger(days=config.deep_interval_days, timezone=tz),
            id=DEEP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    # ------------------------------------------------------------------
    # Tiers

    def is_off_hours(self, now: Optional[datetime] = None) -> bool:
        """Whether ``now`` falls in the configured off-hours window.

        The end hour is exclusive. A window whose start is after its end
        wraps past midnight.
        """
        local = (now or self._clock()).astimezone(ZoneInfo(self._config.timezone))
        start, end = self._config.off_hours_start, self._config.off_hours_end
        if start > end:
            return local.hour >= start or local.hour < end
        return start <= local.hour < end

    async def _regular_tick(self) -> None:
        if not self.is_off_hours():
            logger.debug("Outside off-hours, regular sync skipped")
            return
        await self.run_regular_sync()

    async def _deep_tick(self) -> None:
        if not self.is_off_hours():
            logger.debug("Outside off-hours, deep sync skipped")
            return
        await self.run_deep_sync()

    async def run_frequent_sync(self) -> int:
        """Queue generation for changed entities; return the number of jobs queued."""
        queued = 0
        for account_id in await self._accounts():
            try:
                scan = await self._scanner.scan(account_id)
                for item in scan.prioritized:
                    self._dispatcher.enqueue(
                        JobType.GENERATE_DERIVED_CONTENT,
                        {
                            "entity_id": item.entity_id,
                            "account_id": account_id,
                            "owner_id": self._config.owner_id,
                            "processing_priority": item.priority,
                            "processing_strategy": item.strategy,
                            "options": dict(FREQUENT_OPTIONS),
                        },
                        trigger_type=TriggerType.SCHEDULED,
                        priority=FREQUENT_PRIORITY,
                    )
                    queued += 1
                self._refresh_activities(account_id, scan)
            except Exception:  # noqa: BLE001
                logger.exception("Frequent sync failed", extra={"account_id": account_id})
        logger.info("Frequent sync complete", extra={"jobs_queued": queued})
        return queued

    async def run_regular_sync(self) -> int:
        """Queue account sync and cleanup where anything changed."""
        queued = 0
        for account_id in await self._accounts():
            try:
                scan = await self._scanner.scan(account_id)
                self._refresh_activities(account_id, scan)
                if scan.changed_entities == 0:
                    logger.info(
                        "No changes detected, skipping regular sync",
                        extra={"account_id": account_id},
                    )
                    continue
                self._dispatcher.enqueue(
                    JobType.SYNC_ENTITY,
                    {"account_id": account_id, "owner_id": self._config.owner_id, "force": False},
                    trigger_type=TriggerType.SCHEDULED,
                    priority=REGULAR_SYNC_PRIORITY,
                )
                self._dispatcher.enqueue(
                    JobType.CLEANUP,
                    {"owner_id": self._config.owner_id, "days_old": CLEANUP_DAYS_OLD},
                    trigger_type=TriggerType.SCHEDULED,
                    priority=CLEANUP_PRIORITY,
                )
                queued += 2
            except Exception:  # noqa: BLE001
                logger.exception("Regular sync failed", extra={"account_id": account_id})
        return queued

    async def run_deep_sync(self) -> int:
        """Queue bulk reprocessing for every account with tracked content."""
        queued = 0
        for account_id in await self._accounts():
            try:
                scan = await self._scanner.scan(account_id)
                self._refresh_activities(account_id, scan)
                if scan.changed_entities == 0 and scan.total_entities == 0:
                    logger.info(
                        "No content to reprocess, skipping deep sync",
                        extra={"account_id": account_id},
                    )
                    continue
                threshold = (
                    DEEP_THRESHOLD_NO_CHANGES
                    if scan.changed_entities == 0
                    else DEEP_THRESHOLD_WITH_CHANGES
                )
                self._dispatcher.enqueue(
                    JobType.GENERATE_DERIVED_CONTENT,
                    {
                        "account_id": account_id,
                        "owner_id": self._config.owner_id,
                        "priority_threshold": threshold,
                        "max_entities": self._config.max_processing_batch,
                        "options": dict(DEEP_OPTIONS),
                    },
                    trigger_type=TriggerType.BULK,
                )
                queued += 1
            except Exception:  # noqa: BLE001
                logger.exception("Deep sync failed", extra={"account_id": account_id})
        return queued

    async def _accounts(self) -> List[str]:
        try:
            return list(await self._client.list_accounts(self._config.owner_id))
        except Exception:  # noqa: BLE001
            logger.exception("Failed to list accounts", extra={"owner_id": self._config.owner_id})
            return []

    # ------------------------------------------------------------------
    # Activity map

    def _refresh_activities(self, account_id: str, scan: ChangeScanResult) -> None:
        self._track(account_id, scan.entities)

    def _track(self, account_id: str, entities: Iterable[WorkspaceEntity]) -> int:
        """Refresh records for an account's entities and drop ones it no longer has."""
        now = self._clock()
        stored = self._scanner.state_store.fetch_account(account_id)
        seen = set()
        count = 0
        for entity in entities:
            seen.add(entity.id)
            state = stored.get(entity.id)
            self._activities[entity.id] = calculate_activity(
                entity,
                self._config.frequent_interval_minutes,
                now,
                last_processed=state.last_processed_at if state else None,
            )
            count += 1

        gone = [
            entity_id
            for entity_id, record in self._activities.items()
            if record.account_id == account_id and entity_id not in seen
        ]
        for entity_id in gone:
            del self._activities[entity_id]
        if gone:
            logger.debug(
                "Dropped activity records for removed entities",
                extra={"account_id": account_id, "removed": len(gone)},
            )
        return count

    async def recalculate_activities(self) -> int:
        """Rebuild activity records from fresh entity data; return the number updated."""
        updated = 0
        for account_id in await self._accounts():
            try:
                entities = await self._client.fetch_entities(account_id)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Failed to fetch entities for activity analysis",
                    extra={"account_id": account_id},
                )
                continue
            for entity in entities:
                if entity.account_id is None:
                    entity.account_id = account_id
            updated += self._track(account_id, entities)
        logger.info(
            "Recalculated activities",
            extra={
                "updated": updated,
                "base_interval_minutes": self._config.frequent_interval_minutes,
            },
        )
        return updated

    def get_due_entities(self, now: Optional[datetime] = None) -> List[ActivityRecord]:
        now = now or self._clock()
        return [record for record in self._activities.values() if record.is_due(now)]

    def get_activity(self, entity_id: str) -> Optional[ActivityRecord]:
        return self._activities.get(entity_id)

    def get_entity_sync_frequency(self, entity_id: str) -> float:
        """Sync interval in minutes for an entity; unknown entities get four times the base."""
        base = self._config.frequent_interval_minutes
        record = self._activities.get(entity_id)
        if record is None:
            return base * 4
        return sync_interval_minutes(record.tier, base)

    def get_stats(self, limit: int = 10) -> Dict[str, Any]:
        records = list(self._activities.values())
        total = len(records)
        by_tier = {tier: sum(1 for r in records if r.tier == tier) for tier in PriorityTier}
        upcoming = sorted(records, key=lambda r: r.next_sync_due)[:limit]
        return {
            "total_entities": total,
            "high_priority_entities": by_tier[PriorityTier.HIGH],
            "medium_priority_entities": by_tier[PriorityTier.MEDIUM],
            "low_priority_entities": by_tier[PriorityTier.LOW],
            "avg_edit_frequency": (
                sum(r.edit_frequency for r in records) / total if total else 0.0
            ),
            "next_syncs": [
                {
                    "entity_id": r.entity_id,
                    "next_sync": r.next_sync_due.isoformat(),
                    "tier": r.tier.value,
                }
                for r in upcoming
            ],
        }

    def reset_sync_timing(self, delay_minutes: float = 60) -> int:
        """Push every entity's next sync ``delay_minutes`` out from now."""
        due = self._clock() + timedelta(minutes=delay_minutes)
        for record in self._activities.values():
            record.next_sync_due = due
        logger.info(
            "Reset sync timing",
            extra={"updated": len(self._activities), "delay_minutes": delay_minutes},
        )
        return len(self._activities)

    def clear_syncs_for_entities(self, entity_ids: Sequence[str]) -> int:
        cleared = 0
        for entity_id in entity_ids:
            if self._activities.pop(entity_id, None) is not None:
                cleared += 1
        logger.info("Cleared entity syncs", extra={"cleared": cleared})
        return cleared

    def clear_upcoming_syncs(self) -> int:
        cleared = len(self._activities)
        self._activities.clear()
        logger.info("Cleared upcoming syncs", extra={"cleared": cleared})
        return cleared

    def update_configuration(self, config: SchedulingConfig) -> int:
        """Apply a new configuration and re-derive every next-sync time.

        Running timers are re-armed with the new intervals.
        """
        self._config = config
        now = self._clock()
        for record in self._activities.values():
            record.next_sync_due = now + timedelta(
                minutes=sync_interval_minutes(record.tier, config.frequent_interval_minutes)
            )
        if self._running and self._scheduler is not None:
            self._arm_timers()
        logger.info(
            "Updated scheduling configuration",
            extra={"frequent_interval_minutes": config.frequent_interval_minutes},
        )
        return len(self._activities)
