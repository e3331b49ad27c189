"""Account-wide change scan.

Fetches every entity of an account, runs change detection against the
stored fingerprints and persists the new fingerprints of entities that
changed. The result lists the entities worth reprocessing, highest priority
first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from ...orchestrator.models import utc_now
from .change_detector import ChangeDetector, EntityChange, prioritize_changed
from .client import WorkspaceClient
from .models import WorkspaceEntity
from .state import EntityStateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PrioritizedEntity:
    entity_id: str
    priority: float
    strategy: str
    reason: str


@dataclass
class ChangeScanResult:
    """Summary of one account scan.

    ``changed_entities`` counts entities that require processing;
    ``modified_entities`` counts every entity whose fingerprint moved.
    """

    account_id: str
    total_entities: int = 0
    changed_entities: int = 0
    modified_entities: int = 0
    removed_entities: int = 0
    prioritized: List[PrioritizedEntity] = field(default_factory=list)
    entities: List[WorkspaceEntity] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return self.changed_entities > 0


class ChangeScanner:
    """Runs change detection across all entities of an account."""

    def __init__(
        self,
        client: WorkspaceClient,
        state_store: EntityStateStore,
        detector: Optional[ChangeDetector] = None,
        *,
        prune_missing: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._client = client
        self._store = state_store
        self._detector = detector or ChangeDetector()
        self._prune_missing = prune_missing
        self._clock = clock

    @property
    def state_store(self) -> EntityStateStore:
        return self._store

    @property
    def detector(self) -> ChangeDetector:
        return self._detector

    async def scan(self, account_id: str) -> ChangeScanResult:
        now = self._clock()
        entities = list(await self._client.fetch_entities(account_id))
        stored = self._store.fetch_account(account_id)

        changes: List[EntityChange] = []
        modified = 0
        for entity in entities:
            if entity.account_id is None:
                entity.account_id = account_id
            result = self._detector.detect_changes(entity, stored.get(entity.id), now)
            if not result.has_changes:
                continue
            modified += 1
            self._store.record_detection(entity, result, now)
            changes.append(EntityChange(entity.id, result))

        removed = 0
        if self._prune_missing:
            removed = self._store.remove_missing(account_id, (entity.id for entity in entities))

        prioritized = []
        for change in prioritize_changed(changes):
            decision = self._detector.get_processing_strategy(change.result)
            prioritized.append(
                PrioritizedEntity(
                    entity_id=change.entity_id,
                    priority=change.result.processing_priority,
                    strategy=decision.strategy.value,
                    reason=decision.reason,
                )
            )

        scan = ChangeScanResult(
            account_id=account_id,
            total_entities=len(entities),
            changed_entities=len(prioritized),
            modified_entities=modified,
            removed_entities=removed,
            prioritized=prioritized,
            entities=entities,
        )
        logger.info(
            "Change scan complete",
            extra={
                "account_id": account_id,
                "total_entities": scan.total_entities,
                "changed_entities": scan.changed_entities,
                "modified_entities": scan.modified_entities,
                "removed_entities": removed,
            },
        )
        return scan
