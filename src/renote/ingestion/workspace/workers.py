"""Job handlers for workspace sync, derived-content generation and cleanup."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from ...orchestrator.exceptions import PermanentJobError
from ...orchestrator.handlers import JobHandlerRegistry
from ...orchestrator.models import JobType, utc_now
from .change_detector import ChangeDetector, generate_content_hash
from .change_scan import ChangeScanner
from .client import DerivedContentService, WorkspaceClient
from .content import extract_entity_text
from .models import WorkspaceEntity
from .state import EntityStateStore

logger = logging.getLogger(__name__)

MIN_CONTENT_LENGTH = 100
DEFAULT_CLEANUP_DAYS = 30
DEFAULT_GENERATION_OPTIONS: Dict[str, Any] = {
    "question_types": ["multiple_choice", "short_answer"],
    "difficulty": "medium",
    "count": 5,
    "focus_areas": [],
}


class WorkspaceJobHandlers:
    """Handlers for the three job types, bound to their collaborators."""

    def __init__(
        self,
        client: WorkspaceClient,
        derived_content: DerivedContentService,
        state_store: EntityStateStore,
        *,
        scanner: Optional[ChangeScanner] = None,
        detector: Optional[ChangeDetector] = None,
        min_content_length: int = MIN_CONTENT_LENGTH,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._client = client
        self._derived = derived_content
        self._store = state_store
        self._detector = detector or ChangeDetector()
        self._scanner = scanner or ChangeScanner(client, state_store, self._detector, clock=clock)
        self._min_content_length = min_content_length
        self._clock = clock

    def as_registry(self) -> JobHandlerRegistry:
        return JobHandlerRegistry({
            JobType.SYNC_ENTITY: self.sync_entity,
            JobType.GENERATE_DERIVED_CONTENT: self.generate_derived_content,
            JobType.CLEANUP: self.cleanup,
        })

    async def sync_entity(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Refresh fingerprints for one entity or a whole account."""
        entity_id = payload.get("entity_id")
        account_id = payload.get("account_id")

        if entity_id:
            entity = await self._fetch(entity_id)
            now = self._clock()
            result = self._detector.detect_changes(entity, self._store.fetch(entity.id), now)
            if result.has_changes:
                self._store.record_detection(entity, result, now)
            return {
                "entity_id": entity.id,
                "changed_fields": result.changed_fields,
                "requires_processing": result.requires_processing,
                "synced_at": now.isoformat(),
            }

        if account_id:
            scan = await self._scanner.scan(account_id)
            return {
                "account_id": account_id,
                "total_entities": scan.total_entities,
                "changed_entities": scan.changed_entities,
                "removed_entities": scan.removed_entities,
                "synced_at": self._clock().isoformat(),
            }

        raise PermanentJobError("sync-entity job requires entity_id or account_id")

    async def generate_derived_content(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Generate derived content for one entity, or for the top candidates of an account."""
        options = {**DEFAULT_GENERATION_OPTIONS, **(payload.get("options") or {})}

        if payload.get("entity_id"):
            entity = await self._fetch(payload["entity_id"])
            return await self._generate_for(entity, options)

        account_id = payload.get("account_id")
        if not account_id:
            raise PermanentJobError("generate-derived-content job requires entity_id or account_id")

        threshold = float(payload.get("priority_threshold") or 0)
        max_entities = payload.get("max_entities")
        candidates = self._store.processing_candidates(
            account_id,
            priority_threshold=threshold,
            limit=int(max_entities) if max_entities else None,
        )
        if not candidates:
            logger.info(
                "No entities meet the priority threshold, skipping batch",
                extra={"account_id": account_id, "priority_threshold": threshold},
            )
            return {"account_id": account_id, "processed": 0, "generated": 0, "errors": []}

        processed = 0
        generated = 0
        errors: List[Dict[str, str]] = []
        for candidate in candidates:
            try:
                entity = await self._fetch(candidate.entity_id)
                outcome = await self._generate_for(entity, options)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Derived content generation failed for entity",
                    extra={"account_id": account_id, "entity_id": candidate.entity_id, "error": str(exc)},
                )
                errors.append({"entity_id": candidate.entity_id, "error": str(exc)})
                continue
            processed += 1
            generated += outcome["generated"]

        logger.info(
            "Batch generation complete",
            extra={"account_id": account_id, "processed": processed, "generated": generated},
        )
        return {
            "account_id": account_id,
            "processed": processed,
            "generated": generated,
            "errors": errors,
        }

    async def cleanup(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Delete derived content older than ``days_old`` days."""
        days_old = payload.get("days_old")
        days_old = DEFAULT_CLEANUP_DAYS if days_old is None else int(days_old)
        if days_old < 0:
            raise PermanentJobError("days_old cannot be negative")
        cutoff = self._clock() - timedelta(days=days_old)
        removed = await self._derived.delete_older_than(payload.get("owner_id"), cutoff)
        logger.info(
            "Cleaned up derived content",
            extra={"owner_id": payload.get("owner_id"), "removed": removed},
        )
        return {"removed": removed, "cutoff": cutoff.isoformat()}

    async def _fetch(self, entity_id: str) -> WorkspaceEntity:
        entity = await self._client.fetch_entity(entity_id)
        if entity is None:
            raise PermanentJobError(f"Entity not found: {entity_id}")
        return entity

    async def _generate_for(self, entity: WorkspaceEntity, options: Dict[str, Any]) -> Dict[str, Any]:
        text = extract_entity_text(entity)
        if len(text) < self._min_content_length:
            self._store.skip_processing(entity.id)
            logger.info(
                "Skipping entity with too little content",
                extra={"entity_id": entity.id, "text_length": len(text)},
            )
            raise PermanentJobError("Entity content is too short for derived content")

        generated = await self._derived.generate(entity, text, options)
        self._store.mark_processed(
            entity.id,
            content_hash=generate_content_hash(entity.content),
            now=self._clock(),
        )
        logger.info(
            "Generated derived content",
            extra={"entity_id": entity.id, "generated": generated},
        )
        return {"entity_id": entity.id, "title": entity.title, "generated": generated}
