"""Change detection and reprocessing priority for workspace entities.

Each entity is fingerprinted on three independent fields (content, title,
properties). Comparing the fingerprints with the stored ones tells which
fields changed; the extracted text is then scored for quality to decide
whether the change is worth reprocessing and how urgently.

The detector performs no I/O. Callers persist the resulting hashes.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ...orchestrator.models import utc_now
from .content import content_blocks, extract_text_from_blocks
from .models import StoredEntityState, WorkspaceEntity

logger = logging.getLogger(__name__)

CONTENT_FIELD = "content"
TITLE_FIELD = "title"
PROPERTIES_FIELD = "properties"
METADATA_FIELD = "metadata"

_SENTENCE_SPLIT = re.compile(r"[.!?]+")


def canonicalize(value: Any) -> str:
    """Serialise ``value`` so equivalent payloads produce identical text.

    Strings are stripped; everything else is JSON with keys sorted at every
    depth. ``None`` and blank strings canonicalise to the empty string.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def generate_content_hash(value: Any) -> str:
    return hashlib.sha256(canonicalize(value).encode("utf-8")).hexdigest()


def hash_changed(new_hash: str, old_hash: Optional[str]) -> bool:
    return not old_hash or new_hash != old_hash


def count_words(text: str) -> int:
    return len(text.split())


def calculate_content_quality(text: str) -> int:
    """Score extracted text from 0 to 100.

    Combines a word-count band, average sentence length and lexical
    diversity.
    """
    if not text or not text.strip():
        return 0

    words = text.split()
    word_count = len(words)
    sentence_count = len([s for s in _SENTENCE_SPLIT.split(text) if s.strip()])
    avg_words_per_sentence = word_count / max(sentence_count, 1)

    score = 0
    if 50 <= word_count <= 500:
        score += 40
    elif word_count > 500:
        score += 30
    elif word_count >= 20:
        score += 20
    else:
        score += 10

    if 8 <= avg_words_per_sentence <= 20:
        score += 30
    else:
        score += 15

    diversity = len({word.lower() for word in words}) / max(word_count, 1)
    if diversity > 0.6:
        score += 30
    elif diversity > 0.4:
        score += 20
    else:
        score += 10

    return min(score, 100)


class ProcessingStrategy(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    SKIP = "skip"


@dataclass(frozen=True)
class StrategyDecision:
    strategy: ProcessingStrategy
    reason: str


@dataclass(frozen=True)
class EntityHashes:
    content: str
    title: str
    properties: str

    def to_dict(self) -> Dict[str, str]:
        return {"content": self.content, "title": self.title, "properties": self.properties}


@dataclass
class ChangeDetectionResult:
    """Outcome of comparing an entity with its stored fingerprints."""

    hashes: EntityHashes
    changed_fields: List[str] = field(default_factory=list)
    content_quality: int = 0
    processing_priority: float = 0.0
    requires_processing: bool = False
    extracted_text: str = ""
    word_count: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(self.changed_fields)

    def changed(self, field_name: str) -> bool:
        return field_name in self.changed_fields


@dataclass
class EntityChange:
    entity_id: str
    result: ChangeDetectionResult


class ChangeDetector:
    """Decides whether workspace entities need reprocessing.

    Attributes:
        min_words: Minimum word count for processing
        min_quality: Minimum quality score for processing
        full_quality_threshold: Quality above which content changes get a full pass
        max_age_days: Age after which processed content is considered stale
    """

    def __init__(
        self,
        *,
        min_words: int = 20,
        min_quality: int = 30,
        full_quality_threshold: int = 70,
        max_age_days: int = 30,
    ) -> None:
        self.min_words = min_words
        self.min_quality = min_quality
        self.full_quality_threshold = full_quality_threshold
        self.max_age_days = max_age_days

    def extract_text(self, entity: WorkspaceEntity) -> str:
        if isinstance(entity.content, str):
            return entity.content.strip()
        return extract_text_from_blocks(content_blocks(entity.content))

    def hash_entity(self, entity: WorkspaceEntity) -> EntityHashes:
        return EntityHashes(
            content=generate_content_hash(entity.content),
            title=generate_content_hash(entity.title or ""),
            properties=generate_content_hash(entity.properties),
        )

    def should_process(self, text: str) -> bool:
        return count_words(text) >= self.min_words and calculate_content_quality(text) >= self.min_quality

    def detect_changes(
        self,
        current: WorkspaceEntity,
        stored: Optional[StoredEntityState],
        now: Optional[datetime] = None,
    ) -> ChangeDetectionResult:
        now = now or utc_now()
        stored = stored or StoredEntityState(entity_id=current.id)
        hashes = self.hash_entity(current)

        changed_fields: List[str] = []
        if hash_changed(hashes.content, stored.content_hash):
            changed_fields.append(CONTENT_FIELD)
        if hash_changed(hashes.title, stored.title_hash):
            changed_fields.append(TITLE_FIELD)
        if hash_changed(hashes.properties, stored.properties_hash):
            changed_fields.append(PROPERTIES_FIELD)

        # Edits the hashes cannot see, such as formatting.
        if (
            not changed_fields
            and current.last_edited_time is not None
            and stored.last_edited_time is not None
            and current.last_edited_time > stored.last_edited_time
        ):
            changed_fields.append(METADATA_FIELD)

        text = self.extract_text(current)
        word_count = count_words(text)
        quality = calculate_content_quality(text)
        requires_processing = (
            bool(changed_fields) and word_count >= self.min_words and quality >= self.min_quality
        )

        result = ChangeDetectionResult(
            hashes=hashes,
            changed_fields=changed_fields,
            content_quality=quality,
            requires_processing=requires_processing,
            extracted_text=text,
            word_count=word_count,
        )
        if requires_processing:
            result.processing_priority = self.processing_priority(
                quality, changed_fields, stored.last_processed_at, now
            )
        return result

    @staticmethod
    def processing_priority(
        quality: int,
        changed_fields: Iterable[str],
        last_processed_at: Optional[datetime],
        now: datetime,
    ) -> float:
        """Priority score in [0, 100]; higher means reprocess sooner."""
        changed = set(changed_fields)
        priority = quality * 0.4
        if CONTENT_FIELD in changed:
            priority += 40
        if TITLE_FIELD in changed:
            priority += 20
        if PROPERTIES_FIELD in changed:
            priority += 10

        if last_processed_at is None:
            priority += 20
        else:
            days_since = (now - last_processed_at).total_seconds() / 86400
            if days_since < 1:
                priority *= 0.5
            elif days_since < 7:
                priority *= 0.8

        return min(max(priority, 0.0), 100.0)

    def get_processing_strategy(self, result: ChangeDetectionResult) -> StrategyDecision:
        if not result.requires_processing:
            return StrategyDecision(
                ProcessingStrategy.SKIP, "No significant changes or low quality content"
            )
        if result.changed(CONTENT_FIELD):
            if result.content_quality > self.full_quality_threshold:
                return StrategyDecision(
                    ProcessingStrategy.FULL, "High quality content with significant changes"
                )
            return StrategyDecision(
                ProcessingStrategy.INCREMENTAL, "Content changed but quality is moderate"
            )
        if result.changed(TITLE_FIELD):
            return StrategyDecision(
                ProcessingStrategy.INCREMENTAL, "Title changed, may affect derived content"
            )
        return StrategyDecision(ProcessingStrategy.INCREMENTAL, "Minor changes detected")

    def needs_reprocessing(
        self,
        current_hash: str,
        last_processed_hash: Optional[str],
        last_processed_at: Optional[datetime],
        *,
        max_age_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """True if never processed, content drifted, or the last pass is stale."""
        if last_processed_at is None or not last_processed_hash:
            return True
        if current_hash != last_processed_hash:
            return True
        max_age = self.max_age_days if max_age_days is None else max_age_days
        return (now or utc_now()) - last_processed_at > timedelta(days=max_age)

    def generate_processing_metadata(
        self,
        entity_id: str,
        result: ChangeDetectionResult,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Summary of a detection run for job payloads."""
        decision = self.get_processing_strategy(result)
        return {
            "entity_id": entity_id,
            "processing_strategy": decision.strategy.value,
            "processing_reason": decision.reason,
            "priority": result.processing_priority,
            "content_quality": result.content_quality,
            "changed_fields": list(result.changed_fields),
            "extracted_text_length": len(result.extracted_text),
            "hashes": result.hashes.to_dict(),
            "detected_at": (now or utc_now()).isoformat(),
        }

    def detect_batch_changes(
        self,
        items: Iterable[Tuple[WorkspaceEntity, Optional[StoredEntityState]]],
        now: Optional[datetime] = None,
    ) -> List[EntityChange]:
        now = now or utc_now()
        return [
            EntityChange(entity.id, self.detect_changes(entity, stored, now))
            for entity, stored in items
        ]


def prioritize_changed(changes: Iterable[EntityChange]) -> List[EntityChange]:
    """Entities requiring processing, highest priority first."""
    pending = [change for change in changes if change.result.requires_processing]
    return sorted(pending, key=lambda change: change.result.processing_priority, reverse=True)
