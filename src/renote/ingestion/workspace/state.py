"""Persistent fingerprint state for workspace entities."""

from __future__ import annotations

import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

from ...orchestrator.models import utc_now
from .change_detector import ChangeDetectionResult
from .models import StoredEntityState, WorkspaceEntity


SCHEMA = """
CREATE TABLE IF NOT EXISTS entity_state (
    entity_id TEXT PRIMARY KEY,
    account_id TEXT,
    content_hash TEXT,
    title_hash TEXT,
    properties_hash TEXT,
    last_edited_time TEXT,
    last_processed_at TEXT,
    last_processed_hash TEXT,
    processing_priority REAL NOT NULL DEFAULT 0,
    requires_processing INTEGER NOT NULL DEFAULT 0,
    change_detected_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_entity_state_account ON entity_state(account_id);
"""

COLUMNS = (
    "entity_id",
    "account_id",
    "content_hash",
    "title_hash",
    "properties_hash",
    "last_edited_time",
    "last_processed_at",
    "last_processed_hash",
    "processing_priority",
    "requires_processing",
    "change_detected_at",
)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat(timespec="microseconds") if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class EntityStateStore:
    """SQLite-backed store of per-entity hashes and processing marks."""

    def __init__(self, path: Union[Path, str]) -> None:
        self._path = Path(path)
        if str(self._path) != ":memory:":
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(SCHEMA)
        self._lock = threading.Lock()

    def close(self) -> None:
        with self._lock:
            self._conn.commit()
            self._conn.close()

    def fetch(self, entity_id: str) -> Optional[StoredEntityState]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {', '.join(COLUMNS)} FROM entity_state WHERE entity_id = ?",
                (entity_id,),
            ).fetchone()
        return self._from_row(row) if row else None

    def fetch_account(self, account_id: str) -> Dict[str, StoredEntityState]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {', '.join(COLUMNS)} FROM entity_state WHERE account_id = ?",
                (account_id,),
            ).fetchall()
        states = (self._from_row(row) for row in rows)
        return {state.entity_id: state for state in states}

    def upsert(self, state: StoredEntityState) -> None:
        values = (
            state.entity_id,
            state.account_id,
            state.content_hash,
            state.title_hash,
            state.properties_hash,
            _ts(state.last_edited_time),
            _ts(state.last_processed_at),
            state.last_processed_hash,
            float(state.processing_priority),
            1 if state.requires_processing else 0,
            _ts(state.change_detected_at),
        )
        updates = ", ".join(f"{column}=excluded.{column}" for column in COLUMNS[1:])
        with self._lock:
            with self._conn:
                self._conn.execute(
                    f"""
                    INSERT INTO entity_state({', '.join(COLUMNS)})
                    VALUES ({', '.join('?' for _ in COLUMNS)})
                    ON CONFLICT(entity_id) DO UPDATE SET {updates}
                    """,
                    values,
                )

    def record_detection(
        self,
        entity: WorkspaceEntity,
        result: ChangeDetectionResult,
        now: Optional[datetime] = None,
    ) -> StoredEntityState:
        """Persist the fingerprints of a detection run that found changes."""
        state = self.fetch(entity.id) or StoredEntityState(entity_id=entity.id)
        state.account_id = entity.account_id or state.account_id
        state.content_hash = result.hashes.content
        state.title_hash = result.hashes.title
        state.properties_hash = result.hashes.properties
        state.last_edited_time = entity.last_edited_time or state.last_edited_time
        state.requires_processing = result.requires_processing
        state.processing_priority = result.processing_priority
        state.change_detected_at = now or utc_now()
        self.upsert(state)
        return state

    def mark_processed(
        self,
        entity_id: str,
        content_hash: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """Record a completed generation pass for one entity."""
        with self._lock:
            with self._conn:
                self._conn.execute(
                    """
                    UPDATE entity_state
                    SET last_processed_at = ?,
                        last_processed_hash = COALESCE(?, content_hash),
                        requires_processing = 0,
                        processing_priority = 0
                    WHERE entity_id = ?
                    """,
                    (_ts(now or utc_now()), content_hash, entity_id),
                )

    def skip_processing(self, entity_id: str) -> None:
        """Clear the processing flag without recording a generation pass.

        The flag is set again once a later detection finds a new change.
        """
        with self._lock:
            with self._conn:
                self._conn.execute(
                    "UPDATE entity_state SET requires_processing = 0, processing_priority = 0 "
                    "WHERE entity_id = ?",
                    (entity_id,),
                )

    def processing_candidates(
        self,
        account_id: Optional[str] = None,
        *,
        priority_threshold: float = 0.0,
        limit: Optional[int] = None,
    ) -> List[StoredEntityState]:
        """Entities flagged for processing, highest priority first."""
        sql = (
            f"SELECT {', '.join(COLUMNS)} FROM entity_state "
            "WHERE requires_processing = 1 AND processing_priority >= ?"
        )
        params: List[object] = [priority_threshold]
        if account_id is not None:
            sql += " AND account_id = ?"
            params.append(account_id)
        sql += " ORDER BY processing_priority DESC, change_detected_at ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [self._from_row(row) for row in rows]

    def remove_missing(self, account_id: str, existing_ids: Iterable[str]) -> int:
        """Drop state rows for entities no longer present in an account."""
        keep = set(existing_ids)
        stale = [entity_id for entity_id in self.fetch_account(account_id) if entity_id not in keep]
        if stale:
            with self._lock:
                with self._conn:
                    self._conn.executemany(
                        "DELETE FROM entity_state WHERE entity_id = ?",
                        [(entity_id,) for entity_id in stale],
                    )
        return len(stale)

    def count(self, account_id: Optional[str] = None) -> int:
        sql = "SELECT COUNT(*) FROM entity_state"
        params: Sequence[object] = ()
        if account_id is not None:
            sql += " WHERE account_id = ?"
            params = (account_id,)
        with self._lock:
            row = self._conn.execute(sql, params).fetchone()
        return int(row[0]) if row else 0

    @staticmethod
    def _from_row(row: Sequence[object]) -> StoredEntityState:
        data = dict(zip(COLUMNS, row))
        return StoredEntityState(
            entity_id=str(data["entity_id"]),
            account_id=data["account_id"],
            content_hash=data["content_hash"],
            title_hash=data["title_hash"],
            properties_hash=data["properties_hash"],
            last_edited_time=_parse_ts(data["last_edited_time"]),
            last_processed_at=_parse_ts(data["last_processed_at"]),
            last_processed_hash=data["last_processed_hash"],
            processing_priority=float(data["processing_priority"] or 0.0),
            requires_processing=bool(data["requires_processing"]),
            change_detected_at=_parse_ts(data["change_detected_at"]),
        )
