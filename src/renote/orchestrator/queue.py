"""Persistent job store for the sync orchestrator."""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from .exceptions import JobNotFoundError, StateTransitionRaceError
from .models import (
    JobRecord,
    JobStatus,
    JobType,
    TERMINAL_STATUSES,
    TriggerType,
    utc_now,
)
from .state_machine import validate_transition


SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    job_id TEXT PRIMARY KEY,
    job_type TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'created',
    priority INTEGER NOT NULL DEFAULT 5,
    trigger_type TEXT NOT NULL DEFAULT 'user',
    owner_id TEXT,
    entity_id TEXT,
    entity_type TEXT,
    payload TEXT NOT NULL,
    result TEXT,
    error TEXT,
    retry_count INTEGER NOT NULL DEFAULT 0,
    max_retries INTEGER NOT NULL DEFAULT 3,
    next_retry_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT,
    duration_seconds REAL
);
CREATE INDEX IF NOT EXISTS idx_jobs_due ON jobs(status, priority, created_at);
CREATE INDEX IF NOT EXISTS idx_jobs_owner ON jobs(owner_id, status);
"""

COLUMNS = (
    "job_id",
    "job_type",
    "status",
    "priority",
    "trigger_type",
    "owner_id",
    "entity_id",
    "entity_type",
    "payload",
    "result",
    "error",
    "retry_count",
    "max_retries",
    "next_retry_at",
    "created_at",
    "updated_at",
    "started_at",
    "completed_at",
    "duration_seconds",
)

_UPDATABLE = frozenset(COLUMNS) - {"job_id", "created_at"}
_TIMESTAMP_COLUMNS = frozenset(
    {"next_retry_at", "created_at", "updated_at", "started_at", "completed_at"}
)
_JSON_COLUMNS = frozenset({"payload", "result"})


def _ts(value: Optional[datetime]) -> Optional[str]:
    # Fixed-width ISO strings so SQLite text comparison matches time order.
    return value.isoformat(timespec="microseconds") if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class JobQueue:
    """SQLite-backed persistent store for job records.

    Rows are never deleted; terminal jobs remain as history.
    """

    def __init__(self, path: Union[Path, str]) -> None:
        self._path = Path(path)
        if str(self._path) != ":memory:":
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(SCHEMA)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def close(self) -> None:
        with self._lock:
            self._conn.commit()
            self._conn.close()

    def create(self, record: JobRecord) -> None:
        values = self._to_row(record)
        placeholders = ", ".join("?" for _ in COLUMNS)
        with self._lock:
            with self._conn:
                self._conn.execute(
                    f"INSERT INTO jobs({', '.join(COLUMNS)}) VALUES ({placeholders})",
                    tuple(values[column] for column in COLUMNS),
                )

    def get(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            cur = self._conn.execute(
                f"SELECT {', '.join(COLUMNS)} FROM jobs WHERE job_id = ?",
                (job_id,),
            )
            row = cur.fetchone()
        return self._from_row(row) if row else None

    def update(self, job_id: str, **fields: Any) -> None:
        """Write a partial set of columns for one job."""
        assignments, params = self._assignments(fields)
        with self._lock:
            with self._conn:
                cur = self._conn.execute(
                    f"UPDATE jobs SET {assignments} WHERE job_id = ?",
                    (*params, job_id),
                )
        if cur.rowcount == 0:
            raise JobNotFoundError(job_id)

    def transition(self, job_id: str, to_status: JobStatus, **fields: Any) -> JobRecord:
        """Move a job to ``to_status`` with optimistic locking.

        The update is conditioned on the status read beforehand. The
        ``next_retry_at`` and ``completed_at`` columns are normalised so the
        record invariants hold whatever the caller passes.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidStateTransitionError: If the state machine forbids the move
            StateTransitionRaceError: If the status changed concurrently
        """
        current = self.get(job_id)
        if current is None:
            raise JobNotFoundError(job_id)
        validate_transition(job_id, current.status, to_status)

        now = fields.pop("updated_at", None) or utc_now()
        fields["status"] = to_status
        if to_status != JobStatus.RETRY:
            fields["next_retry_at"] = None
        if to_status in TERMINAL_STATUSES:
            if fields.get("completed_at") is None:
                fields["completed_at"] = now
        else:
            fields["completed_at"] = None
        fields["updated_at"] = now

        assignments, params = self._assignments(fields)
        with self._lock:
            with self._conn:
                cur = self._conn.execute(
                    f"UPDATE jobs SET {assignments} WHERE job_id = ? AND status = ?",
                    (*params, job_id, current.status.value),
                )
        if cur.rowcount == 0:
            raise StateTransitionRaceError(
                f"Job {job_id} left status {current.status.value} before the update"
            )
        updated = self.get(job_id)
        assert updated is not None
        return updated

    def fetch_due(self, now: datetime, limit: int = 2) -> List[JobRecord]:
        """Return due jobs, most urgent first, FIFO within a priority."""
        with self._lock:
            cur = self._conn.execute(
                f"""
                SELECT {', '.join(COLUMNS)}
                FROM jobs
                WHERE status = 'created'
                   OR (status = 'retry' AND next_retry_at IS NOT NULL AND next_retry_at <= ?)
                ORDER BY priority ASC, created_at ASC, rowid ASC
                LIMIT ?
                """,
                (_ts(now), limit),
            )
            rows = cur.fetchall()
        return [self._from_row(row) for row in rows]

    def query(
        self,
        *,
        statuses: Optional[Iterable[JobStatus]] = None,
        owner_id: Optional[str] = None,
        entity_ids: Optional[Sequence[str]] = None,
        job_type: Optional[JobType] = None,
        newest_first: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[JobRecord]:
        clauses: List[str] = []
        params: List[Any] = []
        if statuses is not None:
            status_values = [JobStatus(status).value for status in statuses]
            if not status_values:
                return []
            clauses.append(f"status IN ({', '.join('?' for _ in status_values)})")
            params.extend(status_values)
        if owner_id is not None:
            clauses.append("owner_id = ?")
            params.append(owner_id)
        if entity_ids is not None:
            ids = list(entity_ids)
            if not ids:
                return []
            clauses.append(f"entity_id IN ({', '.join('?' for _ in ids)})")
            params.extend(ids)
        if job_type is not None:
            clauses.append("job_type = ?")
            params.append(JobType(job_type).value)

        sql = f"SELECT {', '.join(COLUMNS)} FROM jobs"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        if newest_first:
            sql += " ORDER BY created_at DESC, rowid DESC"
        else:
            sql += " ORDER BY priority ASC, created_at ASC, rowid ASC"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])

        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [self._from_row(row) for row in rows]

    def count_by_status(self, owner_id: Optional[str] = None) -> Dict[str, int]:
        sql = "SELECT status, COUNT(*) FROM jobs"
        params: List[Any] = []
        if owner_id is not None:
            sql += " WHERE owner_id = ?"
            params.append(owner_id)
        sql += " GROUP BY status"
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        counts = {status.value: 0 for status in JobStatus}
        for status, count in rows:
            counts[status] = int(count)
        return counts

    def pending_count(self) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM jobs WHERE status IN ('created', 'retry')"
            ).fetchone()
        return int(row[0]) if row else 0

    def _assignments(self, fields: Dict[str, Any]) -> tuple[str, List[Any]]:
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update job columns: {sorted(unknown)}")
        fields.setdefault("updated_at", utc_now())
        params = [self._encode(column, value) for column, value in fields.items()]
        return ", ".join(f"{column} = ?" for column in fields), params

    @staticmethod
    def _encode(column: str, value: Any) -> Any:
        if value is None:
            return None
        if column in _TIMESTAMP_COLUMNS:
            return _ts(value)
        if column in _JSON_COLUMNS:
            return json.dumps(value, default=str)
        if isinstance(value, (JobStatus, JobType, TriggerType)):
            return value.value
        return value

    def _to_row(self, record: JobRecord) -> Dict[str, Any]:
        return {
            "job_id": record.job_id,
            "job_type": record.job_type_value,
            "status": record.status.value,
            "priority": record.priority,
            "trigger_type": record.trigger_type.value,
            "owner_id": record.owner_id,
            "entity_id": record.entity_id,
            "entity_type": record.entity_type,
            "payload": json.dumps(record.payload, default=str),
            "result": self._encode("result", record.result),
            "error": record.error,
            "retry_count": record.retry_count,
            "max_retries": record.max_retries,
            "next_retry_at": _ts(record.next_retry_at),
            "created_at": _ts(record.created_at),
            "updated_at": _ts(record.updated_at),
            "started_at": _ts(record.started_at),
            "completed_at": _ts(record.completed_at),
            "duration_seconds": record.duration_seconds,
        }

    @staticmethod
    def _from_row(row: Sequence[Any]) -> JobRecord:
        data = dict(zip(COLUMNS, row))
        try:
            job_type: Union[JobType, str] = JobType(data["job_type"])
        except ValueError:
            # Rows written by an older build may carry types this build
            # no longer knows; the dispatcher fails them explicitly.
            job_type = data["job_type"]
        return JobRecord(
            job_id=data["job_id"],
            job_type=job_type,
            status=JobStatus(data["status"]),
            priority=int(data["priority"]),
            trigger_type=TriggerType(data["trigger_type"]),
            payload=json.loads(data["payload"]) if data["payload"] else {},
            owner_id=data["owner_id"],
            entity_id=data["entity_id"],
            entity_type=data["entity_type"],
            result=json.loads(data["result"]) if data["result"] is not None else None,
            error=data["error"],
            retry_count=int(data["retry_count"] or 0),
            max_retries=int(data["max_retries"] or 0),
            next_retry_at=_parse_ts(data["next_retry_at"]),
            created_at=_parse_ts(data["created_at"]),
            updated_at=_parse_ts(data["updated_at"]),
            started_at=_parse_ts(data["started_at"]),
            completed_at=_parse_ts(data["completed_at"]),
            duration_seconds=data["duration_seconds"],
        )
