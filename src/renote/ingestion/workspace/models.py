"""Workspace entity records used by change detection and scheduling."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Union


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an API timestamp into an aware UTC datetime.

    Accepts ISO-8601 strings (including a trailing ``Z``) and datetimes;
    naive values are taken to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _title_from_properties(properties: Mapping[str, Any]) -> str:
    for prop in properties.values():
        if isinstance(prop, Mapping) and prop.get("type") == "title":
            return "".join(part.get("plain_text", "") for part in prop.get("title") or [])
    return ""


@dataclass
class WorkspaceEntity:
    """A page or database as returned by the workspace API."""

    id: str
    account_id: Optional[str] = None
    title: str = ""
    content: Any = None
    properties: Dict[str, Any] = field(default_factory=dict)
    last_edited_time: Optional[datetime] = None
    created_time: Optional[datetime] = None
    entity_type: str = "page"

    @classmethod
    def from_api(cls, data: Mapping[str, Any], account_id: Optional[str] = None) -> "WorkspaceEntity":
        """Build an entity from an API-shaped mapping.

        Both ``snake_case`` and ``camelCase`` timestamp keys are accepted.
        A missing title is taken from the ``title`` property.
        """
        properties = dict(data.get("properties") or {})
        title = data.get("title")
        if not isinstance(title, str):
            title = _title_from_properties(properties)
        return cls(
            id=str(data["id"]),
            account_id=account_id or data.get("account_id") or data.get("accountId"),
            title=title,
            content=data.get("content"),
            properties=properties,
            last_edited_time=parse_timestamp(
                data.get("last_edited_time") or data.get("lastEditedTime") or data.get("lastModified")
            ),
            created_time=parse_timestamp(data.get("created_time") or data.get("createdTime")),
            entity_type=str(data.get("object") or data.get("entity_type") or "page"),
        )


@dataclass
class StoredEntityState:
    """Hashes and processing bookkeeping persisted per entity."""

    entity_id: str
    account_id: Optional[str] = None
    content_hash: Optional[str] = None
    title_hash: Optional[str] = None
    properties_hash: Optional[str] = None
    last_edited_time: Optional[datetime] = None
    last_processed_at: Optional[datetime] = None
    last_processed_hash: Optional[str] = None
    processing_priority: float = 0.0
    requires_processing: bool = False
    change_detected_at: Optional[datetime] = None

    @property
    def never_processed(self) -> bool:
        return self.last_processed_at is None
