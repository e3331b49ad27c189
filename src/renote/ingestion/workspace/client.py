"""Collaborator protocols for the workspace API and derived-content service.

The orchestrator never talks to the external services directly; hosts pass
objects satisfying these protocols to the scanner and job handlers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from .models import WorkspaceEntity


@runtime_checkable
class WorkspaceClient(Protocol):
    """Read access to connected workspace accounts."""

    async def list_accounts(self, owner_id: Optional[str]) -> List[str]:
        """Return the ids of every account connected by ``owner_id``."""
        ...

    async def fetch_entities(self, account_id: str) -> List[WorkspaceEntity]:
        """Return every tracked entity in an account, content included."""
        ...

    async def fetch_entity(self, entity_id: str) -> Optional[WorkspaceEntity]:
        """Return one entity, or ``None`` if it no longer exists."""
        ...


@runtime_checkable
class DerivedContentService(Protocol):
    """Generates and prunes derived content (study questions)."""

    async def generate(
        self,
        entity: WorkspaceEntity,
        text: str,
        options: Dict[str, Any],
    ) -> int:
        """Replace the derived content for ``entity``; return the number created."""
        ...

    async def delete_older_than(self, owner_id: Optional[str], cutoff: datetime) -> int:
        """Delete derived content created before ``cutoff``; return the number removed."""
        ...
