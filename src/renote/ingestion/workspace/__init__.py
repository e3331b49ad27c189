"""Workspace (pages and databases) ingestion."""

from .change_detector import (
    ChangeDetectionResult,
    ChangeDetector,
    ProcessingStrategy,
    generate_content_hash,
    prioritize_changed,
)
from .change_scan import ChangeScanner, ChangeScanResult
from .client import DerivedContentService, WorkspaceClient
from .models import StoredEntityState, WorkspaceEntity
from .state import EntityStateStore
from .workers import WorkspaceJobHandlers

__all__ = [
    "ChangeDetectionResult",
    "ChangeDetector",
    "ChangeScanResult",
    "ChangeScanner",
    "DerivedContentService",
    "EntityStateStore",
    "ProcessingStrategy",
    "StoredEntityState",
    "WorkspaceClient",
    "WorkspaceEntity",
    "WorkspaceJobHandlers",
    "generate_content_hash",
    "prioritize_changed",
]
