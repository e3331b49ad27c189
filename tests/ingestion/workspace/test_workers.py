"""Tests for the workspace job handlers."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from fakes import START, FakeClock, FakeDerivedContentService, FakeWorkspaceClient, blocks, make_entity
from renote.orchestrator.exceptions import PermanentJobError
from renote.orchestrator.models import JobType
from renote.ingestion.workspace.models import StoredEntityState
from renote.ingestion.workspace.workers import WorkspaceJobHandlers


@pytest.fixture
def client():
    return FakeWorkspaceClient(
        {
            "acct-1": [
                make_entity("page-1"),
                make_entity("page-2"),
                make_entity("tiny", title="Hi", content=blocks("Short."), properties={}),
            ]
        }
    )


@pytest.fixture
def derived():
    return FakeDerivedContentService(removed=4)


@pytest.fixture
def handlers(client, derived, state_store):
    return WorkspaceJobHandlers(client, derived, state_store, clock=FakeClock())


def test_registry_covers_every_job_type(handlers):
    registry = handlers.as_registry()

    assert registry.missing() == []
    assert registry.resolve(JobType.CLEANUP) == handlers.cleanup


@pytest.mark.asyncio()
async def test_sync_single_entity_records_fingerprints(handlers, state_store):
    result = await handlers.sync_entity({"entity_id": "page-1"})

    assert result["entity_id"] == "page-1"
    assert result["changed_fields"] == ["content", "title", "properties"]
    assert result["requires_processing"] is True
    assert result["synced_at"] == START.isoformat()
    assert state_store.fetch("page-1").requires_processing

    again = await handlers.sync_entity({"entity_id": "page-1"})
    assert again["changed_fields"] == []


@pytest.mark.asyncio()
async def test_sync_account_runs_change_scan(handlers, state_store):
    result = await handlers.sync_entity({"account_id": "acct-1"})

    assert result["total_entities"] == 3
    assert result["changed_entities"] == 2
    assert state_store.count("acct-1") == 3


@pytest.mark.asyncio()
async def test_sync_requires_a_target(handlers):
    with pytest.raises(PermanentJobError):
        await handlers.sync_entity({})


@pytest.mark.asyncio()
async def test_sync_missing_entity_is_permanent(handlers):
    with pytest.raises(PermanentJobError, match="Entity not found: ghost"):
        await handlers.sync_entity({"entity_id": "ghost"})


@pytest.mark.asyncio()
async def test_generate_for_one_entity_marks_it_processed(handlers, derived, state_store):
    await handlers.sync_entity({"entity_id": "page-1"})

    result = await handlers.generate_derived_content(
        {"entity_id": "page-1", "options": {"count": 3}}
    )

    assert result == {"entity_id": "page-1", "title": "Photosynthesis", "generated": 3}
    call = derived.generated[0]
    assert call["text"].startswith("Photosynthesis\n\nPhotosynthesis converts light")
    assert call["options"]["difficulty"] == "medium"
    stored = state_store.fetch("page-1")
    assert stored.last_processed_at == START
    assert stored.last_processed_hash == stored.content_hash
    assert not stored.requires_processing


@pytest.mark.asyncio()
async def test_generate_rejects_short_content(handlers, derived):
    with pytest.raises(PermanentJobError, match="too short"):
        await handlers.generate_derived_content({"entity_id": "tiny"})

    assert derived.generated == []


@pytest.mark.asyncio()
async def test_short_content_is_not_picked_up_again(handlers, derived, state_store):
    await handlers.sync_entity({"account_id": "acct-1"})
    state_store.upsert(
        StoredEntityState(
            entity_id="tiny",
            account_id="acct-1",
            content_hash=state_store.fetch("tiny").content_hash,
            requires_processing=True,
            processing_priority=99.0,
        )
    )

    result = await handlers.generate_derived_content({"account_id": "acct-1"})

    assert result["processed"] == 2
    assert [error["entity_id"] for error in result["errors"]] == ["tiny"]
    stored = state_store.fetch("tiny")
    assert not stored.requires_processing
    assert stored.last_processed_at is None

    again = await handlers.generate_derived_content({"account_id": "acct-1"})

    assert again == {"account_id": "acct-1", "processed": 0, "generated": 0, "errors": []}
    assert len(derived.generated) == 2


@pytest.mark.asyncio()
async def test_generate_for_account_takes_top_candidates(handlers, derived, state_store):
    await handlers.sync_entity({"account_id": "acct-1"})
    state_store.upsert(
        StoredEntityState(
            entity_id="page-2",
            account_id="acct-1",
            content_hash=state_store.fetch("page-2").content_hash,
            requires_processing=True,
            processing_priority=10.0,
        )
    )

    result = await handlers.generate_derived_content(
        {"account_id": "acct-1", "priority_threshold": 50, "max_entities": 5}
    )

    assert result["processed"] == 1
    assert result["generated"] == 5
    assert result["errors"] == []
    assert [call["entity_id"] for call in derived.generated] == ["page-1"]


@pytest.mark.asyncio()
async def test_generate_for_account_without_candidates(handlers, derived):
    result = await handlers.generate_derived_content({"account_id": "acct-1"})

    assert result == {"account_id": "acct-1", "processed": 0, "generated": 0, "errors": []}
    assert derived.generated == []


@pytest.mark.asyncio()
async def test_generate_for_account_collects_per_entity_errors(client, state_store):
    derived = FakeDerivedContentService()
    derived.generate = AsyncMock(side_effect=[RuntimeError("model unavailable"), 2])
    handlers = WorkspaceJobHandlers(client, derived, state_store, clock=FakeClock())
    await handlers.sync_entity({"account_id": "acct-1"})

    result = await handlers.generate_derived_content({"account_id": "acct-1"})

    assert result["processed"] == 1
    assert result["generated"] == 2
    assert len(result["errors"]) == 1
    assert result["errors"][0]["error"] == "model unavailable"


@pytest.mark.asyncio()
async def test_cleanup_deletes_content_past_cutoff(handlers, derived):
    result = await handlers.cleanup({"owner_id": "user-1", "days_old": 10})

    assert result == {"removed": 4, "cutoff": (START - timedelta(days=10)).isoformat()}
    assert derived.deleted == [{"owner_id": "user-1", "cutoff": START - timedelta(days=10)}]


@pytest.mark.asyncio()
async def test_cleanup_defaults_to_thirty_days(handlers, derived):
    await handlers.cleanup({})

    assert derived.deleted[0]["cutoff"] == START - timedelta(days=30)
