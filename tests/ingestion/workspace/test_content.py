from fakes import blocks, make_entity, paragraph
from renote.ingestion.workspace.content import (
    block_text,
    content_blocks,
    extract_entity_text,
    extract_text_from_blocks,
    property_text,
)
from renote.ingestion.workspace.models import WorkspaceEntity, parse_timestamp


def test_content_blocks_accepts_api_response_or_list():
    response = blocks("one", "two")

    assert len(content_blocks(response)) == 2
    assert len(content_blocks(response["results"])) == 2
    assert content_blocks(None) == []
    assert content_blocks("plain text") == []


def test_block_text_reads_rich_text_of_text_blocks():
    heading = {"type": "heading_1", "heading_1": {"rich_text": [{"text": {"content": "Intro"}}]}}
    image = {"type": "image", "image": {"url": "https://example.com/a.png"}}

    assert block_text(paragraph("Hello")) == "Hello"
    assert block_text(heading) == "Intro"
    assert block_text(image) == ""


def test_extract_text_skips_empty_blocks():
    text = extract_text_from_blocks(blocks("First", "   ", "Second")["results"])

    assert text == "First\nSecond"


def test_property_text_by_type():
    assert property_text({"type": "select", "select": {"name": "Biology"}}) == "Biology"
    assert property_text(
        {"type": "multi_select", "multi_select": [{"name": "a"}, {"name": "b"}]}
    ) == "a, b"
    assert property_text({"type": "rich_text", "rich_text": [{"plain_text": "note"}]}) == "note"
    assert property_text({"type": "checkbox", "checkbox": True}) == ""


def test_entity_text_joins_title_and_blocks():
    entity = make_entity(title="Cells", content=blocks("Alpha " * 30, "Beta " * 30))

    text = extract_entity_text(entity)

    assert text.startswith("Cells\n\nAlpha")
    assert "\n\nBeta" in text


def test_short_entity_text_includes_properties():
    entity = make_entity(
        title="Cells",
        content=blocks("Short body."),
        properties={"Topic": {"type": "select", "select": {"name": "Biology"}}},
    )

    text = extract_entity_text(entity)

    assert text == "Cells\n\nShort body.\n\nBiology"


def test_entity_from_api_payload():
    entity = WorkspaceEntity.from_api(
        {
            "id": "page-1",
            "object": "page",
            "lastEditedTime": "2024-03-01T10:00:00.000Z",
            "created_time": "2024-02-01T10:00:00+00:00",
            "properties": {"Name": {"type": "title", "title": [{"plain_text": "Cells"}]}},
        },
        account_id="acct-1",
    )

    assert entity.title == "Cells"
    assert entity.account_id == "acct-1"
    assert entity.last_edited_time == parse_timestamp("2024-03-01T10:00:00Z")
    assert entity.created_time.tzinfo is not None
    assert entity.entity_type == "page"
