"""Plain-text extraction from workspace block and property payloads."""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping

from .models import WorkspaceEntity

TEXT_BLOCK_TYPES = frozenset({
    "paragraph",
    "heading_1",
    "heading_2",
    "heading_3",
    "bulleted_list_item",
    "numbered_list_item",
    "quote",
    "callout",
    "code",
    "toggle",
})

# Pages shorter than this get property text appended.
PROPERTY_FALLBACK_LENGTH = 100


def content_blocks(content: Any) -> List[Mapping[str, Any]]:
    """Return the block list of a content payload.

    Content arrives either as the raw API response (``{"results": [...]}``)
    or as a bare list of blocks.
    """
    if isinstance(content, Mapping):
        content = content.get("results")
    if isinstance(content, list):
        return [block for block in content if isinstance(block, Mapping)]
    return []


def _rich_text(parts: Any) -> str:
    if not isinstance(parts, list):
        return ""
    texts = []
    for part in parts:
        if not isinstance(part, Mapping):
            continue
        text = part.get("plain_text")
        if not text and isinstance(part.get("text"), Mapping):
            text = part["text"].get("content")
        texts.append(text or "")
    return "".join(texts)


def block_text(block: Mapping[str, Any]) -> str:
    block_type = block.get("type")
    if block_type not in TEXT_BLOCK_TYPES:
        return ""
    data = block.get(block_type)
    if not isinstance(data, Mapping):
        return ""
    return _rich_text(data.get("rich_text") or data.get("text"))


def extract_text_from_blocks(blocks: Iterable[Mapping[str, Any]]) -> str:
    """Join the text of every text-bearing block, one block per line."""
    texts = (block_text(block) for block in blocks)
    return "\n".join(text for text in texts if text.strip())


def property_text(prop: Any) -> str:
    if not isinstance(prop, Mapping):
        return ""
    prop_type = prop.get("type")
    if prop_type == "title":
        return _rich_text(prop.get("title"))
    if prop_type == "rich_text":
        return _rich_text(prop.get("rich_text"))
    if prop_type == "select":
        select = prop.get("select") or {}
        return select.get("name") or ""
    if prop_type == "multi_select":
        return ", ".join(item.get("name", "") for item in prop.get("multi_select") or [])
    return ""


def extract_entity_text(entity: WorkspaceEntity) -> str:
    """Text used for derived-content generation.

    Title followed by block text; short pages also get the text of their
    properties.
    """
    text = entity.title or ""
    blocks = content_blocks(entity.content)
    if blocks:
        text += "\n\n" + "\n\n".join(t for t in (block_text(b) for b in blocks) if t)

    if len(text) < PROPERTY_FALLBACK_LENGTH and entity.properties:
        props = [property_text(prop) for prop in entity.properties.values()]
        text += "\n\n" + "\n".join(p for p in props if p)

    return text.strip()
