"""Text helpers for note content: titles, previews and document conversion."""
import json
import re
from typing import Any, Dict, List

from jotnotes.models.schema import (
    DEFAULT_TITLE,
    PlainText,
    StructuredDocument,
    parse_content,
)
from jotnotes.services.tag_index import collect_text

_HEADING_MARKER = re.compile(r"^#+\s*")

# Markdown syntax stripped from previews, applied in order
_PREVIEW_RULES = [
    (re.compile(r"^#{1,6}\s+", re.MULTILINE), ""),
    (re.compile(r"\*\*(.+?)\*\*"), r"\1"),
    (re.compile(r"\*(.+?)\*"), r"\1"),
    (re.compile(r"~~(.+?)~~"), r"\1"),
    (re.compile(r"`(.+?)`"), r"\1"),
    (re.compile(r"^>\s+", re.MULTILINE), ""),
    (re.compile(r"^[-*]\s+", re.MULTILINE), ""),
    (re.compile(r"^\d+\.\s+", re.MULTILINE), ""),
    (re.compile(r"\n+"), " "),
]


def _title_from_document(tree: Any) -> str:
    """First top-level block of a document whose inline text is not blank."""
    if not isinstance(tree, dict):
        return DEFAULT_TITLE
    blocks = tree.get("content")
    if not isinstance(blocks, list):
        return DEFAULT_TITLE
    for block in blocks:
        if not isinstance(block, dict) or not isinstance(block.get("content"), list):
            continue
        text = "".join(
            child.get("text", "") if isinstance(child, dict) and isinstance(child.get("text"), str) else ""
            for child in block["content"]
        ).strip()
        if text:
            return text
    return DEFAULT_TITLE


def extract_title(content: str) -> str:
    """Derive a note's title from its content.

    Plain text uses its first line without leading ``#`` heading markers.
    Structured documents use the first top-level block with any text.

    Examples:
        "# Shopping\\n- milk" -> "Shopping"
        "" -> "Untitled"
    """
    parsed = parse_content(content)
    if isinstance(parsed, StructuredDocument):
        return _title_from_document(parsed.tree)
    first_line = parsed.text.split("\n", 1)[0]
    title = _HEADING_MARKER.sub("", first_line).strip()
    return title or DEFAULT_TITLE


def preview_text(content: str, max_length: int = 120) -> str:
    """Short plain-text preview of a note, without its title.

    Args:
        content: Note content (plain text or structured document).
        max_length: Maximum preview length before truncation.

    Returns:
        Preview text, ending with an ellipsis when truncated.
    """
    if not content:
        return ""

    parsed = parse_content(content)
    if isinstance(parsed, StructuredDocument):
        parts: List[str] = []
        tree = parsed.tree
        if isinstance(tree, dict):
            # Skip the first top-level block, it is the title
            blocks = tree.get("content")
            collect_text(blocks[1:] if isinstance(blocks, list) else [], parts)
        else:
            collect_text(tree, parts)
        plain = " ".join(parts)
    else:
        plain = "\n".join(parsed.text.split("\n")[1:])
        for pattern, replacement in _PREVIEW_RULES:
            plain = pattern.sub(replacement, plain)

    plain = plain.strip()
    if len(plain) > max_length:
        return plain[:max_length] + "…"
    return plain


def plain_to_document(text: str) -> Dict[str, Any]:
    """Wrap plain text in a document tree, one paragraph per line.

    This is how legacy plain-text notes are upgraded when an editor that
    works on structured documents opens them.
    """
    return {
        "type": "doc",
        "content": [
            {
                "type": "paragraph",
                "content": [{"type": "text", "text": line}] if line else [],
            }
            for line in text.split("\n")
        ],
    }


def to_document_content(content: str) -> str:
    """Serialized structured-document form of ``content``.

    Structured content is returned unchanged; plain text is wrapped with
    :func:`plain_to_document`.
    """
    parsed = parse_content(content)
    if isinstance(parsed, PlainText):
        return json.dumps(plain_to_document(parsed.text))
    return parsed.raw
