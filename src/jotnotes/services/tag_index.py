"""Hashtag extraction and the derived tag index."""
import re
import threading
from collections import Counter
from typing import Any, Iterable, List, Optional, Sequence, Set

from jotnotes.models.schema import (
    TRASH_FOLDER,
    Note,
    PlainText,
    TagCount,
    parse_content,
)

# A tag is "#" followed by one or more word characters
HASHTAG_PATTERN = re.compile(r"#(\w+)")

# Child-array properties followed when walking a structured document
_CHILD_KEYS = ("content", "children")


def collect_text(node: Any, parts: List[str]) -> None:
    """Depth-first walk collecting every ``text`` leaf of a document tree."""
    if isinstance(node, list):
        for child in node:
            collect_text(child, parts)
        return
    if not isinstance(node, dict):
        return
    text = node.get("text")
    if isinstance(text, str):
        parts.append(text)
    for key in _CHILD_KEYS:
        children = node.get(key)
        if isinstance(children, list):
            for child in children:
                collect_text(child, parts)


def searchable_text(content: str) -> str:
    """Text that hashtags are searched in.

    Structured documents contribute their text leaves joined by spaces, so
    a tag can never span two nodes; plain content is used as-is.
    """
    parsed = parse_content(content)
    if isinstance(parsed, PlainText):
        return parsed.text
    parts: List[str] = []
    collect_text(parsed.tree, parts)
    return " ".join(parts)


def extract_tags(content: str) -> Set[str]:
    """Extract the distinct, lower-cased hashtags of a note's content.

    Args:
        content: Plain text or a serialized structured document.

    Returns:
        Tag names without the leading ``#``.
    """
    if not content:
        return set()
    return {match.lower() for match in HASHTAG_PATTERN.findall(searchable_text(content))}


def build_index(notes: Iterable[Note]) -> List[TagCount]:
    """Count tags across non-trashed notes.

    Each note counts once per distinct tag, however often it repeats it.

    Returns:
        (tag, count) pairs sorted by tag.
    """
    counts: Counter = Counter()
    for note in notes:
        if note.folder == TRASH_FOLDER:
            continue
        counts.update(extract_tags(note.content))
    return [TagCount(tag, counts[tag]) for tag in sorted(counts)]


class TagIndex:
    """Memoized tag index keyed on the identity of the note collection.

    Snapshots are immutable, so the same collection object always yields
    the same index; a new object means the collection changed.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._source: Optional[Sequence[Note]] = None
        self._tags: List[TagCount] = []

    def get(self, notes: Sequence[Note]) -> List[TagCount]:
        with self._lock:
            if notes is not self._source:
                self._tags = build_index(notes)
                self._source = notes
            return self._tags
