"""Front matter serialization for note files.

Each note file starts with a flat ``key: value`` metadata block between
``---`` delimiters, followed by one blank line and the note content.
Encoding is strict and deterministic. Decoding is lenient: hand-edited,
foreign or half-written files never raise, they fall back to defaults.
"""
import logging
import re
from typing import Any, Dict, Optional

import frontmatter
from frontmatter.default_handlers import BaseHandler

from jotnotes.models.schema import (
    DEFAULT_TITLE,
    TRASH_FOLDER,
    Note,
    is_safe_note_id,
    is_valid_folder_value,
    parse_timestamp,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

DELIMITER = "---"

# Front matter keys, in the order they are written
KEY_TITLE = "title"
KEY_ID = "id"
KEY_FOLDER = "folder"
KEY_ORIGINAL_FOLDER = "originalFolder"
KEY_PINNED = "pinned"
KEY_CREATED = "createdAt"
KEY_UPDATED = "updatedAt"


class FlatHandler(BaseHandler):
    """Front matter handler for flat ``key: value`` blocks.

    Unlike YAML, values are never typed or quoted: everything after the
    first colon is the value, so titles like ``Re: meeting`` survive as-is.
    """

    FM_BOUNDARY = re.compile(r"^-{3,}\s*$", re.MULTILINE)
    START_DELIMITER = DELIMITER
    END_DELIMITER = DELIMITER

    def load(self, fm: str, **kwargs: Any) -> Dict[str, str]:
        """Parse a metadata block into a dict of trimmed string values.

        Lines without a colon, or with nothing before it, are ignored.
        """
        metadata: Dict[str, str] = {}
        for line in fm.splitlines():
            key, sep, value = line.partition(":")
            key = key.strip()
            if not sep or not key:
                continue
            metadata[key] = value.strip()
        return metadata

    def export(self, metadata: Dict[str, Any], **kwargs: Any) -> str:
        """Render metadata as one ``key: value`` line per entry."""
        lines = []
        for key, value in metadata.items():
            if isinstance(value, bool):
                value = "true" if value else "false"
            text = " ".join(str(value).splitlines())
            lines.append(f"{key}: {text}")
        return "\n".join(lines)


class FrontMatterCodec:
    """Encodes notes to file text and decodes file text back to notes."""

    def __init__(self) -> None:
        self.handler = FlatHandler()

    def encode(self, note: Note) -> str:
        """Serialize a note to the text of its file.

        Args:
            note: The note to serialize.

        Returns:
            Front matter block, a blank line, then the content verbatim.
        """
        metadata: Dict[str, Any] = {
            KEY_TITLE: note.title,
            KEY_ID: note.id,
            KEY_FOLDER: note.folder,
        }
        if note.original_folder:
            metadata[KEY_ORIGINAL_FOLDER] = note.original_folder
        metadata[KEY_PINNED] = note.pinned
        metadata[KEY_CREATED] = note.created_at
        metadata[KEY_UPDATED] = note.updated_at

        block = self.handler.export(metadata)
        return (
            f"{self.handler.START_DELIMITER}\n{block}\n"
            f"{self.handler.END_DELIMITER}\n\n{note.content}"
        )

    def decode(self, text: str) -> frontmatter.Post:
        """Split file text into metadata and content.

        Never raises. Text that does not open with a delimiter line, or whose
        block is never closed, is returned whole as content with no metadata.
        """
        lines = text.split("\n")

        start: Optional[int] = None
        for index, line in enumerate(lines):
            if line.strip():
                start = index
                break
        if start is None or lines[start].strip() != DELIMITER:
            return frontmatter.Post(text, handler=self.handler)

        end: Optional[int] = None
        for index in range(start + 1, len(lines)):
            if lines[index].strip() == DELIMITER:
                end = index
                break
        if end is None:
            return frontmatter.Post(text, handler=self.handler)

        metadata = self.handler.load("\n".join(lines[start + 1 : end]))

        body = lines[end + 1 :]
        if body and not body[0].strip():
            body = body[1:]

        post = frontmatter.Post("\n".join(body), handler=self.handler)
        # Keys like "content" would clash with Post's own constructor arguments
        post.metadata.update(metadata)
        return post

    def to_note(self, post: frontmatter.Post, fallback_id: str, folder: str) -> Note:
        """Build a Note from decoded metadata, filling in defaults.

        Args:
            post: Result of :meth:`decode`.
            fallback_id: Identity to use when the metadata has no usable id
                (normally the file name without ``.md``).
            folder: Folder the note belongs to, already resolved by the caller
                from the file's location and metadata.

        Returns:
            A Note. Missing or malformed values fall back to defaults.
        """
        metadata = post.metadata

        note_id = metadata.get(KEY_ID) or fallback_id
        if not is_safe_note_id(note_id):
            logger.warning(f"Ignoring unusable id {note_id!r} in {fallback_id}.md")
            note_id = fallback_id

        # Only trashed notes remember where they came from
        original_folder = metadata.get(KEY_ORIGINAL_FOLDER) or None
        if (
            folder != TRASH_FOLDER
            or original_folder == TRASH_FOLDER
            or (original_folder and not is_valid_folder_value(original_folder))
        ):
            original_folder = None

        return Note(
            id=note_id,
            title=metadata.get(KEY_TITLE) or DEFAULT_TITLE,
            content=post.content,
            folder=folder,
            original_folder=original_folder,
            pinned=metadata.get(KEY_PINNED) == "true",
            created_at=_timestamp_or_now(metadata.get(KEY_CREATED)),
            updated_at=_timestamp_or_now(metadata.get(KEY_UPDATED)),
        )

    def decode_note(self, text: str, fallback_id: str, default_folder: str = "") -> Note:
        """Decode file text straight into a Note.

        The folder comes from the metadata when present and usable, else
        ``default_folder``.
        """
        post = self.decode(text)
        folder = post.metadata.get(KEY_FOLDER, default_folder)
        if not is_valid_folder_value(folder):
            logger.warning(
                f"Ignoring unusable folder {folder!r} in {fallback_id}.md, "
                f"using {default_folder!r}"
            )
            folder = default_folder
        return self.to_note(post, fallback_id, folder)


def _timestamp_or_now(value: Optional[str]) -> str:
    if value and parse_timestamp(value) is not None:
        return value
    return utc_now_iso()
