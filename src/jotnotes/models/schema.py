"""Data models for jotnotes."""

import datetime
import json
import uuid
from dataclasses import dataclass
from datetime import timezone
from typing import Any, NamedTuple, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator

from jotnotes.exceptions import ErrorCode, ValidationError

# Reserved folder value marking a note as trashed
TRASH_FOLDER = "__trash__"

# Directory (under the notes root) that holds trashed notes
TRASH_DIR = ".trash"

NOTE_SUFFIX = ".md"

DEFAULT_TITLE = "Untitled"

# Special views understood by the collection filters
ALL_NOTES_VIEW = "All Notes"
PINNED_VIEW = "Pinned"
TRASH_VIEW = "Trash"
SPECIAL_VIEWS = (ALL_NOTES_VIEW, PINNED_VIEW, TRASH_VIEW)


def _folder_name_problem(name: str) -> Optional[str]:
    """Describe why ``name`` cannot be a folder, or return None if it can."""
    if not name or not name.strip():
        return "Folder name cannot be empty"
    if name != name.strip():
        return "Folder name cannot start or end with whitespace"
    if name == TRASH_FOLDER:
        return f"'{TRASH_FOLDER}' is reserved"
    if "/" in name or "\\" in name:
        return "Folder name cannot contain path separators"
    if name.startswith("."):
        return "Folder name cannot start with '.'"
    if "\x00" in name:
        return "Folder name cannot contain NUL characters"
    return None


def validate_folder_name(name: str) -> str:
    """Validate that a folder name maps to exactly one directory under the root.

    Folders are a single path segment: hidden names, path separators and the
    trash sentinel are rejected, since none of them survive a directory scan.

    Args:
        name: The folder name to check

    Returns:
        The validated name (unchanged)

    Raises:
        ValidationError: If the name cannot be used as a folder
    """
    problem = _folder_name_problem(name)
    if problem:
        code = (
            ErrorCode.PATH_TRAVERSAL_DETECTED
            if name and (".." in name or "/" in name or "\\" in name)
            else ErrorCode.VALIDATION_FAILED
        )
        raise ValidationError(problem, field="folder", value=name, code=code)
    return name


def is_valid_folder_value(folder: str) -> bool:
    """True for "", the trash sentinel, or a valid folder name."""
    return folder in ("", TRASH_FOLDER) or _folder_name_problem(folder) is None


def is_safe_note_id(note_id: str) -> bool:
    """True if ``note_id`` can be used as a file stem inside one directory."""
    if not note_id or not note_id.strip():
        return False
    if note_id in (".", ".."):
        return False
    return not any(c in note_id for c in ("/", "\\", "\x00"))


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def format_timestamp(dt_value: datetime.datetime) -> str:
    """Render a datetime as an ISO-8601 UTC string with a ``Z`` suffix."""
    if dt_value.tzinfo is None:
        dt_value = dt_value.replace(tzinfo=timezone.utc)
    text = dt_value.astimezone(timezone.utc).isoformat(timespec="microseconds")
    return text.replace("+00:00", "Z")


def utc_now_iso() -> str:
    """Current time as an ISO-8601 string."""
    return format_timestamp(utc_now())


def parse_timestamp(value: Optional[str]) -> Optional[datetime.datetime]:
    """Parse an ISO-8601 string, treating naive values as UTC.

    Returns:
        The parsed datetime, or None if the value is empty or malformed.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def next_timestamp(previous: Optional[str] = None) -> str:
    """Return a timestamp strictly later than ``previous``.

    updatedAt is the only change signal the reconciliation engine looks at,
    so two edits landing within the clock's resolution must still produce
    different values.
    """
    now = utc_now()
    prev = parse_timestamp(previous)
    if prev is not None and now <= prev:
        now = prev + datetime.timedelta(microseconds=1)
    return format_timestamp(now)


def generate_id() -> str:
    """Generate a new note identity."""
    return str(uuid.uuid4())


class Note(BaseModel):
    """A single note. Immutable: every revision is a new instance."""

    id: str = Field(default_factory=generate_id, description="Stable identity")
    title: str = Field(default=DEFAULT_TITLE, description="Derived from content")
    content: str = Field(default="", description="Markdown text or a serialized document")
    folder: str = Field(default="", description='"" for unfiled, TRASH_FOLDER for trash')
    original_folder: Optional[str] = Field(
        default=None, description="Folder to restore to while the note is trashed"
    )
    pinned: bool = Field(default=False)
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate that the ID is safe to use as a file name."""
        if not is_safe_note_id(v):
            raise ValueError(f"Note ID {v!r} cannot be used as a file name")
        return v

    @field_validator("folder")
    @classmethod
    def validate_folder(cls, v: str) -> str:
        if not is_valid_folder_value(v):
            raise ValueError(_folder_name_problem(v))
        return v

    @property
    def is_trashed(self) -> bool:
        return self.folder == TRASH_FOLDER

    @property
    def file_name(self) -> str:
        return f"{self.id}{NOTE_SUFFIX}"


# An immutable, ordered copy of the note collection at one instant
Snapshot = Tuple[Note, ...]


class TagCount(NamedTuple):
    """A tag and the number of non-trashed notes carrying it."""

    tag: str
    count: int


@dataclass(frozen=True)
class PlainText:
    """Note content stored as plain or markdown text."""

    text: str


@dataclass(frozen=True)
class StructuredDocument:
    """Note content stored as a serialized editor document (JSON tree)."""

    tree: Any
    raw: str


NoteContent = Union[PlainText, StructuredDocument]


def parse_content(raw: str) -> NoteContent:
    """Decide once whether content is a structured document or plain text.

    Content whose trimmed form starts with ``{`` or ``[`` and parses as JSON
    is a structured document; anything else, including JSON-looking text
    that fails to parse, is plain text.
    """
    if raw and raw.lstrip().startswith(("{", "[")):
        try:
            return StructuredDocument(tree=json.loads(raw), raw=raw)
        except ValueError:
            pass
    return PlainText(text=raw or "")
