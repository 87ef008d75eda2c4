"""Authoritative in-memory state of the note collection.

The store knows nothing about disk. Every mutation replaces the whole
state with a new immutable :class:`StoreState` and notifies subscribers
with ``(state, previous_state)``; the reconciliation engine is one such
subscriber.
"""
import dataclasses
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from jotnotes.exceptions import ErrorCode, NoteNotFoundError, ValidationError
from jotnotes.models.schema import (
    ALL_NOTES_VIEW,
    DEFAULT_TITLE,
    PINNED_VIEW,
    SPECIAL_VIEWS,
    TRASH_FOLDER,
    TRASH_VIEW,
    Note,
    Snapshot,
    TagCount,
    generate_id,
    next_timestamp,
    utc_now_iso,
    validate_folder_name,
)
from jotnotes.services.tag_index import TagIndex, extract_tags
from jotnotes.utils import extract_title

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreState:
    """One immutable state of the store."""

    notes: Snapshot = ()
    folders: Tuple[str, ...] = ()
    active_folder: str = ALL_NOTES_VIEW
    selected_note_id: Optional[str] = None
    search: str = ""
    active_tag: Optional[str] = None


Listener = Callable[[StoreState, StoreState], None]


def filter_notes(
    notes: Iterable[Note],
    view: str = ALL_NOTES_VIEW,
    search: str = "",
    tag: Optional[str] = None,
) -> List[Note]:
    """Apply the view, search and tag filters; all must match.

    Args:
        notes: Notes to filter, order is kept.
        view: "Trash", "All Notes", "Pinned" or a folder name.
        search: Case-insensitive substring of the title or the content.
        tag: Tag that must be among the note's extracted tags.
    """
    if view == TRASH_VIEW:
        filtered = [n for n in notes if n.folder == TRASH_FOLDER]
    elif view == ALL_NOTES_VIEW:
        filtered = [n for n in notes if n.folder != TRASH_FOLDER]
    elif view == PINNED_VIEW:
        filtered = [n for n in notes if n.pinned and n.folder != TRASH_FOLDER]
    else:
        filtered = [n for n in notes if n.folder == view and n.folder != TRASH_FOLDER]

    query = search.lower()
    if query:
        filtered = [
            n for n in filtered
            if query in n.title.lower() or query in n.content.lower()
        ]

    if tag:
        wanted = tag.lower()
        filtered = [n for n in filtered if wanted in extract_tags(n.content)]

    return filtered


class CollectionStore:
    """Owns the notes, folders, selection and filters.

    Mutations are serialized under a lock and subscribers are notified in
    mutation order. Mutators return the resulting notes snapshot.
    """

    UPDATABLE_FIELDS = ("content", "folder", "pinned")

    def __init__(self, state: Optional[StoreState] = None) -> None:
        self._state = state or StoreState()
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []
        self._tag_index = TagIndex()

    # ------------------------------------------------------------------
    # State access and subscription
    # ------------------------------------------------------------------

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def notes(self) -> Snapshot:
        return self._state.notes

    @property
    def folders(self) -> Tuple[str, ...]:
        return self._state.folders

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _mutate(self, change: Callable[[StoreState], Dict[str, Any]]) -> Snapshot:
        """Compute and commit a new state, then notify listeners."""
        with self._lock:
            previous = self._state
            updates = change(previous)
            if not updates:
                return previous.notes
            self._state = dataclasses.replace(previous, **updates)
            for listener in list(self._listeners):
                try:
                    listener(self._state, previous)
                except Exception as e:
                    logger.error(f"Store listener {listener!r} failed: {e}", exc_info=True)
            return self._state.notes

    @staticmethod
    def _replace_note(notes: Snapshot, note_id: str, change: Callable[[Note], Note]) -> Snapshot:
        found = False
        result = []
        for note in notes:
            if note.id == note_id:
                found = True
                note = change(note)
            result.append(note)
        if not found:
            raise NoteNotFoundError(note_id)
        return tuple(result)

    @staticmethod
    def _with_folder(folders: Tuple[str, ...], folder: str) -> Tuple[str, ...]:
        if not folder or folder == TRASH_FOLDER or folder in folders:
            return folders
        return folders + (folder,)

    # ------------------------------------------------------------------
    # Bulk loading
    # ------------------------------------------------------------------

    def set_notes(self, notes: Iterable[Note]) -> Snapshot:
        """Replace the collection, adding note-derived folders to known ones."""
        snapshot = tuple(notes)

        def change(s: StoreState) -> Dict[str, Any]:
            folders = s.folders
            for note in snapshot:
                folders = self._with_folder(folders, note.folder)
            return {"notes": snapshot, "folders": folders}

        return self._mutate(change)

    def set_folders(self, folders: Iterable[str]) -> Snapshot:
        names = tuple(dict.fromkeys(validate_folder_name(f) for f in folders))
        return self._mutate(lambda s: {"folders": names})

    # ------------------------------------------------------------------
    # Note mutations
    # ------------------------------------------------------------------

    def create_note(self, folder: str = "") -> Snapshot:
        """Create an empty note in ``folder`` and select it.

        The new note is first in the returned snapshot.
        """
        if folder:
            validate_folder_name(folder)
        now = utc_now_iso()
        note = Note(
            id=generate_id(),
            title=DEFAULT_TITLE,
            content="",
            folder=folder,
            pinned=False,
            created_at=now,
            updated_at=now,
        )
        logger.debug(f"Created note {note.id} in folder {folder!r}")
        return self._mutate(
            lambda s: {
                "notes": (note,) + s.notes,
                "selected_note_id": note.id,
                "folders": self._with_folder(s.folders, folder),
            }
        )

    def update_note(self, note_id: str, **fields: Any) -> Snapshot:
        """Merge ``fields`` into a note and refresh its updatedAt.

        Accepted fields are ``content``, ``folder`` and ``pinned``. The title
        is always re-derived from the content.

        Raises:
            ValidationError: For other fields or an unusable folder.
            NoteNotFoundError: If no note has ``note_id``.
        """
        unknown = sorted(set(fields) - set(self.UPDATABLE_FIELDS))
        if unknown:
            raise ValidationError(
                f"Cannot update note field(s): {', '.join(unknown)}",
                field=unknown[0],
                code=ErrorCode.NOTE_VALIDATION_FAILED,
            )
        # model_copy does not validate, so check types here
        folder = fields.get("folder")
        if "folder" in fields and not isinstance(folder, str):
            raise ValidationError("Note folder must be a string", field="folder", value=folder)
        if folder:
            validate_folder_name(folder)
        if "content" in fields and not isinstance(fields["content"], str):
            raise ValidationError("Note content must be a string", field="content")

        def revise(note: Note) -> Note:
            update: Dict[str, Any] = dict(fields)
            if "pinned" in update:
                update["pinned"] = bool(update["pinned"])
            if "folder" in update and note.folder == TRASH_FOLDER and update["folder"] != note.folder:
                update["original_folder"] = None
            update["title"] = extract_title(update.get("content", note.content))
            update["updated_at"] = next_timestamp(note.updated_at)
            return note.model_copy(update=update)

        def change(s: StoreState) -> Dict[str, Any]:
            updates: Dict[str, Any] = {"notes": self._replace_note(s.notes, note_id, revise)}
            if folder:
                updates["folders"] = self._with_folder(s.folders, folder)
            return updates

        return self._mutate(change)

    def toggle_pin(self, note_id: str) -> Snapshot:
        def revise(note: Note) -> Note:
            return note.model_copy(
                update={"pinned": not note.pinned, "updated_at": next_timestamp(note.updated_at)}
            )

        return self._mutate(lambda s: {"notes": self._replace_note(s.notes, note_id, revise)})

    def move_to_trash(self, note_id: str) -> Snapshot:
        """Move a note to the trash, remembering the folder it came from."""

        def revise(note: Note) -> Note:
            return note.model_copy(
                update={
                    "original_folder": (
                        note.folder if note.folder != TRASH_FOLDER else note.original_folder
                    ),
                    "folder": TRASH_FOLDER,
                    "updated_at": next_timestamp(note.updated_at),
                }
            )

        return self._mutate(
            lambda s: {
                "notes": self._replace_note(s.notes, note_id, revise),
                "selected_note_id": None if s.selected_note_id == note_id else s.selected_note_id,
            }
        )

    def restore_from_trash(self, note_id: str) -> Snapshot:
        """Return a trashed note to the folder it was trashed from.

        Notes trashed without a remembered folder go back to unfiled. The
        folder is re-added to the folder list if it was deleted meanwhile.
        Restoring a note that is not in the trash changes nothing.
        """

        def change(s: StoreState) -> Dict[str, Any]:
            current = self.get_note(note_id, s.notes)
            if current.folder != TRASH_FOLDER:
                return {}
            target = current.original_folder or ""

            def revise(note: Note) -> Note:
                return note.model_copy(
                    update={
                        "folder": target,
                        "original_folder": None,
                        "updated_at": next_timestamp(note.updated_at),
                    }
                )

            return {
                "notes": self._replace_note(s.notes, note_id, revise),
                "folders": self._with_folder(s.folders, target),
            }

        return self._mutate(change)

    def delete_forever(self, note_id: str) -> Snapshot:
        """Remove a note from the collection for good."""

        def change(s: StoreState) -> Dict[str, Any]:
            self.get_note(note_id, s.notes)
            return {
                "notes": tuple(n for n in s.notes if n.id != note_id),
                "selected_note_id": None if s.selected_note_id == note_id else s.selected_note_id,
            }

        return self._mutate(change)

    # ------------------------------------------------------------------
    # Folder mutations
    # ------------------------------------------------------------------

    def add_folder(self, name: str) -> Snapshot:
        validate_folder_name(name)
        return self._mutate(
            lambda s: {} if name in s.folders else {"folders": s.folders + (name,)}
        )

    def delete_folder(self, name: str) -> Snapshot:
        """Drop a folder and move every note in it to the trash.

        Each moved note remembers ``name`` as its original folder. A view
        showing the folder falls back to "All Notes", and a selection that
        now points into the trash is cleared.
        """

        def revise(note: Note) -> Note:
            if note.folder != name:
                return note
            return note.model_copy(
                update={
                    "original_folder": name,
                    "folder": TRASH_FOLDER,
                    "updated_at": next_timestamp(note.updated_at),
                }
            )

        def change(s: StoreState) -> Dict[str, Any]:
            notes = tuple(revise(n) for n in s.notes)
            selected = s.selected_note_id
            if selected is not None:
                selected_note = next((n for n in notes if n.id == selected), None)
                if selected_note is not None and selected_note.folder == TRASH_FOLDER:
                    selected = None
            return {
                "notes": notes,
                "folders": tuple(f for f in s.folders if f != name),
                "selected_note_id": selected,
                "active_folder": ALL_NOTES_VIEW if s.active_folder == name else s.active_folder,
            }

        logger.info(f"Deleting folder {name!r}")
        return self._mutate(change)

    # ------------------------------------------------------------------
    # Selection and filters
    # ------------------------------------------------------------------

    def set_active_folder(self, view: str) -> Snapshot:
        """Switch the view; the tag filter is cleared."""
        if view not in SPECIAL_VIEWS:
            validate_folder_name(view)
        return self._mutate(lambda s: {"active_folder": view, "active_tag": None})

    def select_note(self, note_id: Optional[str]) -> Snapshot:
        return self._mutate(lambda s: {"selected_note_id": note_id})

    def set_search(self, query: str) -> Snapshot:
        return self._mutate(lambda s: {"search": query})

    def set_active_tag(self, tag: Optional[str]) -> Snapshot:
        value = tag.lstrip("#").lower() if tag else None
        return self._mutate(lambda s: {"active_tag": value or None})

    # ------------------------------------------------------------------
    # Selectors
    # ------------------------------------------------------------------

    def get_note(self, note_id: str, notes: Optional[Snapshot] = None) -> Note:
        for note in self._state.notes if notes is None else notes:
            if note.id == note_id:
                return note
        raise NoteNotFoundError(note_id)

    def selected_note(self) -> Optional[Note]:
        state = self._state
        if state.selected_note_id is None:
            return None
        return next((n for n in state.notes if n.id == state.selected_note_id), None)

    def filtered_notes(self) -> List[Note]:
        """Notes matching the active view, search and tag filters."""
        state = self._state
        return filter_notes(state.notes, state.active_folder, state.search, state.active_tag)

    def pinned_count(self) -> int:
        return sum(1 for n in self._state.notes if n.pinned and n.folder != TRASH_FOLDER)

    def trash_count(self) -> int:
        return sum(1 for n in self._state.notes if n.folder == TRASH_FOLDER)

    def folder_count(self, folder: str) -> int:
        return sum(1 for n in self._state.notes if n.folder == folder)

    def all_tags(self) -> List[TagCount]:
        """Tag index of the current collection, rebuilt only when it changes."""
        return self._tag_index.get(self._state.notes)
