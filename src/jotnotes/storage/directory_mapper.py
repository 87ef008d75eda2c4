"""Mapping between logical note locations and the notes directory tree.

Layout under the notes root::

    <root>/<id>.md            unfiled note
    <root>/<folder>/<id>.md   note in <folder>
    <root>/.trash/<id>.md     trashed note

Only one level of folders exists; anything nested deeper is invisible.
"""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from jotnotes.exceptions import ErrorCode, StorageError
from jotnotes.models.schema import (
    NOTE_SUFFIX,
    TRASH_DIR,
    TRASH_FOLDER,
    Note,
    is_safe_note_id,
    is_valid_folder_value,
    validate_folder_name,
)
from jotnotes.observability import timed_operation
from jotnotes.storage.front_matter import FrontMatterCodec

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"


@dataclass
class ScanResult:
    """Notes and folders discovered under the notes root."""

    notes: List[Note] = field(default_factory=list)
    folders: List[str] = field(default_factory=list)


class DirectoryMapper:
    """Translates notes to paths and enumerates what is on disk.

    Args:
        root: The notes root directory. It does not need to exist yet.
        codec: Front matter codec used to read and write note files.
    """

    def __init__(self, root: Path, codec: Optional[FrontMatterCodec] = None) -> None:
        self.root = Path(root)
        self.codec = codec or FrontMatterCodec()

    @property
    def trash_dir(self) -> Path:
        return self.root / TRASH_DIR

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------

    def location_for(self, note: Note) -> Path:
        """Directory holding the note's file for its current folder state."""
        if note.folder == TRASH_FOLDER:
            return self.trash_dir
        if note.folder:
            if not is_valid_folder_value(note.folder):
                raise StorageError(
                    f"Folder {note.folder!r} does not map to a directory",
                    operation="locate",
                    code=ErrorCode.PATH_TRAVERSAL_DETECTED,
                )
            return self.root / note.folder
        return self.root

    def path_for(self, note: Note) -> Path:
        """Full path of the note's file."""
        return self.location_for(note) / note.file_name

    def folder_dir(self, name: str) -> Path:
        return self.root / validate_folder_name(name)

    # ------------------------------------------------------------------
    # Directories
    # ------------------------------------------------------------------

    def ensure_dirs(self) -> None:
        """Create the notes root if it does not exist yet.

        Raises:
            StorageError: If the directory cannot be created.
        """
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                "Failed to create notes root",
                operation="ensure_dirs",
                path=str(self.root),
                code=ErrorCode.STORAGE_MKDIR_FAILED,
                original_error=e,
            ) from e

    def create_folder_dir(self, name: str) -> Path:
        """Create the directory for a folder. No-op if it already exists."""
        path = self.folder_dir(name)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"Failed to create folder {name}",
                operation="create_folder",
                path=str(path),
                code=ErrorCode.STORAGE_MKDIR_FAILED,
                original_error=e,
            ) from e
        return path

    def remove_folder_dir(self, name: str) -> bool:
        """Remove a folder's directory once nothing is left in it.

        Temp files from interrupted writes are cleared first. Any other
        entry (a note filed elsewhere, an attachment, a nested directory)
        keeps the directory in place.

        Returns:
            True if a directory was removed, False if there was none.

        Raises:
            StorageError: If the directory is not empty or cannot be removed.
        """
        path = self.folder_dir(name)
        if not path.is_dir():
            return False
        try:
            leftovers = []
            for entry in sorted(os.listdir(path)):
                if _is_temp_file(entry) and (path / entry).is_file():
                    (path / entry).unlink(missing_ok=True)
                else:
                    leftovers.append(entry)
            if not leftovers:
                path.rmdir()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(
                f"Failed to remove folder {name}",
                operation="remove_folder",
                path=str(path),
                code=ErrorCode.STORAGE_DELETE_FAILED,
                original_error=e,
            ) from e
        if leftovers:
            raise StorageError(
                f"Folder {name} is not empty: {', '.join(leftovers)}",
                operation="remove_folder",
                path=str(path),
                code=ErrorCode.STORAGE_DIR_NOT_EMPTY,
            )
        return True

    # ------------------------------------------------------------------
    # Note files
    # ------------------------------------------------------------------

    def write_note(self, note: Note) -> Path:
        """Write a note's file at its current location, replacing any old copy.

        The text goes to a hidden temp file first and is moved into place, so
        a crash never leaves a half-written note behind.

        Returns:
            Path of the written file.

        Raises:
            StorageError: If the directory or file cannot be written, or the
                text cannot be encoded as UTF-8.
        """
        path = self.path_for(note)
        temp_path = path.with_name(f".{path.name}{TEMP_SUFFIX}")
        try:
            data = self.codec.encode(note).encode("utf-8")
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "wb") as f:
                f.write(data)
            os.replace(temp_path, path)
        except (OSError, UnicodeError) as e:
            try:
                temp_path.unlink(missing_ok=True)
            except OSError:
                pass
            raise StorageError(
                f"Failed to write note {note.id}",
                operation="write",
                path=str(path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e
        return path

    def delete_note_file(self, note: Note) -> bool:
        """Delete the file for a note at its location.

        Returns:
            True if a file was deleted, False if it did not exist.

        Raises:
            StorageError: If the file exists but cannot be deleted.
        """
        path = self.path_for(note)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(
                f"Failed to delete note {note.id}",
                operation="delete",
                path=str(path),
                code=ErrorCode.STORAGE_DELETE_FAILED,
                original_error=e,
            ) from e
        return True

    def read_note(self, path: Path, default_folder: str = "") -> Optional[Note]:
        """Read one note file. Returns None if it cannot be read."""
        try:
            with open(path, "r", encoding="utf-8", newline="") as f:
                text = f.read()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Cannot read note file {path.name}: {e}")
            return None
        return self.codec.decode_note(
            text, fallback_id=path.name[: -len(NOTE_SUFFIX)], default_folder=default_folder
        )

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def load_folders(self) -> List[str]:
        """Folder names found as subdirectories of the root."""
        _, directories = self._list_root()
        return [name for name in directories if _is_folder_dir(name)]

    def scan_all(self) -> ScanResult:
        """Read every note and folder under the root.

        Unreadable files and directories are skipped. A root that is
        missing or cannot be listed yields an empty result.
        """
        result = ScanResult()
        with timed_operation("scan", root=str(self.root)) as op:
            files, directories = self._list_root()

            for name in files:
                note = self.read_note(self.root / name)
                if note is not None:
                    result.notes.append(note)

            for name in directories:
                if name == TRASH_DIR:
                    result.notes.extend(self._scan_trash())
                elif _is_folder_dir(name):
                    result.folders.append(name)
                    result.notes.extend(self._scan_folder(name))

            op["notes"] = len(result.notes)
            op["folders"] = len(result.folders)
        logger.info(
            f"Scanned {self.root}: {len(result.notes)} notes, "
            f"{len(result.folders)} folders"
        )
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _list_root(self) -> Tuple[List[str], List[str]]:
        """Split the root's entries into note file names and directory names."""
        try:
            return _list_dir(self.root)
        except OSError as e:
            logger.warning(f"Cannot list notes root {self.root}: {e}")
            return [], []

    def _scan_folder(self, name: str) -> List[Note]:
        directory = self.root / name
        try:
            files, _ = _list_dir(directory)
        except OSError as e:
            logger.warning(f"Cannot list folder {name}: {e}")
            return []
        notes = []
        for file_name in files:
            note = self.read_note(directory / file_name, default_folder=name)
            if note is not None:
                notes.append(note)
        return notes

    def _scan_trash(self) -> List[Note]:
        try:
            files, _ = _list_dir(self.trash_dir)
        except OSError as e:
            logger.warning(f"Cannot list trash directory: {e}")
            return []
        notes = []
        for file_name in files:
            path = self.trash_dir / file_name
            try:
                with open(path, "r", encoding="utf-8", newline="") as f:
                    text = f.read()
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Cannot read trashed note {file_name}: {e}")
                continue
            # Location wins over whatever folder the metadata claims
            post = self.codec.decode(text)
            notes.append(
                self.codec.to_note(
                    post, fallback_id=file_name[: -len(NOTE_SUFFIX)], folder=TRASH_FOLDER
                )
            )
        return notes


def _is_temp_file(name: str) -> bool:
    return name.startswith(".") and name.endswith(NOTE_SUFFIX + TEMP_SUFFIX)


def _is_folder_dir(name: str) -> bool:
    # Hidden directories (.trash included) and unusable names are not folders
    return name != TRASH_FOLDER and is_valid_folder_value(name)


def _list_dir(directory: Path) -> Tuple[List[str], List[str]]:
    """List note files and subdirectories of ``directory``, sorted by name.

    Raises:
        OSError: If the directory itself cannot be listed.
    """
    files: List[str] = []
    directories: List[str] = []
    with os.scandir(directory) as entries:
        for entry in entries:
            try:
                if entry.is_dir():
                    directories.append(entry.name)
                elif entry.is_file() and entry.name.endswith(NOTE_SUFFIX):
                    if is_safe_note_id(entry.name[: -len(NOTE_SUFFIX)]):
                        files.append(entry.name)
            except OSError as e:
                logger.debug(f"Skipping unreadable entry {entry.name}: {e}")
    files.sort()
    directories.sort()
    return files, directories
