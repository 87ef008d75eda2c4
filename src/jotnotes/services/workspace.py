"""Workspace: one notes root, its store and its reconciliation engine.

The workspace hydrates the store from disk, wires the engine to it and
owns the disk side of folder operations that the store cannot do alone.
"""
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from jotnotes.config import JotConfig, config
from jotnotes.exceptions import ErrorCode, FolderError, StorageError
from jotnotes.models.schema import Snapshot, validate_folder_name
from jotnotes.observability import timed_operation
from jotnotes.services.collection_store import CollectionStore
from jotnotes.services.reconciler import FlushResult, ReconciliationEngine
from jotnotes.storage.directory_mapper import DirectoryMapper

logger = logging.getLogger(__name__)


@dataclass
class FolderRemoval:
    """Outcome of the disk side of a folder deletion."""

    folder: str
    moved_ids: List[str] = field(default_factory=list)
    flush: Optional[FlushResult] = None
    removed: bool = False
    error: Optional[FolderError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Workspace:
    """A notes root opened for editing.

    Args:
        root: The notes root. Resolved from configuration when omitted.
        jot_config: Runtime settings; the module-level config by default.
        store: Store to hydrate; a fresh one by default.
    """

    def __init__(
        self,
        root: Optional[Path] = None,
        jot_config: Optional[JotConfig] = None,
        store: Optional[CollectionStore] = None,
    ) -> None:
        self.config = jot_config or config
        self.root = Path(root) if root is not None else self.config.require_notes_root()
        self.mapper = DirectoryMapper(self.root)
        self.store = store or CollectionStore()
        self.engine = ReconciliationEngine(
            self.mapper,
            snapshot_source=lambda: self.store.notes,
            debounce_seconds=self.config.debounce_seconds,
            max_workers=self.config.flush_workers,
        )
        self._folder_executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="jotnotes-folders"
        )
        self._opened = False
        self._closed = False

    def __enter__(self) -> "Workspace":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> "Workspace":
        """Hydrate the store from disk, then start reconciling.

        The engine is seeded with the hydrated snapshot and subscribed only
        afterwards, so loading never writes anything back.
        """
        if self._opened:
            return self
        try:
            self.mapper.ensure_dirs()
        except StorageError as e:
            logger.error(f"Cannot prepare notes root {self.root}: {e}")

        result = self.mapper.scan_all()
        self.store.set_folders(result.folders)
        self.store.set_notes(result.notes)
        self.engine.seed(self.store.notes)
        self.engine.attach(self.store)
        self._opened = True
        logger.info(f"Opened workspace at {self.root}")
        return self

    def create_folder(self, name: str) -> Snapshot:
        """Add a folder to the store and create its directory."""
        snapshot = self.store.add_folder(name)
        try:
            self.mapper.create_folder_dir(name)
        except StorageError as e:
            # The folder still exists in memory; its directory appears on first write
            logger.warning(f"Could not create directory for folder {name}: {e}")
        return snapshot

    def delete_folder(self, name: str) -> "Future[FolderRemoval]":
        """Delete a folder, moving its notes to the trash.

        The store is updated before this returns. The disk side (flushing
        the moved notes, then removing the folder directory) runs in the
        background; the returned future reports how it went and never
        raises for I/O failures.
        """
        validate_folder_name(name)
        moved_ids = [n.id for n in self.store.notes if n.folder == name]
        self.store.delete_folder(name)
        logger.info(f"Folder {name} deleted, {len(moved_ids)} note(s) moved to trash")
        return self._folder_executor.submit(self._remove_folder, name, moved_ids)

    def _remove_folder(self, name: str, moved_ids: List[str]) -> FolderRemoval:
        removal = FolderRemoval(folder=name, moved_ids=moved_ids)
        moved = set(moved_ids)
        # Moved notes must be out of the directory before it goes away
        with self.engine.exclusive():
            with timed_operation("remove_folder", folder=name) as op:
                op["moved"] = len(moved_ids)
                removal.flush = self.engine.flush()
                stuck = [note_id for note_id in removal.flush.failed_ids if note_id in moved]
                if stuck:
                    removal.error = FolderError(
                        f"Kept directory of folder {name}: "
                        f"{len(stuck)} note(s) could not be moved to the trash",
                        folder=name,
                        code=ErrorCode.FOLDER_REMOVE_FAILED,
                    )
                    logger.error(str(removal.error))
                    return removal
                try:
                    removal.removed = self.mapper.remove_folder_dir(name)
                except StorageError as e:
                    removal.error = FolderError(
                        f"Kept directory of folder {name}: {e.message}",
                        folder=name,
                        code=ErrorCode.FOLDER_REMOVE_FAILED,
                        original_error=e,
                    )
                    logger.error(str(removal.error))
                op["removed"] = removal.removed
        return removal

    def flush(self) -> FlushResult:
        return self.engine.flush()

    def close(self, flush: bool = True) -> Optional[FlushResult]:
        """Finish background folder work and tear the engine down.

        Args:
            flush: Write pending changes first. When False they are lost.
        """
        if self._closed:
            return None
        self._closed = True
        self._folder_executor.shutdown(wait=True)
        result = self.engine.teardown(flush=flush and self._opened)
        logger.info(f"Closed workspace at {self.root}")
        return result
