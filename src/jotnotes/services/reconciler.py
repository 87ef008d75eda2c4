"""Debounced reconciliation of the note collection with the files on disk.

The engine keeps the last snapshot it synced. When the store changes it
waits for the debounce window to pass, diffs the current snapshot against
the synced one and writes or deletes exactly the files that changed.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, Iterator, List, Optional, Set, Tuple

from jotnotes.exceptions import StorageError
from jotnotes.models.schema import Note, Snapshot
from jotnotes.observability import timed_operation
from jotnotes.storage.directory_mapper import DirectoryMapper

if TYPE_CHECKING:
    from jotnotes.services.collection_store import CollectionStore, StoreState

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.8


class SyncState(str, Enum):
    """Where the engine is in its debounce cycle."""

    IDLE = "idle"
    PENDING = "pending"
    FLUSHING = "flushing"


class OpKind(str, Enum):
    WRITE = "write"
    DELETE = "delete"


@dataclass(frozen=True)
class FileOp:
    """One file operation for one note."""

    kind: OpKind
    note: Note
    path: Path


@dataclass
class SyncPlan:
    """File operations that bring the disk from one snapshot to another."""

    ops: List[FileOp] = field(default_factory=list)

    def by_note(self) -> Dict[str, List[FileOp]]:
        """Operations grouped per note id, each group in execution order."""
        groups: Dict[str, List[FileOp]] = {}
        for op in self.ops:
            groups.setdefault(op.note.id, []).append(op)
        return groups

    @property
    def writes(self) -> List[Path]:
        return [op.path for op in self.ops if op.kind is OpKind.WRITE]

    @property
    def deletes(self) -> List[Path]:
        return [op.path for op in self.ops if op.kind is OpKind.DELETE]

    def __len__(self) -> int:
        return len(self.ops)


@dataclass
class FlushResult:
    """Outcome of one flush cycle."""

    written: List[Path] = field(default_factory=list)
    deleted: List[Path] = field(default_factory=list)
    failed: List[Tuple[Path, str]] = field(default_factory=list)
    failed_ids: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def merge(self, other: "FlushResult") -> None:
        self.written.extend(other.written)
        self.deleted.extend(other.deleted)
        self.failed.extend(other.failed)
        self.failed_ids.extend(other.failed_ids)


def compute_diff(previous: Snapshot, current: Snapshot, mapper: DirectoryMapper) -> SyncPlan:
    """Compute the file operations between two snapshots.

    A note is dirty when it is new or its ``updated_at`` differs from the
    previous snapshot. A dirty note that changed folder has its old file
    deleted before the new one is written. Notes that disappeared have
    their old file deleted.

    Args:
        previous: Snapshot the disk currently reflects.
        current: Snapshot the disk should reflect.
        mapper: Resolves note paths.

    Returns:
        The plan, in note order of ``current`` followed by removed notes.
    """
    before = {note.id: note for note in previous}
    after = {note.id: note for note in current}
    plan = SyncPlan()

    for note in current:
        old = before.get(note.id)
        if old is not None and old.updated_at == note.updated_at:
            continue
        if old is not None and old.folder != note.folder:
            plan.ops.append(FileOp(OpKind.DELETE, old, mapper.path_for(old)))
        plan.ops.append(FileOp(OpKind.WRITE, note, mapper.path_for(note)))

    for old in previous:
        if old.id not in after:
            plan.ops.append(FileOp(OpKind.DELETE, old, mapper.path_for(old)))

    return plan


class ReconciliationEngine:
    """Keeps the notes root in step with the store's snapshots.

    Args:
        mapper: Directory mapper for the notes root.
        snapshot_source: Returns the current snapshot. Set by :meth:`attach`
            when not given.
        debounce_seconds: Quiet period after the last change before flushing.
        max_workers: Threads used to apply one flush's per-note operations.
    """

    def __init__(
        self,
        mapper: DirectoryMapper,
        snapshot_source: Optional[Callable[[], Snapshot]] = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        max_workers: int = 4,
    ) -> None:
        self.mapper = mapper
        self._snapshot_source = snapshot_source
        self._debounce_seconds = debounce_seconds
        self._max_workers = max(1, max_workers)

        # Guards the timer, generation, state and closed flag
        self._timer_lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._state = SyncState.IDLE
        self._closed = False

        # Held for a whole flush cycle; re-entrant so exclusive() can flush
        self._flush_lock = threading.RLock()
        self._last_synced: Snapshot = ()
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def last_synced(self) -> Snapshot:
        return self._last_synced

    @property
    def closed(self) -> bool:
        return self._closed

    # =========================================================================
    # Wiring
    # =========================================================================

    def seed(self, snapshot: Snapshot) -> None:
        """Declare that the disk already reflects ``snapshot``."""
        with self._flush_lock:
            self._last_synced = tuple(snapshot)

    def attach(self, store: "CollectionStore") -> None:
        """Subscribe to a store; only changes to its notes schedule a flush."""
        if self._snapshot_source is None:
            self._snapshot_source = lambda: store.notes
        self._unsubscribe = store.subscribe(self._on_store_change)

    def _on_store_change(self, state: "StoreState", previous: "StoreState") -> None:
        if state.notes is not previous.notes:
            self.notify()

    # =========================================================================
    # Debounce
    # =========================================================================

    def notify(self) -> None:
        """Signal a snapshot change. Starts or restarts the debounce timer."""
        with self._timer_lock:
            if self._closed:
                logger.debug("Ignoring change notification after teardown")
                return
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            self._timer = threading.Timer(
                self._debounce_seconds, self._on_timer, args=(self._generation,)
            )
            self._timer.daemon = True
            self._timer.start()
            if self._state is SyncState.IDLE:
                self._state = SyncState.PENDING

    def _on_timer(self, generation: int) -> None:
        """Called by the timer. Runs a cycle unless the timer went stale."""
        with self._timer_lock:
            if self._closed or generation != self._generation:
                return
            self._timer = None
        try:
            self._run_cycle()
        except Exception as e:
            logger.error(f"Background flush failed: {e}", exc_info=True)

    def _cancel_timer(self) -> None:
        """Cancel any pending timer and invalidate timers already firing."""
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._generation += 1

    # =========================================================================
    # Flushing
    # =========================================================================

    def flush(self) -> FlushResult:
        """Cancel the pending timer and run a flush cycle now."""
        self._cancel_timer()
        return self._run_cycle()

    @contextmanager
    def exclusive(self) -> Iterator["ReconciliationEngine"]:
        """Hold the flush lock so no cycle touches the disk meanwhile."""
        with self._flush_lock:
            yield self

    def _run_cycle(self) -> FlushResult:
        if self._snapshot_source is None:
            raise RuntimeError("ReconciliationEngine has no snapshot source; call attach() first")

        with self._flush_lock:
            with self._timer_lock:
                self._state = SyncState.FLUSHING
            try:
                current = tuple(self._snapshot_source())
                previous = self._last_synced
                plan = compute_diff(previous, current, self.mapper)
                if not plan.ops:
                    self._last_synced = current
                    return FlushResult()

                with timed_operation("flush", ops=len(plan)) as op:
                    result = self._apply(plan)
                    op["written"] = len(result.written)
                    op["deleted"] = len(result.deleted)
                    op["failed"] = len(result.failed)

                self._last_synced = _settle(previous, current, set(result.failed_ids))
                if result.failed:
                    logger.warning(
                        f"Flush finished with {len(result.failed)} failed file operation(s); "
                        "they are retried on the next flush"
                    )
                else:
                    logger.debug(
                        f"Flushed {len(result.written)} write(s), {len(result.deleted)} delete(s)"
                    )
                return result
            finally:
                with self._timer_lock:
                    self._state = SyncState.PENDING if self._timer is not None else SyncState.IDLE

    def _apply(self, plan: SyncPlan) -> FlushResult:
        """Run each note's operations in order, notes concurrently."""
        groups = plan.by_note()
        result = FlushResult()

        if len(groups) == 1 or self._max_workers == 1:
            outcomes = [self._apply_note(ops) for ops in groups.values()]
        else:
            with ThreadPoolExecutor(
                max_workers=min(self._max_workers, len(groups)),
                thread_name_prefix="jotnotes-flush",
            ) as pool:
                futures = [pool.submit(self._apply_note, ops) for ops in groups.values()]
                outcomes = [future.result() for future in futures]

        for outcome in outcomes:
            result.merge(outcome)
        return result

    def _apply_note(self, ops: List[FileOp]) -> FlushResult:
        """Apply one note's operations. A failure skips its remaining ones."""
        result = FlushResult()
        for op in ops:
            try:
                if op.kind is OpKind.WRITE:
                    result.written.append(self.mapper.write_note(op.note))
                elif self.mapper.delete_note_file(op.note):
                    result.deleted.append(op.path)
            except StorageError as e:
                logger.warning(f"Failed to {op.kind.value} {op.path}: {e}")
                result.failed.append((op.path, str(e)))
                result.failed_ids.append(op.note.id)
                break
        return result

    # =========================================================================
    # Teardown
    # =========================================================================

    def teardown(self, flush: bool = True) -> Optional[FlushResult]:
        """Stop reacting to changes.

        Args:
            flush: Write pending changes before returning. When False they
                are abandoned.

        Returns:
            The final flush result, or None when nothing was flushed.
        """
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        with self._timer_lock:
            if self._closed:
                return None
            self._closed = True
            pending = self._timer is not None
        self._cancel_timer()

        result = None
        if flush and self._snapshot_source is not None:
            result = self._run_cycle()
        elif pending:
            logger.info("Abandoning pending changes on teardown")
        logger.info("Reconciliation engine shut down")
        return result


def _settle(previous: Snapshot, current: Snapshot, failed_ids: Set[str]) -> Snapshot:
    """Snapshot the disk reflects after a flush.

    Notes whose operations failed keep their previous version (or none), so
    the next diff sees them as dirty again.
    """
    if not failed_ids:
        return current
    before = {note.id: note for note in previous}
    settled = [note for note in current if note.id not in failed_ids]
    settled.extend(before[note_id] for note_id in failed_ids if note_id in before)
    return tuple(settled)
