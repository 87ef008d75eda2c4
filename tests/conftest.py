"""Common test fixtures for jotnotes."""

import pytest

from jotnotes.config import JotConfig
from jotnotes.models.schema import Note, generate_id, utc_now_iso
from jotnotes.observability import metrics
from jotnotes.services.collection_store import CollectionStore
from jotnotes.services.reconciler import ReconciliationEngine
from jotnotes.services.workspace import Workspace
from jotnotes.storage.directory_mapper import DirectoryMapper
from jotnotes.storage.front_matter import FrontMatterCodec


def make_note(**overrides) -> Note:
    """Build a Note with sensible defaults for tests."""
    now = utc_now_iso()
    fields = {
        "id": generate_id(),
        "title": "Untitled",
        "content": "",
        "folder": "",
        "pinned": False,
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    return Note(**fields)


@pytest.fixture
def note_factory():
    """Factory building notes, see make_note."""
    return make_note


@pytest.fixture
def notes_root(tmp_path):
    """Empty notes root directory."""
    root = tmp_path / "notes"
    root.mkdir()
    return root


@pytest.fixture
def codec():
    return FrontMatterCodec()


@pytest.fixture
def mapper(notes_root):
    return DirectoryMapper(notes_root)


@pytest.fixture
def store():
    return CollectionStore()


@pytest.fixture
def engine(mapper, store):
    """Engine attached to a store, with a long debounce so tests flush explicitly."""
    engine = ReconciliationEngine(mapper, debounce_seconds=60, max_workers=4)
    engine.attach(store)
    yield engine
    engine.teardown(flush=False)


@pytest.fixture
def test_config(tmp_path, notes_root):
    """Config pointing at temporary paths."""
    return JotConfig(
        notes_root=notes_root,
        app_config_path=tmp_path / "config.json",
        debounce_seconds=60,
        flush_workers=2,
        log_dir=tmp_path / "logs",
        log_level="INFO",
    )


@pytest.fixture
def workspace(test_config):
    """Opened workspace over the temporary notes root."""
    ws = Workspace(jot_config=test_config).open()
    yield ws
    ws.close(flush=False)


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Keep the process-wide metrics collector clean between tests."""
    metrics.reset()
    yield
    metrics.reset()
