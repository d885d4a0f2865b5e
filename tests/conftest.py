"""Common test fixtures for the Plainflux index."""

import logging
import os
import tempfile
from pathlib import Path

import pytest

from plainflux_index.config import config
from plainflux_index.observability import metrics
from plainflux_index.services.note_service import NoteService
from plainflux_index.services.recurrence_service import RecurrenceService
from plainflux_index.services.sync_service import SyncService
from plainflux_index.storage.index_store import IndexStore


@pytest.fixture
def temp_dirs():
    """Create temporary directories for notes and database."""
    with tempfile.TemporaryDirectory() as notes_dir:
        with tempfile.TemporaryDirectory() as db_dir:
            yield Path(notes_dir).resolve(), Path(db_dir).resolve()


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    notes_dir, db_dir = temp_dirs
    monkeypatch.setattr(config, "notes_dir", notes_dir)
    monkeypatch.setattr(config, "database_path", db_dir / "test_notes_cache.db")
    monkeypatch.setattr(config, "in_memory_db", False)
    monkeypatch.setattr(config, "reserved_folders", [".plainflux", "images", ".git"])
    monkeypatch.setattr(config, "daily_notes_folder", "Daily Notes")
    yield config


@pytest.fixture
def notes_root(test_config):
    """The resolved notes root."""
    return test_config.get_notes_dir()


@pytest.fixture
def store(test_config):
    """A file-backed index store."""
    index_store = IndexStore(db_url=test_config.get_db_url())
    yield index_store
    index_store.close()


@pytest.fixture
def memory_store(test_config):
    """An in-memory index store."""
    index_store = IndexStore(db_url="sqlite:///:memory:")
    yield index_store
    index_store.close()


@pytest.fixture
def sync_service(store, notes_root):
    return SyncService(store, notes_root)


@pytest.fixture
def recurrence_service(store, notes_root):
    return RecurrenceService(store, notes_root)


@pytest.fixture
def note_service(store, notes_root, recurrence_service):
    return NoteService(store, notes_root, recurrence=recurrence_service)


@pytest.fixture
def write_note(notes_root):
    """Write a note below the notes root and return its absolute path."""

    def _write(relative: str, content: str) -> Path:
        path = notes_root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def bump_mtime():
    """Move a file's mtime one second forward so a change is always seen."""

    def _bump(path: Path) -> None:
        st = os.stat(path)
        os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000_000))

    return _bump


@pytest.fixture
def index_note(store, notes_root):
    """Index note text for a path (the file need not exist)."""

    def _index(path: Path, content: str) -> None:
        store.reindex_note(str(path), Path(path).stem, content, notes_root)

    return _index


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield


@pytest.fixture
def restore_logging():
    """Undo handlers and level changes made by configure_logging."""
    package_logger = logging.getLogger("plainflux_index")
    handlers = list(package_logger.handlers)
    level = package_logger.level
    yield package_logger
    for handler in list(package_logger.handlers):
        if handler not in handlers:
            package_logger.removeHandler(handler)
            handler.close()
    package_logger.setLevel(level)
