"""Incremental synchronisation of the index with the notes tree."""
import logging
import threading
from pathlib import Path
from typing import Collection, Iterable, List, Optional, Sequence, Tuple, Union

from plainflux_index.config import config
from plainflux_index.exceptions import IndexIOError, StorageError
from plainflux_index.models.schema import SyncReport
from plainflux_index.observability import timed_operation
from plainflux_index.storage.index_store import IndexStore
from plainflux_index.storage.link_resolver import iter_note_files
from plainflux_index.utils import (
    ensure_within_root,
    file_mtime,
    read_note_file,
    title_from_path,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class SyncService:
    """Keeps the index consistent with the markdown files on disk.

    Each pass walks the notes tree once. A file is re-indexed only when
    its modification time differs from the one recorded after it was
    last indexed; files that disappeared since the previous pass are
    removed from every table.
    """

    def __init__(
        self,
        store: IndexStore,
        notes_root: Optional[PathLike] = None,
        reserved_folders: Optional[Sequence[str]] = None,
    ) -> None:
        """Initialize the sync service.

        Args:
            store: The index to keep up to date.
            notes_root: Root of the notes tree. Defaults to the configured
                notes directory.
            reserved_folders: Folder names to skip. Defaults to the store's.
        """
        self.store = store
        self.notes_root = Path(notes_root or config.get_notes_dir()).resolve()
        self.reserved_folders = tuple(
            store.reserved_folders if reserved_folders is None else reserved_folders
        )
        # Total files re-indexed or removed over the service's lifetime
        self.files_touched = 0
        self._pass_lock = threading.Lock()

    def list_note_files(self) -> List[Path]:
        """Every note file under the root, in walk order."""
        return list(iter_note_files(self.notes_root, self.reserved_folders))

    def _index_file(self, path: Path, mtime: Tuple[int, int]) -> None:
        key = str(path)
        content = read_note_file(path)
        self.store.reindex_note(key, title_from_path(path), content, self.notes_root)
        self.store.set_cached_mtime(key, *mtime)

    def _relink(
        self,
        keys: Iterable[str],
        skip: Collection[str],
        failed: Optional[List[str]] = None,
    ) -> List[str]:
        """Re-index notes that link by name to any of the given paths.

        Removing a note also drops the links pointing at it, and a new
        file can satisfy links that resolved nowhere or to another file
        with the same stem. Either way the linking notes must be indexed
        again even though their own files did not change.

        Notes in ``skip`` and notes whose file is gone are left alone.
        Failures are logged and, when given, added to ``failed``.

        Returns:
            The re-indexed paths.
        """
        stems = {Path(key).stem for key in keys}
        relinked: List[str] = []
        if not stems:
            return relinked
        for key in self.store.find_notes_linking_to(stems):
            path = Path(key)
            if key in skip or not path.is_file():
                continue
            try:
                self._index_file(path, file_mtime(path))
            except (OSError, IndexIOError, StorageError) as e:
                logger.error(f"Failed to re-link {key}: {e}")
                if failed is not None:
                    failed.append(key)
                continue
            relinked.append(key)
        if relinked:
            logger.info(f"Re-indexed {len(relinked)} notes linking to added or removed notes")
        return relinked

    def sync(self, force: bool = False) -> SyncReport:
        """Run one sync pass.

        Args:
            force: Forget all recorded mtimes first so that every file is
                re-indexed. Existing rows stay in place until their file
                is indexed again.

        Unchanged notes that link to a created or deleted file by name are
        re-indexed at the end of the pass.

        Returns:
            What the pass did, per file.
        """
        with self._pass_lock, timed_operation(
            "sync", notes_dir=str(self.notes_root), force=force
        ) as op:
            report = SyncReport(forced=force)
            cached_paths = self.store.get_all_cached_paths()
            if force:
                self.store.clear_all_metadata()

            # Enumeration and stat happen without the store lock
            current_paths = set()
            for path in self.list_note_files():
                key = str(path)
                current_paths.add(key)
                try:
                    mtime = file_mtime(path)
                except OSError as e:
                    logger.error(f"Cannot stat {key}: {e}")
                    report.failed.append(key)
                    continue

                known = key in cached_paths
                if known and not force and self.store.get_cached_mtime(key) == mtime:
                    report.unchanged.append(key)
                    continue

                try:
                    self._index_file(path, mtime)
                except (IndexIOError, StorageError) as e:
                    logger.error(f"Failed to index {key}: {e}")
                    report.failed.append(key)
                    continue

                if known:
                    report.modified.append(key)
                else:
                    report.created.append(key)

            for key in sorted(cached_paths - current_paths):
                try:
                    self.store.remove_note(key)
                    self.store.remove_cached_mtime(key)
                except StorageError as e:
                    logger.error(f"Failed to remove stale entry {key}: {e}")
                    report.failed.append(key)
                    continue
                report.deleted.append(key)

            if report.unchanged:
                report.relinked = self._relink(
                    report.created + report.deleted,
                    skip=set(report.created + report.modified + report.failed),
                    failed=report.failed,
                )

            self.files_touched += report.files_touched
            op["files_touched"] = report.files_touched
            if report.failed:
                logger.warning(
                    f"Failed to sync {len(report.failed)} files: "
                    f"{report.failed[:5]}{'...' if len(report.failed) > 5 else ''}"
                )
            logger.info(f"Sync complete: {report.summary()}")
            return report

    def rebuild(self) -> SyncReport:
        """Re-index every note regardless of recorded mtimes."""
        return self.sync(force=True)

    def sync_file(self, path: PathLike) -> str:
        """Bring a single file's index entries up to date.

        Used after an editor reports that one note changed. Errors
        propagate to the caller. When the file appeared or disappeared,
        notes linking to it by name are re-indexed as well.

        Returns:
            One of "created", "modified", "unchanged" or "deleted"
            ("unchanged" also covers a missing file that was never indexed).
        """
        path = ensure_within_root(path, self.notes_root)
        key = str(path)
        cached = self.store.get_cached_mtime(key)

        if not path.is_file():
            if cached is None:
                return "unchanged"
            self.store.remove_note(key)
            self.store.remove_cached_mtime(key)
            self.files_touched += 1 + len(self._relink([key], skip=(key,)))
            return "deleted"

        mtime = file_mtime(path)
        if cached == mtime:
            return "unchanged"
        self._index_file(path, mtime)
        self.files_touched += 1
        if cached is None:
            self.files_touched += len(self._relink([key], skip=(key,)))
            return "created"
        return "modified"
