"""The index store: one locked handle over the SQLite index."""
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple, Union

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from plainflux_index.config import config
from plainflux_index.exceptions import ErrorCode, StorageError, TodoNotFoundError
from plainflux_index.models.db_models import get_session_factory, init_db, init_fts5
from plainflux_index.models.schema import Block, IndexStats, Link, Todo
from plainflux_index.observability import traced
from plainflux_index.storage.block_repository import BlockRepository
from plainflux_index.storage.fts_index import FtsIndex
from plainflux_index.storage.link_repository import LinkRepository
from plainflux_index.storage.link_resolver import LinkResolver
from plainflux_index.storage.markdown_parser import extract_links, parse_note
from plainflux_index.storage.metadata_repository import MetadataRepository
from plainflux_index.storage.tag_repository import TagRepository
from plainflux_index.storage.todo_repository import TodoRepository

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class IndexStore:
    """Single handle over the links, tags, todos, blocks, full-text and
    sync metadata tables.

    Every public method holds one ``threading.Lock`` for its whole
    duration. Writes that touch several tables run in one transaction, so
    a reader never sees a note half re-indexed.

    If an operation fails while holding the lock, the store is marked
    poisoned. The next caller logs the condition, clears it and carries
    on; the failed transaction was rolled back, so the data is intact.
    """

    def __init__(
        self,
        db_url: Optional[str] = None,
        engine: Optional[Engine] = None,
        reserved_folders: Optional[Sequence[str]] = None,
    ) -> None:
        """Open (and create if needed) the index database.

        Args:
            db_url: SQLAlchemy URL. Defaults to ``config.get_db_url()``.
                Ignored when ``engine`` is given.
            engine: Pre-configured engine to share with other components.
            reserved_folders: Folder names the link resolver skips.
                Defaults to ``config.reserved_folders``.
        """
        self.engine = engine if engine is not None else init_db(db_url)
        self.session_factory = get_session_factory(self.engine)
        self.reserved_folders = tuple(
            config.reserved_folders if reserved_folders is None else reserved_folders
        )

        self.links = LinkRepository(self.session_factory)
        self.tags = TagRepository(self.session_factory)
        self.todos = TodoRepository(self.session_factory)
        self.blocks = BlockRepository(self.session_factory)
        self.metadata = MetadataRepository(self.session_factory)
        self.fts = FtsIndex(
            self.engine, self.session_factory, available=init_fts5(self.engine)
        )

        self._lock = threading.Lock()
        self._poisoned = False

    # ------------------------------------------------------------------
    # Locking and error wrapping
    # ------------------------------------------------------------------

    @property
    def poisoned(self) -> bool:
        return self._poisoned

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._lock:
            if self._poisoned:
                logger.warning(
                    f"Index lock was poisoned by a failed operation "
                    f"(code {ErrorCode.LOCK_POISONED.name}); recovering"
                )
                self._poisoned = False
            try:
                yield
            except Exception:
                self._poisoned = True
                raise

    @contextmanager
    def _reading(self, operation: str, path: Optional[str] = None) -> Iterator[None]:
        with self._locked():
            try:
                yield
            except SQLAlchemyError as e:
                raise StorageError(
                    f"Index read failed during {operation}",
                    operation=operation,
                    path=path,
                    code=ErrorCode.STORAGE_READ_FAILED,
                    original_error=e,
                ) from e

    @contextmanager
    def _writing(
        self,
        operation: str,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED,
    ) -> Iterator[Session]:
        """Hold the lock and yield a session inside one transaction.

        The transaction commits when the block exits normally and rolls
        back on any exception.
        """
        with self._locked():
            try:
                with self.session_factory() as session, session.begin():
                    yield session
            except SQLAlchemyError as e:
                logger.error(f"Index {operation} failed for {path or 'index'}: {e}")
                raise StorageError(
                    f"Index {operation} failed",
                    operation=operation,
                    path=path,
                    code=code,
                    original_error=e,
                ) from e

    # ------------------------------------------------------------------
    # Note indexing
    # ------------------------------------------------------------------

    @traced("reindex_note")
    def reindex_note(
        self, path: PathLike, title: str, content: str, notes_root: PathLike
    ) -> None:
        """Replace everything derived from one note.

        Extraction and link resolution run before the lock is taken.
        Unresolvable link targets are dropped.

        Raises:
            StorageError: If the write fails; the previous rows are kept.
        """
        path = str(path)
        parsed = parse_note(content)
        resolver = LinkResolver(notes_root, self.reserved_folders)
        targets = resolver.resolve_many(parsed.links)

        with self._writing("reindex", path) as session:
            self.links.replace_for_note(session, path, targets)
            self.tags.replace_for_note(session, path, parsed.tags)
            self.todos.replace_for_note(session, path, parsed.todos)
            self.blocks.replace_for_note(session, path, parsed.blocks)
            self.fts.replace(session, path, title, content)

        logger.debug(
            f"Indexed {path}: {len(targets)} links, {len(parsed.tags)} tags, "
            f"{len(parsed.todos)} todos, {len(parsed.blocks)} blocks"
        )

    @traced("remove_note")
    def remove_note(self, path: PathLike) -> None:
        """Delete every derived row and the full-text entry of a note."""
        path = str(path)
        with self._writing("remove", path, ErrorCode.STORAGE_DELETE_FAILED) as session:
            self.links.delete_for_note(session, path)
            self.tags.delete_for_note(session, path)
            self.todos.delete_for_note(session, path)
            self.blocks.delete_for_note(session, path)
            self.fts.delete(session, path)

    # ------------------------------------------------------------------
    # Todos
    # ------------------------------------------------------------------

    def toggle_todo(self, path: PathLike, line_number: int) -> bool:
        """Flip the completion flag of the todo on a line.

        Returns:
            The new completion state.

        Raises:
            TodoNotFoundError: If no todo is indexed on that line.
        """
        path = str(path)
        with self._writing("toggle_todo", path) as session:
            new_state = self.todos.toggle(session, path, line_number)
        if new_state is None:
            raise TodoNotFoundError(path, line_number)
        return new_state

    def get_todo(self, path: PathLike, line_number: int) -> Optional[Todo]:
        with self._reading("get_todo", str(path)):
            return self.todos.get(str(path), line_number)

    def get_incomplete_todos(self) -> List[Todo]:
        with self._reading("get_incomplete_todos"):
            return self.todos.get_incomplete()

    def get_all_todos(self) -> List[Todo]:
        """Every todo ordered by path, then open before done, then line."""
        with self._reading("get_all_todos"):
            return self.todos.get_all()

    def get_todos_for_note(self, path: PathLike) -> List[Todo]:
        with self._reading("get_todos_for_note", str(path)):
            return self.todos.get_for_note(str(path))

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def get_backlinks(self, path: PathLike) -> List[str]:
        with self._reading("get_backlinks", str(path)):
            return self.links.get_backlinks(str(path))

    def get_outgoing_links(self, path: PathLike) -> List[str]:
        """Resolved paths a note links to, in link order."""
        with self._reading("get_outgoing_links", str(path)):
            return self.links.get_outgoing(str(path))

    def get_all_links(self) -> List[Link]:
        with self._reading("get_all_links"):
            return self.links.get_all()

    def get_links_for_note(self, path: PathLike) -> List[Link]:
        with self._reading("get_links_for_note", str(path)):
            return self.links.get_for_note(str(path))

    def find_notes_linking_to(self, names: Iterable[str]) -> List[str]:
        """Indexed notes whose stored content links to any of ``names``.

        Names compare the way links resolve: by case-insensitive stem,
        ignoring a ``.md`` suffix and any ``#fragment``. Unlike
        ``get_backlinks`` this also finds links that currently resolve
        nowhere or to another note with the same stem.
        """
        wanted = {LinkResolver.normalize_target(name).casefold() for name in names}
        wanted.discard("")
        if not wanted:
            return []
        with self._reading("find_notes_linking_to"), self.session_factory() as session:
            documents = self.fts.documents_with_links(session)
        return sorted(
            path
            for path, content in documents
            if any(
                LinkResolver.normalize_target(target).casefold() in wanted
                for target in extract_links(content)
            )
        )

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def get_all_tags(self) -> List[str]:
        with self._reading("get_all_tags"):
            return self.tags.get_all_tags()

    def get_notes_by_tag(self, tag: str) -> List[str]:
        with self._reading("get_notes_by_tag"):
            return self.tags.get_notes_by_tag(tag.lstrip("#"))

    def get_tags_for_note(self, path: PathLike) -> List[str]:
        with self._reading("get_tags_for_note", str(path)):
            return self.tags.get_tags_for_note(str(path))

    def get_tags_with_counts(self) -> Dict[str, int]:
        with self._reading("get_tags_with_counts"):
            return self.tags.get_with_counts()

    # ------------------------------------------------------------------
    # Blocks and search
    # ------------------------------------------------------------------

    def get_block(self, path: PathLike, block_id: str) -> Optional[Block]:
        with self._reading("get_block", str(path)):
            return self.blocks.get(str(path), block_id)

    def get_blocks_for_note(self, path: PathLike) -> List[Block]:
        with self._reading("get_blocks_for_note", str(path)):
            return self.blocks.get_for_note(str(path))

    @traced("search")
    def search(self, query: str, limit: Optional[int] = None) -> List[str]:
        """Full-text search.

        Args:
            query: Words to find. FTS5 syntax is honoured when present.
            limit: Maximum results; defaults to ``config.search_limit``.

        Returns:
            Note paths, most relevant first.
        """
        with self._reading("search"):
            results = self.fts.search(query, limit or config.search_limit)
        return [r["path"] for r in results]

    def rebuild_fts_index(self) -> int:
        """Rebuild the full-text index structures.

        Returns:
            Number of documents in the index.
        """
        with self._reading("rebuild_fts_index"):
            return self.fts.rebuild() if self.fts.available else 0

    def reset_fts_availability(self) -> bool:
        """Re-enable FTS5 search after it was disabled by a failed recovery.

        Returns:
            True if the FTS5 table passed its integrity check.
        """
        with self._reading("reset_fts_availability"):
            return self.fts.reset_availability()

    # ------------------------------------------------------------------
    # Sync metadata
    # ------------------------------------------------------------------

    def get_cached_mtime(self, path: PathLike) -> Optional[Tuple[int, int]]:
        with self._reading("get_cached_mtime", str(path)):
            return self.metadata.get_mtime(str(path))

    def set_cached_mtime(self, path: PathLike, seconds: int, nanos: int) -> None:
        with self._writing("set_cached_mtime", str(path)) as session:
            self.metadata.set_mtime(session, str(path), seconds, nanos)

    def remove_cached_mtime(self, path: PathLike) -> None:
        with self._writing(
            "remove_cached_mtime", str(path), ErrorCode.STORAGE_DELETE_FAILED
        ) as session:
            self.metadata.delete(session, str(path))

    def get_all_cached_paths(self) -> Set[str]:
        with self._reading("get_all_cached_paths"):
            return self.metadata.get_all_paths()

    def clear_all_metadata(self) -> int:
        """Forget every tracked mtime so the next sync re-indexes all files."""
        with self._writing(
            "clear_all_metadata", code=ErrorCode.STORAGE_DELETE_FAILED
        ) as session:
            removed = self.metadata.clear_all(session)
        logger.info(f"Cleared sync metadata for {removed} files")
        return removed

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def stats(self) -> IndexStats:
        """Row counts for every index table."""
        with self._reading("stats"), self.session_factory() as session:
            return IndexStats(
                links=self.links.count(session),
                tags=self.tags.count(session),
                todos=self.todos.count(session),
                blocks=self.blocks.count(session),
                documents=self.fts.count(session),
                tracked_files=self.metadata.count(session),
            )

    def close(self) -> None:
        """Dispose of the engine's connection pool."""
        self.engine.dispose()
