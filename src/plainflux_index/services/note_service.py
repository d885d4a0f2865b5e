"""Service layer for user-driven note operations."""
import datetime
import logging
import os
import re
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from plainflux_index.config import config
from plainflux_index.exceptions import (
    BlockNotFoundError,
    ErrorCode,
    IndexIOError,
    NoteNotFoundError,
    PlainfluxError,
    TodoNotFoundError,
    ValidationError,
)
from plainflux_index.models.schema import GraphData, GraphEdge, GraphNode, Link
from plainflux_index.services.recurrence_service import RecurrenceService
from plainflux_index.storage.index_store import IndexStore
from plainflux_index.storage.link_resolver import NOTE_SUFFIX, LinkResolver, iter_note_files
from plainflux_index.storage.markdown_parser import (
    extract_block_section,
    extract_links,
    slugify_heading,
    split_link_target,
)
from plainflux_index.utils import (
    atomic_write_text,
    ensure_within_root,
    file_mtime,
    read_note_file,
    title_from_path,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

CHECKBOX_PATTERN = re.compile(r"^(\s*[-*]\s*)\[([ xX])\]")
# Characters that cannot appear in a note name
_INVALID_NAME_CHARS = re.compile(r'[\\/:*?"<>|]')


def toggle_todo_line(
    content: str, line_number: int, completed: Optional[bool] = None
) -> Optional[str]:
    """Rewrite the checkbox on one physical line of a note.

    By default the box is flipped: ``[ ]`` becomes ``[x]``, while ``[x]``
    and ``[X]`` become ``[ ]``. Passing ``completed`` sets it instead. All
    other lines, line endings and the trailing newline are left as they are.

    Returns:
        The new content, or None if that line holds no checkbox.
    """
    lines = content.split("\n")
    index = line_number - 1
    if index < 0 or index >= len(lines):
        return None
    match = CHECKBOX_PATTERN.match(lines[index])
    if not match:
        return None
    if completed is None:
        completed = match.group(2) == " "
    mark = "x" if completed else " "
    lines[index] = f"{match.group(1)}[{mark}]" + lines[index][match.end():]
    return "\n".join(lines)


def _link_pattern(name: str) -> "re.Pattern[str]":
    """Matches ``[[name]]``, ``[[name.md]]`` and ``[[name#block]]``."""
    return re.compile(
        r"\[\[" + re.escape(name) + r"(?:\.md)?(?:#[^\]]*)?\]\]",
        re.IGNORECASE,
    )


class NoteService:
    """Note operations triggered by the user.

    Every operation keeps the files and the index in step, and errors
    propagate to the caller. Paths must lie inside the notes root.
    """

    def __init__(
        self,
        store: IndexStore,
        notes_root: Optional[PathLike] = None,
        recurrence: Optional[RecurrenceService] = None,
        reserved_folders: Optional[Sequence[str]] = None,
    ) -> None:
        self.store = store
        self.notes_root = Path(notes_root or config.get_notes_dir()).resolve()
        self.reserved_folders = tuple(
            store.reserved_folders if reserved_folders is None else reserved_folders
        )
        self.recurrence = recurrence or RecurrenceService(store, self.notes_root)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate(self, path: PathLike) -> Path:
        return ensure_within_root(path, self.notes_root)

    def _validate_name(self, name: str) -> str:
        name = name.strip()
        if name.endswith(NOTE_SUFFIX):
            name = name[: -len(NOTE_SUFFIX)]
        if not name or name in (".", "..") or _INVALID_NAME_CHARS.search(name):
            raise ValidationError(
                f"Invalid note name: {name!r}",
                field="name",
                value=name,
            )
        return name

    def _index(self, path: Path, content: Optional[str] = None) -> None:
        """Re-index one file and record its mtime."""
        if content is None:
            content = read_note_file(path)
        self.store.reindex_note(
            str(path), title_from_path(path), content, self.notes_root
        )
        self.store.set_cached_mtime(str(path), *file_mtime(path))

    def _forget(self, path: Path) -> None:
        self.store.remove_note(str(path))
        self.store.remove_cached_mtime(str(path))

    def _reindex_quietly(self, paths: Iterable[str]) -> List[str]:
        """Re-index other notes after a change they depend on.

        Failures are logged and skipped.

        Returns:
            The paths that were re-indexed.
        """
        done = []
        for key in dict.fromkeys(paths):
            path = Path(key)
            if not path.is_file():
                continue
            try:
                self._index(path)
            except PlainfluxError as e:
                logger.error(f"Failed to re-index {path.name}: {e}")
                continue
            done.append(key)
        return done

    def _relink(self, name: str, exclude: Path) -> List[str]:
        """Re-index notes containing a link to ``name``."""
        pattern = _link_pattern(name)
        referrers = []
        for path in self.list_notes():
            if path == exclude:
                continue
            try:
                content = read_note_file(path)
            except IndexIOError as e:
                logger.warning(f"Skipping unreadable note {path.name}: {e}")
                continue
            if pattern.search(content):
                referrers.append(str(path))
        relinked = self._reindex_quietly(referrers)
        if relinked:
            logger.info(f"Re-indexed {len(relinked)} notes linking to '{name}'")
        return relinked

    def _require_file(self, path: Path) -> Path:
        if not path.is_file():
            raise NoteNotFoundError(str(path))
        return path

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def list_notes(self) -> List[Path]:
        return list(iter_note_files(self.notes_root, self.reserved_folders))

    def read_note(self, path: PathLike) -> str:
        return read_note_file(self._require_file(self._validate(path)))

    def get_outgoing_links(self, path: PathLike) -> List[str]:
        """Raw link targets written in a note, ``#block`` suffixes included.

        Repeated targets are listed once, in first-seen order.
        """
        return list(dict.fromkeys(extract_links(self.read_note(path))))

    # ------------------------------------------------------------------
    # Todos
    # ------------------------------------------------------------------

    def toggle_todo(self, path: PathLike, line_number: int) -> str:
        """Toggle a todo in the index and in its file.

        When a recurring todo becomes completed the next instance is
        written to today's daily note. Failing to do so is logged and
        does not undo the toggle.

        Returns:
            The note's new content.

        Raises:
            TodoNotFoundError: If no todo is indexed on that line, or the
                line in the file no longer holds a checkbox.
            IndexIOError: If the file cannot be rewritten; the index is
                restored to its previous state.
        """
        path = self._require_file(self._validate(path))
        key = str(path)
        todo = self.store.get_todo(key, line_number)
        if todo is None:
            raise TodoNotFoundError(key, line_number)

        content = read_note_file(path)
        new_content = toggle_todo_line(content, line_number, not todo.is_completed)
        if new_content is None:
            logger.warning(
                f"Line {line_number} of {path.name} is no longer a todo; re-indexing"
            )
            self._index(path, content)
            raise TodoNotFoundError(key, line_number)

        completed = self.store.toggle_todo(key, line_number)
        try:
            if completed == todo.is_completed:
                # Toggled concurrently since it was read
                new_content = toggle_todo_line(content, line_number, completed)
            atomic_write_text(path, new_content)
        except IndexIOError:
            self.store.toggle_todo(key, line_number)
            raise
        # The file may hold edits made since it was last indexed
        self._index(path, new_content)

        if completed and todo.recurrence_pattern:
            try:
                self.recurrence.create_next_instance(todo)
            except PlainfluxError as e:
                logger.error(
                    f"Failed to create next instance of recurring todo "
                    f"at {path.name}:{line_number}: {e}"
                )
        return new_content

    # ------------------------------------------------------------------
    # Note lifecycle
    # ------------------------------------------------------------------

    def save_note(self, path: PathLike, content: str) -> Path:
        """Write a note and index it."""
        path = self._validate(path)
        atomic_write_text(path, content)
        self._index(path, content)
        return path

    def create_note(self, name: str, folder: str = "") -> Path:
        """Create ``<folder>/<name>.md`` with a title heading.

        Notes that already contained a link to ``name`` are re-indexed so
        the link now resolves.

        Raises:
            ValidationError: If the name is invalid or the note exists.
        """
        name = self._validate_name(name)
        path = self._validate(Path(folder) / f"{name}{NOTE_SUFFIX}")
        if path.exists():
            raise ValidationError(
                f"Note '{name}' already exists",
                field="name",
                value=name,
            )
        self.save_note(path, f"# {name}\n\n")
        self._relink(name, exclude=path)
        logger.info(f"Created note {path.name}")
        return path

    def delete_note(self, path: PathLike) -> None:
        """Delete a note file and its index rows.

        Notes linking to its name are re-indexed, so they fall back to
        another note with the same stem if there is one.
        """
        path = self._require_file(self._validate(path))
        try:
            path.unlink()
        except OSError as e:
            raise IndexIOError(
                f"Failed to delete '{path.name}'",
                path=str(path),
                code=ErrorCode.IO_WRITE_FAILED,
                original_error=e,
            ) from e
        self._forget(path)
        self._relink(path.stem, exclude=path)
        logger.info(f"Deleted note {path.name}")

    def _relocate(self, source: Path, destination: Path) -> Path:
        if destination.exists():
            raise ValidationError(
                f"'{destination.name}' already exists in the destination folder",
                field="path",
                value=str(destination),
            )
        backlinks = self.store.get_backlinks(str(source))
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            os.replace(source, destination)
        except OSError as e:
            raise IndexIOError(
                f"Failed to move '{source.name}'",
                path=str(source),
                code=ErrorCode.IO_WRITE_FAILED,
                original_error=e,
            ) from e
        self._forget(source)
        self._index(destination)
        self._reindex_quietly(p for p in backlinks if p != str(source))
        return destination

    def move_note(self, path: PathLike, folder: str) -> Path:
        """Move a note into another folder under the root.

        Links by name keep resolving, so notes that linked to it are
        re-indexed against the new path.
        """
        source = self._require_file(self._validate(path))
        destination = self._validate(Path(folder) / source.name)
        if destination == source:
            return source
        moved = self._relocate(source, destination)
        logger.info(f"Moved note {source.name} to {folder or 'the notes root'}")
        return moved

    def rename_note(self, path: PathLike, new_name: str) -> Path:
        """Rename a note in place.

        Links to the old name stop resolving; links already written to
        the new name start resolving.
        """
        source = self._require_file(self._validate(path))
        new_name = self._validate_name(new_name)
        destination = self._validate(source.with_name(f"{new_name}{NOTE_SUFFIX}"))
        if destination == source:
            return source
        renamed = self._relocate(source, destination)
        self._relink(new_name, exclude=renamed)
        logger.info(f"Renamed note {source.name} to {renamed.name}")
        return renamed

    def get_daily_note(self, today: Optional[datetime.date] = None) -> Path:
        """Path of today's daily note, created from a template if missing."""
        today = today or datetime.date.today()
        path = self.recurrence.daily_note_path(today)
        if not path.exists():
            self.save_note(path, f"# {today.isoformat()}\n\n")
        return path

    # ------------------------------------------------------------------
    # Transclusion
    # ------------------------------------------------------------------

    def resolve_transclusion(self, link: str) -> str:
        """Return the text a ``[[Note]]`` or ``[[Note#block]]`` embeds.

        Raises:
            NoteNotFoundError: If the note does not resolve.
            BlockNotFoundError: If the note has no such heading.
        """
        target = link.strip()
        if target.startswith("[[") and target.endswith("]]"):
            target = target[2:-2]
        name, fragment = split_link_target(target)

        resolver = LinkResolver(self.notes_root, self.reserved_folders)
        resolved = resolver.resolve(name)
        if resolved is None:
            raise NoteNotFoundError(name)
        content = read_note_file(resolved)
        if not fragment:
            return content

        block = self.store.get_block(resolved, fragment) or self.store.get_block(
            resolved, slugify_heading(fragment)
        )
        section = extract_block_section(content, block.line_number) if block else None
        if section is None:
            raise BlockNotFoundError(resolved, fragment)
        return section

    # ------------------------------------------------------------------
    # Graphs
    # ------------------------------------------------------------------

    def _graph(self, links: List[Link], include: Iterable[str]) -> GraphData:
        existing = {str(p): title_from_path(p) for p in self.list_notes()}
        wanted = set(include)
        for link in links:
            wanted.add(link.from_note)
            wanted.add(link.to_note)
        nodes = [
            GraphNode(id=path, label=existing[path], title=existing[path])
            for path in sorted(wanted)
            if path in existing
        ]
        edges = [GraphEdge(source=link.from_note, target=link.to_note) for link in links]
        return GraphData(nodes=nodes, edges=edges)

    def get_global_graph(self) -> GraphData:
        """Every link, with a node for each existing note that has links."""
        return self._graph(self.store.get_all_links(), ())

    def get_local_graph(self, path: PathLike) -> GraphData:
        """A note and the notes it links to or is linked from."""
        key = str(self._validate(path))
        return self._graph(self.store.get_links_for_note(key), (key,))
