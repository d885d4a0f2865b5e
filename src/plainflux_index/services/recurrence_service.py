"""Regeneration of recurring todos."""
import datetime
import logging
import re
from pathlib import Path
from typing import Optional, Union

from plainflux_index.config import config
from plainflux_index.exceptions import ErrorCode, ValidationError
from plainflux_index.models.schema import ParsedTodo
from plainflux_index.observability import traced
from plainflux_index.storage.index_store import IndexStore
from plainflux_index.storage.markdown_parser import strip_due_dates
from plainflux_index.utils import atomic_write_text, file_mtime, read_note_file

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

WEEKDAYS = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

_EXTRA_SPACES = re.compile(r"\s{2,}")


def next_occurrence(
    pattern: str, today: Optional[datetime.date] = None
) -> Optional[datetime.date]:
    """Compute the next date a recurring todo falls due.

    Supported patterns (case-insensitive): ``daily``, ``weekly``,
    ``monthly`` and a weekday name, optionally written ``every:<day>``.
    A weekday that is today moves a full week ahead.

    Args:
        pattern: The recurrence pattern.
        today: Reference date; defaults to the local date.

    Returns:
        The next date, or None for an unknown pattern.
    """
    today = today or datetime.date.today()
    pattern = pattern.strip().lower()
    if pattern.startswith("every:"):
        pattern = pattern[len("every:"):].strip()

    if pattern == "daily":
        return today + datetime.timedelta(days=1)
    if pattern == "weekly":
        return today + datetime.timedelta(weeks=1)
    if pattern == "monthly":
        # Days past the 28th do not exist in every month
        if today.day > 28:
            return today + datetime.timedelta(days=30)
        if today.month == 12:
            return today.replace(year=today.year + 1, month=1)
        return today.replace(month=today.month + 1)
    if pattern in WEEKDAYS:
        days_ahead = (WEEKDAYS[pattern] - today.weekday()) % 7 or 7
        return today + datetime.timedelta(days=days_ahead)

    logger.debug(f"Unknown recurrence pattern: {pattern!r}")
    return None


def build_recurring_line(todo: ParsedTodo, next_date: Optional[datetime.date]) -> str:
    """Render the open todo line for the next instance of ``todo``.

    The priority is carried over as ``!level`` unless the content already
    has that token. When a next date is known, every due-date token is
    replaced by a single ``@due(YYYY-MM-DD)``.
    """
    line = f"- [ ] {todo.content}"
    if todo.priority is not None:
        token = f"!{todo.priority.value}"
        if token not in line:
            line = f"{line} {token}"
    if next_date is not None:
        line = _EXTRA_SPACES.sub(" ", strip_due_dates(line)).strip()
        line = f"{line} @due({next_date.isoformat()})"
    return line


def daily_note_template(date_str: str) -> str:
    return f"# {date_str}\n\n## Tasks\n\n"


class RecurrenceService:
    """Appends the next instance of a completed recurring todo to the
    daily note of the current day."""

    def __init__(self, store: IndexStore, notes_root: Optional[PathLike] = None) -> None:
        self.store = store
        self.notes_root = Path(notes_root or config.get_notes_dir()).resolve()

    def daily_note_path(self, day: datetime.date) -> Path:
        return config.get_daily_notes_dir(self.notes_root) / f"{day.isoformat()}.md"

    @traced("create_recurring_instance")
    def create_next_instance(
        self, todo: ParsedTodo, today: Optional[datetime.date] = None
    ) -> Path:
        """Write the next open instance of a recurring todo.

        The destination is ``<daily notes>/<today>.md``, created from a
        minimal template when missing. The destination is re-indexed
        afterwards.

        Returns:
            Path of the note the new todo was appended to.

        Raises:
            ValidationError: If the todo has no recurrence pattern.
            IndexIOError: If the daily note cannot be read or written.
            StorageError: If re-indexing the daily note fails.
        """
        if not todo.recurrence_pattern:
            raise ValidationError(
                "Todo has no recurrence pattern",
                field="recurrence_pattern",
                code=ErrorCode.VALIDATION_FAILED,
            )

        today = today or datetime.date.today()
        next_date = next_occurrence(todo.recurrence_pattern, today)
        date_str = today.isoformat()
        path = self.daily_note_path(today)

        if path.exists():
            content = read_note_file(path)
        else:
            content = daily_note_template(date_str)

        if content and not content.endswith("\n"):
            content += "\n"
        content += build_recurring_line(todo, next_date) + "\n"

        atomic_write_text(path, content)
        self.store.reindex_note(str(path), date_str, content, self.notes_root)
        self.store.set_cached_mtime(str(path), *file_mtime(path))

        logger.info(
            f"Created next '{todo.recurrence_pattern}' instance in {path.name}"
            + (f" due {next_date.isoformat()}" if next_date else "")
        )
        return path
