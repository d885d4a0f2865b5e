"""Utility functions for the Plainflux index."""
import os
from pathlib import Path
from typing import Tuple, Union

from plainflux_index.exceptions import ErrorCode, IndexIOError, ValidationError

PathLike = Union[str, Path]


def escape_like_pattern(value: str) -> str:
    """Escape SQL LIKE wildcards to treat them as literals.

    Args:
        value: User input string that may contain LIKE wildcards

    Returns:
        String with '%', '_', and '\\' escaped for safe use in LIKE clauses

    Example:
        >>> escape_like_pattern("100% complete")
        '100\\% complete'
    """
    escape_table = str.maketrans(
        {
            "\\": "\\\\",  # Escape backslash first
            "%": "\\%",
            "_": "\\_",
        }
    )
    return value.translate(escape_table)


def title_from_path(path: PathLike) -> str:
    """A note's title is its filename without the extension."""
    return Path(path).stem or "Untitled"


def file_mtime(path: PathLike) -> Tuple[int, int]:
    """Return the modification time as (seconds, sub-second nanoseconds)."""
    mtime_ns = os.stat(path).st_mtime_ns
    return mtime_ns // 1_000_000_000, mtime_ns % 1_000_000_000


def read_note_file(path: PathLike) -> str:
    """Read a note as text.

    UTF-8 (with or without BOM) is tried first; files written by older
    editors fall back to Windows-1252, which decodes every byte.

    Raises:
        IndexIOError: If the file does not exist or cannot be read.
    """
    path = Path(path)
    try:
        raw = path.read_bytes()
    except FileNotFoundError as e:
        raise IndexIOError(
            f"File '{path.name}' does not exist",
            path=str(path),
            original_error=e,
        ) from e
    except OSError as e:
        raise IndexIOError(
            f"Failed to read file '{path.name}'",
            path=str(path),
            original_error=e,
        ) from e
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw.decode("cp1252", errors="replace")


def atomic_write_text(path: PathLike, content: str) -> None:
    """Write a file via a temporary sibling and an atomic rename.

    Parent directories are created as needed.

    Raises:
        IndexIOError: If the file cannot be written.
    """
    path = Path(path)
    temp_path = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(temp_path, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        os.replace(temp_path, path)
    except OSError as e:
        try:
            temp_path.unlink()
        except OSError:
            pass
        raise IndexIOError(
            f"Failed to write file '{path.name}'",
            path=str(path),
            code=ErrorCode.IO_WRITE_FAILED,
            original_error=e,
        ) from e


def ensure_within_root(path: PathLike, notes_root: PathLike) -> Path:
    """Validate that a path lies inside the notes root.

    Symlinks and '..' segments are resolved before the comparison. The
    path itself need not exist yet.

    Returns:
        The normalised absolute path. Symlinks are kept so the result
        matches the paths produced by walking the notes root.

    Raises:
        ValidationError: If the path escapes the notes root.
    """
    root = Path(notes_root).resolve()
    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = Path(notes_root) / candidate
    try:
        candidate.resolve().relative_to(root)
    except ValueError:
        raise ValidationError(
            "Path is outside the notes directory",
            field="path",
            value=str(path),
            code=ErrorCode.PATH_OUTSIDE_ROOT,
        )
    return Path(os.path.normpath(candidate))
