"""Repository for per-file sync metadata."""
import logging
from typing import Optional, Set, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from plainflux_index.models.db_models import DBFileMetadata

logger = logging.getLogger(__name__)


class MetadataRepository:
    """Last-indexed modification times, keyed by note path."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def get_mtime(self, note_path: str) -> Optional[Tuple[int, int]]:
        """Return the stored (seconds, nanos) pair, or None if untracked."""
        with self.session_factory() as session:
            row = session.get(DBFileMetadata, note_path)
            if row is None:
                return None
            return row.mtime_seconds, row.mtime_nanos

    def set_mtime(self, session: Session, note_path: str, seconds: int, nanos: int) -> None:
        row = session.get(DBFileMetadata, note_path)
        if row is None:
            session.add(
                DBFileMetadata(
                    note_path=note_path, mtime_seconds=seconds, mtime_nanos=nanos
                )
            )
        else:
            row.mtime_seconds = seconds
            row.mtime_nanos = nanos

    def get_all_paths(self) -> Set[str]:
        with self.session_factory() as session:
            return set(session.scalars(select(DBFileMetadata.note_path)).all())

    def delete(self, session: Session, note_path: str) -> None:
        session.execute(
            delete(DBFileMetadata).where(DBFileMetadata.note_path == note_path)
        )

    def clear_all(self, session: Session) -> int:
        """Forget every tracked file.

        Returns:
            Number of entries removed.
        """
        return session.execute(delete(DBFileMetadata)).rowcount

    def count(self, session: Session) -> int:
        return session.scalar(select(func.count()).select_from(DBFileMetadata)) or 0
