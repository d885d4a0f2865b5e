"""Repository for link storage and retrieval."""
import logging
from typing import Iterable, List

from sqlalchemy import delete, func, insert, or_, select
from sqlalchemy.orm import Session

from plainflux_index.models.db_models import DBLink
from plainflux_index.models.schema import Link

logger = logging.getLogger(__name__)


class LinkRepository:
    """Repository for resolved links between note files.

    Write methods run inside a session supplied by the caller so that
    they share the caller's transaction; read methods open their own.
    """

    def __init__(self, session_factory):
        """Initialize the link repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
        """
        self.session_factory = session_factory

    def replace_for_note(
        self, session: Session, from_note: str, to_notes: Iterable[str]
    ) -> int:
        """Replace every outgoing link of a note.

        Repeated targets collapse to one edge.

        Returns:
            Number of distinct links stored.
        """
        session.execute(delete(DBLink).where(DBLink.from_note == from_note))
        rows = [{"from_note": from_note, "to_note": to} for to in dict.fromkeys(to_notes)]
        if rows:
            session.execute(insert(DBLink).prefix_with("OR IGNORE"), rows)
        return len(rows)

    def delete_for_note(self, session: Session, note_path: str) -> None:
        """Delete links from and to a note."""
        session.execute(
            delete(DBLink).where(
                or_(DBLink.from_note == note_path, DBLink.to_note == note_path)
            )
        )

    def get_backlinks(self, note_path: str) -> List[str]:
        """Get the paths of notes that link to this note."""
        with self.session_factory() as session:
            return list(
                session.scalars(
                    select(DBLink.from_note)
                    .where(DBLink.to_note == note_path)
                    .order_by(DBLink.from_note)
                ).all()
            )

    def get_outgoing(self, note_path: str) -> List[str]:
        """Get the resolved paths this note links to."""
        with self.session_factory() as session:
            return list(
                session.scalars(
                    select(DBLink.to_note)
                    .where(DBLink.from_note == note_path)
                    .order_by(DBLink.id)
                ).all()
            )

    def get_all(self) -> List[Link]:
        """Get every link edge."""
        with self.session_factory() as session:
            rows = session.execute(
                select(DBLink.from_note, DBLink.to_note).order_by(
                    DBLink.from_note, DBLink.to_note
                )
            ).all()
            return [Link(from_note=row[0], to_note=row[1]) for row in rows]

    def get_for_note(self, note_path: str) -> List[Link]:
        """Get links in either direction touching a note."""
        with self.session_factory() as session:
            rows = session.execute(
                select(DBLink.from_note, DBLink.to_note)
                .where(or_(DBLink.from_note == note_path, DBLink.to_note == note_path))
                .order_by(DBLink.from_note, DBLink.to_note)
            ).all()
            return [Link(from_note=row[0], to_note=row[1]) for row in rows]

    def count(self, session: Session) -> int:
        return session.scalar(select(func.count()).select_from(DBLink)) or 0
