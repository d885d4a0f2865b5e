"""Repository for tag storage and retrieval."""
import logging
from typing import Dict, Iterable, List

from sqlalchemy import delete, func, insert, select
from sqlalchemy.orm import Session

from plainflux_index.models.db_models import DBTag

logger = logging.getLogger(__name__)


class TagRepository:
    """Repository for (tag, note) pairs.

    Tags are stored exactly as written: ``#Work`` and ``#work`` are
    different tags.
    """

    def __init__(self, session_factory):
        """Initialize the tag repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
        """
        self.session_factory = session_factory

    def replace_for_note(
        self, session: Session, note_path: str, tags: Iterable[str]
    ) -> int:
        """Replace the tags of a note.

        Returns:
            Number of distinct tags stored.
        """
        session.execute(delete(DBTag).where(DBTag.note_path == note_path))
        rows = [{"tag": tag, "note_path": note_path} for tag in dict.fromkeys(tags)]
        if rows:
            # INSERT OR IGNORE keeps the (tag, note) pair unique
            session.execute(insert(DBTag).prefix_with("OR IGNORE"), rows)
        return len(rows)

    def delete_for_note(self, session: Session, note_path: str) -> None:
        session.execute(delete(DBTag).where(DBTag.note_path == note_path))

    def get_all_tags(self) -> List[str]:
        """Get every distinct tag name, sorted."""
        with self.session_factory() as session:
            return list(
                session.scalars(select(DBTag.tag).distinct().order_by(DBTag.tag)).all()
            )

    def get_notes_by_tag(self, tag: str) -> List[str]:
        """Get the paths of notes carrying a tag.

        Args:
            tag: The tag name, without the leading '#'.

        Returns:
            Note paths in sorted order.
        """
        with self.session_factory() as session:
            return list(
                session.scalars(
                    select(DBTag.note_path)
                    .where(DBTag.tag == tag)
                    .order_by(DBTag.note_path)
                ).all()
            )

    def get_tags_for_note(self, note_path: str) -> List[str]:
        with self.session_factory() as session:
            return list(
                session.scalars(
                    select(DBTag.tag)
                    .where(DBTag.note_path == note_path)
                    .order_by(DBTag.tag)
                ).all()
            )

    def get_with_counts(self) -> Dict[str, int]:
        """Get all tags with their usage counts.

        Returns:
            Dictionary mapping tag names to the number of notes using them.
        """
        with self.session_factory() as session:
            result = session.execute(
                select(DBTag.tag, func.count(DBTag.note_path))
                .group_by(DBTag.tag)
                .order_by(DBTag.tag)
            ).all()
            return {tag: count for tag, count in result}

    def count(self, session: Session) -> int:
        return session.scalar(select(func.count()).select_from(DBTag)) or 0
