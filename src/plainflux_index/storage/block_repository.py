"""Repository for heading blocks."""
import logging
from typing import List, Optional

from sqlalchemy import delete, func, insert, select
from sqlalchemy.orm import Session

from plainflux_index.models.db_models import DBBlock
from plainflux_index.models.schema import Block

logger = logging.getLogger(__name__)


class BlockRepository:
    """Repository for the headings that ``[[Note#slug]]`` links address."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def replace_for_note(
        self, session: Session, note_path: str, blocks: List[Block]
    ) -> int:
        """Replace the blocks of a note.

        Two headings with the same slug collide on (note, block_id); the
        first one in the note is kept.

        Returns:
            Number of blocks stored.
        """
        session.execute(delete(DBBlock).where(DBBlock.note_path == note_path))
        rows = []
        seen = set()
        for block in blocks:
            if block.block_id in seen:
                continue
            seen.add(block.block_id)
            rows.append(
                {
                    "block_id": block.block_id,
                    "note_path": note_path,
                    "line_number": block.line_number,
                    "content": block.content,
                }
            )
        if rows:
            session.execute(insert(DBBlock), rows)
        return len(rows)

    def delete_for_note(self, session: Session, note_path: str) -> None:
        session.execute(delete(DBBlock).where(DBBlock.note_path == note_path))

    def get(self, note_path: str, block_id: str) -> Optional[Block]:
        with self.session_factory() as session:
            db_block = session.scalar(
                select(DBBlock).where(
                    DBBlock.note_path == note_path,
                    DBBlock.block_id == block_id,
                )
            )
            if not db_block:
                return None
            return Block(
                block_id=db_block.block_id,
                line_number=db_block.line_number,
                content=db_block.content,
            )

    def get_for_note(self, note_path: str) -> List[Block]:
        """Get the blocks of a note in line order."""
        with self.session_factory() as session:
            db_blocks = session.scalars(
                select(DBBlock)
                .where(DBBlock.note_path == note_path)
                .order_by(DBBlock.line_number)
            ).all()
            return [
                Block(block_id=b.block_id, line_number=b.line_number, content=b.content)
                for b in db_blocks
            ]

    def count(self, session: Session) -> int:
        return session.scalar(select(func.count()).select_from(DBBlock)) or 0
