"""Repository for todo storage and retrieval."""
import logging
from typing import List, Optional

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.orm import Session

from plainflux_index.models.db_models import DBTodo
from plainflux_index.models.schema import ParsedTodo, Priority, Todo

logger = logging.getLogger(__name__)


def _to_model(db_todo: DBTodo) -> Todo:
    return Todo(
        id=db_todo.id,
        note_path=db_todo.note_path,
        line_number=db_todo.line_number,
        content=db_todo.content,
        is_completed=bool(db_todo.is_completed),
        due_date=db_todo.due_date,
        priority=Priority(db_todo.priority) if db_todo.priority else None,
        indent_level=db_todo.indent_level or 0,
        parent_line=db_todo.parent_line,
        recurrence_pattern=db_todo.recurrence_pattern,
    )


class TodoRepository:
    """Repository for checkbox todos keyed by (note, line)."""

    def __init__(self, session_factory):
        """Initialize the todo repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
        """
        self.session_factory = session_factory

    def replace_for_note(
        self, session: Session, note_path: str, todos: List[ParsedTodo]
    ) -> int:
        """Replace every todo of a note.

        Returns:
            Number of todos stored.
        """
        session.execute(delete(DBTodo).where(DBTodo.note_path == note_path))
        rows = [
            {
                "note_path": note_path,
                "line_number": todo.line_number,
                "content": todo.content,
                "is_completed": todo.is_completed,
                "due_date": todo.due_date,
                "priority": todo.priority.value if todo.priority else None,
                "indent_level": todo.indent_level,
                "parent_line": todo.parent_line,
                "recurrence_pattern": todo.recurrence_pattern,
            }
            for todo in todos
        ]
        if rows:
            session.execute(insert(DBTodo).prefix_with("OR REPLACE"), rows)
        return len(rows)

    def delete_for_note(self, session: Session, note_path: str) -> None:
        session.execute(delete(DBTodo).where(DBTodo.note_path == note_path))

    def get(self, note_path: str, line_number: int) -> Optional[Todo]:
        """Get the todo on a given line, or None."""
        with self.session_factory() as session:
            db_todo = session.scalar(
                select(DBTodo).where(
                    DBTodo.note_path == note_path,
                    DBTodo.line_number == line_number,
                )
            )
            return _to_model(db_todo) if db_todo else None

    def toggle(
        self, session: Session, note_path: str, line_number: int
    ) -> Optional[bool]:
        """Flip the completion flag of one todo.

        Returns:
            The new completion state, or None if no such todo exists.
        """
        where = (DBTodo.note_path == note_path, DBTodo.line_number == line_number)
        result = session.execute(
            update(DBTodo)
            .where(*where)
            .values(is_completed=~DBTodo.is_completed)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return bool(session.scalar(select(DBTodo.is_completed).where(*where)))

    def get_incomplete(self) -> List[Todo]:
        """Get open todos ordered by note path, then line."""
        with self.session_factory() as session:
            db_todos = session.scalars(
                select(DBTodo)
                .where(DBTodo.is_completed.is_(False))
                .order_by(DBTodo.note_path, DBTodo.line_number)
            ).all()
            return [_to_model(t) for t in db_todos]

    def get_all(self) -> List[Todo]:
        """Get every todo ordered by note path, completion, then line."""
        with self.session_factory() as session:
            db_todos = session.scalars(
                select(DBTodo).order_by(
                    DBTodo.note_path, DBTodo.is_completed, DBTodo.line_number
                )
            ).all()
            return [_to_model(t) for t in db_todos]

    def get_for_note(self, note_path: str) -> List[Todo]:
        with self.session_factory() as session:
            db_todos = session.scalars(
                select(DBTodo)
                .where(DBTodo.note_path == note_path)
                .order_by(DBTodo.line_number)
            ).all()
            return [_to_model(t) for t in db_todos]

    def count(self, session: Session) -> int:
        return session.scalar(select(func.count()).select_from(DBTodo)) or 0
