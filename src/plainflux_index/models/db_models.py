"""SQLAlchemy database models for the Plainflux index."""
import logging
from typing import Optional

from sqlalchemy import (Boolean, Column, Index, Integer, String, Text,
                        UniqueConstraint, create_engine, event, text)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from plainflux_index.config import config

logger = logging.getLogger(__name__)

# Create base class for SQLAlchemy models
Base = declarative_base()

FTS_TABLE = "note_content"


class DBLink(Base):
    """A resolved wikilink from one note file to another."""
    __tablename__ = "links"
    id = Column(Integer, primary_key=True)
    from_note = Column(Text, nullable=False)
    to_note = Column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint("from_note", "to_note", name="unique_link"),
        Index("idx_links_from", "from_note"),
        Index("idx_links_to", "to_note"),
    )

    def __repr__(self) -> str:
        return f"<Link(from='{self.from_note}', to='{self.to_note}')>"


class DBTag(Base):
    """A hashtag occurrence, one row per (tag, note)."""
    __tablename__ = "tags"
    id = Column(Integer, primary_key=True)
    tag = Column(Text, nullable=False)
    note_path = Column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint("tag", "note_path", name="unique_tag_note"),
        Index("idx_tags_tag", "tag"),
        Index("idx_tags_note", "note_path"),
    )

    def __repr__(self) -> str:
        return f"<Tag(tag='{self.tag}', note='{self.note_path}')>"


class DBTodo(Base):
    """A checkbox line with its inline metadata."""
    __tablename__ = "todos"
    id = Column(Integer, primary_key=True, autoincrement=True)
    note_path = Column(Text, nullable=False)
    line_number = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    is_completed = Column(Boolean, nullable=False, default=False)
    due_date = Column(String(10), nullable=True)
    priority = Column(String(10), nullable=True)
    indent_level = Column(Integer, nullable=False, default=0)
    parent_line = Column(Integer, nullable=True)
    recurrence_pattern = Column(String(32), nullable=True)

    __table_args__ = (
        UniqueConstraint("note_path", "line_number", name="unique_todo_line"),
        Index("idx_todos_note", "note_path"),
        Index("idx_todos_completed", "is_completed"),
        Index("idx_todos_due_date", "due_date"),
        Index("idx_todos_priority", "priority"),
    )

    def __repr__(self) -> str:
        return (
            f"<Todo(note='{self.note_path}', line={self.line_number}, "
            f"done={self.is_completed})>"
        )


class DBBlock(Base):
    """A heading addressable through a ``[[Note#slug]]`` reference."""
    __tablename__ = "blocks"
    id = Column(Integer, primary_key=True, autoincrement=True)
    block_id = Column(Text, nullable=False)
    note_path = Column(Text, nullable=False)
    line_number = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint("note_path", "block_id", name="unique_block"),
        Index("idx_blocks_note", "note_path"),
        Index("idx_blocks_id", "block_id"),
    )

    def __repr__(self) -> str:
        return f"<Block(note='{self.note_path}', id='{self.block_id}')>"


class DBFileMetadata(Base):
    """Last-seen modification time of an indexed file."""
    __tablename__ = "file_metadata"
    note_path = Column(Text, primary_key=True)
    mtime_seconds = Column(Integer, nullable=False)
    mtime_nanos = Column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return (
            f"<FileMetadata(note='{self.note_path}', "
            f"mtime={self.mtime_seconds}.{self.mtime_nanos:09d})>"
        )


def init_db(db_url: Optional[str] = None) -> Engine:
    """Create the engine and schema.

    File databases get WAL journaling and a small connection pool; an
    in-memory database is pinned to a single shared connection so every
    thread sees the same data.
    """
    db_url = db_url or config.get_db_url()

    if ":memory:" in db_url:
        engine = create_engine(
            db_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        # SQLite is single-writer, so a small pool is ideal
        engine = create_engine(
            db_url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            # WAL mode: writers never block readers
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

    Base.metadata.create_all(engine)
    init_fts5(engine)
    return engine


def init_fts5(engine: Engine) -> bool:
    """Create the full-text table over (note_path, title, content).

    Uses the porter stemmer on top of the unicode61 tokenizer. When the
    SQLite build lacks FTS5, a plain table with the same columns is
    created instead so that LIKE-based search still works.

    Returns:
        True if the FTS5 virtual table is available.
    """
    with engine.connect() as conn:
        try:
            conn.execute(text(f"""
                CREATE VIRTUAL TABLE IF NOT EXISTS {FTS_TABLE} USING fts5(
                    note_path UNINDEXED,
                    title,
                    content,
                    tokenize = 'porter unicode61'
                )
            """))
            conn.commit()
            # A fallback table from an FTS5-less build may already exist
            ddl = conn.execute(
                text("SELECT sql FROM sqlite_master WHERE name = :name"),
                {"name": FTS_TABLE},
            ).scalar()
            return "fts5" in (ddl or "").lower()
        except OperationalError as e:
            logger.warning(f"FTS5 unavailable ({e}); search will use LIKE fallback")
            conn.rollback()
            conn.execute(text(f"""
                CREATE TABLE IF NOT EXISTS {FTS_TABLE} (
                    note_path TEXT NOT NULL,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL
                )
            """))
            conn.commit()
            return False


def rebuild_fts_index(engine: Engine) -> int:
    """Rebuild the FTS5 index structures from the stored documents.

    Returns:
        Number of documents indexed.
    """
    with engine.connect() as conn:
        conn.execute(text(f"INSERT INTO {FTS_TABLE}({FTS_TABLE}) VALUES('rebuild')"))
        conn.commit()
        count = conn.execute(text(f"SELECT COUNT(*) FROM {FTS_TABLE}")).scalar()
    return count or 0


def get_session_factory(engine: Optional[Engine] = None):
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine)
