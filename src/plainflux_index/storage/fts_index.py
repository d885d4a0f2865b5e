"""FTS5 full-text search over note titles and content.

Encapsulates document upkeep, FTS5 querying, graceful degradation to a
LIKE scan, and recovery of a corrupted index.
"""
import logging
import re
import sqlite3
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.exc import DatabaseError as SQLAlchemyDatabaseError
from sqlalchemy.exc import OperationalError as SQLAlchemyOperationalError
from sqlalchemy.orm import Session

from plainflux_index.exceptions import ErrorCode, SearchError
from plainflux_index.models.db_models import FTS_TABLE, rebuild_fts_index
from plainflux_index.utils import escape_like_pattern

logger = logging.getLogger(__name__)

FTS5_KEYWORDS = {"AND", "OR", "NOT", "NEAR"}


class FtsIndex:
    """Full-text index with one document per note path.

    Args:
        engine: SQLAlchemy engine used for database access.
        session_factory: Callable returning a context-manager session.
        available: Whether the FTS5 virtual table exists. When False every
            search goes straight to the LIKE fallback.
    """

    def __init__(
        self,
        engine: Any,
        session_factory: Callable,
        available: bool = True,
    ) -> None:
        self.engine = engine
        self._session_factory = session_factory
        self.available = available

    # ------------------------------------------------------------------
    # Document upkeep (runs inside the caller's transaction)
    # ------------------------------------------------------------------

    def replace(self, session: Session, note_path: str, title: str, content: str) -> None:
        """Store the single document for a note, replacing any older one."""
        self.delete(session, note_path)
        session.execute(
            text(
                f"INSERT INTO {FTS_TABLE} (note_path, title, content) "
                "VALUES (:path, :title, :content)"
            ),
            {"path": note_path, "title": title, "content": content},
        )

    def delete(self, session: Session, note_path: str) -> None:
        session.execute(
            text(f"DELETE FROM {FTS_TABLE} WHERE note_path = :path"),
            {"path": note_path},
        )

    def count(self, session: Session) -> int:
        return session.execute(text(f"SELECT COUNT(*) FROM {FTS_TABLE}")).scalar() or 0

    def documents_with_links(self, session: Session) -> List[Tuple[str, str]]:
        """(note_path, content) of every document containing a wikilink opener."""
        rows = session.execute(
            text(f"SELECT note_path, content FROM {FTS_TABLE} WHERE content LIKE :opener"),
            {"opener": "%[[%"},
        )
        return [(row[0], row[1]) for row in rows.fetchall()]

    # ------------------------------------------------------------------
    # Public query API
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        limit: int = 100,
        literal: Optional[bool] = None,
    ) -> List[Dict[str, Any]]:
        """Relevance-ranked search using FTS5 with graceful fallback.

        Args:
            query: Search query (supports FTS5 syntax).
            limit: Maximum results.
            literal: None = auto-detect, True = escape, False = preserve syntax.

        Returns:
            List of result dicts (path, title, rank, search_mode), best first.
        """
        if not query or not query.strip():
            return []

        if not self.available:
            logger.debug("FTS5 unavailable, using fallback search")
            return self._fallback_text_search(query, limit)

        if literal is None:
            literal = self._should_escape(query)

        safe_query = self._escape_query(query) if literal else query

        sql = text(f"""
            SELECT note_path, title, bm25({FTS_TABLE}) AS rank
            FROM {FTS_TABLE}
            WHERE {FTS_TABLE} MATCH :query
            ORDER BY rank
            LIMIT :limit
        """)

        results: List[Dict[str, Any]] = []
        with self._session_factory() as session:
            try:
                result = session.execute(sql, {"query": safe_query, "limit": limit})
                for row in result.fetchall():
                    results.append({
                        "path": row[0],
                        "title": row[1],
                        "rank": row[2],
                        "search_mode": "fts5",
                    })

            except (sqlite3.OperationalError, SQLAlchemyOperationalError) as e:
                logger.warning(
                    f"FTS5 query failed for '{query}': {e}. Using fallback search."
                )
                return self._fallback_text_search(query, limit)

            except (sqlite3.DatabaseError, SQLAlchemyDatabaseError) as e:
                error_msg = str(e).lower()
                if "malformed" in error_msg or "corrupt" in error_msg:
                    logger.error(
                        f"FTS5 corruption detected ({ErrorCode.FTS_CORRUPTED.name}): {e}. Attempting auto-rebuild..."
                    )
                    if self._attempt_recovery():
                        logger.info("FTS5 rebuilt successfully, retrying search")
                        return self.search(query, limit, literal)
                    logger.error("FTS5 recovery failed. Disabling FTS5 for this session.")
                    self.available = False
                    return self._fallback_text_search(query, limit)
                logger.error(f"FTS5 database error: {e}. Using fallback search.")
                return self._fallback_text_search(query, limit)

        return results

    def rebuild(self) -> int:
        """Rebuild the FTS5 index structures from the stored documents."""
        return rebuild_fts_index(self.engine)

    def reset_availability(self) -> bool:
        """Re-enable FTS5 after manual repair."""
        try:
            with self._session_factory() as session:
                session.execute(
                    text(f"INSERT INTO {FTS_TABLE}({FTS_TABLE}) VALUES('integrity-check')")
                )
            self.available = True
            logger.info("FTS5 availability reset, FTS5 is now enabled")
            return True
        except (SQLAlchemyDatabaseError, sqlite3.DatabaseError) as e:
            logger.error(f"FTS5 still unavailable: {e}")
            self.available = False
            return False

    # ------------------------------------------------------------------
    # Query escaping helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _should_escape(query: str) -> bool:
        """Auto-detect whether a query needs FTS5 escaping."""
        words = query.upper().split()
        if any(kw in words for kw in FTS5_KEYWORDS):
            return False
        if query.count('"') >= 2:
            return False
        if re.search(r"\b\w+\*", query):
            return False
        if re.search(r"\b\w+:", query):
            return False
        return True

    @staticmethod
    def _escape_query(query: str) -> str:
        """Escape query for FTS5 literal matching (quoted phrase)."""
        result = query.replace('"', '""')
        result = re.sub(r"[*^]", "", result)
        return f'"{result}"'

    # ------------------------------------------------------------------
    # Fallback & recovery
    # ------------------------------------------------------------------

    def _fallback_text_search(
        self, query: str, limit: int = 100
    ) -> List[Dict[str, Any]]:
        """Case-insensitive LIKE scan; title hits rank ahead of body hits."""
        term = query.strip()
        search_term = f"%{escape_like_pattern(term)}%"
        results: List[Dict[str, Any]] = []

        try:
            with self._session_factory() as session:
                sql = text(f"""
                    SELECT note_path, title,
                           CASE WHEN title LIKE :term ESCAPE '\\' THEN -2.0 ELSE -1.0 END AS rank
                    FROM {FTS_TABLE}
                    WHERE title LIKE :term ESCAPE '\\' OR content LIKE :term ESCAPE '\\'
                    ORDER BY rank, note_path
                    LIMIT :limit
                """)
                result = session.execute(sql, {"term": search_term, "limit": limit})
                for row in result.fetchall():
                    results.append({
                        "path": row[0],
                        "title": row[1],
                        "rank": row[2],
                        "search_mode": "fallback",
                    })
        except (SQLAlchemyDatabaseError, sqlite3.DatabaseError) as e:
            raise SearchError(
                f"Fallback text search failed: {e}",
                query=query,
                code=ErrorCode.SEARCH_FAILED,
            ) from e

        logger.debug(
            f"Fallback search returned {len(results)} results for query '{query}'"
        )
        return results

    def _attempt_recovery(self) -> bool:
        """Attempt to recover FTS5 by rebuilding the index."""
        try:
            count = self.rebuild()
            logger.info(f"FTS5 index rebuilt with {count} documents")
            return True
        except (SQLAlchemyDatabaseError, sqlite3.DatabaseError) as e:
            logger.error(f"FTS5 rebuild failed: {e}")
            return False
