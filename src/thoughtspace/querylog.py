"""Append-only query log backed by SQLite.

One row per retrieval. Rows are never updated; they feed implicit session
feedback, first-time agent onboarding and keyword-echo detection.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path

from .errors import StoreError
from .models import QueryLogEntry

logger = logging.getLogger(__name__)


class QueryLog:
    """Query log table in the shared thoughtspace database."""

    def __init__(self, db_path: Path | str):
        """Initialize the log.

        Args:
            db_path: Path to thoughtspace.db, or ":memory:" for tests
        """
        self.db_path = db_path
        if isinstance(db_path, Path):
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), timeout=30.0, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            # WAL lets the decay thread read while requests append
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=30000")
        return self._conn

    def _init_db(self):
        with self._lock:
            conn = self._get_conn()
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS query_log (
                    id TEXT PRIMARY KEY,
                    agent_id TEXT NOT NULL,
                    session_id TEXT NOT NULL,
                    query_text TEXT NOT NULL DEFAULT '',
                    context_text TEXT,
                    returned_ids TEXT NOT NULL DEFAULT '[]',
                    result_count INTEGER NOT NULL DEFAULT 0,
                    timestamp TEXT NOT NULL,
                    knowledge_space_id TEXT NOT NULL DEFAULT 'ks-default'
                );

                CREATE INDEX IF NOT EXISTS idx_query_log_agent ON query_log(agent_id);
                CREATE INDEX IF NOT EXISTS idx_query_log_session ON query_log(session_id);
                CREATE INDEX IF NOT EXISTS idx_query_log_timestamp ON query_log(timestamp);
            """)
            conn.commit()

    def _row_to_entry(self, row: sqlite3.Row) -> QueryLogEntry:
        return QueryLogEntry(
            id=row["id"],
            agent_id=row["agent_id"],
            session_id=row["session_id"],
            query_text=row["query_text"],
            context_text=row["context_text"],
            returned_ids=json.loads(row["returned_ids"]),
            result_count=row["result_count"],
            timestamp=row["timestamp"],
            knowledge_space_id=row["knowledge_space_id"],
        )

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            with self._lock:
                return self._get_conn().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Query log read failed: {e}") from e

    def append(self, entry: QueryLogEntry) -> QueryLogEntry:
        """Insert one entry. Entries are immutable once written."""
        try:
            with self._lock:
                conn = self._get_conn()
                conn.execute(
                    """
                    INSERT INTO query_log (
                        id, agent_id, session_id, query_text, context_text,
                        returned_ids, result_count, timestamp, knowledge_space_id
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.id,
                        entry.agent_id,
                        entry.session_id,
                        entry.query_text,
                        entry.context_text,
                        json.dumps(entry.returned_ids),
                        entry.result_count,
                        entry.timestamp.isoformat(),
                        entry.knowledge_space_id,
                    ),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Query log append failed: {e}") from e
        return entry

    def count_by_agent(self, agent_id: str) -> int:
        rows = self._query("SELECT COUNT(*) FROM query_log WHERE agent_id = ?", (agent_id,))
        return rows[0][0]

    def recent_texts_by_agent(self, agent_id: str, n: int) -> list[str]:
        """Most recent non-empty query texts of an agent, newest first."""
        rows = self._query(
            """
            SELECT query_text FROM query_log
            WHERE agent_id = ? AND query_text != ''
            ORDER BY timestamp DESC, id DESC
            LIMIT ?
            """,
            (agent_id, n),
        )
        return [row["query_text"] for row in rows]

    def returned_ids_by_session(self, session_id: str) -> list[str]:
        """Distinct thought ids returned in a session, in first-seen order."""
        seen: dict[str, None] = {}
        for entry in self.read_by_session(session_id):
            for thought_id in entry.returned_ids:
                seen.setdefault(thought_id, None)
        return list(seen)

    def read_by_session(self, session_id: str) -> list[QueryLogEntry]:
        rows = self._query(
            "SELECT * FROM query_log WHERE session_id = ? ORDER BY timestamp, id",
            (session_id,),
        )
        return self._rows_to_entries(rows)

    def read_by_agent(self, agent_id: str, limit: int | None = None) -> list[QueryLogEntry]:
        """Entries of one agent, newest first."""
        sql = "SELECT * FROM query_log WHERE agent_id = ? ORDER BY timestamp DESC, id DESC"
        params: tuple = (agent_id,)
        if limit is not None:
            sql += " LIMIT ?"
            params = (agent_id, limit)
        return self._rows_to_entries(self._query(sql, params))

    def read_recent(self, limit: int = 20, since: str | None = None) -> list[QueryLogEntry]:
        """Latest entries across agents, newest first."""
        if since is not None:
            rows = self._query(
                "SELECT * FROM query_log WHERE timestamp >= ? ORDER BY timestamp DESC, id DESC LIMIT ?",
                (since, limit),
            )
        else:
            rows = self._query(
                "SELECT * FROM query_log ORDER BY timestamp DESC, id DESC LIMIT ?",
                (limit,),
            )
        return self._rows_to_entries(rows)

    def _rows_to_entries(self, rows: list[sqlite3.Row]) -> list[QueryLogEntry]:
        entries = []
        for row in rows:
            try:
                entries.append(self._row_to_entry(row))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed query log row {row['id']}: {e}")
        return entries

    def count(self) -> int:
        return self._query("SELECT COUNT(*) FROM query_log")[0][0]

    def close(self):
        """Close the connection, checkpointing the WAL first."""
        with self._lock:
            if self._conn is not None:
                if str(self.db_path) != ":memory:":
                    self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
                self._conn.close()
                self._conn = None
