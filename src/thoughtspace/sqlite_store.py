"""Thought store backed by sqlite-vec.

Vectors live in a vec0 virtual table (cosine distance); payloads are JSON
rows in a plain table keyed by the same id. Filters are evaluated in Python
against the decoded payload.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Sequence

from .errors import NotFoundError, StoreError
from .store import StoredPoint, ThoughtFilter

logger = logging.getLogger(__name__)

# Over-fetch factor for filtered KNN queries (filter is applied post-hoc)
FILTER_OVERFETCH = 5
# sqlite-vec refuses larger k
MAX_KNN = 4096


class SqliteVecThoughtStore:
    """Vector similarity search and payload storage in one SQLite file."""

    def __init__(self, db_path: Path | str, dimension: int | None = None):
        """Initialize the store.

        Args:
            db_path: Path to thoughtspace.db (shared with the query log)
            dimension: Embedding size. If None, taken from the first upsert.
        """
        self.db_path = db_path
        if isinstance(db_path, Path):
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self.dimension = dimension
        self._lock = threading.Lock()
        self._conn = self._connect()
        self._vectors_ready = False
        self._init_tables()

    def _connect(self) -> sqlite3.Connection:
        try:
            import sqlite_vec

            conn = sqlite3.connect(str(self.db_path), timeout=30.0, check_same_thread=False)
            conn.enable_load_extension(True)
            sqlite_vec.load(conn)
            conn.enable_load_extension(False)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=30000")
            return conn
        except (ImportError, OSError, AttributeError, sqlite3.Error) as e:
            raise StoreError(f"sqlite-vec extension failed to load: {e}") from e

    def _init_tables(self):
        with self._lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS thought_payloads (
                    thought_id TEXT PRIMARY KEY,
                    payload TEXT NOT NULL
                )
            """)
            self._conn.commit()
            exists = self._conn.execute(
                "SELECT name FROM sqlite_master WHERE name = 'thought_vectors'"
            ).fetchone()
            if exists is not None:
                self._vectors_ready = True
            elif self.dimension is not None:
                self._create_vector_table(self.dimension)

    def _create_vector_table(self, dimension: int):
        # Caller holds the lock
        self._conn.execute(f"""
            CREATE VIRTUAL TABLE IF NOT EXISTS thought_vectors
            USING vec0(
                thought_id TEXT PRIMARY KEY,
                embedding FLOAT[{dimension}] distance_metric=cosine
            )
        """)
        self._conn.commit()
        self.dimension = dimension
        self._vectors_ready = True

    def upsert(self, point_id: str, vector: Sequence[float], payload: dict) -> None:
        import sqlite_vec

        try:
            with self._lock:
                if not self._vectors_ready:
                    self._create_vector_table(len(vector))
                # vec0 has no upsert: delete + insert
                self._conn.execute("DELETE FROM thought_vectors WHERE thought_id = ?", (point_id,))
                self._conn.execute(
                    "INSERT INTO thought_vectors (thought_id, embedding) VALUES (?, ?)",
                    (point_id, sqlite_vec.serialize_float32(list(vector))),
                )
                self._conn.execute(
                    "INSERT OR REPLACE INTO thought_payloads (thought_id, payload) VALUES (?, ?)",
                    (point_id, json.dumps(payload)),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Upsert of {point_id} failed: {e}") from e

    def _knn(self, serialized: bytes, k: int) -> list[tuple[str, float]]:
        return self._conn.execute(
            """
            SELECT thought_id, distance
            FROM thought_vectors
            WHERE embedding MATCH ? AND k = ?
            ORDER BY distance
            """,
            (serialized, k),
        ).fetchall()

    def _payloads_for(self, ids: Sequence[str]) -> dict[str, dict]:
        if not ids:
            return {}
        placeholders = ",".join("?" for _ in ids)
        rows = self._conn.execute(
            f"SELECT thought_id, payload FROM thought_payloads WHERE thought_id IN ({placeholders})",
            tuple(ids),
        ).fetchall()
        payloads = {}
        for thought_id, raw in rows:
            try:
                payloads[thought_id] = json.loads(raw)
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping malformed payload for {thought_id}: {e}")
        return payloads

    def search(
        self,
        vector: Sequence[float],
        limit: int,
        query_filter: ThoughtFilter | None = None,
    ) -> list[StoredPoint]:
        import sqlite_vec

        serialized = sqlite_vec.serialize_float32(list(vector))
        filtered = query_filter is not None and not query_filter.is_empty()
        try:
            with self._lock:
                if not self._vectors_ready:
                    return []
                total = self._conn.execute("SELECT COUNT(*) FROM thought_payloads").fetchone()[0]
                if total == 0:
                    return []
                k = min(limit * FILTER_OVERFETCH if filtered else limit, total, MAX_KNN)
                while True:
                    rows = self._knn(serialized, k)
                    payloads = self._payloads_for([r[0] for r in rows])
                    results = []
                    for thought_id, distance in rows:
                        payload = payloads.get(thought_id)
                        if payload is None:
                            continue
                        if filtered and not query_filter.matches(payload):
                            continue
                        results.append(
                            StoredPoint(id=thought_id, payload=payload, score=1.0 - float(distance))
                        )
                        if len(results) >= limit:
                            break
                    # Too few survivors of the filter: widen once to everything
                    if len(results) >= limit or k >= min(total, MAX_KNN):
                        return results
                    k = min(total, MAX_KNN)
        except sqlite3.Error as e:
            raise StoreError(f"Vector search failed: {e}") from e

    def get_by_ids(self, ids: Sequence[str]) -> list[StoredPoint]:
        try:
            with self._lock:
                payloads = self._payloads_for(list(ids))
        except sqlite3.Error as e:
            raise StoreError(f"Point lookup failed: {e}") from e
        return [StoredPoint(id=pid, payload=payloads[pid]) for pid in ids if pid in payloads]

    def patch_payload(self, point_id: str, fields: dict) -> None:
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT payload FROM thought_payloads WHERE thought_id = ?", (point_id,)
                ).fetchone()
                if row is None:
                    raise NotFoundError(f"Thought {point_id} not found")
                payload = json.loads(row[0])
                payload.update(fields)
                self._conn.execute(
                    "UPDATE thought_payloads SET payload = ? WHERE thought_id = ?",
                    (json.dumps(payload), point_id),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Payload patch of {point_id} failed: {e}") from e

    def scroll(
        self,
        query_filter: ThoughtFilter | None = None,
        page_size: int = 100,
        cursor: str | None = None,
    ) -> tuple[list[StoredPoint], str | None]:
        points: list[StoredPoint] = []
        position = cursor or ""
        try:
            with self._lock:
                while True:
                    rows = self._conn.execute(
                        """
                        SELECT thought_id, payload FROM thought_payloads
                        WHERE thought_id > ?
                        ORDER BY thought_id
                        LIMIT ?
                        """,
                        (position, page_size),
                    ).fetchall()
                    if not rows:
                        return points, None
                    for thought_id, raw in rows:
                        position = thought_id
                        try:
                            payload = json.loads(raw)
                        except json.JSONDecodeError as e:
                            logger.warning(f"Skipping malformed payload for {thought_id}: {e}")
                            continue
                        if query_filter is not None and not query_filter.matches(payload):
                            continue
                        points.append(StoredPoint(id=thought_id, payload=payload))
                        if len(points) >= page_size:
                            more = self._conn.execute(
                                "SELECT 1 FROM thought_payloads WHERE thought_id > ? LIMIT 1",
                                (position,),
                            ).fetchone()
                            return points, (position if more else None)
        except sqlite3.Error as e:
            raise StoreError(f"Scroll failed: {e}") from e

    def delete(self, ids: Sequence[str]) -> int:
        removed = 0
        try:
            with self._lock:
                for pid in ids:
                    cur = self._conn.execute("DELETE FROM thought_payloads WHERE thought_id = ?", (pid,))
                    if self._vectors_ready:
                        self._conn.execute("DELETE FROM thought_vectors WHERE thought_id = ?", (pid,))
                    removed += cur.rowcount
                self._conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Delete failed: {e}") from e
        return removed

    def count(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM thought_payloads").fetchone()[0]

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
