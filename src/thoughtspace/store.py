"""Vector store contract and the in-memory implementation.

The engines talk to a store only through ``ThoughtStore``; the store owns
vectors and JSON payloads and knows nothing about pheromones or lineage.
"""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol, Sequence

import numpy as np
from pydantic import ValidationError as PydanticValidationError

from .errors import NotFoundError, StoreError
from .models import Thought

logger = logging.getLogger(__name__)


@dataclass
class StoredPoint:
    """A point as returned by a store: id, payload and (for searches) a score."""

    id: str
    payload: dict
    score: float | None = None


def parse_timestamp(value) -> datetime | None:
    """Parse a payload timestamp (ISO string or datetime) into aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        try:
            ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            logger.debug(f"Unparseable timestamp in payload: {value!r}")
            return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass
class ThoughtFilter:
    """Payload filter understood by every store backend.

    All set conditions must hold (logical AND). ``tags_any`` and
    ``thought_types`` are any-of matches.
    """

    tags_any: list[str] | None = None
    thought_types: list[str] | None = None
    min_access_count: int | None = None
    last_accessed_before: datetime | None = None
    uncategorized: bool = False

    def is_empty(self) -> bool:
        return not (
            self.tags_any
            or self.thought_types
            or self.min_access_count is not None
            or self.last_accessed_before is not None
            or self.uncategorized
        )

    def matches(self, payload: dict) -> bool:
        """Evaluate the filter against a payload dict."""
        if self.tags_any and not set(self.tags_any) & set(payload.get("tags") or []):
            return False
        if self.thought_types and payload.get("thought_type", "original") not in self.thought_types:
            return False
        if self.min_access_count is not None:
            if (payload.get("access_count") or 0) < self.min_access_count:
                return False
        if self.last_accessed_before is not None:
            last = parse_timestamp(payload.get("last_accessed"))
            if last is None or last >= self.last_accessed_before:
                return False
        if self.uncategorized and payload.get("thought_category") not in (None, "uncategorized"):
            return False
        return True


class ThoughtStore(Protocol):
    """Capabilities the engines need from a vector store."""

    def upsert(self, point_id: str, vector: Sequence[float], payload: dict) -> None: ...

    def search(
        self,
        vector: Sequence[float],
        limit: int,
        query_filter: ThoughtFilter | None = None,
    ) -> list[StoredPoint]: ...

    def get_by_ids(self, ids: Sequence[str]) -> list[StoredPoint]: ...

    def patch_payload(self, point_id: str, fields: dict) -> None: ...

    def scroll(
        self,
        query_filter: ThoughtFilter | None = None,
        page_size: int = 100,
        cursor: str | None = None,
    ) -> tuple[list[StoredPoint], str | None]: ...

    def delete(self, ids: Sequence[str]) -> int: ...

    def count(self) -> int: ...

    def close(self) -> None: ...


def cosine_similarity(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of one vector against each row of a matrix."""
    query_norm = np.linalg.norm(query)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * query_norm
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(denom > 0, matrix @ query / denom, 0.0)
    return sims


class InMemoryThoughtStore:
    """Process-local store backed by numpy.

    Payloads are deep-copied in and out so callers see the same
    read-modify-write semantics as with a remote store.
    """

    def __init__(self, dimension: int | None = None):
        self.dimension = dimension
        self._vectors: dict[str, np.ndarray] = {}
        self._payloads: dict[str, dict] = {}
        self._lock = threading.Lock()

    def upsert(self, point_id: str, vector: Sequence[float], payload: dict) -> None:
        arr = np.asarray(vector, dtype=np.float32)
        if self.dimension is None:
            self.dimension = arr.shape[0]
        elif arr.shape[0] != self.dimension:
            raise StoreError(
                f"Vector dimension {arr.shape[0]} does not match store dimension {self.dimension}"
            )
        with self._lock:
            self._vectors[point_id] = arr
            self._payloads[point_id] = copy.deepcopy(payload)

    def search(
        self,
        vector: Sequence[float],
        limit: int,
        query_filter: ThoughtFilter | None = None,
    ) -> list[StoredPoint]:
        with self._lock:
            ids = [
                pid for pid, payload in self._payloads.items()
                if query_filter is None or query_filter.matches(payload)
            ]
            if not ids:
                return []
            matrix = np.stack([self._vectors[pid] for pid in ids])
            payloads = {pid: copy.deepcopy(self._payloads[pid]) for pid in ids}

        query = np.asarray(vector, dtype=np.float32)
        if query.shape[0] != matrix.shape[1]:
            raise StoreError(
                f"Query dimension {query.shape[0]} does not match store dimension {matrix.shape[1]}"
            )
        sims = cosine_similarity(query, matrix)
        ranked = sorted(zip(ids, sims), key=lambda x: (-float(x[1]), x[0]))[:limit]
        return [StoredPoint(id=pid, payload=payloads[pid], score=float(s)) for pid, s in ranked]

    def get_by_ids(self, ids: Sequence[str]) -> list[StoredPoint]:
        with self._lock:
            return [
                StoredPoint(id=pid, payload=copy.deepcopy(self._payloads[pid]))
                for pid in ids
                if pid in self._payloads
            ]

    def patch_payload(self, point_id: str, fields: dict) -> None:
        with self._lock:
            if point_id not in self._payloads:
                raise NotFoundError(f"Thought {point_id} not found")
            self._payloads[point_id].update(copy.deepcopy(fields))

    def scroll(
        self,
        query_filter: ThoughtFilter | None = None,
        page_size: int = 100,
        cursor: str | None = None,
    ) -> tuple[list[StoredPoint], str | None]:
        with self._lock:
            matching = sorted(
                pid for pid, payload in self._payloads.items()
                if (cursor is None or pid > cursor)
                and (query_filter is None or query_filter.matches(payload))
            )
            page = matching[:page_size]
            points = [StoredPoint(id=pid, payload=copy.deepcopy(self._payloads[pid])) for pid in page]
        next_cursor = page[-1] if len(matching) > page_size else None
        return points, next_cursor

    def delete(self, ids: Sequence[str]) -> int:
        removed = 0
        with self._lock:
            for pid in ids:
                if self._payloads.pop(pid, None) is not None:
                    self._vectors.pop(pid, None)
                    removed += 1
        return removed

    def count(self) -> int:
        with self._lock:
            return len(self._payloads)

    def close(self) -> None:
        pass


def iter_points(
    store: ThoughtStore,
    query_filter: ThoughtFilter | None = None,
    page_size: int = 100,
):
    """Yield every matching point, one page at a time."""
    cursor = None
    while True:
        points, cursor = store.scroll(query_filter, page_size=page_size, cursor=cursor)
        yield from points
        if cursor is None:
            break


def load_thought(point: StoredPoint) -> Thought | None:
    """Build a Thought from a store point, or None if the payload is malformed."""
    try:
        return Thought.from_payload(point.id, point.payload)
    except PydanticValidationError as e:
        logger.warning(f"Skipping malformed thought {point.id}: {e.error_count()} validation errors")
        return None


def load_thoughts(points: Sequence[StoredPoint]) -> list[Thought]:
    """Convert points, dropping malformed ones."""
    thoughts = []
    for point in points:
        thought = load_thought(point)
        if thought is not None:
            thoughts.append(thought)
    return thoughts
