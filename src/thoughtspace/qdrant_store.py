"""Thought store backed by a Qdrant collection (optional ``qdrant`` extra)."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Sequence

from .constants import DEFAULT_COLLECTION
from .errors import NotFoundError, StoreError
from .store import StoredPoint, ThoughtFilter

logger = logging.getLogger(__name__)


@contextmanager
def qdrant_errors(what: str):
    """Turn client exceptions into StoreError."""
    from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

    try:
        yield
    except (UnexpectedResponse, ResponseHandlingException) as e:
        logger.error(f"Qdrant {what} failed: {e}")
        raise StoreError(f"Qdrant {what} failed: {e}") from e


def build_filter(query_filter: ThoughtFilter | None):
    """Translate a ThoughtFilter into a Qdrant payload filter."""
    from qdrant_client.http import models as qm

    if query_filter is None or query_filter.is_empty():
        return None
    must = []
    should = []
    if query_filter.tags_any:
        must.append(qm.FieldCondition(key="tags", match=qm.MatchAny(any=list(query_filter.tags_any))))
    if query_filter.thought_types:
        must.append(
            qm.FieldCondition(key="thought_type", match=qm.MatchAny(any=list(query_filter.thought_types)))
        )
    if query_filter.min_access_count is not None:
        must.append(qm.FieldCondition(key="access_count", range=qm.Range(gte=query_filter.min_access_count)))
    if query_filter.last_accessed_before is not None:
        must.append(
            qm.FieldCondition(
                key="last_accessed",
                range=qm.DatetimeRange(lt=query_filter.last_accessed_before),
            )
        )
    if query_filter.uncategorized:
        should = [
            qm.IsNullCondition(is_null=qm.PayloadField(key="thought_category")),
            qm.IsEmptyCondition(is_empty=qm.PayloadField(key="thought_category")),
            qm.FieldCondition(key="thought_category", match=qm.MatchValue(value="uncategorized")),
        ]
    return qm.Filter(must=must or None, should=should or None)


class QdrantThoughtStore:
    """ThoughtStore over one Qdrant collection with cosine distance."""

    def __init__(
        self,
        url: str = "http://localhost:6333",
        collection: str = DEFAULT_COLLECTION,
        dimension: int | None = None,
        client=None,
    ):
        try:
            from qdrant_client import QdrantClient
        except ImportError as e:
            raise StoreError("qdrant-client is not installed (pip install thoughtspace[qdrant])") from e

        self.collection = collection
        self.dimension = dimension
        if client is None:
            logger.info(f"Connecting to Qdrant at {url}")
            client = QdrantClient(url=url, prefer_grpc=False, timeout=10.0)
        self.client = client
        self._lock = threading.Lock()
        self._ready = False
        with qdrant_errors("collection check"):
            self._ready = self.client.collection_exists(collection)
        if not self._ready and dimension is not None:
            self._ensure_collection(dimension)

    def _ensure_collection(self, dimension: int):
        from qdrant_client.http import models as qm

        with self._lock:
            if self._ready:
                return
            with qdrant_errors("collection create"):
                logger.info(f"Creating Qdrant collection '{self.collection}' with dim={dimension}")
                self.client.create_collection(
                    collection_name=self.collection,
                    vectors_config=qm.VectorParams(size=dimension, distance=qm.Distance.COSINE),
                )
                for key, schema in (
                    ("tags", qm.PayloadSchemaType.KEYWORD),
                    ("thought_type", qm.PayloadSchemaType.KEYWORD),
                    ("access_count", qm.PayloadSchemaType.INTEGER),
                    ("last_accessed", qm.PayloadSchemaType.DATETIME),
                ):
                    self.client.create_payload_index(self.collection, field_name=key, field_schema=schema)
            self.dimension = dimension
            self._ready = True

    def upsert(self, point_id: str, vector: Sequence[float], payload: dict) -> None:
        from qdrant_client.http import models as qm

        if not self._ready:
            self._ensure_collection(len(vector))
        with qdrant_errors(f"upsert of {point_id}"):
            self.client.upsert(
                collection_name=self.collection,
                points=[qm.PointStruct(id=point_id, vector=list(vector), payload=payload)],
                wait=True,
            )

    def search(
        self,
        vector: Sequence[float],
        limit: int,
        query_filter: ThoughtFilter | None = None,
    ) -> list[StoredPoint]:
        if not self._ready:
            return []
        with qdrant_errors("search"):
            response = self.client.query_points(
                collection_name=self.collection,
                query=list(vector),
                limit=limit,
                query_filter=build_filter(query_filter),
                with_payload=True,
            )
        logger.debug(f"Qdrant returned {len(response.points)} hits")
        return [StoredPoint(id=str(p.id), payload=p.payload or {}, score=p.score) for p in response.points]

    def get_by_ids(self, ids: Sequence[str]) -> list[StoredPoint]:
        if not self._ready or not ids:
            return []
        with qdrant_errors("retrieve"):
            records = self.client.retrieve(
                collection_name=self.collection,
                ids=list(ids),
                with_payload=True,
                with_vectors=False,
            )
        by_id = {str(r.id): r for r in records}
        return [StoredPoint(id=pid, payload=by_id[pid].payload or {}) for pid in ids if pid in by_id]

    def patch_payload(self, point_id: str, fields: dict) -> None:
        if not self.get_by_ids([point_id]):
            raise NotFoundError(f"Thought {point_id} not found")
        with qdrant_errors(f"payload patch of {point_id}"):
            self.client.set_payload(
                collection_name=self.collection,
                payload=fields,
                points=[point_id],
                wait=True,
            )

    def scroll(
        self,
        query_filter: ThoughtFilter | None = None,
        page_size: int = 100,
        cursor: str | None = None,
    ) -> tuple[list[StoredPoint], str | None]:
        if not self._ready:
            return [], None
        with qdrant_errors("scroll"):
            records, next_offset = self.client.scroll(
                collection_name=self.collection,
                scroll_filter=build_filter(query_filter),
                limit=page_size,
                offset=cursor,
                with_payload=True,
                with_vectors=False,
            )
        points = [StoredPoint(id=str(r.id), payload=r.payload or {}) for r in records]
        return points, (str(next_offset) if next_offset is not None else None)

    def delete(self, ids: Sequence[str]) -> int:
        from qdrant_client.http import models as qm

        existing = self.get_by_ids(ids)
        if not existing:
            return 0
        with qdrant_errors("delete"):
            self.client.delete(
                collection_name=self.collection,
                points_selector=qm.PointIdsList(points=[p.id for p in existing]),
                wait=True,
            )
        return len(existing)

    def count(self) -> int:
        if not self._ready:
            return 0
        with qdrant_errors("count"):
            return self.client.count(collection_name=self.collection, exact=True).count

    def close(self) -> None:
        with qdrant_errors("close"):
            self.client.close()

