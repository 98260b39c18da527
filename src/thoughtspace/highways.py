"""Highway ranking: thoughts with sustained multi-agent traffic."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from .constants import (
    CONTEXT_POOL_FACTOR,
    DEFAULT_HIGHWAY_LIMIT,
    DEFAULT_HIGHWAY_MIN_ACCESS,
    DEFAULT_HIGHWAY_MIN_USERS,
    SCAN_PAGE_SIZE,
)
from .errors import ValidationError
from .models import Highway, Thought
from .store import ThoughtFilter, ThoughtStore, iter_points, load_thought

logger = logging.getLogger(__name__)


def traffic_score(thought: Thought) -> int:
    """access_count x distinct agents."""
    return thought.access_count * thought.unique_users


def to_highway(thought: Thought) -> Highway:
    return Highway(
        id=thought.id,
        content_preview=thought.preview(),
        access_count=thought.access_count,
        unique_users=thought.unique_users,
        traffic_score=traffic_score(thought),
        pheromone_weight=thought.pheromone_weight,
        tags=thought.tags,
    )


class HighwayRanker:
    """Finds the most travelled thoughts, globally or near a query."""

    def __init__(self, store: ThoughtStore, page_size: int = SCAN_PAGE_SIZE):
        self.store = store
        self.page_size = page_size

    def highways(
        self,
        min_access: int = DEFAULT_HIGHWAY_MIN_ACCESS,
        min_users: int = DEFAULT_HIGHWAY_MIN_USERS,
        limit: int = DEFAULT_HIGHWAY_LIMIT,
        query_vector: Sequence[float] | None = None,
    ) -> list[Highway]:
        """Rank thoughts above the traffic floor.

        Args:
            min_access: Minimum access_count (default: 3)
            min_users: Minimum distinct accessing agents (default: 2)
            limit: Maximum highways returned (default: 20)
            query_vector: When given, only highways similar to this embedding
                are considered (context mode)

        Returns:
            Highways sorted by traffic score descending. Global mode breaks
            ties by id; context mode by similarity, then id.
        """
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        if min_access < 0 or min_users < 0:
            raise ValidationError("min_access and min_users must be non-negative")
        floor = ThoughtFilter(min_access_count=min_access)

        if query_vector is None:
            return self._global(floor, min_users, limit)
        return self._near(query_vector, floor, min_users, limit)

    def _global(self, floor: ThoughtFilter, min_users: int, limit: int) -> list[Highway]:
        candidates = []
        for point in iter_points(self.store, floor, page_size=self.page_size):
            thought = load_thought(point)
            if thought is not None and thought.unique_users >= min_users:
                candidates.append(thought)
        candidates.sort(key=lambda t: (-traffic_score(t), t.id))
        logger.debug(f"Global highways: {len(candidates)} above the floor")
        return [to_highway(t) for t in candidates[:limit]]

    def _near(
        self,
        query_vector: Sequence[float],
        floor: ThoughtFilter,
        min_users: int,
        limit: int,
    ) -> list[Highway]:
        pool = self.store.search(query_vector, limit * CONTEXT_POOL_FACTOR, floor)
        candidates = []
        for point in pool:
            thought = load_thought(point)
            if thought is not None and thought.unique_users >= min_users:
                candidates.append((thought, float(point.score or 0.0)))
        candidates.sort(key=lambda pair: (-traffic_score(pair[0]), -pair[1], pair[0].id))
        return [to_highway(t) for t, _ in candidates[:limit]]
