"""Lineage resolution: ancestors, descendants and supersession.

Edges point child -> parents through ``source_ids``. Descendants have no
reverse index in the store, so each call scans derived thoughts once and
builds one in memory. Traversal never assumes the graph is acyclic.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable

from .constants import DEFAULT_LINEAGE_DEPTH, SCAN_PAGE_SIZE
from .errors import NotFoundError, ValidationError
from .models import DERIVED_TYPES, LineageNode, LineageResult, Thought
from .store import ThoughtFilter, ThoughtStore, iter_points, load_thought, load_thoughts

logger = logging.getLogger(__name__)


def _newest(thoughts: Iterable[Thought]) -> Thought | None:
    """Newest thought by created_at (ties broken by id)."""
    best = None
    for t in thoughts:
        if best is None or (t.created_at, t.id) > (best.created_at, best.id):
            best = t
    return best


class LineageResolver:
    """Walks derivation chains around a thought."""

    def __init__(self, store: ThoughtStore, page_size: int = SCAN_PAGE_SIZE):
        self.store = store
        self.page_size = page_size

    def children_index(self) -> dict[str, list[Thought]]:
        """Map parent id -> derived thoughts that cite it."""
        index: dict[str, list[Thought]] = defaultdict(list)
        derived = ThoughtFilter(thought_types=list(DERIVED_TYPES))
        for point in iter_points(self.store, derived, page_size=self.page_size):
            thought = load_thought(point)
            if thought is None:
                continue
            for source_id in dict.fromkeys(thought.source_ids):
                index[source_id].append(thought)
        return index

    def find_superseding(self, thoughts: list[Thought]) -> dict[str, Thought]:
        """For each thought, the newest derived thought citing it and created after it.

        Args:
            thoughts: Thoughts to check (typically one retrieval result set)

        Returns:
            Dict of thought id -> superseding thought; thoughts that are not
            superseded are absent.
        """
        if not thoughts:
            return {}
        index = self.children_index()
        superseding = {}
        for thought in thoughts:
            newer = [c for c in index.get(thought.id, []) if c.created_at > thought.created_at]
            newest = _newest(newer)
            if newest is not None:
                superseding[thought.id] = newest
        return superseding

    def get_lineage(self, thought_id: str, max_depth: int = DEFAULT_LINEAGE_DEPTH) -> LineageResult:
        """Resolve the full derivation chain around one thought.

        Ancestors get negative depth, descendants positive, the root 0.

        Args:
            thought_id: Root of the traversal
            max_depth: Hops to follow in each direction (default: 10)

        Returns:
            LineageResult sorted by depth, then created_at, then id. ``truncated``
            is set when unvisited nodes remained beyond ``max_depth``.

        Raises:
            NotFoundError: If the root does not exist
        """
        if max_depth < 0:
            raise ValidationError(f"max_depth must be >= 0, got {max_depth}")
        points = self.store.get_by_ids([thought_id])
        root = load_thought(points[0]) if points else None
        if root is None:
            raise NotFoundError(f"Thought {thought_id} not found")

        found: dict[str, tuple[Thought, int]] = {root.id: (root, 0)}
        truncated = False

        # Ancestors
        frontier = [root]
        depth = 0
        while frontier:
            parent_ids = [
                sid for t in frontier for sid in t.source_ids if sid not in found
            ]
            parent_ids = list(dict.fromkeys(parent_ids))
            if not parent_ids:
                break
            if depth >= max_depth:
                truncated = True
                break
            depth += 1
            parents = load_thoughts(self.store.get_by_ids(parent_ids))
            missing = set(parent_ids) - {p.id for p in parents}
            if missing:
                logger.debug(f"Lineage of {thought_id}: {len(missing)} source(s) not found")
            frontier = []
            for parent in parents:
                if parent.id not in found:
                    found[parent.id] = (parent, -depth)
                    frontier.append(parent)

        # Descendants
        index = self.children_index()
        frontier = [root]
        depth = 0
        while frontier:
            children = [
                c for t in frontier for c in index.get(t.id, []) if c.id not in found
            ]
            if not children:
                break
            if depth >= max_depth:
                truncated = True
                break
            depth += 1
            frontier = []
            for child in children:
                if child.id not in found:
                    found[child.id] = (child, depth)
                    frontier.append(child)

        chain = [
            self._to_node(thought, node_depth, found)
            for thought, node_depth in found.values()
        ]
        chain.sort(key=lambda n: (n.depth, n.created_at, n.id))
        return LineageResult(id=root.id, chain=chain, truncated=truncated)

    def _to_node(
        self,
        thought: Thought,
        depth: int,
        found: dict[str, tuple[Thought, int]],
    ) -> LineageNode:
        successors = [
            other for other, _ in found.values()
            if other.is_derived
            and thought.id in other.source_ids
            and other.created_at > thought.created_at
        ]
        successor = _newest(successors)
        return LineageNode(
            id=thought.id,
            thought_type=thought.thought_type,
            content_preview=thought.preview(),
            contributor=thought.contributor_name,
            created_at=thought.created_at,
            source_ids=thought.source_ids,
            depth=depth,
            superseded=successor is not None,
            superseded_by=successor.id if successor else None,
        )
