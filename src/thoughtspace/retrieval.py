"""Retrieval engine: similarity search, usage reinforcement, lineage-aware ranking.

Every retrieval is also a write: each returned thought gets its access
telemetry and pheromone weight bumped (best-effort, from the search
snapshot), and one query log entry is appended.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence

from .constants import (
    DEFAULT_RETRIEVE_LIMIT,
    DISAMBIGUATION_CLUSTER_LIMIT,
    DISAMBIGUATION_MIN_RESULTS,
    DISAMBIGUATION_MIN_TAGS,
    MAX_ADJUSTED_SCORE,
    MAX_RETRIEVE_LIMIT,
    MIN_RETRIEVE_LIMIT,
    SUPERSEDED_PENALTY,
    SYNTHESIS_BOOST,
)
from .errors import ThoughtSpaceError, ValidationError
from .lineage import LineageResolver
from .models import (
    Disambiguation,
    QueryLogEntry,
    RetrievedThought,
    TagCluster,
    Thought,
    generate_id,
    utc_now,
)
from .pheromone import record_access
from .querylog import QueryLog
from .store import ThoughtFilter, ThoughtStore, load_thought

logger = logging.getLogger(__name__)


def adjust_scores(
    scored: list[tuple[Thought, float]],
    superseding: dict[str, Thought],
) -> list[tuple[Thought, float]]:
    """Apply lineage adjustments and re-rank.

    A superseded thought keeps ``SUPERSEDED_PENALTY`` of its score. A derived
    thought citing a superseded thought of the same result set is boosted by
    ``SYNTHESIS_BOOST`` (capped at 1.0). Ties keep their original rank.
    """
    superseded_here = {t.id for t, _ in scored if t.id in superseding}
    adjusted = []
    for thought, score in scored:
        if thought.id in superseded_here:
            score *= SUPERSEDED_PENALTY
        if thought.is_derived and superseded_here.intersection(thought.source_ids):
            score = min(MAX_ADJUSTED_SCORE, score * SYNTHESIS_BOOST)
        adjusted.append((thought, score))
    # sorted() is stable, so equal scores stay in search order
    return sorted(adjusted, key=lambda pair: -pair[1])


def tag_distribution(results: Sequence[RetrievedThought]) -> list[TagCluster]:
    """Count tags across a result set, most frequent first (ties by tag)."""
    counts = Counter(tag for r in results for tag in dict.fromkeys(r.tags))
    return [
        TagCluster(tag=tag, count=count)
        for tag, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    ]


def disambiguate(
    results: list[RetrievedThought],
) -> tuple[Disambiguation | None, list[RetrievedThought]]:
    """Detect a broad result set spanning several topics.

    Returns:
        (disambiguation, results). When at least 10 results span at least 3
        distinct tags, the summary is returned and results are narrowed to
        the top 5 of the largest cluster; otherwise (None, results).
    """
    if len(results) < DISAMBIGUATION_MIN_RESULTS:
        return None, results
    clusters = tag_distribution(results)
    if len(clusters) < DISAMBIGUATION_MIN_TAGS:
        return None, results
    largest = clusters[0].tag
    narrowed = [r for r in results if largest in r.tags][:DISAMBIGUATION_CLUSTER_LIMIT]
    return Disambiguation(total_found=len(results), clusters=clusters), narrowed


class RetrievalEngine:
    """Ranks thoughts for a query and records the usage it implies."""

    def __init__(
        self,
        store: ThoughtStore,
        query_log: QueryLog,
        lineage: LineageResolver,
    ):
        self.store = store
        self.query_log = query_log
        self.lineage = lineage

    def retrieve(
        self,
        query_vector: Sequence[float],
        agent_id: str,
        session_id: str | None = None,
        tags: list[str] | None = None,
        limit: int = DEFAULT_RETRIEVE_LIMIT,
        query_text: str = "",
        context_text: str | None = None,
    ) -> list[RetrievedThought]:
        """Find, reinforce and rank thoughts similar to a query embedding.

        Args:
            query_vector: Embedding of the query
            agent_id: Retrieving agent (recorded in telemetry and the log)
            session_id: Session to attribute the retrieval to (generated if empty)
            tags: Restrict to thoughts carrying any of these tags
            limit: Maximum results (1-100)
            query_text: Query text for the log (feeds echo detection)
            context_text: Context text for the log

        Returns:
            Results sorted by adjusted score

        Raises:
            ValidationError: Bad limit or missing agent id
            StoreError: The similarity search failed
        """
        if not agent_id:
            raise ValidationError("agent_id is required")
        if not MIN_RETRIEVE_LIMIT <= limit <= MAX_RETRIEVE_LIMIT:
            raise ValidationError(f"limit must be between {MIN_RETRIEVE_LIMIT} and {MAX_RETRIEVE_LIMIT}")
        session_id = session_id or generate_id()

        query_filter = ThoughtFilter(tags_any=list(tags)) if tags else None
        points = self.store.search(query_vector, limit, query_filter)

        scored: list[tuple[Thought, float]] = []
        payloads: dict[str, dict] = {}
        for point in points:
            thought = load_thought(point)
            if thought is None:
                continue
            scored.append((thought, float(point.score or 0.0)))
            payloads[thought.id] = point.payload
        raw_scores = {t.id: s for t, s in scored}

        weights = self._reinforce(scored, payloads, agent_id, session_id)

        try:
            superseding = self.lineage.find_superseding([t for t, _ in scored])
        except ThoughtSpaceError as e:
            logger.warning(f"Lineage adjustment skipped: {e}")
            superseding = {}
        ranked = adjust_scores(scored, superseding)

        results = [
            RetrievedThought(
                id=thought.id,
                content=thought.content,
                contributor_id=thought.contributor_id,
                contributor_name=thought.contributor_name,
                score=score,
                raw_score=raw_scores[thought.id],
                pheromone_weight=weights.get(thought.id, thought.pheromone_weight),
                tags=thought.tags,
                thought_type=thought.thought_type,
                source_ids=thought.source_ids,
                superseded=thought.id in superseding,
                refined_by=superseding[thought.id].id if thought.id in superseding else None,
            )
            for thought, score in ranked
        ]

        self._log(agent_id, session_id, query_text, context_text, results)
        logger.debug(f"Retrieved {len(results)} thoughts for {agent_id} (session {session_id})")
        return results

    def _reinforce(
        self,
        scored: list[tuple[Thought, float]],
        payloads: dict[str, dict],
        agent_id: str,
        session_id: str,
    ) -> dict[str, float]:
        """Patch access telemetry on every result. Returns the new weights."""
        now = utc_now()
        ids = [t.id for t, _ in scored]
        weights = {}
        for thought, _ in scored:
            others = [i for i in ids if i != thought.id]
            patch = record_access(payloads[thought.id], agent_id, session_id, others, now)
            try:
                self.store.patch_payload(thought.id, patch)
            except ThoughtSpaceError as e:
                logger.warning(f"Telemetry update failed for {thought.id}: {e}")
                continue
            weights[thought.id] = patch["pheromone_weight"]
        return weights

    def _log(
        self,
        agent_id: str,
        session_id: str,
        query_text: str,
        context_text: str | None,
        results: list[RetrievedThought],
    ):
        entry = QueryLogEntry(
            agent_id=agent_id,
            session_id=session_id,
            query_text=query_text,
            context_text=context_text,
            returned_ids=[r.id for r in results],
            result_count=len(results),
        )
        try:
            self.query_log.append(entry)
        except ThoughtSpaceError as e:
            logger.warning(f"Query log append failed for session {session_id}: {e}")
