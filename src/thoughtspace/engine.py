"""Thought space facade - wires the store, query log and engines together."""

import logging
from datetime import datetime
from itertools import islice

from .config import ThoughtSpaceConfig
from .constants import (
    CONTENT_PREVIEW_LENGTH,
    DEFAULT_HIGHWAY_LIMIT,
    DEFAULT_HIGHWAY_MIN_ACCESS,
    DEFAULT_HIGHWAY_MIN_USERS,
    DEFAULT_LINEAGE_DEPTH,
    DEFAULT_RETRIEVE_LIMIT,
    DEFAULT_SOURCES_LIMIT,
    DECAY_INTERVAL_SECONDS,
    ECHO_RECENT_QUERIES,
    HIGHWAYS_NEARBY_LIMIT,
    MAX_AGENT_ID_LENGTH,
    MAX_AGENT_NAME_LENGTH,
    MAX_CONTENT_LENGTH,
    MAX_CONTEXT_LENGTH,
    MAX_RETRIEVE_LIMIT,
    SCAN_PAGE_SIZE,
)
from .contribution import ContributionEngine, embedding_text, validate_metadata
from .decay import DecayScheduler
from .embedding import Embedder, SentenceTransformerEmbedder
from .errors import NotFoundError, ThoughtSpaceError, ValidationError
from .feedback import SessionFeedbackTracker
from .highways import HighwayRanker
from .lineage import LineageResolver
from .models import (
    CORRECTION_FIELDS,
    ContributionResult,
    Highway,
    LineageResult,
    MemoryResponse,
    MemoryResult,
    MemorySource,
    MemoryTrace,
    RetrievedThought,
    Thought,
    generate_id,
)
from .querylog import QueryLog
from .retrieval import RetrievalEngine, disambiguate
from .store import InMemoryThoughtStore, ThoughtFilter, ThoughtStore, iter_points, load_thought

logger = logging.getLogger(__name__)

ONBOARDING_GUIDANCE = (
    "Welcome! I haven't seen you before. I'll track your interests as you interact. "
    "Ask me anything or share what you're learning."
)
NO_RESULTS_RESPONSE = (
    "No related thoughts found yet. Share what you're learning and I'll remember it."
)
RESPONSE_TOP_N = 3


def format_results(results: list[RetrievedThought]) -> str:
    """Top results as numbered lines, or the empty-space hint."""
    top = results[:RESPONSE_TOP_N]
    if not top:
        return NO_RESULTS_RESPONSE
    return "\n".join(
        f"[{i}] {r.contributor_name}: {r.content[:CONTENT_PREVIEW_LENGTH]} (score: {r.score:.2f})"
        for i, r in enumerate(top, start=1)
    )


class ThoughtSpace:
    """Main entry point: contribute, retrieve and maintain shared thoughts."""

    def __init__(
        self,
        store: ThoughtStore,
        embedder: Embedder,
        query_log: QueryLog,
        decay_interval: float = DECAY_INTERVAL_SECONDS,
        page_size: int = SCAN_PAGE_SIZE,
    ):
        """Initialize the thought space.

        Args:
            store: Vector store holding thoughts
            embedder: Text embedding model
            query_log: Append-only retrieval log
            decay_interval: Seconds between background decay passes
            page_size: Page size for store scans
        """
        self.store = store
        self.embedder = embedder
        self.query_log = query_log

        self.lineage = LineageResolver(store, page_size=page_size)
        self.contributions = ContributionEngine(store, embedder, page_size=page_size)
        self.retrieval = RetrievalEngine(store, query_log, self.lineage)
        self.highway_ranker = HighwayRanker(store, page_size=page_size)
        self.decay = DecayScheduler(store, interval=decay_interval, page_size=page_size)
        self.feedback = SessionFeedbackTracker(store, query_log)
        self.page_size = page_size

    @classmethod
    def from_config(cls, config: ThoughtSpaceConfig | None = None) -> "ThoughtSpace":
        """Build a thought space for the configured backend."""
        config = config or ThoughtSpaceConfig.from_env()
        embedder = SentenceTransformerEmbedder(config.embedding_model)

        if config.backend == "memory":
            store = InMemoryThoughtStore()
            query_log = QueryLog(":memory:")
        else:
            config.data_dir.mkdir(parents=True, exist_ok=True)
            query_log = QueryLog(config.db_path)
            if config.backend == "qdrant":
                from .qdrant_store import QdrantThoughtStore

                store = QdrantThoughtStore(url=config.qdrant_url, collection=config.collection)
            else:
                from .sqlite_store import SqliteVecThoughtStore

                store = SqliteVecThoughtStore(config.db_path)

        logger.info(f"Thought space ready (backend={config.backend}, data_dir={config.data_dir})")
        return cls(store, embedder, query_log, decay_interval=config.decay_interval)

    # --- Core operations ---

    def contribute(
        self,
        content: str,
        contributor_id: str,
        contributor_name: str,
        thought_type: str = "original",
        source_ids: list[str] | None = None,
        tags: list[str] | None = None,
        context: str | None = None,
        metadata: dict | None = None,
        quality_flags: list[str] | None = None,
    ) -> ContributionResult:
        return self.contributions.contribute(
            content,
            contributor_id,
            contributor_name,
            thought_type=thought_type,
            source_ids=source_ids,
            tags=tags,
            context=context,
            metadata=metadata,
            quality_flags=quality_flags,
        )

    def retrieve(
        self,
        query: str,
        agent_id: str,
        session_id: str | None = None,
        tags: list[str] | None = None,
        limit: int = DEFAULT_RETRIEVE_LIMIT,
        context: str | None = None,
    ) -> list[RetrievedThought]:
        """Embed a query (with optional context) and retrieve related thoughts."""
        if not query or not query.strip():
            raise ValidationError("query must not be empty")
        if context is not None and len(context) > MAX_CONTEXT_LENGTH:
            raise ValidationError(f"context exceeds {MAX_CONTEXT_LENGTH} characters")
        vector = self.embedder.embed(embedding_text(query, context))
        return self.retrieval.retrieve(
            vector,
            agent_id,
            session_id=session_id,
            tags=tags,
            limit=limit,
            query_text=query,
            context_text=context,
        )

    def get_lineage(self, thought_id: str, max_depth: int = DEFAULT_LINEAGE_DEPTH) -> LineageResult:
        return self.lineage.get_lineage(thought_id, max_depth=max_depth)

    def get_highways(
        self,
        min_access: int = DEFAULT_HIGHWAY_MIN_ACCESS,
        min_users: int = DEFAULT_HIGHWAY_MIN_USERS,
        limit: int = DEFAULT_HIGHWAY_LIMIT,
        context: str | None = None,
    ) -> list[Highway]:
        """Global highways, or highways near ``context`` when given."""
        vector = self.embedder.embed(context) if context else None
        return self.highway_ranker.highways(
            min_access=min_access,
            min_users=min_users,
            limit=limit,
            query_vector=vector,
        )

    def run_decay_pass(self, now: datetime | None = None) -> int:
        return self.decay.run_decay_pass(now)

    def apply_implicit_feedback(self, thought_ids: list[str]) -> int:
        """Give each thought the small implicit-feedback boost (+0.02, capped)."""
        return self.feedback.apply_implicit_feedback(thought_ids)

    def apply_session_feedback(self, session_id: str, exclude: list[str] | None = None) -> int:
        """Reinforce the thoughts returned earlier in a session."""
        skip = set(exclude or [])
        ids = [i for i in self.feedback.ids_for_session(session_id) if i not in skip]
        return self.apply_implicit_feedback(ids)

    # --- Thought access and metadata ---

    def get_thought(self, thought_id: str) -> Thought:
        points = self.store.get_by_ids([thought_id])
        thought = load_thought(points[0]) if points else None
        if thought is None:
            raise NotFoundError(f"Thought {thought_id} not found")
        return thought

    def patch_metadata(self, thought_id: str, fields: dict) -> Thought:
        """Update classification metadata only (never content or embedding).

        Raises:
            ValidationError: Unknown field or invalid value (INVALID_METADATA)
            NotFoundError: Thought does not exist
        """
        changes = validate_metadata(fields)
        if not changes:
            raise ValidationError("No metadata fields to update", code="INVALID_METADATA")
        thought = self.get_thought(thought_id)

        category = changes.get("thought_category", thought.thought_category)
        has_correction = any(
            (changes[f] if f in changes else getattr(thought, f)) is not None
            for f in CORRECTION_FIELDS
        )
        if has_correction and category not in (None, "correction"):
            raise ValidationError(
                "corrected_fact/correct_fact are only valid for thought_category='correction'",
                code="INVALID_METADATA",
            )

        self.store.patch_payload(thought_id, changes)
        logger.info(f"Patched metadata of {thought_id}: {', '.join(sorted(changes))}")
        return thought.model_copy(update=changes)

    def list_uncategorized(self, limit: int = 20, offset: int = 0) -> list[Thought]:
        """Thoughts without a category (or 'uncategorized'), in id order."""
        if not 1 <= limit <= MAX_RETRIEVE_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_RETRIEVE_LIMIT}")
        if offset < 0:
            raise ValidationError("offset must be non-negative")
        points = iter_points(self.store, ThoughtFilter(uncategorized=True), page_size=self.page_size)
        thoughts = []
        for point in islice(points, offset, offset + limit):
            thought = load_thought(point)
            if thought is not None:
                thoughts.append(thought)
        return thoughts

    def existing_tags(self) -> list[str]:
        return self.contributions.existing_tags()

    # --- Orchestrated request ---

    def memory(
        self,
        prompt: str,
        agent_id: str,
        agent_name: str,
        session_id: str | None = None,
        context: str | None = None,
        refines: str | None = None,
        consolidates: list[str] | None = None,
        tags: list[str] | None = None,
        full_content: bool = False,
    ) -> MemoryResponse:
        """One agent turn: maybe contribute, then retrieve and explain.

        Args:
            prompt: What the agent says or asks (1-10,000 chars)
            agent_id: Calling agent
            agent_name: Human-readable agent name
            session_id: Existing session (enables implicit feedback)
            context: Optional context embedded ahead of the prompt
            refines: Id of a thought this prompt refines
            consolidates: Ids (>= 2) of thoughts this prompt consolidates
            tags: Tags for a contributed thought
            full_content: Return full content in sources instead of a preview

        Returns:
            MemoryResponse with the formatted result and an operation trace
        """
        self._validate_memory_request(prompt, agent_id, agent_name, context, refines, consolidates)
        prompt = prompt.strip()
        caller_session = session_id
        session_id = session_id or generate_id()
        operations: list[str] = []

        if refines:
            thought_type, source_ids = "refinement", [refines]
        elif consolidates:
            thought_type, source_ids = "consolidation", list(consolidates)
        else:
            thought_type, source_ids = "original", []

        recent = self._recent_queries(agent_id)
        decision = self.contributions.evaluate(prompt, recent, thought_type)

        # Read before this request's retrieval lands in the log
        earlier_ids = self.feedback.ids_for_session(caller_session) if caller_session else []

        contributed_id = None
        if decision.store:
            result = self.contributions.contribute(
                prompt,
                agent_id,
                agent_name,
                thought_type=thought_type,
                source_ids=source_ids,
                tags=tags,
                context=context,
                quality_flags=decision.quality_flags,
            )
            contributed_id = result.id
            operations.append("contribute")

        vector = self.embedder.embed(embedding_text(prompt, context))
        results = self.retrieval.retrieve(
            vector,
            agent_id,
            session_id=session_id,
            limit=DEFAULT_RETRIEVE_LIMIT,
            query_text=prompt,
            context_text=context,
        )
        operations.append("retrieve")
        if results:
            operations.append("reinforce")

        disambiguation, results = disambiguate(results)
        if disambiguation is not None:
            response_text = disambiguation.describe()
            operations.append("disambiguate")
        else:
            response_text = format_results(results)

        guidance = None
        if self._query_count(agent_id) <= 1:
            guidance = ONBOARDING_GUIDANCE
            response_text = f"{guidance}\n\n{response_text}"
            operations.append("onboard")

        if caller_session and contributed_id:
            feedback_ids = [i for i in earlier_ids if i != contributed_id]
            if feedback_ids and self.feedback.apply_implicit_feedback(feedback_ids):
                operations.append("feedback_implicit")

        highways_nearby = self._highways_nearby(vector)

        sources = [
            MemorySource(
                id=r.id,
                contributor=r.contributor_name,
                score=round(r.score, 2),
                content_preview=r.content[:CONTENT_PREVIEW_LENGTH],
                content=r.content if full_content else None,
                superseded=r.superseded,
                refined_by=r.refined_by,
            )
            for r in results[:DEFAULT_SOURCES_LIMIT]
        ]

        return MemoryResponse(
            result=MemoryResult(
                response=response_text,
                sources=sources,
                highways_nearby=highways_nearby,
                disambiguation=disambiguation,
                guidance=guidance,
            ),
            trace=MemoryTrace(
                session_id=session_id,
                operations=operations,
                thoughts_retrieved=len(results),
                thoughts_contributed=1 if contributed_id else 0,
                contribution_threshold_met=decision.threshold_met,
                context_used=bool(context),
                quality_flags=decision.quality_flags,
                contributed_thought_id=contributed_id,
            ),
        )

    def _validate_memory_request(self, prompt, agent_id, agent_name, context, refines, consolidates):
        if not prompt or not prompt.strip():
            raise ValidationError("prompt is required and must be a non-empty string")
        if len(prompt) > MAX_CONTENT_LENGTH:
            raise ValidationError(f"prompt must be at most {MAX_CONTENT_LENGTH} characters")
        if not agent_id or not agent_id.strip():
            raise ValidationError("agent_id is required and must be a non-empty string")
        if len(agent_id) > MAX_AGENT_ID_LENGTH:
            raise ValidationError(f"agent_id must be at most {MAX_AGENT_ID_LENGTH} characters")
        if not agent_name or not agent_name.strip():
            raise ValidationError("agent_name is required and must be a non-empty string")
        if len(agent_name) > MAX_AGENT_NAME_LENGTH:
            raise ValidationError(f"agent_name must be at most {MAX_AGENT_NAME_LENGTH} characters")
        if context and len(context) > MAX_CONTEXT_LENGTH:
            raise ValidationError(f"context must be at most {MAX_CONTEXT_LENGTH} characters")
        if refines and consolidates:
            raise ValidationError("refines and consolidates are mutually exclusive")
        if consolidates is not None and len(set(consolidates)) < 2:
            raise ValidationError("consolidates requires at least two thought ids")

    def _recent_queries(self, agent_id: str) -> list[str]:
        try:
            return self.query_log.recent_texts_by_agent(agent_id, ECHO_RECENT_QUERIES)
        except ThoughtSpaceError as e:
            logger.warning(f"Echo check skipped, query log unavailable: {e}")
            return []

    def _query_count(self, agent_id: str) -> int:
        try:
            return self.query_log.count_by_agent(agent_id)
        except ThoughtSpaceError as e:
            logger.warning(f"Onboarding check skipped, query log unavailable: {e}")
            return 2

    def _highways_nearby(self, vector) -> list[str]:
        try:
            nearby = self.highway_ranker.highways(limit=HIGHWAYS_NEARBY_LIMIT, query_vector=vector)
        except ThoughtSpaceError as e:
            logger.warning(f"Nearby highways skipped: {e}")
            return []
        return [h.describe() for h in nearby]

    # --- Lifecycle ---

    def start(self) -> bool:
        """Start background decay."""
        return self.decay.start()

    def stop(self) -> bool:
        return self.decay.stop()

    def close(self):
        """Stop decay and release the store and query log."""
        self.stop()
        self.store.close()
        self.query_log.close()

    def stats(self) -> dict:
        return {
            "thoughts": self.store.count(),
            "queries": self.query_log.count(),
            "decay_running": self.decay.is_running(),
            "decay_passes": self.decay.passes_run,
            "last_decay": self.decay.last_run.isoformat() if self.decay.last_run else None,
            "last_decay_updated": self.decay.last_updated,
        }

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False
