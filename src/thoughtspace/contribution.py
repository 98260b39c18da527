"""Contribution engine: validate, gate, embed and persist new thoughts."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from pydantic import ValidationError as PydanticValidationError

from .constants import (
    MAX_AGENT_ID_LENGTH,
    MAX_AGENT_NAME_LENGTH,
    MAX_CONTENT_LENGTH,
    MAX_CONTEXT_LENGTH,
    SCAN_PAGE_SIZE,
)
from .embedding import Embedder
from .errors import NotFoundError, ValidationError
from .models import (
    DERIVED_TYPES,
    THOUGHT_TYPES,
    ContributionResult,
    Thought,
    ThoughtMetadata,
)
from .pheromone import inherit_weight
from .quality import classify_contribution, extract_tags, meets_contribution_threshold, merge_tags
from .store import ThoughtStore, iter_points, load_thoughts

logger = logging.getLogger(__name__)


def validate_metadata(fields: dict | None) -> dict:
    """Validate a metadata dict against the closed allow-list.

    Returns:
        Only the fields the caller set, JSON-ready

    Raises:
        ValidationError: code INVALID_METADATA on unknown keys or bad values
    """
    if not fields:
        return {}
    try:
        return ThoughtMetadata.model_validate(fields).changed_fields()
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'metadata'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(f"Invalid metadata: {problems}", code="INVALID_METADATA") from e


def embedding_text(content: str, context: str | None) -> str:
    """Text that gets embedded: context first when present."""
    if context:
        return f"{context} {content}"
    return content


@dataclass
class ContributionDecision:
    """Whether a submission should be persisted, and why."""

    store: bool
    threshold_met: bool
    explicit_derivation: bool
    quality_flags: list[str] = field(default_factory=list)

    @property
    def is_echo(self) -> bool:
        return "keyword_echo" in self.quality_flags


class ContributionEngine:
    """Creates thoughts. The only component that inserts points."""

    def __init__(
        self,
        store: ThoughtStore,
        embedder: Embedder,
        page_size: int = SCAN_PAGE_SIZE,
    ):
        self.store = store
        self.embedder = embedder
        self.page_size = page_size

    def evaluate(
        self,
        content: str,
        recent_queries: list[str],
        thought_type: str = "original",
    ) -> ContributionDecision:
        """Run the worthiness gate and the quality classifier.

        Explicit refinements/consolidations are always stored; an original is
        stored only when it passes the gate and is not a keyword echo.
        """
        threshold_met = meets_contribution_threshold(content)
        flags = classify_contribution(content, recent_queries)
        explicit = thought_type in DERIVED_TYPES
        store = explicit or (threshold_met and "keyword_echo" not in flags)
        if not store and "keyword_echo" in flags:
            logger.info("Suppressed keyword-echo contribution")
        return ContributionDecision(
            store=store,
            threshold_met=threshold_met,
            explicit_derivation=explicit,
            quality_flags=flags,
        )

    def existing_tags(self) -> list[str]:
        """Every tag currently in use, sorted."""
        tags: set[str] = set()
        for point in iter_points(self.store, page_size=self.page_size):
            tags.update(t for t in point.payload.get("tags") or [] if isinstance(t, str))
        return sorted(tags)

    def _validate(
        self,
        content: str,
        contributor_id: str,
        contributor_name: str,
        thought_type: str,
        source_ids: list[str],
        context: str | None,
    ):
        if not content or not content.strip():
            raise ValidationError("content must not be empty")
        if len(content) > MAX_CONTENT_LENGTH:
            raise ValidationError(f"content exceeds {MAX_CONTENT_LENGTH} characters")
        if not contributor_id or not contributor_id.strip():
            raise ValidationError("contributor_id is required")
        if not contributor_name or not contributor_name.strip():
            raise ValidationError("contributor_name is required")
        if len(contributor_id) > MAX_AGENT_ID_LENGTH:
            raise ValidationError(f"contributor_id exceeds {MAX_AGENT_ID_LENGTH} characters")
        if len(contributor_name) > MAX_AGENT_NAME_LENGTH:
            raise ValidationError(f"contributor_name exceeds {MAX_AGENT_NAME_LENGTH} characters")
        if thought_type not in THOUGHT_TYPES:
            raise ValidationError(
                f"thought_type must be one of {', '.join(THOUGHT_TYPES)}, got {thought_type!r}",
                code="INVALID_THOUGHT_TYPE",
            )
        if thought_type in DERIVED_TYPES and not source_ids:
            raise ValidationError(
                f"{thought_type} requires at least one source_id",
                code="MISSING_SOURCE_IDS",
            )
        if thought_type == "original" and source_ids:
            raise ValidationError("original thoughts cannot have source_ids")
        if thought_type == "consolidation" and len(set(source_ids)) < 2:
            raise ValidationError("consolidation requires at least two distinct source_ids")
        if context is not None and len(context) > MAX_CONTEXT_LENGTH:
            raise ValidationError(f"context exceeds {MAX_CONTEXT_LENGTH} characters")

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
        """Validate and persist a new thought.

        Args:
            content: Thought text (1-10,000 chars)
            contributor_id: Contributing agent id
            contributor_name: Human-readable agent name
            thought_type: original, refinement or consolidation
            source_ids: Parents of a derived thought
            tags: Caller-supplied tags (merged with extracted ones)
            context: Optional context text, embedded ahead of the content
            metadata: Optional classification fields (closed allow-list)
            quality_flags: Flags computed by the classifier to keep on the thought

        Returns:
            ContributionResult with id, starting weight and final tags

        Raises:
            ValidationError: Malformed input (nothing is written)
            NotFoundError: A source id does not exist
            StoreError: Embedding or store write failed
        """
        source_ids = list(dict.fromkeys(source_ids or []))
        self._validate(content, contributor_id, contributor_name, thought_type, source_ids, context)
        meta = validate_metadata(metadata)

        source_weights: list[float] = []
        if source_ids:
            sources = {t.id: t for t in load_thoughts(self.store.get_by_ids(source_ids))}
            missing = [sid for sid in source_ids if sid not in sources]
            if missing:
                raise NotFoundError(f"Source thought(s) not found: {', '.join(missing)}")
            source_weights = [sources[sid].pheromone_weight for sid in source_ids]

        flags = list(dict.fromkeys((meta.pop("quality_flags", None) or []) + list(quality_flags or [])))
        final_tags = merge_tags(tags, extract_tags(content, self.existing_tags()))

        try:
            thought = Thought(
                content=content,
                contributor_id=contributor_id,
                contributor_name=contributor_name,
                thought_type=thought_type,
                source_ids=source_ids,
                tags=final_tags,
                context_metadata=context,
                quality_flags=flags,
                pheromone_weight=inherit_weight(thought_type, source_weights),
                **meta,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid thought: {e.errors()[0]['msg']}") from e

        vector = self.embedder.embed(embedding_text(content, context))
        self.store.upsert(thought.id, vector, thought.to_payload())
        logger.info(
            f"Contributed {thought.thought_type} {thought.id} by {contributor_id} "
            f"(weight={thought.pheromone_weight:.2f}, tags={len(final_tags)})"
        )
        return ContributionResult(
            id=thought.id,
            pheromone_weight=thought.pheromone_weight,
            tags=final_tags,
        )
