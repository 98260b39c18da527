"""Core data models for the thought space.

Uses Pydantic v2 for validation, ULID for sortable unique IDs.
"""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from ulid import ULID

from .constants import (
    CONTENT_PREVIEW_LENGTH,
    DEFAULT_KNOWLEDGE_SPACE,
    MAX_CONTEXT_LENGTH,
    PHEROMONE_INITIAL,
    PHEROMONE_MAX,
    PHEROMONE_MIN,
)


def generate_id() -> str:
    """Generate a ULID rendered as a UUID string.

    Keeps ULID ordering (hex digits preserve byte order) while staying
    acceptable to vector stores that only take UUID point ids.
    """
    return str(ULID().to_uuid())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


def clamp_weight(weight: float) -> float:
    """Clamp a pheromone weight into its legal domain."""
    return max(PHEROMONE_MIN, min(PHEROMONE_MAX, weight))


ThoughtType = Literal["original", "refinement", "consolidation"]
THOUGHT_TYPES: tuple[str, ...] = ("original", "refinement", "consolidation")
DERIVED_TYPES: tuple[str, ...] = ("refinement", "consolidation")

ThoughtCategory = Literal[
    "state_snapshot",
    "decision_record",
    "operational_learning",
    "task_outcome",
    "correction",
    "uncategorized",
    "transition_marker",
    "design_decision",
]

QualityFlag = Literal["keyword_echo", "orphaned_reference"]

# Fields the metadata patch path may touch. Anything else is rejected.
METADATA_FIELDS: tuple[str, ...] = (
    "thought_category",
    "topic",
    "temporal_scope",
    "quality_flags",
    "corrected_fact",
    "correct_fact",
    "supersedes",
)
CORRECTION_FIELDS: tuple[str, ...] = ("corrected_fact", "correct_fact")


class AccessLogEntry(BaseModel):
    """One retrieval of a thought by an agent."""

    agent_id: str
    timestamp: datetime = Field(default_factory=utc_now)
    session_id: str


class CoRetrieval(BaseModel):
    """How often another thought was returned in the same result set."""

    thought_id: str
    count: int = Field(default=1, ge=1)


class Thought(BaseModel):
    """A stored unit of contributed knowledge plus its usage telemetry.

    The embedding lives in the vector store; everything else is the
    point payload.
    """

    id: str = Field(default_factory=generate_id)
    content: str
    contributor_id: str
    contributor_name: str
    thought_type: ThoughtType = "original"
    source_ids: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    context_metadata: str | None = None
    knowledge_space_id: str = DEFAULT_KNOWLEDGE_SPACE

    # Classification metadata (patchable)
    thought_category: ThoughtCategory | None = None
    topic: str | None = None
    temporal_scope: str | None = None
    quality_flags: list[QualityFlag] = Field(default_factory=list)
    corrected_fact: str | None = None
    correct_fact: str | None = None
    supersedes: str | None = None

    # Telemetry
    pheromone_weight: float = PHEROMONE_INITIAL
    access_count: int = Field(default=0, ge=0)
    accessed_by: list[str] = Field(default_factory=list)
    access_log: list[AccessLogEntry] = Field(default_factory=list)
    co_retrieved_with: list[CoRetrieval] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    last_accessed: datetime | None = None

    @field_validator("pheromone_weight", mode="before")
    @classmethod
    def _clamp_weight(cls, value):
        if value is None:
            return PHEROMONE_INITIAL
        return clamp_weight(float(value))

    @model_validator(mode="after")
    def _check_lineage(self) -> "Thought":
        if self.thought_type in DERIVED_TYPES and not self.source_ids:
            raise ValueError(f"{self.thought_type} thoughts require source_ids")
        if self.thought_type == "original" and self.source_ids:
            raise ValueError("original thoughts cannot have source_ids")
        return self

    @property
    def is_derived(self) -> bool:
        return self.thought_type in DERIVED_TYPES

    @property
    def unique_users(self) -> int:
        return len(set(self.accessed_by))

    def preview(self, length: int = CONTENT_PREVIEW_LENGTH) -> str:
        return self.content[:length]

    def to_payload(self) -> dict:
        """Serialize for the vector store (the id travels separately)."""
        return self.model_dump(mode="json", exclude={"id"})

    @classmethod
    def from_payload(cls, thought_id: str, payload: dict) -> "Thought":
        """Rebuild a thought from a store point."""
        return cls.model_validate({**payload, "id": thought_id})


class ThoughtMetadata(BaseModel):
    """Metadata-only patch for a thought.

    ``thought_category`` is the variant tag; the correction fields belong to
    the ``correction`` variant only. Unknown keys are rejected.
    """

    model_config = ConfigDict(extra="forbid")

    thought_category: ThoughtCategory | None = None
    topic: str | None = Field(default=None, max_length=200)
    temporal_scope: str | None = Field(default=None, max_length=100)
    quality_flags: list[QualityFlag] | None = None
    corrected_fact: str | None = Field(default=None, max_length=MAX_CONTEXT_LENGTH)
    correct_fact: str | None = Field(default=None, max_length=MAX_CONTEXT_LENGTH)
    supersedes: str | None = None

    @model_validator(mode="after")
    def _check_variant(self) -> "ThoughtMetadata":
        has_correction = any(getattr(self, f) is not None for f in CORRECTION_FIELDS)
        if (
            has_correction
            and self.thought_category is not None
            and self.thought_category != "correction"
        ):
            raise ValueError(
                "corrected_fact/correct_fact are only valid for thought_category='correction'"
            )
        return self

    def changed_fields(self) -> dict:
        """Only the fields the caller actually set."""
        return self.model_dump(mode="json", exclude_unset=True)


class ContributionResult(BaseModel):
    """Outcome of a successful contribution."""

    id: str
    pheromone_weight: float
    tags: list[str] = Field(default_factory=list)


class RetrievedThought(BaseModel):
    """One ranked retrieval result."""

    id: str
    content: str
    contributor_id: str
    contributor_name: str
    score: float
    raw_score: float
    pheromone_weight: float
    tags: list[str] = Field(default_factory=list)
    thought_type: ThoughtType = "original"
    source_ids: list[str] = Field(default_factory=list)
    superseded: bool = False
    refined_by: str | None = None


class LineageNode(BaseModel):
    """A thought positioned relative to the lineage root."""

    id: str
    thought_type: ThoughtType
    content_preview: str
    contributor: str
    created_at: datetime
    source_ids: list[str] = Field(default_factory=list)
    depth: int
    superseded: bool = False
    superseded_by: str | None = None


class LineageResult(BaseModel):
    """Full derivation chain around one thought, sorted by depth."""

    id: str
    chain: list[LineageNode] = Field(default_factory=list)
    truncated: bool = False

    def ids(self) -> list[str]:
        return [node.id for node in self.chain]

    def node(self, thought_id: str) -> LineageNode | None:
        for n in self.chain:
            if n.id == thought_id:
                return n
        return None


class Highway(BaseModel):
    """A thought with sustained multi-agent traffic."""

    id: str
    content_preview: str
    access_count: int
    unique_users: int
    traffic_score: int
    pheromone_weight: float
    tags: list[str] = Field(default_factory=list)

    def describe(self) -> str:
        return (
            f"{self.content_preview} "
            f"({self.access_count} accesses, {self.unique_users} agents)"
        )


class TagCluster(BaseModel):
    tag: str
    count: int


class Disambiguation(BaseModel):
    """Tag distribution of an ambiguous result set."""

    total_found: int
    clusters: list[TagCluster]

    def describe(self) -> str:
        areas = ", ".join(f"{c.tag} ({c.count})" for c in self.clusters)
        return (
            f"I found {self.total_found} thoughts across {len(self.clusters)} areas: "
            f"{areas}. Which area interests you?"
        )


class QueryLogEntry(BaseModel):
    """Append-only audit record of one retrieval."""

    id: str = Field(default_factory=generate_id)
    agent_id: str
    session_id: str
    query_text: str = ""
    context_text: str | None = None
    returned_ids: list[str] = Field(default_factory=list)
    result_count: int = 0
    timestamp: datetime = Field(default_factory=utc_now)
    knowledge_space_id: str = DEFAULT_KNOWLEDGE_SPACE


class MemorySource(BaseModel):
    """A retrieved thought as shown in a memory response."""

    id: str
    contributor: str
    score: float
    content_preview: str
    content: str | None = None
    superseded: bool = False
    refined_by: str | None = None


class MemoryResult(BaseModel):
    response: str
    sources: list[MemorySource] = Field(default_factory=list)
    highways_nearby: list[str] = Field(default_factory=list)
    disambiguation: Disambiguation | None = None
    guidance: str | None = None


class MemoryTrace(BaseModel):
    session_id: str
    operations: list[str] = Field(default_factory=list)
    thoughts_retrieved: int = 0
    thoughts_contributed: int = 0
    contribution_threshold_met: bool = False
    context_used: bool = False
    retrieval_method: str = "vector"
    quality_flags: list[QualityFlag] = Field(default_factory=list)
    contributed_thought_id: str | None = None


class MemoryResponse(BaseModel):
    """Result plus trace of one orchestrated memory request."""

    result: MemoryResult
    trace: MemoryTrace
