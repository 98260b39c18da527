"""Shared test fixtures and helpers for thoughtspace tests."""

import hashlib
import re
import numpy as np
import pytest

from thoughtspace.engine import ThoughtSpace
from thoughtspace.models import Thought
from thoughtspace.querylog import QueryLog
from thoughtspace.store import InMemoryThoughtStore


class HashingEmbedder:
    """Deterministic bag-of-words embedder.

    Each lowercase word is hashed into one of ``dims`` buckets; the count
    vector is L2-normalized. Texts sharing words are cosine-similar.
    """

    def __init__(self, dims: int = 1024):
        self.dims = dims
        self.calls = 0

    @property
    def dimension(self) -> int:
        return self.dims

    def embed(self, text: str) -> list[float]:
        self.calls += 1
        vec = np.zeros(self.dims, dtype=np.float32)
        for word in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dims
            vec[bucket] += 1.0
        norm = np.linalg.norm(vec)
        if norm == 0:
            vec[0] = 1.0
            norm = 1.0
        return (vec / norm).tolist()


def put_thought(store, embedder, content: str, **fields) -> Thought:
    """Insert a thought directly, bypassing the contribution engine.

    Lets tests set telemetry and timestamps that contributions can't.
    """
    fields.setdefault("contributor_id", "agent-a")
    fields.setdefault("contributor_name", "Agent A")
    thought = Thought(content=content, **fields)
    store.upsert(thought.id, embedder.embed(content), thought.to_payload())
    return thought


# --- Fixtures ---


@pytest.fixture
def embedder():
    return HashingEmbedder()


@pytest.fixture
def store():
    return InMemoryThoughtStore()


@pytest.fixture
def query_log():
    """In-memory query log, closed after the test."""
    log = QueryLog(":memory:")
    yield log
    log.close()


@pytest.fixture
def space(store, embedder, query_log):
    """A ThoughtSpace over the in-memory store and hashing embedder."""
    ts = ThoughtSpace(store, embedder, query_log, decay_interval=3600)
    yield ts
    ts.stop()


@pytest.fixture
def add(store, embedder):
    """Shortcut: add(content, **fields) inserts a thought directly."""
    def _add(content: str, **fields) -> Thought:
        return put_thought(store, embedder, content, **fields)
    return _add
