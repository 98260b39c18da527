"""Tests for the in-memory store and ThoughtFilter."""

from datetime import datetime, timedelta, timezone

import pytest

from thoughtspace.errors import NotFoundError, StoreError
from thoughtspace.store import (
    InMemoryThoughtStore,
    StoredPoint,
    ThoughtFilter,
    iter_points,
    load_thought,
    load_thoughts,
    parse_timestamp,
)


NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


@pytest.fixture
def mem():
    s = InMemoryThoughtStore()
    s.upsert("a", [1.0, 0.0, 0.0], {"tags": ["x"], "thought_type": "original", "access_count": 5})
    s.upsert("b", [0.9, 0.1, 0.0], {"tags": ["y"], "thought_type": "refinement", "access_count": 1})
    s.upsert("c", [0.0, 1.0, 0.0], {"tags": ["x", "y"], "thought_type": "original", "access_count": 0})
    return s


class TestInMemoryStore:
    """Tests for InMemoryThoughtStore."""

    def test_search_ranked_by_similarity(self, mem):
        """Results are ordered by cosine similarity."""
        results = mem.search([1.0, 0.0, 0.0], limit=3)
        assert [p.id for p in results] == ["a", "b", "c"]
        assert results[0].score == pytest.approx(1.0)

    def test_search_respects_limit(self, mem):
        """No more than limit points come back."""
        assert len(mem.search([1.0, 0.0, 0.0], limit=1)) == 1

    def test_search_with_filter(self, mem):
        """Filtered search only returns matching payloads."""
        results = mem.search([1.0, 0.0, 0.0], limit=3, query_filter=ThoughtFilter(tags_any=["y"]))
        assert [p.id for p in results] == ["b", "c"]

    def test_search_empty_store(self):
        """An empty store returns no results."""
        assert InMemoryThoughtStore().search([1.0], limit=5) == []

    def test_dimension_mismatch(self, mem):
        """Vectors must match the store's dimension."""
        with pytest.raises(StoreError):
            mem.upsert("d", [1.0, 0.0], {})

    def test_payloads_are_copies(self, mem):
        """Mutating a returned payload does not touch the store."""
        point = mem.get_by_ids(["a"])[0]
        point.payload["tags"].append("mutated")
        assert mem.get_by_ids(["a"])[0].payload["tags"] == ["x"]

    def test_get_by_ids_skips_missing(self, mem):
        """Unknown ids are skipped and order is kept."""
        assert [p.id for p in mem.get_by_ids(["c", "zzz", "a"])] == ["c", "a"]

    def test_patch_payload(self, mem):
        """Patched fields are merged into the payload."""
        mem.patch_payload("a", {"access_count": 6})
        assert mem.get_by_ids(["a"])[0].payload["access_count"] == 6

    def test_patch_missing_raises(self, mem):
        """Patching an unknown id raises NotFoundError."""
        with pytest.raises(NotFoundError):
            mem.patch_payload("zzz", {"access_count": 1})

    def test_scroll_pages_in_id_order(self, mem):
        """Pages follow id order and end with a None cursor."""
        page, cursor = mem.scroll(page_size=2)
        assert [p.id for p in page] == ["a", "b"]
        assert cursor == "b"
        page, cursor = mem.scroll(page_size=2, cursor=cursor)
        assert [p.id for p in page] == ["c"]
        assert cursor is None

    def test_iter_points_with_filter(self, mem):
        """iter_points walks every page of matching points."""
        ids = [p.id for p in iter_points(mem, ThoughtFilter(min_access_count=1), page_size=1)]
        assert ids == ["a", "b"]

    def test_delete_and_count(self, mem):
        """Only existing ids count as deleted."""
        assert mem.delete(["a", "zzz"]) == 1
        assert mem.count() == 2


class TestThoughtFilter:
    """Tests for ThoughtFilter.matches()."""

    def test_empty_filter_matches_everything(self):
        """A filter with no conditions matches any payload."""
        f = ThoughtFilter()
        assert f.is_empty()
        assert f.matches({})

    @pytest.mark.parametrize("kwargs", [
        {"tags_any": ["x"]},
        {"thought_types": ["refinement"]},
        {"min_access_count": 1},
        {"last_accessed_before": NOW},
        {"uncategorized": True},
    ])
    def test_every_condition_makes_filter_non_empty(self, kwargs):
        """Each supported condition is seen by is_empty() and matches()."""
        f = ThoughtFilter(**kwargs)
        assert not f.is_empty()
        assert not f.matches({"tags": ["y"], "thought_type": "original", "thought_category": "decision_record"})

    def test_thought_types(self):
        """Missing thought_type counts as original."""
        f = ThoughtFilter(thought_types=["refinement", "consolidation"])
        assert f.matches({"thought_type": "refinement"})
        assert not f.matches({"thought_type": "original"})
        assert not f.matches({})

    def test_last_accessed_before_skips_never_accessed(self):
        """Thoughts that were never retrieved never count as idle."""
        f = ThoughtFilter(last_accessed_before=NOW)
        assert not f.matches({"last_accessed": None})
        assert f.matches({"last_accessed": (NOW - timedelta(hours=2)).isoformat()})
        assert not f.matches({"last_accessed": NOW.isoformat()})

    def test_uncategorized(self):
        """Missing or explicit uncategorized both match."""
        f = ThoughtFilter(uncategorized=True)
        assert f.matches({})
        assert f.matches({"thought_category": "uncategorized"})
        assert not f.matches({"thought_category": "decision_record"})

    def test_conditions_combine(self):
        """All conditions must hold at once."""
        f = ThoughtFilter(tags_any=["x"], min_access_count=3)
        assert f.matches({"tags": ["x"], "access_count": 3})
        assert not f.matches({"tags": ["x"], "access_count": 2})
        assert not f.matches({"tags": ["z"], "access_count": 9})


class TestLoading:
    """Tests for parse_timestamp() and the tolerant thought loaders."""

    def test_parse_z_suffix(self):
        """A trailing Z is read as UTC."""
        assert parse_timestamp("2026-03-01T00:00:00Z") == NOW

    def test_parse_naive_assumed_utc(self):
        """Naive timestamps are taken as UTC."""
        assert parse_timestamp("2026-03-01T00:00:00") == NOW

    def test_parse_garbage(self):
        """Unparseable values give None."""
        assert parse_timestamp("not a date") is None
        assert parse_timestamp(None) is None

    def test_malformed_payload_skipped(self):
        """A point missing required fields is dropped, not raised."""
        good = StoredPoint(id="g", payload={"content": "c", "contributor_id": "a", "contributor_name": "A"})
        bad = StoredPoint(id="b", payload={"content": "no contributor"})
        assert load_thought(bad) is None
        assert [t.id for t in load_thoughts([good, bad])] == ["g"]
