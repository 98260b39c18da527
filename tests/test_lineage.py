"""Tests for lineage resolution."""

from datetime import datetime, timedelta, timezone

import pytest

from thoughtspace.errors import NotFoundError, ValidationError
from thoughtspace.lineage import LineageResolver


T0 = datetime(2026, 2, 1, 9, 0, tzinfo=timezone.utc)


def at(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


@pytest.fixture
def chain(add):
    """A <- B <- C, each refining the one before."""
    a = add("retry with exponential backoff", created_at=at(0))
    b = add("retry with jittered backoff", thought_type="refinement",
            source_ids=[a.id], created_at=at(1))
    c = add("retry with jittered backoff, capped at 30s", thought_type="refinement",
            source_ids=[b.id], created_at=at(2))
    return a, b, c


class TestGetLineage:
    """Tests for LineageResolver.get_lineage()."""

    def test_chain_from_root(self, space, chain):
        """From the root the chain runs forward with growing depth."""
        a, b, c = chain
        result = space.get_lineage(a.id)
        assert result.ids() == [a.id, b.id, c.id]
        assert [n.depth for n in result.chain] == [0, 1, 2]
        assert not result.truncated

    def test_supersession(self, space, chain):
        """Each node is superseded by its direct successor; the tip is not."""
        a, b, c = chain
        result = space.get_lineage(a.id)
        assert result.node(a.id).superseded_by == b.id
        assert result.node(b.id).superseded_by == c.id
        assert not result.node(c.id).superseded
        assert result.node(c.id).superseded_by is None

    def test_ancestors_negative_depth(self, space, chain):
        """Ancestors get negative depths."""
        a, b, c = chain
        result = space.get_lineage(c.id)
        assert result.ids() == [a.id, b.id, c.id]
        assert [n.depth for n in result.chain] == [-2, -1, 0]

    def test_same_chain_from_any_member(self, space, chain):
        """Any member of a chain resolves the same nodes."""
        a, b, c = chain
        from_middle = space.get_lineage(b.id)
        assert set(from_middle.ids()) == {a.id, b.id, c.id}
        assert from_middle.node(a.id).depth == -1
        assert from_middle.node(c.id).depth == 1

    def test_isolated_thought(self, space, add):
        """A thought with no relatives is its own chain."""
        t = add("a thought with no relatives")
        result = space.get_lineage(t.id)
        assert result.ids() == [t.id]
        assert not result.truncated

    def test_consolidation_has_two_parents(self, space, add):
        """Both sources of a consolidation are superseded by it."""
        a = add("cache invalidation on write", created_at=at(0))
        b = add("cache invalidation on ttl", created_at=at(1))
        merged = add("cache invalidation strategies", thought_type="consolidation",
                     source_ids=[a.id, b.id], created_at=at(2))
        result = space.get_lineage(merged.id)
        assert result.ids() == [a.id, b.id, merged.id]
        assert result.node(a.id).superseded_by == merged.id
        assert result.node(b.id).superseded_by == merged.id

    def test_truncated_at_max_depth(self, space, chain):
        """Stopping at max_depth with nodes left sets truncated."""
        a, b, _ = chain
        result = space.get_lineage(a.id, max_depth=1)
        assert result.ids() == [a.id, b.id]
        assert result.truncated

    def test_zero_depth_returns_root_only(self, space, chain):
        """max_depth=0 returns only the starting thought."""
        a, _, _ = chain
        result = space.get_lineage(a.id, max_depth=0)
        assert result.ids() == [a.id]
        assert result.truncated

    def test_cycle_terminates(self, space, add):
        """Corrupt data that forms a cycle still resolves, each node once."""
        x = add("cycle member x", thought_type="refinement", source_ids=["y-id"], created_at=at(0))
        add("cycle member y", id="y-id", thought_type="refinement",
            source_ids=[x.id], created_at=at(1))
        result = space.get_lineage(x.id)
        assert sorted(result.ids()) == sorted([x.id, "y-id"])

    def test_missing_source_tolerated(self, space, add):
        """A dangling source id is skipped."""
        orphan = add("refines something deleted", thought_type="refinement", source_ids=["gone"])
        assert space.get_lineage(orphan.id).ids() == [orphan.id]

    def test_not_found(self, space):
        """Unknown ids raise NotFoundError."""
        with pytest.raises(NotFoundError):
            space.get_lineage("no-such-thought")

    def test_negative_depth_rejected(self, space, chain):
        """A negative max_depth raises ValidationError."""
        with pytest.raises(ValidationError):
            space.get_lineage(chain[0].id, max_depth=-1)


class TestFindSuperseding:
    """Tests for LineageResolver.find_superseding()."""

    def test_newest_later_child_wins(self, store, add):
        """Only children created after the parent count, newest first."""
        parent = add("parent", created_at=at(5))
        add("older child", thought_type="refinement", source_ids=[parent.id], created_at=at(1))
        first = add("child one", thought_type="refinement", source_ids=[parent.id], created_at=at(6))
        second = add("child two", thought_type="refinement", source_ids=[parent.id], created_at=at(7))
        superseding = LineageResolver(store, page_size=2).find_superseding([parent, first])
        assert {k: v.id for k, v in superseding.items()} == {parent.id: second.id}

    def test_empty_input(self, store):
        """No thoughts, no superseding."""
        assert LineageResolver(store).find_superseding([]) == {}
