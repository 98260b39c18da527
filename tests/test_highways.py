"""Tests for highway ranking."""

import pytest

from thoughtspace.errors import ValidationError
from thoughtspace.highways import traffic_score


def busy(add, content, count, users, **fields):
    agents = [f"agent-{i}" for i in range(users)]
    return add(content, access_count=count, accessed_by=agents, **fields)


class TestHighways:
    """Tests for global highway ranking."""

    def test_floor(self, space, add):
        """Thoughts need both enough accesses and enough distinct agents."""
        hot = busy(add, "deploy with blue green switches", 5, 3)
        busy(add, "one agent reads this a lot", 9, 1)
        busy(add, "two agents read this twice", 2, 2)
        assert [h.id for h in space.get_highways()] == [hot.id]

    def test_sorted_by_traffic(self, space, add):
        """Highways come back busiest first."""
        low = busy(add, "low traffic thought", 3, 2)
        high = busy(add, "high traffic thought", 10, 4)
        mid = busy(add, "mid traffic thought", 5, 3)
        highways = space.get_highways()
        assert [h.id for h in highways] == [high.id, mid.id, low.id]
        assert highways[0].traffic_score == 40
        assert highways[0].unique_users == 4

    def test_ties_broken_by_id(self, space, add):
        """Equal traffic falls back to id order."""
        first = busy(add, "tied thought one", 4, 2, id="aaa")
        second = busy(add, "tied thought two", 4, 2, id="bbb")
        assert [h.id for h in space.get_highways()] == [first.id, second.id]

    def test_limit(self, space, add):
        """At most limit highways are returned."""
        for i in range(5):
            busy(add, f"highway {i}", 3 + i, 2)
        assert len(space.get_highways(limit=2)) == 2

    def test_custom_thresholds(self, space, add):
        """The access and user floors can be lowered."""
        t = busy(add, "lightly travelled", 1, 1)
        assert [h.id for h in space.get_highways(min_access=1, min_users=1)] == [t.id]

    def test_describe(self, space, add):
        """describe() gives a one-line summary."""
        busy(add, "deploy with blue green switches", 5, 3)
        [h] = space.get_highways()
        assert h.describe() == "deploy with blue green switches (5 accesses, 3 agents)"

    @pytest.mark.parametrize("kwargs", [{"limit": 0}, {"min_access": -1}, {"min_users": -1}])
    def test_invalid_arguments(self, space, kwargs):
        """Out-of-range arguments raise ValidationError."""
        with pytest.raises(ValidationError):
            space.get_highways(**kwargs)

    def test_traffic_score(self, add):
        """Traffic is accesses times distinct agents."""
        assert traffic_score(busy(add, "x", 6, 3)) == 18


class TestContextHighways:
    """Tests for highways near a context."""

    def test_only_similar_highways(self, space, add):
        """The candidate pool is the most similar highways; traffic ranks within it."""
        busy(add, "postgres vacuum tuning", 3, 2)
        busiest = busy(add, "postgres vacuum freeze", 6, 3)
        busy(add, "postgres vacuum settings", 4, 2)
        far = busy(add, "kubernetes autoscaling", 20, 5)
        ids = [h.id for h in space.get_highways(context="postgres vacuum", limit=1)]
        assert ids == [busiest.id]
        assert far.id == space.get_highways(limit=1)[0].id

    def test_floor_applies(self, space, add):
        """Context mode still enforces the floor."""
        busy(add, "postgres vacuum tuning", 1, 1)
        assert space.get_highways(context="postgres vacuum") == []
