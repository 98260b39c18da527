"""Tests for retrieval, reinforcement and lineage-aware ranking."""

from datetime import datetime, timedelta, timezone

import pytest

from thoughtspace.errors import StoreError, ValidationError
from thoughtspace.models import RetrievedThought
from thoughtspace.retrieval import adjust_scores, disambiguate, tag_distribution
from thoughtspace.store import InMemoryThoughtStore


BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def at(minutes: int) -> datetime:
    return BASE_TIME + timedelta(minutes=minutes)


def result(i, tags):
    return RetrievedThought(
        id=f"t{i}", content=f"thought {i}", contributor_id="a", contributor_name="A",
        score=1.0 - i * 0.01, raw_score=1.0 - i * 0.01, pheromone_weight=1.0, tags=tags,
    )


class TestRetrieve:
    """Tests for RetrievalEngine.retrieve() through the facade."""

    def test_finds_similar_thought_first(self, space, add):
        """The closest thought ranks first."""
        target = add("postgres vacuum tuning for large tables")
        add("kubernetes pod autoscaling thresholds")
        results = space.retrieve("vacuum tuning postgres", "agent-b")
        assert results[0].id == target.id
        assert results[0].raw_score > results[1].raw_score

    def test_telemetry_updated(self, space, add):
        """A retrieval records access, weight and co-retrieval."""
        t = add("postgres vacuum tuning")
        other = add("postgres replication lag")
        space.retrieve("postgres", "agent-b", session_id="s1")
        thought = space.get_thought(t.id)
        assert thought.access_count == 1
        assert thought.accessed_by == ["agent-b"]
        assert thought.pheromone_weight == pytest.approx(1.05)
        assert thought.last_accessed is not None
        assert thought.access_log[0].session_id == "s1"
        assert [c.thought_id for c in thought.co_retrieved_with] == [other.id]

    def test_result_reports_reinforced_weight(self, space, add):
        """Results carry the weight after reinforcement."""
        add("postgres vacuum tuning")
        [r] = space.retrieve("postgres vacuum", "agent-b", limit=1)
        assert r.pheromone_weight == pytest.approx(1.05)

    def test_k_agents_k_retrievals(self, space, add):
        """k retrievals by k distinct agents: count k, k accessors, weight 1 + 0.05k."""
        t = add("postgres vacuum tuning")
        for k in range(6):
            space.retrieve("postgres vacuum", f"agent-{k}")
        thought = space.get_thought(t.id)
        assert thought.access_count == 6
        assert thought.unique_users == 6
        assert thought.pheromone_weight == pytest.approx(1.3)

    def test_tag_filter_any_of(self, space, add):
        """A tag filter keeps thoughts carrying any listed tag."""
        add("postgres vacuum tuning", tags=["db"])
        add("postgres connection pooling", tags=["perf"])
        add("postgres backups", tags=["ops"])
        results = space.retrieve("postgres", "agent-b", tags=["db", "ops"])
        assert sorted(r.tags[0] for r in results) == ["db", "ops"]

    def test_query_logged(self, space, add):
        """Every retrieval is written to the query log."""
        t = add("postgres vacuum tuning")
        space.retrieve("postgres vacuum", "agent-b", session_id="s1", context="db work")
        [entry] = space.query_log.read_by_session("s1")
        assert entry.agent_id == "agent-b"
        assert entry.query_text == "postgres vacuum"
        assert entry.context_text == "db work"
        assert entry.returned_ids == [t.id]
        assert entry.result_count == 1

    def test_empty_store_logs_empty_result(self, space):
        """Empty results are logged too."""
        assert space.retrieve("anything at all", "agent-b", session_id="s1") == []
        assert space.query_log.read_by_session("s1")[0].result_count == 0

    @pytest.mark.parametrize("limit", [0, 101])
    def test_limit_bounds(self, space, limit):
        """Limits outside 1..100 raise ValidationError."""
        with pytest.raises(ValidationError):
            space.retrieve("postgres", "agent-b", limit=limit)

    def test_store_failure_raises(self, space, embedder, query_log):
        """A failing search propagates as StoreError."""
        class BrokenStore(InMemoryThoughtStore):
            def search(self, vector, limit, query_filter=None):
                raise StoreError("search backend down")

        space.retrieval.store = BrokenStore()
        with pytest.raises(StoreError):
            space.retrieve("postgres", "agent-b")

    def test_failed_telemetry_patch_is_skipped(self, space, store, add):
        """A failed write is logged; the result still comes back."""
        add("postgres vacuum tuning")

        def failing_patch(point_id, fields):
            raise StoreError("write refused")

        store.patch_payload = failing_patch
        [r] = space.retrieve("postgres vacuum", "agent-b")
        assert r.pheromone_weight == 1.0


class TestLineageAdjustment:
    """Tests for superseded penalties and synthesis boosts."""

    def test_superseded_result_penalized(self, space, add):
        """A superseded thought scores 0.7 of its raw score."""
        old = add("postgres vacuum tuning", created_at=at(0))
        new = add("postgres vacuum tuning revised", thought_type="refinement",
                  source_ids=[old.id], created_at=at(5))
        results = {r.id: r for r in space.retrieve("postgres vacuum tuning", "agent-b")}
        assert results[old.id].superseded
        assert results[old.id].refined_by == new.id
        assert results[old.id].score == pytest.approx(results[old.id].raw_score * 0.7)
        assert not results[new.id].superseded

    def test_synthesis_boost_capped(self, space, add):
        """The boosted score never exceeds 1.0."""
        old = add("postgres vacuum tuning", created_at=at(0))
        new = add("postgres vacuum tuning", thought_type="refinement",
                  source_ids=[old.id], created_at=at(5))
        results = space.retrieve("postgres vacuum tuning", "agent-b")
        assert results[0].id == new.id
        assert results[0].score == pytest.approx(1.0)

    def test_older_derivation_does_not_supersede(self, space, add):
        """Only derivations created after a thought supersede it."""
        old = add("postgres vacuum tuning", created_at=at(10))
        add("postgres vacuum notes", thought_type="refinement", source_ids=[old.id], created_at=at(0))
        results = {r.id: r for r in space.retrieve("postgres vacuum tuning", "agent-b")}
        assert not results[old.id].superseded

    def test_newest_refinement_reported(self, space, add):
        """refined_by points at the newest later refinement."""
        old = add("postgres vacuum tuning", created_at=at(0))
        add("first refinement", thought_type="refinement", source_ids=[old.id], created_at=at(1))
        latest = add("second refinement", thought_type="refinement", source_ids=[old.id], created_at=at(2))
        results = {r.id: r for r in space.retrieve("postgres vacuum tuning", "agent-b")}
        assert results[old.id].refined_by == latest.id

    def test_adjust_scores_keeps_rank_on_ties(self):
        """Equal scores keep their search order."""
        from thoughtspace.models import Thought

        a = Thought(id="a", content="a", contributor_id="x", contributor_name="X")
        b = Thought(id="b", content="b", contributor_id="x", contributor_name="X")
        assert [t.id for t, _ in adjust_scores([(a, 0.5), (b, 0.5)], {})] == ["a", "b"]


class TestDisambiguation:
    """Tests for tag_distribution() and disambiguate()."""

    def test_distribution_sorted(self):
        """Tags are counted and sorted by count, then name."""
        results = [result(0, ["db", "perf"]), result(1, ["db"]), result(2, ["ops"])]
        clusters = tag_distribution(results)
        assert [(c.tag, c.count) for c in clusters] == [("db", 2), ("ops", 1), ("perf", 1)]

    def test_triggers_on_broad_results(self):
        """Ten or more results across three tags are summarized and narrowed."""
        tags = [["db"]] * 6 + [["ops"]] * 3 + [["perf"]]
        results = [result(i, t) for i, t in enumerate(tags)]
        summary, narrowed = disambiguate(results)
        assert summary.total_found == 10
        assert summary.clusters[0].tag == "db"
        assert [r.id for r in narrowed] == ["t0", "t1", "t2", "t3", "t4"]
        assert summary.describe().startswith("I found 10 thoughts across 3 areas: db (6), ops (3), perf (1).")

    def test_too_few_results(self):
        """Fewer than ten results are returned as is."""
        results = [result(i, [f"tag{i}"]) for i in range(9)]
        summary, narrowed = disambiguate(results)
        assert summary is None
        assert narrowed == results

    def test_too_few_tags(self):
        """Two tags are not broad enough."""
        results = [result(i, ["db"] if i % 2 else ["ops"]) for i in range(12)]
        summary, _ = disambiguate(results)
        assert summary is None
