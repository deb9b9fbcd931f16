"""Tests for the greedy clustering engine."""

import math

import pytest

from rfp_engine.core.exceptions import ClusteringError
from rfp_engine.schemas.clustering import ClusteringThresholds
from rfp_engine.services.clustering.clustering_engine import (
    ClusterCandidate,
    ClusteringEngine,
    SeedMaster,
    cluster_id_for,
)


def _candidates(vectors):
    return [
        ClusterCandidate(question_id=f"q{i}", text=f"Question {i}", embedding=vector)
        for i, vector in enumerate(vectors)
    ]


def _angle_vectors(degrees):
    return [[math.cos(math.radians(d)), math.sin(math.radians(d))] for d in degrees]


@pytest.fixture
def three_close_one_far():
    """q0..q2 pairwise 0.95, q3 at 0.50 to each of them."""
    a = math.sqrt(0.95)
    b = math.sqrt(0.05)
    c = 0.5 / a
    d = math.sqrt(1 - c * c)
    return [
        [a, b, 0.0, 0.0, 0.0],
        [a, 0.0, b, 0.0, 0.0],
        [a, 0.0, 0.0, b, 0.0],
        [c, 0.0, 0.0, 0.0, d],
    ]


class TestClusteringEngine:
    def test_three_similar_questions_and_one_outlier(self, three_close_one_far):
        engine = ClusteringEngine(ClusteringThresholds(cluster_threshold=0.90, similar_threshold=0.80))

        result = engine.cluster(_candidates(three_close_one_far))

        assert len(result.clusters) == 2
        big, single = result.clusters
        assert big.master_question_id == "q0"
        assert big.question_count == 3
        assert [m.question_id for m in big.members] == ["q0", "q1", "q2"]
        assert single.master_question_id == "q3"
        assert single.question_count == 1
        assert result.similar_links == []

    def test_pair_below_cluster_threshold_yields_suggestion_link(self):
        vectors = [[1.0, 0.0], [0.85, math.sqrt(1 - 0.85 ** 2)]]
        engine = ClusteringEngine(ClusteringThresholds(cluster_threshold=0.90, similar_threshold=0.80))

        result = engine.cluster(_candidates(vectors))

        assert len(result.clusters) == 2
        assert all(c.question_count == 1 for c in result.clusters)
        assert len(result.similar_links) == 1
        link = result.similar_links[0]
        assert (link.question_id, link.similar_question_id) == ("q0", "q1")
        assert link.similarity == pytest.approx(0.85, abs=1e-6)

    def test_partition_and_master_uniqueness(self):
        vectors = _angle_vectors([0, 5, 10, 40, 42, 90, 91, 180])
        result = ClusteringEngine().cluster(_candidates(vectors))

        assert sum(c.question_count for c in result.clusters) == len(vectors)
        seen = [m.question_id for c in result.clusters for m in c.members]
        assert sorted(seen) == sorted(f"q{i}" for i in range(len(vectors)))

        for cluster in result.clusters:
            masters = [m for m in cluster.members if m.is_master]
            assert len(masters) == 1
            assert masters[0].question_id == cluster.master_question_id
            assert masters[0].similarity == 1.0
            for member in cluster.members:
                if not member.is_master:
                    assert member.similarity >= 0.90

    def test_cluster_count_at_extreme_thresholds(self):
        vectors = _angle_vectors([0, 8, 15, 21, 30, 44, 60, 61, 75, 89])

        def count(threshold):
            engine = ClusteringEngine(ClusteringThresholds(cluster_threshold=threshold, similar_threshold=0.0))
            return len(engine.cluster(_candidates(vectors)).clusters)

        assert count(0.0) == 1
        assert count(1.0) == len(vectors)

    def test_each_threshold_bounds_members_and_separates_masters(self):
        degrees = [0, 8, 15, 21, 30, 44, 60, 61, 75, 89]
        angle_of = {f"q{i}": d for i, d in enumerate(degrees)}
        for threshold in (0.60, 0.70, 0.80, 0.90, 0.95, 0.99):
            engine = ClusteringEngine(ClusteringThresholds(cluster_threshold=threshold, similar_threshold=0.0))
            result = engine.cluster(_candidates(_angle_vectors(degrees)))

            assert sorted(result.assignments) == sorted(angle_of)
            masters = [c.master_question_id for c in result.clusters]
            for i, first in enumerate(masters):
                for second in masters[i + 1:]:
                    assert math.cos(math.radians(angle_of[second] - angle_of[first])) < threshold
            for cluster in result.clusters:
                for member in cluster.members:
                    assert member.similarity >= threshold

    def test_greedy_pass_can_merge_more_at_a_higher_threshold(self):
        # q0-q1 0.85, q0-q2 and q0-q3 0.8075, q1-q2 and q1-q3 0.95, q2-q3 0.805.
        # At 0.81 q1 joins q0 and can no longer gather q2 and q3.
        s = math.sqrt(1 - 0.85 ** 2)
        e = math.sqrt(1 - 0.95 ** 2)
        vectors = [
            [1.0, 0.0, 0.0],
            [0.85, s, 0.0],
            [0.95 * 0.85, 0.95 * s, e],
            [0.95 * 0.85, 0.95 * s, -e],
        ]

        counts = {}
        for threshold in (0.81, 0.90):
            engine = ClusteringEngine(ClusteringThresholds(cluster_threshold=threshold, similar_threshold=0.0))
            counts[threshold] = len(engine.cluster(_candidates(vectors)).clusters)

        assert counts == {0.81: 3, 0.90: 2}

    def test_same_input_yields_same_assignments(self, three_close_one_far):
        engine = ClusteringEngine()
        first = engine.cluster(_candidates(three_close_one_far))
        second = engine.cluster(_candidates(three_close_one_far))

        assert first.assignments == second.assignments
        assert [c.master_question_id for c in first.clusters] == [c.master_question_id for c in second.clusters]

    def test_tie_goes_to_earliest_master(self):
        # q1 is orthogonal to q0, q2 sits exactly between them
        vectors = [[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]]
        engine = ClusteringEngine(ClusteringThresholds(cluster_threshold=0.70, similar_threshold=0.0))

        result = engine.cluster(_candidates(vectors))

        assert result.assignments["q2"].master_question_id == "q0"

    def test_zero_vector_becomes_its_own_master(self):
        vectors = [[1.0, 0.0], [0.0, 0.0], [1.0, 0.0]]
        result = ClusteringEngine().cluster(_candidates(vectors))

        assert result.assignments["q1"].is_master is True
        assert result.assignments["q2"].master_question_id == "q0"
        assert all("q1" not in (l.question_id, l.similar_question_id) for l in result.similar_links)

    def test_negative_similarity_is_clipped(self):
        result = ClusteringEngine().cluster(_candidates([[1.0, 0.0], [-1.0, 0.0]]))

        assert len(result.clusters) == 2
        assert result.similar_links == []

    def test_inconsistent_dimensions_raise(self):
        with pytest.raises(ClusteringError):
            ClusteringEngine().cluster(_candidates([[1.0, 0.0], [1.0, 0.0, 0.0]]))

    def test_duplicate_ids_raise(self):
        duplicate = [
            ClusterCandidate(question_id="q", text="a", embedding=[1.0, 0.0]),
            ClusterCandidate(question_id="q", text="b", embedding=[0.0, 1.0]),
        ]
        with pytest.raises(ClusteringError):
            ClusteringEngine().cluster(duplicate)

    def test_empty_input(self):
        result = ClusteringEngine().cluster([])

        assert result.clusters == []
        assert result.assignments == {}

    def test_new_questions_join_seeded_master(self):
        seed = SeedMaster(cluster_id="c-1", question_id="m", text="Existing master", embedding=[1.0, 0.0])
        candidates = [
            ClusterCandidate(question_id="n1", text="close", embedding=[0.99, 0.05]),
            ClusterCandidate(question_id="n2", text="far", embedding=[0.0, 1.0]),
        ]

        result = ClusteringEngine().cluster(candidates, seed_masters=[seed])

        seeded = result.clusters[0]
        assert seeded.seeded is True
        assert seeded.cluster_id == "c-1"
        assert [m.question_id for m in seeded.members] == ["n1"]
        assert result.assignments["n1"].master_question_id == "m"
        assert [c.master_question_id for c in result.new_clusters] == ["n2"]
        assert "m" not in result.assignments


def test_cluster_id_is_deterministic():
    assert cluster_id_for("p", "q") == cluster_id_for("p", "q")
    assert cluster_id_for("p", "q") != cluster_id_for("p", "r")
