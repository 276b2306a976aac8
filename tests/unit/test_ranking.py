"""
Unit Tests for Ranking Helpers
"""
from marketplace_analytics.recommendation.ranking import (
    in_top_percentile,
    merge_weighted,
    rank_by_weight,
    top_percentile,
)


class TestTopPercentile:
    """ceil(n * fraction) heads"""

    def test_top_ten_of_hundred(self):
        ranked = [f"p{i:03d}" for i in range(100)]
        head = top_percentile(ranked, 0.1)

        assert len(head) == 10
        assert in_top_percentile("p000", ranked)
        assert in_top_percentile("p009", ranked)
        assert not in_top_percentile("p010", ranked)
        assert not in_top_percentile("p099", ranked)

    def test_small_lists_round_up(self):
        assert top_percentile(["a", "b", "c", "d", "e"]) == ["a"]
        assert top_percentile(["a", "b", "c", "d", "e", "f", "g", "h", "i", "j", "k"]) == ["a", "b"]

    def test_empty_ranking(self):
        assert top_percentile([]) == []
        assert not in_top_percentile("a", [])

    def test_absent_product(self):
        assert not in_top_percentile("zzz", ["a", "b"])


class TestWeightedCandidates:
    """Candidate accumulation for personalized lists"""

    def test_merge_skips_excluded(self):
        weights = {}
        merge_weighted(weights, [("a", 3), ("b", 1), ("seen", 10)], excluded={"seen"})
        merge_weighted(weights, [("b", 4)], excluded={"seen"})
        assert weights == {"a": 3, "b": 5}

    def test_rank_is_stable_for_ties(self):
        weights = {"x": 2, "y": 5, "z": 2, "w": 2}
        assert rank_by_weight(weights, 10) == ["y", "x", "z", "w"]
        assert rank_by_weight(weights, 2) == ["y", "x"]
