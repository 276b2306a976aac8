"""
Unit Tests for Performance Scoring
"""
import pytest

from marketplace_analytics.aggregation.scoring import (
    compose_score,
    conversion_score,
    rating_score,
    revenue_trend_score,
    view_score,
)
from marketplace_analytics.schemas import ScoreBreakdown
from marketplace_analytics.utils import percentage, round2, round_half_up


class TestRounding:
    """Half-up rounding helpers"""

    @pytest.mark.parametrize("value,expected", [(2.5, 3), (0.5, 1), (1.49, 1), (-0.5, 0), (-1.5, -1)])
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected

    def test_round2(self):
        assert round2(10.125) == 10.13
        assert round2(7.0) == 7.0

    def test_percentage_of_zero_whole(self):
        assert percentage(5, 0) == 0.0
        assert percentage(1, 3) == 33.33
        assert percentage(2, 3) == 66.67


class TestViewScore:
    """Logarithmic view component"""

    def test_no_views(self):
        assert view_score(0) == 0

    def test_single_view(self):
        # log2(2) * 10
        assert view_score(1) == 10

    def test_caps_at_100(self):
        assert view_score(1023) == 100
        assert view_score(10_000_000) == 100


class TestConversionScore:
    """Conversion component against the 5% reference"""

    def test_no_views(self):
        assert conversion_score(5, 0) == 0

    def test_reference_rate_scores_100(self):
        assert conversion_score(5, 100) == 100

    def test_half_reference(self):
        assert conversion_score(25, 1000) == 50

    def test_above_reference_is_capped(self):
        # 200 views, 12 purchases: 6% conversion
        assert conversion_score(12, 200) == 100


class TestRatingScore:
    """Rating weighted by review confidence"""

    def test_full_confidence(self):
        assert rating_score(4.0, 10) == 80
        assert rating_score(5.0, 250) == 100

    def test_partial_confidence(self):
        assert rating_score(4.5, 5) == 45

    def test_no_reviews(self):
        assert rating_score(5.0, 0) == 0


class TestRevenueTrendScore:
    """Growth vs the previous window"""

    def test_both_zero(self):
        assert revenue_trend_score(0, 0) == 0

    def test_new_revenue(self):
        assert revenue_trend_score(10.0, 0) == 100

    def test_flat_revenue(self):
        assert revenue_trend_score(100.0, 100.0) == 50

    def test_growth(self):
        assert revenue_trend_score(150.0, 100.0) == 75
        assert revenue_trend_score(500.0, 100.0) == 100

    def test_decline(self):
        assert revenue_trend_score(50.0, 100.0) == 25
        assert revenue_trend_score(0.0, 100.0) == 0


class TestCompositeScore:
    """Weighted composite"""

    def test_weighted_sum(self):
        breakdown = ScoreBreakdown(view_score=50, conversion_score=100, rating_score=45, revenue_trend_score=75)
        result = compose_score(breakdown)
        # 15 + 30 + 9 + 15
        assert result.score == 69
        assert result.breakdown == breakdown

    def test_bounds(self):
        top = ScoreBreakdown(view_score=100, conversion_score=100, rating_score=100, revenue_trend_score=100)
        bottom = ScoreBreakdown(view_score=0, conversion_score=0, rating_score=0, revenue_trend_score=0)
        assert compose_score(top).score == 100
        assert compose_score(bottom).score == 0

    def test_rounds_half_up(self):
        # 0.3 * 5 = 1.5
        breakdown = ScoreBreakdown(view_score=5, conversion_score=0, rating_score=0, revenue_trend_score=0)
        assert compose_score(breakdown).score == 2
