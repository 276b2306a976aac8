"""
Aggregation Module
"""
from .engine import AggregationEngine, AggregationRunResult
from .scoring import PerformanceScorer, compose_score

__all__ = [
    "AggregationEngine",
    "AggregationRunResult",
    "PerformanceScorer",
    "compose_score",
]
