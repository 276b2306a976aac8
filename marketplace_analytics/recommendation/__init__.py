"""
Recommendation Module
"""
from .engine import RecommendationEngine
from .ranking import in_top_percentile, top_percentile

__all__ = ["RecommendationEngine", "in_top_percentile", "top_percentile"]
