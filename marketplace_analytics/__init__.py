"""
Marketplace Analytics Engine

Daily snapshot aggregation, real-time counters, product scoring,
recommendations and reporting over marketplace events.
"""

__version__ = "1.0.0"
