"""
Real-time counters
"""
from .realtime import RealtimeCounters, TodayStats
from .store import CounterStore, RedisCounterStore

__all__ = ["CounterStore", "RedisCounterStore", "RealtimeCounters", "TodayStats"]
