"""
Error taxonomy for the analytics engine.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from marketplace_analytics.utils import utcnow


class AnalyticsError(Exception):
    """Base class for analytics engine errors"""


class EntityNotFoundError(AnalyticsError):
    """A product, seller or category referenced by a lookup does not exist"""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class AggregationError(AnalyticsError):
    """The platform phase of a daily aggregation failed and the run was aborted"""

    def __init__(self, period: date, cause: Exception):
        self.period = period
        self.cause = cause
        super().__init__(f"Aggregation for {period.isoformat()} failed: {cause}")


class CounterStoreUnavailable(AnalyticsError):
    """The real-time counter store could not be reached"""

    def __init__(self, operation: str, key: str, cause: Optional[Exception] = None):
        self.operation = operation
        self.key = key
        self.cause = cause
        super().__init__(f"Counter store {operation} failed for {key}: {cause}")


@dataclass
class EntityFailure:
    """One seller or product whose snapshot could not be written"""
    scope: str
    entity_id: str
    error: str
    error_type: str
    failed_at: datetime = field(default_factory=utcnow)
