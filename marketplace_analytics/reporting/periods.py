"""
Period arithmetic and derived report figures.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, List, Sequence, TypeVar

from marketplace_analytics.database.models import AnalyticsPeriod, ConversionEventType
from marketplace_analytics.schemas import ConversionFunnelReport, FunnelStageCount, FunnelStageReport
from marketplace_analytics.utils import percentage, round_half_up

Number = TypeVar("Number", int, float)

FUNNEL_LABELS: Dict[ConversionEventType, str] = {
    ConversionEventType.VIEW: "Product Views",
    ConversionEventType.ADD_TO_CART: "Added to Cart",
    ConversionEventType.CHECKOUT_STARTED: "Checkout Started",
    ConversionEventType.CHECKOUT_COMPLETED: "Purchase Completed",
    ConversionEventType.DOWNLOAD: "Downloaded",
}

PERIOD_DAYS = {
    AnalyticsPeriod.SEVEN_DAYS: 7,
    AnalyticsPeriod.THIRTY_DAYS: 30,
    AnalyticsPeriod.NINETY_DAYS: 90,
}


@dataclass(frozen=True)
class PeriodBoundaries:
    """A trailing window and the equal-length window right before it"""
    current_start: datetime
    current_end: datetime
    previous_start: datetime
    previous_end: datetime


def calc_percent_change(previous: float, current: float) -> float:
    """
    Percent change from ``previous`` to ``current`` with 2 decimals.

    Growth from zero is reported as 100, and zero to zero as 0.
    """
    if previous == 0 and current == 0:
        return 0.0
    if previous == 0:
        return 100.0
    return round_half_up((current - previous) / previous * 10000) / 100


def _years_before(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year - years)
    except ValueError:
        # 29 February in a non-leap target year
        return moment.replace(year=moment.year - years, day=28)


def period_boundaries(period: AnalyticsPeriod, now: datetime) -> PeriodBoundaries:
    if period == AnalyticsPeriod.ONE_YEAR:
        current_start = _years_before(now, 1)
        previous_start = _years_before(current_start, 1)
    else:
        length = timedelta(days=PERIOD_DAYS[period])
        current_start = now - length
        previous_start = current_start - length
    return PeriodBoundaries(
        current_start=current_start,
        current_end=now,
        previous_start=previous_start,
        previous_end=current_start,
    )


def calendar_days(start: datetime, end: datetime) -> List[date]:
    """Every calendar day from ``start``'s date to ``end``'s date inclusive."""
    first, last = start.date(), end.date()
    return [first + timedelta(days=offset) for offset in range((last - first).days + 1)]


def dense_daily_series(days: Sequence[date], values: Dict[date, Number], default: Number) -> List[Number]:
    return [values.get(day, default) for day in days]


def build_funnel_report(funnel: List[FunnelStageCount]) -> ConversionFunnelReport:
    """
    Stage rates against the first stage and drop-off against the previous one.

    Drop-off is 0 for the first stage and whenever the previous stage is empty.
    """
    view_count = next((s.count for s in funnel if s.stage == ConversionEventType.VIEW), 0)
    purchase_count = next(
        (s.count for s in funnel if s.stage == ConversionEventType.CHECKOUT_COMPLETED), 0
    )

    stages = []
    for index, stage in enumerate(funnel):
        previous_count = funnel[index - 1].count if index > 0 else stage.count
        dropoff = 0.0
        if index > 0 and previous_count > 0:
            dropoff = percentage(previous_count - stage.count, previous_count)
        stages.append(
            FunnelStageReport(
                stage=stage.stage,
                label=FUNNEL_LABELS.get(stage.stage, stage.stage.value),
                count=stage.count,
                rate=percentage(stage.count, view_count),
                dropoff_rate=dropoff,
            )
        )

    return ConversionFunnelReport(
        stages=stages,
        overall_conversion_rate=percentage(purchase_count, view_count),
    )
