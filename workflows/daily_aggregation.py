"""
Prefect Workflow Orchestration - Daily Snapshot Aggregation

Scheduled workflow materializing yesterday's analytics snapshots:
- Runs the aggregation engine for one closed UTC day
- Alerts on partial failures (sellers/products that could not be written)
- Drops cached reports so they pick up the new snapshots
"""

from datetime import date, timedelta
from typing import Optional

from prefect import flow, get_run_logger, task
from redis.exceptions import RedisError

from marketplace_analytics.aggregation.engine import AggregationEngine
from marketplace_analytics.config import get_settings
from marketplace_analytics.config.logging import configure_logging
from marketplace_analytics.database.connection import close_database, get_session_factory, init_database
from marketplace_analytics.serving.cache import CacheManager, close_redis, init_redis
from marketplace_analytics.store import EventStore, SnapshotStore
from marketplace_analytics.utils import utcnow

settings = get_settings()


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="aggregate_period",
    description="Write platform, seller and product snapshots for one day",
    retries=2,
    retry_delay_seconds=120,
)
async def aggregate_period(period_date: date) -> dict:
    """Run the aggregation engine for ``period_date``"""
    logger = get_run_logger()

    factory = get_session_factory()
    engine = AggregationEngine(
        EventStore(factory),
        SnapshotStore(factory),
        settings=settings.aggregation,
    )
    result = await engine.run_daily_aggregation(period_date)

    logger.info(
        f"Aggregated {period_date}: {result.sellers_written} sellers, "
        f"{result.products_written} products, {len(result.failures)} failures"
    )

    return {
        "period": period_date.isoformat(),
        "sellers_written": result.sellers_written,
        "products_written": result.products_written,
        "duration_seconds": result.duration_seconds,
        "failures": [
            {"scope": f.scope, "entity_id": f.entity_id, "error": f.error}
            for f in result.failures
        ],
    }


@task(
    name="invalidate_report_cache",
    description="Drop cached reports after new snapshots are written",
)
async def invalidate_report_cache() -> int:
    """Invalidate the reports namespace"""
    logger = get_run_logger()

    try:
        await init_redis()
        deleted = await CacheManager("reports").invalidate_all()
    except RedisError as e:
        logger.warning(f"Report cache not invalidated: {e}")
        return 0
    finally:
        await close_redis()

    logger.info(f"Invalidated {deleted} cached reports")
    return deleted


@task(
    name="send_alert",
    description="Send alert notification",
)
async def send_alert(
    alert_type: str,
    message: str,
    severity: str = "info",
) -> None:
    """Send alert notification"""
    logger = get_run_logger()
    logger.warning(f"[{severity.upper()}] {alert_type}: {message}")


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="daily_snapshot_aggregation",
    description="Daily analytics snapshot aggregation for the previous UTC day",
    retries=1,
    retry_delay_seconds=300,
)
async def daily_snapshot_aggregation(period_date: Optional[date] = None) -> dict:
    """
    Daily snapshot aggregation.

    Steps:
    1. Aggregate the period (yesterday by default)
    2. Alert on partial failures
    3. Invalidate cached reports
    """
    logger = get_run_logger()

    period_date = period_date or (utcnow().date() - timedelta(days=1))
    logger.info(f"Starting daily snapshot aggregation for {period_date}")

    await init_database()
    try:
        summary = await aggregate_period(period_date)
    except Exception as e:
        logger.error(f"Snapshot aggregation failed: {e}")
        await send_alert(
            alert_type="Aggregation Failed",
            message=f"Snapshot aggregation for {period_date} failed: {e}",
            severity="critical",
        )
        raise
    finally:
        await close_database()

    if summary["failures"]:
        await send_alert(
            alert_type="Partial Aggregation",
            message=f"{len(summary['failures'])} entity snapshots failed for {period_date}",
            severity="warning",
        )

    summary["cache_invalidated"] = await invalidate_report_cache()
    summary["status"] = "success"
    return summary


# =============================================================================
# DEPLOYMENT CONFIGURATION
# =============================================================================

if __name__ == "__main__":
    import asyncio
    import sys

    configure_logging()

    if "--serve" in sys.argv:
        daily_snapshot_aggregation.serve(
            name="daily-snapshot-aggregation",
            cron=settings.aggregation.schedule_cron,
        )
    else:
        asyncio.run(daily_snapshot_aggregation())
