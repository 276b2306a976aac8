"""
Snapshot Store

Upsert and read of materialized analytics snapshots keyed by
(period, scope, scope_id).
"""

from datetime import date
from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace_analytics.database.models import AnalyticsScope, AnalyticsSnapshot
from marketplace_analytics.schemas import Snapshot, SnapshotMetrics, snapshot_metrics_adapter
from marketplace_analytics.utils import utcnow

logger = structlog.get_logger(__name__)


class SnapshotStore:
    """Persistence for AnalyticsSnapshot rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @staticmethod
    def _key_filter(period: date, scope: AnalyticsScope, scope_id: Optional[str]) -> list:
        conditions = [AnalyticsSnapshot.period == period, AnalyticsSnapshot.scope == scope]
        # NULL never equals NULL, so the platform row needs IS NULL
        if scope_id is None:
            conditions.append(AnalyticsSnapshot.scope_id.is_(None))
        else:
            conditions.append(AnalyticsSnapshot.scope_id == scope_id)
        return conditions

    async def save_snapshot(
        self,
        period: date,
        scope: AnalyticsScope,
        scope_id: Optional[str],
        metrics: SnapshotMetrics,
    ) -> None:
        """
        Insert or replace the snapshot for (period, scope, scope_id).

        Rewriting an existing key replaces its metrics and bumps updated_at, so
        re-running an aggregation never creates duplicates.
        """
        payload = metrics.model_dump(mode="json")

        async with self._session_factory() as session:
            result = await session.execute(
                select(AnalyticsSnapshot).where(*self._key_filter(period, scope, scope_id))
            )
            existing = result.scalars().first()

            if existing is not None:
                existing.metrics = payload
                existing.updated_at = utcnow()
            else:
                session.add(
                    AnalyticsSnapshot(
                        period=period,
                        scope=scope,
                        scope_id=scope_id,
                        metrics=payload,
                    )
                )
            await session.commit()

        logger.debug(
            "Snapshot saved",
            period=period.isoformat(),
            scope=scope.value,
            scope_id=scope_id,
            updated=existing is not None,
        )

    async def get_snapshot(
        self, period: date, scope: AnalyticsScope, scope_id: Optional[str] = None
    ) -> Optional[Snapshot]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AnalyticsSnapshot).where(*self._key_filter(period, scope, scope_id))
            )
            row = result.scalars().first()
        return self._to_schema(row) if row is not None else None

    async def get_snapshots(
        self,
        scope: AnalyticsScope,
        start: date,
        end: date,
        scope_id: Optional[str] = None,
    ) -> List[Snapshot]:
        """Snapshots of a scope with ``start <= period <= end``, oldest first."""
        conditions = [
            AnalyticsSnapshot.scope == scope,
            AnalyticsSnapshot.period >= start,
            AnalyticsSnapshot.period <= end,
        ]
        if scope_id is not None:
            conditions.append(AnalyticsSnapshot.scope_id == scope_id)

        async with self._session_factory() as session:
            result = await session.execute(
                select(AnalyticsSnapshot)
                .where(*conditions)
                .order_by(AnalyticsSnapshot.period, AnalyticsSnapshot.scope_id)
            )
            rows = list(result.scalars())
        return [self._to_schema(row) for row in rows]

    async def count_snapshots(self, period: date, scope: AnalyticsScope) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AnalyticsSnapshot.id).where(
                    AnalyticsSnapshot.period == period, AnalyticsSnapshot.scope == scope
                )
            )
            return len(result.all())

    @staticmethod
    def _to_schema(row: AnalyticsSnapshot) -> Snapshot:
        return Snapshot(
            period=row.period,
            scope=row.scope,
            scope_id=row.scope_id,
            metrics=snapshot_metrics_adapter.validate_python(row.metrics),
            updated_at=row.updated_at,
        )
