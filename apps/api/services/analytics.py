"""Rolling per-calibration response metric summaries."""

from __future__ import annotations

import uuid
from typing import Any, Dict

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.sql import func

from models.analytics_summary import METRIC_TOTAL_COLUMNS, AnalyticsSummary
from services.schemas import ResponseMetrics

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _metric_totals(latest: Dict[str, Any]) -> Dict[str, float]:
    return {column: float(latest.get(metric) or 0.0) for metric, column in METRIC_TOTAL_COLUMNS.items()}


async def upsert_analytics_summary(
    db: AsyncSession,
    *,
    user_id: str,
    calibration_id: str,
    metrics: ResponseMetrics,
) -> AnalyticsSummary:
    """Fold one response's metrics into the user's summary for that calibration.

    The count and totals are incremented inside a single INSERT .. ON CONFLICT
    statement, so concurrent requests for the same calibration all land.
    """
    dialect = db.get_bind().dialect.name
    insert = _UPSERT_DIALECTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"Analytics upsert is not supported on {dialect}")

    latest = metrics.model_dump(by_alias=True)
    totals = _metric_totals(latest)
    table = AnalyticsSummary.__table__

    statement = insert(table).values(
        id=str(uuid.uuid4()),
        user_id=user_id,
        calibration_id=calibration_id,
        experiment_count=1,
        last_metrics=latest,
        **totals,
    )
    statement = statement.on_conflict_do_update(
        index_elements=[table.c.user_id, table.c.calibration_id],
        set_={
            "experiment_count": table.c.experiment_count + 1,
            "last_metrics": statement.excluded.last_metrics,
            "updated_at": func.now(),
            **{column: table.c[column] + statement.excluded[column] for column in totals},
        },
    )
    await db.execute(statement)
    await db.commit()

    result = await db.execute(
        select(AnalyticsSummary)
        .where(
            AnalyticsSummary.user_id == user_id,
            AnalyticsSummary.calibration_id == calibration_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()
