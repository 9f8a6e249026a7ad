"""Request latency telemetry sinks."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Protocol, Set

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.system_metric import SystemMetric

logger = logging.getLogger(__name__)


@dataclass
class LatencyRecord:
    path: str
    method: str
    latency_ms: int
    status: int
    error_message: Optional[str] = None


class MetricsSink(Protocol):
    def submit(self, record: LatencyRecord) -> None:
        """Accept a record without blocking the caller."""
        ...

    async def flush(self) -> None:
        ...


class SqlMetricsSink:
    """Writes latency records to `system_metrics` from background tasks."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker
        self._pending: Set[asyncio.Task] = set()

    def submit(self, record: LatencyRecord) -> None:
        task = asyncio.create_task(self._write(record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, record: LatencyRecord) -> None:
        try:
            async with self.session_maker() as db:
                db.add(
                    SystemMetric(
                        id=str(uuid.uuid4()),
                        path=(record.path or "unknown")[:255],
                        method=record.method,
                        latency_ms=int(record.latency_ms),
                        status=int(record.status),
                        error_message=(record.error_message or None) and record.error_message[:500],
                    )
                )
                await db.commit()
        except Exception as exc:
            logger.warning("Telemetry write skipped path=%s status=%s: %s", record.path, record.status, exc)

    async def flush(self) -> None:
        """Wait for in-flight writes; used on shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
