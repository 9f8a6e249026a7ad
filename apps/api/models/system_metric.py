"""SystemMetric model for request latency telemetry."""

import uuid

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from database import Base


class SystemMetric(Base):
    """Latency/status record written once per pipeline call."""

    __tablename__ = "system_metrics"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    path = Column(String, nullable=False, default="unknown")
    method = Column(String, nullable=True)
    latency_ms = Column(Integer, nullable=False, default=0)
    status = Column(Integer, nullable=False, default=200, index=True)
    error_message = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
