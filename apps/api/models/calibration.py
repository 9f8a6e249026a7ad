"""Calibration model holding per-user generation parameter ranges."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, Integer, JSON, String

from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Calibration(Base):
    """Parameter ranges derived from one calibration quiz run. Never mutated after insert."""

    __tablename__ = "calibrations"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    mode = Column(String, nullable=False, default="quick")  # quick, deep
    answers = Column(JSON, nullable=False, default=list)
    temperature_min = Column(Float, nullable=False)
    temperature_max = Column(Float, nullable=False)
    top_p_min = Column(Float, nullable=False)
    top_p_max = Column(Float, nullable=False)
    max_tokens_min = Column(Integer, nullable=False)
    max_tokens_max = Column(Integer, nullable=False)
    frequency_penalty_min = Column(Float, nullable=False)
    frequency_penalty_max = Column(Float, nullable=False)
    insights = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)
