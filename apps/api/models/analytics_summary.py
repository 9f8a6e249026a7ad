"""AnalyticsSummary model for rolling per-calibration response metrics."""

import uuid

from sqlalchemy import Column, DateTime, Float, Integer, JSON, String, UniqueConstraint
from sqlalchemy.sql import func

from database import Base


# Metric field -> column holding its running total; keys are the camelCase metric names.
METRIC_TOTAL_COLUMNS = {
    "length": "length_total",
    "creativity": "creativity_total",
    "coherence": "coherence_total",
    "structure": "structure_total",
    "completeness": "completeness_total",
    "lexicalDiversity": "lexical_diversity_total",
}


class AnalyticsSummary(Base):
    """Running metric totals for a user/calibration combination."""

    __tablename__ = "analytics_summaries"
    __table_args__ = (UniqueConstraint("user_id", "calibration_id", name="uq_analytics_user_calibration"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    calibration_id = Column(String, nullable=False, index=True)
    experiment_count = Column(Integer, nullable=False, default=0)
    length_total = Column(Float, nullable=False, default=0.0)
    creativity_total = Column(Float, nullable=False, default=0.0)
    coherence_total = Column(Float, nullable=False, default=0.0)
    structure_total = Column(Float, nullable=False, default=0.0)
    completeness_total = Column(Float, nullable=False, default=0.0)
    lexical_diversity_total = Column(Float, nullable=False, default=0.0)
    last_metrics = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def metrics_summary(self) -> dict:
        """Mean of each metric over all experiments counted so far."""
        count = max(int(self.experiment_count or 0), 1)
        return {
            metric: round(float(getattr(self, column) or 0.0) / count, 2)
            for metric, column in METRIC_TOTAL_COLUMNS.items()
        }
