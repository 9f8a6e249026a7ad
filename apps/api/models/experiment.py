"""Experiment model for persisted prompt/response runs."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, JSON, String, Text

from database import Base


class Experiment(Base):
    """One prompt plus the generated response(s) and the parameters used."""

    __tablename__ = "experiments"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    calibration_id = Column(String, nullable=True, index=True)
    prompt = Column(Text, nullable=False)
    parameters = Column(JSON, nullable=False)
    responses = Column(JSON, nullable=False, default=list)
    saved = Column(Boolean, nullable=False, default=True)
    discarded = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "calibration_id": self.calibration_id,
            "prompt": self.prompt,
            "parameters": self.parameters,
            "responses": self.responses,
            "saved": bool(self.saved),
            "discarded": bool(self.discarded),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
