"""AuditLog model for write-once domain events."""

import uuid

from sqlalchemy import Column, DateTime, JSON, String
from sqlalchemy.sql import func

from database import Base


class AuditLog(Base):
    """Structured audit event. Never read back by the generation pipeline."""

    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    event_type = Column(String, nullable=False, index=True)
    event_data = Column(JSON, nullable=True)
    correlation_id = Column(String, nullable=True, index=True)
    source = Column(String, nullable=False, default="server")  # client, server
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
