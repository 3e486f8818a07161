from sqlalchemy import Column, DateTime, Text, Uuid
from sqlalchemy.sql import func

from botlocal.database import Base


class ProcessedUpdate(Base):
    """Durable dedup record for inbound chat updates (survives restarts, shared by instances)."""

    __tablename__ = "processed_updates"

    event_key = Column(Text, primary_key=True)
    business_id = Column(Uuid)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
