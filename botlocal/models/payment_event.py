import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from botlocal.database import Base
from botlocal.models.enums import PaymentEventStatus


class PaymentEvent(Base):
    __tablename__ = "payment_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_event_id = Column(Text, nullable=False, unique=True)
    type = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default=PaymentEventStatus.RECEIVED.value)
    business_id = Column(Uuid, ForeignKey("businesses.id"))
    plan = Column(Text)
    amount = Column(Integer)  # minor units
    raw_payload = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
