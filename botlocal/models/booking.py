import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.sql import func

from botlocal.database import Base
from botlocal.models.enums import BookingStatus


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"))
    customer_id = Column(Text, nullable=False)
    customer_name = Column(Text, nullable=False, default="Customer")
    requested_date = Column(Text, nullable=False)  # as the customer said it: "2026-03-10", "Friday"
    requested_time = Column(Text, nullable=False)
    service_type = Column(Text, nullable=False, default="General Service")
    status = Column(Text, nullable=False, default=BookingStatus.PENDING.value)
    review_sent = Column(Boolean, nullable=False, default=False)
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
