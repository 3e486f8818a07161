import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, Enum, Integer, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from botlocal.database import Base
from botlocal.models.enums import PlanTier, enum_values


class Business(Base):
    __tablename__ = "businesses"
    __table_args__ = (CheckConstraint("message_count >= 0", name="ck_businesses_message_count_non_negative"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    industry = Column(Text, default="General")
    bot_personality = Column(Text, default="Friendly and professional")
    custom_instructions = Column(Text)
    telegram_bot_token = Column(Text, unique=True)
    whatsapp_phone = Column(Text, unique=True)  # E.164, without the "whatsapp:" prefix
    plan = Column(
        Enum(
            PlanTier,
            name="plan_tier",
            native_enum=False,
            length=32,
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
        default=PlanTier.STARTER,
    )
    message_count = Column(Integer, nullable=False, default=0)
    last_message_at = Column(DateTime(timezone=True))
    stripe_customer_id = Column(Text, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    conversations = relationship("Conversation", back_populates="business")
    knowledge_entries = relationship("KnowledgeBaseEntry", back_populates="business")
