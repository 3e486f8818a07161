import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from botlocal.database import Base

MESSAGE_SCHEMA_VERSION = 1


class ConversationMessage(Base):
    __tablename__ = "conversation_messages"
    __table_args__ = (UniqueConstraint("conversation_id", "seq", name="uq_conversation_messages_seq"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"), nullable=False)
    seq = Column(Integer, nullable=False)
    role = Column(Text, nullable=False)  # customer, assistant
    content = Column(Text, nullable=False)
    schema_version = Column(Integer, nullable=False, default=MESSAGE_SCHEMA_VERSION)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    conversation = relationship("Conversation", back_populates="messages")
