from botlocal.models.booking import Booking
from botlocal.models.business import Business
from botlocal.models.conversation import Conversation
from botlocal.models.conversation_message import MESSAGE_SCHEMA_VERSION, ConversationMessage
from botlocal.models.enums import (
    BookingStatus,
    MessageRole,
    NotificationCategory,
    PaymentEventStatus,
    PlanTier,
    Platform,
    UnknownPlanError,
)
from botlocal.models.knowledge_base_entry import KnowledgeBaseEntry
from botlocal.models.notification import Notification
from botlocal.models.payment_event import PaymentEvent
from botlocal.models.processed_update import ProcessedUpdate

__all__ = [
    "Business",
    "Conversation",
    "ConversationMessage",
    "MESSAGE_SCHEMA_VERSION",
    "Booking",
    "PaymentEvent",
    "Notification",
    "KnowledgeBaseEntry",
    "ProcessedUpdate",
    "PlanTier",
    "Platform",
    "MessageRole",
    "BookingStatus",
    "PaymentEventStatus",
    "NotificationCategory",
    "UnknownPlanError",
]
