"""Two-stage reply generation: booking intent extraction, then a grounded answer."""

import json
import re
from dataclasses import dataclass
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.orm import Session

from botlocal.config import settings
from botlocal.logging_config import get_logger
from botlocal.models import Booking, BookingStatus, Business, Conversation, KnowledgeBaseEntry, MessageRole
from botlocal.services import conversation_service
from botlocal.services.conversation_service import StoredMessage
from botlocal.services.llm import LLMError, LLMProvider

logger = get_logger("reply_service")

FALLBACK_REPLY = (
    "I am currently experiencing technical difficulties connecting to my brain. "
    "Please contact the business directly via phone!"
)
LIMIT_REACHED_REPLY = "Please contact the business directly. (Message limit reached)"

DEFAULT_CUSTOMER_NAME = "Customer"
DEFAULT_SERVICE_TYPE = "General Service"
BOOKING_NOTES = "Auto-booked via AI chat agent."

INDUSTRY_PROMPTS = {
    "Restaurant": (
        "Focus on menu availability, reservation times, dietary options, and restaurant ambiance. "
        "Encourage users to book a table for dining."
    ),
    "Retail": (
        "Focus on product availability, store locations, return policies, and current promotions. "
        "Help customers find what they are looking for in your inventory."
    ),
    "Medical": (
        "Focus on appointment scheduling, clinic hours, and accepted insurance. "
        "IMPORTANT: Do not provide any medical advice. Always refer health concerns to the professional staff."
    ),
    "Home Services": (
        "Focus on service quotes, emergency availability, service areas, and technician scheduling. "
        "Emphasize reliability and professional expertise."
    ),
    "General": (
        "Provide helpful, general assistance based on the business information provided. "
        "Be professional and efficient."
    ),
}

SYSTEM_PROMPT_TEMPLATE = """You are a helpful customer service AI assistant for a local business named "{business_name}".
This business operates in the {industry} industry.

Your Industry Focus:
{industry_focus}

Your Personality:
{personality}

Custom Business Rules/Instructions:
{custom_instructions}

Your only source of knowledge is the context provided below.
If a customer asks a question outside of this context, gently reply: "Please contact us directly."
Keep your replies short and natural, like a real person texting on WhatsApp.
IMPORTANT: You must automatically detect the language the customer is writing in, and ALWAYS reply in that exact same language!

Knowledge Base Context:
{knowledge}
{booking_notice}
Previous Conversation:
{history}
"""

EXTRACTION_PROMPT_TEMPLATE = """Analyze the following conversation and extract booking details.
Return ONLY valid JSON in this exact format:
{{
  "isBookingIntent": true/false (True if they actively want to book an appointment right now),
  "customerName": "name or null",
  "date": "specific requested date or null",
  "time": "specific requested time or null",
  "serviceType": "service requested or null"
}}

Previous Conversation:
{history}

Customer: {message}
"""

BOOKING_CREATED_NOTICE = (
    "SYSTEM NOTIFICATION: You have successfully created a booking for {date} at {time}. "
    "Inform the customer that their booking request is Pending Confirmation by the staff!"
)
BOOKING_INCOMPLETE_NOTICE = (
    "SYSTEM NOTIFICATION: The customer wants to book, but is missing date or time. "
    "Politely ask them for what date and time they would prefer."
)


class ReplyGenerationError(Exception):
    """The grounded reply could not be produced; the caller sends the fallback reply.

    `booking` is the unsaved booking stage 1 already decided on, if any. It is still
    persisted with the turn.
    """

    def __init__(self, message: str, booking: Optional[Booking] = None):
        super().__init__(message)
        self.booking = booking


class BookingIntent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_booking_intent: bool = Field(default=False, alias="isBookingIntent")
    customer_name: Optional[str] = Field(default=None, alias="customerName")
    date: Optional[str] = None
    time: Optional[str] = None
    service_type: Optional[str] = Field(default=None, alias="serviceType")

    @property
    def is_complete(self) -> bool:
        return self.is_booking_intent and bool(self.date) and bool(self.time)


@dataclass
class ReplyResult:
    reply_text: str
    booking_created: bool = False
    booking: Optional[Booking] = None
    intent: Optional[BookingIntent] = None


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    if not value or value.lower() in {"null", "none", "n/a"}:
        return None
    return value


def parse_booking_intent(raw: str) -> BookingIntent:
    """Parse the extraction model's JSON. Raises ValueError on anything unusable."""
    text = (raw or "").strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", text, re.DOTALL)
        if not match:
            raise ValueError("No JSON object in intent response")
        data = json.loads(match.group())
    if not isinstance(data, dict):
        raise ValueError("Intent response is not a JSON object")

    try:
        intent = BookingIntent.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Intent response failed validation: {e}") from e

    return intent.model_copy(
        update={
            "customer_name": _clean(intent.customer_name),
            "date": _clean(intent.date),
            "time": _clean(intent.time),
            "service_type": _clean(intent.service_type),
        }
    )


def format_history(messages: List[StoredMessage]) -> str:
    lines = []
    for message in messages:
        speaker = "Customer" if message.role == MessageRole.CUSTOMER else "AI Assistant"
        lines.append(f"{speaker}: {message.content}")
    return "\n".join(lines)


def build_system_prompt(business: Business, knowledge: str, history: str, booking_notice: str = "") -> str:
    industry = business.industry or "General"
    return SYSTEM_PROMPT_TEMPLATE.format(
        business_name=business.name,
        industry=industry,
        industry_focus=INDUSTRY_PROMPTS.get(industry, INDUSTRY_PROMPTS["General"]),
        personality=business.bot_personality or "Friendly and professional",
        custom_instructions=business.custom_instructions or "",
        knowledge=knowledge,
        booking_notice=f"\n{booking_notice}\n" if booking_notice else "",
        history=history,
    )


def load_knowledge(db: Session, business_id, max_chars: int) -> str:
    entries = (
        db.query(KnowledgeBaseEntry)
        .filter(KnowledgeBaseEntry.business_id == business_id)
        .order_by(KnowledgeBaseEntry.created_at)
        .all()
    )
    knowledge = "\n\n".join(entry.content for entry in entries if entry.content)
    if len(knowledge) > max_chars:
        knowledge = knowledge[:max_chars]
    return knowledge


class ReplyOrchestrator:
    def __init__(
        self,
        llm: LLMProvider,
        model: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 600,
        timeout_seconds: Optional[float] = None,
        history_messages: int = 5,
        knowledge_chars: int = 6000,
    ):
        self.llm = llm
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds
        self.history_messages = history_messages
        self.knowledge_chars = knowledge_chars

    @classmethod
    def from_settings(cls, llm: LLMProvider) -> "ReplyOrchestrator":
        return cls(
            llm,
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            timeout_seconds=settings.llm_timeout_seconds,
            history_messages=settings.llm_history_messages,
            knowledge_chars=settings.llm_knowledge_chars,
        )

    def extract_intent(self, history: str, incoming_text: str) -> Optional[BookingIntent]:
        """Stage 1. Any failure means "no booking"; it never blocks the reply."""
        prompt = EXTRACTION_PROMPT_TEMPLATE.format(history=history, message=incoming_text)
        try:
            response = self.llm.generate(
                messages=[{"role": "user", "content": prompt}],
                model=self.model,
                temperature=0.0,
                max_tokens=300,
                timeout_seconds=self.timeout_seconds,
                json_mode=True,
            )
            return parse_booking_intent(response.content)
        except (LLMError, ValueError) as e:
            logger.warning(f"Booking intent extraction failed: {e}")
            return None

    def generate(
        self,
        db: Session,
        business: Business,
        conversation: Conversation,
        incoming_text: str,
    ) -> ReplyResult:
        """Produce the reply for one inbound message.

        A booking, when created, is returned unsaved so the caller can persist it in
        the same transaction as the turn. Raises ReplyGenerationError when stage 2 fails.
        """
        history_messages = conversation_service.recent_messages(db, conversation.id, self.history_messages)
        history = format_history(history_messages)
        knowledge = load_knowledge(db, business.id, self.knowledge_chars)

        intent = self.extract_intent(history, incoming_text)
        booking = None
        notice = ""
        if intent and intent.is_complete:
            booking = Booking(
                business_id=business.id,
                conversation_id=conversation.id,
                customer_id=conversation.customer_id,
                customer_name=intent.customer_name or DEFAULT_CUSTOMER_NAME,
                requested_date=intent.date,
                requested_time=intent.time,
                service_type=intent.service_type or DEFAULT_SERVICE_TYPE,
                status=BookingStatus.PENDING.value,
                review_sent=False,
                notes=BOOKING_NOTES,
            )
            notice = BOOKING_CREATED_NOTICE.format(date=intent.date, time=intent.time)
            logger.info(
                "Booking intent complete",
                extra={
                    "context": {
                        "business_id": str(business.id),
                        "customer_id": conversation.customer_id,
                        "date": intent.date,
                        "time": intent.time,
                    }
                },
            )
        elif intent and intent.is_booking_intent:
            notice = BOOKING_INCOMPLETE_NOTICE

        system_prompt = build_system_prompt(business, knowledge, history, notice)
        try:
            response = self.llm.generate(
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": incoming_text},
                ],
                model=self.model,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                timeout_seconds=self.timeout_seconds,
            )
        except LLMError as e:
            raise ReplyGenerationError(str(e), booking=booking) from e

        reply_text = response.content.strip()
        if not reply_text:
            raise ReplyGenerationError("Empty reply", booking=booking)

        return ReplyResult(
            reply_text=reply_text,
            booking_created=booking is not None,
            booking=booking,
            intent=intent,
        )
