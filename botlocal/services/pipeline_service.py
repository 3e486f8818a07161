"""One chat delivery, end to end: tenant, dedup, conversation, quota, reply, dispatch."""

from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.orm import Session

from botlocal.logging_config import get_logger
from botlocal.models import Business, MessageRole, Platform
from botlocal.services import conversation_service, tenant_service
from botlocal.services.dispatch_service import Dispatcher
from botlocal.services.idempotency_service import IdempotencyGuard
from botlocal.services.plan_service import PlanLimiter
from botlocal.services.reply_service import (
    FALLBACK_REPLY,
    LIMIT_REACHED_REPLY,
    ReplyGenerationError,
    ReplyOrchestrator,
)

logger = get_logger("pipeline_service")

OUTCOME_UNKNOWN_TENANT = "unknown_tenant"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_AI_DISABLED = "ai_disabled"
OUTCOME_LIMIT_REACHED = "limit_reached"
OUTCOME_REPLIED = "replied"
OUTCOME_FALLBACK = "fallback"


@dataclass(frozen=True)
class InboundChatEvent:
    platform: Platform
    credential: str  # bot token or destination phone
    customer_id: str
    text: str
    event_key: str


@dataclass
class TurnOutcome:
    status: str
    business_id: Optional[str] = None
    conversation_id: Optional[str] = None
    reply_text: Optional[str] = None
    booking_created: bool = False
    delivered: bool = False


class ChatPipeline:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        guard: IdempotencyGuard,
        limiter: PlanLimiter,
        orchestrator: ReplyOrchestrator,
        dispatcher: Dispatcher,
    ):
        self.session_factory = session_factory
        self.guard = guard
        self.limiter = limiter
        self.orchestrator = orchestrator
        self.dispatcher = dispatcher

    def process(self, event: InboundChatEvent) -> TurnOutcome:
        db = self.session_factory()
        try:
            return self._process(db, event)
        finally:
            db.close()

    def _process(self, db: Session, event: InboundChatEvent) -> TurnOutcome:
        log_context = {"platform": event.platform.value, "event_key": event.event_key}

        business = tenant_service.resolve(db, event.platform, event.credential)
        if business is None:
            logger.warning("Message for unknown tenant", extra={"context": log_context})
            return TurnOutcome(status=OUTCOME_UNKNOWN_TENANT)
        business_id = business.id
        log_context["business_id"] = str(business_id)
        # No transaction may stay open while waiting for the lock: a snapshot taken
        # before another turn commits cannot be upgraded to a write on SQLite.
        db.rollback()

        with conversation_service.conversation_lock((business_id, event.customer_id)):
            if not self.guard.should_process(db, event.event_key):
                return TurnOutcome(status=OUTCOME_DUPLICATE, business_id=str(business_id))
            return self._run_turn(db, business, event, log_context)

    def _run_turn(self, db: Session, business: Business, event: InboundChatEvent, log_context: dict) -> TurnOutcome:
        business_id = business.id
        try:
            conversation = conversation_service.get_or_create(
                db, business_id, event.customer_id, event.platform.value
            )
            ai_enabled = conversation.ai_enabled
            log_context["conversation_id"] = str(conversation.id)
            db.commit()

            if not ai_enabled:
                if not self.guard.record(db, event.event_key, business_id):
                    db.rollback()
                    return TurnOutcome(status=OUTCOME_DUPLICATE, business_id=str(business_id))
                conversation_service.append(db, conversation.id, MessageRole.CUSTOMER, event.text)
                db.commit()
                self.guard.remember(event.event_key)
                logger.info("AI disabled, message stored", extra={"context": log_context})
                return TurnOutcome(
                    status=OUTCOME_AI_DISABLED,
                    business_id=str(business.id),
                    conversation_id=str(conversation.id),
                )

            decision = self.limiter.check(business)
            if not decision.allowed:
                return self._limit_reached(db, business, conversation, event, log_context)

            try:
                reply = self.orchestrator.generate(db, business, conversation, event.text)
                reply_text = reply.reply_text
                booking = reply.booking
                substantive = True
            except ReplyGenerationError as e:
                logger.warning(f"Reply generation failed, sending fallback: {e}", extra={"context": log_context})
                reply_text = FALLBACK_REPLY
                booking = e.booking
                substantive = False
            # End the read snapshot taken during generation before the write phase.
            db.commit()

            if not self.guard.record(db, event.event_key, business_id):
                db.rollback()
                return TurnOutcome(status=OUTCOME_DUPLICATE, business_id=str(business_id))

            if substantive and not self.limiter.consume(db, business, decision):
                db.rollback()
                return self._limit_reached(db, business, conversation, event, log_context)

            conversation_service.append_turn(
                db,
                conversation.id,
                [(MessageRole.CUSTOMER, event.text), (MessageRole.ASSISTANT, reply_text)],
            )
            if booking is not None:
                db.add(booking)
            db.commit()
            self.guard.remember(event.event_key)
        except Exception:
            db.rollback()
            logger.error("Turn persistence failed", extra={"context": log_context}, exc_info=True)
            self.dispatcher.send(business, event.platform, event.customer_id, FALLBACK_REPLY)
            raise

        result = self.dispatcher.send(business, event.platform, event.customer_id, reply_text)
        status = OUTCOME_REPLIED if substantive else OUTCOME_FALLBACK
        logger.info(
            "Turn completed",
            extra={
                "context": {
                    **log_context,
                    "outcome": status,
                    "booking_created": booking is not None,
                    "delivered": result.ok,
                }
            },
        )
        return TurnOutcome(
            status=status,
            business_id=str(business.id),
            conversation_id=str(conversation.id),
            reply_text=reply_text,
            booking_created=booking is not None,
            delivered=result.ok,
        )

    def _limit_reached(self, db: Session, business: Business, conversation, event: InboundChatEvent, log_context):
        if not self.guard.record(db, event.event_key, business.id):
            db.rollback()
            return TurnOutcome(status=OUTCOME_DUPLICATE, business_id=str(business.id))
        conversation_service.append_turn(
            db,
            conversation.id,
            [(MessageRole.CUSTOMER, event.text), (MessageRole.ASSISTANT, LIMIT_REACHED_REPLY)],
        )
        db.commit()
        self.guard.remember(event.event_key)
        logger.info("Plan limit reached", extra={"context": log_context})

        result = self.dispatcher.send(business, event.platform, event.customer_id, LIMIT_REACHED_REPLY)
        return TurnOutcome(
            status=OUTCOME_LIMIT_REACHED,
            business_id=str(business.id),
            conversation_id=str(conversation.id),
            reply_text=LIMIT_REACHED_REPLY,
            delivered=result.ok,
        )
