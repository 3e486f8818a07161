"""Payment provider webhook processing.

Each provider event id moves through received -> processing -> processed, with
failed recording the last error. Side effects and the processed status commit
together, so a redelivered event either finds it processed or redoes all of it.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import stripe
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from botlocal.logging_config import get_logger
from botlocal.models import (
    Business,
    Notification,
    NotificationCategory,
    PaymentEvent,
    PaymentEventStatus,
    PlanTier,
    UnknownPlanError,
)
from botlocal.services import tenant_service
from botlocal.services.alert_service import alert_error
from botlocal.services.plan_service import DEFAULT_PLANS, PlanCatalog

logger = get_logger("billing_service")

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"

OUTCOME_PROCESSED = "processed"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_IN_FLIGHT = "in_flight"


class InvalidSignatureError(Exception):
    """Webhook payload failed signature verification."""


class BillingConfigurationError(Exception):
    """Webhook signing secret is not configured."""


class BillingProcessingError(Exception):
    """Event could not be applied; it is left in the failed state for redelivery."""


@dataclass
class BillingOutcome:
    status: str
    event_id: str
    event_type: str
    business_id: Optional[str] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _notify(db: Session, business: Business, category: NotificationCategory, title: str, message: str) -> None:
    db.add(
        Notification(
            business_id=business.id,
            category=category.value,
            title=title,
            message=message,
            read=False,
        )
    )


class BillingEventProcessor:
    def __init__(
        self,
        webhook_secret: Optional[str],
        catalog: PlanCatalog = DEFAULT_PLANS,
        processing_timeout_seconds: int = 300,
        alert: Callable[..., bool] = alert_error,
    ):
        self.webhook_secret = webhook_secret
        self.catalog = catalog
        self.processing_timeout_seconds = processing_timeout_seconds
        self._alert = alert
        self._handlers = {
            CHECKOUT_COMPLETED: self._handle_checkout_completed,
            SUBSCRIPTION_DELETED: self._handle_subscription_deleted,
            INVOICE_PAYMENT_FAILED: self._handle_payment_failed,
        }

    def verify(self, payload: bytes, signature: Optional[str]) -> dict:
        """Check the Stripe-Signature header and return the event as a plain dict."""
        if not self.webhook_secret:
            raise BillingConfigurationError("STRIPE_WEBHOOK_SECRET is not set")
        if not signature:
            raise InvalidSignatureError("Missing Stripe-Signature header")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise InvalidSignatureError(str(e)) from e
        event = json.loads(payload)
        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise InvalidSignatureError("Event has no id or type")
        return event

    def process(self, db: Session, event: dict) -> BillingOutcome:
        """Apply one verified event exactly once. Raises BillingProcessingError."""
        event_id = event["id"]
        event_type = event["type"]
        log_context = {"event_id": event_id, "event_type": event_type}

        claim = self._claim(db, event)
        if claim != OUTCOME_PROCESSED:
            logger.info(f"Billing event not claimed: {claim}", extra={"context": log_context})
            return BillingOutcome(status=claim, event_id=event_id, event_type=event_type)

        row = (
            db.query(PaymentEvent)
            .filter(PaymentEvent.provider_event_id == event_id)
            .populate_existing()
            .one()
        )
        try:
            handler = self._handlers.get(event_type)
            if handler is None:
                logger.info("Unhandled billing event type, acknowledging", extra={"context": log_context})
            else:
                handler(db, row, event["data"]["object"])
            row.status = PaymentEventStatus.PROCESSED.value
            row.last_error = None
            row.updated_at = _now()
            db.commit()
        except Exception as e:
            db.rollback()
            self._mark_failed(db, event_id, e)
            logger.error(
                "Billing event processing failed",
                extra={"context": {**log_context, "error": str(e)}},
                exc_info=True,
            )
            self._alert("Billing event processing failed", {**log_context, "error": str(e)})
            raise BillingProcessingError(str(e)) from e

        business_id = str(row.business_id) if row.business_id else None
        logger.info("Billing event processed", extra={"context": {**log_context, "business_id": business_id}})
        return BillingOutcome(
            status=OUTCOME_PROCESSED, event_id=event_id, event_type=event_type, business_id=business_id
        )

    def _claim(self, db: Session, event: dict) -> str:
        """Record the event as received, then move it into processing.

        Returns processed when this caller owns the event now, duplicate when it was
        already applied, in_flight when another delivery holds a fresh claim. A
        received row is always claimable; a processing row only once it is stale.
        """
        event_id = event["id"]
        try:
            with db.begin_nested():
                db.add(
                    PaymentEvent(
                        provider_event_id=event_id,
                        type=event["type"],
                        status=PaymentEventStatus.RECEIVED.value,
                        raw_payload=event,
                        attempts=0,
                        updated_at=_now(),
                    )
                )
            db.commit()
        except IntegrityError:
            db.rollback()

        cutoff = _now() - timedelta(seconds=self.processing_timeout_seconds)
        result = db.execute(
            update(PaymentEvent)
            .where(
                PaymentEvent.provider_event_id == event_id,
                or_(
                    PaymentEvent.status.in_([PaymentEventStatus.RECEIVED.value, PaymentEventStatus.FAILED.value]),
                    (PaymentEvent.status == PaymentEventStatus.PROCESSING.value) & (PaymentEvent.updated_at < cutoff),
                ),
            )
            .values(
                status=PaymentEventStatus.PROCESSING.value,
                attempts=PaymentEvent.attempts + 1,
                updated_at=_now(),
            )
            .execution_options(synchronize_session=False)
        )
        claimed = result.rowcount == 1
        db.commit()
        if claimed:
            return OUTCOME_PROCESSED

        status = db.query(PaymentEvent.status).filter(PaymentEvent.provider_event_id == event_id).scalar()
        if status == PaymentEventStatus.PROCESSED.value:
            return OUTCOME_DUPLICATE
        return OUTCOME_IN_FLIGHT

    def _mark_failed(self, db: Session, event_id: str, error: Exception) -> None:
        try:
            db.execute(
                update(PaymentEvent)
                .where(PaymentEvent.provider_event_id == event_id)
                .values(
                    status=PaymentEventStatus.FAILED.value,
                    last_error=str(error)[:2000],
                    updated_at=_now(),
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(
                "Could not record billing failure",
                extra={"context": {"event_id": event_id, "error": str(e)}},
            )

    def _handle_checkout_completed(self, db: Session, row: PaymentEvent, session: dict) -> None:
        metadata = session.get("metadata") or {}
        business = tenant_service.by_id(db, metadata.get("businessId") or session.get("client_reference_id"))
        if business is None:
            logger.warning(
                "Checkout for unknown business",
                extra={"context": {"event_id": row.provider_event_id, "metadata": metadata}},
            )
            return
        row.business_id = business.id

        plan_key = metadata.get("plan")
        try:
            tier = PlanTier.from_key(plan_key)
        except UnknownPlanError:
            logger.error(
                "Checkout carried an unknown plan",
                extra={"context": {"event_id": row.provider_event_id, "plan": plan_key}},
            )
            _notify(
                db,
                business,
                NotificationCategory.ERROR,
                "Plan upgrade failed",
                f"We received your payment but could not recognise the plan '{plan_key}'. Please contact support.",
            )
            return

        plan = self.catalog.get(tier)
        business.plan = tier
        customer_id = session.get("customer")
        if customer_id:
            business.stripe_customer_id = customer_id
        row.plan = tier.value
        row.amount = plan.price_cents or session.get("amount_total")
        _notify(
            db,
            business,
            NotificationCategory.SUCCESS,
            "Plan upgraded",
            f"Your business is now on the {plan.display_name} plan.",
        )
        db.flush()

    def _handle_subscription_deleted(self, db: Session, row: PaymentEvent, subscription: dict) -> None:
        business = tenant_service.by_payment_customer(db, subscription.get("customer"))
        if business is None:
            logger.warning(
                "Subscription cancelled for unknown customer",
                extra={"context": {"event_id": row.provider_event_id, "customer": subscription.get("customer")}},
            )
            return
        row.business_id = business.id
        lowest = self.catalog.get(self.catalog.lowest)
        business.plan = lowest.tier
        row.plan = lowest.tier.value
        _notify(
            db,
            business,
            NotificationCategory.PAYMENT,
            "Subscription cancelled",
            f"Your subscription was cancelled. Your business is now on the {lowest.display_name} plan.",
        )
        db.flush()

    def _handle_payment_failed(self, db: Session, row: PaymentEvent, invoice: dict) -> None:
        business = tenant_service.by_payment_customer(db, invoice.get("customer"))
        if business is None:
            logger.warning(
                "Payment failure for unknown customer",
                extra={"context": {"event_id": row.provider_event_id, "customer": invoice.get("customer")}},
            )
            return
        row.business_id = business.id
        row.amount = invoice.get("amount_due")
        _notify(
            db,
            business,
            NotificationCategory.ERROR,
            "Payment failed",
            "We could not process your latest payment. Please update your payment method to keep your plan.",
        )
        db.flush()
