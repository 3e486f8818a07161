from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from botlocal.database import get_db
from botlocal.dependencies import ServiceContainer, get_container
from botlocal.logging_config import get_logger
from botlocal.schemas.billing import BillingWebhookResponse
from botlocal.services.billing_service import (
    OUTCOME_IN_FLIGHT,
    BillingConfigurationError,
    BillingProcessingError,
    InvalidSignatureError,
)

logger = get_logger("billing_webhook")

router = APIRouter(prefix="/api/stripe", tags=["billing"])


@router.post("/webhook", response_model=BillingWebhookResponse)
async def handle_stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    """
    Stripe webhook. Processed synchronously so the status code tells Stripe whether
    to retry: 400 bad signature, 409 in flight elsewhere, 500 processing failed.
    """
    payload = await request.body()
    signature = request.headers.get("Stripe-Signature")

    try:
        event = container.billing.verify(payload, signature)
    except BillingConfigurationError as e:
        logger.error(f"Billing webhook not configured: {e}")
        return JSONResponse(status_code=500, content={"error": "billing_not_configured"})
    except InvalidSignatureError as e:
        logger.warning(f"Invalid Stripe signature: {e}")
        return JSONResponse(status_code=400, content={"error": "invalid_signature"})

    try:
        outcome = container.billing.process(db, event)
    except BillingProcessingError:
        return JSONResponse(status_code=500, content={"error": "processing_failed", "event_id": event["id"]})

    response = BillingWebhookResponse(status=outcome.status, event_id=outcome.event_id, event_type=outcome.event_type)
    if outcome.status == OUTCOME_IN_FLIGHT:
        return JSONResponse(status_code=409, content=response.model_dump())
    return response
