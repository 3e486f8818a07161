from functools import partial

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from botlocal.config import settings
from botlocal.dependencies import ServiceContainer, get_container
from botlocal.logging_config import get_logger
from botlocal.models import Platform
from botlocal.schemas.whatsapp import TwilioInboundMessage, WhatsAppWebhookResponse
from botlocal.services.idempotency_service import whatsapp_event_key
from botlocal.services.pipeline_service import InboundChatEvent
from botlocal.services.tenant_service import normalize_whatsapp_phone

logger = get_logger("whatsapp_webhook")

router = APIRouter(prefix="/api/whatsapp", tags=["whatsapp"])


@router.post("/webhook", response_model=WhatsAppWebhookResponse)
async def handle_whatsapp_webhook(
    request: Request,
    container: ServiceContainer = Depends(get_container),
):
    """Accept a Twilio inbound message. Incomplete posts get 200 so Twilio stops retrying."""
    form = await request.form()
    params = {key: value for key, value in form.items() if isinstance(value, str)}

    if settings.whatsapp_validate_signature:
        signature = request.headers.get("X-Twilio-Signature")
        if not container.dispatcher.whatsapp.validate_signature(str(request.url), params, signature):
            logger.warning("Invalid Twilio signature", extra={"context": {"url": str(request.url)}})
            return JSONResponse(status_code=403, content={"ok": False, "status": "forbidden"})

    try:
        inbound = TwilioInboundMessage.model_validate(params)
    except ValidationError as e:
        logger.warning(f"Unparseable Twilio payload: {e}")
        return WhatsAppWebhookResponse(status="ignored", detail="Unparseable payload")

    if not inbound.is_complete:
        logger.info("Twilio payload missing fields", extra={"context": {"message_sid": inbound.message_sid}})
        return WhatsAppWebhookResponse(status="ignored", detail="Missing parameters")

    event = InboundChatEvent(
        platform=Platform.WHATSAPP,
        credential=normalize_whatsapp_phone(inbound.to),
        customer_id=normalize_whatsapp_phone(inbound.from_),
        text=inbound.body.strip(),
        event_key=whatsapp_event_key(inbound.message_sid),
    )
    accepted = container.worker_pool.submit(
        "whatsapp_turn",
        partial(container.pipeline.process, event),
        context={"event_key": event.event_key},
    )
    if not accepted:
        return JSONResponse(
            status_code=503,
            content=WhatsAppWebhookResponse(ok=False, status="busy", detail="Try again later").model_dump(),
        )
    return WhatsAppWebhookResponse(status="accepted")
