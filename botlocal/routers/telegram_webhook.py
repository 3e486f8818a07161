import json
from functools import partial
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from botlocal.database import get_db
from botlocal.dependencies import ServiceContainer, get_container
from botlocal.logging_config import get_logger
from botlocal.models import Platform
from botlocal.schemas.telegram import TelegramStatusResponse, TelegramUpdate, TelegramWebhookResponse
from botlocal.services import tenant_service
from botlocal.services.dispatch_service import telegram_webhook_url
from botlocal.services.idempotency_service import telegram_event_key
from botlocal.services.pipeline_service import InboundChatEvent

logger = get_logger("telegram_webhook")

router = APIRouter(prefix="/api/telegram", tags=["telegram"])


async def parse_telegram_update(request: Request) -> Optional[dict]:
    """
    Parse Telegram update with tolerant decoding to avoid utf-8 crashes.
    Returns dict or None.
    """
    raw = await request.body()
    for enc in ("utf-8", "latin-1"):
        try:
            decoded = raw.decode(enc, errors="replace")
            body = json.loads(decoded)
            return body if isinstance(body, dict) else None
        except ValueError:
            continue

    logger.error("Failed to decode Telegram webhook payload")
    return None


@router.post("/webhook/{token}", response_model=TelegramWebhookResponse)
async def handle_telegram_webhook(
    token: str,
    request: Request,
    container: ServiceContainer = Depends(get_container),
):
    """
    Accept a bot update and hand text messages to the worker pool.
    Non-text updates are acknowledged and dropped.
    """
    body = await parse_telegram_update(request)
    if body is None:
        return TelegramWebhookResponse(status="ignored", detail="Invalid telegram payload")

    try:
        update = TelegramUpdate.model_validate(body)
    except ValidationError as e:
        logger.warning(f"Unparseable Telegram update: {e}")
        return TelegramWebhookResponse(status="ignored", detail="Unparseable update")

    message = update.text_message
    if message is None:
        return TelegramWebhookResponse(status="ignored", detail="No text message")

    event = InboundChatEvent(
        platform=Platform.TELEGRAM,
        credential=token,
        customer_id=str(message.chat.id),
        text=message.text.strip(),
        event_key=telegram_event_key(token, update.update_id),
    )
    accepted = container.worker_pool.submit(
        "telegram_turn",
        partial(container.pipeline.process, event),
        context={"event_key": event.event_key},
    )
    if not accepted:
        return JSONResponse(
            status_code=503,
            content=TelegramWebhookResponse(ok=False, status="busy", detail="Try again later").model_dump(),
        )
    return TelegramWebhookResponse(status="accepted")


@router.get("/status/{token}", response_model=TelegramStatusResponse)
def telegram_status(
    token: str,
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    """Webhook diagnostics for a bot token (Telegram getWebhookInfo)."""
    result = container.dispatcher.telegram_webhook_info(token)
    if not result.ok:
        return JSONResponse(status_code=502, content={"error": result.error, "error_code": result.error_code})

    business = tenant_service.resolve(db, Platform.TELEGRAM, token)
    info = result.value
    expected_url = telegram_webhook_url(token)
    return TelegramStatusResponse(
        business_id=str(business.id) if business else None,
        business_name=business.name if business else None,
        expected_url=expected_url,
        webhook_url=info["url"],
        url_matches=info["url"] == expected_url,
        pending_update_count=info["pending_update_count"],
        last_error_message=info["last_error_message"],
        last_error_date=info["last_error_date"],
    )
