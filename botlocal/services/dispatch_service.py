import threading
from typing import Callable, Dict, Optional

from botlocal.config import settings
from botlocal.logging_config import get_logger
from botlocal.models import Business, Platform
from botlocal.services.alert_service import alert_critical
from botlocal.services.result import Result
from botlocal.services.telegram_service import TelegramService
from botlocal.services.whatsapp_service import WhatsAppService

logger = get_logger("dispatch_service")

UNAVAILABLE_REPLY = (
    "Thank you for your message! We are currently unavailable, please contact us directly."
)
PRIMARY_SEND_ATTEMPTS = 2


def telegram_webhook_url(token: str, base_url: Optional[str] = None) -> str:
    base = (base_url or settings.public_base_url).rstrip("/")
    return f"{base}/api/telegram/webhook/{token}"


class Dispatcher:
    """Delivers outbound text to the customer's platform, with one retry and a fallback."""

    def __init__(
        self,
        whatsapp: Optional[WhatsAppService] = None,
        telegram_factory: Optional[Callable[[str], TelegramService]] = None,
        alert: Callable[..., bool] = alert_critical,
    ):
        self.whatsapp = whatsapp or WhatsAppService(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            timeout_seconds=settings.twilio_timeout_seconds,
        )
        self._telegram_factory = telegram_factory or (
            lambda token: TelegramService(token, timeout_seconds=settings.telegram_timeout_seconds)
        )
        self._telegram_clients: Dict[str, TelegramService] = {}
        self._clients_lock = threading.Lock()
        self._alert = alert

    def telegram(self, token: str) -> TelegramService:
        with self._clients_lock:
            client = self._telegram_clients.get(token)
            if client is None:
                client = self._telegram_factory(token)
                self._telegram_clients[token] = client
            return client

    def _send_once(self, business: Business, platform: Platform, customer_id: str, text: str) -> Result[str]:
        if platform == Platform.TELEGRAM:
            if not business.telegram_bot_token:
                return Result.failure("Business has no Telegram bot token", "not_configured")
            response = self.telegram(business.telegram_bot_token).send_message(customer_id, text)
            if response.get("ok"):
                message_id = (response.get("result") or {}).get("message_id")
                return Result.success(str(message_id) if message_id is not None else "")
            return Result.failure(
                str(response.get("description") or response.get("error") or "telegram send failed"),
                "telegram_error",
            )

        if not business.whatsapp_phone:
            return Result.failure("Business has no WhatsApp number", "not_configured")
        return self.whatsapp.send_message(business.whatsapp_phone, customer_id, text)

    def send(self, business: Business, platform: Platform, customer_id: str, text: str) -> Result[str]:
        """Send text; on definitive failure try one best-effort unavailable notice.

        Returns the primary send's result. A failing fallback is logged, alerted, and
        never raised.
        """
        platform = Platform(platform)
        log_context = {
            "business_id": str(business.id),
            "platform": platform.value,
            "customer_id": customer_id,
        }

        result = Result.failure("not attempted", "not_attempted")
        for attempt in range(1, PRIMARY_SEND_ATTEMPTS + 1):
            result = self._send_once(business, platform, customer_id, text)
            if result.ok:
                return result
            logger.warning(
                f"Send failed (attempt {attempt}/{PRIMARY_SEND_ATTEMPTS}): {result.error}",
                extra={"context": {**log_context, "error_code": result.error_code}},
            )
            if result.error_code == "not_configured":
                break

        fallback = self._send_once(business, platform, customer_id, UNAVAILABLE_REPLY)
        if fallback.ok:
            logger.info("Fallback notice delivered", extra={"context": log_context})
        else:
            logger.error(
                f"Fallback send failed: {fallback.error}",
                extra={"context": {**log_context, "error_code": fallback.error_code}},
            )
            self._alert(
                "Customer could not be reached",
                {**log_context, "error": result.error, "fallback_error": fallback.error},
            )
        return result

    def register_telegram_webhook(self, business: Business, base_url: Optional[str] = None) -> Result[str]:
        if not business.telegram_bot_token:
            return Result.failure("Business has no Telegram bot token", "not_configured")
        url = telegram_webhook_url(business.telegram_bot_token, base_url)
        response = self.telegram(business.telegram_bot_token).set_webhook(url)
        if response.get("ok"):
            logger.info("Telegram webhook registered", extra={"context": {"business_id": str(business.id)}})
            return Result.success(url)
        return Result.failure(
            str(response.get("description") or response.get("error") or "setWebhook failed"),
            "telegram_error",
        )

    def telegram_webhook_info(self, token: str) -> Result[dict]:
        response = self.telegram(token).get_webhook_info()
        if not response.get("ok"):
            return Result.failure(
                str(response.get("description") or response.get("error") or "getWebhookInfo failed"),
                "telegram_error",
            )
        info = response.get("result") or {}
        return Result.success(
            {
                "url": info.get("url") or "",
                "pending_update_count": info.get("pending_update_count", 0),
                "last_error_message": info.get("last_error_message"),
                "last_error_date": info.get("last_error_date"),
            }
        )
