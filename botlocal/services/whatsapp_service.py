from typing import Optional

from twilio.http.http_client import TwilioHttpClient
from twilio.request_validator import RequestValidator
from twilio.rest import Client

from botlocal.logging_config import get_logger
from botlocal.services.result import Result
from botlocal.services.tenant_service import WHATSAPP_PREFIX, normalize_whatsapp_phone

logger = get_logger("whatsapp_service")


def as_whatsapp_address(phone: str) -> str:
    return f"{WHATSAPP_PREFIX}{normalize_whatsapp_phone(phone)}"


class WhatsAppService:
    """Sends WhatsApp messages through one Twilio account."""

    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        timeout_seconds: float = 10.0,
        client: Optional[Client] = None,
    ):
        self.auth_token = auth_token
        if client is None and account_sid and auth_token:
            client = Client(account_sid, auth_token, http_client=TwilioHttpClient(timeout=timeout_seconds))
        self.client = client

    @property
    def configured(self) -> bool:
        return self.client is not None

    def send_message(self, from_phone: str, to_phone: str, text: str) -> Result[str]:
        """Send one message; returns the Twilio message SID."""
        if not self.client:
            return Result.failure("Twilio credentials not configured", "not_configured")
        try:
            message = self.client.messages.create(
                body=text,
                from_=as_whatsapp_address(from_phone),
                to=as_whatsapp_address(to_phone),
            )
        except Exception as e:
            logger.error(f"Twilio send failed: {e}", extra={"context": {"to": to_phone}})
            return Result.from_exception(e, "twilio_error")
        return Result.success(message.sid)

    def validate_signature(self, url: str, params: dict, signature: Optional[str]) -> bool:
        if not self.auth_token or not signature:
            return False
        return RequestValidator(self.auth_token).validate(url, params, signature)
