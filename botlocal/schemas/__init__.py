from botlocal.schemas.billing import BillingWebhookResponse
from botlocal.schemas.telegram import TelegramStatusResponse, TelegramUpdate, TelegramWebhookResponse
from botlocal.schemas.whatsapp import TwilioInboundMessage, WhatsAppWebhookResponse

__all__ = [
    "BillingWebhookResponse",
    "TelegramStatusResponse",
    "TelegramUpdate",
    "TelegramWebhookResponse",
    "TwilioInboundMessage",
    "WhatsAppWebhookResponse",
]
