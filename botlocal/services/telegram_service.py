from typing import Optional

import httpx

from botlocal.logging_config import get_logger

logger = get_logger("telegram_service")


class TelegramService:
    """Thin Telegram Bot API client for one bot token."""

    BASE_URL = "https://api.telegram.org/bot{token}"

    def __init__(self, bot_token: str, timeout_seconds: float = 10.0):
        self.bot_token = bot_token
        self.base_url = self.BASE_URL.format(token=bot_token)
        self.timeout_seconds = timeout_seconds

    def _make_request(self, method: str, data: Optional[dict] = None) -> dict:
        """Call a Bot API method. Transport failures come back as {"ok": False, "error": ...}."""
        url = f"{self.base_url}/{method}"
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(url, json=data or {})
                return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Telegram API error: {e}", extra={"context": {"method": method}})
            return {"ok": False, "error": str(e)}

    def send_message(self, chat_id: str, text: str, reply_to_message_id: Optional[int] = None) -> dict:
        data = {"chat_id": chat_id, "text": text}
        if reply_to_message_id:
            data["reply_to_message_id"] = reply_to_message_id
        return self._make_request("sendMessage", data)

    def set_webhook(self, url: str, drop_pending_updates: bool = False) -> dict:
        data = {"url": url, "allowed_updates": ["message"]}
        if drop_pending_updates:
            data["drop_pending_updates"] = True
        return self._make_request("setWebhook", data)

    def get_webhook_info(self) -> dict:
        return self._make_request("getWebhookInfo")
