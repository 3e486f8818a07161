"""Operator alerts, posted to an ops Telegram chat when ALERT_BOT_TOKEN / ALERT_CHAT_ID are set."""

from typing import Optional

from botlocal.config import settings
from botlocal.logging_config import get_logger
from botlocal.services.telegram_service import TelegramService

logger = get_logger("alert_service")


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    text = f"[{level}] {message}"
    if context:
        text += "\n\n" + "\n".join(f"  {key}: {value}" for key, value in context.items())
    return text


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Send alert to the ops chat.

    Args:
        level: WARNING, ERROR, CRITICAL
        message: What went wrong, one line
        context: Identifiers an operator needs (business_id, event_id, ...)

    Returns:
        True if Telegram accepted the message
    """
    if not settings.alert_bot_token or not settings.alert_chat_id:
        logger.warning(f"Alert not configured: {level} - {message}", extra={"context": context or {}})
        return False

    telegram = TelegramService(settings.alert_bot_token, timeout_seconds=settings.telegram_timeout_seconds)
    response = telegram.send_message(settings.alert_chat_id, format_alert(level, message, context))
    if not response.get("ok"):
        logger.error(f"Failed to send alert: {response.get('description') or response.get('error')}")
        return False
    return True


def alert_error(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("ERROR", message, context)


def alert_critical(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("CRITICAL", message, context)
