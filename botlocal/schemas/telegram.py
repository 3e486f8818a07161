from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TelegramUser(BaseModel):
    id: int
    is_bot: bool = False
    first_name: str
    last_name: Optional[str] = None
    username: Optional[str] = None
    language_code: Optional[str] = None


class TelegramChat(BaseModel):
    id: int
    type: str  # private, group, supergroup, channel
    title: Optional[str] = None
    username: Optional[str] = None
    first_name: Optional[str] = None


class TelegramMessage(BaseModel):
    message_id: int
    date: int
    chat: TelegramChat
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")  # "from" is reserved in Python
    text: Optional[str] = None
    caption: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class TelegramUpdate(BaseModel):
    update_id: int
    message: Optional[TelegramMessage] = None
    edited_message: Optional[TelegramMessage] = None

    model_config = ConfigDict(extra="ignore")

    @property
    def text_message(self) -> Optional[TelegramMessage]:
        """The message, if this update carries customer text worth answering."""
        message = self.message
        if message is None or not message.text or not message.text.strip():
            return None
        if message.from_user is not None and message.from_user.is_bot:
            return None
        return message


class TelegramWebhookResponse(BaseModel):
    ok: bool = True
    status: str
    detail: Optional[str] = None


class TelegramStatusResponse(BaseModel):
    business_id: Optional[str] = None
    business_name: Optional[str] = None
    expected_url: str
    webhook_url: str
    url_matches: bool
    pending_update_count: int = 0
    last_error_message: Optional[str] = None
    last_error_date: Optional[int] = None
