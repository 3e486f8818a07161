from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class TwilioInboundMessage(BaseModel):
    """Twilio's form-encoded inbound message webhook (the fields this service reads)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    body: Optional[str] = Field(default=None, validation_alias=AliasChoices("Body", "body"))
    from_: Optional[str] = Field(default=None, validation_alias=AliasChoices("From", "from"))
    to: Optional[str] = Field(default=None, validation_alias=AliasChoices("To", "to"))
    message_sid: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("MessageSid", "SmsMessageSid", "message_sid")
    )
    profile_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("ProfileName", "profile_name"))

    @property
    def is_complete(self) -> bool:
        return bool(self.body and self.body.strip() and self.from_ and self.to and self.message_sid)


class WhatsAppWebhookResponse(BaseModel):
    ok: bool = True
    status: str
    detail: Optional[str] = None
