from typing import Optional

from pydantic import BaseModel


class BillingWebhookResponse(BaseModel):
    received: bool = True
    status: str
    event_id: Optional[str] = None
    event_type: Optional[str] = None
