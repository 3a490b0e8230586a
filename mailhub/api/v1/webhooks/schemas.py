"""Webhook payload schemas"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, timezone

from mailhub.models import EmailStatus

# Brevo transactional event names
BREVO_EVENT_STATUS = {
    "delivered": EmailStatus.DELIVERED,
    "opened": EmailStatus.OPENED,
    "unique_opened": EmailStatus.OPENED,
    "proxy_open": EmailStatus.OPENED,
    "click": EmailStatus.CLICKED,
    # Applied only before delivery; afterwards they are kept as event rows
    "hard_bounce": EmailStatus.FAILED,
    "soft_bounce": EmailStatus.FAILED,
    "blocked": EmailStatus.FAILED,
    "invalid_email": EmailStatus.FAILED,
    "error": EmailStatus.FAILED,
}

class BrevoWebhookEvent(BaseModel):
    event: str
    message_id: str = Field(..., alias="message-id")
    email: Optional[str] = None
    ts_event: Optional[int] = None
    reason: Optional[str] = None
    link: Optional[str] = None

    class Config:
        populate_by_name = True
        extra = "allow"

    @property
    def status(self) -> Optional[EmailStatus]:
        return BREVO_EVENT_STATUS.get(self.event)

    @property
    def occurred_at(self) -> Optional[datetime]:
        if self.ts_event is None:
            return None
        return datetime.fromtimestamp(self.ts_event, tz=timezone.utc)

class WebhookAck(BaseModel):
    accepted: bool
    detail: Optional[str] = None
