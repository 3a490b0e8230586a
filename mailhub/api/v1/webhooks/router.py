"""Email provider webhook endpoints"""

from fastapi import APIRouter, Depends, status

from mailhub.api.deps import get_email_tracking
from mailhub.schemas.email import EmailTrackingEvent
from mailhub.services.email_tracking import EmailTrackingService
from .schemas import BrevoWebhookEvent, WebhookAck

router = APIRouter()

@router.post("/email-events", response_model=WebhookAck, status_code=status.HTTP_202_ACCEPTED)
async def receive_email_event(
    event: EmailTrackingEvent,
    tracking: EmailTrackingService = Depends(get_email_tracking),
):
    """Record a tracking event in the internal format"""
    result = await tracking.track_email_event(event)
    return WebhookAck(accepted=result.success, detail=result.error)

@router.post("/brevo", response_model=WebhookAck, status_code=status.HTTP_202_ACCEPTED)
async def receive_brevo_event(
    event: BrevoWebhookEvent,
    tracking: EmailTrackingService = Depends(get_email_tracking),
):
    """
    Translate a Brevo transactional webhook into a tracking event

    Bounces arrive after the send was accepted, so for a DELIVERED email they
    are kept as event rows only and the ack reports accepted=false.
    """
    if event.status is None:
        return WebhookAck(accepted=False, detail=f"Ignored event type: {event.event}")

    metadata = {"provider_event": event.event}
    if event.reason:
        metadata["error"] = event.reason
    if event.link:
        metadata["link"] = event.link

    result = await tracking.handle_provider_event(
        event.message_id,
        event.status,
        occurred_at=event.occurred_at,
        metadata=metadata,
    )
    return WebhookAck(accepted=result.success, detail=result.error)
