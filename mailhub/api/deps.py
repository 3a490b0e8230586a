"""
Common dependencies for FastAPI
Services are built once in the application lifespan and kept on app.state
"""

from fastapi import Request

from mailhub.core.exceptions import ServiceUnavailableException
from mailhub.services.email_queue import EmailQueue
from mailhub.services.email_tracking import EmailTrackingService

def get_email_queue(request: Request) -> EmailQueue:
    """Get the process-wide email queue"""
    queue = getattr(request.app.state, "email_queue", None)
    if queue is None:
        raise ServiceUnavailableException("Email queue is not initialized")
    return queue

def get_email_tracking(request: Request) -> EmailTrackingService:
    """Get the email tracking service"""
    tracking = getattr(request.app.state, "email_tracking", None)
    if tracking is None:
        raise ServiceUnavailableException("Email tracking is not initialized")
    return tracking
