"""Services package"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailhub.core.config import Settings, settings as default_settings
from .delivery import DeliveryBackend, BrevoDeliveryBackend, SMTPDeliveryBackend, get_delivery_backend
from .email_queue import EmailQueue, EmailQueueConfig
from .email_store import EmailNotificationStore
from .email_tracking import EmailTrackingService
from .user_directory import UserDirectory, SQLUserDirectory

@dataclass
class EmailServices:
    """Wired email pipeline components for one process"""
    store: EmailNotificationStore
    queue: EmailQueue
    tracking: EmailTrackingService

def build_email_services(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Optional[Settings] = None,
    delivery_backend: Optional[DeliveryBackend] = None,
    user_directory: Optional[UserDirectory] = None,
) -> EmailServices:
    """
    Build the queue and tracking service over one store

    Raises DeliveryConfigurationError when no backend is given and the
    configured one is missing credentials.
    """
    settings = settings or default_settings
    store = EmailNotificationStore(session_factory)
    queue = EmailQueue(
        store=store,
        delivery_backend=delivery_backend or get_delivery_backend(settings),
        user_directory=user_directory or SQLUserDirectory(session_factory),
        config=EmailQueueConfig.from_settings(settings),
    )
    tracking = EmailTrackingService(store, retention_days=settings.EMAIL_TRACKING_RETENTION_DAYS)
    return EmailServices(store=store, queue=queue, tracking=tracking)

__all__ = [
    "DeliveryBackend",
    "BrevoDeliveryBackend",
    "SMTPDeliveryBackend",
    "get_delivery_backend",
    "EmailQueue",
    "EmailQueueConfig",
    "EmailNotificationStore",
    "EmailTrackingService",
    "UserDirectory",
    "SQLUserDirectory",
    "EmailServices",
    "build_email_services",
]
