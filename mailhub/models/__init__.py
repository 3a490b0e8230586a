"""Models package initialization"""

from .base import Base, utcnow
from .user import User
from .email_notification import (
    EmailNotification,
    EmailEvent,
    EmailType,
    EmailStatus,
    ALLOWED_TRANSITIONS,
    PURGEABLE_STATUSES,
    can_transition,
)

__all__ = [
    "Base",
    "utcnow",
    "User",
    "EmailNotification",
    "EmailEvent",
    "EmailType",
    "EmailStatus",
    "ALLOWED_TRANSITIONS",
    "PURGEABLE_STATUSES",
    "can_transition",
]
