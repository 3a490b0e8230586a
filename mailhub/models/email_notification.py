"""Email notification model with delivery state machine"""

from sqlalchemy import Column, String, Text, Integer, Enum, Index, DateTime, JSON
from sqlalchemy.orm import relationship
from typing import Dict, Set
import enum

from .base import Base, TimestampedModel, UUIDModel, ReprModel, utcnow

class EmailType(str, enum.Enum):
    WELCOME = "WELCOME"
    ACCOUNT_CONFIRMED = "ACCOUNT_CONFIRMED"
    ACCOUNT_REJECTED = "ACCOUNT_REJECTED"
    PASSWORD_RESET = "PASSWORD_RESET"
    MEETING_REMINDER = "MEETING_REMINDER"
    NEWSLETTER_WELCOME = "NEWSLETTER_WELCOME"
    DIGEST = "DIGEST"
    MARKETING = "MARKETING"
    REPORT = "REPORT"
    MESSAGE = "MESSAGE"
    SYSTEM = "SYSTEM"
    CUSTOM = "CUSTOM"

class EmailStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    IN_PROGRESS = "IN_PROGRESS"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    OPENED = "OPENED"
    CLICKED = "CLICKED"

# Statuses a retention sweep may delete
PURGEABLE_STATUSES = (EmailStatus.DELIVERED, EmailStatus.FAILED)

ALLOWED_TRANSITIONS: Dict[EmailStatus, Set[EmailStatus]] = {
    EmailStatus.QUEUED: {
        EmailStatus.IN_PROGRESS,
        EmailStatus.DELIVERED,
        EmailStatus.FAILED,
    },
    EmailStatus.IN_PROGRESS: {
        EmailStatus.DELIVERED,
        EmailStatus.FAILED,
        EmailStatus.QUEUED,  # Expired lease
    },
    EmailStatus.DELIVERED: {
        EmailStatus.OPENED,
        EmailStatus.CLICKED,
    },
    EmailStatus.OPENED: {
        EmailStatus.CLICKED,
    },
    EmailStatus.FAILED: {
        EmailStatus.QUEUED,  # Explicit retry only
    },
    EmailStatus.CLICKED: set(),
}

def can_transition(current: EmailStatus, new: EmailStatus) -> bool:
    """Check if a status transition is valid"""
    return new in ALLOWED_TRANSITIONS.get(current, set())

class EmailNotification(Base, TimestampedModel, UUIDModel, ReprModel):
    """One email-send attempt and its outcome"""

    __tablename__ = "email_notifications"

    # Weak reference: the recipient may be deleted while the email is queued
    user_id = Column(String(36), nullable=False)
    type = Column(Enum(EmailType), nullable=False)

    # Payload
    subject = Column(String(500), nullable=False)
    body = Column(Text, nullable=False)
    html_body = Column(Text, nullable=True)

    # Delivery state
    status = Column(Enum(EmailStatus), default=EmailStatus.QUEUED, nullable=False)
    scheduled_at = Column(DateTime, default=utcnow, nullable=False)
    last_attempt_at = Column(DateTime, nullable=True)
    attempts = Column(Integer, default=0, nullable=False)
    error_message = Column(Text, nullable=True)
    provider_message_id = Column(String(255), nullable=True, index=True)

    # Lease held by the worker currently sending this email
    claimed_by = Column(String(100), nullable=True)
    claim_expires_at = Column(DateTime, nullable=True)

    user = relationship(
        "User",
        primaryjoin="foreign(EmailNotification.user_id) == User.id",
        viewonly=True,
    )

    __table_args__ = (
        Index("idx_email_notifications_status_scheduled", "status", "scheduled_at"),
        Index("idx_email_notifications_user", "user_id"),
        Index("idx_email_notifications_type", "type"),
    )

class EmailEvent(Base, UUIDModel, ReprModel):
    """Tracking entry for a delivery, open or click event"""

    __tablename__ = "email_events"

    notification_id = Column(String(36), nullable=True, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    type = Column(Enum(EmailType), nullable=False)
    status = Column(Enum(EmailStatus), nullable=False)
    occurred_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    event_metadata = Column(JSON, default=dict)
