"""Email pipeline schemas for requests, results and analytics."""

from typing import Optional, List, Dict, Any
from datetime import datetime, date
from pydantic import BaseModel, Field

from mailhub.models.email_notification import EmailType, EmailStatus


class EmailData(BaseModel):
    """A notification request handed to the queue"""
    user_id: str = Field(..., description="Recipient user ID")
    type: EmailType = Field(..., description="Notification category")
    subject: str = Field(..., min_length=1, max_length=500)
    text: str = Field(..., description="Plain text body")
    html: Optional[str] = Field(None, description="HTML body, defaults to the text body")


class UserContactInfo(BaseModel):
    email: str
    name: Optional[str] = None

    class Config:
        from_attributes = True


class DeliveryResult(BaseModel):
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class ProcessResult(BaseModel):
    processed: int = 0
    successful: int = 0
    failed: int = 0


class QueueStats(BaseModel):
    pending: int = 0
    processing: int = 0
    successful: int = 0
    failed: int = 0
    total: int = 0


class RetryResult(BaseModel):
    retried: int = 0
    errors: List[str] = Field(default_factory=list)


class PurgeResult(BaseModel):
    deleted: int = 0


class OperationResult(BaseModel):
    """Structured outcome for single-record operations"""
    success: bool
    error: Optional[str] = None


class EmailTrackingEvent(BaseModel):
    """Status-change event reported by the pipeline or a provider webhook"""
    user_id: str
    type: EmailType
    status: EmailStatus
    timestamp: datetime
    notification_id: Optional[str] = None
    message_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class EmailStatusUpdate(BaseModel):
    status: EmailStatus
    metadata: Optional[Dict[str, Any]] = None


class EmailAnalytics(BaseModel):
    total_emails: int = 0
    queued_emails: int = 0
    in_progress_emails: int = 0
    delivered_emails: int = 0
    failed_emails: int = 0
    opened_emails: int = 0
    clicked_emails: int = 0
    delivery_rate: float = 0.0
    open_rate: float = 0.0
    click_rate: float = 0.0
    failure_rate: float = 0.0


class DateCount(BaseModel):
    date: date
    count: int


class UserCount(BaseModel):
    user_id: str
    count: int


class EmailStats(BaseModel):
    by_type: Dict[EmailType, int] = Field(default_factory=dict)
    by_status: Dict[EmailStatus, int] = Field(default_factory=dict)
    by_date: List[DateCount] = Field(default_factory=list)
    by_user: List[UserCount] = Field(default_factory=list)


class StatusCounters(BaseModel):
    queued: int = 0
    in_progress: int = 0
    delivered: int = 0
    failed: int = 0
    opened: int = 0
    clicked: int = 0
    open_rate: float = 0.0
    click_rate: float = 0.0


class DailyBreakdown(StatusCounters):
    date: date


class TypeBreakdown(StatusCounters):
    type: EmailType


class DeliveryReport(BaseModel):
    summary: EmailAnalytics
    daily_breakdown: List[DailyBreakdown] = Field(default_factory=list)
    type_breakdown: List[TypeBreakdown] = Field(default_factory=list)


class EmailResponse(BaseModel):
    id: str
    user_id: str
    type: EmailType
    subject: str
    status: EmailStatus
    scheduled_at: datetime
    last_attempt_at: Optional[datetime] = None
    attempts: int
    error_message: Optional[str] = None
    user: Optional[UserContactInfo] = None

    class Config:
        from_attributes = True


class FailedEmail(EmailResponse):
    pass


class EmailListFilters(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=200)
    status: Optional[EmailStatus] = None
    type: Optional[EmailType] = None
    search: Optional[str] = None
    date_range: Optional[str] = Field(None, pattern="^(today|week|month|all)$")


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class EmailListPage(BaseModel):
    emails: List[EmailResponse]
    pagination: Pagination
