"""Email administration endpoints"""

from typing import List, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, Query

from mailhub.api.deps import get_email_queue, get_email_tracking
from mailhub.core.exceptions import BadRequestException, ConflictException, NotFoundException
from mailhub.models import EmailStatus, EmailType
from mailhub.schemas.email import (
    DeliveryReport,
    EmailListFilters,
    EmailListPage,
    EmailStatusUpdate,
    FailedEmail,
    OperationResult,
    ProcessResult,
    PurgeResult,
    QueueStats,
    RetryResult,
)
from mailhub.services.email_queue import EmailQueue
from mailhub.services.email_tracking import QUEUE_MANAGED_STATUSES, EmailTrackingService
from .schemas import EmailDashboard

router = APIRouter()

NOT_FOUND = "Email not found"

@router.get("", response_model=EmailListPage)
async def list_emails(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    status: Optional[EmailStatus] = Query(None),
    type: Optional[EmailType] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    date_range: Optional[str] = Query(None, pattern="^(today|week|month|all)$"),
    tracking: EmailTrackingService = Depends(get_email_tracking),
):
    """List emails, newest first, with recipient details"""
    filters = EmailListFilters(
        page=page,
        limit=limit,
        status=status,
        type=type,
        search=search,
        date_range=date_range,
    )
    return await tracking.list_emails(filters)

@router.get("/stats", response_model=EmailDashboard)
async def get_email_dashboard(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    queue: EmailQueue = Depends(get_email_queue),
    tracking: EmailTrackingService = Depends(get_email_tracking),
):
    """Get email analytics, breakdowns and current queue depth"""
    return EmailDashboard(
        analytics=await tracking.get_email_analytics(start_date, end_date),
        stats=await tracking.get_email_stats(start_date, end_date),
        queue=await queue.get_queue_stats(),
    )

@router.get("/report", response_model=DeliveryReport)
async def get_delivery_report(
    start_date: datetime = Query(...),
    end_date: datetime = Query(...),
    tracking: EmailTrackingService = Depends(get_email_tracking),
):
    """Get a per-day and per-type delivery report"""
    try:
        return await tracking.get_email_delivery_report(start_date, end_date)
    except ValueError as e:
        raise BadRequestException(str(e))

@router.get("/failed", response_model=List[FailedEmail])
async def get_failed_emails(
    tracking: EmailTrackingService = Depends(get_email_tracking),
):
    """Get emails that failed in the last 7 days"""
    return await tracking.get_failed_emails()

@router.post("/retry-failed", response_model=RetryResult)
async def retry_failed_emails(
    queue: EmailQueue = Depends(get_email_queue),
):
    """Requeue emails that failed in the last 24 hours"""
    return await queue.retry_failed_emails()

@router.get("/queue", response_model=QueueStats)
async def get_queue_stats(
    queue: EmailQueue = Depends(get_email_queue),
):
    """Get queue counts by state"""
    return await queue.get_queue_stats()

@router.post("/queue/process", response_model=ProcessResult)
async def process_queue(
    queue: EmailQueue = Depends(get_email_queue),
):
    """Drain one batch now instead of waiting for the next cycle"""
    return await queue.process_queue()

@router.delete("/old", response_model=PurgeResult)
async def clear_old_emails(
    older_than_days: Optional[int] = Query(None, ge=0),
    queue: EmailQueue = Depends(get_email_queue),
):
    """Delete delivered and failed emails older than the retention period"""
    return await queue.clear_old_emails(older_than_days)

@router.post("/{email_id}/retry", response_model=OperationResult)
async def retry_failed_email(
    email_id: str,
    tracking: EmailTrackingService = Depends(get_email_tracking),
):
    """Requeue one failed email"""
    result = await tracking.retry_failed_email(email_id)

    if not result.success:
        if result.error == NOT_FOUND:
            raise NotFoundException(NOT_FOUND)
        raise BadRequestException(result.error)

    return result

@router.patch("/{email_id}/status", response_model=OperationResult)
async def update_email_status(
    email_id: str,
    update: EmailStatusUpdate,
    tracking: EmailTrackingService = Depends(get_email_tracking),
):
    """Manually move an email to a new status"""
    if update.status in QUEUE_MANAGED_STATUSES:
        raise BadRequestException(f"Status {update.status.value} is managed by the queue")

    result = await tracking.update_email_status(email_id, update.status, update.metadata)

    if not result.success:
        if result.error == NOT_FOUND:
            raise NotFoundException(NOT_FOUND)
        raise ConflictException(result.error)

    return result
