"""
Email tracking and delivery analytics

Records status-change events and answers read-only analytics queries over
the notification store. Sending and draining belong to EmailQueue.
"""

from typing import Any, Dict, List, Optional
from datetime import date, datetime, timedelta
import logging
import math

from mailhub.core.exceptions import InvalidStateError, PersistenceError
from mailhub.models import EmailEvent, EmailStatus, EmailType, can_transition, utcnow
from mailhub.models.base import as_naive_utc
from mailhub.schemas.email import (
    DailyBreakdown,
    DateCount,
    DeliveryReport,
    EmailAnalytics,
    EmailListFilters,
    EmailListPage,
    EmailResponse,
    EmailStats,
    EmailTrackingEvent,
    FailedEmail,
    OperationResult,
    Pagination,
    PurgeResult,
    StatusCounters,
    TypeBreakdown,
    UserCount,
)
from mailhub.services.email_store import EmailNotificationStore

logger = logging.getLogger(__name__)

STATS_DATE_WINDOW = timedelta(days=30)
FAILED_EMAILS_WINDOW = timedelta(days=7)
TOP_RECIPIENTS = 10

# Statuses only the queue itself may set
QUEUE_MANAGED_STATUSES = (EmailStatus.QUEUED, EmailStatus.IN_PROGRESS)

def rate(numerator: int, denominator: int) -> float:
    """Percentage rounded to 2 decimals, 0.0 when the denominator is 0"""
    if not denominator:
        return 0.0
    return round(numerator / denominator * 100, 2)

def _apply_counts(row: StatusCounters, status: EmailStatus, count: int) -> None:
    setattr(row, status.value.lower(), getattr(row, status.value.lower()) + count)

def _apply_rates(row: StatusCounters) -> None:
    row.open_rate = rate(row.opened, row.delivered)
    row.click_rate = rate(row.clicked, row.opened)

class EmailTrackingService:
    """Status tracking and analytics over email notifications"""

    def __init__(self, store: EmailNotificationStore, retention_days: int = 90):
        self.store = store
        self.retention_days = retention_days

    async def track_email_event(self, event: EmailTrackingEvent) -> OperationResult:
        """
        Record a tracking event and apply its status to the matching email

        The event row is kept even when the status cannot be applied, e.g. a
        bounce reported after the email was already DELIVERED. The result says
        whether the status took effect. Best effort: store errors are logged
        and returned, never raised, so tracking cannot affect delivery.
        """
        try:
            notification_id = event.notification_id
            if notification_id is None and event.message_id:
                record = await self.store.get_by_message_id(event.message_id)
                notification_id = record.id if record else None

            await self.store.add_event(
                EmailEvent(
                    notification_id=notification_id,
                    user_id=event.user_id,
                    type=event.type,
                    status=event.status,
                    occurred_at=as_naive_utc(event.timestamp),
                    event_metadata=event.metadata,
                )
            )

            if notification_id is None:
                return OperationResult(success=False, error="No matching email")

            outcome = await self.update_email_status(
                notification_id, event.status, event.metadata
            )
            if not outcome.success:
                logger.info(
                    f"Event for email {notification_id} not applied: {outcome.error}"
                )
            return outcome
        except PersistenceError as e:
            logger.error(f"Error tracking email event: {str(e)}")
            return OperationResult(success=False, error=str(e))

    async def handle_provider_event(
        self,
        message_id: str,
        status: EmailStatus,
        occurred_at: Optional[datetime] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> OperationResult:
        """Track a webhook event identified only by the provider's message id"""
        try:
            record = await self.store.get_by_message_id(message_id)
        except PersistenceError as e:
            logger.error(f"Error looking up provider message {message_id}: {str(e)}")
            return OperationResult(success=False, error=str(e))

        if record is None:
            logger.info(f"Ignoring event for unknown provider message {message_id}")
            return OperationResult(success=False, error="Unknown message id")

        return await self.track_email_event(
            EmailTrackingEvent(
                notification_id=record.id,
                message_id=message_id,
                user_id=record.user_id,
                type=record.type,
                status=status,
                timestamp=occurred_at or utcnow(),
                metadata=metadata or {},
            )
        )

    async def update_email_status(
        self,
        email_id: str,
        status: EmailStatus,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> OperationResult:
        """Apply a status transition to one email"""
        if status in QUEUE_MANAGED_STATUSES:
            return OperationResult(
                success=False,
                error=f"Status {status.value} is managed by the queue",
            )

        try:
            record = await self.store.get(email_id)
            if record is None:
                return OperationResult(success=False, error="Email not found")

            if record.status == status:
                return OperationResult(success=True)

            if not can_transition(record.status, status):
                return OperationResult(
                    success=False,
                    error=str(InvalidStateError(record.status.value, status.value)),
                )

            values: Dict[str, Any] = {
                "error_message": None,
                "claimed_by": None,
                "claim_expires_at": None,
            }
            if status == EmailStatus.FAILED:
                values["error_message"] = (metadata or {}).get("error") or "Email delivery failed"
            if status in (EmailStatus.DELIVERED, EmailStatus.FAILED):
                values["last_attempt_at"] = utcnow()

            applied = await self.store.transition(
                email_id, expected=record.status, new_status=status, **values
            )
        except PersistenceError as e:
            logger.error(f"Error updating email status: {str(e)}")
            return OperationResult(success=False, error=str(e))

        if not applied:
            return OperationResult(success=False, error="Email status changed concurrently")
        return OperationResult(success=True)

    async def get_email_analytics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> EmailAnalytics:
        counts = await self.store.count_by_status(as_naive_utc(start_date), as_naive_utc(end_date))

        total = sum(counts.values())
        delivered = counts.get(EmailStatus.DELIVERED, 0)
        failed = counts.get(EmailStatus.FAILED, 0)
        opened = counts.get(EmailStatus.OPENED, 0)
        clicked = counts.get(EmailStatus.CLICKED, 0)

        return EmailAnalytics(
            total_emails=total,
            queued_emails=counts.get(EmailStatus.QUEUED, 0),
            in_progress_emails=counts.get(EmailStatus.IN_PROGRESS, 0),
            delivered_emails=delivered,
            failed_emails=failed,
            opened_emails=opened,
            clicked_emails=clicked,
            delivery_rate=rate(delivered, total),
            open_rate=rate(opened, delivered),
            click_rate=rate(clicked, opened),
            failure_rate=rate(failed, total),
        )

    async def get_email_stats(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> EmailStats:
        start_date, end_date = as_naive_utc(start_date), as_naive_utc(end_date)

        by_type = await self.store.count_by_type(start_date, end_date)
        by_status = await self.store.count_by_status(start_date, end_date)
        top = await self.store.top_recipients(start_date, end_date, limit=TOP_RECIPIENTS)

        # The daily series never reaches back further than 30 days
        recent_start = utcnow() - STATS_DATE_WINDOW
        if start_date is not None and start_date > recent_start:
            recent_start = start_date
        per_day: Dict[date, int] = {}
        for day, _status, count in await self.store.count_by_date_and_status(recent_start, end_date):
            per_day[day] = per_day.get(day, 0) + count

        return EmailStats(
            by_type=by_type,
            by_status=by_status,
            by_date=[DateCount(date=day, count=count) for day, count in sorted(per_day.items())],
            by_user=[UserCount(user_id=user_id, count=count) for user_id, count in top],
        )

    async def get_failed_emails(self) -> List[FailedEmail]:
        """FAILED emails attempted in the last 7 days, newest first"""
        records = await self.store.list_failed_since(
            utcnow() - FAILED_EMAILS_WINDOW, with_user=True
        )
        return [FailedEmail.model_validate(record) for record in records]

    async def retry_failed_email(self, email_id: str) -> OperationResult:
        """Requeue one FAILED email regardless of its age or attempt count"""
        try:
            record = await self.store.get(email_id)
            if record is None:
                return OperationResult(success=False, error="Email not found")

            if record.status != EmailStatus.FAILED:
                return OperationResult(success=False, error="Email is not in failed status")

            if not await self.store.requeue(email_id):
                return OperationResult(success=False, error="Email is not in failed status")
        except PersistenceError as e:
            logger.error(f"Error retrying failed email: {str(e)}")
            return OperationResult(success=False, error=str(e))

        logger.info(f"Email {email_id} requeued by operator")
        return OperationResult(success=True)

    async def get_email_delivery_report(
        self,
        start_date: datetime,
        end_date: datetime,
    ) -> DeliveryReport:
        start_date, end_date = as_naive_utc(start_date), as_naive_utc(end_date)
        if end_date < start_date:
            raise ValueError("end_date must not be before start_date")

        summary = await self.get_email_analytics(start_date, end_date)

        daily: Dict[date, DailyBreakdown] = {}
        for day, status, count in await self.store.count_by_date_and_status(start_date, end_date):
            row = daily.setdefault(day, DailyBreakdown(date=day))
            _apply_counts(row, status, count)

        by_type: Dict[EmailType, TypeBreakdown] = {}
        for email_type, status, count in await self.store.count_by_type_and_status(start_date, end_date):
            row = by_type.setdefault(email_type, TypeBreakdown(type=email_type))
            _apply_counts(row, status, count)

        daily_breakdown = [daily[day] for day in sorted(daily)]
        type_breakdown = sorted(by_type.values(), key=lambda row: row.type.value)
        for row in [*daily_breakdown, *type_breakdown]:
            _apply_rates(row)

        return DeliveryReport(
            summary=summary,
            daily_breakdown=daily_breakdown,
            type_breakdown=type_breakdown,
        )

    async def cleanup_old_email_data(self, older_than_days: Optional[int] = None) -> PurgeResult:
        """Same retention sweep as EmailQueue.clear_old_emails, with the tracking default"""
        days = self.retention_days if older_than_days is None else older_than_days
        return PurgeResult(deleted=await self.store.purge_older_than(days))

    async def list_emails(self, filters: EmailListFilters) -> EmailListPage:
        """Page through emails for the admin view"""
        now = utcnow()
        since = {
            "today": now.replace(hour=0, minute=0, second=0, microsecond=0),
            "week": now - timedelta(days=7),
            "month": now - timedelta(days=30),
        }.get(filters.date_range or "all")

        records, total = await self.store.list_emails(
            page=filters.page,
            limit=filters.limit,
            status=filters.status,
            email_type=filters.type,
            search=filters.search,
            since=since,
        )

        return EmailListPage(
            emails=[EmailResponse.model_validate(record) for record in records],
            pagination=Pagination(
                page=filters.page,
                limit=filters.limit,
                total=total,
                pages=math.ceil(total / filters.limit),
            ),
        )
