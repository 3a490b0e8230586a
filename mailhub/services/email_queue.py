"""
Email queue: persists notification requests and drains them in batches

Lifecycle is owned by the host application. Build one EmailQueue at
startup, call start_processing() to run the periodic drain, and
stop_processing() on shutdown. Several processes may drain the same
store; each email is claimed with a lease before it is sent.
"""

from typing import List, Optional, Sequence
from datetime import datetime, timedelta
from uuid import uuid4
import asyncio
import logging
import os
import socket

from pydantic import BaseModel, Field

from mailhub.core.config import Settings, settings as default_settings
from mailhub.core.exceptions import InvalidStateError, PersistenceError
from mailhub.core.monitoring import DrainTimer, emails_enqueued, queue_depth, record_delivery
from mailhub.models import EmailNotification, EmailStatus, utcnow
from mailhub.models.base import as_naive_utc, new_id
from mailhub.schemas.email import (
    DeliveryResult,
    EmailData,
    ProcessResult,
    PurgeResult,
    QueueStats,
    RetryResult,
)
from mailhub.services.delivery import DeliveryBackend
from mailhub.services.email_store import EmailNotificationStore
from mailhub.services.user_directory import UserDirectory

logger = logging.getLogger(__name__)

BULK_RETRY_WINDOW = timedelta(hours=24)

class EmailQueueConfig(BaseModel):
    """Tuning knobs for the queue"""
    max_attempts: int = Field(3, ge=1)
    # Not applied automatically; retries are operator-triggered
    retry_delay: timedelta = timedelta(minutes=5)
    batch_size: int = Field(10, ge=1)
    processing_interval: timedelta = timedelta(seconds=30)
    delivery_timeout: timedelta = timedelta(seconds=30)
    claim_ttl: timedelta = timedelta(minutes=5)
    retention_days: int = Field(30, ge=0)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "EmailQueueConfig":
        settings = settings or default_settings
        return cls(
            max_attempts=settings.EMAIL_QUEUE_MAX_ATTEMPTS,
            retry_delay=timedelta(seconds=settings.EMAIL_QUEUE_RETRY_DELAY_SECONDS),
            batch_size=settings.EMAIL_QUEUE_BATCH_SIZE,
            processing_interval=timedelta(seconds=settings.EMAIL_QUEUE_PROCESSING_INTERVAL_SECONDS),
            delivery_timeout=timedelta(seconds=settings.EMAIL_QUEUE_DELIVERY_TIMEOUT_SECONDS),
            claim_ttl=timedelta(seconds=settings.EMAIL_QUEUE_CLAIM_TTL_SECONDS),
            retention_days=settings.EMAIL_RETENTION_DAYS,
        )

def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"

class EmailQueue:
    """Queue of pending emails with batch drain and operator retry"""

    def __init__(
        self,
        store: EmailNotificationStore,
        delivery_backend: DeliveryBackend,
        user_directory: UserDirectory,
        config: Optional[EmailQueueConfig] = None,
        worker_id: Optional[str] = None,
    ):
        self.store = store
        self.delivery_backend = delivery_backend
        self.user_directory = user_directory
        self.config = config or EmailQueueConfig()
        self.worker_id = worker_id or default_worker_id()

        self._is_processing = False
        self._processing_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return self._processing_task is not None and not self._processing_task.done()

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    @staticmethod
    def _build_record(email: EmailData, scheduled_at: datetime) -> EmailNotification:
        return EmailNotification(
            id=new_id(),
            user_id=email.user_id,
            type=email.type,
            subject=email.subject,
            body=email.text,
            html_body=email.html,
            status=EmailStatus.QUEUED,
            scheduled_at=scheduled_at,
            attempts=0,
        )

    # -- Producers ------------------------------------------------------

    async def add_email(self, email: EmailData, scheduled_at: Optional[datetime] = None) -> str:
        """
        Queue one email

        Raises PersistenceError if the record could not be written; the
        email is not queued in that case.
        """
        record = self._build_record(email, as_naive_utc(scheduled_at) or utcnow())
        try:
            await self.store.add(record)
        except PersistenceError as e:
            logger.error(f"Error adding email to queue: {str(e)}")
            raise

        emails_enqueued.inc()
        logger.info(f"Queued {email.type.value} email {record.id} for user {email.user_id}")
        return record.id

    async def add_bulk_emails(
        self,
        emails: Sequence[EmailData],
        scheduled_at: Optional[datetime] = None,
    ) -> List[str]:
        """
        Queue several emails in one transaction

        Returns the new ids in the same order as `emails`. Either every
        email is queued or PersistenceError is raised and none are.
        """
        if not emails:
            return []

        when = as_naive_utc(scheduled_at) or utcnow()
        records = [self._build_record(email, when) for email in emails]
        try:
            ids = await self.store.add_many(records)
        except PersistenceError as e:
            logger.error(f"Error adding bulk emails to queue: {str(e)}")
            raise

        emails_enqueued.inc(len(ids))
        logger.info(f"Queued {len(ids)} emails in bulk")
        return ids

    # -- Drain ----------------------------------------------------------

    def _lease_duration(self) -> timedelta:
        # A batch is sent sequentially, so the lease must outlive the whole batch
        return self.config.claim_ttl + self.config.delivery_timeout * self.config.batch_size

    async def _recover_abandoned(self) -> None:
        try:
            requeued, failed = await self.store.release_expired_claims(
                max_attempts=self.config.max_attempts,
            )
        except PersistenceError as e:
            logger.warning(f"Could not recover abandoned emails: {str(e)}")
            return

        if requeued or failed:
            logger.warning(
                f"Recovered abandoned emails: {requeued} requeued, {failed} failed"
            )

    async def process_queue(self) -> ProcessResult:
        """
        Drain one batch of due emails, oldest scheduled first

        A call made while another drain is running in this process
        returns zero counts immediately.
        """
        if self._is_processing:
            logger.debug("Queue drain already in progress, skipping")
            return ProcessResult()

        self._is_processing = True
        try:
            with DrainTimer(self.worker_id):
                await self._recover_abandoned()

                now = utcnow()
                emails = await self.store.claim_due(
                    owner=self.worker_id,
                    limit=self.config.batch_size,
                    lease_until=now + self._lease_duration(),
                    now=now,
                )

                result = ProcessResult()
                for email in emails:
                    try:
                        delivery = await self.process_email(email)
                        success = delivery.success
                    except Exception as e:
                        logger.error(f"Error processing email {email.id}: {str(e)}")
                        success = False

                    result.processed += 1
                    if success:
                        result.successful += 1
                    else:
                        result.failed += 1

            if result.processed:
                logger.info(
                    f"Processed {result.processed} emails: "
                    f"{result.successful} delivered, {result.failed} failed"
                )
            return result
        finally:
            self._is_processing = False

    async def _deliver(self, email: EmailNotification) -> DeliveryResult:
        user = await self.user_directory.get_user_contact_info(email.user_id)
        if user is None:
            return DeliveryResult(success=False, error=f"User not found: {email.user_id}")

        timeout = self.config.delivery_timeout.total_seconds()
        try:
            return await asyncio.wait_for(
                self.delivery_backend.send(
                    to=user.email,
                    subject=email.subject,
                    html=email.html_body or email.body,
                    text=email.body,
                    category=email.type,
                    recipient_user_id=email.user_id,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            return DeliveryResult(success=False, error=f"Delivery timed out after {timeout:g}s")

    async def process_email(self, email: EmailNotification) -> DeliveryResult:
        """
        Send one email this worker has claimed and record the outcome

        The record must be IN_PROGRESS under this worker's lease, as returned
        by the store's claim; anything else raises InvalidStateError before a
        send is attempted. Delivery failures, including backend exceptions and
        timeouts, are written to the record and returned; they are never raised.
        """
        if email.status != EmailStatus.IN_PROGRESS or email.claimed_by != self.worker_id:
            raise InvalidStateError(email.status.value, EmailStatus.IN_PROGRESS.value)

        try:
            result = await self._deliver(email)
        except Exception as e:
            logger.error(f"Error sending email {email.id}: {str(e)}")
            result = DeliveryResult(success=False, error=str(e) or e.__class__.__name__)

        if result.success:
            status = EmailStatus.DELIVERED
        else:
            status = EmailStatus.FAILED
            result.error = result.error or "Unknown error"

        updated = await self.store.complete(
            email.id,
            owner=self.worker_id,
            status=status,
            error_message=result.error,
            provider_message_id=result.message_id,
        )
        if updated:
            record_delivery(result.success)
        else:
            logger.warning(f"Lease on email {email.id} was lost before its outcome was saved")

        if not result.success:
            logger.warning(f"Email {email.id} failed: {result.error}")
        return result

    # -- Background loop ------------------------------------------------

    def start_processing(self) -> None:
        """Start the periodic drain; must be called from a running event loop"""
        if self.is_running:
            return

        self._stop_event = asyncio.Event()
        self._processing_task = asyncio.get_running_loop().create_task(
            self._run(self._stop_event),
            name=f"email-queue-{self.worker_id}",
        )
        logger.info(
            f"Email queue processing started "
            f"(every {self.config.processing_interval.total_seconds():g}s)"
        )

    async def _run(self, stop_event: asyncio.Event) -> None:
        interval = self.config.processing_interval.total_seconds()
        while True:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
                return
            except asyncio.TimeoutError:
                pass

            try:
                await self.process_queue()
            except Exception as e:
                logger.error(f"Error in email queue processing: {str(e)}")

    async def stop_processing(self) -> None:
        """Stop the periodic drain, letting an in-flight drain finish"""
        task = self._processing_task
        if task is None:
            return

        self._stop_event.set()
        self._processing_task = None
        await task
        logger.info("Email queue processing stopped")

    # -- Maintenance ----------------------------------------------------

    async def get_queue_stats(self) -> QueueStats:
        counts = await self.store.count_by_status()
        stats = QueueStats(
            pending=counts.get(EmailStatus.QUEUED, 0),
            processing=counts.get(EmailStatus.IN_PROGRESS, 0),
            successful=counts.get(EmailStatus.DELIVERED, 0),
            failed=counts.get(EmailStatus.FAILED, 0),
            total=sum(counts.values()),
        )
        queue_depth.set(stats.pending)
        return stats

    async def retry_failed_emails(self) -> RetryResult:
        """
        Requeue emails that failed within the last 24 hours

        Emails that already used max_attempts are left FAILED; they can
        still be retried one at a time by an operator.
        """
        since = utcnow() - BULK_RETRY_WINDOW
        try:
            failed_emails = await self.store.list_failed_since(since)
        except PersistenceError as e:
            logger.error(f"Error retrying failed emails: {str(e)}")
            return RetryResult(errors=[str(e)])

        result = RetryResult()
        for email in failed_emails:
            if email.attempts >= self.config.max_attempts:
                logger.debug(f"Email {email.id} reached {email.attempts} attempts, not retrying")
                continue
            try:
                if await self.store.requeue(email.id):
                    result.retried += 1
                else:
                    result.errors.append(f"Email {email.id} is no longer in failed status")
            except PersistenceError as e:
                result.errors.append(f"Error retrying email {email.id}: {str(e)}")

        logger.info(f"Requeued {result.retried} failed emails")
        return result

    async def clear_old_emails(self, older_than_days: Optional[int] = None) -> PurgeResult:
        """Delete DELIVERED/FAILED emails older than the retention threshold"""
        days = self.config.retention_days if older_than_days is None else older_than_days
        return PurgeResult(deleted=await self.store.purge_older_than(days))
