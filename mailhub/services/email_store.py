"""
SQLAlchemy-backed store for email notifications
All reads and writes of email records go through this class
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple
from datetime import date, datetime, timedelta
from contextlib import asynccontextmanager
import logging

from sqlalchemy import select, update, delete, func, or_, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from mailhub.core.database import session_scope
from mailhub.core.exceptions import PersistenceError
from mailhub.models import (
    EmailNotification,
    EmailEvent,
    EmailStatus,
    EmailType,
    User,
    PURGEABLE_STATUSES,
    utcnow,
)

logger = logging.getLogger(__name__)

def _as_date(value: Any) -> date:
    # SQLite hands back DATE() results as ISO strings
    if isinstance(value, str):
        return date.fromisoformat(value)
    if isinstance(value, datetime):
        return value.date()
    return value

class EmailNotificationStore:
    """Persist email notifications and answer aggregate queries over them"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str):
        try:
            async with session_scope(self._session_factory) as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Email store {operation} failed: {str(e)}")
            raise PersistenceError(f"Email store {operation} failed: {str(e)}") from e

    @staticmethod
    def _window(stmt, start_date: Optional[datetime], end_date: Optional[datetime]):
        if start_date is not None:
            stmt = stmt.where(EmailNotification.scheduled_at >= start_date)
        if end_date is not None:
            stmt = stmt.where(EmailNotification.scheduled_at <= end_date)
        return stmt

    # -- Writes ---------------------------------------------------------

    async def add(self, notification: EmailNotification) -> EmailNotification:
        async with self._session("add") as session:
            session.add(notification)
            await session.flush()
            return notification

    async def add_many(self, notifications: Sequence[EmailNotification]) -> List[str]:
        """Insert all notifications in one transaction and return their ids in order"""
        async with self._session("bulk add") as session:
            session.add_all(list(notifications))
            await session.flush()
            return [notification.id for notification in notifications]

    async def add_event(self, event: EmailEvent) -> EmailEvent:
        async with self._session("add event") as session:
            session.add(event)
            await session.flush()
            return event

    async def claim_due(
        self,
        *,
        owner: str,
        limit: int,
        lease_until: datetime,
        now: Optional[datetime] = None,
    ) -> List[EmailNotification]:
        """
        Claim up to `limit` due QUEUED emails for `owner`, oldest first

        Each claim is a conditional update on status, so a row another
        worker claimed in the meantime is skipped rather than sent twice.
        """
        now = now or utcnow()
        async with self._session("claim") as session:
            result = await session.execute(
                select(EmailNotification.id)
                .where(
                    EmailNotification.status == EmailStatus.QUEUED,
                    EmailNotification.scheduled_at <= now,
                )
                .order_by(
                    EmailNotification.scheduled_at.asc(),
                    EmailNotification.created_at.asc(),
                )
                .limit(limit)
            )
            candidate_ids = list(result.scalars().all())

            claimed_ids = []
            for email_id in candidate_ids:
                updated = await session.execute(
                    update(EmailNotification)
                    .where(
                        EmailNotification.id == email_id,
                        EmailNotification.status == EmailStatus.QUEUED,
                    )
                    .values(
                        status=EmailStatus.IN_PROGRESS,
                        claimed_by=owner,
                        claim_expires_at=lease_until,
                        last_attempt_at=now,
                        attempts=EmailNotification.attempts + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if updated.rowcount == 1:
                    claimed_ids.append(email_id)

            if not claimed_ids:
                return []

            result = await session.execute(
                select(EmailNotification)
                .where(
                    EmailNotification.id.in_(claimed_ids),
                    EmailNotification.claimed_by == owner,
                )
                .order_by(
                    EmailNotification.scheduled_at.asc(),
                    EmailNotification.created_at.asc(),
                )
            )
            return list(result.scalars().all())

    async def complete(
        self,
        email_id: str,
        *,
        owner: str,
        status: EmailStatus,
        error_message: Optional[str] = None,
        provider_message_id: Optional[str] = None,
    ) -> bool:
        """Write the outcome of a claimed send; False if the lease was lost"""
        values: Dict[str, Any] = {
            "status": status,
            "error_message": error_message if status == EmailStatus.FAILED else None,
            "claimed_by": None,
            "claim_expires_at": None,
            "last_attempt_at": utcnow(),
        }
        if provider_message_id:
            values["provider_message_id"] = provider_message_id

        async with self._session("complete") as session:
            result = await session.execute(
                update(EmailNotification)
                .where(
                    EmailNotification.id == email_id,
                    EmailNotification.status == EmailStatus.IN_PROGRESS,
                    EmailNotification.claimed_by == owner,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def release_expired_claims(
        self,
        *,
        max_attempts: int,
        now: Optional[datetime] = None,
    ) -> Tuple[int, int]:
        """
        Recover IN_PROGRESS emails whose lease ran out

        Returns (requeued, failed). Emails that already used all their
        attempts are failed instead of requeued.
        """
        now = now or utcnow()
        expired = and_(
            EmailNotification.status == EmailStatus.IN_PROGRESS,
            EmailNotification.claim_expires_at < now,
        )
        async with self._session("release claims") as session:
            failed = await session.execute(
                update(EmailNotification)
                .where(expired, EmailNotification.attempts >= max_attempts)
                .values(
                    status=EmailStatus.FAILED,
                    error_message=f"Abandoned after {max_attempts} attempts",
                    claimed_by=None,
                    claim_expires_at=None,
                )
                .execution_options(synchronize_session=False)
            )
            requeued = await session.execute(
                update(EmailNotification)
                .where(expired)
                .values(
                    status=EmailStatus.QUEUED,
                    error_message=None,
                    claimed_by=None,
                    claim_expires_at=None,
                )
                .execution_options(synchronize_session=False)
            )
            return requeued.rowcount, failed.rowcount

    async def transition(
        self,
        email_id: str,
        *,
        expected: EmailStatus,
        new_status: EmailStatus,
        **values: Any,
    ) -> bool:
        """Move an email from `expected` to `new_status`; False if it was not in `expected`"""
        async with self._session("transition") as session:
            result = await session.execute(
                update(EmailNotification)
                .where(
                    EmailNotification.id == email_id,
                    EmailNotification.status == expected,
                )
                .values(status=new_status, **values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def requeue(self, email_id: str, now: Optional[datetime] = None) -> bool:
        """Reset a FAILED email to QUEUED with a fresh schedule"""
        return await self.transition(
            email_id,
            expected=EmailStatus.FAILED,
            new_status=EmailStatus.QUEUED,
            scheduled_at=now or utcnow(),
            error_message=None,
        )

    async def purge_terminal(self, cutoff: datetime) -> int:
        """Delete DELIVERED/FAILED emails last touched before `cutoff`"""
        last_touched = func.coalesce(
            EmailNotification.last_attempt_at,
            EmailNotification.scheduled_at,
        )
        async with self._session("purge") as session:
            result = await session.execute(
                delete(EmailNotification)
                .where(
                    EmailNotification.status.in_(PURGEABLE_STATUSES),
                    last_touched < cutoff,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    async def purge_older_than(self, days: int) -> int:
        """Retention sweep shared by the queue and tracking entry points"""
        if days < 0:
            raise ValueError("older_than_days must not be negative")
        deleted = await self.purge_terminal(utcnow() - timedelta(days=days))
        logger.info(f"Deleted {deleted} emails older than {days} days")
        return deleted

    # -- Reads ----------------------------------------------------------

    async def get(self, email_id: str, with_user: bool = False) -> Optional[EmailNotification]:
        stmt = select(EmailNotification).where(EmailNotification.id == email_id)
        if with_user:
            stmt = stmt.options(selectinload(EmailNotification.user))
        async with self._session("get") as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def get_by_message_id(self, message_id: str) -> Optional[EmailNotification]:
        async with self._session("get by message id") as session:
            result = await session.execute(
                select(EmailNotification)
                .where(EmailNotification.provider_message_id == message_id)
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def list_failed_since(
        self,
        since: datetime,
        *,
        with_user: bool = False,
    ) -> List[EmailNotification]:
        stmt = (
            select(EmailNotification)
            .where(
                EmailNotification.status == EmailStatus.FAILED,
                EmailNotification.last_attempt_at >= since,
            )
            .order_by(EmailNotification.last_attempt_at.desc())
        )
        if with_user:
            stmt = stmt.options(selectinload(EmailNotification.user))
        async with self._session("list failed") as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count_by_status(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[EmailStatus, int]:
        stmt = self._window(
            select(EmailNotification.status, func.count(EmailNotification.id))
            .group_by(EmailNotification.status),
            start_date,
            end_date,
        )
        async with self._session("count by status") as session:
            result = await session.execute(stmt)
            return {status: count for status, count in result.all()}

    async def count_by_type(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[EmailType, int]:
        stmt = self._window(
            select(EmailNotification.type, func.count(EmailNotification.id))
            .group_by(EmailNotification.type),
            start_date,
            end_date,
        )
        async with self._session("count by type") as session:
            result = await session.execute(stmt)
            return {email_type: count for email_type, count in result.all()}

    async def top_recipients(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 10,
    ) -> List[Tuple[str, int]]:
        count = func.count(EmailNotification.id).label("count")
        stmt = self._window(
            select(EmailNotification.user_id, count)
            .group_by(EmailNotification.user_id)
            .order_by(count.desc(), EmailNotification.user_id.asc())
            .limit(limit),
            start_date,
            end_date,
        )
        async with self._session("top recipients") as session:
            result = await session.execute(stmt)
            return [(user_id, total) for user_id, total in result.all()]

    async def count_by_date_and_status(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[Tuple[date, EmailStatus, int]]:
        day = func.date(EmailNotification.scheduled_at).label("day")
        stmt = self._window(
            select(day, EmailNotification.status, func.count(EmailNotification.id))
            .group_by(day, EmailNotification.status)
            .order_by(day.asc()),
            start_date,
            end_date,
        )
        async with self._session("count by date") as session:
            result = await session.execute(stmt)
            return [(_as_date(value), status, count) for value, status, count in result.all()]

    async def count_by_type_and_status(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[Tuple[EmailType, EmailStatus, int]]:
        stmt = self._window(
            select(EmailNotification.type, EmailNotification.status, func.count(EmailNotification.id))
            .group_by(EmailNotification.type, EmailNotification.status),
            start_date,
            end_date,
        )
        async with self._session("count by type") as session:
            result = await session.execute(stmt)
            return [(email_type, status, count) for email_type, status, count in result.all()]

    async def list_emails(
        self,
        *,
        page: int,
        limit: int,
        status: Optional[EmailStatus] = None,
        email_type: Optional[EmailType] = None,
        search: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> Tuple[List[EmailNotification], int]:
        """Page through emails newest first; returns (page rows, total matches)"""
        stmt = select(EmailNotification).outerjoin(User, EmailNotification.user_id == User.id)

        if status is not None:
            stmt = stmt.where(EmailNotification.status == status)
        if email_type is not None:
            stmt = stmt.where(EmailNotification.type == email_type)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                or_(
                    EmailNotification.subject.ilike(pattern),
                    EmailNotification.body.ilike(pattern),
                    User.email.ilike(pattern),
                    User.name.ilike(pattern),
                )
            )
        if since is not None:
            stmt = stmt.where(EmailNotification.scheduled_at >= since)

        count_stmt = select(func.count()).select_from(stmt.subquery())
        page_stmt = (
            stmt.options(selectinload(EmailNotification.user))
            .order_by(EmailNotification.scheduled_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )

        async with self._session("list") as session:
            total = (await session.execute(count_stmt)).scalar_one()
            result = await session.execute(page_stmt)
            return list(result.scalars().all()), total
