"""Shared fixtures: a throwaway SQLite database per test and a scripted delivery backend."""

import asyncio
import os
from datetime import timedelta
from typing import List, Optional

os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from sqlalchemy import update

from mailhub.core.database import create_engine_for_url, create_session_factory, init_db, session_scope
from mailhub.models import EmailNotification, EmailStatus, EmailType, User, utcnow
from mailhub.models.base import new_id
from mailhub.schemas.email import DeliveryResult, EmailData
from mailhub.services.email_queue import EmailQueue, EmailQueueConfig
from mailhub.services.email_store import EmailNotificationStore
from mailhub.services.email_tracking import EmailTrackingService
from mailhub.services.user_directory import SQLUserDirectory


class StubBackend:
    """Delivery backend that records sends and returns a scripted outcome."""

    def __init__(
        self,
        result: Optional[DeliveryResult] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ):
        self.result = result
        self.delay = delay
        self.error = error
        self.sent: List[dict] = []

    async def send(self, to, subject, html, text, category, recipient_user_id):
        self.sent.append(
            {
                "to": to,
                "subject": subject,
                "html": html,
                "text": text,
                "category": category,
                "recipient_user_id": recipient_user_id,
            }
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.result is not None:
            return self.result.model_copy()
        return DeliveryResult(success=True, message_id=f"<{len(self.sent)}@test.mailhub>")


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite so concurrent sessions see each other's commits."""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'mailhub-test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return EmailNotificationStore(session_factory)


@pytest.fixture
def make_user(session_factory):
    async def _make_user(email: str = "ada@example.com", name: Optional[str] = "Ada Lovelace") -> User:
        async with session_scope(session_factory) as session:
            user = User(email=email, name=name)
            session.add(user)
            await session.flush()
        return user

    return _make_user


@pytest.fixture
async def user(make_user):
    return await make_user()


@pytest.fixture
def email_data(user):
    def _email_data(
        subject: str = "Welcome aboard",
        email_type: EmailType = EmailType.WELCOME,
        user_id: Optional[str] = None,
    ) -> EmailData:
        return EmailData(
            user_id=user_id or user.id,
            type=email_type,
            subject=subject,
            text=f"{subject} (text)",
            html=f"<p>{subject}</p>",
        )

    return _email_data


@pytest.fixture
def seed_email(store, user):
    """Insert a record directly, bypassing the queue, in any state."""

    async def _seed_email(
        status: EmailStatus = EmailStatus.QUEUED,
        email_type: EmailType = EmailType.WELCOME,
        user_id: Optional[str] = None,
        subject: str = "Seeded email",
        scheduled_at=None,
        last_attempt_at=None,
        attempts: int = 0,
        **values,
    ) -> EmailNotification:
        record = EmailNotification(
            id=new_id(),
            user_id=user_id or user.id,
            type=email_type,
            subject=subject,
            body=f"{subject} body",
            status=status,
            scheduled_at=scheduled_at or utcnow(),
            last_attempt_at=last_attempt_at,
            attempts=attempts,
            **values,
        )
        return await store.add(record)

    return _seed_email


@pytest.fixture
def set_email(session_factory):
    """Overwrite columns on an existing record."""

    async def _set_email(email_id: str, **values) -> None:
        async with session_scope(session_factory) as session:
            await session.execute(
                update(EmailNotification).where(EmailNotification.id == email_id).values(**values)
            )

    return _set_email


@pytest.fixture
def backend():
    return StubBackend()


@pytest.fixture
def make_queue(store, session_factory, backend):
    def _make_queue(delivery_backend=None, worker_id: str = "test-worker", **config) -> EmailQueue:
        config.setdefault("delivery_timeout", timedelta(seconds=2))
        return EmailQueue(
            store=store,
            delivery_backend=delivery_backend or backend,
            user_directory=SQLUserDirectory(session_factory),
            config=EmailQueueConfig(**config),
            worker_id=worker_id,
        )

    return _make_queue


@pytest.fixture
async def queue(make_queue):
    queue = make_queue()
    yield queue
    await queue.stop_processing()


@pytest.fixture
def tracking(store):
    return EmailTrackingService(store)
