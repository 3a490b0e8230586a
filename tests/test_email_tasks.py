"""Tests for the Celery email tasks, run eagerly in-process."""

import asyncio
from datetime import timedelta

import pytest

from mailhub.core.celery_app import celery_app
from mailhub.core.config import settings
from mailhub.core.database import create_engine_for_url, create_session_factory, init_db, session_scope
from mailhub.models import EmailNotification, EmailStatus, EmailType, User, utcnow
from mailhub.models.base import new_id
from mailhub.services import build_email_services
from mailhub.services.email_store import EmailNotificationStore
from mailhub.tasks import email_tasks

from conftest import StubBackend


async def _seed(url: str, statuses):
    engine = create_engine_for_url(url)
    try:
        await init_db(engine)
        factory = create_session_factory(engine)
        async with session_scope(factory) as session:
            user = User(id=new_id(), email="ada@example.com", name="Ada Lovelace")
            session.add(user)
            for status, age in statuses:
                session.add(
                    EmailNotification(
                        id=new_id(),
                        user_id=user.id,
                        type=EmailType.SYSTEM,
                        subject="Task email",
                        body="Task email body",
                        status=status,
                        scheduled_at=utcnow() - age,
                        last_attempt_at=None if status == EmailStatus.QUEUED else utcnow() - age,
                        attempts=0 if status == EmailStatus.QUEUED else 1,
                    )
                )
    finally:
        await engine.dispose()


async def _count_by_status(url: str):
    engine = create_engine_for_url(url)
    try:
        return await EmailNotificationStore(create_session_factory(engine)).count_by_status()
    finally:
        await engine.dispose()


@pytest.fixture
def task_db(tmp_path, monkeypatch):
    """Point the tasks at a private SQLite file and a stub backend."""
    monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite:///{tmp_path / 'tasks.db'}")
    backend = StubBackend()

    def build_with_stub(session_factory, settings=None):
        return build_email_services(session_factory, settings, delivery_backend=backend)

    monkeypatch.setattr(email_tasks, "build_email_services", build_with_stub)
    return settings.database_url_async


def test_tasks_are_registered():
    assert "mailhub.tasks.email_tasks.process_email_queue" in celery_app.tasks
    assert "mailhub.tasks.email_tasks.retry_failed_emails" in celery_app.tasks
    assert "mailhub.tasks.email_tasks.cleanup_old_emails" in celery_app.tasks


def test_beat_schedule_covers_queue_maintenance():
    tasks = {entry["task"] for entry in celery_app.conf.beat_schedule.values()}
    assert tasks == {
        "mailhub.tasks.email_tasks.process_email_queue",
        "mailhub.tasks.email_tasks.retry_failed_emails",
        "mailhub.tasks.email_tasks.cleanup_old_emails",
    }


def test_process_email_queue(task_db):
    asyncio.run(_seed(task_db, [(EmailStatus.QUEUED, timedelta(minutes=1))] * 3))

    result = email_tasks.process_email_queue()

    assert result == {"processed": 3, "successful": 3, "failed": 0}
    assert asyncio.run(_count_by_status(task_db)) == {EmailStatus.DELIVERED: 3}


def test_retry_failed_emails(task_db):
    asyncio.run(_seed(task_db, [(EmailStatus.FAILED, timedelta(hours=1))]))

    result = email_tasks.retry_failed_emails()

    assert result == {"retried": 1, "errors": []}
    assert asyncio.run(_count_by_status(task_db)) == {EmailStatus.QUEUED: 1}


def test_cleanup_old_emails(task_db):
    asyncio.run(
        _seed(
            task_db,
            [
                (EmailStatus.DELIVERED, timedelta(days=40)),
                (EmailStatus.DELIVERED, timedelta(days=1)),
            ],
        )
    )

    assert email_tasks.cleanup_old_emails() == {"deleted": 1}
    assert email_tasks.cleanup_old_emails(older_than_days=0) == {"deleted": 1}


def test_cleanup_rejects_negative_days(task_db):
    asyncio.run(_seed(task_db, []))

    with pytest.raises(ValueError):
        email_tasks.cleanup_old_emails(older_than_days=-1)
