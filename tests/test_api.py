"""Tests for the admin and webhook HTTP endpoints."""

import asyncio
from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from mailhub.core.database import session_scope
from mailhub.main import app
from mailhub.models import EmailEvent, EmailStatus, utcnow

from conftest import StubBackend


@pytest.fixture
async def client(engine, queue, tracking):
    # The lifespan is not run under ASGITransport; wire state directly
    app.state.engine = engine
    app.state.email_queue = queue
    app.state.email_tracking = tracking
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    del app.state.engine
    del app.state.email_queue
    del app.state.email_tracking


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_detailed_health(self, client):
        response = await client.get("/health/detailed")
        body = response.json()
        assert body["services"]["database"]["status"] == "healthy"
        assert body["services"]["email_queue"] == {"status": "stopped", "draining": False}

    async def test_detailed_health_reports_inflight_drain(self, client, make_queue, email_data):
        slow = make_queue(delivery_backend=StubBackend(delay=0.3))
        app.state.email_queue = slow
        await slow.add_email(email_data())

        drain = asyncio.create_task(slow.process_queue())
        await asyncio.sleep(0.1)
        response = await client.get("/health/detailed")
        await drain

        assert response.json()["services"]["email_queue"]["draining"] is True

    async def test_metrics(self, client):
        response = await client.get("/metrics")
        assert response.status_code == 200
        assert "email_queue_deliveries_total" in response.text


class TestQueueEndpoints:
    async def test_queue_stats_and_manual_drain(self, client, queue, email_data):
        await queue.add_email(email_data())

        stats = await client.get("/api/v1/admin/emails/queue")
        assert stats.json()["pending"] == 1

        drained = await client.post("/api/v1/admin/emails/queue/process")
        assert drained.status_code == 200
        assert drained.json() == {"processed": 1, "successful": 1, "failed": 0}

    async def test_bulk_retry(self, client, seed_email):
        await seed_email(EmailStatus.FAILED, last_attempt_at=utcnow(), attempts=1)

        response = await client.post("/api/v1/admin/emails/retry-failed")

        assert response.status_code == 200
        assert response.json() == {"retried": 1, "errors": []}

    async def test_delete_old(self, client, seed_email):
        old = utcnow() - timedelta(days=45)
        await seed_email(EmailStatus.DELIVERED, scheduled_at=old, last_attempt_at=old)

        response = await client.delete("/api/v1/admin/emails/old")
        assert response.json() == {"deleted": 1}

        rejected = await client.delete("/api/v1/admin/emails/old", params={"older_than_days": -1})
        assert rejected.status_code == 422


class TestEmailAdmin:
    async def test_list_emails(self, client, seed_email, user):
        await seed_email(EmailStatus.DELIVERED, subject="Quarterly report")
        await seed_email(EmailStatus.FAILED, subject="Password reset")

        response = await client.get("/api/v1/admin/emails", params={"status": "FAILED"})

        assert response.status_code == 200
        body = response.json()
        assert body["pagination"]["total"] == 1
        assert body["emails"][0]["subject"] == "Password reset"
        assert body["emails"][0]["user"]["email"] == user.email

    async def test_list_rejects_unknown_date_range(self, client):
        response = await client.get("/api/v1/admin/emails", params={"date_range": "decade"})
        assert response.status_code == 422

    async def test_dashboard(self, client, seed_email):
        await seed_email(EmailStatus.DELIVERED)
        await seed_email(EmailStatus.QUEUED)

        response = await client.get("/api/v1/admin/emails/stats")

        body = response.json()
        assert body["analytics"]["total_emails"] == 2
        assert body["analytics"]["delivery_rate"] == 50.0
        assert body["stats"]["by_status"] == {"DELIVERED": 1, "QUEUED": 1}
        assert body["queue"]["pending"] == 1

    async def test_report_rejects_inverted_range(self, client):
        now = utcnow()
        response = await client.get(
            "/api/v1/admin/emails/report",
            params={"start_date": now.isoformat(), "end_date": (now - timedelta(days=1)).isoformat()},
        )
        assert response.status_code == 400

    async def test_report(self, client, seed_email):
        await seed_email(EmailStatus.DELIVERED)
        now = utcnow()

        response = await client.get(
            "/api/v1/admin/emails/report",
            params={
                "start_date": (now - timedelta(days=1)).isoformat(),
                "end_date": (now + timedelta(hours=1)).isoformat(),
            },
        )

        assert response.status_code == 200
        assert response.json()["summary"]["delivered_emails"] == 1

    async def test_failed_list(self, client, seed_email):
        record = await seed_email(EmailStatus.FAILED, last_attempt_at=utcnow(), error_message="Bounced")

        response = await client.get("/api/v1/admin/emails/failed")

        assert [email["id"] for email in response.json()] == [record.id]

    async def test_single_retry(self, client, store, seed_email):
        record = await seed_email(EmailStatus.FAILED, last_attempt_at=utcnow())

        response = await client.post(f"/api/v1/admin/emails/{record.id}/retry")
        assert response.status_code == 200
        assert response.json() == {"success": True, "error": None}
        assert (await store.get(record.id)).status == EmailStatus.QUEUED

        again = await client.post(f"/api/v1/admin/emails/{record.id}/retry")
        assert again.status_code == 400
        assert again.json()["detail"] == "Email is not in failed status"

    async def test_single_retry_unknown(self, client):
        response = await client.post("/api/v1/admin/emails/missing/retry")
        assert response.status_code == 404

    async def test_status_update(self, client, store, seed_email):
        record = await seed_email(EmailStatus.DELIVERED)

        ok = await client.patch(f"/api/v1/admin/emails/{record.id}/status", json={"status": "OPENED"})
        assert ok.status_code == 200
        assert (await store.get(record.id)).status == EmailStatus.OPENED

        conflict = await client.patch(f"/api/v1/admin/emails/{record.id}/status", json={"status": "FAILED"})
        assert conflict.status_code == 409

        managed = await client.patch(f"/api/v1/admin/emails/{record.id}/status", json={"status": "QUEUED"})
        assert managed.status_code == 400

        missing = await client.patch("/api/v1/admin/emails/missing/status", json={"status": "OPENED"})
        assert missing.status_code == 404


class TestWebhooks:
    async def test_internal_event(self, client, store, seed_email, user):
        record = await seed_email(EmailStatus.DELIVERED)

        response = await client.post(
            "/api/v1/webhooks/email-events",
            json={
                "notification_id": record.id,
                "user_id": user.id,
                "type": "WELCOME",
                "status": "CLICKED",
                "timestamp": utcnow().isoformat(),
            },
        )

        assert response.status_code == 202
        assert (await store.get(record.id)).status == EmailStatus.CLICKED

    async def test_brevo_open_event(self, client, store, seed_email):
        record = await seed_email(EmailStatus.DELIVERED, provider_message_id="<42@smtp-relay.mailin.fr>")

        response = await client.post(
            "/api/v1/webhooks/brevo",
            json={
                "event": "unique_opened",
                "email": "ada@example.com",
                "message-id": "<42@smtp-relay.mailin.fr>",
                "ts_event": 1700000000,
            },
        )

        assert response.status_code == 202
        assert response.json()["accepted"] is True
        assert (await store.get(record.id)).status == EmailStatus.OPENED

    async def test_brevo_bounce_after_delivery_is_recorded_not_applied(
        self, client, queue, store, email_data, session_factory
    ):
        email_id = await queue.add_email(email_data())
        await queue.process_queue()
        delivered = await store.get(email_id)
        assert delivered.status == EmailStatus.DELIVERED

        response = await client.post(
            "/api/v1/webhooks/brevo",
            json={
                "event": "hard_bounce",
                "message-id": delivered.provider_message_id,
                "reason": "Unknown user",
            },
        )

        assert response.status_code == 202
        body = response.json()
        assert body["accepted"] is False
        assert body["detail"] == "Cannot move email from DELIVERED to FAILED"
        assert (await store.get(email_id)).status == EmailStatus.DELIVERED

        async with session_scope(session_factory) as session:
            events = (await session.execute(select(EmailEvent))).scalars().all()
        assert len(events) == 1
        assert events[0].notification_id == email_id
        assert events[0].status == EmailStatus.FAILED
        assert events[0].event_metadata["error"] == "Unknown user"

    async def test_brevo_ignored_event(self, client):
        response = await client.post(
            "/api/v1/webhooks/brevo",
            json={"event": "request", "message-id": "<1@smtp-relay.mailin.fr>"},
        )

        assert response.status_code == 202
        assert response.json()["accepted"] is False

    async def test_brevo_unknown_message(self, client):
        response = await client.post(
            "/api/v1/webhooks/brevo",
            json={"event": "delivered", "message-id": "<nobody@smtp-relay.mailin.fr>"},
        )

        assert response.json() == {"accepted": False, "detail": "Unknown message id"}


class TestUninitializedState:
    async def test_missing_queue_is_unavailable(self):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/v1/admin/emails/queue")
        assert response.status_code == 503
