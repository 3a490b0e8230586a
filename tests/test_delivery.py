"""Tests for delivery backends and backend selection."""

import json

import aiosmtplib
import httpx
import pytest

from mailhub.core.config import Settings
from mailhub.core.exceptions import DeliveryConfigurationError
from mailhub.models import EmailType
from mailhub.services.delivery import (
    BrevoDeliveryBackend,
    SMTPDeliveryBackend,
    get_delivery_backend,
)


def make_brevo(handler) -> BrevoDeliveryBackend:
    return BrevoDeliveryBackend(
        api_key="test-key",
        from_email="noreply@mailhub.test",
        from_name="MailHub",
        transport=httpx.MockTransport(handler),
    )


async def send_welcome(backend):
    return await backend.send(
        to="ada@example.com",
        subject="Welcome",
        html="<p>Hello</p>",
        text="Hello",
        category=EmailType.WELCOME,
        recipient_user_id="user-1",
    )


class TestBrevoBackend:
    """Tests for the Brevo HTTP API backend."""

    async def test_successful_send(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["headers"] = request.headers
            captured["body"] = json.loads(request.content)
            return httpx.Response(201, json={"messageId": "<202401010000.1@smtp-relay.mailin.fr>"})

        result = await send_welcome(make_brevo(handler))

        assert result.success is True
        assert result.message_id == "<202401010000.1@smtp-relay.mailin.fr>"
        assert captured["headers"]["api-key"] == "test-key"
        body = captured["body"]
        assert body["sender"] == {"email": "noreply@mailhub.test", "name": "MailHub"}
        assert body["to"] == [{"email": "ada@example.com"}]
        assert body["htmlContent"] == "<p>Hello</p>"
        assert body["textContent"] == "Hello"
        assert body["tags"] == ["WELCOME"]

    async def test_accepted_send_with_unreadable_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(201, text="Created")

        result = await send_welcome(make_brevo(handler))

        assert result.success is True
        assert result.message_id is None
        assert result.error is None

    async def test_rejected_send(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"code": "invalid_parameter", "message": "email is not valid"})

        result = await send_welcome(make_brevo(handler))

        assert result.success is False
        assert result.error == "email is not valid"
        assert result.message_id is None

    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = await send_welcome(make_brevo(handler))

        assert result.success is False
        assert "connection refused" in result.error


class TestSMTPBackend:
    """Tests for the SMTP relay backend."""

    def make_backend(self) -> SMTPDeliveryBackend:
        return SMTPDeliveryBackend(
            host="smtp.mailhub.test",
            port=587,
            username="relay-user",
            password="relay-pass",
            from_email="noreply@mailhub.test",
            from_name="MailHub",
        )

    def test_build_message(self):
        msg = self.make_backend().build_message(
            "ada@example.com", "Welcome", "<p>Hello</p>", "Hello", EmailType.WELCOME
        )

        assert msg["To"] == "ada@example.com"
        assert msg["From"] == "MailHub <noreply@mailhub.test>"
        assert msg["X-Mailhub-Category"] == "WELCOME"
        assert msg["Message-ID"].endswith("@mailhub.test>")
        parts = msg.get_payload()
        assert [part.get_content_type() for part in parts] == ["text/plain", "text/html"]

    async def test_send(self, monkeypatch):
        calls = []

        async def fake_send(message, **kwargs):
            calls.append((message, kwargs))

        monkeypatch.setattr(aiosmtplib, "send", fake_send)

        result = await send_welcome(self.make_backend())

        assert result.success is True
        assert result.message_id == calls[0][0]["Message-ID"]
        assert calls[0][1]["hostname"] == "smtp.mailhub.test"
        assert calls[0][1]["start_tls"] is True

    async def test_smtp_error_is_reported(self, monkeypatch):
        async def failing_send(message, **kwargs):
            raise aiosmtplib.SMTPException("relay access denied")

        monkeypatch.setattr(aiosmtplib, "send", failing_send)

        result = await send_welcome(self.make_backend())

        assert result.success is False
        assert "relay access denied" in result.error


class TestBackendSelection:
    """Tests for get_delivery_backend."""

    def test_brevo(self):
        backend = get_delivery_backend(Settings(FROM_EMAIL="noreply@mailhub.test", BREVO_API_KEY="key"))
        assert isinstance(backend, BrevoDeliveryBackend)

    def test_smtp(self):
        backend = get_delivery_backend(
            Settings(
                EMAIL_BACKEND="smtp",
                FROM_EMAIL="noreply@mailhub.test",
                SMTP_USER="relay-user",
                SMTP_PASSWORD="relay-pass",
            )
        )
        assert isinstance(backend, SMTPDeliveryBackend)

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"FROM_EMAIL": None, "BREVO_API_KEY": "key"}, "FROM_EMAIL"),
            ({"FROM_EMAIL": "noreply@mailhub.test", "BREVO_API_KEY": None}, "BREVO_API_KEY"),
            ({"FROM_EMAIL": "noreply@mailhub.test", "EMAIL_BACKEND": "smtp", "SMTP_USER": None}, "SMTP_USER"),
            ({"FROM_EMAIL": "noreply@mailhub.test", "EMAIL_BACKEND": "carrier-pigeon"}, "Unknown EMAIL_BACKEND"),
        ],
    )
    def test_missing_configuration(self, overrides, message):
        with pytest.raises(DeliveryConfigurationError, match=message):
            get_delivery_backend(Settings(**overrides))
