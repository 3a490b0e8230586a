"""Transactional email delivery backends"""

from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.utils import make_msgid
from typing import Optional, Protocol
import logging

import aiosmtplib
import httpx

from mailhub.core.config import Settings, settings as default_settings
from mailhub.core.exceptions import DeliveryConfigurationError
from mailhub.models.email_notification import EmailType
from mailhub.schemas.email import DeliveryResult

logger = logging.getLogger(__name__)

class DeliveryBackend(Protocol):
    """
    Sends one rendered email

    Ordinary delivery failures come back as DeliveryResult(success=False);
    implementations raise only for programming or configuration errors.
    """

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        text: str,
        category: EmailType,
        recipient_user_id: str,
    ) -> DeliveryResult:
        ...

class SMTPDeliveryBackend:
    """Deliver through an SMTP relay"""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_email: str,
        from_name: str,
        use_tls: bool = False,
        start_tls: bool = True,
    ):
        self.smtp_host = host
        self.smtp_port = port
        self.smtp_user = username
        self.smtp_password = password
        self.from_email = from_email
        self.from_name = from_name
        self.use_tls = use_tls
        self.start_tls = start_tls

    def build_message(self, to: str, subject: str, html: str, text: str, category: EmailType) -> MIMEMultipart:
        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = f"{self.from_name} <{self.from_email}>"
        msg['To'] = to
        msg['X-Mailhub-Category'] = category.value
        msg['Message-ID'] = make_msgid(domain=self.from_email.partition('@')[2] or None)

        msg.attach(MIMEText(text, 'plain', 'utf-8'))
        msg.attach(MIMEText(html, 'html', 'utf-8'))
        return msg

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        text: str,
        category: EmailType,
        recipient_user_id: str,
    ) -> DeliveryResult:
        msg = self.build_message(to, subject, html, text, category)
        try:
            await aiosmtplib.send(
                msg,
                hostname=self.smtp_host,
                port=self.smtp_port,
                username=self.smtp_user,
                password=self.smtp_password,
                use_tls=self.use_tls,
                start_tls=self.start_tls,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {to}: {str(e)}")
            return DeliveryResult(success=False, error=str(e))

        logger.info(f"Email sent successfully to {to}")
        return DeliveryResult(success=True, message_id=msg.get('Message-ID'))

class BrevoDeliveryBackend:
    """Deliver through the Brevo transactional email API"""

    def __init__(
        self,
        api_key: str,
        from_email: str,
        from_name: str,
        api_url: str = "https://api.brevo.com/v3/smtp/email",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.api_url = api_url
        self.timeout = timeout
        self._transport = transport

    def build_payload(self, to: str, subject: str, html: str, text: str, category: EmailType) -> dict:
        return {
            "sender": {"email": self.from_email, "name": self.from_name},
            "to": [{"email": to}],
            "subject": subject,
            "htmlContent": html,
            "textContent": text,
            "tags": [category.value],
        }

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        text: str,
        category: EmailType,
        recipient_user_id: str,
    ) -> DeliveryResult:
        payload = self.build_payload(to, subject, html, text, category)
        headers = {
            "api-key": self.api_key,
            "accept": "application/json",
            "content-type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.api_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Brevo request for {to} failed: {str(e)}")
            return DeliveryResult(success=False, error=str(e))

        if response.status_code >= 400:
            try:
                error = response.json().get("message") or response.text
            except ValueError:
                error = response.text
            logger.warning(f"Brevo rejected email to {to}: {response.status_code} {error}")
            return DeliveryResult(success=False, error=error or f"HTTP {response.status_code}")

        # A 2xx without a JSON body still means the email was accepted
        try:
            message_id = response.json().get("messageId")
        except ValueError:
            logger.warning(f"Brevo accepted email to {to} without a readable message id")
            message_id = None

        logger.info(f"Email sent successfully to {to} ({message_id})")
        return DeliveryResult(success=True, message_id=message_id)

def get_delivery_backend(settings: Optional[Settings] = None) -> DeliveryBackend:
    """Build the configured delivery backend, failing fast on missing credentials"""
    settings = settings or default_settings

    if not settings.FROM_EMAIL:
        raise DeliveryConfigurationError("FROM_EMAIL is not configured")

    backend = settings.EMAIL_BACKEND.lower()
    if backend == "brevo":
        if not settings.BREVO_API_KEY:
            raise DeliveryConfigurationError("BREVO_API_KEY is not configured")
        return BrevoDeliveryBackend(
            api_key=settings.BREVO_API_KEY,
            from_email=settings.FROM_EMAIL,
            from_name=settings.FROM_NAME,
            api_url=settings.BREVO_API_URL,
        )

    if backend == "smtp":
        if not settings.SMTP_USER or not settings.SMTP_PASSWORD:
            raise DeliveryConfigurationError("SMTP_USER and SMTP_PASSWORD must be configured")
        return SMTPDeliveryBackend(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USER,
            password=settings.SMTP_PASSWORD,
            from_email=settings.FROM_EMAIL,
            from_name=settings.FROM_NAME,
            use_tls=settings.SMTP_USE_TLS,
            start_tls=settings.SMTP_START_TLS,
        )

    raise DeliveryConfigurationError(f"Unknown EMAIL_BACKEND: {settings.EMAIL_BACKEND}")
