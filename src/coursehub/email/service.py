"""
Transactional email: template rendering plus pluggable delivery.

Delivery backends are selected by ``COURSEHUB_EMAIL_PROVIDER``:
``smtp`` (aiosmtplib), ``resend`` (HTTP API via httpx) or ``log`` (development;
the message is logged, never sent). Sends never raise: a failed delivery is
logged and reported as False so callers can carry on.
"""

from __future__ import annotations

import ssl
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr

import aiosmtplib
import httpx
import structlog

from coursehub.config import get_settings
from coursehub.email.templates import purchase_receipt, subscription_payment_failed, welcome_email

logger = structlog.get_logger()

RESEND_API_URL = "https://api.resend.com/emails"


@dataclass(frozen=True)
class OutboundEmail:
    to: str
    subject: str
    html_body: str
    text_body: str


@dataclass(frozen=True)
class PendingEmail:
    """A templated email deferred until the surrounding transaction commits."""

    to: str
    template_name: str
    context: dict[str, str]


def _render_welcome(context: dict[str, str]) -> tuple[str, str, str]:
    base = get_settings().frontend_base_url
    return welcome_email(context.get("name"), f"{base}/courses")


def _render_purchase_receipt(context: dict[str, str]) -> tuple[str, str, str]:
    base = get_settings().frontend_base_url
    return purchase_receipt(
        context.get("name"),
        context.get("course_title", ""),
        context.get("amount", ""),
        f"{base}/my-courses",
    )


def _render_payment_failed(context: dict[str, str]) -> tuple[str, str, str]:
    base = get_settings().frontend_base_url
    return subscription_payment_failed(context.get("name"), f"{base}/account/billing")


# name -> renderer(context) -> (subject, html, text)
TEMPLATES: dict[str, Callable[[dict[str, str]], tuple[str, str, str]]] = {
    "welcome": _render_welcome,
    "purchase_receipt": _render_purchase_receipt,
    "subscription_payment_failed": _render_payment_failed,
}


class BaseEmailProvider(ABC):
    """A delivery backend."""

    name = "base"

    @abstractmethod
    async def deliver(self, message: OutboundEmail) -> None:
        """Hand the message to the backend. Raises on failure."""

    async def send(self, message: OutboundEmail) -> bool:
        try:
            await self.deliver(message)
        except Exception:
            logger.exception("email_send_failed", to=message.to, provider=self.name)
            return False
        logger.info("email_sent", to=message.to, subject=message.subject, provider=self.name)
        return True


class SMTPProvider(BaseEmailProvider):
    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls

    def build(self, message: OutboundEmail) -> EmailMessage:
        """Multipart/alternative message with a plain-text and an HTML part."""
        mime = EmailMessage()
        mime["From"] = self.sender
        mime["To"] = message.to
        mime["Subject"] = message.subject
        mime.set_content(message.text_body)
        mime.add_alternative(message.html_body, subtype="html")
        return mime

    async def deliver(self, message: OutboundEmail) -> None:
        await aiosmtplib.send(
            self.build(message),
            hostname=self.host,
            port=self.port,
            username=self.username or None,
            password=self.password or None,
            start_tls=self.use_tls,
            tls_context=ssl.create_default_context() if self.use_tls else None,
        )


class ResendProvider(BaseEmailProvider):
    name = "resend"

    def __init__(self, api_key: str, sender: str, timeout: float = 10.0) -> None:
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout

    async def deliver(self, message: OutboundEmail) -> None:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                RESEND_API_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "from": self.sender,
                    "to": [message.to],
                    "subject": message.subject,
                    "html": message.html_body,
                    "text": message.text_body,
                },
            )
            response.raise_for_status()


class LogProvider(BaseEmailProvider):
    """Development backend: records the message in the log instead of sending it."""

    name = "log"

    async def deliver(self, message: OutboundEmail) -> None:
        logger.info("email_not_sent", to=message.to, subject=message.subject, body=message.text_body)


def create_provider() -> BaseEmailProvider:
    """Build the backend named in settings.

    Raises:
        ValueError: Unknown provider name.
    """
    settings = get_settings()
    sender = formataddr((settings.email_from_name, settings.email_from_address))
    provider_name = settings.email_provider.lower()

    if provider_name == "smtp":
        return SMTPProvider(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=sender,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
        )
    if provider_name == "resend":
        return ResendProvider(api_key=settings.resend_api_key, sender=sender)
    if provider_name == "log":
        return LogProvider()
    msg = f"Unsupported email provider: {provider_name}"
    raise ValueError(msg)


class EmailService:
    """Renders named templates and hands them to the configured backend."""

    def __init__(self, provider: BaseEmailProvider | None = None) -> None:
        self.provider = provider or create_provider()

    async def send_email(self, to: str, subject: str, html_body: str, text_body: str) -> bool:
        return await self.provider.send(OutboundEmail(to, subject, html_body, text_body))

    async def send_template(self, to: str, template_name: str, context: dict[str, str]) -> bool:
        """
        Render ``template_name`` with ``context`` and send it.

        Raises:
            ValueError: Unknown template name. This is a programming error, not a delivery failure.
        """
        render = TEMPLATES.get(template_name)
        if render is None:
            msg = f"Unknown template: {template_name}"
            raise ValueError(msg)
        subject, html_body, text_body = render(context)
        return await self.send_email(to, subject, html_body, text_body)


_email_service: EmailService | None = None


def get_email_service() -> EmailService:
    global _email_service  # noqa: PLW0603
    if _email_service is None:
        _email_service = EmailService()
    return _email_service


def reset_email_service() -> None:
    global _email_service  # noqa: PLW0603
    _email_service = None


async def send_pending_emails(emails: Sequence[PendingEmail]) -> None:
    """Post-commit sender for deferred emails. Never raises."""
    for email in emails:
        try:
            await get_email_service().send_template(
                to=email.to,
                template_name=email.template_name,
                context=email.context,
            )
        except Exception:
            logger.exception("deferred_email_failed", to=email.to, template=email.template_name)
