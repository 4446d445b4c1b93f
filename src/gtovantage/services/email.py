"""Delivery of the email address confirmation message.

Every message this service sends is a ``VerificationEmail``: a rendered
confirmation for one address carrying one verification link. Backends only
decide how that message leaves the process.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import make_msgid
from html import escape

import aiosmtplib
import httpx

from gtovantage.config import settings
from gtovantage.services.resilience import with_retry

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
SUBJECT = "GTO Vantage - Confirm your email address"


@dataclass(frozen=True)
class VerificationEmail:
    """A rendered confirmation email, ready for a backend."""

    to: str
    link: str
    subject: str
    html: str
    text: str


def render_verification_email(
    to: str, link: str, name: str | None = None, ttl_hours: int = 24
) -> VerificationEmail:
    """Build the confirmation message for ``to``.

    The display name and link are HTML-escaped in the HTML part; the text
    part carries them verbatim.
    """
    greeting = f"Hi {name}," if name else "Hi,"
    safe_link = escape(link, quote=True)

    html = f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: Helvetica, Arial, sans-serif; color: #1f2933; max-width: 560px; margin: 0 auto; padding: 24px;">
    <h1 style="font-size: 22px; margin: 0 0 16px 0;">GTO Vantage</h1>
    <p>{escape(greeting)}</p>
    <p>Confirm this address to finish setting up your GTO Vantage account.
       The link works once and expires in {ttl_hours} hours.</p>
    <p style="margin: 28px 0;">
        <a href="{safe_link}" style="background: #0b7a4b; color: #ffffff; padding: 12px 24px; border-radius: 4px; text-decoration: none;">Confirm email address</a>
    </p>
    <p style="font-size: 13px; color: #52606d;">Or paste this into your browser:<br>{safe_link}</p>
    <p style="font-size: 13px; color: #9aa5b1;">Didn't sign up? Ignore this message and nothing will change.</p>
</body>
</html>
"""

    text = (
        f"{greeting}\n\n"
        f"Confirm this address to finish setting up your GTO Vantage account.\n"
        f"The link works once and expires in {ttl_hours} hours:\n\n"
        f"{link}\n\n"
        f"Didn't sign up? Ignore this message and nothing will change.\n"
    )

    return VerificationEmail(to=to, link=link, subject=SUBJECT, html=html, text=text)


class EmailBackend(ABC):
    """Transport for confirmation emails."""

    @abstractmethod
    async def deliver(self, message: VerificationEmail) -> bool:
        """Hand ``message`` to the transport. Returns False when it was not accepted."""


class ConsoleEmailBackend(EmailBackend):
    """Logs the verification link instead of sending anything.

    Local development redeems the link straight from the server log.
    """

    async def deliver(self, message: VerificationEmail) -> bool:
        logger.info(f"Verification email for {message.to} not sent (console backend) [{message.subject}]")
        logger.info(f"Verification link: {message.link}")
        return True


class SMTPEmailBackend(EmailBackend):
    """Sends through an SMTP relay as a text/html alternative message."""

    def __init__(
        self,
        host: str,
        port: int,
        from_address: str,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
    ):
        self.host = host
        self.port = port
        self.from_address = from_address
        self.username = username
        self.password = password
        self.use_tls = use_tls

    def build_message(self, message: VerificationEmail) -> EmailMessage:
        mime = EmailMessage()
        mime["From"] = self.from_address
        mime["To"] = message.to
        mime["Subject"] = message.subject
        mime["Message-ID"] = make_msgid(domain=self.from_address.rpartition("@")[2] or None)
        mime.set_content(message.text)
        mime.add_alternative(message.html, subtype="html")
        return mime

    async def deliver(self, message: VerificationEmail) -> bool:
        try:
            await aiosmtplib.send(
                self.build_message(message),
                hostname=self.host,
                port=self.port,
                username=self.username or None,
                password=self.password or None,
                start_tls=self.use_tls,
            )
        except aiosmtplib.SMTPException as e:
            logger.error(f"SMTP relay {self.host} rejected verification email for {message.to}: {e}")
            return False
        except OSError as e:
            logger.error(f"SMTP relay {self.host}:{self.port} unreachable: {e}")
            return False
        logger.info(f"Verification email for {message.to} handed to {self.host}")
        return True


class ResendEmailBackend(EmailBackend):
    """Sends through the Resend HTTP API, retrying transient failures."""

    def __init__(self, api_key: str, from_address: str, max_attempts: int = 3):
        self.api_key = api_key
        self.from_address = from_address
        self.max_attempts = max_attempts

    async def _post(self, client: httpx.AsyncClient, payload: dict) -> httpx.Response:
        response = await client.post(
            RESEND_API_URL,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json=payload,
            timeout=30.0,
        )
        response.raise_for_status()
        return response

    async def deliver(self, message: VerificationEmail) -> bool:
        payload = {
            "from": self.from_address,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }
        async with httpx.AsyncClient() as client:
            try:
                await with_retry(self._post, client, payload, max_attempts=self.max_attempts)
            except httpx.HTTPStatusError as e:
                logger.error(f"Resend refused verification email for {message.to}: {e.response.status_code} {e.response.text}")
                return False
            except Exception as e:
                logger.error(f"Resend delivery to {message.to} failed: {e}")
                return False
        logger.info(f"Verification email for {message.to} accepted by Resend")
        return True


def get_email_backend() -> EmailBackend:
    """Get the configured email backend."""
    match settings.email_backend:
        case "console":
            return ConsoleEmailBackend()
        case "smtp":
            return SMTPEmailBackend(
                host=settings.smtp_host,
                port=settings.smtp_port,
                from_address=settings.email_from,
                username=settings.smtp_username,
                password=settings.smtp_password,
                use_tls=settings.smtp_use_tls,
            )
        case "resend":
            return ResendEmailBackend(
                api_key=settings.resend_api_key,
                from_address=settings.email_from,
            )
    raise ValueError(f"Unknown email backend: {settings.email_backend}")


class EmailService:
    """Renders and sends confirmation emails through a lazily chosen backend."""

    def __init__(self, backend: EmailBackend | None = None):
        self._backend = backend

    @property
    def backend(self) -> EmailBackend:
        if self._backend is None:
            self._backend = get_email_backend()
        return self._backend

    async def send_verification_email(
        self,
        to: str,
        verification_url: str,
        name: str | None = None,
    ) -> bool:
        """Send the email address confirmation link.

        Returns:
            True if the backend accepted the message
        """
        message = render_verification_email(
            to, verification_url, name, ttl_hours=settings.verification_token_ttl_hours
        )
        return await self.backend.deliver(message)


email_service = EmailService()
