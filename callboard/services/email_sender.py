"""Outbound email transport.

Senders accept a pre-rendered message and report success as a bool; they
never raise into the caller.
"""
import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from callboard.config import Settings

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    """Capability used by the notification layer."""

    def send(self, to: str, subject: str, html: str, text: str) -> bool:
        ...


class LogOnlyEmailSender:
    """Used when no SMTP server is configured: logs and reports success."""

    def send(self, to: str, subject: str, html: str, text: str) -> bool:
        logger.info("Email transport not configured, email not sent (to=%s, subject=%s)", to, subject)
        return True


class SmtpEmailSender:
    """Deliver mail through an SMTP relay, one connection per message."""

    def __init__(
        self,
        host: str,
        port: int,
        sender_address: str,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender_address = sender_address
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def _build_message(self, to: str, subject: str, html: str, text: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender_address
        msg["To"] = to
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")
        return msg

    def send(self, to: str, subject: str, html: str, text: str) -> bool:
        msg = self._build_message(to, subject, html, text)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to send email to %s", to)
            return False
        return True


def build_email_sender(settings: Settings) -> EmailSender:
    """Pick the transport for the current configuration."""
    if not settings.SMTP_HOST:
        return LogOnlyEmailSender()
    return SmtpEmailSender(
        host=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        sender_address=settings.EMAIL_SENDER_ADDRESS,
        username=settings.SMTP_USERNAME,
        password=settings.SMTP_PASSWORD,
        use_tls=settings.SMTP_USE_TLS,
    )
