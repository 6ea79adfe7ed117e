"""Password reset email delivery over SMTP, with a log-only fallback for unconfigured environments."""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from typing import TYPE_CHECKING

from app.services.results import InfrastructureError

if TYPE_CHECKING:
    from app.core.config import Settings
    from app.services.stores import EmailSender

logger = logging.getLogger(__name__)

RESET_SUBJECT = "Password Reset Request"


def build_reset_body(token: str, reset_url_template: str | None, expires_minutes: int = 60) -> str:
    """Plain-text body containing the raw token (and a link when a template is configured)."""
    if reset_url_template:
        link = reset_url_template.replace("{token}", token)
        return (
            "We received a request to reset your Trivare password.\n\n"
            f"Reset it here: {link}\n\n"
            f"The link expires in {expires_minutes} minutes. If you did not ask for this, ignore this email."
        )
    return (
        "We received a request to reset your Trivare password.\n\n"
        f"Use the following token to reset it: {token}\n\n"
        f"The token expires in {expires_minutes} minutes. If you did not ask for this, ignore this email."
    )


class SmtpEmailSender:
    """Sends reset emails through an SMTP relay (STARTTLS or implicit TLS on port 465)."""

    def __init__(
        self,
        host: str,
        port: int,
        sender_email: str,
        sender_name: str,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = 10.0,
        reset_url_template: str | None = None,
        reset_expires_minutes: int = 60,
    ) -> None:
        self.host = host
        self.port = port
        self.sender_email = sender_email
        self.sender_name = sender_name
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout
        self.reset_url_template = reset_url_template
        self.reset_expires_minutes = reset_expires_minutes

    def _build_message(self, to_email: str, token: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = RESET_SUBJECT
        msg["From"] = formataddr((self.sender_name, self.sender_email))
        msg["To"] = to_email
        msg.set_content(
            build_reset_body(token, self.reset_url_template, self.reset_expires_minutes)
        )
        return msg

    def send_password_reset(self, to_email: str, token: str) -> None:
        msg = self._build_message(to_email, token)
        try:
            if self.port == 465:
                client: smtplib.SMTP = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
            else:
                client = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
            with client:
                if self.use_tls and self.port != 465:
                    client.starttls()
                if self.username and self.password:
                    client.login(self.username, self.password)
                client.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise InfrastructureError("Failed to send password reset email", cause=e) from e


class LoggingEmailSender:
    """Used when SMTP is not configured: records that an email would have been sent."""

    def send_password_reset(self, to_email: str, token: str) -> None:
        # Never log the token itself.
        logger.warning("SMTP_HOST not set; password reset email for %s not delivered", to_email)


def build_email_sender(settings: Settings) -> EmailSender:
    """Return an SMTP sender when SMTP_HOST is configured, otherwise the logging fallback."""
    if not settings.SMTP_HOST:
        return LoggingEmailSender()
    password = settings.SMTP_PASSWORD.get_secret_value() if settings.SMTP_PASSWORD else None
    return SmtpEmailSender(
        host=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        sender_email=settings.SMTP_SENDER_EMAIL,
        sender_name=settings.SMTP_SENDER_NAME,
        username=settings.SMTP_USERNAME,
        password=password,
        use_tls=settings.SMTP_USE_TLS,
        timeout=settings.SMTP_TIMEOUT_SECONDS,
        reset_url_template=settings.PASSWORD_RESET_URL,
        reset_expires_minutes=settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES,
    )
