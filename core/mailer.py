"""
core/mailer.py -- Outbound transactional email over SMTP.

Mailer sends HTML mail with smtplib (STARTTLS on the configured port). When
EMAIL_HOST or DEFAULT_FROM_EMAIL is unset it runs in dev mode: the message is
logged instead of sent and send() still reports success, so the
forgot-password flow works on a laptop without an SMTP relay.

Recipient addresses are redacted in every log line.

Layer rule: core/ is the kernel. No imports from api/, auth/, audit/ or profiles/.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

from core.config import Settings

logger = logging.getLogger("blueink.mail")


def redact_email(email: str) -> str:
    """Redact an email address for logging: 'alice@example.com' -> 'al***@example.com'."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class Mailer:
    def __init__(
        self,
        *,
        host: str = "",
        port: int = 587,
        user: str = "",
        password: str = "",
        from_email: str = "",
        from_name: str = "BlueInk",
        timeout: int = 30,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_email = from_email or user
        self.from_name = from_name
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> Mailer:
        return cls(
            host=settings.email_host,
            port=settings.email_port,
            user=settings.email_host_user,
            password=settings.email_host_password,
            from_email=settings.default_from_email,
            from_name=settings.app_name,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.from_email)

    def send(self, to_email: str, subject: str, html_body: str) -> bool:
        """Send one HTML message. Returns True on success, False on SMTP failure."""
        if not self.is_configured:
            logger.info("Email dev mode, not sending to %s: %s", redact_email(to_email), subject)
            logger.debug("Email body: %s", html_body)
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls(context=ssl.create_default_context())
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.sendmail(self.from_email, [to_email], msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email to %s failed (%s:%s): %s", redact_email(to_email), self.host, self.port, exc)
            return False

        logger.info("Email sent to %s: %s", redact_email(to_email), subject)
        return True

    def send_password_reset(self, to_email: str, reset_url: str, valid_minutes: int = 60) -> bool:
        url = escape(reset_url, quote=True)
        body = (
            "<p>Hi,</p>"
            "<p>You asked to reset your password. Follow this link to choose a new one:</p>"
            f'<p><a href="{url}">{url}</a></p>'
            f"<p>The link is valid for {valid_minutes} minutes. "
            "If you did not request this, you can ignore this email.</p>"
        )
        return self.send(to_email, f"Reset your {self.from_name} password", body)
