"""
auth/email.py -- Transactional mail for account lifecycle tokens.

EmailService sends plain-text mail over SMTP (STARTTLS or implicit TLS).
When SMTP_HOST is not configured the service runs in dev mode: the send is
logged (recipient redacted, subject only) and reported as successful, so
local signup and reset flows work without a mail server. Links carry raw
tokens and are never logged.

send_* methods return True on success and False on any delivery failure.
Callers roll back the token they just issued when delivery fails.

Layer rule: no imports from api/ or catalog/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage

from core.config import Settings, get_settings

logger = logging.getLogger("gamevault.email")


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailService:
    def __init__(self, settings: Settings | None = None) -> None:
        cfg = settings or get_settings()
        self.smtp_host = cfg.smtp_host
        self.smtp_port = cfg.smtp_port
        self.smtp_user = cfg.smtp_user
        self.smtp_password = cfg.smtp_password
        self.smtp_use_tls = cfg.smtp_use_tls
        self.from_email = cfg.email_from or cfg.smtp_user
        self.from_name = cfg.email_from_name

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def send(self, to_email: str, subject: str, text_body: str) -> bool:
        """Deliver one plain-text message. Returns False on any SMTP failure."""
        if not self.is_configured:
            logger.info("Email (dev mode, not sent) to=%s subject=%r", redact_email(to_email), subject)
            return True

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.set_content(text_body)

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=30) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.send_message(msg)
        except smtplib.SMTPAuthenticationError as exc:
            logger.error("SMTP auth failed host=%s user=%s code=%s", self.smtp_host, self.smtp_user, exc.smtp_code)
            return False
        except smtplib.SMTPRecipientsRefused:
            logger.error("SMTP recipient refused to=%s", redact_email(to_email))
            return False
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            logger.error(
                "Email send failed to=%s host=%s:%s error=%s: %s",
                redact_email(to_email),
                self.smtp_host,
                self.smtp_port,
                type(exc).__name__,
                exc,
            )
            return False

        logger.info("Email sent to=%s subject=%r", redact_email(to_email), subject)
        return True

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def send_password_reset(self, to_email: str, reset_url: str) -> bool:
        return self.send(
            to_email,
            "Your password reset token (valid for 10 min)",
            f"Forgot your password? Submit a PATCH request with your new password and "
            f"password_confirm to: {reset_url}\n"
            "If you didn't forget your password, please ignore this email!",
        )

    def send_email_verification(self, to_email: str, verify_url: str) -> bool:
        return self.send(
            to_email,
            "Verify Your Email (Valid for 60 Minutes)",
            f"Click on the link to verify your email address: {verify_url}\n"
            "If you didn't ask to verify, please ignore this email!",
        )

    def send_email_change(self, to_email: str, confirm_url: str) -> bool:
        return self.send(
            to_email,
            "Verify Your New Email (Valid for 60 Minutes)",
            f"Click on the link to verify your email address: {confirm_url}\n"
            "If you didn't ask to change your email, please ignore this email!",
        )
