"""
mailer/notifier.py -- Notifier collaborator for account emails.

Three messages: email verification, password reset, welcome. The route
layer decides how critical each one is:
  verification / welcome -- best effort, sent after the state change is
                            committed; failures are logged and swallowed there.
  password reset         -- critical; a failure becomes a 500 with an errorId.

SmtpNotifier raises NotificationError for every delivery failure so the
caller can make that decision. LogNotifier is the development fallback used
when SMTP_HOST is unset: it logs subject and redacted recipient, never the
link (the link contains the token).

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

import html
import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("taskflow.mailer")


class NotificationError(Exception):
    """Raised when a message could not be handed to the mail relay."""


class Notifier(Protocol):
    def send_verification(self, email: str, first_name: str, token: str) -> None: ...

    def send_password_reset(self, email: str, first_name: str, token: str) -> None: ...

    def send_welcome(self, email: str, first_name: str) -> None: ...


def redact_email(email: str) -> str:
    """Redact an email address for logging: jane@example.com -> ja***@example.com."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def _duration(seconds: int) -> str:
    if seconds % 3600 == 0:
        hours = seconds // 3600
        return f"{hours} hour{'s' if hours != 1 else ''}"
    minutes = max(1, seconds // 60)
    return f"{minutes} minute{'s' if minutes != 1 else ''}"


# ---------------------------------------------------------------------------
# Message rendering
# ---------------------------------------------------------------------------


def _render(subject: str, greeting: str, paragraphs: list[str], link: tuple[str, str] | None = None) -> EmailMessage:
    """Build a multipart/alternative message with a plain and an HTML body."""
    text_lines = [greeting, ""]
    html_parts = [f"<p>{html.escape(greeting)}</p>"]
    for paragraph in paragraphs:
        text_lines += [paragraph, ""]
        html_parts.append(f"<p>{html.escape(paragraph)}</p>")
    if link is not None:
        label, url = link
        text_lines += [url, ""]
        html_parts.append(
            f'<p style="text-align: center; margin: 30px 0;">'
            f'<a href="{html.escape(url, quote=True)}" '
            f'style="background-color: #007bff; color: white; padding: 12px 30px; '
            f'text-decoration: none; border-radius: 5px;">{html.escape(label)}</a></p>'
            f'<p style="word-break: break-all; color: #666;">{html.escape(url)}</p>'
        )
    text_lines.append("-- TaskFlow")

    msg = EmailMessage()
    msg["Subject"] = subject
    msg.set_content("\n".join(text_lines))
    msg.add_alternative(
        '<div style="max-width: 600px; margin: 0 auto; font-family: Arial, sans-serif;">'
        + "".join(html_parts)
        + "</div>",
        subtype="html",
    )
    return msg


class _BaseNotifier:
    """Shared link and wording logic. Subclasses implement _send()."""

    def __init__(self, settings: Settings) -> None:
        self.frontend_url = settings.frontend_url.rstrip("/")
        self.verification_ttl = settings.email_verification_ttl_seconds
        self.reset_ttl = settings.password_reset_ttl_seconds

    def verification(self, first_name: str, token: str) -> EmailMessage:
        return _render(
            "Verify your TaskFlow account",
            f"Hi {first_name},",
            [
                "Thank you for registering with TaskFlow. Please verify your email address "
                "to complete your registration.",
                f"This verification link will expire in {_duration(self.verification_ttl)}.",
                "If you didn't create an account with TaskFlow, please ignore this email.",
            ],
            ("Verify Email Address", f"{self.frontend_url}/verify-email?token={token}"),
        )

    def password_reset(self, first_name: str, token: str) -> EmailMessage:
        return _render(
            "Reset your TaskFlow password",
            f"Hi {first_name},",
            [
                "We received a request to reset your password. Use the link below to choose a new one.",
                f"This link will expire in {_duration(self.reset_ttl)}.",
                "If you didn't request this, you can safely ignore this email.",
            ],
            ("Reset Password", f"{self.frontend_url}/reset-password?token={token}"),
        )

    def welcome(self, first_name: str) -> EmailMessage:
        return _render(
            "Welcome to TaskFlow!",
            f"Hi {first_name},",
            [
                "Your email address is verified and your account is ready.",
                f"Sign in any time at {self.frontend_url}.",
            ],
        )

    def _send(self, to_email: str, msg: EmailMessage) -> None:
        raise NotImplementedError

    def send_verification(self, email: str, first_name: str, token: str) -> None:
        self._send(email, self.verification(first_name, token))

    def send_password_reset(self, email: str, first_name: str, token: str) -> None:
        self._send(email, self.password_reset(first_name, token))

    def send_welcome(self, email: str, first_name: str) -> None:
        self._send(email, self.welcome(first_name))


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


class SmtpNotifier(_BaseNotifier):
    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.user = settings.smtp_user
        self.password = settings.smtp_password
        self.use_tls = settings.smtp_use_tls
        self.timeout = settings.smtp_timeout_seconds
        self.sender = settings.email_from

    def _send(self, to_email: str, msg: EmailMessage) -> None:
        msg["From"] = self.sender
        msg["To"] = to_email
        context = ssl.create_default_context()
        try:
            if self.use_tls:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    if self.user and self.password:
                        server.login(self.user, self.password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                    if self.user and self.password:
                        server.login(self.user, self.password)
                    server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(
                "Email delivery failed: to=%s subject=%r host=%s:%s error=%s: %s",
                redact_email(to_email),
                msg["Subject"],
                self.host,
                self.port,
                type(exc).__name__,
                exc,
            )
            raise NotificationError(f"could not deliver {msg['Subject']!r}") from exc
        logger.info("Email sent: to=%s subject=%r", redact_email(to_email), msg["Subject"])


class LogNotifier(_BaseNotifier):
    """Development notifier: records that a mail would have gone out."""

    def _send(self, to_email: str, msg: EmailMessage) -> None:
        logger.info("Email (dev mode, not sent): to=%s subject=%r", redact_email(to_email), msg["Subject"])


def build_notifier(settings: Settings) -> Notifier:
    if settings.smtp_host:
        return SmtpNotifier(settings)
    logger.warning("SMTP_HOST not set -- account emails will be logged, not sent")
    return LogNotifier(settings)
