"""
mail/sender.py -- Synchronous SMTP delivery of transactional emails.

EmailSender renders a message with mail.templates and hands it to smtplib.
It is blocking; request handlers never call it directly. The auth core talks
to mail.dispatch.BackgroundMailer, which runs these methods on worker threads.

Dev mode: when email is disabled or SMTP is not configured, the message is
logged (recipient redacted) instead of sent, and the call reports success.
That keeps verification and 2FA flows usable on a laptop without an SMTP
server; the code shows up in the log.

Failure semantics: every SMTP, TLS, or socket error is logged and reported
as False. Nothing here raises on delivery failure.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from mail.templates import RenderedEmail, render

logger = logging.getLogger("gatehouse.mail")


def redact_email(email: str) -> str:
    """Return an address safe for log lines: an***@x.com."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailSender:
    def __init__(
        self,
        *,
        enabled: bool = False,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        smtp_from: str = "",
        smtp_use_tls: bool = True,
        app_name: str = "Gatehouse",
        timeout: float = 30.0,
    ) -> None:
        self.enabled = enabled
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_email = smtp_from or smtp_user
        self.smtp_use_tls = smtp_use_tls
        self.app_name = app_name
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> EmailSender:
        return cls(
            enabled=settings.email_enabled,
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_from=settings.smtp_from,
            smtp_use_tls=settings.smtp_use_tls,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.enabled and self.smtp_host and self.from_email)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def send(self, to: str, message: RenderedEmail) -> bool:
        """Deliver one rendered message. Returns True on success or in dev mode."""
        if not self.is_configured:
            logger.info(
                "Email delivery disabled; would send %r to %s:\n%s",
                message.subject,
                redact_email(to),
                message.text,
            )
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = f"{self.app_name} <{self.from_email}>"
        msg["To"] = to
        msg.attach(MIMEText(message.text, "plain"))
        msg.attach(MIMEText(message.html, "html"))

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, [to], msg.as_string())
            else:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=self.timeout) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, [to], msg.as_string())
        except smtplib.SMTPAuthenticationError as exc:
            logger.error("SMTP authentication failed for %s@%s: %s", self.smtp_user, self.smtp_host, exc)
            return False
        except smtplib.SMTPRecipientsRefused as exc:
            logger.error("SMTP recipient refused %s: %s", redact_email(to), exc)
            return False
        except smtplib.SMTPException as exc:
            logger.error("SMTP error sending to %s (%s): %s", redact_email(to), type(exc).__name__, exc)
            return False
        except (ssl.SSLError, OSError) as exc:
            logger.error("Could not reach SMTP server %s:%d: %s", self.smtp_host, self.smtp_port, exc)
            return False

        logger.info("Email %r sent to %s", message.subject, redact_email(to))
        return True

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def send_verification_email(self, to: str, code: str) -> bool:
        return self.send(to, render("verification_code", app_name=self.app_name, code=code, minutes=10))

    def send_two_factor_email(self, to: str, code: str) -> bool:
        return self.send(to, render("two_factor_code", app_name=self.app_name, code=code, minutes=5))

    def send_welcome_email(self, to: str, name: str) -> bool:
        return self.send(to, render("welcome", app_name=self.app_name, name=name))
