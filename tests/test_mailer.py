"""Unit tests for mail/ -- templates, the SMTP sender, and the background mailer.

Covers:
- render() fills subject, HTML, and text bodies; HTML escapes user input
- EmailSender in dev mode logs instead of sending and reports success
- EmailSender reports SMTP failures as False without raising
- BackgroundMailer contains sender exceptions and logs them
- BackgroundMailer drops sends after shutdown instead of raising
"""

import logging
import smtplib

import pytest

from mail.dispatch import BackgroundMailer
from mail.sender import EmailSender, redact_email
from mail.templates import render

# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


class TestRender:
    def test_verification_code(self):
        msg = render("verification_code", code="012345", minutes=10)
        assert msg.subject == "Verify Your Account"
        assert "012345" in msg.html
        assert "012345" in msg.text
        assert "10 minutes" in msg.text

    def test_two_factor_code(self):
        msg = render("two_factor_code", code="654321", minutes=5)
        assert msg.subject == "Your Login Verification Code"
        assert "654321" in msg.text

    def test_welcome_escapes_name_in_html(self):
        msg = render("welcome", app_name="Gatehouse", name="<script>x</script>")
        assert "<script>" not in msg.html
        assert "&lt;script&gt;" in msg.html
        assert "Gatehouse" in msg.text

    def test_missing_variable_raises(self):
        from jinja2 import UndefinedError

        with pytest.raises(UndefinedError):
            render("welcome")

    def test_template_name_is_positional_only(self):
        with pytest.raises(TypeError):
            render(template="welcome", name="Ann")

    def test_unknown_template(self):
        with pytest.raises(KeyError):
            render("nope")


# ---------------------------------------------------------------------------
# Sender
# ---------------------------------------------------------------------------


class TestEmailSender:
    def test_redact_email(self):
        assert redact_email("annabel@example.com") == "an***@example.com"
        assert redact_email("garbage") == "redacted"

    def test_dev_mode_logs_and_succeeds(self, caplog):
        sender = EmailSender(enabled=False)
        with caplog.at_level(logging.INFO, logger="gatehouse.mail"):
            assert sender.send_verification_email("ann@example.com", "246810") is True
        assert "246810" in caplog.text
        assert "ann@example.com" not in caplog.text

    def test_welcome_email_passes_name_to_template(self, caplog):
        sender = EmailSender(enabled=False, app_name="Gatehouse")
        with caplog.at_level(logging.INFO, logger="gatehouse.mail"):
            assert sender.send_welcome_email("ann@example.com", "Annabel") is True
        assert "Hello Annabel," in caplog.text

    def test_enabled_without_host_is_dev_mode(self):
        assert EmailSender(enabled=True, smtp_host="", smtp_from="x@example.com").is_configured is False

    def test_smtp_failure_returns_false(self, monkeypatch, caplog):
        class BrokenSMTP:
            def __init__(self, *args, **kwargs):
                raise smtplib.SMTPConnectError(421, "service not available")

        monkeypatch.setattr(smtplib, "SMTP", BrokenSMTP)
        sender = EmailSender(enabled=True, smtp_host="smtp.example.com", smtp_from="noreply@example.com")
        with caplog.at_level(logging.ERROR, logger="gatehouse.mail"):
            assert sender.send_welcome_email("ann@example.com", "Ann") is False
        assert "SMTP error" in caplog.text

    def test_unreachable_server_returns_false(self, monkeypatch):
        def refuse(*args, **kwargs):
            raise ConnectionRefusedError("refused")

        monkeypatch.setattr(smtplib, "SMTP", refuse)
        sender = EmailSender(enabled=True, smtp_host="smtp.example.com", smtp_from="noreply@example.com")
        assert sender.send_two_factor_email("ann@example.com", "111111") is False


# ---------------------------------------------------------------------------
# Background mailer
# ---------------------------------------------------------------------------


class RaisingSender:
    def send_verification_email(self, to, code):
        raise RuntimeError("template exploded")

    def send_two_factor_email(self, to, code):
        return False

    def send_welcome_email(self, to, name):
        return True


class TestBackgroundMailer:
    def test_exception_is_contained_and_logged(self, caplog):
        mailer = BackgroundMailer(RaisingSender(), max_workers=1)
        with caplog.at_level(logging.ERROR, logger="gatehouse.mail"):
            future = mailer.send_verification_email("ann@example.com", "123456")
            assert future.result(timeout=5) is None
        mailer.shutdown()
        assert "Verification email" in caplog.text
        assert "template exploded" in caplog.text

    def test_undelivered_is_logged_as_warning(self, caplog):
        mailer = BackgroundMailer(RaisingSender(), max_workers=1)
        with caplog.at_level(logging.WARNING, logger="gatehouse.mail"):
            mailer.send_two_factor_email("ann@example.com", "123456").result(timeout=5)
        mailer.shutdown()
        assert "was not delivered" in caplog.text

    def test_send_after_shutdown_is_dropped(self, caplog):
        mailer = BackgroundMailer(RaisingSender(), max_workers=1)
        mailer.shutdown()
        with caplog.at_level(logging.ERROR, logger="gatehouse.mail"):
            assert mailer.send_welcome_email("ann@example.com", "Ann") is None
        assert "dropped" in caplog.text
