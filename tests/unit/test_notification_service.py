"""Tests for draftsign/services/notification_service.py: SMTP delivery."""

import smtplib
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from draftsign.services.notification_service import NotificationService, get_notification_service


@pytest.fixture
def smtp(monkeypatch):
    """Patch smtplib.SMTP with a context-managed mock server."""
    server = MagicMock()
    factory = MagicMock()
    factory.return_value.__enter__.return_value = server
    monkeypatch.setattr("draftsign.services.notification_service.smtplib.SMTP", factory)
    return factory, server


@pytest.fixture
def notifier(monkeypatch):
    monkeypatch.setenv("SMTP_HOST", "mail.example.com")
    monkeypatch.setenv("SMTP_PORT", "2525")
    monkeypatch.setenv("SMTP_USER", "mailer")
    monkeypatch.setenv("SMTP_PASSWORD", "secret")
    monkeypatch.setenv("SMTP_SENDER", "contracts@example.com")
    return get_notification_service()


class TestSigningRequest:

    def test_sends_link(self, notifier, smtp):
        factory, server = smtp

        ok = notifier.send_signing_request(
            "bob@example.com",
            "https://sign.example.com/contracts/sign?token=abc",
            "Consulting Agreement",
            datetime(2026, 1, 4, 12, 0, tzinfo=timezone.utc),
        )

        assert ok is True
        factory.assert_called_once_with("mail.example.com", 2525)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer", "secret")

        msg = server.send_message.call_args.args[0]
        assert msg["To"] == "bob@example.com"
        assert msg["From"] == "contracts@example.com"
        assert msg["Subject"] == "Signature requested: Consulting Agreement"
        assert msg["X-Notification-Type"] == "signing_request"
        html = msg.get_payload()[0].get_payload()[1].get_payload(decode=True).decode()
        assert "token=abc" in html
        assert "2026-01-04 12:00" in html

    def test_smtp_failure_returns_false(self, notifier, smtp):
        factory, server = smtp
        server.send_message.side_effect = smtplib.SMTPException("rejected")

        assert notifier.send_signing_request("bob@example.com", "https://x", "T") is False

    def test_connection_refused_returns_false(self, notifier, smtp):
        factory, _ = smtp
        factory.side_effect = ConnectionRefusedError("no server")

        assert notifier.send_signing_request("bob@example.com", "https://x", "T") is False


class TestFinalizedCopy:

    def test_attaches_pdf_to_each_recipient_once(self, notifier, smtp):
        _, server = smtp

        ok = notifier.send_finalized_copy(
            ["bob@example.com", "alice@example.com", "bob@example.com", None],
            b"%PDF-1.4 data",
            "Consulting Agreement",
        )

        assert ok is True
        msg = server.send_message.call_args.args[0]
        assert msg["To"] == "alice@example.com, bob@example.com"
        attachment = msg.get_payload()[1]
        assert attachment.get_content_type() == "application/pdf"
        assert attachment.get_filename() == "Consulting Agreement.pdf"
        assert attachment.get_payload(decode=True) == b"%PDF-1.4 data"

    def test_no_recipients(self, notifier, smtp):
        _, server = smtp
        assert notifier.send_finalized_copy([], b"pdf", "T") is False
        server.send_message.assert_not_called()


def test_no_login_without_credentials(monkeypatch, smtp):
    monkeypatch.setenv("SMTP_USE_TLS", "false")
    _, server = smtp

    NotificationService().send_signing_request("bob@example.com", "https://x", "T")

    server.starttls.assert_not_called()
    server.login.assert_not_called()
