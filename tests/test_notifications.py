# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
from datetime import datetime, timezone

import pytest

from conftest import RecordingTransport
from kiwitweaks.config import Settings
from kiwitweaks.errors import ConfigurationError, EmailDeliveryError
from kiwitweaks.notifications import (
    Mailer,
    ResendTransport,
    SMTPTransport,
    build_transport,
    display_name,
    html_to_text,
    notify,
)


class FailingTransport:
    name = "failing"

    def send(self, to, subject, html, text):
        raise OSError("smtp down")


def test_license_email_contains_key_and_links():
    transport = RecordingTransport()
    mailer = Mailer(transport=transport, download_url="https://dl.example.com")
    result = mailer.send_license_key("bob@example.com", None, "ABCD-1234", "KiwiTweaks Premium")

    assert result.transport == "recording"
    assert result.message_id == "msg-1"
    message = transport.sent[0]
    assert message["subject"] == "Your KiwiTweaks License Key"
    assert "ABCD-1234" in message["html"]
    assert "https://dl.example.com" in message["html"]
    assert "bob" in message["text"]
    assert "<" not in message["text"]


def test_purchase_confirmation_formats_cents():
    transport = RecordingTransport()
    Mailer(transport=transport).send_purchase_confirmation(
        "bob@example.com", "bob", "KiwiTweaks Premium", 2999, "USD", "cs_test_1",
        datetime(2026, 3, 4, tzinfo=timezone.utc),
    )
    html = transport.sent[0]["html"]
    assert "29.99" in html
    assert "cs_test_1" in html
    assert "2026-03-04" in html


def test_links_point_at_app_url():
    transport = RecordingTransport()
    mailer = Mailer(transport=transport, app_url="https://shop.example.com/")
    mailer.send_email_verification("a@example.com", "alice", "a" * 64)
    mailer.send_password_reset("a@example.com", "alice", "b" * 64)
    assert "https://shop.example.com/verify-email?token=" + "a" * 64 in transport.sent[0]["html"]
    assert "https://shop.example.com/reset-password?token=" + "b" * 64 in transport.sent[1]["html"]


def test_user_values_are_escaped():
    transport = RecordingTransport()
    Mailer(transport=transport).send_welcome("a@example.com", "<script>x</script>")
    assert "<script>x</script>" not in transport.sent[0]["html"]
    assert "&lt;script&gt;" in transport.sent[0]["html"]


def test_without_transport_nothing_is_sent():
    result = Mailer().send_welcome("a@example.com", None)
    assert result.message_id == "not-configured"
    assert result.transport == "none"


def test_transport_failure_raises_delivery_error():
    with pytest.raises(EmailDeliveryError) as exc_info:
        Mailer(transport=FailingTransport()).send_welcome("a@example.com", None)
    assert isinstance(exc_info.value.__cause__, OSError)


def test_notify_logs_instead_of_raising():
    mailer = Mailer(transport=FailingTransport())
    assert notify(mailer.send_welcome, "a@example.com", None) is None


def test_missing_template_fails_at_startup(tmp_path):
    (tmp_path / "welcome.html").write_text("hi")
    with pytest.raises(ConfigurationError):
        Mailer(template_dir=str(tmp_path))


def test_transport_selection():
    assert isinstance(build_transport(Settings(resend_api_key="re_test", smtp_host="smtp.example.com")), ResendTransport)
    smtp = build_transport(Settings(smtp_host="smtp.example.com", smtp_port=465, smtp_secure=True))
    assert isinstance(smtp, SMTPTransport)
    assert smtp.port == 465
    assert build_transport(Settings()) is None


def test_helpers():
    assert display_name("carol@example.com") == "carol"
    assert display_name("carol@example.com", "caz") == "caz"
    assert html_to_text("<p>Hello</p>\n\n<p> there </p>") == "Hello\nthere"
