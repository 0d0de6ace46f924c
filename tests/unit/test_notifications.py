"""
Unit tests for appointment emails.
"""

from datetime import time
from unittest.mock import patch

import pytest

from config import settings
from conftest import TUESDAY
from models.appointment import Appointment, ClientContact
from notifications import EmailNotifier, cancel_link
from notifications.email import cancellation_html, confirmation_html


@pytest.fixture
def appointment():
    return Appointment(
        id="appt-1",
        service_id="swedish",
        provider_id="dirlene",
        service_name="Massagem Sueca",
        provider_name="Dirlene",
        price_cents=8500,
        duration_minutes=60,
        date=TUESDAY,
        start_time=time(10, 0),
        end_time=time(11, 0),
        contact=ClientContact(
            name="Ana <b>Souza</b>", email="ana@example.com", phone="+5511999998888"
        ),
    )


def test_cancel_link(monkeypatch):
    monkeypatch.setattr(settings, "public_base_url", "https://clinica.example.com/")
    assert cancel_link("appt-1") == "https://clinica.example.com/cancel/appt-1"


def test_confirmation_body(appointment):
    html = confirmation_html(appointment)

    assert "Massagem Sueca" in html
    assert "10:00" in html
    assert cancel_link("appt-1") in html
    # Client-supplied text is escaped
    assert "<b>Souza</b>" not in html
    assert "&lt;b&gt;Souza&lt;/b&gt;" in html


def test_cancellation_body(appointment):
    html = cancellation_html(appointment)

    assert "cancelado" in html
    assert settings.clinic_phone in html


@pytest.mark.asyncio
async def test_disabled_without_api_key(appointment, monkeypatch):
    monkeypatch.setattr(settings, "resend_api_key", None)
    notifier = EmailNotifier()

    with patch("notifications.email.resend.Emails.send") as mock_send:
        assert await notifier.send_confirmation(appointment) is False

    mock_send.assert_not_called()


@pytest.mark.asyncio
async def test_send_confirmation(appointment):
    notifier = EmailNotifier(sender="Clinica <noreply@example.com>", api_key="re_test")

    with patch("notifications.email.resend.Emails.send") as mock_send:
        mock_send.return_value = {"id": "email_1"}
        assert await notifier.send_confirmation(appointment) is True

    params = mock_send.call_args[0][0]
    assert params["to"] == ["ana@example.com"]
    assert params["from"] == "Clinica <noreply@example.com>"
    assert params["subject"] == "Agendamento Confirmado"


@pytest.mark.asyncio
async def test_send_failure_is_swallowed(appointment):
    notifier = EmailNotifier(api_key="re_test")

    with patch("notifications.email.resend.Emails.send") as mock_send:
        mock_send.side_effect = RuntimeError("resend down")
        assert await notifier.send_cancellation(appointment) is False
