"""
Transactional email via Resend.

Sending is fire-and-forget from the booking engine's point of view: a failed
email is logged and never undoes or blocks a booking.
"""

import asyncio
from html import escape
from typing import Optional

import resend

from config import settings
from models.appointment import Appointment
from utils.datetime_utils import format_display_date, format_hhmm
from utils.logging_config import setup_logging

logger = setup_logging(name=__name__, log_file="email.log")

resend.api_key = settings.resend_api_key

_DETAILS_ROW = (
    '<p style="margin: 0; color: #888; font-size: 12px; text-transform: uppercase;">{label}</p>'
    '<p style="margin: 5px 0 15px 0; color: #333; font-size: 16px; font-weight: 600;">{value}</p>'
)


def cancel_link(appointment_id: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/cancel/{appointment_id}"


def _details_html(appointment: Appointment) -> str:
    rows = [
        ("Serviço", appointment.service_name),
        ("Profissional", appointment.provider_name),
        ("Data", format_display_date(appointment.date)),
        ("Horário", format_hhmm(appointment.start_time)),
    ]
    return "".join(_DETAILS_ROW.format(label=label, value=escape(value)) for label, value in rows)


def confirmation_html(appointment: Appointment) -> str:
    """Body of the "appointment scheduled" email."""
    return f"""
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="margin: 0; padding: 40px 20px; background-color: #fffcfa; font-family: Helvetica, Arial, sans-serif;">
  <div style="max-width: 600px; margin: 0 auto; background-color: #ffffff; border-radius: 16px; padding: 40px 30px;">
    <h2 style="color: #556b2f; margin-top: 0; text-align: center;">Olá, {escape(appointment.contact.name)}!</h2>
    <p style="color: #666666; font-size: 16px; text-align: center;">
      Seu agendamento está confirmado! Abaixo estão os detalhes da sua sessão.
    </p>
    <div style="background-color: #f8fafc; border-radius: 12px; padding: 25px; margin: 30px 0;">
      {_details_html(appointment)}
    </div>
    <div style="text-align: center;">
      <a href="{cancel_link(appointment.id)}" style="color: #ef4444; border: 2px solid #ef4444; padding: 12px 30px; text-decoration: none; border-radius: 50px; font-weight: bold;">
        Gerenciar Agendamento
      </a>
    </div>
    <p style="color: #999; font-size: 12px; text-align: center; margin-top: 30px;">
      Cancelamentos e remarcações com até {settings.cancellation_notice_hours}h de antecedência.
    </p>
  </div>
</body>
</html>
"""


def cancellation_html(appointment: Appointment) -> str:
    """Body of the "appointment cancelled" email."""
    return f"""
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="margin: 0; padding: 40px 20px; background-color: #fffcfa; font-family: Helvetica, Arial, sans-serif;">
  <div style="max-width: 600px; margin: 0 auto; background-color: #ffffff; border-radius: 16px; padding: 40px 30px;">
    <h2 style="color: #556b2f; margin-top: 0; text-align: center;">Olá, {escape(appointment.contact.name)}</h2>
    <p style="color: #666666; font-size: 16px; text-align: center;">
      Seu agendamento foi cancelado.
    </p>
    <div style="background-color: #f8fafc; border-radius: 12px; padding: 25px; margin: 30px 0;">
      {_details_html(appointment)}
    </div>
    <p style="color: #666666; font-size: 14px; text-align: center;">
      Dúvidas? Fale conosco: {escape(settings.clinic_phone)}
    </p>
  </div>
</body>
</html>
"""


class EmailNotifier:
    """Sends appointment emails through Resend."""

    def __init__(self, sender: Optional[str] = None, api_key: Optional[str] = None):
        self.sender = sender or settings.email_from
        if api_key:
            resend.api_key = api_key
        self.enabled = bool(api_key or settings.resend_api_key)

    async def _send(self, to: str, subject: str, html: str) -> bool:
        if not self.enabled:
            logger.info(f"RESEND_API_KEY not set - skipping email '{subject}' to {to}")
            return False

        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    resend.Emails.send,
                    {
                        "from": self.sender,
                        "to": [to],
                        "subject": subject,
                        "html": html,
                    },
                ),
                timeout=settings.store_timeout_seconds,
            )
            logger.info(f"Email '{subject}' sent to {to}: {response}")
            return True
        except Exception as e:
            logger.error(f"Email send error to {to}: {e}", exc_info=True)
            return False

    async def send_confirmation(self, appointment: Appointment) -> bool:
        return await self._send(
            appointment.contact.email,
            "Agendamento Confirmado",
            confirmation_html(appointment),
        )

    async def send_cancellation(self, appointment: Appointment) -> bool:
        return await self._send(
            appointment.contact.email,
            "Agendamento Cancelado",
            cancellation_html(appointment),
        )
