"""
Pytest configuration and shared fixtures.
"""

import asyncio
import os

# Must be set before config is imported anywhere
os.environ["ENVIRONMENT"] = "test"
os.environ["STORE_BACKEND"] = "memory"
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_123")
os.environ["STRIPE_WEBHOOK_SECRET"] = ""
os.environ["RESEND_API_KEY"] = ""
os.environ["ADMIN_API_TOKEN"] = ""
os.environ["REDIS_URL"] = ""

from datetime import date, datetime, time, timedelta  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402
from zoneinfo import ZoneInfo  # noqa: E402

import pytest  # noqa: E402

from booking.service import BookingService  # noqa: E402
from config import settings  # noqa: E402
from db.memory_store import InMemoryAppointmentStore  # noqa: E402
from models.appointment import AppointmentRequest, ClientContact  # noqa: E402
from models.schedule import BusinessHours  # noqa: E402

TZ = "America/Sao_Paulo"

# Monday, 09:00 clinic time
NOW = datetime(2026, 10, 19, 9, 0, tzinfo=ZoneInfo(TZ))
TODAY = NOW.date()
TUESDAY = date(2026, 10, 20)
WEDNESDAY = date(2026, 10, 21)
THURSDAY = date(2026, 10, 22)
SATURDAY = date(2026, 10, 24)
SUNDAY = date(2026, 10, 25)
HORIZON_END = date(2026, 11, 18)

CLIENT_EMAIL = "ana@example.com"


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


class RecordingNotifier:
    """Notifier that remembers what it was asked to send."""

    def __init__(self):
        self.confirmations = []
        self.cancellations = []

    async def send_confirmation(self, appointment):
        self.confirmations.append(appointment.id)
        return True

    async def send_cancellation(self, appointment):
        self.cancellations.append(appointment.id)
        return True


class YieldingStore(InMemoryAppointmentStore):
    """Memory store that lets other tasks run after every read."""

    async def get(self, appointment_id):
        found = await super().get(appointment_id)
        await asyncio.sleep(0)
        return found

    async def _find_conflict(self, candidate):
        conflict = await super()._find_conflict(candidate)
        await asyncio.sleep(0)
        return conflict


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def hours():
    """Clinic template built from default settings."""
    return BusinessHours.from_settings(settings)


@pytest.fixture
def store():
    return InMemoryAppointmentStore(step_minutes=30)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def booking_service(store, hours, clock, notifier):
    return BookingService(
        store=store,
        hours=hours,
        tz_name=TZ,
        notice_hours=24,
        payment_expiry_minutes=15,
        notifier=notifier,
        clock=clock,
    )


@pytest.fixture
def yielding_service(hours, clock, notifier):
    """Booking service whose store suspends between its reads and writes."""
    return BookingService(
        store=YieldingStore(step_minutes=30),
        hours=hours,
        tz_name=TZ,
        notifier=notifier,
        clock=clock,
    )


@pytest.fixture
def make_request():
    """Build an AppointmentRequest with sensible defaults."""

    def _make(
        day: date = TUESDAY,
        at: time = time(10, 0),
        service_id: str = "swedish",
        provider_id: str = "dirlene",
        email: str = CLIENT_EMAIL,
        name: str = "Ana Souza",
    ) -> AppointmentRequest:
        return AppointmentRequest(
            service_id=service_id,
            provider_id=provider_id,
            date=day,
            start_time=at,
            contact=ClientContact(name=name, email=email, phone="+55 11 99999-8888"),
        )

    return _make


@pytest.fixture
def book_paid(booking_service, make_request):
    """Create an appointment and confirm its payment."""

    async def _book(**kwargs):
        appointment = await booking_service.create_appointment(make_request(**kwargs))
        return await booking_service.confirm_payment(appointment.id)

    return _book


@pytest.fixture
def mock_supabase_client():
    """Create a mock Supabase client."""
    mock_client = MagicMock()
    mock_table = MagicMock()
    mock_client.table.return_value = mock_table
    return mock_client, mock_table
