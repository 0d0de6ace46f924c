"""Appointment models: status enum, client contact, request and stored record."""

import datetime as dt
import uuid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from utils.constants import MAX_CLIENT_NAME_LENGTH
from utils.datetime_utils import combine_local, utc_now
from utils.validation import normalize_phone, sanitize_text, validate_phone


class AppointmentStatus(str, Enum):
    """Canonical appointment status."""

    AWAITING_PAYMENT = "awaiting_payment"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def _missing_(cls, value):
        # Rows written by older booking flows
        legacy = {"pending": cls.AWAITING_PAYMENT, "confirmed": cls.SCHEDULED}
        return legacy.get(value)


OCCUPYING_STATUSES = frozenset(
    {
        AppointmentStatus.AWAITING_PAYMENT,
        AppointmentStatus.SCHEDULED,
        AppointmentStatus.COMPLETED,
    }
)

TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}
)


class ClientContact(BaseModel):
    """Contact details supplied by the client."""

    name: str = Field(..., min_length=1, max_length=MAX_CLIENT_NAME_LENGTH)
    email: EmailStr
    phone: str
    birth_date: Optional[dt.date] = None

    @field_validator("name", mode="before")
    @classmethod
    def clean_name(cls, v: str) -> str:
        return sanitize_text(v, max_length=MAX_CLIENT_NAME_LENGTH)

    @field_validator("phone")
    @classmethod
    def check_phone(cls, v: str) -> str:
        if not validate_phone(v):
            raise ValueError("invalid phone number")
        return normalize_phone(v)


class AppointmentRequest(BaseModel):
    """Everything the client chose, assembled once and handed to the engine."""

    service_id: str
    provider_id: str
    date: dt.date
    start_time: dt.time
    contact: ClientContact

    @field_validator("start_time")
    @classmethod
    def check_minute_precision(cls, v: dt.time) -> dt.time:
        if v.second or v.microsecond:
            raise ValueError("start_time must be given as HH:MM")
        return v.replace(tzinfo=None)


class Appointment(BaseModel):
    """
    Stored appointment.

    Service name, duration and price are snapshots taken at creation time;
    later catalog edits never change a booked appointment.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    service_id: str
    provider_id: str
    service_name: str
    provider_name: str
    price_cents: int = Field(..., ge=0)
    duration_minutes: int = Field(..., gt=0)
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    contact: ClientContact
    status: AppointmentStatus = AppointmentStatus.AWAITING_PAYMENT
    payment_intent_id: Optional[str] = None
    payment_expires_at: Optional[dt.datetime] = None
    rescheduled_from: Optional[str] = None
    created_at: dt.datetime = Field(default_factory=utc_now)
    updated_at: Optional[dt.datetime] = None

    class Config:
        json_schema_extra = {
            "example": {
                "service_id": "swedish",
                "provider_id": "dirlene",
                "service_name": "Massagem Sueca",
                "provider_name": "Dirlene",
                "price_cents": 8500,
                "duration_minutes": 60,
                "date": "2026-10-20",
                "start_time": "10:00",
                "end_time": "11:00",
                "contact": {
                    "name": "Ana Souza",
                    "email": "ana@example.com",
                    "phone": "+5511999998888",
                },
                "status": "awaiting_payment",
            }
        }

    @property
    def is_occupying(self) -> bool:
        return self.status in OCCUPYING_STATUSES

    def start_instant(self, tz_name: str) -> dt.datetime:
        return combine_local(self.date, self.start_time, tz_name)


class StatusTransition(BaseModel):
    """Audit record of one status change. `from_status` is None on creation."""

    appointment_id: str
    from_status: Optional[AppointmentStatus] = None
    to_status: AppointmentStatus
    trigger: str
    created_at: dt.datetime = Field(default_factory=utc_now)
