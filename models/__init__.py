"""Pydantic models for data validation and serialization."""

from .appointment import (
    OCCUPYING_STATUSES,
    Appointment,
    AppointmentRequest,
    AppointmentStatus,
    ClientContact,
    StatusTransition,
)
from .provider import Provider, get_all_providers, get_provider
from .schedule import BreakWindow, BusinessHours, DayHours
from .service import Service, get_all_services, get_service

__all__ = [
    "OCCUPYING_STATUSES",
    "Appointment",
    "AppointmentRequest",
    "AppointmentStatus",
    "ClientContact",
    "StatusTransition",
    "Provider",
    "get_all_providers",
    "get_provider",
    "BreakWindow",
    "BusinessHours",
    "DayHours",
    "Service",
    "get_all_services",
    "get_service",
]
