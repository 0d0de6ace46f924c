"""Appointment stores and backend selection."""

from typing import Optional

from config import settings

from .base import AppointmentStore
from .memory_store import InMemoryAppointmentStore
from .supabase_store import SupabaseAppointmentStore

__all__ = [
    "AppointmentStore",
    "InMemoryAppointmentStore",
    "SupabaseAppointmentStore",
    "get_store",
    "reset_store",
]

_store: Optional[AppointmentStore] = None


def get_store() -> AppointmentStore:
    """Get or create the store selected by `settings.store_backend`."""
    global _store
    if _store is None:
        if settings.store_backend == "memory":
            _store = InMemoryAppointmentStore(step_minutes=settings.slot_step_minutes)
        elif settings.store_backend == "supabase":
            if not settings.supabase_url or not settings.supabase_key:
                raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set")
            _store = SupabaseAppointmentStore(
                url=settings.supabase_url,
                key=settings.supabase_key,
                step_minutes=settings.slot_step_minutes,
                timeout_seconds=settings.store_timeout_seconds,
            )
        else:
            raise ValueError(f"Unknown store backend: {settings.store_backend}")
    return _store


def reset_store() -> None:
    """Forget the cached store (used between tests)."""
    global _store
    _store = None
