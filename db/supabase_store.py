"""
Supabase appointment store.

Double-booking is prevented by Postgres, not by this client: the
`appointments_no_overlap` exclusion constraint (see migrations/) rejects any
occupying row whose claimed minute range overlaps another occupying row for
the same provider and date. An insert that loses the race fails with
SQLSTATE 23P01, which is surfaced as SlotConflict.

Reschedule runs through the `reschedule_appointment` database function so
retiring the predecessor and inserting the successor share one transaction.

This client uses the service_role key, which bypasses RLS. Clients never
talk to these tables directly; they go through the booking API.
"""

import asyncio
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional

from postgrest.exceptions import APIError
from supabase import Client as SupabaseClientType
from supabase import create_client

from booking.availability import claim_range
from booking.lifecycle import INITIAL_STATUS, Trigger, validate_transition
from db.base import AppointmentStore
from models.appointment import (
    Appointment,
    AppointmentStatus,
    ClientContact,
    StatusTransition,
)
from utils.datetime_utils import parse_iso_datetime, to_iso_string, utc_now
from utils.exceptions import (
    InvalidTransition,
    NotEligible,
    NotFound,
    SlotConflict,
    StoreError,
)
from utils.logging_config import setup_logging

logger = setup_logging(name=__name__, log_file="store.log")

APPOINTMENTS_TABLE = "appointments"
HISTORY_TABLE = "appointment_status_history"

EXCLUSION_VIOLATION = "23P01"
RAISE_EXCEPTION = "P0001"
NO_DATA_FOUND = "P0002"

# Values older booking flows wrote for the same canonical status
_STORED_VALUES = {
    AppointmentStatus.AWAITING_PAYMENT: ["awaiting_payment", "pending"],
    AppointmentStatus.SCHEDULED: ["scheduled", "confirmed"],
    AppointmentStatus.COMPLETED: ["completed"],
    AppointmentStatus.CANCELLED: ["cancelled"],
}


class SupabaseAppointmentStore(AppointmentStore):
    """Appointment store backed by a Supabase (PostgREST) project."""

    def __init__(
        self,
        url: str,
        key: str,
        step_minutes: int,
        timeout_seconds: float = 10.0,
        client: Optional[SupabaseClientType] = None,
    ):
        super().__init__(step_minutes)
        self.client: SupabaseClientType = client or create_client(url, key)
        self.timeout_seconds = timeout_seconds

    # ========== Helpers ==========

    async def _execute(self, query, action: str):
        """
        Run a blocking PostgREST call off the event loop with a timeout and
        translate storage errors into booking errors.
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(query.execute), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Store timed out after {self.timeout_seconds}s trying to {action}")
            raise StoreError(f"Timed out trying to {action}") from e
        except APIError as e:
            if e.code == EXCLUSION_VIOLATION:
                raise SlotConflict() from e
            if e.code == RAISE_EXCEPTION and "not_scheduled" in (e.message or ""):
                raise NotEligible() from e
            if e.code == NO_DATA_FOUND:
                raise NotFound() from e
            logger.error(f"Store error trying to {action}: {e}", exc_info=True)
            raise StoreError(f"Failed to {action}") from e
        except Exception as e:
            logger.error(f"Unexpected store error trying to {action}: {e}", exc_info=True)
            raise StoreError(f"Failed to {action}") from e

    def _to_row(self, appointment: Appointment, trigger: Trigger) -> Dict[str, Any]:
        claim_start, claim_end = claim_range(
            appointment.start_time, appointment.duration_minutes, self.step_minutes
        )
        contact = appointment.contact
        return {
            "id": appointment.id,
            "service_id": appointment.service_id,
            "provider_id": appointment.provider_id,
            "service_name": appointment.service_name,
            "provider_name": appointment.provider_name,
            "price_cents": appointment.price_cents,
            "duration_minutes": appointment.duration_minutes,
            "date": appointment.date.isoformat(),
            "start_time": appointment.start_time.isoformat(),
            "end_time": appointment.end_time.isoformat(),
            "claim_start": claim_start,
            "claim_end": claim_end,
            "client_name": contact.name,
            "client_email": contact.email,
            "client_phone": contact.phone,
            "client_birth_date": contact.birth_date.isoformat() if contact.birth_date else None,
            "status": appointment.status.value,
            "status_trigger": trigger.value,
            "payment_intent_id": appointment.payment_intent_id,
            "payment_expires_at": (
                to_iso_string(appointment.payment_expires_at)
                if appointment.payment_expires_at
                else None
            ),
            "rescheduled_from": appointment.rescheduled_from,
            "created_at": to_iso_string(appointment.created_at),
        }

    def _parse_appointment(self, item: dict) -> Appointment:
        """
        Parse appointment data from database response.

        Args:
            item: Raw appointment row

        Returns:
            Parsed Appointment object
        """
        birth_date = item.get("client_birth_date")
        return Appointment(
            id=item["id"],
            service_id=item["service_id"],
            provider_id=item["provider_id"],
            service_name=item["service_name"],
            provider_name=item["provider_name"],
            price_cents=item["price_cents"],
            duration_minutes=item["duration_minutes"],
            date=date.fromisoformat(item["date"]),
            start_time=time.fromisoformat(item["start_time"]),
            end_time=time.fromisoformat(item["end_time"]),
            contact=ClientContact(
                name=item["client_name"],
                email=item["client_email"],
                phone=item["client_phone"],
                birth_date=date.fromisoformat(birth_date) if birth_date else None,
            ),
            status=AppointmentStatus(item["status"]),
            payment_intent_id=item.get("payment_intent_id"),
            payment_expires_at=(
                parse_iso_datetime(item["payment_expires_at"])
                if item.get("payment_expires_at")
                else None
            ),
            rescheduled_from=item.get("rescheduled_from"),
            created_at=parse_iso_datetime(item["created_at"]),
            updated_at=(
                parse_iso_datetime(item["updated_at"]) if item.get("updated_at") else None
            ),
        )

    @staticmethod
    def _single_row(data) -> Optional[dict]:
        if isinstance(data, list):
            return data[0] if data else None
        return data or None

    # ========== Store contract ==========

    async def create_if_no_conflict(
        self, appointment: Appointment, trigger: Trigger = Trigger.CREATED
    ) -> Appointment:
        if appointment.status != INITIAL_STATUS[trigger]:
            raise ValueError(
                f"{trigger.value} appointments must start as {INITIAL_STATUS[trigger].value}"
            )
        query = self.client.table(APPOINTMENTS_TABLE).insert(self._to_row(appointment, trigger))
        response = await self._execute(query, "create appointment")

        row = self._single_row(response.data)
        if not row:
            raise StoreError("Failed to create appointment: no data returned")
        return self._parse_appointment(row)

    async def get(self, appointment_id: str) -> Optional[Appointment]:
        query = self.client.table(APPOINTMENTS_TABLE).select("*").eq("id", appointment_id)
        response = await self._execute(query, "get appointment")

        if response.data:
            return self._parse_appointment(response.data[0])
        return None

    async def list_by_provider(
        self, provider_id: str, day: date, occupying_only: bool = False
    ) -> List[Appointment]:
        query = (
            self.client.table(APPOINTMENTS_TABLE)
            .select("*")
            .eq("provider_id", provider_id)
            .eq("date", day.isoformat())
        )
        if occupying_only:
            query = query.neq("status", AppointmentStatus.CANCELLED.value)
        query = query.order("start_time", desc=False)

        response = await self._execute(query, "list appointments")
        return [self._parse_appointment(item) for item in response.data]

    async def update_status(
        self, appointment_id: str, new_status: AppointmentStatus, trigger: Trigger
    ) -> Appointment:
        current = await self.get(appointment_id)
        if current is None:
            raise NotFound()
        validate_transition(current.status, new_status, trigger)

        # Compare-and-set: only write if nobody changed the status meanwhile
        query = (
            self.client.table(APPOINTMENTS_TABLE)
            .update(
                {
                    "status": new_status.value,
                    "status_trigger": trigger.value,
                    "updated_at": to_iso_string(utc_now()),
                }
            )
            .eq("id", appointment_id)
            .in_("status", _STORED_VALUES[current.status])
        )
        response = await self._execute(query, "update appointment status")

        if not response.data:
            logger.warning(
                f"Status of appointment {appointment_id} changed while moving "
                f"{current.status.value} -> {new_status.value}"
            )
            raise InvalidTransition("Appointment status changed concurrently")
        return self._parse_appointment(response.data[0])

    async def attach_payment(self, appointment_id: str, payment_intent_id: str) -> Appointment:
        query = (
            self.client.table(APPOINTMENTS_TABLE)
            .update(
                {
                    "payment_intent_id": payment_intent_id,
                    "updated_at": to_iso_string(utc_now()),
                }
            )
            .eq("id", appointment_id)
        )
        response = await self._execute(query, "attach payment")

        if not response.data:
            raise NotFound()
        return self._parse_appointment(response.data[0])

    async def reschedule(self, predecessor_id: str, successor: Appointment) -> Appointment:
        if successor.status != AppointmentStatus.SCHEDULED:
            raise ValueError("Reschedule successors must start as scheduled")
        query = self.client.rpc(
            "reschedule_appointment",
            {
                "p_predecessor_id": predecessor_id,
                "p_successor": self._to_row(successor, Trigger.RESCHEDULED_IN),
            },
        )
        response = await self._execute(query, "reschedule appointment")

        row = self._single_row(response.data)
        if not row:
            raise StoreError("Failed to reschedule appointment: no data returned")
        return self._parse_appointment(row)

    async def list_expired_holds(self, now: datetime) -> List[Appointment]:
        query = (
            self.client.table(APPOINTMENTS_TABLE)
            .select("*")
            .in_("status", _STORED_VALUES[AppointmentStatus.AWAITING_PAYMENT])
            .lte("payment_expires_at", to_iso_string(now))
        )
        response = await self._execute(query, "list expired holds")
        return [self._parse_appointment(item) for item in response.data]

    async def list_transitions(self, appointment_id: str) -> List[StatusTransition]:
        query = (
            self.client.table(HISTORY_TABLE)
            .select("*")
            .eq("appointment_id", appointment_id)
            .order("created_at", desc=False)
        )
        response = await self._execute(query, "list status history")
        return [
            StatusTransition(
                appointment_id=item["appointment_id"],
                from_status=(
                    AppointmentStatus(item["from_status"]) if item.get("from_status") else None
                ),
                to_status=AppointmentStatus(item["to_status"]),
                trigger=item["trigger"],
                created_at=parse_iso_datetime(item["created_at"]),
            )
            for item in response.data
        ]
