"""
In-process appointment store.

Check-and-insert runs under one asyncio lock, which makes it atomic for a
single process only. The conflict check is an awaited read, so other tasks
may run between it and the insert whenever the lock is not held. Use it for development and tests; multi-process
deployments need the Supabase store and its exclusion constraint.
"""

import asyncio
from datetime import date, datetime
from typing import Dict, List, Optional

from booking.availability import appointment_claim, ranges_overlap
from booking.lifecycle import INITIAL_STATUS, Trigger, validate_transition
from db.base import AppointmentStore
from models.appointment import Appointment, AppointmentStatus, StatusTransition
from utils.datetime_utils import utc_now
from utils.exceptions import NotEligible, NotFound, SlotConflict
from utils.logging_config import setup_logging

logger = setup_logging(name=__name__)


class InMemoryAppointmentStore(AppointmentStore):
    """Dict-backed store guarded by an asyncio lock."""

    def __init__(self, step_minutes: int):
        super().__init__(step_minutes)
        self._appointments: Dict[str, Appointment] = {}
        self._transitions: Dict[str, List[StatusTransition]] = {}
        self._lock = asyncio.Lock()

    # ========== Helpers (lock must be held) ==========

    async def _find_conflict(self, candidate: Appointment) -> Optional[Appointment]:
        claim = appointment_claim(candidate, self.step_minutes)
        occupying = await self.list_by_provider(
            candidate.provider_id, candidate.date, occupying_only=True
        )
        for existing in occupying:
            if existing.id != candidate.id and ranges_overlap(
                claim, appointment_claim(existing, self.step_minutes)
            ):
                return existing
        return None

    def _record(self, appointment_id, from_status, to_status, trigger: Trigger) -> None:
        self._transitions.setdefault(appointment_id, []).append(
            StatusTransition(
                appointment_id=appointment_id,
                from_status=from_status,
                to_status=to_status,
                trigger=trigger.value,
            )
        )

    async def _insert(self, appointment: Appointment, trigger: Trigger) -> Appointment:
        if appointment.id in self._appointments:
            raise ValueError(f"Appointment {appointment.id} already exists")
        conflict = await self._find_conflict(appointment)
        if conflict is not None:
            logger.info(
                f"Slot conflict for provider {appointment.provider_id} on "
                f"{appointment.date} at {appointment.start_time} "
                f"(held by {conflict.id})"
            )
            raise SlotConflict()
        stored = appointment.model_copy(deep=True)
        self._appointments[stored.id] = stored
        self._record(stored.id, None, stored.status, trigger)
        return stored.model_copy(deep=True)

    def _set_status(
        self, appointment_id: str, new_status: AppointmentStatus, trigger: Trigger
    ) -> Appointment:
        current = self._appointments.get(appointment_id)
        if current is None:
            raise NotFound()
        validate_transition(current.status, new_status, trigger)
        updated = current.model_copy(update={"status": new_status, "updated_at": utc_now()})
        self._appointments[appointment_id] = updated
        self._record(appointment_id, current.status, new_status, trigger)
        return updated.model_copy(deep=True)

    # ========== Store contract ==========

    async def create_if_no_conflict(
        self, appointment: Appointment, trigger: Trigger = Trigger.CREATED
    ) -> Appointment:
        if appointment.status != INITIAL_STATUS[trigger]:
            raise ValueError(f"{trigger.value} appointments must start as {INITIAL_STATUS[trigger].value}")
        async with self._lock:
            return await self._insert(appointment, trigger)

    async def get(self, appointment_id: str) -> Optional[Appointment]:
        appointment = self._appointments.get(appointment_id)
        return appointment.model_copy(deep=True) if appointment else None

    async def list_by_provider(
        self, provider_id: str, day: date, occupying_only: bool = False
    ) -> List[Appointment]:
        found = [
            a.model_copy(deep=True)
            for a in self._appointments.values()
            if a.provider_id == provider_id
            and a.date == day
            and (a.is_occupying or not occupying_only)
        ]
        return sorted(found, key=lambda a: (a.start_time, a.created_at))

    async def update_status(
        self, appointment_id: str, new_status: AppointmentStatus, trigger: Trigger
    ) -> Appointment:
        async with self._lock:
            return self._set_status(appointment_id, new_status, trigger)

    async def attach_payment(self, appointment_id: str, payment_intent_id: str) -> Appointment:
        async with self._lock:
            current = self._appointments.get(appointment_id)
            if current is None:
                raise NotFound()
            updated = current.model_copy(
                update={"payment_intent_id": payment_intent_id, "updated_at": utc_now()}
            )
            self._appointments[appointment_id] = updated
            return updated.model_copy(deep=True)

    async def reschedule(self, predecessor_id: str, successor: Appointment) -> Appointment:
        async with self._lock:
            predecessor = self._appointments.get(predecessor_id)
            if predecessor is None:
                raise NotFound()
            if predecessor.status != AppointmentStatus.SCHEDULED:
                raise NotEligible()

            # Retire first so the successor may reuse the predecessor's own slots
            self._appointments[predecessor_id] = predecessor.model_copy(
                update={"status": AppointmentStatus.CANCELLED, "updated_at": utc_now()}
            )
            try:
                created = await self._insert(successor, Trigger.RESCHEDULED_IN)
            except SlotConflict:
                self._appointments[predecessor_id] = predecessor
                raise
            self._record(
                predecessor_id,
                AppointmentStatus.SCHEDULED,
                AppointmentStatus.CANCELLED,
                Trigger.RESCHEDULE_RETIRE,
            )
            return created

    async def list_expired_holds(self, now: datetime) -> List[Appointment]:
        return [
            a.model_copy(deep=True)
            for a in self._appointments.values()
            if a.status == AppointmentStatus.AWAITING_PAYMENT
            and a.payment_expires_at is not None
            and a.payment_expires_at <= now
        ]

    async def list_transitions(self, appointment_id: str) -> List[StatusTransition]:
        return list(self._transitions.get(appointment_id, []))
