"""
Reservation store contract.

Every backend must make `create_if_no_conflict` and `reschedule` atomic at
the storage layer. Checking availability and then inserting in two separate
steps is a double-booking bug under concurrent requests for the same slot.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import List, Optional

from booking.lifecycle import Trigger
from models.appointment import Appointment, AppointmentStatus, StatusTransition


class AppointmentStore(ABC):
    """Single source of truth for appointment existence and status."""

    def __init__(self, step_minutes: int):
        self.step_minutes = step_minutes

    @abstractmethod
    async def create_if_no_conflict(
        self, appointment: Appointment, trigger: Trigger = Trigger.CREATED
    ) -> Appointment:
        """
        Insert `appointment` iff no occupying appointment for the same
        provider and date claims an overlapping slot.

        Raises:
            SlotConflict: An overlapping claim exists; nothing was written
            StoreError: The store failed or timed out
        """

    @abstractmethod
    async def get(self, appointment_id: str) -> Optional[Appointment]:
        """Get appointment by id, or None."""

    @abstractmethod
    async def list_by_provider(
        self, provider_id: str, day: date, occupying_only: bool = False
    ) -> List[Appointment]:
        """Appointments for one provider-day ordered by start time."""

    @abstractmethod
    async def update_status(
        self, appointment_id: str, new_status: AppointmentStatus, trigger: Trigger
    ) -> Appointment:
        """
        Validate the transition against the lifecycle and write it.
        The write only succeeds if the status is still the one validated.

        Raises:
            NotFound: No such appointment
            InvalidTransition: The transition is illegal or lost a race
        """

    @abstractmethod
    async def attach_payment(self, appointment_id: str, payment_intent_id: str) -> Appointment:
        """Record the payment intent created for an appointment."""

    @abstractmethod
    async def reschedule(self, predecessor_id: str, successor: Appointment) -> Appointment:
        """
        Retire the predecessor and insert the successor as one unit.

        Raises:
            NotEligible: The predecessor is no longer scheduled
            SlotConflict: The successor overlaps another claim; nothing was written
        """

    @abstractmethod
    async def list_expired_holds(self, now: datetime) -> List[Appointment]:
        """Unpaid appointments whose payment hold has elapsed."""

    @abstractmethod
    async def list_transitions(self, appointment_id: str) -> List[StatusTransition]:
        """Status audit trail, oldest first."""

    async def close(self) -> None:
        """Release backend resources."""
