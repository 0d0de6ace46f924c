"""
Reschedule coordinator.

A reschedule never edits the booked appointment in place. A successor is
created as `scheduled` and the predecessor is retired to `cancelled`; both
writes happen inside one store transaction, so either both land or neither.
"""

from datetime import datetime
from typing import Awaitable, Callable, Optional

from booking.policy import CancellationPolicy
from db.base import AppointmentStore
from models.appointment import Appointment, AppointmentRequest, AppointmentStatus
from utils.exceptions import IdentityMismatch, NotEligible, NotFound
from utils.logging_config import setup_logging

logger = setup_logging(name=__name__)

SuccessorBuilder = Callable[[Appointment], Awaitable[Appointment]]


class RescheduleCoordinator:
    """Guards and commits a reschedule."""

    def __init__(self, store: AppointmentStore, policy: CancellationPolicy):
        self.store = store
        self.policy = policy

    def verify(
        self,
        predecessor: Optional[Appointment],
        request: AppointmentRequest,
        now: datetime,
    ) -> Appointment:
        """
        Run every guard before anything is written.

        Raises:
            NotFound: No predecessor
            IdentityMismatch: Contact email differs from the booking's
            NotEligible: Predecessor is not `scheduled`
            TooLate: Inside the cancellation notice window
        """
        if predecessor is None:
            raise NotFound()

        # EmailStr already normalized both sides; compare exactly
        if request.contact.email != predecessor.contact.email:
            logger.info(f"Reschedule of {predecessor.id} refused: email mismatch")
            raise IdentityMismatch()

        if predecessor.status != AppointmentStatus.SCHEDULED:
            logger.info(
                f"Reschedule of {predecessor.id} refused: status is {predecessor.status.value}"
            )
            raise NotEligible()

        self.policy.enforce(predecessor, now)
        return predecessor

    async def reschedule(
        self,
        predecessor_id: str,
        request: AppointmentRequest,
        now: datetime,
        build_successor: SuccessorBuilder,
    ) -> Appointment:
        """
        Replace a scheduled appointment with a new one.

        Args:
            predecessor_id: Appointment being moved
            request: New service, provider, date, time and contact
            now: Current local time
            build_successor: Validates the new slot and builds the successor
                record; receives the predecessor so its slots can be ignored

        Returns:
            The stored successor

        Raises:
            NotFound, IdentityMismatch, NotEligible, TooLate: Guard failures,
                raised before any write
            SlotNotBookable: The new start is not a legal grid start
            SlotConflict: The new slot is taken; predecessor left unchanged
        """
        predecessor = self.verify(await self.store.get(predecessor_id), request, now)

        successor = await build_successor(predecessor)
        successor = successor.model_copy(
            update={
                "status": AppointmentStatus.SCHEDULED,
                "rescheduled_from": predecessor.id,
                "payment_intent_id": predecessor.payment_intent_id,
                "payment_expires_at": None,
            }
        )

        created = await self.store.reschedule(predecessor.id, successor)
        logger.info(
            f"Rescheduled appointment {predecessor.id} -> {created.id} "
            f"({created.date} {created.start_time:%H:%M})"
        )
        return created
