"""
Booking engine facade.

Every operation the HTTP layer, the payment webhook and the expiry sweep
need goes through BookingService. It owns no state of its own: the store is
the single source of truth and the clock is injected so tests can pin "now".
"""

from datetime import date, datetime, time, timedelta
from typing import Callable, List, Optional, Tuple

from booking.availability import fits_grid, resolve_available
from booking.grid import generate_grid
from booking.lifecycle import Actor, Trigger, cancel_trigger, validate_transition
from booking.policy import CancellationPolicy, PolicyDecision
from booking.reschedule import RescheduleCoordinator
from db.base import AppointmentStore
from models.appointment import (
    Appointment,
    AppointmentRequest,
    AppointmentStatus,
    StatusTransition,
)
from models.provider import Provider, get_provider
from models.schedule import BusinessHours
from models.service import Service, get_service
from payments.stripe import (
    cancel_payment_intent,
    create_payment_intent,
    get_payment_intent,
)
from utils.datetime_utils import add_minutes, format_hhmm, local_now
from utils.exceptions import (
    AlreadyCancelled,
    InvalidTransition,
    NotFound,
    PaymentIntentError,
    SlotNotBookable,
)
from utils.logging_config import setup_logging

logger = setup_logging(name=__name__)


class BookingService:
    """Appointment scheduling and availability engine."""

    def __init__(
        self,
        store: AppointmentStore,
        hours: BusinessHours,
        tz_name: str,
        notice_hours: int = 24,
        payment_expiry_minutes: int = 15,
        currency: str = "brl",
        notifier=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if store.step_minutes != hours.step_minutes:
            raise ValueError("Store and business hours must use the same grid step")
        self.store = store
        self.hours = hours
        self.tz_name = tz_name
        self.policy = CancellationPolicy(tz_name, notice_hours=notice_hours)
        self.coordinator = RescheduleCoordinator(store, self.policy)
        self.payment_expiry = timedelta(minutes=payment_expiry_minutes)
        self.currency = currency
        self.notifier = notifier
        self._clock = clock or (lambda: local_now(tz_name))

    def now(self) -> datetime:
        """Current clinic-local time (timezone-aware)."""
        return self._clock()

    # ========== Catalog ==========

    @staticmethod
    def resolve_service(service_id: str) -> Service:
        service = get_service(service_id)
        if service is None:
            raise NotFound(f"Service {service_id} not found")
        return service

    @staticmethod
    def resolve_provider(provider_id: str) -> Provider:
        provider = get_provider(provider_id)
        if provider is None:
            raise NotFound(f"Provider {provider_id} not found")
        return provider

    # ========== Availability ==========

    def grid_for(self, day: date) -> List[time]:
        return generate_grid(day, self.hours, self.now())

    async def get_availability(
        self,
        provider_id: str,
        day: date,
        duration_minutes: int,
        ignore_id: Optional[str] = None,
    ) -> List[time]:
        """
        Start times a request of `duration_minutes` may book right now.

        A read, not a reservation: a returned slot can still be lost to a
        concurrent booking, which then fails with SlotConflict.

        Args:
            provider_id: Provider to check
            day: Local calendar date
            duration_minutes: Requested service duration
            ignore_id: Appointment whose claims are ignored (reschedule predecessor)
        """
        self.resolve_provider(provider_id)
        grid = self.grid_for(day)
        if not grid:
            return []
        appointments = await self.store.list_by_provider(provider_id, day, occupying_only=True)
        return resolve_available(
            grid, appointments, duration_minutes, self.hours.step_minutes, ignore_id=ignore_id
        )

    # ========== Creation ==========

    def _build_appointment(self, request: AppointmentRequest) -> Appointment:
        """
        Snapshot the catalog into a new appointment record.

        Raises:
            NotFound: Unknown or inactive service/provider
            SlotNotBookable: Start is not a legal grid start for this duration
        """
        service = self.resolve_service(request.service_id)
        provider = self.resolve_provider(request.provider_id)

        grid = self.grid_for(request.date)
        if not fits_grid(request.start_time, grid, service.duration_minutes, self.hours.step_minutes):
            logger.info(
                f"Refused {request.date} {format_hhmm(request.start_time)} for "
                f"{service.id} ({service.duration_minutes} min): not on the grid"
            )
            raise SlotNotBookable()

        now = self.now()
        return Appointment(
            service_id=service.id,
            provider_id=provider.id,
            service_name=service.name,
            provider_name=provider.name,
            price_cents=service.price_cents,
            duration_minutes=service.duration_minutes,
            date=request.date,
            start_time=request.start_time,
            end_time=add_minutes(request.start_time, service.duration_minutes),
            contact=request.contact,
            created_at=now,
            payment_expires_at=now + self.payment_expiry,
        )

    async def create_appointment(self, request: AppointmentRequest) -> Appointment:
        """
        Book a slot and hold it while the client pays.

        Returns:
            The stored appointment in `awaiting_payment`

        Raises:
            NotFound, SlotNotBookable: Bad request
            SlotConflict: Someone else holds an overlapping slot
        """
        candidate = self._build_appointment(request)
        appointment = await self.store.create_if_no_conflict(candidate, Trigger.CREATED)
        logger.info(
            f"Created appointment {appointment.id} for {appointment.provider_id} on "
            f"{appointment.date} at {format_hhmm(appointment.start_time)} "
            f"({appointment.duration_minutes} min)"
        )
        return appointment

    async def reschedule(self, predecessor_id: str, request: AppointmentRequest) -> Appointment:
        """
        Move a paid appointment to a new slot.

        The successor may reuse any of the predecessor's own slots.

        Raises:
            NotFound, IdentityMismatch, NotEligible, TooLate: Guard failures
            SlotNotBookable, SlotConflict: The new slot cannot be booked
        """

        async def build_successor(predecessor: Appointment) -> Appointment:
            return self._build_appointment(request)

        successor = await self.coordinator.reschedule(
            predecessor_id, request, self.now(), build_successor
        )
        await self._notify("send_confirmation", successor)
        return successor

    # ========== Status changes ==========

    async def get(self, appointment_id: str) -> Appointment:
        appointment = await self.store.get(appointment_id)
        if appointment is None:
            raise NotFound()
        return appointment

    async def describe(self, appointment_id: str) -> Tuple[Appointment, PolicyDecision]:
        """Appointment plus whether the client may still cancel or reschedule it."""
        appointment = await self.get(appointment_id)
        return appointment, self.policy.evaluate(appointment, self.now())

    async def cancel(self, appointment_id: str, actor: Actor) -> Appointment:
        """
        Cancel an appointment and free its slots.

        Clients must respect the notice window; administrators bypass it.

        Raises:
            NotFound: No such appointment
            AlreadyCancelled: Already cancelled
            TooLate: Client cancel inside the notice window
            InvalidTransition: Appointment is completed, or its hold was already paid
            PaymentIntentError: Stripe could not say whether the hold was paid
        """
        appointment = await self.get(appointment_id)
        if actor == Actor.CLIENT:
            self.policy.enforce(appointment, self.now())
        elif appointment.status == AppointmentStatus.CANCELLED:
            raise AlreadyCancelled()

        if appointment.status == AppointmentStatus.AWAITING_PAYMENT:
            await self._release_payment(appointment)
        cancelled = await self.store.update_status(
            appointment_id, AppointmentStatus.CANCELLED, cancel_trigger(actor)
        )
        logger.info(f"Appointment {appointment_id} cancelled by {actor.value}")
        await self._notify("send_cancellation", cancelled)
        return cancelled

    async def confirm_payment(
        self, appointment_id: str, payment_intent_id: Optional[str] = None
    ) -> Appointment:
        """
        Mark a held appointment as paid.

        Idempotent: confirming an already scheduled appointment returns it
        unchanged and records nothing.

        Raises:
            NotFound: No such appointment
            InvalidTransition: Appointment is cancelled or completed
        """
        appointment = await self.get(appointment_id)
        if appointment.status == AppointmentStatus.SCHEDULED:
            logger.info(f"Payment for appointment {appointment_id} already confirmed")
            return appointment

        if appointment.status != AppointmentStatus.AWAITING_PAYMENT:
            logger.warning(
                f"Payment {payment_intent_id} arrived for appointment {appointment_id} "
                f"in status {appointment.status.value}; needs a manual refund"
            )
            validate_transition(
                appointment.status, AppointmentStatus.SCHEDULED, Trigger.PAYMENT_CONFIRMED
            )

        if payment_intent_id and appointment.payment_intent_id != payment_intent_id:
            if appointment.payment_intent_id:
                raise InvalidTransition(
                    f"Payment {payment_intent_id} does not belong to appointment {appointment_id}"
                )
            await self.store.attach_payment(appointment_id, payment_intent_id)

        try:
            scheduled = await self.store.update_status(
                appointment_id, AppointmentStatus.SCHEDULED, Trigger.PAYMENT_CONFIRMED
            )
        except InvalidTransition:
            # Another confirmation of the same payment won the write
            current = await self.get(appointment_id)
            if current.status != AppointmentStatus.SCHEDULED:
                raise
            logger.info(f"Payment for appointment {appointment_id} confirmed concurrently")
            return current
        logger.info(f"Payment confirmed for appointment {appointment_id}")
        await self._notify("send_confirmation", scheduled)
        return scheduled

    async def complete(self, appointment_id: str) -> Appointment:
        """Administrator marks a scheduled appointment as done."""
        completed = await self.store.update_status(
            appointment_id, AppointmentStatus.COMPLETED, Trigger.ADMIN_COMPLETE
        )
        logger.info(f"Appointment {appointment_id} completed")
        return completed

    async def expire_hold(self, appointment_id: str) -> Optional[Appointment]:
        """
        Release an unpaid hold. Returns None when the appointment is no
        longer awaiting payment.
        """
        appointment = await self.get(appointment_id)
        if appointment.status != AppointmentStatus.AWAITING_PAYMENT:
            return None
        expired = await self.store.update_status(
            appointment_id, AppointmentStatus.CANCELLED, Trigger.PAYMENT_EXPIRED
        )
        logger.info(f"Payment hold for appointment {appointment_id} expired")
        return expired

    async def expire_unpaid(self) -> int:
        """
        Cancel every appointment whose payment hold has elapsed.

        Returns:
            Number of holds released
        """
        expired = 0
        for appointment in await self.store.list_expired_holds(self.now()):
            try:
                await self._release_payment(appointment)
                await self.store.update_status(
                    appointment.id, AppointmentStatus.CANCELLED, Trigger.PAYMENT_EXPIRED
                )
            except InvalidTransition:
                # Paid or cancelled between the listing and the write
                logger.warning(f"Hold for appointment {appointment.id} changed before expiry")
                continue
            except PaymentIntentError as e:
                logger.warning(
                    f"Keeping hold for appointment {appointment.id} until the next sweep: {e}"
                )
                continue
            expired += 1
            logger.info(f"Payment hold for appointment {appointment.id} expired")
        return expired

    # ========== Payments ==========

    async def _release_payment(self, appointment: Appointment) -> None:
        """
        Make sure an unpaid hold can no longer be charged before its slots
        are given back.

        Stripe refuses to cancel an intent that already succeeded, so a
        refusal is checked against the intent itself. A paid intent is
        recorded as a confirmation instead of being released.

        Raises:
            InvalidTransition: The hold was paid and is now scheduled
            PaymentIntentError: The intent is still in flight or Stripe is unreachable
        """
        payment_intent_id = appointment.payment_intent_id
        if not payment_intent_id or await cancel_payment_intent(payment_intent_id):
            return

        payment_intent = await get_payment_intent(payment_intent_id)
        status = payment_intent.get("status") if payment_intent is not None else None
        if status in (None, "canceled"):
            return
        if status == "succeeded":
            logger.warning(
                f"Hold for appointment {appointment.id} was paid by {payment_intent_id}; "
                f"confirming instead of releasing"
            )
            await self.confirm_payment(appointment.id, payment_intent_id=payment_intent_id)
            raise InvalidTransition(f"Appointment {appointment.id} was paid before it was released")
        raise PaymentIntentError(f"Payment intent {payment_intent_id} is {status}")

    async def start_checkout(self, appointment_id: str) -> dict:
        """
        Create (or reuse) the payment intent for a held appointment.

        Returns:
            Dict with client_secret, payment_intent_id, amount, currency and expires_at

        Raises:
            NotFound: No such appointment
            InvalidTransition: Not awaiting payment, or the hold has elapsed
            PaymentIntentError: Stripe failed
        """
        appointment = await self.get(appointment_id)
        if appointment.status != AppointmentStatus.AWAITING_PAYMENT:
            raise InvalidTransition(
                f"Appointment {appointment_id} is {appointment.status.value}, not awaiting payment"
            )
        if appointment.payment_expires_at and appointment.payment_expires_at <= self.now():
            raise InvalidTransition(f"Payment hold for appointment {appointment_id} has expired")

        payment_intent = None
        if appointment.payment_intent_id:
            payment_intent = await get_payment_intent(appointment.payment_intent_id)
        if payment_intent is None:
            payment_intent = await create_payment_intent(appointment, currency=self.currency)
            await self.store.attach_payment(appointment_id, payment_intent.id)
        if not payment_intent.client_secret:
            raise PaymentIntentError(f"Payment intent {payment_intent.id} has no client secret")

        return {
            "client_secret": payment_intent.client_secret,
            "payment_intent_id": payment_intent.id,
            "amount": appointment.price_cents,
            "currency": self.currency,
            "expires_at": appointment.payment_expires_at,
        }

    # ========== Queries ==========

    async def list_day(self, provider_id: str, day: date) -> List[Appointment]:
        """All appointments for a provider-day, cancelled ones included."""
        self.resolve_provider(provider_id)
        return await self.store.list_by_provider(provider_id, day)

    async def history(self, appointment_id: str) -> List[StatusTransition]:
        await self.get(appointment_id)
        return await self.store.list_transitions(appointment_id)

    # ========== Helpers ==========

    async def _notify(self, method: str, appointment: Appointment) -> None:
        if self.notifier is None:
            return
        try:
            await getattr(self.notifier, method)(appointment)
        except Exception as e:
            logger.error(
                f"Notification {method} failed for appointment {appointment.id}: {e}",
                exc_info=True,
            )
