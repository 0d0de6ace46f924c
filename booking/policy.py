"""Cancellation policy gate for client-initiated cancel and reschedule."""

from datetime import datetime
from enum import Enum

from models.appointment import Appointment, AppointmentStatus
from utils.constants import SECONDS_IN_HOUR
from utils.exceptions import AlreadyCancelled, TooLate


class PolicyDecision(str, Enum):
    ALLOWED = "allowed"
    TOO_LATE = "too_late"
    ALREADY_CANCELLED = "already_cancelled"


class CancellationPolicy:
    """Allows self-service changes only with enough notice before the start."""

    def __init__(self, tz_name: str, notice_hours: int = 24):
        self.tz_name = tz_name
        self.notice_hours = notice_hours

    def hours_until_start(self, appointment: Appointment, now: datetime) -> float:
        delta = appointment.start_instant(self.tz_name) - now
        return delta.total_seconds() / SECONDS_IN_HOUR

    def evaluate(self, appointment: Appointment, now: datetime) -> PolicyDecision:
        if appointment.status == AppointmentStatus.CANCELLED:
            return PolicyDecision.ALREADY_CANCELLED
        if self.hours_until_start(appointment, now) >= self.notice_hours:
            return PolicyDecision.ALLOWED
        return PolicyDecision.TOO_LATE

    def enforce(self, appointment: Appointment, now: datetime) -> None:
        """
        Raise unless a client may change this appointment now.

        Raises:
            AlreadyCancelled: The appointment is already cancelled
            TooLate: Less than `notice_hours` remain before the start
        """
        decision = self.evaluate(appointment, now)
        if decision == PolicyDecision.ALREADY_CANCELLED:
            raise AlreadyCancelled()
        if decision == PolicyDecision.TOO_LATE:
            raise TooLate(
                f"Less than {self.notice_hours} hours remain before the appointment. "
                f"Please contact the clinic directly."
            )
