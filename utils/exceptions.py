"""
Custom exception classes for the booking engine.
Every error that crosses the engine boundary is one of these types,
so callers never see raw storage or transport errors.
"""

from typing import Optional


class BookingError(Exception):
    """Base exception for booking engine operations."""

    code = "booking_error"
    message = "Something went wrong. Please try again."

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.message
        super().__init__(self.detail)


class SlotConflict(BookingError):
    """Raised when an occupying appointment already claims an overlapping slot."""

    code = "slot_conflict"
    message = "This time was just taken. Please pick another slot."


class SlotNotBookable(BookingError):
    """Raised when the requested start time is not a legal grid start."""

    code = "slot_not_bookable"
    message = "This time is not available for booking. Please pick another slot."


class InvalidTransition(BookingError):
    """Raised when a status change is not allowed by the lifecycle."""

    code = "invalid_transition"


class IdentityMismatch(BookingError):
    """Raised when reschedule contact email differs from the original booking."""

    code = "identity_mismatch"
    message = "The email does not match the original booking."


class NotEligible(BookingError):
    """Raised when an appointment cannot be rescheduled in its current status."""

    code = "not_eligible"
    message = "Only paid, upcoming appointments can be rescheduled."


class TooLate(BookingError):
    """Raised when a client cancels or reschedules inside the notice window."""

    code = "too_late"
    message = "Less than 24 hours remain. Please contact the clinic directly."


class AlreadyCancelled(BookingError):
    """Raised when cancelling an appointment that is already cancelled."""

    code = "already_cancelled"
    message = "This appointment has already been cancelled."


class NotFound(BookingError):
    """Raised when an appointment, service or provider does not exist."""

    code = "not_found"
    message = "Appointment not found."


class StoreError(BookingError):
    """Raised when the store fails or times out. Safe to retry."""

    code = "store_unavailable"


class PaymentError(Exception):
    """Base exception for payment operations."""

    pass


class PaymentIntentError(PaymentError):
    """Raised when payment intent creation/retrieval fails."""

    pass


class WebhookVerificationError(Exception):
    """Raised when webhook signature verification fails."""

    pass


class ValidationError(Exception):
    """Raised when input validation fails."""

    pass
