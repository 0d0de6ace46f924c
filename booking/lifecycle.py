"""
Appointment lifecycle state machine.

    awaiting_payment --payment_confirmed--> scheduled --admin_complete--> completed
           |                                    |
           +--payment_expired/client_cancel/    +--client_cancel/admin_cancel/
              admin_cancel--> cancelled            reschedule_retire--> cancelled

completed and cancelled are terminal.
"""

from enum import Enum
from typing import Dict, FrozenSet, Tuple

from models.appointment import TERMINAL_STATUSES, AppointmentStatus
from utils.exceptions import InvalidTransition


class Trigger(str, Enum):
    """Who or what asked for a status change."""

    CREATED = "created"
    RESCHEDULED_IN = "rescheduled_in"
    PAYMENT_CONFIRMED = "payment_confirmed"
    PAYMENT_EXPIRED = "payment_expired"
    CLIENT_CANCEL = "client_cancel"
    ADMIN_CANCEL = "admin_cancel"
    ADMIN_COMPLETE = "admin_complete"
    RESCHEDULE_RETIRE = "reschedule_retire"


class Actor(str, Enum):
    CLIENT = "client"
    ADMIN = "admin"


_S = AppointmentStatus

TRANSITIONS: Dict[Tuple[AppointmentStatus, AppointmentStatus], FrozenSet[Trigger]] = {
    (_S.AWAITING_PAYMENT, _S.SCHEDULED): frozenset({Trigger.PAYMENT_CONFIRMED}),
    (_S.AWAITING_PAYMENT, _S.CANCELLED): frozenset(
        {Trigger.PAYMENT_EXPIRED, Trigger.CLIENT_CANCEL, Trigger.ADMIN_CANCEL}
    ),
    (_S.SCHEDULED, _S.COMPLETED): frozenset({Trigger.ADMIN_COMPLETE}),
    (_S.SCHEDULED, _S.CANCELLED): frozenset(
        {Trigger.CLIENT_CANCEL, Trigger.ADMIN_CANCEL, Trigger.RESCHEDULE_RETIRE}
    ),
}

# Status a new appointment starts in, per creation path
INITIAL_STATUS = {
    Trigger.CREATED: _S.AWAITING_PAYMENT,
    Trigger.RESCHEDULED_IN: _S.SCHEDULED,
}


def cancel_trigger(actor: Actor) -> Trigger:
    return Trigger.ADMIN_CANCEL if actor == Actor.ADMIN else Trigger.CLIENT_CANCEL


def is_terminal(status: AppointmentStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(
    current: AppointmentStatus, target: AppointmentStatus, trigger: Trigger
) -> bool:
    return trigger in TRANSITIONS.get((current, target), frozenset())


def validate_transition(
    current: AppointmentStatus, target: AppointmentStatus, trigger: Trigger
) -> None:
    """
    Check a status change against the transition table.

    Raises:
        InvalidTransition: If the change is not allowed for this trigger
    """
    if not can_transition(current, target, trigger):
        raise InvalidTransition(
            f"Cannot move appointment from {current.value} to {target.value} "
            f"via {trigger.value}"
        )
