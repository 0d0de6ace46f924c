"""
Availability resolver.

An occupying appointment claims every grid step its duration touches:
its own start plus ceil(duration / step) - 1 following steps. A start time
is available for a new request when all the steps the request needs are
in the grid and none of them is claimed.
"""

import math
from datetime import time
from typing import Iterable, List, Optional, Set, Tuple

from models.appointment import Appointment
from utils.datetime_utils import minutes_of_day, time_from_minutes


def steps_needed(duration_minutes: int, step_minutes: int) -> int:
    if duration_minutes <= 0:
        raise ValueError("duration must be positive")
    return math.ceil(duration_minutes / step_minutes)


def claim_range(start: time, duration_minutes: int, step_minutes: int) -> Tuple[int, int]:
    """Half-open [start, end) minute range claimed on the grid."""
    start_minute = minutes_of_day(start)
    return start_minute, start_minute + steps_needed(duration_minutes, step_minutes) * step_minutes


def claimed_slots(start: time, duration_minutes: int, step_minutes: int) -> List[time]:
    """Grid steps an appointment of this duration covers, in order."""
    first, end = claim_range(start, duration_minutes, step_minutes)
    return [time_from_minutes(m) for m in range(first, end, step_minutes)]


def ranges_overlap(a: Tuple[int, int], b: Tuple[int, int]) -> bool:
    return a[0] < b[1] and b[0] < a[1]


def appointment_claim(appointment: Appointment, step_minutes: int) -> Tuple[int, int]:
    return claim_range(appointment.start_time, appointment.duration_minutes, step_minutes)


def occupied_steps(
    grid: List[time],
    appointments: Iterable[Appointment],
    step_minutes: int,
    ignore_id: Optional[str] = None,
) -> Set[int]:
    """
    Mark every grid step covered by an occupying appointment.

    Args:
        grid: Grid start times for the day
        appointments: Appointments for the same provider and date
        step_minutes: Grid step
        ignore_id: Appointment to leave out (the predecessor while rescheduling)

    Returns:
        Set of occupied step starts, in minutes of day
    """
    claims = [
        appointment_claim(a, step_minutes)
        for a in appointments
        if a.is_occupying and a.id != ignore_id
    ]
    occupied = set()
    for slot in grid:
        step_range = claim_range(slot, step_minutes, step_minutes)
        if any(ranges_overlap(step_range, claim) for claim in claims):
            occupied.add(step_range[0])
    return occupied


def fits_grid(start: time, grid: List[time], duration_minutes: int, step_minutes: int) -> bool:
    """True if every step a request starting at `start` needs exists in the grid."""
    grid_minutes = {minutes_of_day(t) for t in grid}
    first, end = claim_range(start, duration_minutes, step_minutes)
    return all(m in grid_minutes for m in range(first, end, step_minutes))


def resolve_available(
    grid: List[time],
    appointments: Iterable[Appointment],
    duration_minutes: int,
    step_minutes: int,
    ignore_id: Optional[str] = None,
) -> List[time]:
    """
    Return the grid starts a request of `duration_minutes` may legally occupy.

    A start fails when any needed step runs into a break, past closing time,
    or onto a step claimed by another appointment. Order follows the grid.
    """
    grid_minutes = {minutes_of_day(t) for t in grid}
    occupied = occupied_steps(grid, appointments, step_minutes, ignore_id=ignore_id)

    available = []
    for slot in grid:
        first, end = claim_range(slot, duration_minutes, step_minutes)
        needed = range(first, end, step_minutes)
        if all(m in grid_minutes and m not in occupied for m in needed):
            available.append(slot)
    return available
