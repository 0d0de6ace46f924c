"""
Slot grid generator.
Produces the ordered candidate start times for one provider-day from the
weekly business-hour template.
"""

from datetime import date, datetime, time, timedelta
from typing import List

from models.schedule import BusinessHours, DayHours
from utils.datetime_utils import minutes_of_day, time_from_minutes


def is_within_horizon(day: date, hours: BusinessHours, now: datetime) -> bool:
    """True if `day` lies in [today, today + horizon_days]."""
    today = now.date()
    return today <= day <= today + timedelta(days=hours.horizon_days)


def _day_starts(day_hours: DayHours, step: int) -> List[int]:
    opens = minutes_of_day(day_hours.opens_at)
    closes = minutes_of_day(day_hours.closes_at)
    breaks = [
        (minutes_of_day(b.start), minutes_of_day(b.end)) for b in day_hours.breaks
    ]

    starts = []
    for minute in range(opens, closes, step):
        # A step that touches a break at all is dropped
        if any(minute < b_end and minute + step > b_start for b_start, b_end in breaks):
            continue
        starts.append(minute)
    return starts


def generate_grid(day: date, hours: BusinessHours, now: datetime) -> List[time]:
    """
    Build the grid for `day`.

    Args:
        day: Provider-local calendar date
        hours: Weekly business-hour template
        now: Current local wall-clock time (timezone-aware)

    Returns:
        Ascending list of start times. Empty when the day is closed, outside
        the planning horizon, or every start today has already elapsed.
    """
    if not is_within_horizon(day, hours, now):
        return []

    day_hours = hours.hours_for(day)
    if day_hours is None:
        return []

    starts = _day_starts(day_hours, hours.step_minutes)

    if day == now.date():
        # A start equal to the current minute has already begun
        current = now.hour * 60 + now.minute
        starts = [m for m in starts if m > current]

    return [time_from_minutes(m) for m in starts]
