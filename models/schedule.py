"""Business-hour template used to build the slot grid."""

from datetime import date, time
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, Field, model_validator

from utils.datetime_utils import parse_hhmm

MONDAY, FRIDAY, SATURDAY = 0, 4, 5


class BreakWindow(BaseModel):
    """Interval removed from the grid entirely."""

    start: time
    end: time

    class Config:
        frozen = True

    @model_validator(mode="after")
    def check_order(self) -> "BreakWindow":
        if self.end <= self.start:
            raise ValueError("break end must be after break start")
        return self


class DayHours(BaseModel):
    """Opening hours for one weekday."""

    opens_at: time
    closes_at: time
    breaks: Tuple[BreakWindow, ...] = ()

    class Config:
        frozen = True

    @model_validator(mode="after")
    def check_bounds(self) -> "DayHours":
        if self.closes_at <= self.opens_at:
            raise ValueError("closing time must be after opening time")
        for window in self.breaks:
            if window.start < self.opens_at or window.end > self.closes_at:
                raise ValueError("break must lie within opening hours")
        return self


class BusinessHours(BaseModel):
    """
    Weekly template keyed by weekday (0=Monday, 6=Sunday).
    A weekday without an entry is closed.
    """

    days: Dict[int, DayHours]
    step_minutes: int = Field(default=30, gt=0, le=120)
    horizon_days: int = Field(default=30, ge=0)

    class Config:
        frozen = True

    def hours_for(self, day: date) -> Optional[DayHours]:
        return self.days.get(day.weekday())

    @classmethod
    def from_settings(cls, settings) -> "BusinessHours":
        """Build the clinic template: Mon-Fri with a break, Saturday short day, Sunday closed."""
        breaks: Tuple[BreakWindow, ...] = ()
        if settings.break_start and settings.break_end:
            breaks = (
                BreakWindow(
                    start=parse_hhmm(settings.break_start),
                    end=parse_hhmm(settings.break_end),
                ),
            )

        weekday = DayHours(
            opens_at=parse_hhmm(settings.weekday_open),
            closes_at=parse_hhmm(settings.weekday_close),
            breaks=breaks,
        )
        days = {d: weekday for d in range(MONDAY, FRIDAY + 1)}
        days[SATURDAY] = DayHours(
            opens_at=parse_hhmm(settings.saturday_open),
            closes_at=parse_hhmm(settings.saturday_close),
        )

        return cls(
            days=days,
            step_minutes=settings.slot_step_minutes,
            horizon_days=settings.planning_horizon_days,
        )
