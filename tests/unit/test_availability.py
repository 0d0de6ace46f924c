"""
Unit tests for duration-aware availability.
"""

from datetime import time

import pytest

from booking.availability import (
    claim_range,
    claimed_slots,
    fits_grid,
    occupied_steps,
    ranges_overlap,
    resolve_available,
    steps_needed,
)
from booking.grid import generate_grid
from conftest import NOW, SATURDAY, TUESDAY
from models.appointment import Appointment, AppointmentStatus, ClientContact

STEP = 30


def _appointment(start: time, duration: int, status=AppointmentStatus.SCHEDULED, **kwargs):
    end_minutes = start.hour * 60 + start.minute + duration
    return Appointment(
        service_id="swedish",
        provider_id="dirlene",
        service_name="Massagem Sueca",
        provider_name="Dirlene",
        price_cents=8500,
        duration_minutes=duration,
        date=TUESDAY,
        start_time=start,
        end_time=time(end_minutes // 60, end_minutes % 60),
        contact=ClientContact(name="Ana", email="ana@example.com", phone="+5511999998888"),
        status=status,
        **kwargs,
    )


class TestClaims:
    @pytest.mark.parametrize(
        "duration,expected",
        [(30, 1), (45, 2), (60, 2), (75, 3), (90, 3), (120, 4)],
    )
    def test_steps_needed_rounds_up(self, duration, expected):
        assert steps_needed(duration, STEP) == expected

    def test_steps_needed_rejects_zero(self):
        with pytest.raises(ValueError):
            steps_needed(0, STEP)

    def test_ninety_minutes_claims_three_steps(self):
        assert claimed_slots(time(10, 0), 90, STEP) == [time(10, 0), time(10, 30), time(11, 0)]

    def test_non_multiple_duration_claims_whole_steps(self):
        assert claim_range(time(10, 0), 75, STEP) == (600, 690)

    def test_touching_ranges_do_not_overlap(self):
        assert not ranges_overlap((600, 660), (660, 690))
        assert ranges_overlap((600, 661), (660, 690))


class TestResolveAvailable:
    def test_saturday_empty_day_sixty_minutes(self, hours):
        grid = generate_grid(SATURDAY, hours, NOW)
        available = resolve_available(grid, [], 60, STEP)

        assert available[0] == time(8, 0)
        assert available[-1] == time(13, 0)
        assert time(13, 30) not in available
        assert len(available) == 11

    def test_existing_hour_blocks_its_own_steps_only(self, hours):
        grid = generate_grid(TUESDAY, hours, NOW)
        booked = [_appointment(time(10, 0), 60)]

        available = resolve_available(grid, booked, 30, STEP)

        assert time(10, 0) not in available
        assert time(10, 30) not in available
        assert time(9, 30) in available
        assert time(11, 0) in available

    def test_longer_request_cannot_run_into_a_booking(self, hours):
        grid = generate_grid(TUESDAY, hours, NOW)
        booked = [_appointment(time(10, 0), 60)]

        available = resolve_available(grid, booked, 60, STEP)

        assert time(9, 0) in available
        assert time(9, 30) not in available

    def test_ninety_minutes_cannot_cross_the_break(self, hours):
        grid = generate_grid(TUESDAY, hours, NOW)
        available = resolve_available(grid, [], 90, STEP)

        assert time(10, 30) in available
        assert time(11, 0) not in available
        assert time(11, 30) not in available
        assert time(13, 30) in available

    def test_last_slot_before_closing_fits_only_short_services(self, hours):
        grid = generate_grid(TUESDAY, hours, NOW)

        assert time(19, 30) in resolve_available(grid, [], 30, STEP)
        assert time(19, 30) not in resolve_available(grid, [], 45, STEP)
        assert time(19, 30) not in resolve_available(grid, [], 60, STEP)

    def test_non_multiple_duration_blocks_partial_step(self, hours):
        grid = generate_grid(TUESDAY, hours, NOW)
        booked = [_appointment(time(10, 0), 75)]

        available = resolve_available(grid, booked, 30, STEP)

        assert time(11, 0) not in available
        assert time(11, 30) in available

    def test_cancelled_appointments_free_their_slots(self, hours):
        grid = generate_grid(TUESDAY, hours, NOW)
        booked = [_appointment(time(10, 0), 60, status=AppointmentStatus.CANCELLED)]

        assert time(10, 0) in resolve_available(grid, booked, 60, STEP)

    @pytest.mark.parametrize(
        "status",
        [
            AppointmentStatus.AWAITING_PAYMENT,
            AppointmentStatus.SCHEDULED,
            AppointmentStatus.COMPLETED,
        ],
    )
    def test_occupying_statuses_block(self, hours, status):
        grid = generate_grid(TUESDAY, hours, NOW)
        booked = [_appointment(time(10, 0), 30, status=status)]

        assert time(10, 0) not in resolve_available(grid, booked, 30, STEP)

    def test_ignored_appointment_does_not_block(self, hours):
        grid = generate_grid(TUESDAY, hours, NOW)
        own = _appointment(time(10, 0), 60)

        available = resolve_available(grid, [own], 60, STEP, ignore_id=own.id)

        assert time(10, 0) in available
        assert time(10, 30) in available

    def test_result_follows_grid_order(self, hours):
        grid = generate_grid(TUESDAY, hours, NOW)
        available = resolve_available(grid, [_appointment(time(15, 0), 90)], 30, STEP)
        assert available == sorted(available)


class TestHelpers:
    def test_occupied_steps_in_minutes(self, hours):
        grid = generate_grid(TUESDAY, hours, NOW)
        occupied = occupied_steps(grid, [_appointment(time(10, 0), 90)], STEP)
        assert occupied == {600, 630, 660}

    def test_fits_grid(self, hours):
        grid = generate_grid(TUESDAY, hours, NOW)

        assert fits_grid(time(10, 0), grid, 60, STEP)
        assert not fits_grid(time(11, 30), grid, 60, STEP)
        assert not fits_grid(time(10, 15), grid, 30, STEP)
        assert not fits_grid(time(7, 30), grid, 30, STEP)
