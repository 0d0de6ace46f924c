"""
Unit tests for the payment hold expiry sweep.
"""

from datetime import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from models.appointment import AppointmentStatus
from scheduler import expiry
from scheduler.expiry import EXPIRY_JOB_ID, run_expiry_sweep, set_service_instance
from utils.exceptions import StoreError


@pytest.fixture(autouse=True)
def reset_service_instance():
    yield
    expiry._service_instance = None


@pytest.mark.asyncio
async def test_sweep_without_service():
    expiry._service_instance = None
    assert await run_expiry_sweep() == 0


@pytest.mark.asyncio
async def test_sweep_releases_elapsed_holds(booking_service, make_request, clock):
    stale = await booking_service.create_appointment(make_request(at=time(10, 0)))
    clock.advance(minutes=10)
    fresh = await booking_service.create_appointment(make_request(at=time(14, 0)))
    clock.advance(minutes=6)
    set_service_instance(booking_service)

    assert await run_expiry_sweep() == 1

    assert (await booking_service.get(stale.id)).status == AppointmentStatus.CANCELLED
    assert (await booking_service.get(fresh.id)).status == AppointmentStatus.AWAITING_PAYMENT


@pytest.mark.asyncio
async def test_sweep_is_repeatable(booking_service, make_request, clock):
    await booking_service.create_appointment(make_request())
    clock.advance(minutes=16)
    set_service_instance(booking_service)

    assert await run_expiry_sweep() == 1
    assert await run_expiry_sweep() == 0


@pytest.mark.asyncio
async def test_store_failure_is_logged_not_raised():
    service = MagicMock()
    service.expire_unpaid = AsyncMock(side_effect=StoreError("timeout"))
    set_service_instance(service)

    assert await run_expiry_sweep() == 0


def test_setup_registers_interval_job(booking_service):
    with patch.object(expiry, "scheduler") as mock_scheduler:
        expiry.setup_scheduler(booking_service)

    kwargs = mock_scheduler.add_job.call_args[1]
    assert mock_scheduler.add_job.call_args[0][0] is run_expiry_sweep
    assert kwargs["id"] == EXPIRY_JOB_ID
    assert kwargs["max_instances"] == 1
    mock_scheduler.start.assert_called_once()
    assert expiry._service_instance is booking_service


def test_shutdown_only_when_running():
    with patch.object(expiry, "scheduler") as mock_scheduler:
        mock_scheduler.running = False
        expiry.shutdown_scheduler()
        mock_scheduler.shutdown.assert_not_called()

        mock_scheduler.running = True
        expiry.shutdown_scheduler()
        mock_scheduler.shutdown.assert_called_once()
