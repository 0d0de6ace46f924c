"""
Scheduler for releasing unpaid payment holds using APScheduler.

An appointment awaiting payment blocks its slots until its hold elapses;
this sweep cancels every elapsed hold so the slots become bookable again.

Supports Redis backend for horizontal scaling (multiple server instances).
"""

from typing import TYPE_CHECKING, Optional
from urllib.parse import urlparse

from apscheduler.jobstores.redis import RedisJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import settings
from utils.exceptions import BookingError
from utils.logging_config import setup_logging

if TYPE_CHECKING:
    from booking.service import BookingService

logger = setup_logging(name=__name__, log_file="scheduler.log")

EXPIRY_JOB_ID = "expire_unpaid_holds"


def _create_scheduler() -> AsyncIOScheduler:
    """
    Create scheduler with Redis backend for clustering support.

    Uses the default in-memory job store when Redis is not configured.
    """
    redis_url = settings.redis_url

    if redis_url:
        # Parse Redis URL: redis://host:port/db or redis://:password@host:port/db
        parsed = urlparse(redis_url)
        host = parsed.hostname or "localhost"
        port = parsed.port or 6379
        db = int(parsed.path.lstrip("/")) if parsed.path.lstrip("/") else 0

        jobstores = {
            "default": RedisJobStore(
                host=host,
                port=port,
                db=db,
                password=parsed.password or None,
            )
        }
        logger.info(f"Scheduler using Redis backend: {host}:{port}/{db}")
        return AsyncIOScheduler(jobstores=jobstores, timezone=settings.timezone)

    logger.info("Scheduler using in-memory backend (single instance mode)")
    return AsyncIOScheduler(timezone=settings.timezone)


scheduler = _create_scheduler()

# Booking engine - injected via setup_scheduler
_service_instance: Optional["BookingService"] = None


def set_service_instance(service: "BookingService") -> None:
    """Set the booking engine the sweep runs against."""
    global _service_instance
    _service_instance = service
    logger.info("Booking service set for scheduler")


async def run_expiry_sweep() -> int:
    """
    Cancel every appointment whose payment hold has elapsed.

    Returns:
        Number of holds released (0 if the sweep could not run)
    """
    if _service_instance is None:
        logger.error("Booking service not available - cannot expire holds")
        return 0

    try:
        expired = await _service_instance.expire_unpaid()
    except BookingError as e:
        logger.error(f"Expiry sweep failed: {e.detail}", exc_info=True)
        return 0

    if expired:
        logger.info(f"Expiry sweep released {expired} unpaid hold(s)")
    else:
        logger.debug("No unpaid holds have expired")
    return expired


def setup_scheduler(service: Optional["BookingService"] = None) -> None:
    """Setup and start the scheduler.

    Args:
        service: Booking engine to inject. If None, must be set later via set_service_instance()
    """
    if service:
        set_service_instance(service)

    scheduler.add_job(
        run_expiry_sweep,
        trigger=IntervalTrigger(minutes=settings.expiry_sweep_interval_minutes),
        id=EXPIRY_JOB_ID,
        name="Release unpaid payment holds",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )

    scheduler.start()
    logger.info("Scheduler started")


def shutdown_scheduler() -> None:
    """Shutdown the scheduler."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
