"""
HTTP API for the clinic booking service.

Routes:
- Public: catalog, availability, create, view, checkout, cancel, reschedule
- Admin (X-Admin-Token header): day list, history, complete, cancel
- Stripe webhook with signature verification and event-id idempotency
- Health check with webhook metrics
"""

import hmac
import json
import sys
import time
from collections import deque
from datetime import date
from typing import Dict, Optional

from aiohttp import web
from aiohttp.web import Request, Response
from pydantic import ValidationError as PydanticValidationError

from booking.lifecycle import Actor
from booking.policy import PolicyDecision
from booking.service import BookingService
from config import settings
from db import get_store
from models.appointment import Appointment, AppointmentRequest
from models.provider import get_all_providers
from models.schedule import BusinessHours
from models.service import get_all_services
from notifications import EmailNotifier, cancel_link
from payments import handle_webhook, verify_webhook_event
from scheduler import setup_scheduler, shutdown_scheduler
from utils.constants import MAX_REQUEST_BODY_SIZE
from utils.datetime_utils import format_hhmm, to_iso_string
from utils.exceptions import (
    AlreadyCancelled,
    BookingError,
    IdentityMismatch,
    InvalidTransition,
    NotEligible,
    NotFound,
    PaymentError,
    SlotConflict,
    SlotNotBookable,
    StoreError,
    TooLate,
    ValidationError,
    WebhookVerificationError,
)
from utils.logging_config import setup_logging

logger = setup_logging(name=__name__, log_file="server.log")

SERVICE_KEY = web.AppKey("booking_service", BookingService)
SCHEDULER_KEY = web.AppKey("run_scheduler", bool)

ADMIN_TOKEN_HEADER = "X-Admin-Token"

_MAX_EVENT_HISTORY = 1000  # Keep last 1000 events for metrics
_EVENT_ID_CLEANUP_INTERVAL = 3600  # 1 hour in seconds
_EVENT_ID_MAX_AGE = 86400  # 24 hours - max age for event ID cache

_ERROR_STATUS = {
    SlotConflict: 409,
    AlreadyCancelled: 409,
    TooLate: 409,
    NotEligible: 409,
    InvalidTransition: 409,
    IdentityMismatch: 403,
    NotFound: 404,
    SlotNotBookable: 422,
    StoreError: 503,
}

# Errors whose details are internal; the client gets the generic message
_GENERIC_MESSAGE_ERRORS = (InvalidTransition, StoreError)

# Webhook event tracking with automatic cleanup
_processed_events: deque = deque(maxlen=_MAX_EVENT_HISTORY)
_processed_event_ids: Dict[str, float] = {}  # event_id -> timestamp
_last_cleanup_time = time.time()

# Health metrics
_health_metrics = {
    "total_events": 0,
    "successful_events": 0,
    "failed_events": 0,
    "verification_failures": 0,
    "validation_failures": 0,
    "duplicate_events": 0,
    "start_time": time.time(),
}


# ========== Webhook idempotency ==========


def _cleanup_old_event_ids() -> None:
    """Remove event IDs older than max age to prevent unbounded growth."""
    global _last_cleanup_time
    current_time = time.time()

    if current_time - _last_cleanup_time < _EVENT_ID_CLEANUP_INTERVAL:
        return

    cutoff_time = current_time - _EVENT_ID_MAX_AGE
    expired_ids = [
        event_id
        for event_id, timestamp in _processed_event_ids.items()
        if timestamp < cutoff_time
    ]
    for event_id in expired_ids:
        _processed_event_ids.pop(event_id, None)

    _last_cleanup_time = current_time
    if expired_ids:
        logger.debug(f"Cleaned up {len(expired_ids)} expired event IDs")


def _check_and_mark_idempotency(event_id: str) -> bool:
    """
    Check if event has already been processed and mark it if not.

    Returns:
        True if event was already processed, False if newly marked
    """
    _cleanup_old_event_ids()

    if event_id in _processed_event_ids:
        return True

    # Mark immediately so a concurrent delivery of the same event is skipped
    _processed_event_ids[event_id] = time.time()
    return False


# ========== Serialization ==========


def _error_response(status: int, error: str, message: str, **extra) -> Response:
    return web.json_response(
        {"status": "error", "error": error, "message": message, **extra},
        status=status,
    )


def appointment_json(appointment: Appointment) -> dict:
    data = appointment.model_dump(mode="json")
    data["start_time"] = format_hhmm(appointment.start_time)
    data["end_time"] = format_hhmm(appointment.end_time)
    return data


def _parse_date(value: Optional[str], field: str = "date") -> date:
    if not value:
        raise ValidationError(f"'{field}' is required (YYYY-MM-DD)")
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise ValidationError(f"'{field}' must be a date in YYYY-MM-DD format") from e


async def _read_request(request: Request) -> AppointmentRequest:
    try:
        body = await request.json()
    except ValueError as e:
        raise ValidationError("Request body must be JSON") from e
    return AppointmentRequest.model_validate(body)


def _require_admin(request: Request) -> None:
    expected = settings.admin_api_token
    supplied = request.headers.get(ADMIN_TOKEN_HEADER, "")
    if not expected or not hmac.compare_digest(supplied.encode(), expected.encode()):
        logger.warning(f"Rejected admin request to {request.path}")
        raise web.HTTPUnauthorized(
            text=json.dumps(
                {"status": "error", "error": "unauthorized", "message": "Admin token required"}
            ),
            content_type="application/json",
        )


# ========== Middleware ==========


@web.middleware
async def security_headers_middleware(request: Request, handler):
    """Add security headers to all responses."""
    try:
        response = await handler(request)
    except web.HTTPException as exc:
        response = exc

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

    # Only allow POST for webhook endpoint
    if request.path.startswith("/webhook/"):
        response.headers["Allow"] = "POST"

    if isinstance(response, web.HTTPException):
        raise response
    return response


@web.middleware
async def error_middleware(request: Request, handler):
    """Translate engine errors into JSON responses."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except BookingError as e:
        status = next(
            (code for exc_type, code in _ERROR_STATUS.items() if isinstance(e, exc_type)),
            500,
        )
        message = e.message if isinstance(e, _GENERIC_MESSAGE_ERRORS) else e.detail
        extra = {"contact": settings.clinic_phone} if isinstance(e, TooLate) else {}
        if status >= 500:
            logger.error(f"{request.method} {request.path} failed: {e.detail}")
        else:
            logger.info(f"{request.method} {request.path} refused: {e.code}")
        return _error_response(status, e.code, message, **extra)
    except PydanticValidationError as e:
        return _error_response(
            400,
            "validation_failed",
            "Invalid request",
            details=json.loads(e.json(include_url=False, include_input=False)),
        )
    except ValidationError as e:
        return _error_response(400, "validation_failed", str(e))
    except PaymentError as e:
        logger.error(f"{request.method} {request.path} payment error: {e}")
        return _error_response(
            502, "payment_unavailable", "Payment provider unavailable. Please try again."
        )
    except Exception as e:
        logger.error(f"Unexpected error on {request.method} {request.path}: {e}", exc_info=True)
        return _error_response(500, "internal_error", "Something went wrong. Please try again.")


# ========== Public routes ==========


async def list_services(request: Request) -> Response:
    return web.json_response(
        {"services": [s.model_dump(mode="json") for s in get_all_services()]}
    )


async def list_providers(request: Request) -> Response:
    return web.json_response(
        {"providers": [p.model_dump(mode="json") for p in get_all_providers()]}
    )


async def availability_handler(request: Request) -> Response:
    """GET /providers/{provider_id}/availability?date=&service_id=[&reschedule_id=]"""
    service = request.app[SERVICE_KEY]
    provider_id = request.match_info["provider_id"]
    day = _parse_date(request.query.get("date"))
    service_id = request.query.get("service_id")
    if not service_id:
        raise ValidationError("'service_id' is required")

    catalog_service = service.resolve_service(service_id)
    slots = await service.get_availability(
        provider_id,
        day,
        catalog_service.duration_minutes,
        ignore_id=request.query.get("reschedule_id") or None,
    )
    return web.json_response(
        {
            "provider_id": provider_id,
            "date": day.isoformat(),
            "service_id": service_id,
            "duration_minutes": catalog_service.duration_minutes,
            "slots": [format_hhmm(t) for t in slots],
        }
    )


async def create_appointment_handler(request: Request) -> Response:
    service = request.app[SERVICE_KEY]
    appointment = await service.create_appointment(await _read_request(request))
    return web.json_response(appointment_json(appointment), status=201)


async def get_appointment_handler(request: Request) -> Response:
    service = request.app[SERVICE_KEY]
    appointment, decision = await service.describe(request.match_info["appointment_id"])
    return web.json_response(
        {
            "appointment": appointment_json(appointment),
            "policy": {
                "decision": decision.value,
                "can_change": decision == PolicyDecision.ALLOWED,
                "notice_hours": service.policy.notice_hours,
                "contact": settings.clinic_phone,
            },
            "cancel_url": cancel_link(appointment.id),
        }
    )


async def checkout_handler(request: Request) -> Response:
    service = request.app[SERVICE_KEY]
    checkout = await service.start_checkout(request.match_info["appointment_id"])
    if checkout.get("expires_at"):
        checkout["expires_at"] = to_iso_string(checkout["expires_at"])
    return web.json_response(checkout)


async def cancel_handler(request: Request) -> Response:
    service = request.app[SERVICE_KEY]
    appointment = await service.cancel(request.match_info["appointment_id"], Actor.CLIENT)
    return web.json_response({"status": "cancelled", "appointment": appointment_json(appointment)})


async def reschedule_handler(request: Request) -> Response:
    service = request.app[SERVICE_KEY]
    successor = await service.reschedule(
        request.match_info["appointment_id"], await _read_request(request)
    )
    return web.json_response(appointment_json(successor), status=201)


# ========== Admin routes ==========


async def admin_list_handler(request: Request) -> Response:
    _require_admin(request)
    service = request.app[SERVICE_KEY]
    provider_id = request.query.get("provider_id")
    if not provider_id:
        raise ValidationError("'provider_id' is required")
    day = _parse_date(request.query.get("date"))
    appointments = await service.list_day(provider_id, day)
    return web.json_response({"appointments": [appointment_json(a) for a in appointments]})


async def admin_history_handler(request: Request) -> Response:
    _require_admin(request)
    service = request.app[SERVICE_KEY]
    transitions = await service.history(request.match_info["appointment_id"])
    return web.json_response({"transitions": [t.model_dump(mode="json") for t in transitions]})


async def admin_complete_handler(request: Request) -> Response:
    _require_admin(request)
    service = request.app[SERVICE_KEY]
    appointment = await service.complete(request.match_info["appointment_id"])
    return web.json_response({"status": "completed", "appointment": appointment_json(appointment)})


async def admin_cancel_handler(request: Request) -> Response:
    _require_admin(request)
    service = request.app[SERVICE_KEY]
    appointment = await service.cancel(request.match_info["appointment_id"], Actor.ADMIN)
    return web.json_response({"status": "cancelled", "appointment": appointment_json(appointment)})


# ========== Stripe webhook ==========


async def stripe_webhook_handler(request: Request) -> Response:
    """
    Handle Stripe webhook events.

    Features:
    - Signature verification
    - Idempotency handling
    - Request validation
    - Proper error responses
    """
    event_id: Optional[str] = None
    event_type: Optional[str] = None

    try:
        raw_body = await request.read()
        if len(raw_body) > MAX_REQUEST_BODY_SIZE:
            logger.warning(f"Request body too large: {len(raw_body)} bytes")
            _health_metrics["validation_failures"] += 1
            return _error_response(
                413,
                "request_too_large",
                f"Request body exceeds maximum size of {MAX_REQUEST_BODY_SIZE} bytes",
            )
        if not raw_body:
            logger.warning("Received empty webhook payload")
            _health_metrics["validation_failures"] += 1
            return _error_response(400, "empty_payload", "Empty payload")

        payload = verify_webhook_event(raw_body, request.headers.get("Stripe-Signature"))
        event_id = str(payload["id"])
        event_type = str(payload["type"])
        logger.info(f"Received Stripe webhook: event_id={event_id}, type={event_type}")

        if _check_and_mark_idempotency(event_id):
            _health_metrics["duplicate_events"] += 1
            logger.info(f"Duplicate webhook event detected: event_id={event_id} (already processed)")
            return web.json_response(
                {
                    "status": "success",
                    "message": "Event already processed",
                    "event_id": event_id,
                    "event_type": event_type,
                }
            )

        _health_metrics["total_events"] += 1
        try:
            result = await handle_webhook(payload, request.app[SERVICE_KEY])
        except Exception:
            # Let Stripe's retry reprocess the event
            _processed_event_ids.pop(event_id, None)
            raise

        _processed_events.append({"id": event_id, "type": event_type, "timestamp": time.time()})
        _health_metrics["successful_events"] += 1
        logger.info(f"Successfully processed webhook: event_id={event_id}, type={event_type}")

        return web.json_response(
            {
                "status": "success",
                "event_id": event_id,
                "event_type": event_type,
                "result": result,
            }
        )

    except WebhookVerificationError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        _health_metrics["verification_failures"] += 1
        return _error_response(401, "verification_failed", "Invalid webhook signature")

    except ValidationError as e:
        logger.warning(f"Invalid webhook payload: {e}")
        _health_metrics["validation_failures"] += 1
        return _error_response(400, "validation_failed", str(e))

    except Exception as e:
        logger.error(
            f"Unexpected webhook error (event_id={event_id or 'unknown'}, "
            f"type={event_type or 'unknown'}): {e}",
            exc_info=True,
        )
        _health_metrics["failed_events"] += 1
        return _error_response(
            500, "processing_failed", "Internal server error while processing webhook"
        )


async def health_check(request: Request) -> Response:
    """Health check endpoint with webhook metrics."""
    _cleanup_old_event_ids()

    uptime_hours = (time.time() - _health_metrics["start_time"]) / 3600
    total = _health_metrics["total_events"]
    success_rate = (_health_metrics["successful_events"] / total * 100) if total > 0 else 0.0

    recent_event_types: Dict[str, int] = {}
    for event in _processed_events:
        event_type = event.get("type", "unknown")
        recent_event_types[event_type] = recent_event_types.get(event_type, 0) + 1

    return web.json_response(
        {
            "status": "ok",
            "service": "clinic-booking",
            "timestamp": time.time(),
            "uptime_hours": round(uptime_hours, 2),
            "metrics": {
                "total_events": total,
                "successful_events": _health_metrics["successful_events"],
                "failed_events": _health_metrics["failed_events"],
                "verification_failures": _health_metrics["verification_failures"],
                "validation_failures": _health_metrics["validation_failures"],
                "duplicate_events": _health_metrics["duplicate_events"],
                "success_rate_percent": round(success_rate, 2),
                "unique_event_ids_tracked": len(_processed_event_ids),
                "recent_event_types": recent_event_types,
            },
            "configuration": {
                "store_backend": settings.store_backend,
                "timezone": settings.timezone,
                "webhook_secret_configured": bool(settings.stripe_webhook_secret),
            },
        }
    )


# ========== Application ==========


def build_service() -> BookingService:
    """Wire the booking engine from settings."""
    return BookingService(
        store=get_store(),
        hours=BusinessHours.from_settings(settings),
        tz_name=settings.timezone,
        notice_hours=settings.cancellation_notice_hours,
        payment_expiry_minutes=settings.payment_expiry_minutes,
        currency=settings.currency,
        notifier=EmailNotifier(),
    )


async def on_startup(app: web.Application) -> None:
    if app[SCHEDULER_KEY]:
        setup_scheduler(app[SERVICE_KEY])


async def on_cleanup(app: web.Application) -> None:
    if app[SCHEDULER_KEY]:
        shutdown_scheduler()
    await app[SERVICE_KEY].store.close()


def create_app(
    service: Optional[BookingService] = None, run_scheduler: bool = True
) -> web.Application:
    """
    Create aiohttp application with middleware and routes.

    Args:
        service: Booking engine (built from settings when omitted)
        run_scheduler: Start the payment hold expiry sweep with the app
    """
    app = web.Application(
        middlewares=[security_headers_middleware, error_middleware],
        client_max_size=MAX_REQUEST_BODY_SIZE,
    )
    app[SERVICE_KEY] = service or build_service()
    app[SCHEDULER_KEY] = run_scheduler

    app.router.add_get("/health", health_check)
    app.router.add_get("/services", list_services)
    app.router.add_get("/providers", list_providers)
    app.router.add_get("/providers/{provider_id}/availability", availability_handler)

    app.router.add_post("/appointments", create_appointment_handler)
    app.router.add_get("/appointments/{appointment_id}", get_appointment_handler)
    app.router.add_post("/appointments/{appointment_id}/checkout", checkout_handler)
    app.router.add_post("/appointments/{appointment_id}/cancel", cancel_handler)
    app.router.add_post("/appointments/{appointment_id}/reschedule", reschedule_handler)

    app.router.add_get("/admin/appointments", admin_list_handler)
    app.router.add_get("/admin/appointments/{appointment_id}/history", admin_history_handler)
    app.router.add_post("/admin/appointments/{appointment_id}/complete", admin_complete_handler)
    app.router.add_post("/admin/appointments/{appointment_id}/cancel", admin_cancel_handler)

    app.router.add_post("/webhook/stripe", stripe_webhook_handler)

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    return app


def main() -> None:
    try:
        settings.validate_all_required()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    logger.info(
        f"Starting booking server on {settings.host}:{settings.port} "
        f"({settings.environment}, store={settings.store_backend})"
    )
    web.run_app(create_app(), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
