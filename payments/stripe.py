"""
Stripe payment integration for appointment payments.
"""

import asyncio
import json
from typing import TYPE_CHECKING, Optional

import stripe
from stripe import PaymentIntent

from config import settings
from models.appointment import Appointment
from utils.constants import APPOINTMENT_ID_DISPLAY_LENGTH
from utils.exceptions import (
    BookingError,
    PaymentIntentError,
    StoreError,
    ValidationError,
    WebhookVerificationError,
)
from utils.logging_config import setup_logging

if TYPE_CHECKING:
    from booking.service import BookingService

logger = setup_logging(name=__name__, log_file="payments.log")

# Initialize Stripe
stripe.api_key = settings.stripe_secret_key

# Retry configuration
_MAX_RETRIES = 3
_RETRY_DELAY = 1.0  # seconds
_RETRY_BACKOFF = 2.0  # exponential backoff multiplier

APPOINTMENT_METADATA_KEY = "appointment_id"


async def _call_stripe(func, *args, **kwargs):
    """Run a blocking Stripe call off the event loop with a timeout."""
    return await asyncio.wait_for(
        asyncio.to_thread(func, *args, **kwargs),
        timeout=settings.payment_timeout_seconds,
    )


def _is_client_error(e: stripe.StripeError) -> bool:
    return bool(e.http_status and 400 <= e.http_status < 500)


async def create_payment_intent(
    appointment: Appointment,
    currency: Optional[str] = None,
) -> PaymentIntent:
    """
    Create Stripe payment intent for an appointment.

    Uses async executor to avoid blocking the event loop.
    Includes retry logic for transient failures.

    Args:
        appointment: Appointment awaiting payment
        currency: Currency code (default: settings.currency)

    Returns:
        Stripe PaymentIntent object

    Raises:
        ValueError: If input validation fails
        PaymentIntentError: If Stripe API call fails after retries
    """
    if appointment.price_cents <= 0:
        raise ValueError(f"Invalid amount: {appointment.price_cents} must be positive")

    currency = currency or settings.currency
    delay = _RETRY_DELAY

    for attempt in range(_MAX_RETRIES):
        try:
            payment_intent = await _call_stripe(
                stripe.PaymentIntent.create,
                amount=appointment.price_cents,
                currency=currency,
                metadata={
                    APPOINTMENT_METADATA_KEY: appointment.id,
                    "provider_id": appointment.provider_id,
                },
                description=(
                    f"{appointment.service_name} - {appointment.date:%d/%m/%Y} "
                    f"{appointment.start_time:%H:%M} ({appointment.id[:APPOINTMENT_ID_DISPLAY_LENGTH]})"
                ),
                receipt_email=appointment.contact.email,
                automatic_payment_methods={
                    "enabled": True,
                },
                # Same appointment never gets two intents
                idempotency_key=f"appointment-{appointment.id}",
            )

            logger.info(
                f"Created payment intent {payment_intent.id} for appointment {appointment.id}"
            )
            return payment_intent

        except stripe.StripeError as e:
            # Don't retry on client errors (4xx), only on server errors (5xx) or network issues
            if _is_client_error(e):
                logger.error(
                    f"Stripe client error creating payment intent for appointment {appointment.id}: {e}",
                    exc_info=True,
                )
                raise PaymentIntentError(f"Payment processing error: {e}") from e
            if attempt < _MAX_RETRIES - 1:
                logger.warning(
                    f"Stripe error (attempt {attempt + 1}/{_MAX_RETRIES}) for appointment "
                    f"{appointment.id}: {e}. Retrying in {delay}s..."
                )
                await asyncio.sleep(delay)
                delay *= _RETRY_BACKOFF
            else:
                logger.error(
                    f"Stripe error creating payment intent for appointment {appointment.id} "
                    f"after {_MAX_RETRIES} attempts: {e}",
                    exc_info=True,
                )
                raise PaymentIntentError(
                    f"Payment processing error after {_MAX_RETRIES} attempts: {e}"
                ) from e
        except asyncio.TimeoutError as e:
            if attempt < _MAX_RETRIES - 1:
                logger.warning(
                    f"Stripe timed out (attempt {attempt + 1}/{_MAX_RETRIES}) for appointment "
                    f"{appointment.id}. Retrying in {delay}s..."
                )
                await asyncio.sleep(delay)
                delay *= _RETRY_BACKOFF
            else:
                logger.error(
                    f"Stripe timed out creating payment intent for appointment {appointment.id}"
                )
                raise PaymentIntentError("Payment provider timed out") from e

    raise PaymentIntentError("Failed to create payment intent")


async def get_payment_intent(payment_intent_id: str) -> Optional[PaymentIntent]:
    """
    Get payment intent by ID.

    Uses async executor to avoid blocking the event loop.
    Includes retry logic for transient failures.

    Args:
        payment_intent_id: Stripe payment intent ID

    Returns:
        PaymentIntent object or None if not found

    Raises:
        ValueError: If payment_intent_id is empty
        PaymentIntentError: If Stripe stays unreachable after retries
    """
    if not payment_intent_id:
        raise ValueError("Payment intent ID is required")

    delay = _RETRY_DELAY
    last_error: Optional[Exception] = None

    for attempt in range(_MAX_RETRIES):
        try:
            return await _call_stripe(stripe.PaymentIntent.retrieve, payment_intent_id)
        except stripe.StripeError as e:
            # Don't retry on 404 (not found) or client errors
            if _is_client_error(e):
                logger.debug(
                    f"Payment intent {payment_intent_id} not found or client error: {e}"
                )
                return None
            last_error = e
        except asyncio.TimeoutError as e:
            last_error = e

        if attempt < _MAX_RETRIES - 1:
            logger.warning(
                f"Stripe error (attempt {attempt + 1}/{_MAX_RETRIES}) retrieving payment "
                f"intent {payment_intent_id}: {last_error!r}. Retrying in {delay}s..."
            )
            await asyncio.sleep(delay)
            delay *= _RETRY_BACKOFF

    logger.error(
        f"Could not retrieve payment intent {payment_intent_id} after {_MAX_RETRIES} attempts"
    )
    raise PaymentIntentError(f"Could not retrieve payment intent {payment_intent_id}")


async def cancel_payment_intent(payment_intent_id: str) -> bool:
    """
    Cancel an unpaid payment intent so it can no longer be charged.

    Returns:
        True if Stripe accepted the cancellation
    """
    try:
        await _call_stripe(stripe.PaymentIntent.cancel, payment_intent_id)
        logger.info(f"Cancelled payment intent {payment_intent_id}")
        return True
    except stripe.StripeError as e:
        # Already succeeded or already cancelled
        logger.warning(f"Could not cancel payment intent {payment_intent_id}: {e}")
        return False
    except asyncio.TimeoutError:
        logger.warning(f"Timed out cancelling payment intent {payment_intent_id}")
        return False


def verify_webhook_event(payload: bytes, signature: Optional[str]) -> dict:
    """
    Verify a Stripe webhook signature and decode the event.

    Without a configured webhook secret (development only) the payload is
    decoded unverified.

    Raises:
        WebhookVerificationError: Bad or missing signature
        ValidationError: Payload is not a JSON event
    """
    if settings.stripe_webhook_secret:
        if not signature:
            raise WebhookVerificationError("Missing Stripe-Signature header")
        try:
            stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError(f"Invalid signature: {e}") from e
        except ValueError as e:
            raise ValidationError(f"Invalid payload: {e}") from e
    elif settings.is_production:
        raise WebhookVerificationError("Webhook secret is not configured")
    else:
        logger.warning("STRIPE_WEBHOOK_SECRET not set - skipping signature verification")

    try:
        event = json.loads(payload)
    except (ValueError, UnicodeDecodeError) as e:
        raise ValidationError(f"Invalid JSON payload: {e}") from e

    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        raise ValidationError("Event must have id and type")
    return event


async def handle_webhook(event_data: dict, service: "BookingService") -> dict:
    """
    Handle Stripe webhook events.

    The event body is only a hint: the intent is retrieved again from
    Stripe and its own status and metadata decide what happens.

    Args:
        event_data: Verified Stripe webhook event
        service: Booking engine

    Returns:
        Response dict
    """
    event_type = event_data.get("type", "")
    if not event_type.startswith("payment_intent."):
        return {"status": "ignored", "event_type": event_type}

    hinted = event_data.get("data", {}).get("object") or {}
    payment_intent_id = hinted.get("id")
    if not payment_intent_id:
        return {"status": "error", "message": "Invalid webhook data"}

    payment_intent = await get_payment_intent(payment_intent_id)
    if payment_intent is None:
        logger.warning(f"Webhook for unknown payment intent {payment_intent_id}")
        return {"status": "ignored", "message": "Unknown payment intent"}

    appointment_id = (payment_intent.get("metadata") or {}).get(APPOINTMENT_METADATA_KEY)
    if not appointment_id:
        logger.warning(f"Payment intent {payment_intent_id} has no appointment_id")
        return {"status": "ignored", "message": "No appointment_id in metadata"}

    status = payment_intent.get("status")
    try:
        if status == "succeeded":
            await service.confirm_payment(appointment_id, payment_intent_id=payment_intent_id)
            logger.info(f"Payment confirmed for appointment {appointment_id}")
            return {"status": "success", "appointment_id": appointment_id}

        if status == "canceled":
            await service.expire_hold(appointment_id)
            return {"status": "expired", "appointment_id": appointment_id}
    except StoreError:
        # Retried by Stripe
        raise
    except BookingError as e:
        logger.warning(
            f"Payment intent {payment_intent_id} ({status}) could not be applied to "
            f"appointment {appointment_id}: {e.code}"
        )
        return {"status": "rejected", "appointment_id": appointment_id, "error": e.code}

    if event_type == "payment_intent.payment_failed":
        # Client may retry with another card until the hold expires
        logger.warning(f"Payment failed for appointment {appointment_id}")
        return {"status": "failed", "appointment_id": appointment_id}

    return {"status": "processed", "event_type": event_type}
