"""Payment processing with Stripe."""

from .stripe import (
    cancel_payment_intent,
    create_payment_intent,
    get_payment_intent,
    handle_webhook,
    verify_webhook_event,
)

__all__ = [
    "create_payment_intent",
    "get_payment_intent",
    "cancel_payment_intent",
    "handle_webhook",
    "verify_webhook_event",
]
