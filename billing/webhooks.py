"""
Stripe webhook handling with signature verification.

Security:
- All webhooks verified using the endpoint signing secret
- The body must be the raw bytes Stripe signed, never a re-serialized copy
- Unverified payloads are never logged or processed
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional, Tuple

import stripe

import accounts.service as accounts
from app.config import BillingConfig

_logger = logging.getLogger(__name__)

PAYMENT_FAILED_EVENT = "invoice.payment_failed"


class WebhookError(Exception):
    """Webhook processing error."""
    pass


class SignatureVerificationError(WebhookError):
    """Webhook signature verification failed."""
    pass


def verify_webhook(payload: bytes, signature: Optional[str], endpoint_secret: str):
    """
    Verify Stripe webhook signature and parse event.

    Args:
        payload: Raw request body bytes
        signature: Stripe-Signature header value
        endpoint_secret: Webhook endpoint signing secret

    Returns:
        A stripe.Event when the body is a JSON object, otherwise the
        decoded JSON value as-is

    Raises:
        SignatureVerificationError: If the signature is missing or invalid
        WebhookError: If the payload is not valid JSON
    """
    if not endpoint_secret:
        raise SignatureVerificationError("Webhook secret not configured")

    if not signature:
        raise SignatureVerificationError("Missing stripe-signature header")

    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise WebhookError(f"Failed to parse webhook: {e}") from e

    try:
        stripe.WebhookSignature.verify_header(
            payload, signature, endpoint_secret, stripe.Webhook.DEFAULT_TOLERANCE
        )
    except stripe.SignatureVerificationError as e:
        raise SignatureVerificationError("Invalid webhook signature") from e

    try:
        data = json.loads(payload)
    except ValueError as e:
        raise WebhookError(f"Failed to parse webhook: {e}") from e

    # construct_from only accepts objects; other JSON values are still signed events
    if isinstance(data, dict):
        return stripe.Event.construct_from(data, None)
    return data


def _event_summary(event: Any) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """(id, type, subscription id) of an event, all None for non-object bodies."""
    if not isinstance(event, Mapping):
        return None, None, None

    data = event.get("data")
    invoice = data.get("object") if isinstance(data, Mapping) else None
    subscription_id = invoice.get("subscription") if isinstance(invoice, Mapping) else None
    return event.get("id"), event.get("type"), subscription_id


def _serialize(event: Any) -> str:
    try:
        return json.dumps(event, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return repr(event)


def handle_invoice_payment_failed(event, config: BillingConfig) -> None:
    """
    Log a verified invoice.payment_failed event.

    Any verified body is logged exactly once, whatever its shape. Team
    reconciliation only runs when BILLING_DEACTIVATE_ON_PAYMENT_FAILURE
    is enabled.
    """
    event_id, event_type, subscription_id = _event_summary(event)

    _logger.info(
        f"Stripe webhook event id={event_id} type={event_type} "
        f"subscription={subscription_id}: {_serialize(event)}",
        extra={"event_id": event_id, "subscription_id": subscription_id},
    )

    if not config.deactivate_on_payment_failure:
        return

    if event_type != PAYMENT_FAILED_EVENT or not subscription_id:
        return

    try:
        accounts.cancel_subscription_after_failed_payment(subscription_id)
    except accounts.AccountError as e:
        _logger.warning(f"Payment failure not reconciled for {subscription_id}: {e}")
