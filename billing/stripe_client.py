"""
Stripe SDK client construction.

One StripeClient is built at process startup from BillingConfig and handed
to BillingGateway. Nothing in this package sets global ``stripe.api_key``.
"""

from __future__ import annotations

import logging

import stripe

from app.config import BillingConfig, ConfigurationError

_logger = logging.getLogger(__name__)

# Secret (sk_) and restricted (rk_) keys are accepted
_KEY_PREFIXES = ("sk_", "rk_")


def is_valid_secret_key(key: str) -> bool:
    """Check the shape of a Stripe secret key without contacting Stripe."""
    if not key:
        return False
    key = key.strip()
    return key.startswith(_KEY_PREFIXES) and len(key) > 10


def is_test_mode(key: str) -> bool:
    """Check if a key belongs to Stripe test mode."""
    return "_test_" in key


def build_stripe_client(config: BillingConfig) -> stripe.StripeClient:
    """
    Build the Stripe client used for every API call.

    Raises:
        ConfigurationError: If the secret key is missing or malformed
    """
    if not is_valid_secret_key(config.stripe_secret_key):
        raise ConfigurationError("STRIPE_SECRET_KEY is missing or malformed")

    client = stripe.StripeClient(
        config.stripe_secret_key,
        stripe_version=config.stripe_api_version,
    )

    mode = "test" if is_test_mode(config.stripe_secret_key) else "live"
    _logger.info(
        f"Stripe client initialized in {mode} mode",
        extra={"stripe_version": config.stripe_api_version},
    )
    return client
