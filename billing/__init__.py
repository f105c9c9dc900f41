"""
Billing module for Stripe team subscriptions.

Provides:
- Stripe Checkout session creation (subscription and card-update modes)
- Customer, subscription, card and invoice commands
- Webhook signature verification
- Checkout completion reconciliation
"""

from billing.models import CheckoutSession, SessionMode
from billing.service import BillingGateway, BillingError, InvalidArgumentError

__all__ = [
    "CheckoutSession",
    "SessionMode",
    "BillingGateway",
    "BillingError",
    "InvalidArgumentError",
]
