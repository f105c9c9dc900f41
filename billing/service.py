"""
Billing gateway over the Stripe API.

Handles:
- Checkout session creation and retrieval
- Customer, subscription and card management
- Invoice listing

Every command issues exactly one Stripe call and returns the Stripe
response unmodified. Stripe errors are not caught here.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import stripe

from app.config import BillingConfig

_logger = logging.getLogger(__name__)

CUSTOMER_DESCRIPTION = "Stripe Customer at team billing"

# Nested objects the checkout completion flow reads
SESSION_EXPAND = (
    "setup_intent",
    "setup_intent.payment_method",
    "customer",
    "subscription",
    "subscription.default_payment_method",
)

INVOICE_LIST_LIMIT = 100


class BillingError(Exception):
    """Base billing error."""
    pass


class InvalidArgumentError(BillingError):
    """A command was called without a field it requires."""
    pass


class BillingGateway:
    """
    Stripe commands for team billing.

    Built once at startup with the shared StripeClient and the billing
    config, then injected into request handlers.
    """

    def __init__(self, client: stripe.StripeClient, config: BillingConfig):
        self._client = client
        self._config = config

    @property
    def config(self) -> BillingConfig:
        return self._config

    def checkout_success_url(self) -> str:
        # {CHECKOUT_SESSION_ID} is substituted by Stripe, not by us
        return f"{self._config.url_api}/stripe/checkout-completed/{{CHECKOUT_SESSION_ID}}"

    def checkout_cancel_url(self, team_slug: str) -> str:
        return f"{self._config.url_app}/team/{team_slug}/billing?checkout_canceled=1"

    def build_session_params(
        self,
        user_id: str,
        team_id: str,
        team_slug: str,
        mode: str,
        customer_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
        user_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Build checkout session parameters.

        Raises:
            InvalidArgumentError: If mode is "setup" and customer_id or
                subscription_id is missing
        """
        params: Dict[str, Any] = {
            "payment_method_types": ["card"],
            "mode": mode,
            "success_url": self.checkout_success_url(),
            "cancel_url": self.checkout_cancel_url(team_slug),
            "metadata": {"userId": user_id, "teamId": team_id},
        }

        # customer and customer_email are mutually exclusive
        if customer_id:
            params["customer"] = customer_id
        elif user_email:
            params["customer_email"] = user_email

        if mode == "subscription":
            params["line_items"] = [{"price": self._config.stripe_plan_id, "quantity": 1}]
        elif mode == "setup":
            if not customer_id or not subscription_id:
                raise InvalidArgumentError("customerId and subscriptionId required")

            params["setup_intent_data"] = {
                "metadata": {
                    "customer_id": customer_id,
                    "subscription_id": subscription_id,
                }
            }

        return params

    async def create_session(
        self,
        user_id: str,
        team_id: str,
        team_slug: str,
        mode: str,
        customer_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
        user_email: Optional[str] = None,
    ):
        """
        Create a Stripe Checkout session.

        Args:
            user_id: Internal user ID (stored in metadata as userId)
            team_id: Internal team ID (stored in metadata as teamId)
            team_slug: Team slug for the cancel URL
            mode: "subscription" or "setup"
            customer_id: Existing Stripe customer, if any
            subscription_id: Existing Stripe subscription (required for setup)
            user_email: Prefilled email when there is no customer yet

        Returns:
            The created Stripe checkout session

        Raises:
            InvalidArgumentError: If setup mode lacks customer/subscription IDs
        """
        params = self.build_session_params(
            user_id=user_id,
            team_id=team_id,
            team_slug=team_slug,
            mode=mode,
            customer_id=customer_id,
            subscription_id=subscription_id,
            user_email=user_email,
        )
        _logger.debug(f"creating checkout session in {mode} mode", extra={"team_id": team_id})
        return await self._client.checkout.sessions.create_async(params=params)

    async def retrieve_session(self, session_id: str):
        """Retrieve a checkout session with its nested objects expanded."""
        return await self._client.checkout.sessions.retrieve_async(
            session_id,
            params={"expand": list(SESSION_EXPAND)},
        )

    async def create_customer(self, token: str, team_leader_email: str, team_leader_id: str):
        _logger.debug("creating customer", extra={"team_leader_id": team_leader_id})
        return await self._client.customers.create_async(
            params={
                "description": CUSTOMER_DESCRIPTION,
                "email": team_leader_email,
                "source": token,
                "metadata": {"teamLeaderId": team_leader_id},
            }
        )

    async def create_subscription(self, customer_id: str, team_id: str, team_leader_id: str):
        _logger.debug(
            "creating subscription",
            extra={"team_id": team_id, "team_leader_id": team_leader_id},
        )
        return await self._client.subscriptions.create_async(
            params={
                "customer": customer_id,
                "items": [{"plan": self._config.stripe_plan_id}],
                "metadata": {"teamId": team_id, "teamLeaderId": team_leader_id},
            }
        )

    async def cancel_subscription(self, subscription_id: str):
        _logger.debug(f"cancel subscription {subscription_id}")
        return await self._client.subscriptions.cancel_async(subscription_id)

    async def retrieve_card(self, customer_id: str, card_id: str):
        _logger.debug(f"retrieving card {card_id} for customer {customer_id}")
        return await self._client.customers.payment_sources.retrieve_async(customer_id, card_id)

    async def create_new_card(self, customer_id: str, token: str):
        _logger.debug(f"creating new card for customer {customer_id}")
        return await self._client.customers.payment_sources.create_async(
            customer_id,
            params={"source": token},
        )

    async def update_customer(self, customer_id: str, params: Dict[str, Any]):
        _logger.debug(f"updating customer {customer_id}")
        return await self._client.customers.update_async(customer_id, params=params)

    async def update_subscription(self, subscription_id: str, params: Dict[str, Any]):
        _logger.debug(f"updating subscription {subscription_id}")
        return await self._client.subscriptions.update_async(subscription_id, params=params)

    async def get_list_of_invoices(self, customer_id: str):
        """List up to 100 invoices for a customer."""
        _logger.debug(f"getting list of invoices for customer {customer_id}")
        return await self._client.invoices.list_async(
            params={"customer": customer_id, "limit": INVOICE_LIST_LIMIT},
        )
