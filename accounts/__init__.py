"""
Accounts module.

Provides:
- User and Team models
- Lookups used to authorize billing changes
- Persistence of Stripe state after checkout
"""

from accounts.models import User, Team
from accounts.service import (
    create_user,
    create_team,
    get_user_by_id,
    get_team_by_id,
    change_stripe_card,
    save_stripe_customer_and_card,
    subscribe_team,
    get_list_of_invoices_for_customer,
    cancel_subscription,
    cancel_subscription_after_failed_payment,
)

__all__ = [
    "User",
    "Team",
    "create_user",
    "create_team",
    "get_user_by_id",
    "get_team_by_id",
    "change_stripe_card",
    "save_stripe_customer_and_card",
    "subscribe_team",
    "get_list_of_invoices_for_customer",
    "cancel_subscription",
    "cancel_subscription_after_failed_payment",
]
