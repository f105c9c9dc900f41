"""
Checkout completion reconciliation.

After Stripe Checkout finishes, the browser lands on
/stripe/checkout-completed/{session_id}. This module retrieves the session,
checks it against our users and teams, and applies the resulting card or
subscription state.

Each step returns a (value, failure) pair and stops at the first failure.
The route turns the final failure into a redirect.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple
from urllib.parse import urlencode

import accounts.service as accounts
from accounts.models import Team, User
from app.config import BillingConfig
from billing.models import CheckoutSession, SessionMode
from billing.service import BillingGateway

_logger = logging.getLogger(__name__)

WRONG_SESSION = "Wrong session."
USER_NOT_FOUND = "User not found."
TEAM_NOT_FOUND = "Team not found."
PERMISSION_DENIED = "Permission denied"


class FailureKind(str, Enum):
    INVALID_ARGUMENT = "invalid_argument"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    MALFORMED_SESSION = "malformed_session"


@dataclass(frozen=True)
class CheckoutFailure:
    kind: FailureKind
    message: str


def _wrong_session() -> CheckoutFailure:
    return CheckoutFailure(FailureKind.MALFORMED_SESSION, WRONG_SESSION)


async def load_session(
    gateway: BillingGateway, session_id: str
) -> Tuple[Optional[CheckoutSession], Optional[CheckoutFailure]]:
    """Retrieve a session and require userId/teamId in its metadata."""
    if not session_id:
        return None, CheckoutFailure(FailureKind.INVALID_ARGUMENT, WRONG_SESSION)

    raw = await gateway.retrieve_session(session_id)
    if not raw:
        return None, CheckoutFailure(FailureKind.NOT_FOUND, WRONG_SESSION)

    session = CheckoutSession.from_stripe(raw)
    if not session.metadata.is_complete:
        return None, _wrong_session()

    return session, None


def authorize(
    session: CheckoutSession,
) -> Tuple[Optional[Tuple[User, Team]], Optional[CheckoutFailure]]:
    """Resolve the session's user and team and require the user to lead the team."""
    user = accounts.get_user_by_id(session.metadata.user_id)
    if user is None:
        return None, CheckoutFailure(FailureKind.NOT_FOUND, USER_NOT_FOUND)

    team = accounts.get_team_by_id(session.metadata.team_id)
    if team is None:
        return None, CheckoutFailure(FailureKind.NOT_FOUND, TEAM_NOT_FOUND)

    if team.team_leader_id != user.id:
        return None, CheckoutFailure(FailureKind.PERMISSION_DENIED, PERMISSION_DENIED)

    return (user, team), None


async def apply_setup(
    gateway: BillingGateway, session: CheckoutSession, user: User, team: Team
) -> Optional[CheckoutFailure]:
    """Make the newly confirmed card the default for customer and subscription."""
    payment_method = session.setup_intent.payment_method if session.setup_intent else None
    if payment_method is None:
        return _wrong_session()

    if user.stripe_customer_id:
        await gateway.update_customer(
            user.stripe_customer_id,
            {"invoice_settings": {"default_payment_method": payment_method.id}},
        )

    if team.stripe_subscription_id:
        await gateway.update_subscription(
            team.stripe_subscription_id,
            {"default_payment_method": payment_method.id},
        )

    accounts.change_stripe_card(session, user)
    return None


async def apply_subscription(
    gateway: BillingGateway, session: CheckoutSession, user: User, team: Team
) -> Optional[CheckoutFailure]:
    accounts.save_stripe_customer_and_card(session, user)
    accounts.subscribe_team(session, team)
    await accounts.get_list_of_invoices_for_customer(user.id, gateway)
    return None


async def complete_checkout(
    gateway: BillingGateway, session_id: str
) -> Tuple[Optional[Team], Optional[CheckoutFailure]]:
    """
    Run the full checkout completion flow.

    Returns:
        (team, None) on success, (None, failure) on a validation failure.
        Stripe and persistence errors propagate to the caller.
    """
    session, failure = await load_session(gateway, session_id)
    if failure:
        return None, failure

    records, failure = authorize(session)
    if failure:
        return None, failure
    user, team = records

    if session.mode is SessionMode.SETUP and session.setup_intent is not None:
        failure = await apply_setup(gateway, session, user, team)
    elif session.mode is SessionMode.SUBSCRIPTION:
        failure = await apply_subscription(gateway, session, user, team)
    else:
        failure = _wrong_session()

    if failure:
        return None, failure

    _logger.info(
        f"Checkout completed in {session.mode.value} mode for team {team.slug}",
        extra={"session_id": session.id, "user_id": user.id},
    )
    return team, None


def billing_page_url(config: BillingConfig, team: Team) -> str:
    return f"{config.url_app}/team/{team.slug}/billing"


def settings_error_url(config: BillingConfig, message: str) -> str:
    return f"{config.url_app}/your-settings?{urlencode({'error': message})}"
