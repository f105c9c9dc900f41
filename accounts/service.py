"""
Account service for users and teams.

Handles:
- User and team registration and lookup
- Persisting Stripe customer, card and subscription state after checkout
- Invoice history refresh
- Subscription cancellation
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime
from typing import Any, Optional

from accounts.models import Team, User
from billing.models import CheckoutSession
from billing.service import BillingGateway
from persistence.db import dump_json, get_db, init_db, load_json

_logger = logging.getLogger(__name__)


class AccountError(Exception):
    """Base account error."""
    pass


class UserExistsError(AccountError):
    """User with this email already exists."""
    pass


class TeamExistsError(AccountError):
    """Team with this slug already exists."""
    pass


class UserNotFoundError(AccountError):
    """User does not exist."""
    pass


class TeamNotFoundError(AccountError):
    """Team does not exist."""
    pass


class PermissionDeniedError(AccountError):
    """User is not allowed to manage the team's billing."""
    pass


# =============================================================================
# Users
# =============================================================================


def create_user(email: str, display_name: Optional[str] = None) -> User:
    """
    Create a new user account.

    Raises:
        UserExistsError: If email already registered
    """
    init_db()

    email = email.lower().strip()
    if get_user_by_email(email):
        raise UserExistsError(f"User with email {email} already exists")

    user = User.new(email=email, display_name=display_name)

    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO users (id, email, display_name, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (user.id, user.email, user.display_name, user.created_at.isoformat()),
        )

    _logger.info(f"Created user: {email}")
    return user


def get_user_by_email(email: str) -> Optional[User]:
    init_db()

    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM users WHERE email = ?",
            (email.lower().strip(),),
        ).fetchone()

    return _row_to_user(row) if row else None


def get_user_by_id(user_id: str) -> Optional[User]:
    """
    Get user by ID.

    Returns:
        User if found, None otherwise
    """
    init_db()

    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM users WHERE id = ?",
            (user_id,),
        ).fetchone()

    return _row_to_user(row) if row else None


def _row_to_user(row) -> User:
    """Convert a database row to a User object."""
    return User(
        id=row["id"],
        email=row["email"],
        display_name=row["display_name"],
        stripe_customer=load_json(row["stripe_customer"]),
        stripe_card=load_json(row["stripe_card"]),
        has_card_information=bool(row["has_card_information"]),
        stripe_list_of_invoices=load_json(row["stripe_list_of_invoices"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _raw_object(session: CheckoutSession, key: str) -> Optional[Any]:
    """Original Stripe sub-object of a session, bare ids wrapped as {"id": ...}."""
    value = session.raw.get(key)
    if isinstance(value, str):
        return {"id": value}
    return value


def change_stripe_card(session: CheckoutSession, user: User) -> None:
    """
    Store the card confirmed by a setup-mode checkout.

    Raises:
        AccountError: If the setup intent carries no card
    """
    setup_intent = session.setup_intent
    payment_method = setup_intent.payment_method if setup_intent else None
    if payment_method is None or payment_method.card is None:
        raise AccountError("No card found.")

    init_db()
    with get_db() as conn:
        cursor = conn.execute(
            """
            UPDATE users SET stripe_card = ?, has_card_information = 1
            WHERE id = ?
            """,
            (dump_json(asdict(payment_method.card)), user.id),
        )
        if cursor.rowcount == 0:
            raise UserNotFoundError("User not found.")

    _logger.info(f"Changed card for user {user.id}", extra={"session_id": session.id})


def save_stripe_customer_and_card(session: CheckoutSession, user: User) -> None:
    """Store the customer and card created by a subscription-mode checkout."""
    if session.customer is None:
        raise AccountError("Wrong session.")

    card = None
    if session.subscription and session.subscription.default_payment_method:
        card = session.subscription.default_payment_method.card

    init_db()
    with get_db() as conn:
        cursor = conn.execute(
            """
            UPDATE users SET stripe_customer = ?, stripe_card = ?, has_card_information = ?
            WHERE id = ?
            """,
            (
                dump_json(_raw_object(session, "customer")),
                dump_json(asdict(card)) if card else None,
                1 if card else 0,
                user.id,
            ),
        )
        if cursor.rowcount == 0:
            raise UserNotFoundError("User not found.")

    _logger.info(
        f"Saved Stripe customer for user {user.id}",
        extra={"customer_id": session.customer.id},
    )


async def get_list_of_invoices_for_customer(user_id: str, gateway: BillingGateway) -> User:
    """
    Fetch the customer's invoices from Stripe and store them on the user.

    Raises:
        UserNotFoundError: If the user does not exist
        AccountError: If the user is not a Stripe customer or has no invoices
    """
    user = get_user_by_id(user_id)
    if user is None:
        raise UserNotFoundError("User not found.")

    if not user.stripe_customer_id:
        raise AccountError("You are not a customer and you have no payment history.")

    invoices = await gateway.get_list_of_invoices(user.stripe_customer_id)
    if not invoices or not invoices.get("data"):
        raise AccountError("You are a customer. But there is no payment history.")

    with get_db() as conn:
        conn.execute(
            "UPDATE users SET stripe_list_of_invoices = ? WHERE id = ?",
            (dump_json(invoices), user_id),
        )

    _logger.debug(f"Stored {len(invoices['data'])} invoices for user {user_id}")
    return get_user_by_id(user_id)


# =============================================================================
# Teams
# =============================================================================


def create_team(name: str, slug: str, team_leader_id: str) -> Team:
    """
    Create a new team led by an existing user.

    Raises:
        UserNotFoundError: If the team leader does not exist
        TeamExistsError: If the slug is taken
    """
    init_db()

    if get_user_by_id(team_leader_id) is None:
        raise UserNotFoundError("User not found.")

    team = Team.new(name=name, slug=slug, team_leader_id=team_leader_id)
    if get_team_by_slug(team.slug):
        raise TeamExistsError(f"Team with slug {team.slug} already exists")

    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO teams (id, name, slug, team_leader_id, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (team.id, team.name, team.slug, team.team_leader_id, team.created_at.isoformat()),
        )

    _logger.info(f"Created team: {team.slug}")
    return team


def get_team_by_id(team_id: str) -> Optional[Team]:
    init_db()

    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM teams WHERE id = ?",
            (team_id,),
        ).fetchone()

    return _row_to_team(row) if row else None


def get_team_by_slug(slug: str) -> Optional[Team]:
    init_db()

    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM teams WHERE slug = ?",
            (slug,),
        ).fetchone()

    return _row_to_team(row) if row else None


def get_team_by_subscription(subscription_id: str) -> Optional[Team]:
    """Find the team holding a Stripe subscription."""
    init_db()

    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM teams WHERE json_extract(stripe_subscription, '$.id') = ?",
            (subscription_id,),
        ).fetchone()

    return _row_to_team(row) if row else None


def _row_to_team(row) -> Team:
    """Convert a database row to a Team object."""
    return Team(
        id=row["id"],
        name=row["name"],
        slug=row["slug"],
        team_leader_id=row["team_leader_id"],
        is_subscription_active=bool(row["is_subscription_active"]),
        stripe_subscription=load_json(row["stripe_subscription"]),
        is_payment_failed=bool(row["is_payment_failed"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def subscribe_team(session: CheckoutSession, team: Team) -> None:
    """
    Mark a team subscribed with the subscription from a checkout.

    Raises:
        AccountError: If the team is already subscribed or the session
            carries no subscription
    """
    if team.is_subscription_active:
        raise AccountError("Team is already subscribed.")

    if session.subscription is None:
        raise AccountError("Wrong session.")

    init_db()
    with get_db() as conn:
        cursor = conn.execute(
            """
            UPDATE teams
            SET stripe_subscription = ?, is_subscription_active = 1, is_payment_failed = 0
            WHERE id = ?
            """,
            (dump_json(_raw_object(session, "subscription")), team.id),
        )
        if cursor.rowcount == 0:
            raise TeamNotFoundError("Team not found.")

    _logger.info(
        f"Subscribed team {team.slug}",
        extra={"subscription_id": session.subscription.id},
    )


async def cancel_subscription(team_leader_id: str, team_id: str, gateway: BillingGateway) -> Team:
    """
    Cancel a team's Stripe subscription on the team leader's request.

    Raises:
        TeamNotFoundError: If the team does not exist
        PermissionDeniedError: If the caller is not the team leader
        AccountError: If the team has no subscription
    """
    team = get_team_by_id(team_id)
    if team is None:
        raise TeamNotFoundError("Team not found.")

    if team.team_leader_id != team_leader_id:
        raise PermissionDeniedError("Permission denied")

    if not team.stripe_subscription_id:
        raise AccountError("Team has no subscription.")

    cancelled = await gateway.cancel_subscription(team.stripe_subscription_id)

    with get_db() as conn:
        conn.execute(
            """
            UPDATE teams SET stripe_subscription = ?, is_subscription_active = 0
            WHERE id = ?
            """,
            (dump_json(cancelled), team_id),
        )

    _logger.info(f"Cancelled subscription for team {team.slug}")
    return get_team_by_id(team_id)


def cancel_subscription_after_failed_payment(subscription_id: str) -> Team:
    """
    Deactivate the team whose subscription invoice failed.

    Raises:
        TeamNotFoundError: If no team holds the subscription
        AccountError: If the team is already inactive
    """
    team = get_team_by_subscription(subscription_id)
    if team is None:
        raise TeamNotFoundError("Team not found.")

    if not team.is_subscription_active:
        raise AccountError("Team is already unsubscribed.")

    if team.is_payment_failed:
        raise AccountError("Team is already unsubscribed after failed payment.")

    with get_db() as conn:
        conn.execute(
            """
            UPDATE teams SET is_subscription_active = 0, is_payment_failed = 1
            WHERE id = ?
            """,
            (team.id,),
        )

    _logger.info(f"Deactivated team {team.slug} after failed payment")
    return get_team_by_id(team.id)
