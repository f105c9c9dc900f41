"""
User and Team models for billing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
import uuid


@dataclass(frozen=True)
class User:
    """
    User account model (read-only snapshot).

    Attributes:
        id: Unique user ID (UUID)
        email: User's email (unique)
        display_name: Name shown in the app
        stripe_customer: Stripe customer object, once the user has paid
        stripe_card: Card details of the default payment method
        has_card_information: Whether stripe_card is set
        stripe_list_of_invoices: Last fetched Stripe invoice list
        created_at: Account creation timestamp
    """
    id: str
    email: str
    display_name: Optional[str] = None
    stripe_customer: Optional[dict] = None
    stripe_card: Optional[dict] = None
    has_card_information: bool = False
    stripe_list_of_invoices: Optional[dict] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def new(cls, email: str, display_name: Optional[str] = None) -> User:
        """Create a new user with generated ID."""
        return cls(
            id=str(uuid.uuid4()),
            email=email.lower().strip(),
            display_name=display_name,
            created_at=datetime.utcnow(),
        )

    @property
    def stripe_customer_id(self) -> Optional[str]:
        if not self.stripe_customer:
            return None
        return self.stripe_customer.get("id")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "display_name": self.display_name,
            "stripe_customer_id": self.stripe_customer_id,
            "has_card_information": self.has_card_information,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class Team:
    """
    Team model (read-only snapshot).

    Attributes:
        id: Unique team ID (UUID)
        name: Display name
        slug: URL slug, used in billing page URLs
        team_leader_id: User allowed to manage billing
        is_subscription_active: Whether the team has a live subscription
        stripe_subscription: Stripe subscription object
        is_payment_failed: Set when the subscription lapsed on a failed invoice
        created_at: Team creation timestamp
    """
    id: str
    name: str
    slug: str
    team_leader_id: str
    is_subscription_active: bool = False
    stripe_subscription: Optional[dict] = None
    is_payment_failed: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def new(cls, name: str, slug: str, team_leader_id: str) -> Team:
        """Create a new team with generated ID."""
        return cls(
            id=str(uuid.uuid4()),
            name=name.strip(),
            slug=slug.strip().lower(),
            team_leader_id=team_leader_id,
            created_at=datetime.utcnow(),
        )

    @property
    def stripe_subscription_id(self) -> Optional[str]:
        if not self.stripe_subscription:
            return None
        return self.stripe_subscription.get("id")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "team_leader_id": self.team_leader_id,
            "is_subscription_active": self.is_subscription_active,
            "stripe_subscription_id": self.stripe_subscription_id,
            "is_payment_failed": self.is_payment_failed,
            "created_at": self.created_at.isoformat(),
        }
