"""
Typed views over Stripe checkout objects.

Stripe returns loosely-typed objects where expandable fields are either a
nested object or a bare id string. These dataclasses pin down the fields the
checkout completion flow branches on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional


class SessionMode(str, Enum):
    """Checkout session modes handled by the application."""
    SUBSCRIPTION = "subscription"
    SETUP = "setup"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional[SessionMode]:
        """Return the matching mode, or None for anything else (e.g. "payment")."""
        try:
            return cls(value)
        except ValueError:
            return None


def _as_mapping(value: Any) -> Optional[Mapping]:
    """Normalize an expandable field: dict-like stays, bare id becomes {"id": id}."""
    if value is None:
        return None
    if isinstance(value, str):
        return {"id": value}
    if isinstance(value, Mapping):
        return value
    # StripeObject subclasses dict, anything else is unexpected
    raise TypeError(f"Unexpected Stripe field type: {type(value).__name__}")


@dataclass(frozen=True)
class Card:
    brand: Optional[str] = None
    last4: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None

    @classmethod
    def from_stripe(cls, data: Any) -> Optional[Card]:
        data = _as_mapping(data)
        if data is None:
            return None
        return cls(
            brand=data.get("brand"),
            last4=data.get("last4"),
            exp_month=data.get("exp_month"),
            exp_year=data.get("exp_year"),
        )


@dataclass(frozen=True)
class PaymentMethod:
    id: str
    card: Optional[Card] = None

    @classmethod
    def from_stripe(cls, data: Any) -> Optional[PaymentMethod]:
        data = _as_mapping(data)
        if data is None:
            return None
        return cls(id=data["id"], card=Card.from_stripe(data.get("card")))


@dataclass(frozen=True)
class SetupIntent:
    id: str
    payment_method: Optional[PaymentMethod] = None

    @classmethod
    def from_stripe(cls, data: Any) -> Optional[SetupIntent]:
        data = _as_mapping(data)
        if data is None:
            return None
        return cls(
            id=data["id"],
            payment_method=PaymentMethod.from_stripe(data.get("payment_method")),
        )


@dataclass(frozen=True)
class Customer:
    id: str
    email: Optional[str] = None

    @classmethod
    def from_stripe(cls, data: Any) -> Optional[Customer]:
        data = _as_mapping(data)
        if data is None:
            return None
        return cls(id=data["id"], email=data.get("email"))


@dataclass(frozen=True)
class Subscription:
    id: str
    status: Optional[str] = None
    default_payment_method: Optional[PaymentMethod] = None

    @classmethod
    def from_stripe(cls, data: Any) -> Optional[Subscription]:
        data = _as_mapping(data)
        if data is None:
            return None
        return cls(
            id=data["id"],
            status=data.get("status"),
            default_payment_method=PaymentMethod.from_stripe(
                data.get("default_payment_method")
            ),
        )


@dataclass(frozen=True)
class SessionMetadata:
    """Application ids attached to a checkout session at creation."""
    user_id: Optional[str] = None
    team_id: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.user_id and self.team_id)


@dataclass(frozen=True)
class CheckoutSession:
    """
    A retrieved checkout session with its expanded objects.

    Attributes:
        id: Stripe session ID (cs_...)
        mode: Parsed mode, None when Stripe reports a mode we don't handle
        metadata: userId/teamId set by BillingGateway.create_session
        setup_intent: Present for setup-mode sessions
        customer: Present once Stripe has a customer for the session
        subscription: Present for subscription-mode sessions
        raw: The original Stripe object, kept for persistence
    """
    id: str
    mode: Optional[SessionMode]
    metadata: SessionMetadata
    setup_intent: Optional[SetupIntent] = None
    customer: Optional[Customer] = None
    subscription: Optional[Subscription] = None
    raw: Mapping = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_stripe(cls, data: Mapping) -> CheckoutSession:
        metadata = data.get("metadata") or {}
        return cls(
            id=data["id"],
            mode=SessionMode.parse(data.get("mode")),
            metadata=SessionMetadata(
                user_id=metadata.get("userId"),
                team_id=metadata.get("teamId"),
            ),
            setup_intent=SetupIntent.from_stripe(data.get("setup_intent")),
            customer=Customer.from_stripe(data.get("customer")),
            subscription=Subscription.from_stripe(data.get("subscription")),
            raw=data,
        )
