"""Vendors and their subscription plans."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional

from hellovisto.domain.entity import AggregateRoot
from hellovisto.domain.events import DomainEvent
from hellovisto.domain.value_object import ValueObject
from hellovisto.errors import QuotaExceeded, ValidationFailed


class PlanType(str, Enum):
    BASIC = "basic"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


@dataclass(frozen=True)
class PlanSpec(ValueObject):
    name: str
    price: Decimal
    tour_limit: int
    features: tuple[str, ...] = ()


PLANS: dict[PlanType, PlanSpec] = {
    PlanType.BASIC: PlanSpec(
        name="Basic",
        price=Decimal("29.99"),
        tour_limit=10,
        features=("10 Tour Listings", "Basic Analytics", "Email Support"),
    ),
    PlanType.PREMIUM: PlanSpec(
        name="Premium",
        price=Decimal("59.99"),
        tour_limit=50,
        features=("50 Tour Listings", "Advanced Analytics", "Priority Support", "Featured Listings"),
    ),
    PlanType.ENTERPRISE: PlanSpec(
        name="Enterprise",
        price=Decimal("99.99"),
        tour_limit=200,
        features=("200 Tour Listings", "Full Analytics", "24/7 Support", "Custom Branding", "API Access"),
    ),
}

DEFAULT_TERM = timedelta(days=30)


def parse_plan(value: str | PlanType) -> PlanType:
    try:
        return PlanType(value)
    except ValueError as exc:
        raise ValidationFailed("plan_type", f"unknown plan {value!r}") from exc


@dataclass
class SubscriptionStarted(DomainEvent):
    subscription_id: str
    vendor_id: str
    plan_type: str
    tour_limit: int


@dataclass
class SubscriptionEnded(DomainEvent):
    subscription_id: str
    vendor_id: str
    reason: str


@dataclass(eq=False)
class Vendor(AggregateRoot):
    id: str
    business_name: str
    is_active: bool = True
    subscription_id: Optional[str] = None
    rating: float = 0.0
    total_reviews: int = 0
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.business_name or not self.business_name.strip():
            raise ValidationFailed("business_name", "must not be empty")


@dataclass(eq=False)
class Subscription(AggregateRoot):
    """
    A vendor's plan. current_tours counts the vendor's active, approved tours and
    is changed only through take_slot/free_slot, which the quota tracker calls.
    """

    id: str
    vendor_id: str
    plan_type: PlanType
    tour_limit: int
    start_date: datetime
    end_date: datetime
    current_tours: int = 0
    is_active: bool = True
    price: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        if self.tour_limit < 0:
            raise ValidationFailed("tour_limit", "must not be negative")
        if not 0 <= self.current_tours <= self.tour_limit:
            raise ValidationFailed("current_tours", f"must be within 0..{self.tour_limit}")
        if self.end_date <= self.start_date:
            raise ValidationFailed("end_date", "must be after start_date")

    @classmethod
    def for_plan(
        cls,
        id: str,
        vendor_id: str,
        plan_type: PlanType,
        start_date: datetime,
        term: timedelta = DEFAULT_TERM,
        current_tours: int = 0,
    ) -> Subscription:
        plan = PLANS[plan_type]
        subscription = cls(
            id=id,
            vendor_id=vendor_id,
            plan_type=plan_type,
            tour_limit=plan.tour_limit,
            start_date=start_date,
            end_date=start_date + term,
            current_tours=current_tours,
            price=plan.price,
        )
        subscription.raise_event(
            SubscriptionStarted(
                subscription_id=id,
                vendor_id=vendor_id,
                plan_type=plan_type.value,
                tour_limit=plan.tour_limit,
            )
        )
        return subscription

    def is_usable(self, now: datetime) -> bool:
        return self.is_active and now <= self.end_date

    @property
    def has_free_slot(self) -> bool:
        return self.current_tours < self.tour_limit

    def refresh(self, now: datetime) -> bool:
        """Flip is_active off once the term is over. Returns True if it changed."""
        if self.is_active and now > self.end_date:
            self.end("expired")
            return True
        return False

    def end(self, reason: str) -> None:
        self.is_active = False
        self.raise_event(SubscriptionEnded(subscription_id=self.id, vendor_id=self.vendor_id, reason=reason))

    def take_slot(self) -> None:
        if not self.has_free_slot:
            raise QuotaExceeded(self.vendor_id, self.tour_limit, self.current_tours)
        self.current_tours += 1

    def free_slot(self) -> bool:
        # floored at zero so a retried release is harmless
        if self.current_tours == 0:
            return False
        self.current_tours -= 1
        return True
