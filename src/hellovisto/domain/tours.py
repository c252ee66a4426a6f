"""Tours and reviews."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from hellovisto.domain.entity import AggregateRoot
from hellovisto.domain.events import DomainEvent
from hellovisto.domain.value_object import to_decimal
from hellovisto.errors import ValidationFailed


@dataclass
class TourCreated(DomainEvent):
    tour_id: str
    vendor_id: str


@dataclass
class TourActivated(DomainEvent):
    tour_id: str
    vendor_id: str


@dataclass
class TourDeactivated(DomainEvent):
    tour_id: str
    vendor_id: str


@dataclass
class TourApproved(DomainEvent):
    tour_id: str
    vendor_id: str


@dataclass
class TourQuotaExceeded(DomainEvent):
    vendor_id: str
    tour_limit: int
    current_tours: int
    tour_id: Optional[str] = None


@dataclass
class ReviewAdded(DomainEvent):
    review_id: str
    tour_id: str
    vendor_id: str
    rating: int


@dataclass(eq=False)
class Tour(AggregateRoot):
    """
    A listing. discount_price is a secondary display price and has no
    ordering relation to price.
    """

    id: str
    vendor_id: str
    price: Decimal
    max_guests: int
    duration: int
    title: str = ""
    discount_price: Optional[Decimal] = None
    is_active: bool = False
    is_approved: bool = False
    rating: float = 0.0
    total_reviews: int = 0
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.price = to_decimal(self.price, "price")
        if self.price <= 0:
            raise ValidationFailed("price", "must be greater than 0")
        if self.discount_price is not None:
            self.discount_price = to_decimal(self.discount_price, "discount_price")
            if self.discount_price <= 0:
                raise ValidationFailed("discount_price", "must be greater than 0")
        if self.max_guests <= 0:
            raise ValidationFailed("max_guests", "must be greater than 0")
        if self.duration <= 0:
            raise ValidationFailed("duration", "must be greater than 0")

    @property
    def counts_toward_quota(self) -> bool:
        return self.is_active and self.is_approved

    @property
    def is_bookable(self) -> bool:
        return self.is_active and self.is_approved

    def activate(self) -> None:
        self.is_active = True
        self.raise_event(TourActivated(tour_id=self.id, vendor_id=self.vendor_id))

    def deactivate(self) -> None:
        self.is_active = False
        self.raise_event(TourDeactivated(tour_id=self.id, vendor_id=self.vendor_id))

    def approve(self) -> None:
        self.is_approved = True
        self.raise_event(TourApproved(tour_id=self.id, vendor_id=self.vendor_id))


@dataclass(eq=False)
class Review(AggregateRoot):
    id: str
    tour_id: str
    customer_id: str
    vendor_id: str
    rating: int
    comment: str = ""
    booking_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if isinstance(self.rating, bool) or not isinstance(self.rating, int) or not 1 <= self.rating <= 5:
            raise ValidationFailed("rating", "must be an integer from 1 to 5")
