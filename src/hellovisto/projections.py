"""
Read-only projections handed to catalog and dashboard callers.

Views are frozen dataclasses detached from the stored records; to_dict()
renders them JSON-ready (money as strings, dates as ISO 8601).
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional

from hellovisto.domain import (
    Booking,
    BookingStatus,
    Commission,
    CommissionStatus,
    Review,
    Subscription,
    Tour,
    Vendor,
)


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if dataclasses.is_dataclass(value):
        return {f.name: _plain(getattr(value, f.name)) for f in dataclasses.fields(value)}
    return value


@dataclass(frozen=True)
class View:
    def to_dict(self) -> dict[str, Any]:
        return _plain(self)


@dataclass(frozen=True)
class VendorView(View):
    id: str
    business_name: str
    is_active: bool
    subscription_id: Optional[str]
    rating: float
    total_reviews: int

    @classmethod
    def of(cls, vendor: Vendor) -> VendorView:
        return cls(
            id=vendor.id,
            business_name=vendor.business_name,
            is_active=vendor.is_active,
            subscription_id=vendor.subscription_id,
            rating=vendor.rating,
            total_reviews=vendor.total_reviews,
        )


@dataclass(frozen=True)
class SubscriptionView(View):
    id: str
    vendor_id: str
    plan_type: str
    tour_limit: int
    current_tours: int
    start_date: datetime
    end_date: datetime
    is_active: bool

    @classmethod
    def of(cls, subscription: Subscription, now: datetime) -> SubscriptionView:
        return cls(
            id=subscription.id,
            vendor_id=subscription.vendor_id,
            plan_type=subscription.plan_type.value,
            tour_limit=subscription.tour_limit,
            current_tours=subscription.current_tours,
            start_date=subscription.start_date,
            end_date=subscription.end_date,
            # reported inactive as soon as the term is over, even before the sweep runs
            is_active=subscription.is_usable(now),
        )


@dataclass(frozen=True)
class TourView(View):
    id: str
    vendor_id: str
    title: str
    price: Decimal
    discount_price: Optional[Decimal]
    max_guests: int
    duration: int
    is_active: bool
    is_approved: bool
    rating: float
    total_reviews: int

    @classmethod
    def of(cls, tour: Tour) -> TourView:
        return cls(
            id=tour.id,
            vendor_id=tour.vendor_id,
            title=tour.title,
            price=tour.price,
            discount_price=tour.discount_price,
            max_guests=tour.max_guests,
            duration=tour.duration,
            is_active=tour.is_active,
            is_approved=tour.is_approved,
            rating=tour.rating,
            total_reviews=tour.total_reviews,
        )


@dataclass(frozen=True)
class GuestView(View):
    name: str
    age: int
    id_type: str
    id_number: str


@dataclass(frozen=True)
class BookingView(View):
    id: str
    tour_id: str
    customer_id: str
    vendor_id: str
    guests: int
    total_amount: Decimal
    commission_amount: Optional[Decimal]
    status: str
    payment_status: str
    booking_date: datetime
    tour_start_date: datetime
    guest_details: tuple[GuestView, ...]
    cancellation_reason: Optional[str] = None

    @classmethod
    def of(cls, booking: Booking) -> BookingView:
        return cls(
            id=booking.id,
            tour_id=booking.tour_id,
            customer_id=booking.customer_id,
            vendor_id=booking.vendor_id,
            guests=booking.guests,
            total_amount=booking.total_amount,
            commission_amount=booking.commission_amount,
            status=booking.status.value,
            payment_status=booking.payment_status.value,
            booking_date=booking.booking_date,
            tour_start_date=booking.tour_start_date,
            guest_details=tuple(
                GuestView(name=g.name, age=g.age, id_type=g.id_type, id_number=g.id_number)
                for g in booking.guest_details
            ),
            cancellation_reason=booking.cancellation_reason,
        )


@dataclass(frozen=True)
class CommissionView(View):
    id: str
    booking_id: str
    vendor_id: str
    amount: Decimal
    percentage: Decimal
    policy_version: str
    status: str

    @classmethod
    def of(cls, commission: Commission) -> CommissionView:
        return cls(
            id=commission.id,
            booking_id=commission.booking_id,
            vendor_id=commission.vendor_id,
            amount=commission.amount,
            percentage=commission.percentage,
            policy_version=commission.policy_version,
            status=commission.status.value,
        )


@dataclass(frozen=True)
class VendorBookingStats(View):
    total_bookings: int
    total_revenue: Decimal
    confirmed_bookings: int
    pending_bookings: int
    cancelled_bookings: int
    completed_bookings: int

    @classmethod
    def of(cls, bookings: Iterable[Booking]) -> VendorBookingStats:
        counts = {status: 0 for status in BookingStatus}
        revenue = Decimal("0")
        for booking in bookings:
            counts[booking.status] += 1
            if booking.status in (BookingStatus.CONFIRMED, BookingStatus.COMPLETED):
                revenue += booking.total_amount
        return cls(
            total_bookings=sum(counts.values()),
            total_revenue=revenue,
            confirmed_bookings=counts[BookingStatus.CONFIRMED],
            pending_bookings=counts[BookingStatus.PENDING],
            cancelled_bookings=counts[BookingStatus.CANCELLED],
            completed_bookings=counts[BookingStatus.COMPLETED],
        )


@dataclass(frozen=True)
class CommissionSummary(View):
    count: int
    total: Decimal
    pending: Decimal
    paid: Decimal

    @classmethod
    def of(cls, commissions: Iterable[Commission]) -> CommissionSummary:
        pending = paid = Decimal("0")
        count = 0
        for commission in commissions:
            count += 1
            if commission.status is CommissionStatus.PAID:
                paid += commission.amount
            else:
                pending += commission.amount
        return cls(count=count, total=pending + paid, pending=pending, paid=paid)


@dataclass(frozen=True)
class ReviewView(View):
    id: str
    tour_id: str
    vendor_id: str
    customer_id: str
    booking_id: Optional[str]
    rating: int
    comment: str
    created_at: Optional[datetime]

    @classmethod
    def of(cls, review: Review) -> ReviewView:
        return cls(
            id=review.id,
            tour_id=review.tour_id,
            vendor_id=review.vendor_id,
            customer_id=review.customer_id,
            booking_id=review.booking_id,
            rating=review.rating,
            comment=review.comment,
            created_at=review.created_at,
        )
