"""
Booking lifecycle.

Status machine:

    pending   --confirm-->  confirmed   (payment must already be paid)
    pending   --cancel--->  cancelled
    confirmed --cancel--->  cancelled   (refund handled outside the core)
    confirmed --complete->  completed   (once the tour has started)

Payment machine: pending --settle--> paid --refund--> refunded, where the
refund is only accepted on a cancelled booking. cancelled and completed are
terminal: every other event on them is rejected.

Every method checks all preconditions before touching the booking.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

import structlog

from hellovisto.domain import Booking, BookingStatus, GuestDetail, PaymentStatus, Tour, Vendor, round2
from hellovisto.domain.bookings import (
    BookingCancelled,
    BookingCompleted,
    BookingConfirmed,
    BookingCreated,
    PaymentSettled,
    RefundIssued,
)
from hellovisto.errors import (
    InvalidGuestCount,
    InvalidStateTransition,
    PaymentNotSettled,
    TourUnavailable,
)

logger = structlog.get_logger(__name__)

CONFIRM = "confirm"
CANCEL = "cancel"
COMPLETE = "complete"
SETTLE = "settle payment"
REFUND = "refund"

TRANSITIONS: dict[tuple[BookingStatus, str], BookingStatus] = {
    (BookingStatus.PENDING, CONFIRM): BookingStatus.CONFIRMED,
    (BookingStatus.PENDING, CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.CONFIRMED, CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.CONFIRMED, COMPLETE): BookingStatus.COMPLETED,
}

PAYMENT_TRANSITIONS: dict[tuple[PaymentStatus, str], PaymentStatus] = {
    (PaymentStatus.PENDING, SETTLE): PaymentStatus.PAID,
    (PaymentStatus.PAID, REFUND): PaymentStatus.REFUNDED,
}

# booking statuses on which each payment event is accepted
PAYMENT_EVENT_STATUSES: dict[str, frozenset[BookingStatus]] = {
    SETTLE: frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED}),
    REFUND: frozenset({BookingStatus.CANCELLED}),
}


def _next_status(booking: Booking, event: str) -> BookingStatus:
    target = TRANSITIONS.get((booking.status, event))
    if target is None:
        raise InvalidStateTransition("booking", booking.id, booking.status.value, event)
    return target


def _next_payment_status(booking: Booking, event: str) -> PaymentStatus:
    target = PAYMENT_TRANSITIONS.get((booking.payment_status, event))
    if target is None or booking.status not in PAYMENT_EVENT_STATUSES[event]:
        current = f"{booking.status.value}/{booking.payment_status.value}"
        raise InvalidStateTransition("booking", booking.id, current, event)
    return target


class BookingLifecycleManager:
    """Validates and applies booking transitions on working copies."""

    def open(
        self,
        booking_id: str,
        tour: Tour,
        vendor: Vendor,
        customer_id: str,
        guests: int,
        guest_details: Sequence[GuestDetail],
        tour_start_date: datetime,
        now: datetime,
    ) -> Booking:
        if not tour.is_active:
            raise TourUnavailable(tour.id, "tour is not active")
        if not tour.is_approved:
            raise TourUnavailable(tour.id, "tour is awaiting approval")
        if not vendor.is_active:
            raise TourUnavailable(tour.id, "vendor is suspended")
        if isinstance(guests, bool) or not isinstance(guests, int) or not 1 <= guests <= tour.max_guests:
            raise InvalidGuestCount(guests, tour.max_guests)
        if len(guest_details) != guests:
            raise InvalidGuestCount(
                guests,
                tour.max_guests,
                reason=f"{len(guest_details)} guest details supplied",
            )

        booking = Booking(
            id=booking_id,
            tour_id=tour.id,
            customer_id=customer_id,
            vendor_id=tour.vendor_id,
            guests=guests,
            total_amount=round2(tour.price * guests),
            booking_date=now,
            tour_start_date=tour_start_date,
            guest_details=tuple(guest_details),
            updated_at=now,
        )
        booking.raise_event(
            BookingCreated(
                booking_id=booking.id,
                tour_id=booking.tour_id,
                customer_id=booking.customer_id,
                vendor_id=booking.vendor_id,
                total_amount=booking.total_amount,
            )
        )
        return booking

    def confirm(self, booking: Booking, commission_amount: Decimal, now: Optional[datetime] = None) -> None:
        target = _next_status(booking, CONFIRM)
        if booking.payment_status is not PaymentStatus.PAID:
            raise PaymentNotSettled(booking.id, booking.payment_status.value)
        booking.assign_commission(commission_amount)
        booking.move_to(target, now)
        booking.raise_event(
            BookingConfirmed(
                booking_id=booking.id,
                customer_id=booking.customer_id,
                vendor_id=booking.vendor_id,
                commission_amount=commission_amount,
            )
        )

    def check_confirmable(self, booking: Booking) -> None:
        """Raise what confirm() would raise, without mutating."""
        _next_status(booking, CONFIRM)
        if booking.payment_status is not PaymentStatus.PAID:
            raise PaymentNotSettled(booking.id, booking.payment_status.value)

    def cancel(self, booking: Booking, reason: Optional[str] = None, now: Optional[datetime] = None) -> None:
        previous = booking.status
        target = _next_status(booking, CANCEL)
        booking.move_to(target, now)
        booking.cancellation_reason = reason
        booking.raise_event(
            BookingCancelled(
                booking_id=booking.id,
                customer_id=booking.customer_id,
                vendor_id=booking.vendor_id,
                previous_status=previous.value,
                payment_status=booking.payment_status.value,
                reason=reason,
            )
        )

    def complete(self, booking: Booking, now: datetime) -> None:
        target = _next_status(booking, COMPLETE)
        if now < booking.tour_start_date:
            raise InvalidStateTransition(
                "booking", booking.id, booking.status.value, "complete before the tour starts"
            )
        booking.move_to(target, now)
        booking.raise_event(
            BookingCompleted(
                booking_id=booking.id,
                customer_id=booking.customer_id,
                vendor_id=booking.vendor_id,
            )
        )

    def settle_payment(self, booking: Booking, now: Optional[datetime] = None) -> None:
        booking.payment_status = _next_payment_status(booking, SETTLE)
        booking.updated_at = now or booking.updated_at
        booking.raise_event(PaymentSettled(booking_id=booking.id, total_amount=booking.total_amount))

    def issue_refund(self, booking: Booking, now: Optional[datetime] = None) -> None:
        booking.payment_status = _next_payment_status(booking, REFUND)
        booking.updated_at = now or booking.updated_at
        booking.raise_event(RefundIssued(booking_id=booking.id, total_amount=booking.total_amount))
        logger.info("Refund recorded", booking_id=booking.id, amount=str(booking.total_amount))
