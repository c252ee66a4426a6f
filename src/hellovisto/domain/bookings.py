"""Bookings: status vocabulary, the Booking aggregate and its events."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from hellovisto.domain.entity import AggregateRoot
from hellovisto.domain.events import DomainEvent
from hellovisto.domain.value_object import GuestDetail, to_decimal
from hellovisto.errors import InvalidStateTransition, ValidationFailed


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


TERMINAL_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED})


@dataclass
class BookingCreated(DomainEvent):
    booking_id: str
    tour_id: str
    customer_id: str
    vendor_id: str
    total_amount: Decimal


@dataclass
class BookingConfirmed(DomainEvent):
    booking_id: str
    customer_id: str
    vendor_id: str
    commission_amount: Decimal


@dataclass
class BookingCancelled(DomainEvent):
    booking_id: str
    customer_id: str
    vendor_id: str
    previous_status: str
    payment_status: str
    reason: Optional[str] = None

    @property
    def needs_refund(self) -> bool:
        return self.payment_status == PaymentStatus.PAID.value


@dataclass
class BookingCompleted(DomainEvent):
    booking_id: str
    customer_id: str
    vendor_id: str


@dataclass
class PaymentSettled(DomainEvent):
    booking_id: str
    total_amount: Decimal


@dataclass
class RefundIssued(DomainEvent):
    booking_id: str
    total_amount: Decimal


@dataclass(eq=False)
class Booking(AggregateRoot):
    id: str
    tour_id: str
    customer_id: str
    vendor_id: str
    guests: int
    total_amount: Decimal
    booking_date: datetime
    tour_start_date: datetime
    guest_details: tuple[GuestDetail, ...] = ()
    commission_amount: Optional[Decimal] = None
    status: BookingStatus = BookingStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    cancellation_reason: Optional[str] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.total_amount = to_decimal(self.total_amount, "total_amount")
        self.guest_details = tuple(self.guest_details)
        if self.total_amount <= 0:
            raise ValidationFailed("total_amount", "must be greater than 0")
        if self.tour_start_date.tzinfo is None or self.tour_start_date.utcoffset() is None:
            raise ValidationFailed("tour_start_date", "must carry a timezone")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def move_to(self, status: BookingStatus, now: Optional[datetime] = None) -> None:
        self.status = status
        self.updated_at = now or self.updated_at

    def assign_commission(self, amount: Decimal) -> None:
        """Set commission_amount once. Re-assigning the same value is a no-op."""
        if self.commission_amount is not None:
            if self.commission_amount == amount:
                return
            raise InvalidStateTransition("booking", self.id, self.status.value, "reassign commission")
        self.commission_amount = amount
