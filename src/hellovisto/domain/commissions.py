"""Commission records and the versioned rate policy they snapshot."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from hellovisto.domain.entity import AggregateRoot
from hellovisto.domain.events import DomainEvent
from hellovisto.domain.value_object import ValueObject, to_decimal
from hellovisto.errors import InvalidStateTransition, ValidationFailed


class CommissionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


@dataclass(frozen=True)
class CommissionPolicy(ValueObject):
    """Platform fee as a fraction of the booking total, e.g. Decimal("0.05")."""

    rate: Decimal = Decimal("0.05")
    version: str = "2024-01"

    def __post_init__(self) -> None:
        rate = to_decimal(self.rate, "commission_rate")
        if not Decimal("0") <= rate < Decimal("1"):
            raise ValidationFailed("commission_rate", "must be within [0, 1)")
        object.__setattr__(self, "rate", rate)


@dataclass
class CommissionRecorded(DomainEvent):
    commission_id: str
    booking_id: str
    vendor_id: str
    amount: Decimal
    percentage: Decimal


@dataclass
class CommissionPaidOut(DomainEvent):
    commission_id: str
    booking_id: str
    vendor_id: str
    amount: Decimal


@dataclass(eq=False)
class Commission(AggregateRoot):
    """Immutable fee fact for one booking; only status changes after creation."""

    id: str
    booking_id: str
    vendor_id: str
    amount: Decimal
    percentage: Decimal
    policy_version: str = ""
    status: CommissionStatus = CommissionStatus.PENDING
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    def mark_paid(self, now: Optional[datetime] = None) -> None:
        if self.status is CommissionStatus.PAID:
            raise InvalidStateTransition("commission", self.id, self.status.value, "pay out")
        self.status = CommissionStatus.PAID
        self.paid_at = now
        self.raise_event(
            CommissionPaidOut(
                commission_id=self.id,
                booking_id=self.booking_id,
                vendor_id=self.vendor_id,
                amount=self.amount,
            )
        )
