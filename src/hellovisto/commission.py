"""
Commission calculator.

The platform fee for a booking is computed once, from the booking total and
the policy in force at confirmation, and stored against the booking id. Later
calls for the same booking return the stored record, so a rate change never
rewrites historical commissions.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
from uuid import uuid4

import structlog

from hellovisto.clock import utcnow
from hellovisto.domain import Booking, BookingStatus, Commission, CommissionPolicy, PaymentStatus, round2
from hellovisto.domain.commissions import CommissionRecorded
from hellovisto.errors import InvalidStateTransition, NotFound
from hellovisto.store import EntityStore

logger = structlog.get_logger(__name__)


def commission_amount(total_amount: Decimal, policy: CommissionPolicy) -> Decimal:
    return round2(total_amount * policy.rate)


class CommissionCalculator:
    def __init__(
        self,
        store: EntityStore,
        policy: Optional[CommissionPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self.policy = policy or CommissionPolicy()
        self._clock = clock

    async def compute(self, booking: Booking) -> Commission:
        """Stored commission for the booking, or a new unsaved one under the current policy."""
        existing = await self._store.commissions.for_booking(booking.id)
        if existing is not None:
            return existing
        policy = self.policy
        commission = Commission(
            id=str(uuid4()),
            booking_id=booking.id,
            vendor_id=booking.vendor_id,
            amount=commission_amount(booking.total_amount, policy),
            percentage=policy.rate,
            policy_version=policy.version,
            created_at=self._clock(),
        )
        commission.raise_event(
            CommissionRecorded(
                commission_id=commission.id,
                booking_id=booking.id,
                vendor_id=booking.vendor_id,
                amount=commission.amount,
                percentage=commission.percentage,
            )
        )
        return commission

    async def record(self, commission: Commission) -> None:
        if await self._store.commissions.for_booking(commission.booking_id) is not None:
            return
        await self._store.commissions.add(commission)
        logger.info(
            "Commission recorded",
            booking_id=commission.booking_id,
            amount=str(commission.amount),
            policy_version=commission.policy_version,
        )

    async def mark_paid(self, booking: Booking) -> Commission:
        """Reconcile a vendor payout: the commission flips to paid once the booking is settled."""
        commission = await self._store.commissions.for_booking(booking.id)
        if commission is None:
            raise NotFound("commission", booking.id)
        if booking.payment_status is not PaymentStatus.PAID or booking.status is BookingStatus.CANCELLED:
            current = f"{booking.status.value}/{booking.payment_status.value}"
            raise InvalidStateTransition("commission", commission.id, current, "pay out")
        commission.mark_paid(self._clock())
        await self._store.commissions.save(commission)
        return commission
