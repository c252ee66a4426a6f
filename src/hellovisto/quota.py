"""
Subscription quota tracker.

Owns Subscription.current_tours: every tour that becomes active and approved
takes a slot here, every tour that stops being both gives it back. Writes for
one vendor are serialized on the vendor lock.

A subscription found past its term is ended and saved on the spot; the
resulting SubscriptionEnded event goes to `publish` once the lock is released.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Awaitable, Callable, Iterable, Optional

import structlog

from hellovisto.clock import utcnow
from hellovisto.domain import DomainEvent, PlanType, Subscription
from hellovisto.domain.vendors import DEFAULT_TERM, PLANS
from hellovisto.errors import NotFound, QuotaExceeded, SubscriptionInactive
from hellovisto.store import EntityStore, KeyedLocks

logger = structlog.get_logger(__name__)

Publisher = Callable[[Iterable[DomainEvent]], Awaitable[None]]


class SubscriptionQuotaTracker:
    def __init__(
        self,
        store: EntityStore,
        locks: KeyedLocks,
        clock: Callable[[], datetime] = utcnow,
        publish: Optional[Publisher] = None,
    ) -> None:
        self._store = store
        self._locks = locks
        self._clock = clock
        self._publish = publish
        self._ended: list[DomainEvent] = []

    async def _usable_subscription(self, vendor_id: str) -> Subscription:
        """Caller holds the vendor lock."""
        subscription = await self._store.subscriptions.for_vendor(vendor_id)
        if subscription is None:
            raise SubscriptionInactive(vendor_id)
        now = self._clock()
        if subscription.refresh(now):
            await self._store.subscriptions.save(subscription)
            self._ended.extend(subscription.collect_pending_events())
            logger.info("Subscription expired", vendor_id=vendor_id, subscription_id=subscription.id)
        if not subscription.is_active:
            reason = "subscription expired" if now > subscription.end_date else "subscription cancelled"
            raise SubscriptionInactive(vendor_id, reason)
        return subscription

    async def _flush_ended(self) -> None:
        events, self._ended = self._ended, []
        if events and self._publish is not None:
            await self._publish(events)

    async def check_tour_slot(self, vendor_id: str) -> Subscription:
        """Fail the way reserve_tour_slot would, without taking a slot."""
        try:
            async with self._locks("vendor", vendor_id):
                subscription = await self._usable_subscription(vendor_id)
        finally:
            await self._flush_ended()
        if not subscription.has_free_slot:
            raise QuotaExceeded(vendor_id, subscription.tour_limit, subscription.current_tours)
        return subscription

    async def reserve_tour_slot(self, vendor_id: str) -> Subscription:
        try:
            async with self._locks("vendor", vendor_id):
                subscription = await self._usable_subscription(vendor_id)
                subscription.take_slot()
                await self._store.subscriptions.save(subscription)
        finally:
            await self._flush_ended()
        logger.debug(
            "Tour slot reserved",
            vendor_id=vendor_id,
            current_tours=subscription.current_tours,
            tour_limit=subscription.tour_limit,
        )
        return subscription

    async def release_tour_slot(self, vendor_id: str) -> Subscription:
        async with self._locks("vendor", vendor_id):
            subscription = await self._store.subscriptions.for_vendor(vendor_id)
            if subscription is None:
                raise NotFound("subscription", vendor_id)
            if subscription.free_slot():
                await self._store.subscriptions.save(subscription)
            else:
                logger.debug("Tour slot already released", vendor_id=vendor_id)
        return subscription

    async def open_subscription(
        self,
        subscription_id: str,
        vendor_id: str,
        plan_type: PlanType,
        start_date: Optional[datetime] = None,
        term: timedelta = DEFAULT_TERM,
    ) -> tuple[Subscription, Optional[Subscription]]:
        """
        Start a plan for the vendor, replacing the current one.

        Tours already counted move to the new plan, so a plan whose limit is
        below the vendor's current count is refused with QuotaExceeded.
        Returns the new subscription and the one it replaced, if any.
        """
        plan = PLANS[plan_type]
        async with self._locks("vendor", vendor_id):
            previous = await self._store.subscriptions.for_vendor(vendor_id)
            carried = previous.current_tours if previous is not None else 0
            if carried > plan.tour_limit:
                raise QuotaExceeded(vendor_id, plan.tour_limit, carried)
            subscription = Subscription.for_plan(
                id=subscription_id,
                vendor_id=vendor_id,
                plan_type=plan_type,
                start_date=start_date or self._clock(),
                term=term,
                current_tours=carried,
            )
            if previous is not None and previous.is_active:
                previous.end("replaced")
            if previous is not None:
                previous.current_tours = 0
                await self._store.subscriptions.save(previous)
            await self._store.subscriptions.add(subscription)
        return subscription, previous
