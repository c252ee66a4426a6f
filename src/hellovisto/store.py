"""
Entity store: in-memory repositories and per-key locks.

Repositories hand out copies, so a record changes only when a caller saves it.
That lets an operation validate and mutate its working copies freely and commit
them all at the end, or drop them on failure.
"""
from __future__ import annotations

import asyncio
import copy
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, List, Optional, TypeVar

from hellovisto.domain import Booking, Commission, Repository, Review, Subscription, Tour, Vendor

T = TypeVar("T")


def _snapshot(aggregate: T) -> T:
    record = copy.deepcopy(aggregate)
    # pending events belong to the caller that raised them, not to the stored record
    record.__dict__.pop("_pending_events", None)
    return record


class InMemoryRepository(Repository[T]):
    def __init__(self) -> None:
        self._store: Dict[str, T] = {}

    async def get(self, id: str) -> Optional[T]:
        record = self._store.get(id)
        return copy.deepcopy(record) if record is not None else None

    async def add(self, aggregate: T) -> None:
        if aggregate.id in self._store:
            raise KeyError(f"Duplicate id: {aggregate.id}")
        self._store[aggregate.id] = _snapshot(aggregate)

    async def save(self, aggregate: T) -> None:
        self._store[aggregate.id] = _snapshot(aggregate)

    async def list(self, predicate: Optional[Callable[[T], bool]] = None) -> List[T]:
        return [
            copy.deepcopy(record)
            for record in self._store.values()
            if predicate is None or predicate(record)
        ]

    def __len__(self) -> int:
        return len(self._store)


class SubscriptionRepository(InMemoryRepository[Subscription]):
    """Subscriptions, also indexed by vendor id (one current subscription per vendor)."""

    def __init__(self) -> None:
        super().__init__()
        self._by_vendor: Dict[str, str] = {}

    async def add(self, aggregate: Subscription) -> None:
        await super().add(aggregate)
        self._by_vendor[aggregate.vendor_id] = aggregate.id

    async def save(self, aggregate: Subscription) -> None:
        await super().save(aggregate)
        self._by_vendor[aggregate.vendor_id] = aggregate.id

    async def for_vendor(self, vendor_id: str) -> Optional[Subscription]:
        subscription_id = self._by_vendor.get(vendor_id)
        if subscription_id is None:
            return None
        return await self.get(subscription_id)


class CommissionRepository(InMemoryRepository[Commission]):
    """Commissions, also indexed by booking id, the idempotency key."""

    def __init__(self) -> None:
        super().__init__()
        self._by_booking: Dict[str, str] = {}

    async def add(self, aggregate: Commission) -> None:
        if aggregate.booking_id in self._by_booking:
            raise KeyError(f"Commission already recorded for booking {aggregate.booking_id}")
        await super().add(aggregate)
        self._by_booking[aggregate.booking_id] = aggregate.id

    async def for_booking(self, booking_id: str) -> Optional[Commission]:
        commission_id = self._by_booking.get(booking_id)
        if commission_id is None:
            return None
        return await self.get(commission_id)


class EntityStore:
    """Canonical records for every entity kind."""

    def __init__(self) -> None:
        self.vendors: InMemoryRepository[Vendor] = InMemoryRepository()
        self.subscriptions = SubscriptionRepository()
        self.tours: InMemoryRepository[Tour] = InMemoryRepository()
        self.bookings: InMemoryRepository[Booking] = InMemoryRepository()
        self.commissions = CommissionRepository()
        self.reviews: InMemoryRepository[Review] = InMemoryRepository()


class KeyedLocks:
    """
    One asyncio.Lock per key; `async with locks("booking", id):` serializes writers.
    A key's lock is dropped once nobody holds or waits for it.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def __call__(self, kind: str, id: str) -> AsyncIterator[None]:
        key = f"{kind}:{id}"
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
