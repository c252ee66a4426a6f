"""
Shared fixtures: a marketplace on a fixed clock with a recording event bus and
a store that yields to the event loop on every access, plus a vendor on the
basic plan owning one bookable tour.
"""
import asyncio
import inspect
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from hellovisto import Actor, Marketplace, Role
from hellovisto.domain import GuestDetail, RecordingEventBus
from hellovisto.store import EntityStore

START = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class Interleaving:
    """
    Repository wrapper that suspends before and after every call, so
    operations run through asyncio.gather interleave at each store access.
    """

    def __init__(self, inner):
        self._inner = inner

    def __getattr__(self, name):
        attr = getattr(self._inner, name)
        if not inspect.iscoroutinefunction(attr):
            return attr

        async def call(*args, **kwargs):
            await asyncio.sleep(0)
            result = await attr(*args, **kwargs)
            await asyncio.sleep(0)
            return result

        return call

    def __len__(self):
        return len(self._inner)


def interleaving_store() -> EntityStore:
    store = EntityStore()
    for name in ("vendors", "subscriptions", "tours", "bookings", "commissions", "reviews"):
        setattr(store, name, Interleaving(getattr(store, name)))
    return store


@dataclass
class Seeded:
    vendor_id: str
    tour_id: str
    vendor: Actor


def guests(count: int) -> list[GuestDetail]:
    return [GuestDetail(name=f"Guest {i}", age=30 + i, id_type="passport", id_number=f"P{i:05d}") for i in range(count)]


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def bus():
    return RecordingEventBus()


@pytest.fixture
def marketplace(clock, bus):
    return Marketplace(store=interleaving_store(), bus=bus, clock=clock)


@pytest.fixture
def admin():
    return Actor.admin()


@pytest.fixture
def customer():
    return Actor("cust-1", Role.CUSTOMER)


@pytest.fixture
def vendor_actor():
    return Actor("vendor-user-1", Role.VENDOR)


async def seed_vendor(marketplace, vendor_actor, admin, plan="basic", price=Decimal("299.00"), max_guests=4):
    vendor = (await marketplace.register_vendor(vendor_actor, "Andes Treks")).unwrap()
    (await marketplace.subscribe_vendor(vendor_actor, vendor.id, plan)).unwrap()
    tour = (
        await marketplace.create_tour(vendor_actor, vendor.id, "Inca Trail", price, max_guests, 4)
    ).unwrap()
    (await marketplace.approve_tour(admin, tour.id)).unwrap()
    return Seeded(vendor_id=vendor.id, tour_id=tour.id, vendor=vendor_actor)


@pytest.fixture
async def seeded(marketplace, vendor_actor, admin):
    return await seed_vendor(marketplace, vendor_actor, admin)
