"""
Tests for the marketplace facade: end-to-end scenarios, invariants and races.
"""
import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import START, guests, seed_vendor
from hellovisto import Actor, Role
from hellovisto.domain.bookings import BookingCancelled, BookingConfirmed, BookingCreated
from hellovisto.domain.commissions import CommissionRecorded
from hellovisto.domain.tours import TourQuotaExceeded
from hellovisto.errors import (
    InvalidGuestCount,
    InvalidStateTransition,
    NotFound,
    PaymentNotSettled,
    PermissionDenied,
    QuotaExceeded,
    SubscriptionInactive,
    TourUnavailable,
)

TOUR_START = START + timedelta(days=20)


async def book(marketplace, customer, tour_id, count=1):
    return await marketplace.create_booking(customer, tour_id, count, guests(count), TOUR_START)


async def paid_booking(marketplace, customer, tour_id, count=1):
    booking = (await book(marketplace, customer, tour_id, count)).unwrap()
    (await marketplace.on_payment_settled(booking.id)).unwrap()
    return booking


async def add_approved_tours(marketplace, seeded, admin, count):
    tour_ids = []
    for i in range(count):
        tour = (
            await marketplace.create_tour(seeded.vendor, seeded.vendor_id, f"Tour {i}", 100, 8, 2)
        ).unwrap()
        (await marketplace.approve_tour(admin, tour.id)).unwrap()
        tour_ids.append(tour.id)
    return tour_ids


async def current_tours(marketplace, vendor_id):
    return (await marketplace.store.subscriptions.for_vendor(vendor_id)).current_tours


class TestScenarios:
    @pytest.mark.asyncio
    async def test_a_activate_over_quota(self, marketplace, seeded, admin, bus):
        """Basic plan at 10/10: activating another tour fails and the count stays 10."""
        extra = await add_approved_tours(marketplace, seeded, admin, 9)
        assert await current_tours(marketplace, seeded.vendor_id) == 10
        (await marketplace.deactivate_tour(seeded.vendor, extra[0])).unwrap()
        spare = await add_approved_tours(marketplace, seeded, admin, 1)
        assert spare
        assert await current_tours(marketplace, seeded.vendor_id) == 10

        result = await marketplace.activate_tour(seeded.vendor, extra[0])

        assert not result.ok
        assert isinstance(result.error, QuotaExceeded)
        assert result.error.code == "quota_exceeded"
        assert await current_tours(marketplace, seeded.vendor_id) == 10
        assert not (await marketplace.get_tour(extra[0])).unwrap().is_active
        (event,) = bus.of_type(TourQuotaExceeded)
        assert event.tour_id == extra[0]
        assert event.tour_limit == 10

    @pytest.mark.asyncio
    async def test_b_too_many_guests(self, marketplace, seeded, customer):
        result = await book(marketplace, customer, seeded.tour_id, count=5)
        assert isinstance(result.error, InvalidGuestCount)
        assert len(marketplace.store.bookings) == 0

    @pytest.mark.asyncio
    async def test_c_commission_on_confirm(self, marketplace, seeded, customer, bus):
        booking = await paid_booking(marketplace, customer, seeded.tour_id)
        assert booking.total_amount == Decimal("299.00")

        confirmed = (await marketplace.confirm_booking(seeded.vendor, booking.id)).unwrap()

        commission = (await marketplace.get_commission(booking.id)).unwrap()
        assert commission.amount == Decimal("14.95")
        assert commission.percentage == Decimal("0.05")
        assert commission.status == "pending"
        assert confirmed.status == "confirmed"
        assert confirmed.commission_amount == Decimal("14.95")
        assert len(bus.of_type(BookingConfirmed)) == 1
        assert len(bus.of_type(CommissionRecorded)) == 1

    @pytest.mark.asyncio
    async def test_d_cancel_twice(self, marketplace, seeded, customer):
        booking = (await book(marketplace, customer, seeded.tour_id)).unwrap()
        assert (await marketplace.cancel_booking(customer, booking.id)).ok

        second = await marketplace.cancel_booking(customer, booking.id)

        assert isinstance(second.error, InvalidStateTransition)
        stored = (await marketplace.get_booking(booking.id)).unwrap()
        assert stored.status == "cancelled"
        assert stored.payment_status == "pending"

    @pytest.mark.asyncio
    async def test_e_confirm_before_payment(self, marketplace, seeded, customer):
        booking = (await book(marketplace, customer, seeded.tour_id)).unwrap()

        result = await marketplace.confirm_booking(seeded.vendor, booking.id)

        assert isinstance(result.error, PaymentNotSettled)
        stored = (await marketplace.get_booking(booking.id)).unwrap()
        assert stored.status == "pending"
        assert stored.commission_amount is None
        assert not (await marketplace.get_commission(booking.id)).ok


class TestBookingFlow:
    @pytest.mark.asyncio
    async def test_full_lifecycle(self, marketplace, seeded, customer, clock, bus):
        booking = await paid_booking(marketplace, customer, seeded.tour_id, count=3)
        (await marketplace.confirm_booking(None, booking.id)).unwrap()

        early = await marketplace.complete_booking(seeded.vendor, booking.id)
        assert isinstance(early.error, InvalidStateTransition)

        clock.advance(timedelta(days=21))
        done = (await marketplace.complete_booking(seeded.vendor, booking.id)).unwrap()
        assert done.status == "completed"
        assert done.total_amount == Decimal("897.00")
        assert len(bus.of_type(BookingCreated)) == 1

        for attempt in (
            marketplace.confirm_booking(None, booking.id),
            marketplace.cancel_booking(None, booking.id),
            marketplace.complete_booking(None, booking.id),
            marketplace.on_payment_settled(booking.id),
            marketplace.on_refund_issued(booking.id),
        ):
            assert isinstance((await attempt).error, InvalidStateTransition)

    @pytest.mark.asyncio
    async def test_cancel_confirmed_then_refund(self, marketplace, seeded, customer, bus):
        booking = await paid_booking(marketplace, customer, seeded.tour_id)
        (await marketplace.confirm_booking(seeded.vendor, booking.id)).unwrap()

        (await marketplace.cancel_booking(customer, booking.id, reason="sick")).unwrap()
        refunded = (await marketplace.on_refund_issued(booking.id)).unwrap()

        assert refunded.status == "cancelled"
        assert refunded.payment_status == "refunded"
        assert refunded.cancellation_reason == "sick"
        (event,) = bus.of_type(BookingCancelled)
        assert event.needs_refund
        # the commission is a historical fact and stays recorded
        assert (await marketplace.get_commission(booking.id)).ok

    @pytest.mark.asyncio
    async def test_unapproved_tour_not_bookable(self, marketplace, seeded, customer):
        tour = (
            await marketplace.create_tour(seeded.vendor, seeded.vendor_id, "Salt Flats", 150, 6, 2)
        ).unwrap()
        result = await book(marketplace, customer, tour.id)
        assert isinstance(result.error, TourUnavailable)

    @pytest.mark.asyncio
    async def test_suspended_vendor_not_bookable(self, marketplace, seeded, customer, admin):
        (await marketplace.set_vendor_active(admin, seeded.vendor_id, False)).unwrap()
        result = await book(marketplace, customer, seeded.tour_id)
        assert isinstance(result.error, TourUnavailable)

    @pytest.mark.asyncio
    async def test_unknown_booking(self, marketplace):
        result = await marketplace.confirm_booking(None, "missing")
        assert isinstance(result.error, NotFound)

    @pytest.mark.asyncio
    async def test_guest_details_as_dicts(self, marketplace, seeded, customer):
        details = [{"name": "Ana", "age": 31, "idType": "passport", "idNumber": "X1"}]
        booking = (
            await marketplace.create_booking(customer, seeded.tour_id, 1, details, TOUR_START)
        ).unwrap()
        assert booking.guest_details[0].id_type == "passport"

    @pytest.mark.asyncio
    async def test_unwrap_raises_error(self, marketplace, seeded, customer):
        result = await book(marketplace, customer, seeded.tour_id, count=9)
        with pytest.raises(InvalidGuestCount):
            result.unwrap()


class TestPermissions:
    @pytest.mark.asyncio
    async def test_customer_cannot_confirm(self, marketplace, seeded, customer):
        booking = await paid_booking(marketplace, customer, seeded.tour_id)
        result = await marketplace.confirm_booking(customer, booking.id)
        assert isinstance(result.error, PermissionDenied)

    @pytest.mark.asyncio
    async def test_other_customer_cannot_cancel(self, marketplace, seeded, customer):
        booking = (await book(marketplace, customer, seeded.tour_id)).unwrap()
        result = await marketplace.cancel_booking(Actor("cust-2", Role.CUSTOMER), booking.id)
        assert isinstance(result.error, PermissionDenied)
        assert (await marketplace.get_booking(booking.id)).unwrap().status == "pending"

    @pytest.mark.asyncio
    async def test_other_vendor_cannot_deactivate(self, marketplace, seeded):
        result = await marketplace.deactivate_tour(Actor("vendor-user-2", Role.VENDOR), seeded.tour_id)
        assert isinstance(result.error, PermissionDenied)

    @pytest.mark.asyncio
    async def test_only_admin_approves(self, marketplace, seeded):
        tour = (
            await marketplace.create_tour(seeded.vendor, seeded.vendor_id, "Salt Flats", 150, 6, 2)
        ).unwrap()
        result = await marketplace.approve_tour(seeded.vendor, tour.id)
        assert isinstance(result.error, PermissionDenied)


class TestTourQuota:
    @pytest.mark.asyncio
    async def test_deactivate_releases_slot(self, marketplace, seeded):
        assert await current_tours(marketplace, seeded.vendor_id) == 1
        (await marketplace.deactivate_tour(seeded.vendor, seeded.tour_id)).unwrap()
        assert await current_tours(marketplace, seeded.vendor_id) == 0
        again = await marketplace.deactivate_tour(seeded.vendor, seeded.tour_id)
        assert isinstance(again.error, InvalidStateTransition)
        assert await current_tours(marketplace, seeded.vendor_id) == 0

    @pytest.mark.asyncio
    async def test_activate_round_trip(self, marketplace, seeded):
        (await marketplace.deactivate_tour(seeded.vendor, seeded.tour_id)).unwrap()
        (await marketplace.activate_tour(seeded.vendor, seeded.tour_id)).unwrap()
        assert await current_tours(marketplace, seeded.vendor_id) == 1

    @pytest.mark.asyncio
    async def test_unapproved_tours_do_not_count(self, marketplace, seeded):
        (await marketplace.create_tour(seeded.vendor, seeded.vendor_id, "Salt Flats", 150, 6, 2)).unwrap()
        assert await current_tours(marketplace, seeded.vendor_id) == 1

    @pytest.mark.asyncio
    async def test_create_tour_without_subscription(self, marketplace, vendor_actor):
        vendor = (await marketplace.register_vendor(vendor_actor, "No Plan Tours")).unwrap()
        result = await marketplace.create_tour(vendor_actor, vendor.id, "Lagoon", 80, 4, 1)
        assert isinstance(result.error, SubscriptionInactive)
        assert len(marketplace.store.tours) == 0

    @pytest.mark.asyncio
    async def test_approve_over_quota(self, marketplace, seeded, admin):
        pending = (
            await marketplace.create_tour(seeded.vendor, seeded.vendor_id, "Extra", 100, 8, 2)
        ).unwrap()
        await add_approved_tours(marketplace, seeded, admin, 9)

        result = await marketplace.approve_tour(admin, pending.id)

        assert isinstance(result.error, QuotaExceeded)
        assert not (await marketplace.get_tour(pending.id)).unwrap().is_approved
        assert await current_tours(marketplace, seeded.vendor_id) == 10

    @pytest.mark.asyncio
    async def test_concurrent_activations_respect_limit(self, marketplace, seeded, admin):
        """Four approved tours race for three free slots: exactly one loses."""
        spare = (
            await marketplace.create_tour(seeded.vendor, seeded.vendor_id, "Spare", 100, 8, 2)
        ).unwrap()
        (await marketplace.deactivate_tour(seeded.vendor, spare.id)).unwrap()
        (await marketplace.approve_tour(admin, spare.id)).unwrap()
        tour_ids = await add_approved_tours(marketplace, seeded, admin, 9)
        for tour_id in tour_ids[:3]:
            (await marketplace.deactivate_tour(seeded.vendor, tour_id)).unwrap()
        assert await current_tours(marketplace, seeded.vendor_id) == 7

        contenders = tour_ids[:3] + [spare.id]
        results = await asyncio.gather(*(marketplace.activate_tour(seeded.vendor, t) for t in contenders))

        assert sum(r.ok for r in results) == 3
        assert [type(r.error) for r in results if not r.ok] == [QuotaExceeded]
        assert await current_tours(marketplace, seeded.vendor_id) == 10
        active = await marketplace.store.tours.list(lambda t: t.counts_toward_quota)
        assert len(active) == 10



class TestRaces:
    @pytest.mark.asyncio
    async def test_confirm_twice_concurrently(self, marketplace, seeded, customer):
        booking = await paid_booking(marketplace, customer, seeded.tour_id)
        results = await asyncio.gather(
            marketplace.confirm_booking(None, booking.id),
            marketplace.confirm_booking(None, booking.id),
        )
        assert sorted(r.ok for r in results) == [False, True]
        assert len(marketplace.store.commissions) == 1

    @pytest.mark.asyncio
    async def test_confirm_and_cancel_race_stays_consistent(self, marketplace, seeded, customer):
        booking = await paid_booking(marketplace, customer, seeded.tour_id)
        await asyncio.gather(
            marketplace.cancel_booking(customer, booking.id),
            marketplace.confirm_booking(None, booking.id),
        )
        stored = (await marketplace.get_booking(booking.id)).unwrap()
        commission = await marketplace.store.commissions.for_booking(booking.id)
        assert stored.status == "cancelled"
        assert (commission is None) == (stored.commission_amount is None)


class TestEvents:
    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_undo_commit(self, marketplace, seeded, customer, bus):
        def explode(event):
            raise RuntimeError("notification service down")

        bus.subscribe(BookingCancelled, explode)
        booking = (await book(marketplace, customer, seeded.tour_id)).unwrap()

        result = await marketplace.cancel_booking(customer, booking.id)

        assert result.ok
        assert (await marketplace.get_booking(booking.id)).unwrap().status == "cancelled"

    @pytest.mark.asyncio
    async def test_rejected_operation_emits_nothing(self, marketplace, seeded, customer, bus):
        booking = (await book(marketplace, customer, seeded.tour_id)).unwrap()
        before = len(bus.published)
        await marketplace.confirm_booking(None, booking.id)
        assert len(bus.published) == before


@pytest.mark.asyncio
async def test_premium_vendor_seed(marketplace, vendor_actor, admin):
    seeded = await seed_vendor(marketplace, vendor_actor, admin, plan="premium")
    subscription = (await marketplace.get_subscription(seeded.vendor_id)).unwrap()
    assert subscription.tour_limit == 50
    assert subscription.current_tours == 1
