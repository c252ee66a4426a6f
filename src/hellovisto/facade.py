"""
Marketplace facade: the single entry point for UI handlers, the payment
webhook and the notification dispatcher.

Each operation runs its checks on working copies, commits with saves that
cannot fail, then publishes the collected domain events. Domain errors are
returned inside an Outcome; nothing is raised across this boundary.
"""
from __future__ import annotations

import functools
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Iterable, Optional, Sequence, TypeVar
from uuid import uuid4

import structlog

from hellovisto.clock import utcnow
from hellovisto.commission import CommissionCalculator
from hellovisto.domain import (
    AggregateRoot,
    Booking,
    BookingStatus,
    CommissionPolicy,
    CommissionStatus,
    DomainEvent,
    EventBus,
    GuestDetail,
    InProcessEventDispatcher,
    Review,
    Tour,
    Vendor,
)
from hellovisto.domain.tours import ReviewAdded, TourCreated, TourQuotaExceeded
from hellovisto.domain.vendors import parse_plan
from hellovisto.errors import (
    DomainError,
    InvalidStateTransition,
    NotFound,
    PermissionDenied,
    QuotaExceeded,
    ValidationFailed,
)
from hellovisto.lifecycle import BookingLifecycleManager
from hellovisto.projections import (
    BookingView,
    CommissionSummary,
    CommissionView,
    ReviewView,
    SubscriptionView,
    TourView,
    VendorBookingStats,
    VendorView,
)
from hellovisto.quota import SubscriptionQuotaTracker
from hellovisto.store import EntityStore, KeyedLocks

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class Role(str, Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    """Caller identity as supplied by the auth layer; trusted as given."""

    user_id: str
    role: Role

    @classmethod
    def admin(cls, user_id: str = "admin") -> Actor:
        return cls(user_id, Role.ADMIN)

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a facade operation: a value, or the domain error that rejected it."""

    value: Optional[T] = None
    error: Optional[DomainError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def operation(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[Outcome[T]]]:
    """Turn DomainError into a failed Outcome. Other exceptions propagate."""

    @functools.wraps(func)
    async def wrapper(self: Marketplace, *args: Any, **kwargs: Any) -> Outcome[T]:
        try:
            value = await func(self, *args, **kwargs)
        except DomainError as exc:
            logger.info("Operation rejected", operation=func.__name__, code=exc.code, details=exc.details)
            return Outcome(error=exc)
        return Outcome(value=value)

    return wrapper


def _new_id() -> str:
    return str(uuid4())


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _newest_first(records: Iterable[T], attribute: str) -> list[T]:
    """Sort by a timestamp, newest first; ties keep store order."""
    return sorted(records, key=lambda r: getattr(r, attribute) or _EPOCH, reverse=True)


class Marketplace:
    def __init__(
        self,
        store: Optional[EntityStore] = None,
        bus: Optional[EventBus] = None,
        policy: Optional[CommissionPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store or EntityStore()
        self.bus = bus if bus is not None else InProcessEventDispatcher()
        self._clock = clock
        self._locks = KeyedLocks()
        self.quota = SubscriptionQuotaTracker(self.store, self._locks, clock, publish=self._publish)
        self.lifecycle = BookingLifecycleManager()
        self.commissions = CommissionCalculator(self.store, policy, clock)

    # -- plumbing ---------------------------------------------------------

    async def _publish(self, events: Iterable[DomainEvent]) -> None:
        for event in events:
            try:
                await self.bus.publish(event)
            except Exception:
                # delivery belongs to the subscriber side; the commit stands
                logger.exception("Event publish failed", event_type=event.name)

    async def _publish_from(self, *aggregates: Optional[AggregateRoot]) -> None:
        events: list[DomainEvent] = []
        for aggregate in aggregates:
            if aggregate is not None:
                events.extend(aggregate.collect_pending_events())
        await self._publish(events)

    async def _vendor(self, vendor_id: str) -> Vendor:
        vendor = await self.store.vendors.get(vendor_id)
        if vendor is None:
            raise NotFound("vendor", vendor_id)
        return vendor

    async def _tour(self, tour_id: str) -> Tour:
        tour = await self.store.tours.get(tour_id)
        if tour is None:
            raise NotFound("tour", tour_id)
        return tour

    async def _booking(self, booking_id: str) -> Booking:
        booking = await self.store.bookings.get(booking_id)
        if booking is None:
            raise NotFound("booking", booking_id)
        return booking

    @staticmethod
    def _require_admin(actor: Optional[Actor], action: str) -> None:
        if actor is not None and not actor.is_admin:
            raise PermissionDenied(actor.user_id, action)

    @staticmethod
    def _require_vendor_owner(actor: Optional[Actor], vendor: Vendor, action: str) -> None:
        """System calls (actor None) and admins pass; vendors only for their own records."""
        if actor is None or actor.is_admin:
            return
        if actor.role is not Role.VENDOR or vendor.user_id != actor.user_id:
            raise PermissionDenied(actor.user_id, action)

    async def _require_booking_party(
        self, actor: Optional[Actor], booking: Booking, action: str, allow_customer: bool
    ) -> None:
        if actor is None or actor.is_admin:
            return
        if actor.role is Role.CUSTOMER:
            if allow_customer and booking.customer_id == actor.user_id:
                return
            raise PermissionDenied(actor.user_id, action)
        self._require_vendor_owner(actor, await self._vendor(booking.vendor_id), action)

    # -- vendors and subscriptions -----------------------------------------

    @operation
    async def register_vendor(
        self, actor: Actor, business_name: str, user_id: Optional[str] = None
    ) -> VendorView:
        """Vendors register themselves; admins may register on behalf of user_id."""
        if actor.role is Role.CUSTOMER:
            raise PermissionDenied(actor.user_id, "register a vendor")
        if actor.role is Role.VENDOR and user_id not in (None, actor.user_id):
            raise PermissionDenied(actor.user_id, "register a vendor for another user")
        vendor = Vendor(
            id=_new_id(),
            business_name=business_name,
            user_id=actor.user_id if actor.role is Role.VENDOR else user_id,
            created_at=self._clock(),
        )
        await self.store.vendors.add(vendor)
        logger.info("Vendor registered", vendor_id=vendor.id)
        return VendorView.of(vendor)

    @operation
    async def subscribe_vendor(
        self,
        actor: Actor,
        vendor_id: str,
        plan_type: str,
        start_date: Optional[datetime] = None,
    ) -> SubscriptionView:
        plan = parse_plan(plan_type)
        vendor = await self._vendor(vendor_id)
        self._require_vendor_owner(actor, vendor, "change the subscription")
        subscription, previous = await self.quota.open_subscription(
            _new_id(), vendor_id, plan, start_date=start_date
        )
        vendor.subscription_id = subscription.id
        await self.store.vendors.save(vendor)
        logger.info(
            "Vendor subscribed",
            vendor_id=vendor_id,
            plan_type=plan.value,
            tour_limit=subscription.tour_limit,
            carried_tours=subscription.current_tours,
        )
        await self._publish_from(previous, subscription)
        return SubscriptionView.of(subscription, self._clock())

    async def _drain_vendor_tours(self, vendor_id: str) -> int:
        """Deactivate every active tour of the vendor, releasing the slots they hold."""
        active = await self.store.tours.list(lambda t: t.vendor_id == vendor_id and t.is_active)
        drained = 0
        for candidate in active:
            async with self._locks("tour", candidate.id):
                tour = await self._tour(candidate.id)
                if not tour.is_active:
                    continue
                counted = tour.counts_toward_quota
                tour.deactivate()
                await self.store.tours.save(tour)
                if counted:
                    await self.quota.release_tour_slot(vendor_id)
            drained += 1
            await self._publish_from(tour)
        return drained

    @operation
    async def cancel_subscription(self, actor: Actor, vendor_id: str) -> SubscriptionView:
        vendor = await self._vendor(vendor_id)
        self._require_vendor_owner(actor, vendor, "cancel the subscription")
        async with self._locks("vendor", vendor_id):
            subscription = await self.store.subscriptions.for_vendor(vendor_id)
            if subscription is None:
                raise NotFound("subscription", vendor_id)
            if not subscription.is_active:
                raise InvalidStateTransition("subscription", subscription.id, "inactive", "cancel")
            subscription.end("cancelled")
            await self.store.subscriptions.save(subscription)
        await self._publish_from(subscription)
        drained = await self._drain_vendor_tours(vendor_id)
        logger.info("Subscription cancelled", vendor_id=vendor_id, tours_deactivated=drained)
        refreshed = await self.store.subscriptions.for_vendor(vendor_id)
        return SubscriptionView.of(refreshed, self._clock())

    @operation
    async def expire_subscriptions(self, now: Optional[datetime] = None) -> list[str]:
        """
        Sweep: end every current subscription past its term and take its tours
        offline. Also picks up plans already ended on use whose tours are still live.
        """
        now = now or self._clock()
        due = await self.store.subscriptions.list(lambda s: now > s.end_date)
        expired: list[str] = []
        for candidate in due:
            vendor_id = candidate.vendor_id
            async with self._locks("vendor", vendor_id):
                subscription = await self.store.subscriptions.for_vendor(vendor_id)
                if subscription is None or subscription.id != candidate.id:
                    continue
                ended = subscription.refresh(now)
                if ended:
                    await self.store.subscriptions.save(subscription)
            await self._publish_from(subscription)
            drained = await self._drain_vendor_tours(vendor_id)
            if ended or drained:
                expired.append(vendor_id)
        if expired:
            logger.info("Subscriptions expired", vendors=expired)
        return expired

    @operation
    async def set_vendor_active(self, actor: Actor, vendor_id: str, is_active: bool) -> VendorView:
        self._require_admin(actor, "moderate vendors")
        vendor = await self._vendor(vendor_id)
        vendor.is_active = is_active
        await self.store.vendors.save(vendor)
        logger.info("Vendor moderated", vendor_id=vendor_id, is_active=is_active)
        return VendorView.of(vendor)

    # -- tours --------------------------------------------------------------

    async def _quota_rejected(self, exc: QuotaExceeded, tour_id: Optional[str]) -> None:
        await self._publish(
            [
                TourQuotaExceeded(
                    vendor_id=exc.details["vendor_id"],
                    tour_limit=exc.details["tour_limit"],
                    current_tours=exc.details["current_tours"],
                    tour_id=tour_id,
                )
            ]
        )

    @operation
    async def create_tour(
        self,
        actor: Actor,
        vendor_id: str,
        title: str,
        price: Any,
        max_guests: int,
        duration: int,
        discount_price: Any = None,
    ) -> TourView:
        """New tours start active and unapproved; they take a quota slot on approval."""
        vendor = await self._vendor(vendor_id)
        self._require_vendor_owner(actor, vendor, "create tours")
        if not vendor.is_active:
            raise PermissionDenied(actor.user_id, "create tours while the vendor is suspended")
        tour = Tour(
            id=_new_id(),
            vendor_id=vendor_id,
            title=title,
            price=price,
            discount_price=discount_price,
            max_guests=max_guests,
            duration=duration,
            is_active=True,
            created_at=self._clock(),
        )
        try:
            await self.quota.check_tour_slot(vendor_id)
        except QuotaExceeded as exc:
            await self._quota_rejected(exc, None)
            raise
        tour.raise_event(TourCreated(tour_id=tour.id, vendor_id=vendor_id))
        await self.store.tours.add(tour)
        await self._publish_from(tour)
        return TourView.of(tour)

    @operation
    async def approve_tour(self, actor: Actor, tour_id: str) -> TourView:
        self._require_admin(actor, "approve tours")
        async with self._locks("tour", tour_id):
            tour = await self._tour(tour_id)
            if tour.is_approved:
                raise InvalidStateTransition("tour", tour_id, "approved", "approve")
            if tour.is_active:
                try:
                    await self.quota.reserve_tour_slot(tour.vendor_id)
                except QuotaExceeded as exc:
                    await self._quota_rejected(exc, tour_id)
                    raise
            tour.approve()
            await self.store.tours.save(tour)
        await self._publish_from(tour)
        return TourView.of(tour)

    @operation
    async def activate_tour(self, actor: Optional[Actor], tour_id: str) -> TourView:
        async with self._locks("tour", tour_id):
            tour = await self._tour(tour_id)
            self._require_vendor_owner(actor, await self._vendor(tour.vendor_id), "activate tours")
            if tour.is_active:
                raise InvalidStateTransition("tour", tour_id, "active", "activate")
            try:
                if tour.is_approved:
                    await self.quota.reserve_tour_slot(tour.vendor_id)
                else:
                    await self.quota.check_tour_slot(tour.vendor_id)
            except QuotaExceeded as exc:
                await self._quota_rejected(exc, tour_id)
                raise
            tour.activate()
            await self.store.tours.save(tour)
        logger.info("Tour activated", tour_id=tour_id, vendor_id=tour.vendor_id)
        await self._publish_from(tour)
        return TourView.of(tour)

    @operation
    async def deactivate_tour(self, actor: Optional[Actor], tour_id: str) -> TourView:
        async with self._locks("tour", tour_id):
            tour = await self._tour(tour_id)
            self._require_vendor_owner(actor, await self._vendor(tour.vendor_id), "deactivate tours")
            if not tour.is_active:
                raise InvalidStateTransition("tour", tour_id, "inactive", "deactivate")
            counted = tour.counts_toward_quota
            tour.deactivate()
            await self.store.tours.save(tour)
            if counted:
                await self.quota.release_tour_slot(tour.vendor_id)
        logger.info("Tour deactivated", tour_id=tour_id, vendor_id=tour.vendor_id)
        await self._publish_from(tour)
        return TourView.of(tour)

    # -- bookings -----------------------------------------------------------

    @operation
    async def create_booking(
        self,
        actor: Actor,
        tour_id: str,
        guests: int,
        guest_details: Sequence[GuestDetail | dict[str, Any]],
        tour_start_date: datetime,
    ) -> BookingView:
        if actor.role is Role.VENDOR:
            raise PermissionDenied(actor.user_id, "book tours")
        details = [g if isinstance(g, GuestDetail) else GuestDetail.from_dict(g) for g in guest_details]
        tour = await self._tour(tour_id)
        vendor = await self._vendor(tour.vendor_id)
        booking = self.lifecycle.open(
            booking_id=_new_id(),
            tour=tour,
            vendor=vendor,
            customer_id=actor.user_id,
            guests=guests,
            guest_details=details,
            tour_start_date=tour_start_date,
            now=self._clock(),
        )
        await self.store.bookings.add(booking)
        logger.info(
            "Booking created",
            booking_id=booking.id,
            tour_id=tour_id,
            guests=guests,
            total_amount=str(booking.total_amount),
        )
        await self._publish_from(booking)
        return BookingView.of(booking)

    @operation
    async def confirm_booking(self, actor: Optional[Actor], booking_id: str) -> BookingView:
        async with self._locks("booking", booking_id):
            booking = await self._booking(booking_id)
            await self._require_booking_party(actor, booking, "confirm bookings", allow_customer=False)
            self.lifecycle.check_confirmable(booking)
            commission = await self.commissions.compute(booking)
            self.lifecycle.confirm(booking, commission.amount, self._clock())
            await self.commissions.record(commission)
            await self.store.bookings.save(booking)
        logger.info("Booking confirmed", booking_id=booking_id, commission=str(commission.amount))
        await self._publish_from(booking, commission)
        return BookingView.of(booking)

    @operation
    async def cancel_booking(
        self, actor: Optional[Actor], booking_id: str, reason: Optional[str] = None
    ) -> BookingView:
        async with self._locks("booking", booking_id):
            booking = await self._booking(booking_id)
            await self._require_booking_party(actor, booking, "cancel bookings", allow_customer=True)
            self.lifecycle.cancel(booking, reason, self._clock())
            await self.store.bookings.save(booking)
        logger.info("Booking cancelled", booking_id=booking_id, payment_status=booking.payment_status.value)
        await self._publish_from(booking)
        return BookingView.of(booking)

    @operation
    async def complete_booking(
        self, actor: Optional[Actor], booking_id: str, now: Optional[datetime] = None
    ) -> BookingView:
        async with self._locks("booking", booking_id):
            booking = await self._booking(booking_id)
            await self._require_booking_party(actor, booking, "complete bookings", allow_customer=False)
            self.lifecycle.complete(booking, now or self._clock())
            await self.store.bookings.save(booking)
        logger.info("Booking completed", booking_id=booking_id)
        await self._publish_from(booking)
        return BookingView.of(booking)

    @operation
    async def on_payment_settled(self, booking_id: str) -> BookingView:
        async with self._locks("booking", booking_id):
            booking = await self._booking(booking_id)
            self.lifecycle.settle_payment(booking, self._clock())
            await self.store.bookings.save(booking)
        logger.info("Payment settled", booking_id=booking_id)
        await self._publish_from(booking)
        return BookingView.of(booking)

    @operation
    async def on_refund_issued(self, booking_id: str) -> BookingView:
        async with self._locks("booking", booking_id):
            booking = await self._booking(booking_id)
            self.lifecycle.issue_refund(booking, self._clock())
            await self.store.bookings.save(booking)
        await self._publish_from(booking)
        return BookingView.of(booking)

    @operation
    async def payout_commission(self, actor: Actor, booking_id: str) -> CommissionView:
        self._require_admin(actor, "pay out commissions")
        async with self._locks("booking", booking_id):
            booking = await self._booking(booking_id)
            commission = await self.commissions.mark_paid(booking)
        logger.info("Commission paid out", booking_id=booking_id, amount=str(commission.amount))
        await self._publish_from(commission)
        return CommissionView.of(commission)

    # -- reviews --------------------------------------------------------------

    @operation
    async def add_review(self, actor: Actor, booking_id: str, rating: int, comment: str = "") -> dict[str, Any]:
        booking = await self._booking(booking_id)
        if actor.role is not Role.CUSTOMER or booking.customer_id != actor.user_id:
            raise PermissionDenied(actor.user_id, "review this booking")
        if booking.status is not BookingStatus.COMPLETED:
            raise InvalidStateTransition("booking", booking_id, booking.status.value, "review")
        if await self.store.reviews.list(lambda r: r.booking_id == booking_id):
            raise ValidationFailed("booking_id", "booking already reviewed")
        review = Review(
            id=_new_id(),
            tour_id=booking.tour_id,
            customer_id=actor.user_id,
            vendor_id=booking.vendor_id,
            rating=rating,
            comment=comment,
            booking_id=booking_id,
            created_at=self._clock(),
        )
        await self.store.reviews.add(review)
        tour_rating = await self._refresh_tour_rating(booking.tour_id)
        vendor_rating = await self._refresh_vendor_rating(booking.vendor_id)
        await self._publish(
            [ReviewAdded(review_id=review.id, tour_id=review.tour_id, vendor_id=review.vendor_id, rating=rating)]
        )
        return {"review_id": review.id, "tour_rating": tour_rating, "vendor_rating": vendor_rating}

    async def _refresh_tour_rating(self, tour_id: str) -> float:
        reviews = await self.store.reviews.list(lambda r: r.tour_id == tour_id)
        async with self._locks("tour", tour_id):
            tour = await self._tour(tour_id)
            tour.total_reviews = len(reviews)
            tour.rating = round(sum(r.rating for r in reviews) / len(reviews), 2) if reviews else 0.0
            await self.store.tours.save(tour)
        return tour.rating

    async def _refresh_vendor_rating(self, vendor_id: str) -> float:
        reviews = await self.store.reviews.list(lambda r: r.vendor_id == vendor_id)
        async with self._locks("vendor-profile", vendor_id):
            vendor = await self._vendor(vendor_id)
            vendor.total_reviews = len(reviews)
            vendor.rating = round(sum(r.rating for r in reviews) / len(reviews), 2) if reviews else 0.0
            await self.store.vendors.save(vendor)
        return vendor.rating

    # -- read projections -------------------------------------------------

    @operation
    async def get_booking(self, booking_id: str) -> BookingView:
        return BookingView.of(await self._booking(booking_id))

    @operation
    async def get_tour(self, tour_id: str) -> TourView:
        return TourView.of(await self._tour(tour_id))

    @operation
    async def get_vendor(self, vendor_id: str) -> VendorView:
        return VendorView.of(await self._vendor(vendor_id))

    @operation
    async def get_subscription(self, vendor_id: str) -> SubscriptionView:
        subscription = await self.store.subscriptions.for_vendor(vendor_id)
        if subscription is None:
            raise NotFound("subscription", vendor_id)
        return SubscriptionView.of(subscription, self._clock())

    @operation
    async def get_commission(self, booking_id: str) -> CommissionView:
        commission = await self.store.commissions.for_booking(booking_id)
        if commission is None:
            raise NotFound("commission", booking_id)
        return CommissionView.of(commission)

    @operation
    async def vendor_booking_stats(self, vendor_id: str) -> VendorBookingStats:
        await self._vendor(vendor_id)
        return VendorBookingStats.of(await self.store.bookings.list(lambda b: b.vendor_id == vendor_id))

    @operation
    async def commission_summary(self, vendor_id: Optional[str] = None) -> CommissionSummary:
        commissions = await self.store.commissions.list(
            None if vendor_id is None else (lambda c: c.vendor_id == vendor_id)
        )
        return CommissionSummary.of(commissions)

    # -- list projections, newest first -------------------------------------

    @operation
    async def list_customer_bookings(self, customer_id: str) -> list[BookingView]:
        bookings = await self.store.bookings.list(lambda b: b.customer_id == customer_id)
        return [BookingView.of(b) for b in _newest_first(bookings, "booking_date")]

    @operation
    async def list_vendor_bookings(self, vendor_id: str) -> list[BookingView]:
        await self._vendor(vendor_id)
        bookings = await self.store.bookings.list(lambda b: b.vendor_id == vendor_id)
        return [BookingView.of(b) for b in _newest_first(bookings, "booking_date")]

    @operation
    async def list_vendor_tours(self, vendor_id: str) -> list[TourView]:
        await self._vendor(vendor_id)
        tours = await self.store.tours.list(lambda t: t.vendor_id == vendor_id)
        return [TourView.of(t) for t in _newest_first(tours, "created_at")]

    @operation
    async def list_tour_reviews(self, tour_id: str) -> list[ReviewView]:
        await self._tour(tour_id)
        reviews = await self.store.reviews.list(lambda r: r.tour_id == tour_id)
        return [ReviewView.of(r) for r in _newest_first(reviews, "created_at")]

    @operation
    async def list_vendor_reviews(self, vendor_id: str) -> list[ReviewView]:
        await self._vendor(vendor_id)
        reviews = await self.store.reviews.list(lambda r: r.vendor_id == vendor_id)
        return [ReviewView.of(r) for r in _newest_first(reviews, "created_at")]

    @operation
    async def list_commissions(
        self, vendor_id: Optional[str] = None, status: Optional[str] = None
    ) -> list[CommissionView]:
        """Commission ledger for the admin screen, optionally narrowed to a vendor or status."""
        wanted = None
        if status is not None:
            try:
                wanted = CommissionStatus(status)
            except ValueError:
                raise ValidationFailed("status", f"unknown commission status {status!r}") from None
        commissions = await self.store.commissions.list(
            lambda c: (vendor_id is None or c.vendor_id == vendor_id) and (wanted is None or c.status is wanted)
        )
        return [CommissionView.of(c) for c in _newest_first(commissions, "created_at")]

