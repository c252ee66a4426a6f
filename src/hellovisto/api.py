"""
HTTP surface over the facade (Starlette).

One BoundedContext object per area groups its commands and queries:
commands are POST /<context>/commands/<snake_name>, queries are GET or POST
/<context>/queries/<snake_name>. Payloads are dataclasses; the caller's
identity comes from the X-User-Id and X-User-Role headers set by the auth layer.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Type

import structlog
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from hellovisto.errors import DomainError, PermissionDenied, ValidationFailed
from hellovisto.facade import Actor, Marketplace, Outcome, Role

logger = structlog.get_logger(__name__)

STATUS_BY_CODE = {
    "not_found": 404,
    "permission_denied": 403,
    "payment_not_settled": 402,
    "validation_failed": 422,
    "invalid_guest_count": 422,
}

Handler = Callable[[Marketplace, Optional[Actor], Any], Awaitable[Outcome[Any]]]


@dataclass
class Command:
    """Command: intent to change state. One handler per command type."""
    pass


@dataclass
class Query:
    """Query: intent to read. One handler per query type."""
    pass


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _parse_datetime(value: Any, field_name: str) -> datetime:
    """ISO 8601 to an aware datetime; values without an offset are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError as exc:
            raise ValidationFailed(field_name, f"not an ISO 8601 datetime: {value!r}") from exc
    if parsed.tzinfo is None or parsed.utcoffset() is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _actor(request: Request) -> Optional[Actor]:
    user_id = request.headers.get("x-user-id")
    if not user_id:
        return None
    role = request.headers.get("x-user-role", Role.CUSTOMER.value)
    try:
        return Actor(user_id, Role(role))
    except ValueError as exc:
        raise ValidationFailed("x-user-role", f"unknown role {role!r}") from exc


def _render(value: Any) -> Any:
    if isinstance(value, list):
        return [_render(v) for v in value]
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def _error_response(error: DomainError) -> JSONResponse:
    return JSONResponse(
        {"ok": False, "error": error.to_dict()},
        status_code=STATUS_BY_CODE.get(error.code, 409),
    )


class BoundedContext:
    """
    One object = one area of the API.
    .command() .query() then .routes(marketplace) for the Starlette app.
    """

    def __init__(self, name: str, prefix: str | None = None) -> None:
        self.name = name
        self.prefix = prefix or f"/{name}"
        self._commands: list[tuple[Type[Command], Handler, bool]] = []
        self._queries: list[tuple[Type[Query], Handler]] = []

    def command(self, cmd_type: Type[Command], handler: Handler, system: bool = False) -> BoundedContext:
        """system=True accepts calls without a user identity (webhooks, schedulers)."""
        self._commands.append((cmd_type, handler, system))
        return self

    def query(self, query_type: Type[Query], handler: Handler) -> BoundedContext:
        self._queries.append((query_type, handler))
        return self

    def routes(self, marketplace: Marketplace) -> list[Route]:
        routes = []
        for cmd_type, handler, system in self._commands:
            path = f"{self.prefix.rstrip('/')}/commands/{_snake(cmd_type.__name__)}"
            routes.append(
                Route(path, self._make_endpoint(cmd_type, handler, marketplace, system), methods=["POST"])
            )
        for query_type, handler in self._queries:
            path = f"{self.prefix.rstrip('/')}/queries/{_snake(query_type.__name__)}"
            routes.append(
                Route(path, self._make_endpoint(query_type, handler, marketplace, True), methods=["GET", "POST"])
            )
        return routes

    def _make_endpoint(
        self, payload_type: type, handler: Handler, marketplace: Marketplace, system: bool
    ) -> Callable[[Request], Awaitable[Response]]:
        async def endpoint(request: Request) -> Response:
            if request.method == "POST":
                try:
                    body = await request.json()
                except ValueError:
                    body = {}
            else:
                body = dict(request.query_params)
            try:
                actor = _actor(request)
                if actor is None and not system:
                    raise PermissionDenied("anonymous", _snake(payload_type.__name__))
                try:
                    payload = payload_type(**(body or {}))
                except TypeError as exc:
                    raise ValidationFailed("body", str(exc)) from exc
                outcome = await handler(marketplace, actor, payload)
            except DomainError as exc:
                return _error_response(exc)
            if not outcome.ok:
                return _error_response(outcome.error)
            result = _render(outcome.value)
            return JSONResponse({"ok": True, "result": result} if result is not None else {"ok": True})

        return endpoint


# -- payloads ---------------------------------------------------------------


@dataclass
class RegisterVendor(Command):
    business_name: str
    user_id: Optional[str] = None


@dataclass
class SubscribeVendor(Command):
    vendor_id: str
    plan_type: str


@dataclass
class CancelSubscription(Command):
    vendor_id: str


@dataclass
class SetVendorActive(Command):
    vendor_id: str
    is_active: bool


@dataclass
class GetVendor(Query):
    vendor_id: str


@dataclass
class ListVendorBookings(Query):
    vendor_id: str


@dataclass
class ListVendorReviews(Query):
    vendor_id: str


@dataclass
class GetSubscription(Query):
    vendor_id: str


@dataclass
class VendorBookingStats(Query):
    vendor_id: str


@dataclass
class CreateTour(Command):
    vendor_id: str
    title: str
    price: Any
    max_guests: int
    duration: int
    discount_price: Any = None


@dataclass
class ApproveTour(Command):
    tour_id: str


@dataclass
class ActivateTour(Command):
    tour_id: str


@dataclass
class DeactivateTour(Command):
    tour_id: str


@dataclass
class GetTour(Query):
    tour_id: str


@dataclass
class ListVendorTours(Query):
    vendor_id: str


@dataclass
class ListTourReviews(Query):
    tour_id: str


@dataclass
class CreateBooking(Command):
    tour_id: str
    guests: int
    tour_start_date: str
    guest_details: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ConfirmBooking(Command):
    booking_id: str


@dataclass
class CancelBooking(Command):
    booking_id: str
    reason: Optional[str] = None


@dataclass
class CompleteBooking(Command):
    booking_id: str


@dataclass
class AddReview(Command):
    booking_id: str
    rating: int
    comment: str = ""


@dataclass
class GetBooking(Query):
    booking_id: str


@dataclass
class ListCustomerBookings(Query):
    """customer_id defaults to the caller."""

    customer_id: Optional[str] = None


@dataclass
class PaymentSettled(Command):
    booking_id: str


@dataclass
class RefundIssued(Command):
    booking_id: str


@dataclass
class PayoutCommission(Command):
    booking_id: str


@dataclass
class GetCommission(Query):
    booking_id: str


@dataclass
class CommissionSummary(Query):
    vendor_id: Optional[str] = None


@dataclass
class ListCommissions(Query):
    vendor_id: Optional[str] = None
    status: Optional[str] = None


def _list_customer_bookings(m: Marketplace, a: Optional[Actor], q: ListCustomerBookings) -> Awaitable[Outcome[Any]]:
    customer_id = q.customer_id or (a.user_id if a is not None else None)
    if not customer_id:
        raise ValidationFailed("customer_id", "required without a caller identity")
    return m.list_customer_bookings(customer_id)


vendors_context = (
    BoundedContext("vendors")
    .command(RegisterVendor, lambda m, a, c: m.register_vendor(a, c.business_name, c.user_id))
    .command(SubscribeVendor, lambda m, a, c: m.subscribe_vendor(a, c.vendor_id, c.plan_type))
    .command(CancelSubscription, lambda m, a, c: m.cancel_subscription(a, c.vendor_id))
    .command(SetVendorActive, lambda m, a, c: m.set_vendor_active(a, c.vendor_id, bool(c.is_active)))
    .query(GetVendor, lambda m, a, q: m.get_vendor(q.vendor_id))
    .query(GetSubscription, lambda m, a, q: m.get_subscription(q.vendor_id))
    .query(VendorBookingStats, lambda m, a, q: m.vendor_booking_stats(q.vendor_id))
    .query(ListVendorBookings, lambda m, a, q: m.list_vendor_bookings(q.vendor_id))
    .query(ListVendorReviews, lambda m, a, q: m.list_vendor_reviews(q.vendor_id))
)

tours_context = (
    BoundedContext("tours")
    .command(
        CreateTour,
        lambda m, a, c: m.create_tour(
            a, c.vendor_id, c.title, c.price, int(c.max_guests), int(c.duration), c.discount_price
        ),
    )
    .command(ApproveTour, lambda m, a, c: m.approve_tour(a, c.tour_id))
    .command(ActivateTour, lambda m, a, c: m.activate_tour(a, c.tour_id))
    .command(DeactivateTour, lambda m, a, c: m.deactivate_tour(a, c.tour_id))
    .query(GetTour, lambda m, a, q: m.get_tour(q.tour_id))
    .query(ListVendorTours, lambda m, a, q: m.list_vendor_tours(q.vendor_id))
    .query(ListTourReviews, lambda m, a, q: m.list_tour_reviews(q.tour_id))
)

bookings_context = (
    BoundedContext("bookings")
    .command(
        CreateBooking,
        lambda m, a, c: m.create_booking(
            a, c.tour_id, c.guests, c.guest_details, _parse_datetime(c.tour_start_date, "tour_start_date")
        ),
    )
    .command(ConfirmBooking, lambda m, a, c: m.confirm_booking(a, c.booking_id))
    .command(CancelBooking, lambda m, a, c: m.cancel_booking(a, c.booking_id, c.reason))
    .command(CompleteBooking, lambda m, a, c: m.complete_booking(a, c.booking_id))
    .command(AddReview, lambda m, a, c: m.add_review(a, c.booking_id, c.rating, c.comment))
    .query(GetBooking, lambda m, a, q: m.get_booking(q.booking_id))
    .query(ListCustomerBookings, _list_customer_bookings)
)

payments_context = (
    BoundedContext("payments")
    .command(PaymentSettled, lambda m, a, c: m.on_payment_settled(c.booking_id), system=True)
    .command(RefundIssued, lambda m, a, c: m.on_refund_issued(c.booking_id), system=True)
)

commissions_context = (
    BoundedContext("commissions")
    .command(PayoutCommission, lambda m, a, c: m.payout_commission(a, c.booking_id))
    .query(GetCommission, lambda m, a, q: m.get_commission(q.booking_id))
    .query(CommissionSummary, lambda m, a, q: m.commission_summary(q.vendor_id))
    .query(ListCommissions, lambda m, a, q: m.list_commissions(q.vendor_id, q.status))
)

CONTEXTS = (vendors_context, tours_context, bookings_context, payments_context, commissions_context)


def create_app(marketplace: Optional[Marketplace] = None, debug: bool = False) -> Starlette:
    marketplace = marketplace or Marketplace()
    routes: list[Route] = []
    for context in CONTEXTS:
        routes.extend(context.routes(marketplace))
    app = Starlette(debug=debug, routes=routes)
    app.state.marketplace = marketplace
    logger.debug("HTTP app created", routes=len(routes))
    return app
