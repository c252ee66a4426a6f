"""
Domain errors.

Raised by the components and recovered at the facade boundary, where they are
returned inside an Outcome. Each error carries a stable code that the
presentation layer maps to its own wording.
"""
from __future__ import annotations

from typing import Any, Optional


class DomainError(Exception):
    """Base error for every rejected domain operation."""

    code = "domain_error"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFound(DomainError):
    """Raised when a referenced record does not exist."""

    code = "not_found"

    def __init__(self, kind: str, id: str) -> None:
        super().__init__(f"{kind} not found: {id}", details={"kind": kind, "id": id})


class ValidationFailed(DomainError):
    """Raised when a record or command carries malformed values."""

    code = "validation_failed"

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"Invalid {field}: {reason}", details={"field": field, "reason": reason})


class PermissionDenied(DomainError):
    code = "permission_denied"

    def __init__(self, user_id: str, action: str) -> None:
        super().__init__(
            f"User {user_id} may not {action}", details={"user_id": user_id, "action": action}
        )


class QuotaExceeded(DomainError):
    """Raised when the vendor's plan has no free tour slot."""

    code = "quota_exceeded"

    def __init__(self, vendor_id: str, tour_limit: int, current_tours: int) -> None:
        super().__init__(
            f"Tour limit reached for vendor {vendor_id} ({current_tours}/{tour_limit})",
            details={
                "vendor_id": vendor_id,
                "tour_limit": tour_limit,
                "current_tours": current_tours,
            },
        )


class SubscriptionInactive(DomainError):
    """Raised when the vendor's subscription is missing, cancelled or expired."""

    code = "subscription_inactive"

    def __init__(self, vendor_id: str, reason: str = "no active subscription") -> None:
        super().__init__(
            f"Subscription inactive for vendor {vendor_id}: {reason}",
            details={"vendor_id": vendor_id, "reason": reason},
        )


class InvalidGuestCount(DomainError):
    code = "invalid_guest_count"

    def __init__(self, guests: int, max_guests: int, reason: Optional[str] = None) -> None:
        message = f"Guest count {guests} outside 1..{max_guests}"
        if reason:
            message = f"Invalid guest count {guests}: {reason}"
        super().__init__(message, details={"guests": guests, "max_guests": max_guests})


class TourUnavailable(DomainError):
    """Raised when a tour is inactive, unapproved or its vendor is suspended."""

    code = "tour_unavailable"

    def __init__(self, tour_id: str, reason: str) -> None:
        super().__init__(
            f"Tour {tour_id} unavailable: {reason}", details={"tour_id": tour_id, "reason": reason}
        )


class InvalidStateTransition(DomainError):
    """Raised for any transition outside the allowed table, terminal states included."""

    code = "invalid_state_transition"

    def __init__(self, entity: str, id: str, current: str, event: str) -> None:
        super().__init__(
            f"Cannot {event} {entity} {id} in state {current}",
            details={"entity": entity, "id": id, "current": current, "event": event},
        )


class PaymentNotSettled(DomainError):
    code = "payment_not_settled"

    def __init__(self, booking_id: str, payment_status: str) -> None:
        super().__init__(
            f"Booking {booking_id} cannot be confirmed while payment is {payment_status}",
            details={"booking_id": booking_id, "payment_status": payment_status},
        )
