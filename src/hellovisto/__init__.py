"""
Hello Visto booking core: bookings, vendor subscription quotas and platform commission.
Callers go through Marketplace; every operation returns an Outcome.
"""
from hellovisto.config import Settings
from hellovisto.domain import (
    Booking,
    BookingStatus,
    Commission,
    CommissionPolicy,
    GuestDetail,
    PaymentStatus,
    PlanType,
    Subscription,
    Tour,
    Vendor,
)
from hellovisto.errors import (
    DomainError,
    InvalidGuestCount,
    InvalidStateTransition,
    NotFound,
    PaymentNotSettled,
    PermissionDenied,
    QuotaExceeded,
    SubscriptionInactive,
    TourUnavailable,
    ValidationFailed,
)
from hellovisto.facade import Actor, Marketplace, Outcome, Role

__all__ = [
    "Actor",
    "Booking",
    "BookingStatus",
    "Commission",
    "CommissionPolicy",
    "DomainError",
    "GuestDetail",
    "InvalidGuestCount",
    "InvalidStateTransition",
    "Marketplace",
    "NotFound",
    "Outcome",
    "PaymentNotSettled",
    "PaymentStatus",
    "PermissionDenied",
    "PlanType",
    "QuotaExceeded",
    "Role",
    "Settings",
    "Subscription",
    "SubscriptionInactive",
    "Tour",
    "TourUnavailable",
    "ValidationFailed",
    "Vendor",
]
