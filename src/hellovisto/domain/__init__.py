"""Domain layer: entities, value objects, events and repository interface."""
from hellovisto.domain.entity import AggregateRoot, Entity
from hellovisto.domain.value_object import GuestDetail, ValueObject, round2
from hellovisto.domain.events import DomainEvent, EventBus, InProcessEventDispatcher, RecordingEventBus
from hellovisto.domain.repository import Repository
from hellovisto.domain.vendors import PLANS, PlanSpec, PlanType, Subscription, Vendor
from hellovisto.domain.tours import Review, Tour
from hellovisto.domain.bookings import Booking, BookingStatus, PaymentStatus
from hellovisto.domain.commissions import Commission, CommissionPolicy, CommissionStatus

__all__ = [
    "AggregateRoot",
    "Entity",
    "ValueObject",
    "GuestDetail",
    "round2",
    "DomainEvent",
    "EventBus",
    "InProcessEventDispatcher",
    "RecordingEventBus",
    "Repository",
    "PLANS",
    "PlanSpec",
    "PlanType",
    "Subscription",
    "Vendor",
    "Review",
    "Tour",
    "Booking",
    "BookingStatus",
    "PaymentStatus",
    "Commission",
    "CommissionPolicy",
    "CommissionStatus",
]
