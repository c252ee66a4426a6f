"""Domain events: base type, event bus protocol and in-process dispatcher."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Protocol, runtime_checkable

import structlog

logger = structlog.get_logger(__name__)


@runtime_checkable
class EventBus(Protocol):
    """Event bus protocol: publish and subscribe. Notification delivery plugs in here."""

    async def publish(self, event: DomainEvent) -> None:
        ...

    def subscribe(self, event_type: type[DomainEvent], handler: Callable[..., Any]) -> None:
        ...


@dataclass
class DomainEvent:
    """Base domain event type. Subclasses are dataclasses with fields."""

    @property
    def name(self) -> str:
        return type(self).__name__


class InProcessEventDispatcher:
    """
    Dispatcher: subscribe by event type, publish invokes handlers.
    Handlers subscribed to DomainEvent receive every event.
    A failing handler is logged and does not stop the others.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Callable[..., Any]]] = {}

    def subscribe(self, event_type: type[DomainEvent], handler: Callable[..., Any]) -> None:
        if event_type not in self._handlers:
            self._handlers[event_type] = []
        self._handlers[event_type].append(handler)

    async def publish(self, event: DomainEvent) -> None:
        event_type = type(event)
        handlers = list(self._handlers.get(event_type, []))
        if event_type is not DomainEvent:
            handlers.extend(self._handlers.get(DomainEvent, []))
        for handler in handlers:
            try:
                result = handler(event)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Event handler failed", event_type=event.name, handler=repr(handler))


class RecordingEventBus(InProcessEventDispatcher):
    """In-process dispatcher that also keeps every published event, in order."""

    def __init__(self) -> None:
        super().__init__()
        self.published: list[DomainEvent] = []

    async def publish(self, event: DomainEvent) -> None:
        self.published.append(event)
        await super().publish(event)

    def of_type(self, event_type: type[DomainEvent]) -> list[DomainEvent]:
        return [e for e in self.published if isinstance(e, event_type)]
