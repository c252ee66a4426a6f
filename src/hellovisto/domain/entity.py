"""Entity and AggregateRoot: identity-bearing records that collect domain events."""
from __future__ import annotations

from typing import List

from hellovisto.domain.events import DomainEvent


class Entity:
    """Entity: equality by id. Subclasses are dataclasses declared with eq=False."""

    id: str

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Entity) or type(other) is not type(self):
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.id))


class AggregateRoot(Entity):
    """
    Aggregate root. Events raised while it is mutated are kept
    until the facade collects them after the commit.
    """

    def raise_event(self, event: DomainEvent) -> None:
        self.__dict__.setdefault("_pending_events", []).append(event)

    def collect_pending_events(self) -> List[DomainEvent]:
        """Collect and clear pending events."""
        return list(self.__dict__.pop("_pending_events", []))
