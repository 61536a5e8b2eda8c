"""
Base Domain Classes

Building blocks shared by the reservation and finance contexts:
- DomainEvent: something that happened, published after commit
- EventRecorder: collects events raised while a unit of work is open
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List
from uuid import UUID, uuid4


@dataclass
class DomainEvent:
    """
    Base class for domain events

    Domain events represent something that happened in the domain.
    They are published on the message bus once the surrounding
    transaction has committed.
    """
    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=datetime.now)
    aggregate_id: UUID = None

    def to_dict(self) -> dict:
        """Convert event to dictionary for serialization"""
        return {
            'event_id': str(self.event_id),
            'event_type': self.__class__.__name__,
            'occurred_at': self.occurred_at.isoformat(),
            'aggregate_id': str(self.aggregate_id) if self.aggregate_id else None,
        }


class EventRecorder:
    """
    Mixin for objects that raise domain events

    Django models mix this in so that state transitions can record
    events without knowing about the unit of work.
    """

    def add_event(self, event: DomainEvent):
        """Add a domain event to be published"""
        self._pending_events().append(event)

    def clear_events(self):
        """Clear all collected events (called after collection)"""
        self._pending_events().clear()

    @property
    def events(self) -> List[DomainEvent]:
        """Get copy of collected events"""
        return list(self._pending_events())

    def _pending_events(self) -> List[DomainEvent]:
        if not hasattr(self, '_domain_events'):
            self._domain_events = []
        return self._domain_events
