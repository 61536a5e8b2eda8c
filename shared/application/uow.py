"""
Unit of Work Pattern

Manages database transactions and ensures that domain events
are published only after successful transaction commit.
"""

from abc import ABC, abstractmethod
from typing import List
import logging

from django.db import DatabaseError, OperationalError, connection, transaction

from shared.domain.base import DomainEvent
from shared.domain.exceptions import TransientError

logger = logging.getLogger(__name__)


class AbstractUnitOfWork(ABC):
    """Abstract Unit of Work pattern"""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.commit()
        else:
            self.rollback()

    @abstractmethod
    def commit(self):
        """Commit the transaction"""
        pass

    @abstractmethod
    def rollback(self):
        """Rollback the transaction"""
        pass

    @abstractmethod
    def collect_events(self, aggregate):
        """Collect events from aggregate root"""
        pass


class DjangoUnitOfWork(AbstractUnitOfWork):
    """
    Django implementation of Unit of Work

    Wraps transaction.atomic() and bounds the time spent waiting for
    row locks. Lock timeouts and connection failures are re-raised as
    TransientError so callers can surface a retryable error.

    Usage:
        with DjangoUnitOfWork(lock_timeout_ms=5000) as uow:
            reservation = Reservation.objects.select_for_update().get(pk=pk)
            reservation.apply_transition(transition)
            uow.collect_events(reservation)
        # Events are published after commit
    """

    def __init__(self, lock_timeout_ms: int | None = None):
        self._events: List[DomainEvent] = []
        self._transaction = None
        self.lock_timeout_ms = lock_timeout_ms

    def __enter__(self):
        """Start database transaction"""
        self._transaction = transaction.atomic()
        self._transaction.__enter__()
        try:
            self._apply_lock_timeout()
        except DatabaseError as exc:
            self._transaction.__exit__(type(exc), exc, exc.__traceback__)
            raise TransientError(f"Could not start transaction: {exc}") from exc
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Complete or rollback transaction"""
        try:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()
        finally:
            if self._transaction:
                try:
                    self._transaction.__exit__(exc_type, exc_val, exc_tb)
                except OperationalError as exc:
                    raise TransientError(f"Transaction aborted: {exc}") from exc

        if isinstance(exc_val, OperationalError):
            raise TransientError(f"Transaction aborted: {exc_val}") from exc_val
        return False

    def commit(self):
        """
        Schedule event publishing

        Events are published using Django's transaction.on_commit()
        to ensure they're only sent after database commit succeeds.
        """
        logger.debug(f"Committing transaction with {len(self._events)} events")

        events = self._events.copy()
        self._events.clear()

        if events:
            transaction.on_commit(lambda: self._publish_events(events))

    def rollback(self):
        """Rollback changes and discard events"""
        if self._events:
            logger.warning(f"Rolling back transaction, discarding {len(self._events)} events")
        self._events.clear()

    def collect_events(self, aggregate):
        """
        Collect events from an event recorder

        Extracts all domain events from the object and
        clears them from it.
        """
        new_events = getattr(aggregate, 'events', None)
        if new_events:
            self._events.extend(new_events)
            aggregate.clear_events()
            logger.debug(
                f"Collected {len(new_events)} events from "
                f"{aggregate.__class__.__name__} (ID: {aggregate.pk})"
            )

    def _apply_lock_timeout(self):
        if not self.lock_timeout_ms or connection.vendor != 'postgresql':
            return
        with connection.cursor() as cursor:
            cursor.execute("SET LOCAL lock_timeout = %s", [f"{int(self.lock_timeout_ms)}ms"])

    def _publish_events(self, events: List[DomainEvent]):
        """
        Publish collected events to message bus

        Called after successful transaction commit.
        """
        from shared.application.message_bus import message_bus

        logger.info(f"Publishing {len(events)} domain events after commit")

        try:
            message_bus.publish_events(events)
        except Exception as e:
            # State is already committed; publishing failures are left to monitoring
            logger.error(f"Error publishing events: {e}", exc_info=True)
