"""
Reservation Domain Events

Events that represent things that have happened to a reservation.
These are published after successful transaction commits.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from shared.domain.base import DomainEvent


@dataclass
class ReservationConfirmed(DomainEvent):
    """
    Event: Reservation confirmed (PENDING -> CONFIRMED)

    Triggers:
    - Booking confirmation to the customer
    - Studio schedule update
    """
    reservation_id: UUID = None
    booking_code: str = ''
    payment_status: str = ''
    confirmed_at: datetime | None = None


@dataclass
class ReservationSettled(DomainEvent):
    """
    Event: Reservation fully paid (payment_status -> PAID)

    Triggers:
    - Receipt to the customer
    - Revenue reporting
    """
    reservation_id: UUID = None
    booking_code: str = ''
    amount_settled: Decimal = Decimal('0')


@dataclass
class ReservationCancelled(DomainEvent):
    """Event: Reservation cancelled by staff or the booking flow"""
    reservation_id: UUID = None
    booking_code: str = ''
    reason: str = ''
    old_status: str = ''
    payment_status: str = ''


@dataclass
class ReservationCompleted(DomainEvent):
    """Event: Session took place (CONFIRMED -> COMPLETED)"""
    reservation_id: UUID = None
    booking_code: str = ''
