"""
Payment Domain Events

Published after the reconciliation transaction commits.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from shared.domain.base import DomainEvent


@dataclass
class PaymentReceived(DomainEvent):
    """
    Event: Payment settled (PENDING/FAILED -> PAID)

    Triggers:
    - Receipt to the customer
    - Studio payout reporting
    """
    payment_id: UUID = None
    reservation_id: UUID = None
    amount: Decimal = Decimal('0')
    payment_type: str = ''
    net_amount: Decimal = Decimal('0')
    paid_at: datetime | None = None


@dataclass
class PaymentFailed(DomainEvent):
    """Event: Gateway reported the payment as expired, cancelled or failed"""
    payment_id: UUID = None
    reservation_id: UUID = None
    external_status: str = ''


@dataclass
class PaymentRefunded(DomainEvent):
    """Event: A settled payment was refunded"""
    payment_id: UUID = None
    reservation_id: UUID = None
    amount: Decimal = Decimal('0')
