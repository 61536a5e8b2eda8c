"""
Reservation State Machine

Two orthogonal state variables live on a reservation:

status (lifecycle):
- PENDING -> CONFIRMED (payment covers the confirmation threshold)
- PENDING -> CANCELLED
- CONFIRMED -> COMPLETED (session took place)
- CONFIRMED -> CANCELLED

payment_status (settlement, monotonic towards settlement):
- PENDING -> PARTIAL | PAID | FAILED
- PARTIAL -> PAID | REFUNDED
- PAID -> REFUNDED
- FAILED -> PARTIAL | PAID (a retried payment succeeded)

The machine only plans transitions; the Reservation model applies them.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from shared.domain.exceptions import (
    InvalidStateError,
    InvalidTransitionError,
    ValidationError,
)


class ReservationStatus(models.TextChoices):
    PENDING = "pending", _("Pending")
    CONFIRMED = "confirmed", _("Confirmed")
    CANCELLED = "cancelled", _("Cancelled")
    COMPLETED = "completed", _("Completed")


class SettlementStatus(models.TextChoices):
    PENDING = "pending", _("Unpaid")
    PARTIAL = "partial", _("Partially paid")
    PAID = "paid", _("Paid")
    FAILED = "failed", _("Payment failed")
    REFUNDED = "refunded", _("Refunded")


LIFECYCLE_TRANSITIONS = {
    ReservationStatus.PENDING: {ReservationStatus.CONFIRMED, ReservationStatus.CANCELLED},
    ReservationStatus.CONFIRMED: {ReservationStatus.COMPLETED, ReservationStatus.CANCELLED},
    ReservationStatus.CANCELLED: set(),
    ReservationStatus.COMPLETED: set(),
}

SETTLEMENT_TRANSITIONS = {
    SettlementStatus.PENDING: {SettlementStatus.PARTIAL, SettlementStatus.PAID, SettlementStatus.FAILED},
    SettlementStatus.PARTIAL: {SettlementStatus.PAID, SettlementStatus.REFUNDED},
    SettlementStatus.PAID: {SettlementStatus.REFUNDED},
    SettlementStatus.FAILED: {SettlementStatus.PARTIAL, SettlementStatus.PAID},
    SettlementStatus.REFUNDED: set(),
}


@dataclass(frozen=True)
class Transition:
    """Target state computed for a reservation."""

    status: str
    payment_status: str
    confirmed_at: datetime | None = None

    def changes(self, reservation) -> bool:
        return (
            reservation.status != self.status
            or reservation.payment_status != self.payment_status
        )


def check_lifecycle(current: str, target: str) -> None:
    if current == target:
        return
    if target not in LIFECYCLE_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(
            f"Cannot move reservation from {current} to {target}"
        )


def check_settlement(current: str, target: str) -> None:
    if current == target:
        return
    if target not in SETTLEMENT_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(
            f"Cannot move payment status from {current} to {target}"
        )


def settlement_for(amount_settled: Decimal, total_amount: Decimal) -> str:
    """
    Settlement reached by ``amount_settled`` against ``total_amount``.

    p >= T  -> PAID
    0 < p < T -> PARTIAL
    p <= 0 -> ValidationError
    """
    if amount_settled <= 0:
        raise ValidationError("Payment amount must be greater than 0")
    if amount_settled >= total_amount:
        return SettlementStatus.PAID
    return SettlementStatus.PARTIAL


class ReservationStateMachine:
    """
    Plans reservation transitions.

    ``confirm_on_deposit`` decides what a partial payment does to the
    lifecycle: when enabled, a partial payment covering the deposit
    moves a pending reservation to CONFIRMED (payment_status PARTIAL);
    when disabled the reservation stays PENDING until fully paid.
    """

    def __init__(self, confirm_on_deposit: bool = True):
        self.confirm_on_deposit = confirm_on_deposit

    @staticmethod
    def accepts_payment(status: str, payment_status: str) -> bool:
        """Confirmation guard, extended with top-ups of a confirmed deposit."""
        if status == ReservationStatus.PENDING:
            return True
        return (
            status == ReservationStatus.CONFIRMED
            and payment_status == SettlementStatus.PARTIAL
        )

    def plan_confirmation(
        self,
        reservation,
        amount_settled: Decimal,
        now: datetime,
    ) -> Transition:
        """Target state once ``amount_settled`` has been received in total."""
        if not self.accepts_payment(reservation.status, reservation.payment_status):
            raise InvalidStateError(
                f"Only pending reservations can be confirmed "
                f"(reservation {reservation.pk} is {reservation.status}, "
                f"payment {reservation.payment_status})"
            )

        payment_status = settlement_for(amount_settled, reservation.total_amount)
        check_settlement(reservation.payment_status, payment_status)

        if payment_status == SettlementStatus.PAID:
            status = ReservationStatus.CONFIRMED
        elif reservation.status == ReservationStatus.CONFIRMED:
            status = ReservationStatus.CONFIRMED
        elif self.confirm_on_deposit and amount_settled >= (reservation.dp_amount or 0):
            status = ReservationStatus.CONFIRMED
        else:
            status = ReservationStatus.PENDING
        check_lifecycle(reservation.status, status)

        confirmed_at = None
        if status == ReservationStatus.CONFIRMED:
            confirmed_at = reservation.confirmed_at or now

        return Transition(status=status, payment_status=payment_status, confirmed_at=confirmed_at)

    @staticmethod
    def plan_failure(reservation) -> Transition:
        """A payment attempt failed; only an unpaid reservation records it."""
        payment_status = reservation.payment_status
        if payment_status == SettlementStatus.PENDING:
            payment_status = SettlementStatus.FAILED
        return Transition(
            status=reservation.status,
            payment_status=payment_status,
            confirmed_at=reservation.confirmed_at,
        )

    @staticmethod
    def plan_refund(reservation) -> Transition:
        check_settlement(reservation.payment_status, SettlementStatus.REFUNDED)
        return Transition(
            status=reservation.status,
            payment_status=SettlementStatus.REFUNDED,
            confirmed_at=reservation.confirmed_at,
        )

    @staticmethod
    def plan_cancel(reservation) -> Transition:
        check_lifecycle(reservation.status, ReservationStatus.CANCELLED)
        if reservation.status == ReservationStatus.CANCELLED:
            raise InvalidStateError(f"Reservation {reservation.pk} is already cancelled")
        if reservation.payment_status == SettlementStatus.PAID:
            raise InvalidStateError(
                f"Reservation {reservation.pk} is fully paid; refund the payment before cancelling"
            )
        return Transition(
            status=ReservationStatus.CANCELLED,
            payment_status=reservation.payment_status,
            confirmed_at=reservation.confirmed_at,
        )

    @staticmethod
    def plan_complete(reservation) -> Transition:
        if reservation.status != ReservationStatus.CONFIRMED:
            raise InvalidTransitionError(
                f"Cannot complete reservation {reservation.pk} from status {reservation.status}"
            )
        return Transition(
            status=ReservationStatus.COMPLETED,
            payment_status=reservation.payment_status,
            confirmed_at=reservation.confirmed_at,
        )
