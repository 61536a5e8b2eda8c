"""
Reconciliation Coordinator

Keeps a reservation and its payment records consistent. Every entry
point (staff confirmation, gateway webhook, status polling) ends up
here, and each call runs as one unit of work:

1. Start database transaction with a bounded lock wait
2. Lock the reservation row (SELECT FOR UPDATE)
3. Check the guard, or detect an already-applied gateway event (replay)
   or more money arriving on a partly paid reference
4. Locate or create the payment through the ledger
5. Plan the settlement with the state machine
6. Mark the payment paid and apply the reservation transition
7. Commit, then publish the collected events

Lock order is always reservation first, then payment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Callable

from django.core.exceptions import ValidationError as DjangoValidationError  # type: ignore
from django.db import models  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from apps.reservations.domain.state_machine import ReservationStateMachine
from apps.reservations.models import Reservation
from shared.application.uow import DjangoUnitOfWork
from shared.domain.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError

from .fees import FeeBreakdown, compute_fee
from .ledger import PaymentLedger
from .models import Payment

logger = logging.getLogger(__name__)


class ReconciliationSource(models.TextChoices):
    MANUAL = "manual", _("Staff confirmation")
    WEBHOOK = "webhook", _("Gateway webhook")
    STATUS_SYNC = "status_sync", _("Gateway status sync")


@dataclass
class ReservationPaymentSnapshot:
    """Reservation and payment as committed by one reconciliation."""
    reservation: Reservation
    payment: Payment | None = None
    replayed: bool = False


AMOUNT_QUANTUM = Decimal("0.01")
# Payment.amount is max_digits=14, decimal_places=2
MAX_AMOUNT = Decimal("999999999999.99")


def to_amount(value) -> Decimal:
    """
    Parse a money amount as stored on Payment.

    Rejects values with more than two decimal places or more digits
    than the column holds. The sign is left to the caller.
    """
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Invalid payment amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid payment amount: {value!r}")
    if abs(amount) > MAX_AMOUNT:
        raise ValidationError(f"Payment amount {value!r} is too large")
    quantized = amount.quantize(AMOUNT_QUANTUM)
    if quantized != amount:
        raise ValidationError(f"Payment amount {value!r} has more than 2 decimal places")
    return quantized


def to_payment_amount(value) -> Decimal:
    amount = to_amount(value)
    if amount <= 0:
        raise ValidationError("Payment amount must be greater than 0")
    return amount


class ReconciliationCoordinator:
    """
    Applies payment events to reservations.

    Collaborators are passed in at construction; see
    ``FinancesConfig.ready`` for the process-wide instance.
    """

    def __init__(
        self,
        ledger: PaymentLedger,
        fee_policies,
        *,
        state_machine: ReservationStateMachine | None = None,
        customer_pays_fees: bool = False,
        lock_timeout_ms: int | None = None,
        clock: Callable = timezone.now,
    ):
        self.ledger = ledger
        self.fee_policies = fee_policies
        self.state_machine = state_machine or ReservationStateMachine()
        self.customer_pays_fees = customer_pays_fees
        self.lock_timeout_ms = lock_timeout_ms
        self.clock = clock

    def _unit_of_work(self) -> DjangoUnitOfWork:
        return DjangoUnitOfWork(lock_timeout_ms=self.lock_timeout_ms)

    @staticmethod
    def _lock_reservation(reservation_id) -> Reservation:
        try:
            return Reservation.objects.select_for_update().get(pk=reservation_id)
        except (Reservation.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFoundError(f"Reservation {reservation_id} not found")

    def _fee_for(self, method: str | None, amount: Decimal) -> FeeBreakdown:
        policy = self.fee_policies.policy_for(method)
        return compute_fee(amount, policy, self.customer_pays_fees)

    def _audit(self, payment, source, raw_callback, external_status, amount, payment_method) -> None:
        payload = raw_callback
        if payload is None:
            payload = {"amount": str(amount), "payment_method": payment_method or ""}
        self.ledger.record_transaction(payment, source, payload, status=external_status or payment.status)

    @staticmethod
    def _default_payment_type(amount: Decimal, settled_before: Decimal, total: Decimal) -> str:
        if settled_before > 0:
            return Payment.Type.REMAINING
        if amount >= total:
            return Payment.Type.FULL
        return Payment.Type.DEPOSIT

    # ----- confirmation -----

    def reconcile(
        self,
        reservation_id,
        payment_amount,
        payment_method: str | None,
        source: str,
        *,
        external_reference: str | None = None,
        external_status: str | None = None,
        raw_callback: dict | None = None,
        payment_type: str | None = None,
    ) -> ReservationPaymentSnapshot:
        """
        Apply a received payment to a reservation.

        Gateway events carry the cumulative amount paid on their
        reference. An event whose amount does not exceed what is already
        recorded for the reference is a replay; a larger one settles the
        difference on the same payment.

        Args:
            reservation_id: Reservation the money belongs to
            payment_amount: Amount received; for a gateway reference, the
                total paid on that reference so far
            payment_method: PaymentMethod code, None keeps the recorded one
            source: ReconciliationSource value
            external_reference: Gateway invoice/charge id, if any
            payment_type: Label for the payment; None keeps the label of an
                existing row and derives one for a new row

        Returns:
            ReservationPaymentSnapshot: ``replayed`` is True when a gateway
            event had already been applied and nothing changed

        Raises:
            NotFoundError: Unknown reservation
            InvalidStateError: Reservation cannot take this payment
            ValidationError: Non-positive or malformed amount
            ConflictError: Reference belongs to another reservation
            TransientError: Lock wait timed out, safe to retry
        """
        replay_tolerant = source != ReconciliationSource.MANUAL

        with self._unit_of_work() as uow:
            reservation = self._lock_reservation(reservation_id)

            payment = None
            if external_reference:
                payment = self.ledger.find_by_external_reference(external_reference, lock=True)
                if payment is not None and payment.reservation_id != reservation.id:
                    raise ConflictError(
                        f"External reference {external_reference} belongs to another reservation"
                    )

            settled_payment = None
            if replay_tolerant and payment is not None and payment.status == Payment.Status.PAID:
                amount = to_payment_amount(payment_amount)
                if amount <= payment.amount:
                    logger.info(
                        f"Replay of {source} event {external_reference} for reservation "
                        f"{reservation.id}, already applied"
                    )
                    return ReservationPaymentSnapshot(reservation, payment, replayed=True)
                settled_payment = payment

            if not self.state_machine.accepts_payment(reservation.status, reservation.payment_status):
                logger.error(
                    f"Rejected {source} payment for reservation {reservation.id}: "
                    f"status={reservation.status} payment_status={reservation.payment_status} "
                    f"reference={external_reference}"
                )
                raise InvalidStateError(
                    f"Only pending reservations can be confirmed "
                    f"(reservation is {reservation.status}, payment {reservation.payment_status})"
                )

            amount = to_payment_amount(payment_amount)
            settled_before = self.ledger.total_settled(reservation.id)
            now = self.clock()

            if settled_payment is not None:
                # More money arrived on a reference that was partly paid
                transition = self.state_machine.plan_confirmation(
                    reservation, settled_before - settled_payment.amount + amount, now,
                )
                fee = self._fee_for(payment_method or settled_payment.payment_method, amount)
                payment = self.ledger.increase_paid_amount(
                    settled_payment.id,
                    amount,
                    external_status or "",
                    raw_callback,
                    fee=fee,
                )
            else:
                default_type = payment_type or self._default_payment_type(
                    amount, settled_before, reservation.total_amount,
                )
                if external_reference:
                    payment = self.ledger.upsert_from_external_id(
                        external_reference,
                        amount,
                        payment_type,
                        payment_method,
                        reservation.id,
                        default_type=default_type,
                    )
                else:
                    payment = self.ledger.find_pending_payment(reservation.id, lock=True)
                    if payment is None:
                        payment = self.ledger.create_payment(
                            reservation.id,
                            amount,
                            default_type,
                            payment_method,
                        )

                transition = self.state_machine.plan_confirmation(reservation, settled_before + amount, now)

                fee = self._fee_for(payment_method or payment.payment_method, amount)
                payment = self.ledger.mark_paid(
                    payment.id,
                    external_status or "",
                    now,
                    raw_callback,
                    amount=amount,
                    fee=fee,
                    method=payment_method,
                )
            reservation.apply_transition(transition, now)
            self._audit(payment, source, raw_callback, external_status, amount, payment_method)

            uow.collect_events(reservation)
            uow.collect_events(payment)

        logger.info(
            f"Reconciled {source} payment {payment.id} ({amount}) for reservation "
            f"{reservation.id}: {reservation.status}/{reservation.payment_status}"
        )
        return ReservationPaymentSnapshot(reservation, payment)

    # ----- failures and refunds -----

    def _payment_for(self, payment_id=None, external_reference: str | None = None) -> Payment:
        if external_reference:
            payment = self.ledger.find_by_external_reference(external_reference)
            if payment is not None:
                return payment
        if payment_id:
            return self.ledger.get(payment_id)
        raise NotFoundError(f"Payment {external_reference or payment_id} not found")

    def record_failure(
        self,
        *,
        payment_id=None,
        external_reference: str | None = None,
        external_status: str = "",
        raw_callback: dict | None = None,
        source: str | None = None,
    ) -> ReservationPaymentSnapshot:
        """
        Record a failed or expired payment attempt.

        The reservation moves to payment_status FAILED only while nothing
        has been paid on it. A failure reported for an already-paid payment
        raises AlreadyTerminalError and changes nothing.
        With a ``source`` the callback is kept as an audit row in the same
        transaction.
        """
        with self._unit_of_work() as uow:
            located = self._payment_for(payment_id, external_reference)
            reservation = self._lock_reservation(located.reservation_id)

            replayed = located.status == Payment.Status.FAILED
            payment = self.ledger.mark_failed(located.id, external_status, raw_callback)
            if source:
                self.ledger.record_transaction(payment, source, raw_callback, status=external_status)

            if self.ledger.total_settled(reservation.id) == 0:
                reservation.apply_transition(self.state_machine.plan_failure(reservation), self.clock())

            uow.collect_events(reservation)
            uow.collect_events(payment)

        logger.info(
            f"Payment {payment.id} failed ({external_status}); reservation {reservation.id} "
            f"is {reservation.status}/{reservation.payment_status}"
        )
        return ReservationPaymentSnapshot(reservation, payment, replayed=replayed)

    def record_refund(
        self,
        *,
        payment_id=None,
        external_reference: str | None = None,
        external_status: str = "",
        raw_callback: dict | None = None,
        source: str | None = None,
    ) -> ReservationPaymentSnapshot:
        with self._unit_of_work() as uow:
            located = self._payment_for(payment_id, external_reference)
            reservation = self._lock_reservation(located.reservation_id)

            replayed = located.status == Payment.Status.REFUNDED
            payment = self.ledger.mark_refunded(located.id, external_status, raw_callback)
            if source:
                self.ledger.record_transaction(payment, source, raw_callback, status=external_status)

            # Other paid payments keep the reservation's settlement
            if not replayed and self.ledger.total_settled(reservation.id) == 0:
                reservation.apply_transition(self.state_machine.plan_refund(reservation), self.clock())

            uow.collect_events(reservation)
            uow.collect_events(payment)

        logger.info(f"Payment {payment.id} refunded for reservation {reservation.id}")
        return ReservationPaymentSnapshot(reservation, payment, replayed=replayed)

    # ----- lifecycle -----

    def cancel_reservation(self, reservation_id, reason: str = "") -> ReservationPaymentSnapshot:
        """Cancel a reservation and its pending payment, if any."""
        with self._unit_of_work() as uow:
            reservation = self._lock_reservation(reservation_id)
            reservation.cancel(reason, self.clock(), self.state_machine)
            payment = self.ledger.cancel_pending(reservation.id, reason)
            uow.collect_events(reservation)

        logger.info(f"Reservation {reservation.id} cancelled: {reason or 'no reason given'}")
        return ReservationPaymentSnapshot(reservation, payment)

    def complete_reservation(self, reservation_id) -> ReservationPaymentSnapshot:
        with self._unit_of_work() as uow:
            reservation = self._lock_reservation(reservation_id)
            reservation.complete(self.clock(), self.state_machine)
            uow.collect_events(reservation)

        logger.info(f"Reservation {reservation.id} completed")
        return ReservationPaymentSnapshot(reservation)
