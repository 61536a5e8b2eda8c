"""
Payment Ledger

Owns creation, lookup and mutation of payment records. The ledger
never opens its own transaction: callers run it inside the unit of
work that also changes the reservation, so both writes commit or
roll back together.

Invariant: at most one PENDING payment per reservation. Checked here
before insert and backed by a conditional unique constraint.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from django.core.exceptions import ValidationError as DjangoValidationError  # type: ignore
from django.db import IntegrityError, transaction  # type: ignore
from django.db.models import Sum  # type: ignore
from django.utils import timezone  # type: ignore

from shared.domain.exceptions import AlreadyTerminalError, ConflictError, NotFoundError, ValidationError

from .events import PaymentFailed, PaymentReceived, PaymentRefunded
from .fees import FeeBreakdown
from .models import Payment, PaymentTransaction

logger = logging.getLogger(__name__)


class PaymentLedger:
    """Repository and state transitions for :class:`Payment`."""

    def _queryset(self, lock: bool):
        qs = Payment.objects.all()
        if lock:
            qs = qs.select_for_update()
        return qs

    # ----- lookups -----

    def get(self, payment_id, lock: bool = False) -> Payment:
        try:
            return self._queryset(lock).get(pk=payment_id)
        except (Payment.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFoundError(f"Payment {payment_id} not found")

    def find_pending_payment(self, reservation_id, lock: bool = False) -> Payment | None:
        return self._queryset(lock).filter(
            reservation_id=reservation_id,
            status=Payment.Status.PENDING,
        ).first()

    def find_by_external_reference(self, external_reference: str | None, lock: bool = False) -> Payment | None:
        if not external_reference:
            return None
        return self._queryset(lock).filter(external_reference=external_reference).first()

    def total_settled(self, reservation_id) -> Decimal:
        total = Payment.objects.filter(
            reservation_id=reservation_id,
            status=Payment.Status.PAID,
        ).aggregate(total=Sum("amount"))["total"]
        return total or Decimal("0.00")

    # ----- creation -----

    def create_payment(
        self,
        reservation_id,
        amount: Decimal,
        payment_type: str,
        method: str,
        *,
        fee: FeeBreakdown | None = None,
        external_reference: str | None = None,
        external_status: str = "",
        payment_url: str = "",
        expires_at: datetime | None = None,
    ) -> Payment:
        """
        Create a PENDING payment for a reservation.

        Raises:
            ConflictError: A pending payment already exists for the reservation
        """
        if self.find_pending_payment(reservation_id) is not None:
            raise ConflictError(f"Reservation {reservation_id} already has a pending payment")

        payment = Payment(
            reservation_id=reservation_id,
            amount=amount,
            invoice_amount=amount,
            payment_type=payment_type,
            payment_method=method or "",
            external_reference=external_reference,
            external_status=external_status,
            payment_url=payment_url,
            expires_at=expires_at,
        )
        self._apply_fee(payment, fee)
        try:
            with transaction.atomic():
                payment.save(force_insert=True)
        except IntegrityError as exc:
            # A concurrent writer inserted its pending payment first
            raise ConflictError(
                f"Reservation {reservation_id} already has a pending payment"
            ) from exc

        logger.info(
            f"Payment {payment.id} created for reservation {reservation_id}: "
            f"{payment_type} {amount} via {method or 'unspecified'}"
        )
        return payment

    def upsert_from_external_id(
        self,
        external_reference: str,
        amount: Decimal,
        payment_type: str | None,
        method: str,
        reservation_id,
        *,
        default_type: str | None = None,
    ) -> Payment:
        """
        Reconcile a gateway reference into an existing row.

        Order: the row already carrying ``external_reference``; the
        reservation's pending row that has no reference yet (created by
        a manual confirmation before the gateway assigned one); a new row.

        An existing row keeps its ``payment_type`` unless one is passed
        explicitly; ``default_type`` only labels a newly created row.
        """
        payment = self.find_by_external_reference(external_reference, lock=True)
        if payment is not None:
            if payment.reservation_id != reservation_id:
                raise ConflictError(
                    f"External reference {external_reference} belongs to another reservation"
                )
            if payment.status == Payment.Status.PENDING:
                payment.amount = amount
                payment.payment_type = payment_type or payment.payment_type
                payment.payment_method = method or payment.payment_method
                payment.save(update_fields=["amount", "payment_type", "payment_method", "updated_at"])
            return payment

        payment = self.find_pending_payment(reservation_id, lock=True)
        if payment is not None and not payment.external_reference:
            payment.external_reference = external_reference
            payment.amount = amount
            payment.payment_type = payment_type or payment.payment_type
            payment.payment_method = method or payment.payment_method
            payment.save(update_fields=[
                "external_reference",
                "amount",
                "payment_type",
                "payment_method",
                "updated_at",
            ])
            logger.info(f"Payment {payment.id} adopted external reference {external_reference}")
            return payment

        payment_type = payment_type or default_type
        if not payment_type:
            raise ValidationError(f"Payment type is required to record {external_reference}")
        return self.create_payment(
            reservation_id,
            amount,
            payment_type,
            method,
            external_reference=external_reference,
        )

    # ----- transitions -----

    def mark_paid(
        self,
        payment_id,
        external_status: str,
        paid_at: datetime | None,
        raw_callback: dict | None,
        *,
        amount: Decimal | None = None,
        fee: FeeBreakdown | None = None,
        method: str | None = None,
    ) -> Payment:
        """
        PENDING/FAILED -> PAID.

        Replaying a payment that is already PAID returns it unchanged.
        REFUNDED or CANCELLED payments raise AlreadyTerminalError.
        """
        payment = self.get(payment_id, lock=True)
        if payment.status == Payment.Status.PAID:
            logger.info(f"Payment {payment.id} already paid, ignoring replay")
            return payment
        if payment.is_terminal:
            raise AlreadyTerminalError(
                f"Payment {payment.id} is {payment.status} and cannot be marked paid",
                payment=payment,
            )

        payment.status = Payment.Status.PAID
        payment.paid_at = paid_at or timezone.now()
        if external_status:
            payment.external_status = external_status
        if raw_callback is not None:
            payment.callback_payload = raw_callback
        if amount is not None and amount != payment.amount:
            payment.amount = amount
            payment.net_amount = None
        if method:
            payment.payment_method = method
        self._apply_fee(payment, fee)
        payment.save(update_fields=[
            "status",
            "paid_at",
            "external_status",
            "callback_payload",
            "amount",
            "payment_method",
            "gateway_fee",
            "net_amount",
            "updated_at",
        ])
        payment.add_event(PaymentReceived(
            aggregate_id=payment.id,
            payment_id=payment.id,
            reservation_id=payment.reservation_id,
            amount=payment.amount,
            payment_type=payment.payment_type,
            net_amount=payment.net_amount,
            paid_at=payment.paid_at,
        ))
        logger.info(f"Payment {payment.id} marked paid ({payment.amount})")
        return payment

    def increase_paid_amount(
        self,
        payment_id,
        amount: Decimal,
        external_status: str,
        raw_callback: dict | None,
        *,
        fee: FeeBreakdown | None = None,
    ) -> Payment:
        """
        PAID -> PAID with a larger cumulative amount.

        The gateway reports money per invoice cumulatively, so a PAID
        callback that follows PARTIALLY_PAID raises the recorded amount
        of the same row. The emitted event carries only the newly
        received part. An amount that is not larger returns the record.
        """
        payment = self.get(payment_id, lock=True)
        if payment.status != Payment.Status.PAID:
            raise ConflictError(f"Payment {payment.id} is {payment.status}, not paid")
        if amount <= payment.amount:
            return payment

        received = amount - payment.amount
        payment.amount = amount
        if external_status:
            payment.external_status = external_status
        if raw_callback is not None:
            payment.callback_payload = raw_callback
        payment.net_amount = None
        self._apply_fee(payment, fee)
        payment.save(update_fields=[
            "amount",
            "external_status",
            "callback_payload",
            "gateway_fee",
            "net_amount",
            "updated_at",
        ])
        payment.add_event(PaymentReceived(
            aggregate_id=payment.id,
            payment_id=payment.id,
            reservation_id=payment.reservation_id,
            amount=received,
            payment_type=payment.payment_type,
            net_amount=payment.net_amount,
            paid_at=payment.paid_at,
        ))
        logger.info(f"Payment {payment.id} settled further {received} (now {payment.amount})")
        return payment

    def mark_failed(self, payment_id, external_status: str, raw_callback: dict | None) -> Payment:
        """
        PENDING -> FAILED.

        Replaying a FAILED payment returns it unchanged. A late failure
        for a PAID/REFUNDED/CANCELLED payment raises AlreadyTerminalError.
        """
        payment = self.get(payment_id, lock=True)
        if payment.status == Payment.Status.FAILED:
            logger.info(f"Payment {payment.id} already failed, ignoring replay")
            return payment
        if payment.is_terminal:
            raise AlreadyTerminalError(
                f"Payment {payment.id} is {payment.status} and cannot be marked failed",
                payment=payment,
            )

        payment.status = Payment.Status.FAILED
        if external_status:
            payment.external_status = external_status
        if raw_callback is not None:
            payment.callback_payload = raw_callback
        payment.save(update_fields=["status", "external_status", "callback_payload", "updated_at"])
        payment.add_event(PaymentFailed(
            aggregate_id=payment.id,
            payment_id=payment.id,
            reservation_id=payment.reservation_id,
            external_status=payment.external_status,
        ))
        logger.info(f"Payment {payment.id} marked failed ({external_status})")
        return payment

    def mark_refunded(self, payment_id, external_status: str, raw_callback: dict | None) -> Payment:
        """PAID -> REFUNDED; replay of REFUNDED returns the record."""
        payment = self.get(payment_id, lock=True)
        if payment.status == Payment.Status.REFUNDED:
            return payment
        if payment.status != Payment.Status.PAID:
            raise AlreadyTerminalError(
                f"Payment {payment.id} is {payment.status}; only paid payments can be refunded",
                payment=payment,
            )

        payment.status = Payment.Status.REFUNDED
        payment.refunded_at = timezone.now()
        if external_status:
            payment.external_status = external_status
        if raw_callback is not None:
            payment.callback_payload = raw_callback
        payment.save(update_fields=[
            "status",
            "refunded_at",
            "external_status",
            "callback_payload",
            "updated_at",
        ])
        payment.add_event(PaymentRefunded(
            aggregate_id=payment.id,
            payment_id=payment.id,
            reservation_id=payment.reservation_id,
            amount=payment.amount,
        ))
        logger.info(f"Payment {payment.id} refunded")
        return payment

    def cancel_pending(self, reservation_id, reason: str = "") -> Payment | None:
        payment = self.find_pending_payment(reservation_id, lock=True)
        if payment is None:
            return None
        payment.status = Payment.Status.CANCELLED
        payment.save(update_fields=["status", "updated_at"])
        logger.info(f"Pending payment {payment.id} cancelled: {reason or 'no reason given'}")
        return payment

    def record_external_status(self, payment: Payment, external_status: str, raw_callback: dict | None) -> Payment:
        """Store a non-final gateway status for audit without changing ``status``."""
        payment.external_status = external_status
        if raw_callback is not None:
            payment.callback_payload = raw_callback
        payment.save(update_fields=["external_status", "callback_payload", "updated_at"])
        return payment

    def record_transaction(self, payment: Payment, event: str, payload: dict | None, status: str = "") -> PaymentTransaction:
        return PaymentTransaction.objects.create(
            payment=payment,
            event=event,
            payload=payload or {},
            status=status,
        )

    @staticmethod
    def _apply_fee(payment: Payment, fee: FeeBreakdown | None) -> None:
        if fee is None:
            if payment.net_amount is None:
                payment.net_amount = payment.amount
            return
        payment.gateway_fee = fee.fee_amount
        payment.net_amount = fee.net_amount
