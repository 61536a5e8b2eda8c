"""
Online checkout

Starts a customer payment for a reservation: picks the amount for the
requested payment type, applies the method's fee policy and, for
gateway-backed methods, opens a Xendit invoice. Settlement happens
later through the webhook.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Callable

from django.core.exceptions import ValidationError as DjangoValidationError  # type: ignore
from django.utils import timezone  # type: ignore

from apps.reservations.models import Reservation
from shared.application.uow import DjangoUnitOfWork
from shared.domain.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError

from .fees import FeeBreakdown, compute_fee
from .ledger import PaymentLedger
from .models import Payment, PaymentMethod

logger = logging.getLogger(__name__)

DESCRIPTIONS = {
    Payment.Type.DEPOSIT: "Deposit for booking {code}",
    Payment.Type.REMAINING: "Remaining payment for booking {code}",
    Payment.Type.FULL: "Full payment for booking {code}",
}


@dataclass
class CheckoutResult:
    payment: Payment
    fee: FeeBreakdown | None
    invoice_url: str | None
    created: bool = True


def amount_for(reservation: Reservation, payment_type: str) -> Decimal:
    if payment_type == Payment.Type.DEPOSIT:
        return reservation.dp_amount
    if payment_type == Payment.Type.REMAINING:
        return reservation.remaining_amount
    if payment_type == Payment.Type.FULL:
        return reservation.total_amount
    raise ValidationError(f"Invalid payment type: {payment_type}")


class CheckoutService:
    """Creates the pending payment (and gateway invoice) a customer pays against."""

    def __init__(
        self,
        ledger: PaymentLedger,
        fee_policies,
        gateway_client,
        *,
        customer_pays_fees: bool = False,
        currency: str = "IDR",
        invoice_duration: int = 7200,
        site_url: str = "",
        lock_timeout_ms: int | None = None,
        clock: Callable = timezone.now,
    ):
        self.ledger = ledger
        self.fee_policies = fee_policies
        self.gateway_client = gateway_client
        self.customer_pays_fees = customer_pays_fees
        self.currency = currency
        self.invoice_duration = invoice_duration
        self.site_url = site_url.rstrip("/")
        self.lock_timeout_ms = lock_timeout_ms
        self.clock = clock

    def initiate(self, reservation_id, payment_type: str, payment_method: str | None = None) -> CheckoutResult:
        """
        Start a payment for a reservation.

        An existing pending payment of the same type is returned as is
        (``created=False``) so a customer retrying checkout gets the same
        invoice.

        Raises:
            NotFoundError: Unknown reservation
            ValidationError: Unknown payment type or nothing to pay
            InvalidStateError: Reservation cancelled, completed or already paid
            ConflictError: A pending payment of another type exists
            GatewayError: Invoice could not be created
        """
        with DjangoUnitOfWork(lock_timeout_ms=self.lock_timeout_ms):
            try:
                reservation = Reservation.objects.select_for_update().get(pk=reservation_id)
            except (Reservation.DoesNotExist, DjangoValidationError, ValueError):
                raise NotFoundError(f"Reservation {reservation_id} not found")

            if reservation.status in (Reservation.Status.CANCELLED, Reservation.Status.COMPLETED):
                raise InvalidStateError(f"Reservation is {reservation.status}")
            if reservation.payment_status == Reservation.PaymentStatus.PAID:
                raise InvalidStateError("Reservation is already paid")

            amount = amount_for(reservation, payment_type)
            if amount <= 0:
                raise ValidationError(f"Nothing to pay for payment type {payment_type}")

            existing = self.ledger.find_pending_payment(reservation.id, lock=True)
            if existing is not None:
                if existing.payment_type != payment_type:
                    raise ConflictError(
                        f"Reservation already has a pending {existing.payment_type} payment"
                    )
                logger.info(f"Reusing pending payment {existing.id} for reservation {reservation.id}")
                return CheckoutResult(existing, None, existing.payment_url or None, created=False)

            method = None
            if payment_method:
                method = PaymentMethod.objects.filter(code=payment_method, is_active=True).first()
            fee = compute_fee(amount, self.fee_policies.policy_for(payment_method), self.customer_pays_fees)

            if method is None or not method.uses_gateway:
                payment = self.ledger.create_payment(
                    reservation.id,
                    amount,
                    payment_type,
                    payment_method or "",
                    fee=fee,
                    external_status="PENDING",
                )
                logger.info(f"Manual payment {payment.id} opened for reservation {reservation.id}")
                return CheckoutResult(payment, fee, None)

            payment = self._open_invoice(reservation, method, payment_type, amount, fee)
            return CheckoutResult(payment, fee, payment.payment_url)

    def _open_invoice(self, reservation, method, payment_type, amount, fee) -> Payment:
        now = self.clock()
        external_id = f"invoice-{reservation.id}-{int(now.timestamp() * 1000)}"
        description = DESCRIPTIONS[payment_type].format(code=reservation.booking_code)

        invoice = self.gateway_client.create_invoice(
            external_id,
            fee.total_amount,
            description,
            currency=self.currency,
            invoice_duration=self.invoice_duration,
            payment_methods=[method.gateway_channel.upper()] if method.gateway_channel else None,
            success_redirect_url=(
                f"{self.site_url}/booking/success?booking={reservation.booking_code}"
                if self.site_url else ""
            ),
            failure_redirect_url=f"{self.site_url}/booking/payment-failed" if self.site_url else "",
        )

        return self.ledger.create_payment(
            reservation.id,
            amount,
            payment_type,
            method.code,
            fee=fee,
            external_reference=invoice.id,
            external_status=invoice.status or "PENDING",
            payment_url=invoice.invoice_url,
            expires_at=invoice.expiry_date or now + timedelta(seconds=self.invoice_duration),
        )
