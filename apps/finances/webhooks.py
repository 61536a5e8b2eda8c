"""
Webhook Ingestion

Authenticates Xendit callbacks, translates the gateway's status
vocabulary and hands the event to the reconciliation coordinator.

Gateway status -> internal outcome:
- PAID, SETTLED, SUCCEEDED -> paid
- PARTIALLY_PAID -> partial
- EXPIRED, CANCELLED, FAILED -> failed
- REFUNDED -> refunded
- anything else (PENDING, AWAITING_CAPTURE, unknown) -> pending

Gateways retry until they get a 2xx, so unknown references, duplicate
deliveries and late callbacks for settled payments are acknowledged
without changing anything.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from decimal import Decimal

from django.db import transaction  # type: ignore

from apps.reservations.domain.state_machine import SettlementStatus
from shared.domain.exceptions import (
    AlreadyTerminalError,
    TransientError,
    ValidationError,
    WebhookAuthenticationError,
)

from .ledger import PaymentLedger
from .models import Payment
from .reconciliation import ReconciliationCoordinator, ReconciliationSource, to_payment_amount

logger = logging.getLogger(__name__)

TOKEN_HEADER = "X-Callback-Token"
SIGNATURE_HEADER = "X-Callback-Signature"
REPEATABLE_STATUSES = ("PENDING", "PARTIALLY_PAID")

STATUS_MAP = {
    "PAID": SettlementStatus.PAID,
    "SETTLED": SettlementStatus.PAID,
    "SUCCEEDED": SettlementStatus.PAID,
    "PARTIALLY_PAID": SettlementStatus.PARTIAL,
    "EXPIRED": SettlementStatus.FAILED,
    "CANCELLED": SettlementStatus.FAILED,
    "FAILED": SettlementStatus.FAILED,
    "REFUNDED": SettlementStatus.REFUNDED,
}


class WebhookUnavailableError(TransientError):
    """Webhook ingestion is disabled or has no secret configured."""

    default_message = "Webhook endpoint is not available"


def map_gateway_status(gateway_status: str | None) -> str:
    status = (gateway_status or "").strip().upper()
    mapped = STATUS_MAP.get(status)
    if mapped is None:
        if status not in ("PENDING", "AWAITING_CAPTURE"):
            logger.warning(f"Unknown gateway status received: {gateway_status!r}")
        return SettlementStatus.PENDING
    return mapped


class CallbackVerifier:
    """
    Checks that a callback was sent by the gateway.

    Accepts either the shared callback token in ``X-Callback-Token``
    or a hex HMAC-SHA256 of the raw body in ``X-Callback-Signature``
    (``sha256=`` prefix allowed).
    """

    def __init__(self, secret: str | None):
        self.secret = secret or ""

    @property
    def is_configured(self) -> bool:
        return bool(self.secret)

    def verify(self, headers, body: bytes) -> None:
        if not self.is_configured:
            raise WebhookUnavailableError("Webhook authentication is not configured")

        token = headers.get(TOKEN_HEADER)
        if token:
            if hmac.compare_digest(token.encode(), self.secret.encode()):
                return
            raise WebhookAuthenticationError("Invalid callback token")

        signature = headers.get(SIGNATURE_HEADER)
        if signature:
            if hmac.compare_digest(self._normalize(signature).encode(), self.sign(body).encode()):
                return
            raise WebhookAuthenticationError("Invalid callback signature")

        raise WebhookAuthenticationError("Missing callback token")

    def sign(self, body: bytes) -> str:
        return hmac.new(self.secret.encode(), body, hashlib.sha256).hexdigest()

    @staticmethod
    def _normalize(signature: str) -> str:
        signature = signature.strip().lower()
        for prefix in ("sha256=", "sha256:"):
            if signature.startswith(prefix):
                return signature[len(prefix):]
        return signature


@dataclass
class WebhookResult:
    processed: bool
    message: str
    payment: Payment | None = None
    status: str | None = None
    replayed: bool = False

    def to_dict(self) -> dict:
        data = {"success": True, "message": self.message}
        if self.payment is not None:
            data["data"] = {
                "payment_id": str(self.payment.id),
                "status": self.status,
                "replayed": self.replayed,
            }
        return data


class WebhookGateway:
    """Normalizes gateway callbacks and dispatches them to the coordinator."""

    def __init__(self, coordinator: ReconciliationCoordinator, ledger: PaymentLedger):
        self.coordinator = coordinator
        self.ledger = ledger

    def find_payment(self, payload: dict) -> Payment | None:
        # Our external_id first, then the gateway's own invoice id
        for key in ("external_id", "id"):
            payment = self.ledger.find_by_external_reference(payload.get(key))
            if payment is not None:
                return payment
        return None

    def handle(self, payload) -> WebhookResult:
        """
        Process one callback body.

        Raises:
            ValidationError: Body is not an object or lacks ``id``/``status``
            InvalidStateError: Payment cannot be applied to its reservation
            TransientError: Lock timeout, safe for the gateway to retry
        """
        if not isinstance(payload, dict):
            raise ValidationError("Callback body must be a JSON object")
        if not payload.get("id") or not payload.get("status"):
            raise ValidationError("Missing required fields")

        gateway_status = str(payload["status"]).upper()
        payment = self.find_payment(payload)
        if payment is None:
            logger.info(
                f"Payment not found for webhook external_id={payload.get('external_id')} "
                f"id={payload.get('id')} status={gateway_status}"
            )
            return WebhookResult(False, "Payment not found - webhook acknowledged")

        # Partial callbacks repeat their status with a growing paid_amount
        if payment.external_status == gateway_status and gateway_status not in REPEATABLE_STATUSES:
            logger.info(f"Duplicate webhook ignored for payment {payment.id} ({gateway_status})")
            return WebhookResult(
                False,
                "Webhook already processed",
                payment=payment,
                status=payment.status,
                replayed=True,
            )

        return self.apply_status(payment, gateway_status, payload, ReconciliationSource.WEBHOOK)

    def apply_status(
        self,
        payment: Payment,
        gateway_status: str,
        payload: dict,
        source: str = ReconciliationSource.WEBHOOK,
    ) -> WebhookResult:
        """
        Apply a gateway status to a known payment (webhook or status poll).

        The callback is validated before anything is written. Its audit
        row is stored in the same transaction as the state change, so a
        rejected callback leaves no trace in the database.
        """
        outcome = map_gateway_status(gateway_status)
        amount = None
        if outcome in (SettlementStatus.PAID, SettlementStatus.PARTIAL):
            amount = self._amount_for(payment, outcome, payload)

        logger.info(
            f"Processing {source} for payment {payment.id}: "
            f"{payment.status} -> {outcome} ({gateway_status})"
        )

        try:
            if amount is not None:
                snapshot = self.coordinator.reconcile(
                    payment.reservation_id,
                    amount,
                    None,
                    source,
                    external_reference=payment.external_reference,
                    external_status=gateway_status,
                    raw_callback=payload,
                )
            elif outcome == SettlementStatus.FAILED:
                snapshot = self.coordinator.record_failure(
                    payment_id=payment.id,
                    external_status=gateway_status,
                    raw_callback=payload,
                    source=source,
                )
            elif outcome == SettlementStatus.REFUNDED:
                snapshot = self.coordinator.record_refund(
                    payment_id=payment.id,
                    external_status=gateway_status,
                    raw_callback=payload,
                    source=source,
                )
            else:
                with transaction.atomic():
                    payment = self.ledger.record_external_status(payment, gateway_status, payload)
                    self.ledger.record_transaction(payment, source, payload, status=gateway_status)
                return WebhookResult(True, "Payment still pending", payment=payment, status=payment.status)
        except AlreadyTerminalError as e:
            logger.warning(f"Late {gateway_status} callback for payment {payment.id} ignored: {e.message}")
            current = e.payment or payment
            self.ledger.record_transaction(current, source, payload, status=gateway_status)
            return WebhookResult(
                False,
                "Payment already finalized - webhook acknowledged",
                payment=current,
                status=current.status,
                replayed=True,
            )

        message = "Webhook already processed" if snapshot.replayed else "Webhook processed successfully"
        return WebhookResult(
            not snapshot.replayed,
            message,
            payment=snapshot.payment,
            status=snapshot.payment.status,
            replayed=snapshot.replayed,
        )

    @staticmethod
    def _amount_for(payment: Payment, outcome: str, payload: dict) -> Decimal:
        """
        Cumulative amount settled on the payment's invoice.

        A PAID invoice is settled for the amount it was opened for;
        ``paid_amount`` may include fees charged on top. A partial
        ``paid_amount`` is capped at the invoice amount for the same reason.
        """
        invoice_amount = payment.invoice_amount or payment.amount
        if outcome == SettlementStatus.PAID:
            return invoice_amount
        if payload.get("paid_amount") is None:
            raise ValidationError("PARTIALLY_PAID callback without paid_amount")
        amount = to_payment_amount(payload["paid_amount"])
        return min(amount, invoice_amount)
