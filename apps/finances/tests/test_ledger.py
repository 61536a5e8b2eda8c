from decimal import Decimal

import pytest
from django.utils import timezone

from apps.finances.events import PaymentFailed, PaymentReceived, PaymentRefunded
from apps.finances.fees import FeePolicy, compute_fee
from apps.finances.ledger import PaymentLedger
from apps.finances.models import Payment, PaymentTransaction
from shared.domain.exceptions import AlreadyTerminalError, ConflictError, NotFoundError, ValidationError

pytestmark = pytest.mark.django_db


@pytest.fixture
def ledger():
    return PaymentLedger()


@pytest.fixture
def pending(ledger, reservation):
    return ledger.create_payment(reservation.id, Decimal("30000.00"), Payment.Type.DEPOSIT, "cash")


class TestCreatePayment:
    def test_creates_pending_payment(self, pending, reservation):
        assert pending.status == Payment.Status.PENDING
        assert pending.reservation_id == reservation.id
        assert pending.net_amount == Decimal("30000.00")
        assert pending.gateway_fee == Decimal("0.00")
        assert pending.invoice_amount == Decimal("30000.00")

    def test_one_pending_payment_per_reservation(self, ledger, pending, reservation):
        with pytest.raises(ConflictError):
            ledger.create_payment(reservation.id, Decimal("70000.00"), Payment.Type.REMAINING, "cash")

        assert Payment.objects.filter(reservation=reservation).count() == 1

    def test_concurrent_insert_maps_to_conflict(self, ledger, pending, reservation, monkeypatch):
        # Simulates a writer that passed the pre-check before the other committed
        monkeypatch.setattr(ledger, "find_pending_payment", lambda *args, **kwargs: None)

        with pytest.raises(ConflictError):
            ledger.create_payment(reservation.id, Decimal("70000.00"), Payment.Type.REMAINING, "cash")

        assert Payment.objects.filter(reservation=reservation).count() == 1

    def test_fee_is_stored(self, ledger, reservation):
        fee = compute_fee(Decimal("100000"), FeePolicy.percentage("2.5"), True)

        payment = ledger.create_payment(
            reservation.id,
            Decimal("100000.00"),
            Payment.Type.FULL,
            "qris",
            fee=fee,
            external_reference="inv_1",
        )

        payment.refresh_from_db()
        assert payment.gateway_fee == Decimal("2500.00")
        assert payment.net_amount == Decimal("97500.00")
        assert payment.external_reference == "inv_1"


class TestLookups:
    def test_get_unknown_payment(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.get("not-a-uuid")

    def test_find_by_external_reference(self, ledger, reservation):
        payment = ledger.create_payment(
            reservation.id, Decimal("30000.00"), Payment.Type.DEPOSIT, "qris", external_reference="inv_9",
        )

        assert ledger.find_by_external_reference("inv_9") == payment
        assert ledger.find_by_external_reference("inv_missing") is None
        assert ledger.find_by_external_reference("") is None

    def test_total_settled_counts_paid_only(self, ledger, pending, reservation):
        assert ledger.total_settled(reservation.id) == Decimal("0.00")

        ledger.mark_paid(pending.id, "", timezone.now(), None)
        ledger.create_payment(reservation.id, Decimal("70000.00"), Payment.Type.REMAINING, "cash")

        assert ledger.total_settled(reservation.id) == Decimal("30000.00")


class TestUpsert:
    def test_reuses_row_with_reference(self, ledger, reservation):
        payment = ledger.create_payment(
            reservation.id, Decimal("30000.00"), Payment.Type.DEPOSIT, "qris", external_reference="inv_1",
        )

        upserted = ledger.upsert_from_external_id(
            "inv_1", Decimal("100000.00"), Payment.Type.FULL, "", reservation.id,
        )

        assert upserted.id == payment.id
        assert upserted.amount == Decimal("100000.00")
        assert upserted.payment_method == "qris"
        assert upserted.invoice_amount == Decimal("30000.00")

    def test_keeps_type_unless_given(self, ledger, reservation):
        ledger.create_payment(
            reservation.id, Decimal("100000.00"), Payment.Type.DEPOSIT, "qris", external_reference="inv_1",
        )

        upserted = ledger.upsert_from_external_id(
            "inv_1", Decimal("100000.00"), None, "", reservation.id, default_type=Payment.Type.FULL,
        )

        assert upserted.payment_type == Payment.Type.DEPOSIT

    def test_new_row_uses_default_type(self, ledger, reservation):
        upserted = ledger.upsert_from_external_id(
            "inv_5", Decimal("100000.00"), None, "qris", reservation.id, default_type=Payment.Type.FULL,
        )

        assert upserted.payment_type == Payment.Type.FULL

        with pytest.raises(ValidationError):
            ledger.upsert_from_external_id("inv_6", Decimal("1.00"), None, "qris", reservation.id)

    def test_adopts_pending_row_without_reference(self, ledger, pending, reservation):
        upserted = ledger.upsert_from_external_id(
            "inv_2", Decimal("30000.00"), Payment.Type.DEPOSIT, "qris", reservation.id,
        )

        assert upserted.id == pending.id
        pending.refresh_from_db()
        assert pending.external_reference == "inv_2"
        assert pending.payment_method == "qris"

    def test_creates_row_when_nothing_matches(self, ledger, reservation):
        upserted = ledger.upsert_from_external_id(
            "inv_3", Decimal("30000.00"), Payment.Type.DEPOSIT, "qris", reservation.id,
        )

        assert upserted.external_reference == "inv_3"
        assert Payment.objects.filter(reservation=reservation).count() == 1

    def test_reference_of_another_reservation(self, ledger, reservation, make_reservation):
        other = make_reservation()
        ledger.create_payment(
            other.id, Decimal("30000.00"), Payment.Type.DEPOSIT, "qris", external_reference="inv_4",
        )

        with pytest.raises(ConflictError):
            ledger.upsert_from_external_id(
                "inv_4", Decimal("30000.00"), Payment.Type.DEPOSIT, "qris", reservation.id,
            )


class TestMarkPaid:
    def test_marks_paid_and_records_event(self, ledger, pending):
        fee = compute_fee(Decimal("30000"), FeePolicy.percentage("2.5"), False)
        now = timezone.now()

        payment = ledger.mark_paid(
            pending.id, "PAID", now, {"id": "inv_1"}, amount=Decimal("30000.00"), fee=fee, method="qris",
        )

        assert payment.status == Payment.Status.PAID
        assert payment.paid_at == now
        assert payment.gateway_fee == Decimal("750")
        assert payment.net_amount == Decimal("29250")
        assert payment.payment_method == "qris"
        assert payment.callback_payload == {"id": "inv_1"}
        assert [type(e) for e in payment.events] == [PaymentReceived]

    def test_replay_returns_record_unchanged(self, ledger, pending):
        first = ledger.mark_paid(pending.id, "PAID", timezone.now(), None)

        again = ledger.mark_paid(pending.id, "PAID", timezone.now(), None, amount=Decimal("1.00"))

        assert again.paid_at == first.paid_at
        assert again.amount == Decimal("30000.00")
        assert again.events == []

    def test_refunded_payment_cannot_be_paid(self, ledger, pending):
        ledger.mark_paid(pending.id, "PAID", timezone.now(), None)
        ledger.mark_refunded(pending.id, "REFUNDED", None)

        with pytest.raises(AlreadyTerminalError) as exc_info:
            ledger.mark_paid(pending.id, "PAID", timezone.now(), None)

        assert exc_info.value.payment.status == Payment.Status.REFUNDED

    def test_failed_payment_can_still_be_paid(self, ledger, pending):
        ledger.mark_failed(pending.id, "EXPIRED", None)

        payment = ledger.mark_paid(pending.id, "PAID", timezone.now(), None)

        assert payment.status == Payment.Status.PAID


class TestIncreasePaidAmount:
    def test_raises_amount_and_records_difference(self, ledger, pending):
        ledger.mark_paid(pending.id, "PARTIALLY_PAID", timezone.now(), None, amount=Decimal("10000.00"))

        payment = ledger.increase_paid_amount(pending.id, Decimal("30000.00"), "PAID", {"status": "PAID"})

        assert payment.status == Payment.Status.PAID
        assert payment.amount == Decimal("30000.00")
        assert payment.net_amount == Decimal("30000.00")
        assert payment.external_status == "PAID"
        [event] = payment.events
        assert isinstance(event, PaymentReceived)
        assert event.amount == Decimal("20000.00")

    def test_smaller_amount_returns_record(self, ledger, pending):
        ledger.mark_paid(pending.id, "PAID", timezone.now(), None)

        payment = ledger.increase_paid_amount(pending.id, Decimal("10000.00"), "PARTIALLY_PAID", None)

        assert payment.amount == Decimal("30000.00")
        assert payment.events == []

    def test_requires_paid_payment(self, ledger, pending):
        with pytest.raises(ConflictError):
            ledger.increase_paid_amount(pending.id, Decimal("40000.00"), "PAID", None)


class TestFailureAndRefund:
    def test_mark_failed(self, ledger, pending):
        payment = ledger.mark_failed(pending.id, "EXPIRED", {"status": "EXPIRED"})

        assert payment.status == Payment.Status.FAILED
        assert payment.external_status == "EXPIRED"
        assert [type(e) for e in payment.events] == [PaymentFailed]

        replay = ledger.mark_failed(pending.id, "EXPIRED", None)
        assert replay.events == []

    def test_late_failure_of_paid_payment(self, ledger, pending):
        ledger.mark_paid(pending.id, "PAID", timezone.now(), None)

        with pytest.raises(AlreadyTerminalError):
            ledger.mark_failed(pending.id, "FAILED", None)

        assert ledger.get(pending.id).status == Payment.Status.PAID

    def test_refund_requires_paid(self, ledger, pending):
        with pytest.raises(AlreadyTerminalError):
            ledger.mark_refunded(pending.id, "REFUNDED", None)

        ledger.mark_paid(pending.id, "PAID", timezone.now(), None)
        payment = ledger.mark_refunded(pending.id, "REFUNDED", None)

        assert payment.status == Payment.Status.REFUNDED
        assert payment.refunded_at is not None
        assert [type(e) for e in payment.events] == [PaymentRefunded]


class TestHousekeeping:
    def test_cancel_pending(self, ledger, pending, reservation):
        cancelled = ledger.cancel_pending(reservation.id, "customer request")

        assert cancelled.id == pending.id
        assert cancelled.status == Payment.Status.CANCELLED
        assert ledger.find_pending_payment(reservation.id) is None
        assert ledger.cancel_pending(reservation.id) is None

    def test_record_external_status_keeps_status(self, ledger, pending):
        ledger.record_external_status(pending, "PENDING", {"status": "PENDING"})

        pending.refresh_from_db()
        assert pending.status == Payment.Status.PENDING
        assert pending.external_status == "PENDING"
        assert pending.callback_payload == {"status": "PENDING"}

    def test_record_transaction(self, ledger, pending):
        ledger.record_transaction(pending, PaymentTransaction.Event.WEBHOOK, None, status="PAID")

        transaction = pending.transactions.get()
        assert transaction.payload == {}
        assert transaction.status == "PAID"
