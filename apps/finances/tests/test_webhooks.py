import json
import threading
from decimal import Decimal

import pytest
from django.db import connections
from django.urls import reverse
from rest_framework.test import APIRequestFactory

from apps.finances import services as payment_services
from apps.finances.models import Payment, PaymentTransaction
from apps.finances.views import XenditWebhookView
from apps.finances.webhooks import CallbackVerifier, WebhookUnavailableError, map_gateway_status
from apps.reservations.models import Reservation
from shared.domain.exceptions import WebhookAuthenticationError

TOKEN = "test-callback-token"


class TestStatusMapping:
    @pytest.mark.parametrize("gateway_status, expected", [
        ("PAID", "paid"),
        ("settled", "paid"),
        ("SUCCEEDED", "paid"),
        ("PARTIALLY_PAID", "partial"),
        ("EXPIRED", "failed"),
        ("CANCELLED", "failed"),
        ("FAILED", "failed"),
        ("REFUNDED", "refunded"),
        ("PENDING", "pending"),
        ("SOMETHING_NEW", "pending"),
        (None, "pending"),
    ])
    def test_map_gateway_status(self, gateway_status, expected):
        assert map_gateway_status(gateway_status) == expected


class TestCallbackVerifier:
    def test_token(self):
        CallbackVerifier(TOKEN).verify({"X-Callback-Token": TOKEN}, b"{}")

        with pytest.raises(WebhookAuthenticationError):
            CallbackVerifier(TOKEN).verify({"X-Callback-Token": "wrong"}, b"{}")

    def test_signature(self):
        verifier = CallbackVerifier(TOKEN)
        body = b'{"id": "inv_1"}'

        verifier.verify({"X-Callback-Signature": verifier.sign(body)}, body)
        verifier.verify({"X-Callback-Signature": f"sha256={verifier.sign(body)}"}, body)

        with pytest.raises(WebhookAuthenticationError):
            verifier.verify({"X-Callback-Signature": verifier.sign(b"tampered")}, body)

    def test_missing_credentials(self):
        with pytest.raises(WebhookAuthenticationError):
            CallbackVerifier(TOKEN).verify({}, b"{}")

    def test_no_secret_configured(self):
        verifier = CallbackVerifier("")

        assert verifier.is_configured is False
        with pytest.raises(WebhookUnavailableError):
            verifier.verify({"X-Callback-Token": ""}, b"{}")


# ----- endpoint -----

@pytest.fixture
def url():
    return reverse("xendit-webhook")


@pytest.fixture
def invoice_payment(services, reservation, gateway_method):
    return services.checkout.initiate(reservation.id, Payment.Type.FULL, "qris").payment


def post(client, url, payload, token=TOKEN, **headers):
    body = payload if isinstance(payload, str) else json.dumps(payload)
    if token is not None:
        headers["HTTP_X_CALLBACK_TOKEN"] = token
    return client.post(url, data=body, content_type="application/json", **headers)


@pytest.mark.django_db
class TestWebhookEndpoint:
    def test_paid_callback_confirms_reservation(self, client, url, invoice_payment, reservation):
        response = post(client, url, {
            "id": invoice_payment.external_reference,
            "external_id": "invoice-abc",
            "status": "PAID",
            "paid_amount": 100000,
        })

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Webhook processed successfully"
        assert body["data"]["status"] == "paid"

        reservation.refresh_from_db()
        invoice_payment.refresh_from_db()
        assert reservation.status == Reservation.Status.CONFIRMED
        assert reservation.payment_status == Reservation.PaymentStatus.PAID
        assert invoice_payment.status == Payment.Status.PAID
        assert invoice_payment.external_status == "PAID"
        assert invoice_payment.transactions.filter(event=PaymentTransaction.Event.WEBHOOK).count() == 1

    def test_duplicate_delivery_is_acknowledged(self, client, url, invoice_payment):
        payload = {"id": invoice_payment.external_reference, "status": "PAID"}
        post(client, url, payload)

        response = post(client, url, payload)

        assert response.status_code == 200
        assert response.json()["message"] == "Webhook already processed"
        assert response.json()["data"]["replayed"] is True
        assert Payment.objects.filter(status=Payment.Status.PAID).count() == 1

    def test_late_failure_after_payment(self, client, url, invoice_payment, reservation):
        post(client, url, {"id": invoice_payment.external_reference, "status": "PAID"})

        response = post(client, url, {"id": invoice_payment.external_reference, "status": "EXPIRED"})

        assert response.status_code == 200
        assert response.json()["message"] == "Payment already finalized - webhook acknowledged"
        invoice_payment.refresh_from_db()
        reservation.refresh_from_db()
        assert invoice_payment.status == Payment.Status.PAID
        assert reservation.payment_status == Reservation.PaymentStatus.PAID

    def test_partial_payment(self, client, url, invoice_payment, reservation):
        response = post(client, url, {
            "id": invoice_payment.external_reference,
            "status": "PARTIALLY_PAID",
            "paid_amount": "30000",
        })

        assert response.status_code == 200
        reservation.refresh_from_db()
        assert reservation.status == Reservation.Status.CONFIRMED
        assert reservation.payment_status == Reservation.PaymentStatus.PARTIAL

    def test_partial_payment_requires_amount(self, client, url, invoice_payment):
        response = post(client, url, {"id": invoice_payment.external_reference, "status": "PARTIALLY_PAID"})

        assert response.status_code == 400
        invoice_payment.refresh_from_db()
        assert invoice_payment.status == Payment.Status.PENDING
        assert not PaymentTransaction.objects.exists()

    def test_paid_after_partial_settles_reservation(self, client, url, invoice_payment, reservation):
        ref = invoice_payment.external_reference
        post(client, url, {"id": ref, "status": "PARTIALLY_PAID", "paid_amount": 40000})

        response = post(client, url, {"id": ref, "status": "PAID", "paid_amount": 100000})

        assert response.status_code == 200
        assert response.json()["message"] == "Webhook processed successfully"
        assert response.json()["data"]["replayed"] is False
        invoice_payment.refresh_from_db()
        reservation.refresh_from_db()
        assert invoice_payment.amount == Decimal("100000.00")
        assert invoice_payment.external_status == "PAID"
        assert reservation.status == Reservation.Status.CONFIRMED
        assert reservation.payment_status == Reservation.PaymentStatus.PAID
        assert Payment.objects.filter(reservation=reservation).count() == 1

    def test_partial_amount_can_grow(self, client, url, invoice_payment, reservation):
        ref = invoice_payment.external_reference
        post(client, url, {"id": ref, "status": "PARTIALLY_PAID", "paid_amount": 40000})

        response = post(client, url, {"id": ref, "status": "PARTIALLY_PAID", "paid_amount": 60000})

        assert response.status_code == 200
        assert response.json()["data"]["replayed"] is False
        invoice_payment.refresh_from_db()
        reservation.refresh_from_db()
        assert invoice_payment.amount == Decimal("60000.00")
        assert reservation.payment_status == Reservation.PaymentStatus.PARTIAL

        repeated = post(client, url, {"id": ref, "status": "PARTIALLY_PAID", "paid_amount": 60000})
        assert repeated.json()["data"]["replayed"] is True

    @pytest.mark.parametrize("paid_amount", ["0.001", "30000.005", "1e15"])
    def test_malformed_paid_amount_is_rejected(self, client, url, invoice_payment, reservation, paid_amount):
        response = post(client, url, {
            "id": invoice_payment.external_reference,
            "status": "PARTIALLY_PAID",
            "paid_amount": paid_amount,
        })

        assert response.status_code == 400
        invoice_payment.refresh_from_db()
        reservation.refresh_from_db()
        assert invoice_payment.status == Payment.Status.PENDING
        assert reservation.payment_status == Reservation.PaymentStatus.PENDING
        assert not PaymentTransaction.objects.exists()

    def test_deposit_invoice_keeps_its_type(self, client, url, services, make_reservation, gateway_method):
        reservation = make_reservation(total="100000.00", dp="100000.00")
        payment = services.checkout.initiate(reservation.id, Payment.Type.DEPOSIT, "qris").payment

        response = post(client, url, {"id": payment.external_reference, "status": "PAID"})

        assert response.status_code == 200
        payment.refresh_from_db()
        assert payment.status == Payment.Status.PAID
        assert payment.payment_type == Payment.Type.DEPOSIT

    def test_expired_invoice(self, client, url, invoice_payment, reservation):
        response = post(client, url, {"id": invoice_payment.external_reference, "status": "EXPIRED"})

        assert response.status_code == 200
        invoice_payment.refresh_from_db()
        reservation.refresh_from_db()
        assert invoice_payment.status == Payment.Status.FAILED
        assert reservation.payment_status == Reservation.PaymentStatus.FAILED

    def test_pending_status_is_recorded(self, client, url, invoice_payment):
        response = post(client, url, {"id": invoice_payment.external_reference, "status": "AWAITING_CAPTURE"})

        assert response.status_code == 200
        assert response.json()["message"] == "Payment still pending"
        invoice_payment.refresh_from_db()
        assert invoice_payment.status == Payment.Status.PENDING
        assert invoice_payment.external_status == "AWAITING_CAPTURE"

    def test_unknown_reference_is_acknowledged(self, client, url, services, reservation):
        response = post(client, url, {"id": "inv_unknown", "external_id": "invoice-x", "status": "PAID"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Payment not found - webhook acknowledged"}
        reservation.refresh_from_db()
        assert reservation.status == Reservation.Status.PENDING
        assert not Payment.objects.exists()

    def test_paid_callback_for_cancelled_reservation(self, client, url, services, invoice_payment, reservation):
        services.coordinator.cancel_reservation(reservation.id, "customer request")

        response = post(client, url, {"id": invoice_payment.external_reference, "status": "PAID"})

        assert response.status_code == 409
        assert response.json()["success"] is False
        reservation.refresh_from_db()
        assert reservation.status == Reservation.Status.CANCELLED
        assert not PaymentTransaction.objects.exists()

    def test_missing_token(self, client, url, invoice_payment):
        response = post(client, url, {"id": invoice_payment.external_reference, "status": "PAID"}, token=None)

        assert response.status_code == 401
        invoice_payment.refresh_from_db()
        assert invoice_payment.status == Payment.Status.PENDING

    def test_wrong_token(self, client, url, invoice_payment):
        response = post(client, url, {"id": invoice_payment.external_reference, "status": "PAID"}, token="nope")

        assert response.status_code == 401
        assert response.json()["error"] == "Invalid callback token"

    def test_signature_header(self, client, url, services, invoice_payment):
        body = json.dumps({"id": invoice_payment.external_reference, "status": "PAID"})

        response = post(
            client, url, body, token=None, HTTP_X_CALLBACK_SIGNATURE=services.verifier.sign(body.encode()),
        )

        assert response.status_code == 200
        invoice_payment.refresh_from_db()
        assert invoice_payment.status == Payment.Status.PAID

    def test_missing_fields(self, client, url, services):
        response = post(client, url, {"status": "PAID"})

        assert response.status_code == 400
        assert response.json()["error"] == "Missing required fields"

    def test_invalid_json(self, client, url, services):
        response = post(client, url, "not json")

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON"

    def test_disabled(self, client, url, services, settings):
        settings.XENDIT_WEBHOOK_ENABLED = False

        assert post(client, url, {"id": "inv_1", "status": "PAID"}).status_code == 503
        assert client.head(url).status_code == 503

    def test_no_secret_configured(self, client, url, fake_gateway):
        previous = payment_services.get_services()
        payment_services.install(payment_services.build_services(gateway_client=fake_gateway, webhook_secret=""))
        try:
            response = post(client, url, {"id": "inv_1", "status": "PAID"})
        finally:
            payment_services.install(previous)

        assert response.status_code == 503

    def test_health_and_status(self, client, url, services):
        assert client.head(url).status_code == 200

        body = client.get(url).json()
        assert body["enabled"] is True
        assert body["has_webhook_secret"] is True
        assert "timestamp" in body


@pytest.mark.django_db
def test_view_uses_services_passed_to_as_view(fake_gateway):
    custom = payment_services.build_services(gateway_client=fake_gateway, webhook_secret="studio-secret")
    view = XenditWebhookView.as_view(services=custom)
    factory = APIRequestFactory()

    def deliver(token):
        request = factory.post(
            "/api/v1/webhooks/xendit/",
            data=json.dumps({"id": "inv_unknown", "status": "PAID"}),
            content_type="application/json",
            HTTP_X_CALLBACK_TOKEN=token,
        )
        return view(request)

    assert deliver("studio-secret").status_code == 200
    assert deliver(TOKEN).status_code == 401


@pytest.mark.django_db(transaction=True)
def test_concurrent_deliveries_settle_once(services, reservation, gateway_method):
    payment = services.checkout.initiate(reservation.id, Payment.Type.FULL, "qris").payment
    payload = {"id": payment.external_reference, "status": "PAID"}
    barrier = threading.Barrier(2)
    results, errors = [], []

    def deliver():
        try:
            barrier.wait()
            results.append(services.webhooks.handle(dict(payload)))
        except Exception as e:
            errors.append(e)
        finally:
            connections.close_all()

    threads = [threading.Thread(target=deliver) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert sorted(result.processed for result in results) == [False, True]
    payment.refresh_from_db()
    reservation.refresh_from_db()
    assert payment.status == Payment.Status.PAID
    assert payment.amount == Decimal("100000.00")
    assert reservation.payment_status == Reservation.PaymentStatus.PAID
    assert PaymentTransaction.objects.filter(payment=payment).count() == 1
