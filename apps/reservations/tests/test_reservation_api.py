"""Integration tests for the staff reservation endpoints."""

from __future__ import annotations

import uuid
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from apps.finances.models import Payment
from apps.reservations.models import Reservation


class ReservationAPITests(APITestCase):
    """Manual confirmation, cancellation and completion by staff."""

    def setUp(self) -> None:
        User = get_user_model()
        self.staff = User.objects.create_user(username="staff", password="StaffPass123", is_staff=True)
        self.customer = User.objects.create_user(username="customer", password="CustomerPass123")
        self.reservation = self._reservation()
        self.client.force_authenticate(self.staff)

    def _reservation(self, **kwargs) -> Reservation:
        return Reservation.objects.create(
            studio_id=uuid.uuid4(),
            customer_id=uuid.uuid4(),
            package_id=uuid.uuid4(),
            total_amount=Decimal("100000.00"),
            dp_amount=Decimal("30000.00"),
            **kwargs,
        )

    def _url(self, name: str, reservation_id=None) -> str:
        return reverse(name, args=[reservation_id or self.reservation.id])

    def _confirm(self, amount: str, method: str = "cash", reservation_id=None):
        return self.client.post(
            self._url("reservation-confirm-payment", reservation_id),
            {"payment_amount": amount, "payment_method": method},
            format="json",
        )

    def test_confirm_full_payment(self) -> None:
        response = self._confirm("100000.00")

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        data = response.data["data"]
        self.assertEqual(data["reservation"]["status"], Reservation.Status.CONFIRMED)
        self.assertEqual(data["reservation"]["payment_status"], Reservation.PaymentStatus.PAID)
        self.assertEqual(data["reservation"]["remaining_amount"], "0.00")
        self.assertEqual(data["payment"]["status"], Payment.Status.PAID)
        self.assertEqual(data["payment"]["payment_type"], Payment.Type.FULL)

    def test_confirm_deposit_then_remaining(self) -> None:
        deposit = self._confirm("30000.00")
        self.assertEqual(deposit.status_code, status.HTTP_200_OK, deposit.data)
        self.assertEqual(deposit.data["data"]["reservation"]["payment_status"], Reservation.PaymentStatus.PARTIAL)
        self.assertEqual(deposit.data["data"]["reservation"]["remaining_amount"], "70000.00")

        remaining = self._confirm("70000.00")
        self.assertEqual(remaining.status_code, status.HTTP_200_OK, remaining.data)
        self.assertEqual(remaining.data["data"]["reservation"]["payment_status"], Reservation.PaymentStatus.PAID)
        self.assertEqual(Payment.objects.filter(reservation=self.reservation).count(), 2)

    def test_confirm_twice_is_rejected(self) -> None:
        self._confirm("100000.00")

        response = self._confirm("100000.00")

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)
        self.assertFalse(response.data["success"])
        self.assertEqual(Payment.objects.count(), 1)

    def test_confirm_unknown_reservation(self) -> None:
        response = self._confirm("100000.00", reservation_id=uuid.uuid4())

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND, response.data)

    def test_confirm_cancelled_reservation(self) -> None:
        cancelled = self._reservation(status=Reservation.Status.CANCELLED)

        response = self._confirm("100000.00", reservation_id=cancelled.id)

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)
        self.assertFalse(Payment.objects.exists())

    def test_confirm_requires_positive_amount(self) -> None:
        response = self._confirm("0")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, response.data)
        self.reservation.refresh_from_db()
        self.assertEqual(self.reservation.status, Reservation.Status.PENDING)

    def test_confirm_requires_amount(self) -> None:
        response = self.client.post(self._url("reservation-confirm-payment"), {}, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_pending_payment(self) -> None:
        empty = self.client.get(self._url("reservation-pending-payment"))
        self.assertEqual(empty.status_code, status.HTTP_200_OK)
        self.assertIsNone(empty.data["data"])

        payment = Payment.objects.create(
            reservation=self.reservation,
            amount=Decimal("30000.00"),
            payment_type=Payment.Type.DEPOSIT,
        )

        response = self.client.get(self._url("reservation-pending-payment"))
        self.assertEqual(response.data["data"]["id"], str(payment.id))

    def test_cancel(self) -> None:
        Payment.objects.create(
            reservation=self.reservation,
            amount=Decimal("30000.00"),
            payment_type=Payment.Type.DEPOSIT,
        )

        response = self.client.post(self._url("reservation-cancel"), {"reason": "studio closed"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["data"]["reservation"]["status"], Reservation.Status.CANCELLED)
        self.assertEqual(response.data["data"]["reservation"]["cancellation_reason"], "studio closed")
        self.assertEqual(response.data["data"]["payment"]["status"], Payment.Status.CANCELLED)

        again = self.client.post(self._url("reservation-cancel"), {}, format="json")
        self.assertEqual(again.status_code, status.HTTP_409_CONFLICT)

    def test_cancel_fully_paid_is_rejected(self) -> None:
        self._confirm("100000.00")

        response = self.client.post(self._url("reservation-cancel"), {"reason": "changed plans"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)
        self.reservation.refresh_from_db()
        self.assertEqual(self.reservation.status, Reservation.Status.CONFIRMED)
        self.assertEqual(self.reservation.payment_status, Reservation.PaymentStatus.PAID)

    def test_confirm_rejects_sub_cent_amount(self) -> None:
        response = self._confirm("100.005")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, response.data)
        self.assertFalse(Payment.objects.exists())

    def test_complete(self) -> None:
        too_early = self.client.post(self._url("reservation-complete"))
        self.assertEqual(too_early.status_code, status.HTTP_409_CONFLICT)

        self._confirm("100000.00")
        response = self.client.post(self._url("reservation-complete"))

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["data"]["reservation"]["status"], Reservation.Status.COMPLETED)

    def test_list_filters_by_status(self) -> None:
        self._reservation(status=Reservation.Status.CANCELLED)

        response = self.client.get(reverse("reservation-list"), {"status": "cancelled"})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["count"], 1)
        self.assertEqual(response.data["results"][0]["status"], Reservation.Status.CANCELLED)

    def test_customers_cannot_confirm(self) -> None:
        self.client.force_authenticate(self.customer)

        response = self._confirm("100000.00")

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(Payment.objects.exists())
