"""API views for the reservation domain.

Reservations are created by the booking flow; this API lists them and
exposes the staff actions that go through reconciliation.
"""

from __future__ import annotations

import logging

from django_filters.rest_framework import DjangoFilterBackend  # type: ignore
from rest_framework import permissions, status, viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.filters import OrderingFilter  # type: ignore
from rest_framework.response import Response  # type: ignore

from apps.finances.reconciliation import ReconciliationSource
from apps.finances.serializers import PaymentSerializer
from apps.finances.services import PaymentServicesMixin
from shared.application.http import error_response
from shared.domain.exceptions import DomainError

from .filters import ReservationFilterSet
from .models import Reservation
from .serializers import (
    CancelReservationSerializer,
    ConfirmPaymentSerializer,
    ReservationSerializer,
)

logger = logging.getLogger(__name__)


def snapshot_response(snapshot, status_code=status.HTTP_200_OK) -> Response:
    return Response(
        {
            "success": True,
            "data": {
                "reservation": ReservationSerializer(snapshot.reservation).data,
                "payment": PaymentSerializer(snapshot.payment).data if snapshot.payment else None,
            },
        },
        status=status_code,
    )


class ReservationViewSet(PaymentServicesMixin, viewsets.ReadOnlyModelViewSet):
    """Staff view of reservations with payment actions."""

    queryset = Reservation.objects.all()
    serializer_class = ReservationSerializer
    permission_classes = [permissions.IsAdminUser]
    filter_backends = [DjangoFilterBackend, OrderingFilter]
    filterset_class = ReservationFilterSet
    ordering_fields = ["created_at", "reservation_date", "total_amount"]
    ordering = ["-created_at"]

    @action(detail=True, methods=["post"], url_path="confirm-payment")
    def confirm_payment(self, request, pk=None):  # type: ignore
        """
        Confirm a payment received by staff (cash, bank transfer).

        Body: ``{"payment_amount": "100000.00", "payment_method": "cash"}``
        """
        serializer = ConfirmPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            snapshot = self.get_payment_services().coordinator.reconcile(
                pk,
                data["payment_amount"],
                data["payment_method"] or None,
                ReconciliationSource.MANUAL,
            )
        except DomainError as e:
            logger.warning(f"Manual confirmation failed for reservation {pk}: {e.message}")
            return error_response(e)

        logger.info(
            f"Payment confirmed by {request.user.pk} for reservation {pk}: "
            f"{data['payment_amount']} via {data['payment_method'] or 'unspecified'}"
        )
        return snapshot_response(snapshot)

    @action(detail=True, methods=["get"], url_path="pending-payment")
    def pending_payment(self, request, pk=None):  # type: ignore
        reservation = self.get_object()
        payment = self.get_payment_services().ledger.find_pending_payment(reservation.id)
        return Response({
            "success": True,
            "data": PaymentSerializer(payment).data if payment else None,
        })

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):  # type: ignore
        serializer = CancelReservationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            coordinator = self.get_payment_services().coordinator
            snapshot = coordinator.cancel_reservation(pk, serializer.validated_data["reason"])
        except DomainError as e:
            return error_response(e)
        return snapshot_response(snapshot)

    @action(detail=True, methods=["post"])
    def complete(self, request, pk=None):  # type: ignore
        try:
            snapshot = self.get_payment_services().coordinator.complete_reservation(pk)
        except DomainError as e:
            return error_response(e)
        return snapshot_response(snapshot)
