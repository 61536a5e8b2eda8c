"""Serializers for reservations and the staff payment actions."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from .models import Reservation


class ReservationSerializer(serializers.ModelSerializer):
    amount_settled = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)
    remaining_amount = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = Reservation
        fields = [
            "id",
            "booking_code",
            "studio_id",
            "customer_id",
            "package_id",
            "reservation_date",
            "start_time",
            "end_time",
            "total_amount",
            "dp_amount",
            "amount_settled",
            "remaining_amount",
            "status",
            "payment_status",
            "confirmed_at",
            "completed_at",
            "cancelled_at",
            "cancellation_reason",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class ConfirmPaymentSerializer(serializers.Serializer):
    """Staff confirmation of a payment received outside the gateway."""

    payment_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    payment_method = serializers.CharField(max_length=50, required=False, allow_blank=True, default="")


class CancelReservationSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
