"""Serializers for the finance domain (payments)."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from .models import Payment, PaymentMethod, PaymentTransaction


class PaymentTransactionSerializer(serializers.ModelSerializer):
    class Meta:
        model = PaymentTransaction
        fields = ["id", "event", "payload", "status", "created_at"]
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    """Read-only view of a payment record. Payments change only through reconciliation."""

    transactions = PaymentTransactionSerializer(many=True, read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "reservation",
            "amount",
            "invoice_amount",
            "payment_type",
            "payment_method",
            "status",
            "external_reference",
            "external_status",
            "payment_url",
            "gateway_fee",
            "net_amount",
            "paid_at",
            "expires_at",
            "refunded_at",
            "created_at",
            "updated_at",
            "transactions",
        ]
        read_only_fields = fields


class PaymentMethodSerializer(serializers.ModelSerializer):
    fee_display = serializers.SerializerMethodField()

    class Meta:
        model = PaymentMethod
        fields = [
            "id",
            "code",
            "name",
            "type",
            "provider",
            "fee_type",
            "fee_percentage",
            "fee_amount",
            "fee_display",
            "is_active",
        ]
        read_only_fields = fields

    def get_fee_display(self, obj: PaymentMethod) -> str:
        from .fees import FeePolicy, format_fee_for_display

        if obj.fee_type == PaymentMethod.FeeType.FIXED:
            return format_fee_for_display(FeePolicy.fixed(obj.fee_amount))
        return format_fee_for_display(FeePolicy.percentage(obj.fee_percentage))


class CheckoutSerializer(serializers.Serializer):
    reservation_id = serializers.UUIDField()
    payment_type = serializers.ChoiceField(choices=Payment.Type.choices)
    payment_method = serializers.CharField(max_length=50, required=False, allow_blank=True)
