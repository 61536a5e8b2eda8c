"""Admin registration for payments."""

from __future__ import annotations

from django.contrib import admin  # type: ignore

from .models import Payment, PaymentMethod, PaymentTransaction


class PaymentTransactionInline(admin.TabularInline):
    model = PaymentTransaction
    extra = 0
    can_delete = False
    readonly_fields = ("event", "status", "payload", "created_at")


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "reservation",
        "payment_type",
        "payment_method",
        "status",
        "amount",
        "gateway_fee",
        "external_status",
        "paid_at",
        "created_at",
    )
    list_filter = ("status", "payment_type", "payment_method")
    search_fields = ("external_reference", "reservation__booking_code")
    readonly_fields = (
        "reservation",
        "amount",
        "invoice_amount",
        "status",
        "external_reference",
        "external_status",
        "gateway_fee",
        "net_amount",
        "callback_payload",
        "paid_at",
        "refunded_at",
        "created_at",
        "updated_at",
    )
    inlines = [PaymentTransactionInline]


@admin.register(PaymentMethod)
class PaymentMethodAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "type", "provider", "fee_type", "fee_percentage", "fee_amount", "is_active")
    list_filter = ("type", "provider", "is_active")
    search_fields = ("code", "name")
