"""Admin registration for reservations."""

from __future__ import annotations

from django.contrib import admin  # type: ignore

from .models import Reservation


@admin.register(Reservation)
class ReservationAdmin(admin.ModelAdmin):
    list_display = (
        "booking_code",
        "studio_id",
        "customer_id",
        "status",
        "payment_status",
        "reservation_date",
        "total_amount",
        "dp_amount",
        "created_at",
    )
    list_filter = ("status", "payment_status", "reservation_date")
    search_fields = ("booking_code",)
    # Status fields change only through reconciliation
    readonly_fields = (
        "booking_code",
        "status",
        "payment_status",
        "confirmed_at",
        "completed_at",
        "cancelled_at",
        "version",
        "created_at",
        "updated_at",
    )
