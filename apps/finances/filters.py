"""FilterSet definitions for payment listings."""

from __future__ import annotations

import django_filters  # type: ignore

from .models import Payment


class PaymentFilterSet(django_filters.FilterSet):
    reservation = django_filters.UUIDFilter(field_name="reservation_id")
    status = django_filters.ChoiceFilter(choices=Payment.Status.choices)
    payment_type = django_filters.ChoiceFilter(choices=Payment.Type.choices)
    paid_after = django_filters.IsoDateTimeFilter(field_name="paid_at", lookup_expr="gte")
    paid_before = django_filters.IsoDateTimeFilter(field_name="paid_at", lookup_expr="lte")

    class Meta:
        model = Payment
        fields = ["reservation", "status", "payment_type"]
