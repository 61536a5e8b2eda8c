"""FilterSet definitions for reservation listings."""

from __future__ import annotations

import django_filters  # type: ignore

from .models import Reservation


class ReservationFilterSet(django_filters.FilterSet):
    status = django_filters.ChoiceFilter(choices=Reservation.Status.choices)
    payment_status = django_filters.ChoiceFilter(choices=Reservation.PaymentStatus.choices)
    studio = django_filters.UUIDFilter(field_name="studio_id")
    customer = django_filters.UUIDFilter(field_name="customer_id")
    date_from = django_filters.DateFilter(field_name="reservation_date", lookup_expr="gte")
    date_to = django_filters.DateFilter(field_name="reservation_date", lookup_expr="lte")

    class Meta:
        model = Reservation
        fields = ["status", "payment_status", "studio", "customer"]
