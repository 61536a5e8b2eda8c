"""Reservation models for the studio booking platform."""

from __future__ import annotations

import secrets
import uuid
from decimal import Decimal

from django.db import models  # type: ignore
from django.db.models import Sum  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from shared.domain.base import EventRecorder

from .domain.events import (
    ReservationCancelled,
    ReservationCompleted,
    ReservationConfirmed,
    ReservationSettled,
)
from .domain.state_machine import (
    ReservationStateMachine,
    ReservationStatus,
    SettlementStatus,
    Transition,
)


class Reservation(EventRecorder, models.Model):
    """Booking of a studio package by a customer.

    Created by the booking flow in ``pending``/``pending`` and mutated
    afterwards only through the reconciliation coordinator.
    """

    Status = ReservationStatus
    PaymentStatus = SettlementStatus

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    booking_code = models.CharField(max_length=16, unique=True, editable=False)
    studio_id = models.UUIDField(db_index=True)
    customer_id = models.UUIDField(db_index=True)
    package_id = models.UUIDField()
    reservation_date = models.DateField(null=True, blank=True)
    start_time = models.TimeField(null=True, blank=True)
    end_time = models.TimeField(null=True, blank=True)
    total_amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        help_text=_("Fixed when the reservation is created."),
    )
    dp_amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text=_("Deposit that secures the reservation."),
    )
    status = models.CharField(
        max_length=16,
        choices=ReservationStatus.choices,
        default=ReservationStatus.PENDING,
    )
    payment_status = models.CharField(
        max_length=16,
        choices=SettlementStatus.choices,
        default=SettlementStatus.PENDING,
    )
    confirmed_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=255, blank=True)
    version = models.PositiveIntegerField(default=0, editable=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Reservation")
        verbose_name_plural = _("Reservations")
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(total_amount__gte=0),
                name="reservation_total_non_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(dp_amount__gte=0) & models.Q(dp_amount__lte=models.F("total_amount")),
                name="reservation_deposit_within_total",
            ),
            models.CheckConstraint(
                condition=~models.Q(payment_status="paid") | models.Q(status__in=["confirmed", "completed"]),
                name="reservation_paid_is_confirmed",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "payment_status"], name="reservation_state_idx"),
        ]

    def __str__(self) -> str:
        return f"Reservation #{self.booking_code} ({self.status}/{self.payment_status})"

    def save(self, *args, **kwargs):  # type: ignore
        if self._state.adding and not self.booking_code:
            self.booking_code = self.generate_booking_code()
        super().save(*args, **kwargs)

    @staticmethod
    def generate_booking_code() -> str:
        return f"BK{secrets.token_hex(4).upper()}"

    @property
    def amount_settled(self) -> Decimal:
        total = self.payments.filter(status="paid").aggregate(total=Sum("amount"))["total"]
        return total or Decimal("0.00")

    @property
    def remaining_amount(self) -> Decimal:
        return max(self.total_amount - self.amount_settled, Decimal("0.00"))

    def cancel(self, reason: str, now, state_machine: ReservationStateMachine) -> None:
        transition = state_machine.plan_cancel(self)
        self.cancellation_reason = reason or ""
        self.apply_transition(transition, now)

    def complete(self, now, state_machine: ReservationStateMachine) -> None:
        self.apply_transition(state_machine.plan_complete(self), now)

    def apply_transition(self, transition: Transition, now) -> bool:
        """Persist a planned transition and record the resulting events.

        Returns False when the transition leaves the reservation unchanged.
        """
        if not transition.changes(self):
            return False

        was_confirmed = self.status != ReservationStatus.PENDING
        was_paid = self.payment_status == SettlementStatus.PAID
        old_status = self.status

        self.status = transition.status
        self.payment_status = transition.payment_status
        self.confirmed_at = transition.confirmed_at
        update_fields = ["status", "payment_status", "confirmed_at", "version", "updated_at"]

        if transition.status == ReservationStatus.CANCELLED and old_status != ReservationStatus.CANCELLED:
            self.cancelled_at = now
            update_fields += ["cancelled_at", "cancellation_reason"]
        if transition.status == ReservationStatus.COMPLETED and old_status != ReservationStatus.COMPLETED:
            self.completed_at = now
            update_fields.append("completed_at")

        self.version += 1
        self.save(update_fields=update_fields)

        if self.status == ReservationStatus.CONFIRMED and not was_confirmed:
            self.add_event(ReservationConfirmed(
                aggregate_id=self.id,
                reservation_id=self.id,
                booking_code=self.booking_code,
                payment_status=self.payment_status,
                confirmed_at=self.confirmed_at,
            ))
        if self.payment_status == SettlementStatus.PAID and not was_paid:
            self.add_event(ReservationSettled(
                aggregate_id=self.id,
                reservation_id=self.id,
                booking_code=self.booking_code,
                amount_settled=self.amount_settled,
            ))
        if self.status == ReservationStatus.CANCELLED and old_status != ReservationStatus.CANCELLED:
            self.add_event(ReservationCancelled(
                aggregate_id=self.id,
                reservation_id=self.id,
                booking_code=self.booking_code,
                reason=self.cancellation_reason,
                old_status=old_status,
                payment_status=self.payment_status,
            ))
        if self.status == ReservationStatus.COMPLETED and old_status != ReservationStatus.COMPLETED:
            self.add_event(ReservationCompleted(
                aggregate_id=self.id,
                reservation_id=self.id,
                booking_code=self.booking_code,
            ))
        return True
