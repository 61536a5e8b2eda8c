"""Financial domain models for the studio booking platform."""

from __future__ import annotations

import uuid
from decimal import Decimal

from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from shared.domain.base import EventRecorder


class PaymentMethod(models.Model):
    """Payment method offered by a studio, including its fee policy."""

    class Type(models.TextChoices):
        BANK_TRANSFER = "bank_transfer", _("Bank transfer")
        CASH = "cash", _("Cash")
        E_WALLET = "e_wallet", _("E-wallet")
        VIRTUAL_ACCOUNT = "virtual_account", _("Virtual account")
        CARD = "card", _("Card")
        QRIS = "qris", _("QRIS")

    class Provider(models.TextChoices):
        MANUAL = "manual", _("Manual")
        XENDIT = "xendit", _("Xendit")

    class FeeType(models.TextChoices):
        PERCENTAGE = "percentage", _("Percentage")
        FIXED = "fixed", _("Fixed")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    studio_id = models.UUIDField(db_index=True)
    code = models.SlugField(max_length=50, unique=True, help_text=_("Identifier sent by clients."))
    name = models.CharField(max_length=100)
    type = models.CharField(max_length=20, choices=Type.choices)
    provider = models.CharField(max_length=20, choices=Provider.choices, default=Provider.MANUAL)
    fee_type = models.CharField(max_length=12, choices=FeeType.choices, default=FeeType.PERCENTAGE)
    fee_percentage = models.DecimalField(max_digits=6, decimal_places=3, default=Decimal("0"))
    fee_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    gateway_channel = models.CharField(
        max_length=40,
        blank=True,
        help_text=_("Gateway payment channel, e.g. QRIS or OVO."),
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Payment method")
        verbose_name_plural = _("Payment methods")
        ordering = ["name"]

    def __str__(self) -> str:
        return f"{self.name} ({self.code})"

    @property
    def uses_gateway(self) -> bool:
        return self.provider == self.Provider.XENDIT and self.type not in (
            self.Type.BANK_TRANSFER,
            self.Type.CASH,
        )


class Payment(EventRecorder, models.Model):
    """Money movement (or expected movement) tied to one reservation."""

    class Status(models.TextChoices):
        PENDING = "pending", _("Awaiting payment")
        PAID = "paid", _("Paid")
        FAILED = "failed", _("Failed")
        CANCELLED = "cancelled", _("Cancelled")
        REFUNDED = "refunded", _("Refunded")

    class Type(models.TextChoices):
        DEPOSIT = "dp", _("Deposit")
        FULL = "full", _("Full payment")
        REMAINING = "remaining", _("Remaining balance")

    TERMINAL_STATUSES = (Status.PAID, Status.CANCELLED, Status.REFUNDED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    reservation = models.ForeignKey(
        "reservations.Reservation",
        on_delete=models.PROTECT,
        related_name="payments",
    )
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    invoice_amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Amount requested when the payment was opened.",
    )
    payment_type = models.CharField(max_length=12, choices=Type.choices)
    payment_method = models.CharField(max_length=50, blank=True)
    status = models.CharField(max_length=12, choices=Status.choices, default=Status.PENDING)
    external_reference = models.CharField(max_length=120, null=True, blank=True, unique=True)
    external_status = models.CharField(max_length=40, blank=True)
    payment_url = models.URLField(max_length=500, blank=True)
    gateway_fee = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    net_amount = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)
    callback_payload = models.JSONField(
        null=True,
        blank=True,
        help_text=_("Last gateway payload, stored verbatim for audit."),
    )
    paid_at = models.DateTimeField(null=True, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Payment")
        verbose_name_plural = _("Payments")
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["reservation"],
                condition=models.Q(status="pending"),
                name="payment_one_pending_per_reservation",
            ),
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="payment_amount_positive",
            ),
        ]
        indexes = [
            models.Index(fields=["reservation", "status"], name="payment_reservation_status_idx"),
        ]

    def __str__(self) -> str:
        return f"Payment {self.id} for {self.reservation_id} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES


class PaymentTransaction(models.Model):
    """History of gateway interactions (webhooks, status polls, manual confirmations)."""

    class Event(models.TextChoices):
        WEBHOOK = "webhook", _("Webhook")
        STATUS_SYNC = "status_sync", _("Status sync")
        MANUAL = "manual", _("Manual confirmation")

    payment = models.ForeignKey(
        Payment,
        on_delete=models.CASCADE,
        related_name="transactions",
    )
    event = models.CharField(max_length=20, choices=Event.choices)
    payload = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=40, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Payment transaction")
        verbose_name_plural = _("Payment transactions")
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.event} for payment {self.payment_id}"
