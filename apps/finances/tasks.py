"""Celery tasks for the finance domain."""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task  # type: ignore
from django.conf import settings  # type: ignore
from django.db.models import Q  # type: ignore
from django.utils import timezone  # type: ignore

from shared.domain.exceptions import DomainError

from .models import Payment
from .reconciliation import ReconciliationSource
from .services import get_services

logger = logging.getLogger(__name__)

PARTIALLY_PAID = "PARTIALLY_PAID"


# ============================================================================
# PERIODIC TASKS (scheduled in config/celery.py)
# ============================================================================

@shared_task(name="finances.sync_pending_gateway_payments")
def sync_pending_gateway_payments() -> dict[str, int]:
    """
    Poll the gateway for open invoices whose webhook never arrived.

    Open means pending, or paid in part and still collecting money.

    Changed statuses go through the same path as webhooks, so a
    callback that arrives later is treated as a replay.

    Returns:
        dict: {"checked": polled invoices, "updated": status changes applied}
    """
    services = get_services()
    minutes = getattr(settings, "PAYMENT_STATUS_SYNC_AFTER_MINUTES", 15)
    cutoff = timezone.now() - timedelta(minutes=minutes)

    pending = Payment.objects.filter(
        Q(status=Payment.Status.PENDING)
        | Q(status=Payment.Status.PAID, external_status=PARTIALLY_PAID),
        external_reference__isnull=False,
        created_at__lte=cutoff,
    ).exclude(external_reference="")

    checked = updated = 0
    for payment in pending:
        checked += 1
        try:
            invoice = services.gateway_client.get_invoice(payment.external_reference)
            # A partial invoice can report more money under the same status
            if invoice.status == (payment.external_status or "").upper() and invoice.status != PARTIALLY_PAID:
                continue
            result = services.webhooks.apply_status(
                payment,
                invoice.status,
                invoice.raw,
                ReconciliationSource.STATUS_SYNC,
            )
            if result.processed:
                updated += 1
        except DomainError as e:
            logger.error(f"Status sync failed for payment {payment.id}: {e.message}")

    if updated:
        logger.info(f"Synced {updated} of {checked} pending gateway payments")
    return {"checked": checked, "updated": updated}


@shared_task(name="finances.expire_stale_payments")
def expire_stale_payments() -> dict[str, int]:
    """
    Mark pending payments whose invoice expired as failed.

    Returns:
        dict: {"expired": number of payments marked failed}
    """
    coordinator = get_services().coordinator
    now = timezone.now()

    stale = Payment.objects.filter(
        status=Payment.Status.PENDING,
        expires_at__isnull=False,
        expires_at__lte=now,
    )

    expired = 0
    for payment in stale:
        try:
            coordinator.record_failure(
                payment_id=payment.id,
                external_status="EXPIRED",
                raw_callback={"reason": "expired", "expires_at": payment.expires_at.isoformat()},
            )
            expired += 1
        except DomainError as e:
            logger.error(f"Error expiring payment {payment.id}: {e.message}")

    if expired:
        logger.info(f"Expired {expired} stale payments")
    return {"expired": expired}
