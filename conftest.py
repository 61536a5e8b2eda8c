"""Shared pytest fixtures."""

from __future__ import annotations

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone


class FakeGatewayClient:
    """In-memory stand-in for XenditClient."""

    def __init__(self):
        self.invoices: dict = {}
        self.created: list[dict] = []

    def create_invoice(self, external_id, amount, description, **kwargs):
        from apps.finances.gateway import GatewayInvoice

        invoice_id = f"inv_{len(self.created) + 1}"
        self.created.append({
            "external_id": external_id,
            "amount": amount,
            "description": description,
            **kwargs,
        })
        invoice = GatewayInvoice(
            id=invoice_id,
            external_id=external_id,
            status="PENDING",
            amount=Decimal(amount),
            invoice_url=f"https://checkout.xendit.test/{invoice_id}",
            expiry_date=timezone.now() + timedelta(hours=2),
            raw={"id": invoice_id, "external_id": external_id, "status": "PENDING"},
        )
        self.invoices[invoice_id] = invoice
        return invoice

    def set_status(self, invoice_id: str, status: str, **raw):
        invoice = self.invoices[invoice_id]
        invoice.status = status
        invoice.raw = {"id": invoice_id, "external_id": invoice.external_id, "status": status, **raw}

    def get_invoice(self, invoice_id):
        return self.invoices[invoice_id]


@pytest.fixture
def fake_gateway():
    return FakeGatewayClient()


@pytest.fixture
def services(fake_gateway):
    """Payment services wired with the fake gateway; restores the app's own afterwards."""
    from apps.finances import services as payment_services

    previous = payment_services.get_services()
    installed = payment_services.install(payment_services.build_services(gateway_client=fake_gateway))
    yield installed
    payment_services.install(previous)


@pytest.fixture
def make_reservation(db):
    from apps.reservations.models import Reservation

    def factory(total="100000.00", dp="30000.00", **kwargs):
        return Reservation.objects.create(
            studio_id=kwargs.pop("studio_id", uuid.uuid4()),
            customer_id=kwargs.pop("customer_id", uuid.uuid4()),
            package_id=kwargs.pop("package_id", uuid.uuid4()),
            total_amount=Decimal(total),
            dp_amount=Decimal(dp),
            **kwargs,
        )

    return factory


@pytest.fixture
def reservation(make_reservation):
    return make_reservation()


@pytest.fixture
def gateway_method(db):
    from apps.finances.models import PaymentMethod

    return PaymentMethod.objects.create(
        studio_id=uuid.uuid4(),
        code="qris",
        name="QRIS",
        type=PaymentMethod.Type.QRIS,
        provider=PaymentMethod.Provider.XENDIT,
        fee_type=PaymentMethod.FeeType.PERCENTAGE,
        fee_percentage=Decimal("2.5"),
        gateway_channel="qris",
    )


@pytest.fixture
def cash_method(db):
    from apps.finances.models import PaymentMethod

    return PaymentMethod.objects.create(
        studio_id=uuid.uuid4(),
        code="cash",
        name="Cash",
        type=PaymentMethod.Type.CASH,
        provider=PaymentMethod.Provider.MANUAL,
        fee_type=PaymentMethod.FeeType.FIXED,
        fee_amount=Decimal("0"),
    )
