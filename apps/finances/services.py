"""Payment services container.

``FinancesConfig.ready`` builds one :class:`PaymentServices` from
settings and keeps it on the app config; tasks read it through
:func:`get_services`. Views use :class:`PaymentServicesMixin`, which
accepts a container through ``as_view(services=...)`` and falls back
to the app's own. Tests swap the app's container with :func:`install`.
"""

from __future__ import annotations

from dataclasses import dataclass

from django.apps import apps  # type: ignore
from django.conf import settings  # type: ignore
from django.core.exceptions import ImproperlyConfigured  # type: ignore

from apps.reservations.domain.state_machine import ReservationStateMachine

from .checkout import CheckoutService
from .fees import PaymentMethodFeePolicies
from .gateway import XenditClient
from .ledger import PaymentLedger
from .reconciliation import ReconciliationCoordinator
from .webhooks import CallbackVerifier, WebhookGateway


@dataclass
class PaymentServices:
    ledger: PaymentLedger
    coordinator: ReconciliationCoordinator
    checkout: CheckoutService
    webhooks: WebhookGateway
    verifier: CallbackVerifier
    gateway_client: object


def build_services(gateway_client=None, webhook_secret: str | None = None) -> PaymentServices:
    """Wire the payment services from Django settings."""
    customer_pays_fees = getattr(settings, "CUSTOMER_PAYS_FEES", False)
    lock_timeout_ms = getattr(settings, "RECONCILIATION_LOCK_TIMEOUT_MS", None)

    if gateway_client is None:
        gateway_client = XenditClient(
            secret_key=getattr(settings, "XENDIT_SECRET_KEY", ""),
            base_url=getattr(settings, "XENDIT_API_BASE_URL", "https://api.xendit.co"),
            timeout=getattr(settings, "XENDIT_REQUEST_TIMEOUT", 30),
        )
    if webhook_secret is None:
        webhook_secret = getattr(settings, "XENDIT_WEBHOOK_SECRET", "")

    ledger = PaymentLedger()
    fee_policies = PaymentMethodFeePolicies()
    coordinator = ReconciliationCoordinator(
        ledger,
        fee_policies,
        state_machine=ReservationStateMachine(
            confirm_on_deposit=getattr(settings, "RESERVATION_CONFIRM_ON_DEPOSIT", True),
        ),
        customer_pays_fees=customer_pays_fees,
        lock_timeout_ms=lock_timeout_ms,
    )
    checkout = CheckoutService(
        ledger,
        fee_policies,
        gateway_client,
        customer_pays_fees=customer_pays_fees,
        currency=getattr(settings, "DEFAULT_CURRENCY", "IDR"),
        invoice_duration=getattr(settings, "XENDIT_INVOICE_DURATION", 7200),
        site_url=getattr(settings, "SITE_URL", ""),
        lock_timeout_ms=lock_timeout_ms,
    )
    return PaymentServices(
        ledger=ledger,
        coordinator=coordinator,
        checkout=checkout,
        webhooks=WebhookGateway(coordinator, ledger),
        verifier=CallbackVerifier(webhook_secret),
        gateway_client=gateway_client,
    )


def install(services: PaymentServices) -> PaymentServices:
    apps.get_app_config("finances").services = services
    return services


def get_services() -> PaymentServices:
    services = getattr(apps.get_app_config("finances"), "services", None)
    if services is None:
        raise ImproperlyConfigured("Payment services are not installed; is apps.finances in INSTALLED_APPS?")
    return services


class PaymentServicesMixin:
    """View mixin resolving the payment services for a request."""

    services: PaymentServices | None = None

    def get_payment_services(self) -> PaymentServices:
        return self.services or get_services()
