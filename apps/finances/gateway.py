"""
Xendit invoice API client.

One instance is built at start-up (``FinancesConfig.ready``) and handed
to the services that need it; tests inject a double instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

import requests
from django.utils.dateparse import parse_datetime  # type: ignore

from shared.domain.exceptions import TransientError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.xendit.co"


class GatewayError(TransientError):
    """Gateway unreachable or returned an error response."""

    default_message = "Payment gateway error"

    def __init__(self, message: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class GatewayInvoice:
    id: str
    external_id: str
    status: str
    amount: Decimal
    invoice_url: str = ""
    paid_amount: Decimal | None = None
    payment_method: str = ""
    expiry_date: datetime | None = None
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_response(cls, data: dict) -> "GatewayInvoice":
        paid_amount = data.get("paid_amount")
        expiry = data.get("expiry_date")
        return cls(
            id=data.get("id", ""),
            external_id=data.get("external_id", ""),
            status=(data.get("status") or "").upper(),
            amount=Decimal(str(data.get("amount") or 0)),
            invoice_url=data.get("invoice_url", ""),
            paid_amount=Decimal(str(paid_amount)) if paid_amount is not None else None,
            payment_method=data.get("payment_method") or "",
            expiry_date=parse_datetime(expiry) if expiry else None,
            raw=data,
        )


class XenditClient:
    """Thin wrapper over the Xendit v2 invoice endpoints."""

    def __init__(
        self,
        secret_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30,
        session: requests.Session | None = None,
    ):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)

    def _request(self, method: str, path: str, **kwargs) -> dict:
        if not self.is_configured:
            raise GatewayError("Xendit secret key is not configured")

        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method,
                url,
                auth=(self.secret_key, ""),
                timeout=self.timeout,
                headers={"Accept": "application/json"},
                **kwargs,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Network error calling Xendit {method} {path}: {e}")
            raise GatewayError(f"Could not reach payment gateway: {e}") from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            message = body.get("message") or response.text[:200] or "unknown error"
            logger.error(f"Xendit {method} {path} returned {response.status_code}: {message}")
            raise GatewayError(f"Payment gateway error: {message}", status_code=response.status_code)

        return response.json()

    def create_invoice(
        self,
        external_id: str,
        amount: Decimal,
        description: str,
        *,
        currency: str = "IDR",
        invoice_duration: int | None = None,
        payment_methods: list[str] | None = None,
        success_redirect_url: str = "",
        failure_redirect_url: str = "",
        customer: dict | None = None,
    ) -> GatewayInvoice:
        payload = {
            "external_id": external_id,
            "amount": float(amount),
            "description": description,
            "currency": currency,
            "items": [
                {"name": description, "quantity": 1, "price": float(amount), "category": "Service"},
            ],
        }
        if invoice_duration:
            payload["invoice_duration"] = invoice_duration
        if payment_methods:
            payload["payment_methods"] = payment_methods
        if success_redirect_url:
            payload["success_redirect_url"] = success_redirect_url
        if failure_redirect_url:
            payload["failure_redirect_url"] = failure_redirect_url
        if customer:
            payload["customer"] = customer

        logger.info(f"Creating Xendit invoice {external_id} for {amount} {currency}")
        invoice = GatewayInvoice.from_response(self._request("POST", "/v2/invoices", json=payload))
        logger.info(f"Xendit invoice created: {invoice.id} ({invoice.status})")
        return invoice

    def get_invoice(self, invoice_id: str) -> GatewayInvoice:
        return GatewayInvoice.from_response(self._request("GET", f"/v2/invoices/{invoice_id}"))
