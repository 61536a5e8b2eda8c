"""API views for payments.

Payments are read-only over the API: they are created by checkout or
staff confirmation and change state only through reconciliation.
The Xendit webhook endpoint is unauthenticated at the DRF level and
checks the gateway's callback token instead.
"""

from __future__ import annotations

import json
import logging

from django.conf import settings  # type: ignore
from django.utils import timezone  # type: ignore
from django_filters.rest_framework import DjangoFilterBackend  # type: ignore
from rest_framework import permissions, status, viewsets  # type: ignore
from rest_framework.filters import OrderingFilter  # type: ignore
from rest_framework.renderers import JSONRenderer  # type: ignore
from rest_framework.response import Response  # type: ignore
from rest_framework.views import APIView  # type: ignore

from shared.application.http import error_response
from shared.domain.exceptions import DomainError, ValidationError

from .filters import PaymentFilterSet
from .models import Payment, PaymentMethod
from .serializers import CheckoutSerializer, PaymentMethodSerializer, PaymentSerializer
from .services import PaymentServicesMixin
from .webhooks import WebhookUnavailableError

logger = logging.getLogger(__name__)


class PaymentViewSet(viewsets.ReadOnlyModelViewSet):
    """Staff listing of payment records."""

    queryset = Payment.objects.prefetch_related("transactions").all()
    serializer_class = PaymentSerializer
    permission_classes = [permissions.IsAdminUser]
    filter_backends = [DjangoFilterBackend, OrderingFilter]
    filterset_class = PaymentFilterSet
    ordering_fields = ["created_at", "paid_at", "amount"]
    ordering = ["-created_at"]


class PaymentMethodViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = PaymentMethod.objects.filter(is_active=True)
    serializer_class = PaymentMethodSerializer
    permission_classes = [permissions.IsAuthenticated]


class CheckoutView(PaymentServicesMixin, APIView):
    """Start a payment (deposit, remaining or full) for a reservation."""

    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):  # type: ignore
        serializer = CheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            result = self.get_payment_services().checkout.initiate(
                data["reservation_id"],
                data["payment_type"],
                data.get("payment_method") or None,
            )
        except DomainError as e:
            logger.warning(f"Checkout failed for reservation {data['reservation_id']}: {e.message}")
            return error_response(e)

        body = {
            "payment": PaymentSerializer(result.payment).data,
            "invoice_url": result.invoice_url,
        }
        if result.fee is not None:
            body["fee"] = {
                "fee_amount": str(result.fee.fee_amount),
                "total_amount": str(result.fee.total_amount),
                "net_amount": str(result.fee.net_amount),
            }
        return Response(
            {"success": True, "data": body},
            status=status.HTTP_201_CREATED if result.created else status.HTTP_200_OK,
        )


def webhook_enabled() -> bool:
    return getattr(settings, "XENDIT_WEBHOOK_ENABLED", True)


class XenditWebhookView(PaymentServicesMixin, APIView):
    """
    Xendit invoice callbacks.

    POST: authenticated by callback token/signature, then reconciled
    HEAD: liveness check used by the gateway, no authentication
    GET: non-sensitive configuration status
    """

    authentication_classes: list = []
    permission_classes = [permissions.AllowAny]
    renderer_classes = [JSONRenderer]

    def head(self, request):  # type: ignore
        if not webhook_enabled():
            return Response({"success": False, "message": "Webhook disabled"}, status=status.HTTP_503_SERVICE_UNAVAILABLE)
        return Response({"success": True, "status": "healthy", "timestamp": timezone.now().isoformat()})

    def get(self, request):  # type: ignore
        verifier = self.get_payment_services().verifier
        return Response({
            "enabled": webhook_enabled(),
            "signature_verification": True,
            "has_webhook_secret": verifier.is_configured,
            "timestamp": timezone.now().isoformat(),
        })

    def post(self, request):  # type: ignore
        if not webhook_enabled():
            logger.warning("Webhook received but webhooks are disabled")
            return error_response(WebhookUnavailableError("Webhook disabled"))

        services = self.get_payment_services()
        raw_body = request.body
        try:
            services.verifier.verify(request.headers, raw_body)
            if not raw_body:
                raise ValidationError("Empty request body")
            try:
                payload = json.loads(raw_body)
            except ValueError:
                raise ValidationError("Invalid JSON")
            result = services.webhooks.handle(payload)
        except DomainError as e:
            logger.warning(f"Xendit webhook rejected: {type(e).__name__}: {e.message}")
            return error_response(e)

        return Response(result.to_dict(), status=status.HTTP_200_OK)
