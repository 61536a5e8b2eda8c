"""URL routing for the finance domain."""

from __future__ import annotations

from django.urls import include, path  # type: ignore
from rest_framework.routers import DefaultRouter  # type: ignore

from .views import CheckoutView, PaymentMethodViewSet, PaymentViewSet, XenditWebhookView

router = DefaultRouter()
router.register(r"payments", PaymentViewSet, basename="payment")
router.register(r"payment-methods", PaymentMethodViewSet, basename="payment-method")

urlpatterns = [
    path("checkout/", CheckoutView.as_view(), name="checkout"),
    path("webhooks/xendit/", XenditWebhookView.as_view(), name="xendit-webhook"),
    path("", include(router.urls)),
]
