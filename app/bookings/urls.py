"""
URL configuration for the bookings app.

Routes:
    - POST /webhooks/paypal/ - PayPal webhook endpoint
    - POST /webhooks/docuseal/ - DocuSeal webhook endpoint
    - POST /cron/... - Scheduler triggers
    - /admin/bookings/..., /admin/webhooks/... - Admin API

All routes are prefixed with /api/v1/bookings/ when included in the main URLconf.
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from bookings.views import (
    BookingAdminViewSet,
    CronProcessPaymentCapturesView,
    CronProcessWebhookRetriesView,
    WebhookAdminViewSet,
)
from bookings.webhooks.views import docuseal_webhook, paypal_webhook

app_name = "bookings"

router = DefaultRouter()
router.register("admin/bookings", BookingAdminViewSet, basename="admin-booking")
router.register("admin/webhooks", WebhookAdminViewSet, basename="admin-webhook")

urlpatterns = [
    # Webhook endpoints
    path("webhooks/paypal/", paypal_webhook, name="paypal_webhook"),
    path("webhooks/docuseal/", docuseal_webhook, name="docuseal_webhook"),
    # Scheduler triggers
    path(
        "cron/process-webhook-retries/",
        CronProcessWebhookRetriesView.as_view(),
        name="cron_process_webhook_retries",
    ),
    path(
        "cron/process-payment-captures/",
        CronProcessPaymentCapturesView.as_view(),
        name="cron_process_payment_captures",
    ),
    # Admin API
    path("", include(router.urls)),
]
