"""
URL configuration for the bookings backend.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/bookings/              - Booking payment and contract endpoints
        webhooks/paypal/           - PayPal webhook receiver (POST)
        webhooks/docuseal/         - DocuSeal webhook receiver (POST)
        cron/process-webhook-retries/  - Scheduler trigger for the retry sweep
        cron/process-payment-captures/ - Scheduler trigger for the capture sweep
        admin/bookings/{id}/       - Booking status and admin actions
        admin/webhooks/            - Retry queue, dead letter and health

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    path("bookings/", include("bookings.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Bookings Admin"
admin.site.site_title = "Bookings Admin Portal"
admin.site.index_title = "Payments, contracts and webhook operations"
