"""
Pytest fixtures shared by all booking tests.

Provides users, bookings in common states, and payload builders for
PayPal and DocuSeal webhooks.

Usage:
    def test_capture(authorized_booking, paypal_event):
        body = paypal_event("PAYMENT.CAPTURE.COMPLETED", {...})
"""

import uuid

import pytest
from django.core.cache import cache

from bookings.state_machines import ContractStatus
from bookings.tests.factories import (
    AdminUserFactory,
    AuthorizedBookingFactory,
    BookingFactory,
)


@pytest.fixture(autouse=True)
def clear_cache():
    """Circuit breaker state and the PayPal token live in the cache."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def provider_settings(settings):
    settings.PAYPAL_CLIENT_ID = "test-client"
    settings.PAYPAL_CLIENT_SECRET = "test-secret"
    settings.PAYPAL_WEBHOOK_ID = "WH-CONFIG-ID"
    settings.DOCUSEAL_API_KEY = "docuseal-key"
    settings.DOCUSEAL_WEBHOOK_SECRET = "docuseal-secret"
    settings.WEBHOOKS_ALLOW_UNVERIFIED = False
    settings.CRON_SECRET = "cron-secret"
    settings.SWEEP_MAX_WORKERS = 1
    return settings


# =============================================================================
# Users
# =============================================================================


@pytest.fixture
def staff_user(db):
    return AdminUserFactory()


@pytest.fixture
def admin_api_client(staff_user):
    from rest_framework.test import APIClient

    client = APIClient()
    client.force_authenticate(user=staff_user)
    return client


# =============================================================================
# Bookings
# =============================================================================


@pytest.fixture
def booking(db):
    """Booking with payment and contract pending."""
    return BookingFactory()


@pytest.fixture
def authorized_booking(db):
    """Authorized booking with an unsigned contract."""
    return AuthorizedBookingFactory(contract_submission_id="501")


@pytest.fixture
def signed_authorized_booking(db):
    """Authorized booking whose contract is signed: ready for capture."""
    return AuthorizedBookingFactory(
        contract_status=ContractStatus.SIGNED,
        contract_submission_id="502",
    )


# =============================================================================
# Payload Builders
# =============================================================================


@pytest.fixture
def paypal_event():
    """Build a PayPal webhook body."""

    def build(event_type: str, resource: dict, event_id: str | None = None) -> dict:
        return {
            "id": event_id or f"WH-{uuid.uuid4().hex[:20]}",
            "event_type": event_type,
            "resource_type": event_type.split(".")[1].lower(),
            "resource": resource,
            "create_time": "2024-01-01T12:00:00Z",
        }

    return build


@pytest.fixture
def docuseal_event():
    """Build a DocuSeal webhook body."""

    def build(
        event_type: str,
        data: dict,
        timestamp: str = "2024-01-01T12:00:00.000Z",
    ) -> dict:
        return {"event_type": event_type, "timestamp": timestamp, "data": data}

    return build


@pytest.fixture
def paypal_headers():
    return {
        "PAYPAL-TRANSMISSION-ID": "tx-1",
        "PAYPAL-TRANSMISSION-TIME": "2024-01-01T12:00:00Z",
        "PAYPAL-TRANSMISSION-SIG": "sig",
        "PAYPAL-CERT-URL": "https://api.paypal.com/cert.pem",
        "PAYPAL-AUTH-ALGO": "SHA256withRSA",
    }
