"""
End-to-end booking journeys: webhook in, capture out.

PayPal's capture and verification endpoints are mocked at the adapter;
everything else (gateway, ledger, state machine, capture service, retry
sweep) runs for real. Captures queued after commit are executed inline.
"""

import hashlib
import hmac
import json
from decimal import Decimal
from unittest.mock import patch

import pytest

from bookings.adapters import CaptureResult
from bookings.exceptions import ProviderUnavailableError
from bookings.models import Booking, BookingEvent, WebhookEvent
from bookings.state_machines import (
    BookingEventType,
    ContractStatus,
    OverallStatus,
    PaymentStatus,
    WebhookEventStatus,
)
from bookings.tasks import capture_booking_payment
from bookings.tests.factories import WebhookEventFactory
from bookings.webhooks.gateway import IngestionOutcome, WebhookIngestionGateway
from bookings.workers import run_retry_sweep

CAPTURE_PATH = "bookings.services.capture_service.PayPalAdapter.capture_authorization"
VERIFY_PATH = "bookings.webhooks.verifiers.PayPalAdapter.verify_webhook_signature"


def completed_capture(authorization_id):
    return CaptureResult(
        id=f"CAP-{authorization_id}",
        status="COMPLETED",
        amount=Decimal("120.00"),
        currency="USD",
        raw_response={
            "id": f"CAP-{authorization_id}",
            "status": "COMPLETED",
            "amount": {"value": "120.00", "currency_code": "USD"},
            "final_capture": True,
        },
    )


def signed_docuseal(payload):
    body = json.dumps(payload).encode()
    digest = hmac.new(b"docuseal-secret", body, hashlib.sha256).hexdigest()
    return body, {"X-DocuSeal-Signature": f"sha256={digest}"}


@pytest.fixture
def inline_capture_task():
    """Run capture_booking_payment synchronously when it is queued."""
    with patch("bookings.tasks.capture_booking_payment.delay") as mock_delay:
        mock_delay.side_effect = lambda booking_id, reason="": capture_booking_payment(booking_id, reason)
        yield mock_delay


class TestContractSignedJourney:
    def test_signed_contract_captures_and_confirms(
        self,
        authorized_booking,
        docuseal_event,
        paypal_event,
        paypal_headers,
        inline_capture_task,
        django_capture_on_commit_callbacks,
    ):
        body, headers = signed_docuseal(
            docuseal_event(
                "submission.completed",
                {
                    "id": 501,
                    "status": "completed",
                    "completed_at": "2024-01-01T12:00:00Z",
                    "combined_document_url": "https://docuseal.example/501.pdf",
                    "submitters": [{"email": "customer@example.com"}],
                },
            )
        )

        with patch(CAPTURE_PATH, return_value=completed_capture(authorized_booking.paypal_authorization_id)) as mock_capture:
            with django_capture_on_commit_callbacks(execute=True):
                result = WebhookIngestionGateway.receive("docuseal", body, headers)

        booking = Booking.objects.get(pk=authorized_booking.pk)
        assert result.outcome == IngestionOutcome.PROCESSED
        assert booking.contract_status == ContractStatus.SIGNED
        assert booking.payment_status == PaymentStatus.CAPTURED
        assert booking.overall_status == OverallStatus.UPCOMING
        mock_capture.assert_called_once()

        # PayPal's own capture notification arrives afterwards and changes nothing
        version = booking.version
        capture_webhook = paypal_event(
            "PAYMENT.CAPTURE.COMPLETED",
            {
                "id": booking.paypal_capture_id,
                "amount": {"value": "120.00", "currency_code": "USD"},
                "custom_id": str(booking.id),
            },
        )
        with patch(VERIFY_PATH, return_value="SUCCESS"):
            late = WebhookIngestionGateway.receive("paypal", json.dumps(capture_webhook).encode(), paypal_headers)

        assert late.outcome == IngestionOutcome.PROCESSED
        assert late.applied is False
        assert Booking.objects.get(pk=booking.pk).version == version

    def test_transient_capture_failure_recovers_through_retry_sweep(
        self,
        authorized_booking,
        docuseal_event,
        inline_capture_task,
        django_capture_on_commit_callbacks,
    ):
        body, headers = signed_docuseal(docuseal_event("form.completed", {"id": 8, "submission_id": 501}))

        with patch(CAPTURE_PATH, side_effect=ProviderUnavailableError("timeout", provider="paypal")):
            with django_capture_on_commit_callbacks(execute=True):
                WebhookIngestionGateway.receive("docuseal", body, headers)

        assert Booking.objects.get(pk=authorized_booking.pk).payment_status == PaymentStatus.AUTHORIZED
        assert WebhookEvent.objects.get().status == WebhookEventStatus.PENDING

        with patch(CAPTURE_PATH, return_value=completed_capture(authorized_booking.paypal_authorization_id)):
            summary = run_retry_sweep()

        assert summary["succeeded"] == 1
        assert Booking.objects.get(pk=authorized_booking.pk).payment_status == PaymentStatus.CAPTURED


class TestDuplicateDeliveries:
    def test_repeated_capture_webhook_applies_once(self, authorized_booking, paypal_event, paypal_headers):
        payload = paypal_event(
            "PAYMENT.CAPTURE.COMPLETED",
            {
                "id": "CAP-1",
                "amount": {"value": "120.00", "currency_code": "USD"},
                "custom_id": str(authorized_booking.id),
            },
        )
        body = json.dumps(payload).encode()

        with patch(VERIFY_PATH, return_value="SUCCESS"):
            outcomes = [
                WebhookIngestionGateway.receive("paypal", body, paypal_headers).outcome
                for _ in range(3)
            ]

        assert outcomes == [
            IngestionOutcome.PROCESSED,
            IngestionOutcome.DUPLICATE,
            IngestionOutcome.DUPLICATE,
        ]
        assert BookingEvent.objects.filter(
            booking=authorized_booking,
            event_type=BookingEventType.PAYMENT_CAPTURED,
        ).count() == 1
        assert BookingEvent.objects.filter(booking=authorized_booking).count() == 1

    def test_bad_signature_never_mutates_or_retries(self, authorized_booking, paypal_event, paypal_headers):
        payload = paypal_event("PAYMENT.CAPTURE.COMPLETED", {"custom_id": str(authorized_booking.id)})

        with patch(VERIFY_PATH, return_value="FAILURE"):
            for _ in range(3):
                WebhookIngestionGateway.receive("paypal", json.dumps(payload).encode(), paypal_headers)

        assert Booking.objects.get(pk=authorized_booking.pk).version == authorized_booking.version
        assert not BookingEvent.objects.exists()
        assert not WebhookEvent.objects.exists()


class TestDeadLetterSweep:
    def test_final_attempts_dead_letter_and_are_not_reprocessed(self, db):
        records = WebhookEventFactory.create_batch(
            10,
            attempt_count=4,
            max_attempts=5,
            payload={"id": "WH-broken", "event_type": "PAYMENT.CAPTURE.COMPLETED"},
        )

        first = run_retry_sweep()
        second = run_retry_sweep()

        assert first["processed"] == 10
        assert first["dead_lettered"] == 10
        assert second["processed"] == 0
        assert all(
            WebhookEvent.objects.get(pk=r.pk).status == WebhookEventStatus.DEAD_LETTER
            for r in records
        )
