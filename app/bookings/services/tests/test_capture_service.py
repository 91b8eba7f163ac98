"""
Tests for CaptureService.

PayPal is mocked at PayPalAdapter.capture_authorization; the state
machine, retry manager and lease handling run for real.

Tests cover:
- Completed, pending and declined capture responses
- Permanent rejections, including an authorization already captured
- Transient failures stored as system-capture retry records
- Configuration and credential failures leave the booking untouched
- Lease contention and lease release
- Replaying a stored capture through the retry handler
"""

import uuid
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.db import OperationalError
from django.utils import timezone

from bookings.adapters import CaptureResult
from bookings.exceptions import (
    LeaseUnavailableError,
    ProviderConfigurationError,
    ProviderRequestError,
    ProviderUnavailableError,
)
from bookings.models import Booking, BookingEvent, WebhookEvent
from bookings.services import CaptureService, CaptureStatus, RetryManager
from bookings.services import state_machine as sm
from bookings.services.capture_service import retry_capture
from bookings.services.state_machine import BookingStateMachine
from bookings.state_machines import (
    BookingEventType,
    PaymentStatus,
    WebhookEventStatus,
    WebhookProvider,
)
from bookings.tests.factories import AuthorizedBookingFactory, BookingFactory

CAPTURE_PATH = "bookings.services.capture_service.PayPalAdapter.capture_authorization"


def completed(capture_id="CAP-1", amount="120.00"):
    return CaptureResult(
        id=capture_id,
        status="COMPLETED",
        amount=Decimal(amount),
        currency="USD",
        raw_response={
            "id": capture_id,
            "status": "COMPLETED",
            "amount": {"value": amount, "currency_code": "USD"},
            "final_capture": True,
        },
    )


def reload(booking):
    return Booking.objects.get(pk=booking.pk)


class TestCaptureOutcomes:
    def test_completed_capture(self, db):
        booking = AuthorizedBookingFactory()

        with patch(CAPTURE_PATH, return_value=completed()) as mock_capture:
            attempt = CaptureService.capture_booking(booking.id, reason="contract_signed")

        booking = reload(booking)
        assert attempt.status == CaptureStatus.CAPTURED
        assert attempt.capture_id == "CAP-1"
        assert booking.payment_status == PaymentStatus.CAPTURED
        assert booking.captured_amount == Decimal("120.00")
        assert booking.capture_lease_owner is None
        mock_capture.assert_called_once_with(
            booking.paypal_authorization_id,
            request_id=f"capture-{booking.paypal_authorization_id}",
        )

    def test_pending_capture_keeps_authorized(self, db):
        booking = AuthorizedBookingFactory()
        result = CaptureResult(
            id="CAP-1",
            status="PENDING",
            raw_response={"id": "CAP-1", "status": "PENDING", "status_details": {"reason": "ECHECK"}},
        )

        with patch(CAPTURE_PATH, return_value=result):
            attempt = CaptureService.capture_booking(booking.id)

        assert attempt.status == CaptureStatus.PENDING
        assert reload(booking).payment_status == PaymentStatus.AUTHORIZED
        assert BookingEvent.objects.filter(
            booking=booking, event_type=BookingEventType.CAPTURE_PENDING
        ).exists()

    def test_declined_status_fails_payment(self, db):
        booking = AuthorizedBookingFactory()
        result = CaptureResult(id="CAP-1", status="DECLINED", raw_response={"id": "CAP-1", "status": "DECLINED"})

        with patch(CAPTURE_PATH, return_value=result):
            attempt = CaptureService.capture_booking(booking.id)

        assert attempt.status == CaptureStatus.DENIED
        assert reload(booking).payment_status == PaymentStatus.FAILED

    def test_rejected_request_denies_capture(self, db):
        booking = AuthorizedBookingFactory()
        error = ProviderRequestError(
            "Authorization has expired",
            provider="paypal",
            status_code=422,
            provider_code="AUTHORIZATION_EXPIRED",
        )

        with patch(CAPTURE_PATH, side_effect=error):
            attempt = CaptureService.capture_booking(booking.id)

        assert attempt.status == CaptureStatus.DENIED
        assert attempt.error_code == "AUTHORIZATION_EXPIRED"
        assert reload(booking).payment_status == PaymentStatus.FAILED
        assert not WebhookEvent.objects.exists()

    def test_already_captured_is_not_a_failure(self, db):
        booking = AuthorizedBookingFactory()
        error = ProviderRequestError(
            "Authorization already captured",
            provider="paypal",
            status_code=422,
            provider_code="AUTHORIZATION_ALREADY_CAPTURED",
        )

        with patch(CAPTURE_PATH, side_effect=error):
            attempt = CaptureService.capture_booking(booking.id)

        assert attempt.status == CaptureStatus.ALREADY_CAPTURED
        assert reload(booking).payment_status == PaymentStatus.AUTHORIZED


class TestConfigurationFailures:
    def test_missing_credentials_is_not_a_denial(self, db, settings):
        settings.PAYPAL_CLIENT_ID = ""
        settings.PAYPAL_CLIENT_SECRET = ""
        booking = AuthorizedBookingFactory()

        attempt = CaptureService.capture_booking(booking.id)

        assert attempt.status == CaptureStatus.ERROR
        assert attempt.error_code == "PROVIDER_NOT_CONFIGURED"
        assert reload(booking).payment_status == PaymentStatus.AUTHORIZED
        assert reload(booking).capture_lease_owner is None
        assert not WebhookEvent.objects.exists()
        assert not BookingEvent.objects.filter(booking=booking).exists()

    @pytest.mark.parametrize(
        "error",
        [
            ProviderRequestError("Authentication failed", provider="paypal", status_code=401, provider_code="invalid_client"),
            ProviderRequestError("Permission denied", provider="paypal", status_code=403, provider_code="NOT_AUTHORIZED"),
            ProviderRequestError("paypal returned 400", provider="paypal", status_code=400),
        ],
        ids=["unauthorized", "forbidden", "no-issue-code"],
    )
    def test_request_errors_that_are_not_refusals(self, db, error):
        booking = AuthorizedBookingFactory()

        with patch(CAPTURE_PATH, side_effect=error):
            attempt = CaptureService.capture_booking(booking.id)

        assert attempt.status == CaptureStatus.ERROR
        assert reload(booking).payment_status == PaymentStatus.AUTHORIZED
        assert not BookingEvent.objects.filter(booking=booking).exists()

    def test_rejected_credentials_propagate_on_replay(self, db):
        booking = AuthorizedBookingFactory()
        error = ProviderConfigurationError(
            "PayPal rejected the REST app credentials",
            provider="paypal",
            error_code="PROVIDER_AUTH_FAILED",
            status_code=401,
        )

        with patch(CAPTURE_PATH, side_effect=error):
            with pytest.raises(ProviderConfigurationError):
                CaptureService.capture_booking(booking.id, raise_transient=True)

        assert reload(booking).payment_status == PaymentStatus.AUTHORIZED
        assert reload(booking).capture_lease_owner is None


class TestTransientFailures:
    def test_transient_failure_stores_retry_record(self, db):
        booking = AuthorizedBookingFactory()
        error = ProviderUnavailableError("paypal request timed out", provider="paypal", error_code="PROVIDER_TIMEOUT")

        with patch(CAPTURE_PATH, side_effect=error):
            attempt = CaptureService.capture_booking(booking.id, reason="hours_before_rental")

        record = WebhookEvent.objects.get()
        assert attempt.status == CaptureStatus.QUEUED_FOR_RETRY
        assert attempt.retry_record_id == str(record.id)
        assert record.webhook_type == WebhookProvider.SYSTEM_CAPTURE
        assert record.webhook_id == f"capture:{booking.paypal_authorization_id}"
        assert record.payload["booking_id"] == str(booking.id)
        assert record.booking_id == booking.id
        assert BookingEvent.objects.filter(
            booking=booking, event_type=BookingEventType.CAPTURE_FAILED
        ).exists()
        assert reload(booking).payment_status == PaymentStatus.AUTHORIZED

    def test_raise_transient_propagates(self, db):
        booking = AuthorizedBookingFactory()
        error = ProviderUnavailableError("paypal returned 503", provider="paypal", status_code=503)

        with patch(CAPTURE_PATH, side_effect=error):
            with pytest.raises(ProviderUnavailableError):
                CaptureService.capture_booking(booking.id, raise_transient=True)

        assert not WebhookEvent.objects.exists()
        assert reload(booking).capture_lease_owner is None

    def test_retry_replays_capture(self, db):
        booking = AuthorizedBookingFactory()
        with patch(CAPTURE_PATH, side_effect=ProviderUnavailableError("down", provider="paypal")):
            CaptureService.capture_booking(booking.id)
        record = WebhookEvent.objects.get()
        assert RetryManager.claim(record, "w1")

        with patch(CAPTURE_PATH, return_value=completed()):
            outcome = RetryManager.process_retry(record)

        record.refresh_from_db()
        assert outcome.success is True
        assert record.status == WebhookEventStatus.SUCCEEDED
        assert reload(booking).payment_status == PaymentStatus.CAPTURED

    def test_retry_handler_raises_when_lease_held(self, db):
        booking = AuthorizedBookingFactory(
            capture_lease_owner="other",
            capture_lease_expires_at=timezone.now() + timedelta(minutes=5),
        )
        record = WebhookEvent.objects.create(
            webhook_type=WebhookProvider.SYSTEM_CAPTURE,
            webhook_id=f"capture:{booking.paypal_authorization_id}",
            payload={"booking_id": str(booking.id), "authorization_id": booking.paypal_authorization_id},
        )

        with pytest.raises(LeaseUnavailableError):
            retry_capture(record)

    def test_failure_after_succeeded_retry_is_queued_again(self, db):
        booking = AuthorizedBookingFactory()
        down = ProviderUnavailableError("down", provider="paypal")
        pending = CaptureResult(
            id="CAP-1",
            status="PENDING",
            raw_response={"id": "CAP-1", "status": "PENDING", "status_details": {"reason": "ECHECK"}},
        )
        with patch(CAPTURE_PATH, side_effect=down):
            CaptureService.capture_booking(booking.id)
        record = WebhookEvent.objects.get()
        assert RetryManager.claim(record, "w1")
        with patch(CAPTURE_PATH, return_value=pending):
            assert RetryManager.process_retry(record).success is True
        assert WebhookEvent.objects.get(pk=record.pk).status == WebhookEventStatus.SUCCEEDED

        with patch(CAPTURE_PATH, side_effect=down):
            attempt = CaptureService.capture_booking(booking.id)

        record = WebhookEvent.objects.get()
        assert attempt.status == CaptureStatus.QUEUED_FOR_RETRY
        assert attempt.retry_record_id == str(record.id)
        assert record.status == WebhookEventStatus.PENDING
        assert record.attempt_count == 0
        assert record.succeeded_at is None
        assert RetryManager.get_webhooks_for_retry() == [record]

    def test_dead_lettered_record_is_reported(self, db):
        booking = AuthorizedBookingFactory()
        record = WebhookEvent.objects.create(
            webhook_type=WebhookProvider.SYSTEM_CAPTURE,
            webhook_id=f"capture:{booking.paypal_authorization_id}",
            payload={"booking_id": str(booking.id), "authorization_id": booking.paypal_authorization_id},
            status=WebhookEventStatus.DEAD_LETTER,
            attempt_count=5,
        )

        with patch(CAPTURE_PATH, side_effect=ProviderUnavailableError("down", provider="paypal")):
            attempt = CaptureService.capture_booking(booking.id)

        assert attempt.status == CaptureStatus.DEAD_LETTER
        assert attempt.retry_record_id == str(record.id)
        assert WebhookEvent.objects.get(pk=record.pk).status == WebhookEventStatus.DEAD_LETTER
        failed = BookingEvent.objects.get(booking=booking, event_type=BookingEventType.CAPTURE_FAILED)
        assert failed.details["retry_status"] == WebhookEventStatus.DEAD_LETTER

    def test_unrecorded_completion_is_queued_for_retry(self, db):
        booking = AuthorizedBookingFactory()
        real_apply = BookingStateMachine.apply

        def apply(request):
            if request.event_type == sm.PAYMENT_CAPTURE_COMPLETED:
                raise OperationalError("database is locked")
            return real_apply(request)

        with patch(CAPTURE_PATH, return_value=completed()), patch(
            "bookings.services.capture_service.BookingStateMachine.apply", side_effect=apply
        ):
            attempt = CaptureService.capture_booking(booking.id)

        record = WebhookEvent.objects.get()
        assert attempt.status == CaptureStatus.QUEUED_FOR_RETRY
        assert attempt.error_code == "OperationalError"
        assert record.webhook_type == WebhookProvider.SYSTEM_CAPTURE
        assert record.last_error == "database is locked"
        assert reload(booking).payment_status == PaymentStatus.AUTHORIZED
        assert reload(booking).capture_lease_owner is None

        assert RetryManager.claim(record, "w1")
        with patch(CAPTURE_PATH, return_value=completed()) as mock_capture:
            outcome = RetryManager.process_retry(record)

        assert outcome.success is True
        assert reload(booking).payment_status == PaymentStatus.CAPTURED
        mock_capture.assert_called_once_with(
            booking.paypal_authorization_id,
            request_id=f"capture-{booking.paypal_authorization_id}",
        )


class TestLeases:
    def test_lease_held_elsewhere_skips(self, db):
        booking = AuthorizedBookingFactory(
            capture_lease_owner="other",
            capture_lease_expires_at=timezone.now() + timedelta(minutes=5),
        )

        with patch(CAPTURE_PATH) as mock_capture:
            attempt = CaptureService.capture_booking(booking.id)

        assert attempt.status == CaptureStatus.LEASE_UNAVAILABLE
        mock_capture.assert_not_called()
        assert reload(booking).capture_lease_owner == "other"

    def test_expired_lease_can_be_taken_over(self, db):
        booking = AuthorizedBookingFactory(
            capture_lease_owner="crashed",
            capture_lease_expires_at=timezone.now() - timedelta(seconds=1),
        )

        with patch(CAPTURE_PATH, return_value=completed()):
            attempt = CaptureService.capture_booking(booking.id)

        assert attempt.status == CaptureStatus.CAPTURED

    def test_only_one_claim_wins(self, db):
        booking = AuthorizedBookingFactory()

        assert CaptureService.claim_lease(booking.id, "a") is True
        assert CaptureService.claim_lease(booking.id, "b") is False

        CaptureService.release_lease(booking.id, "b")
        assert reload(booking).capture_lease_owner == "a"

        CaptureService.release_lease(booking.id, "a")
        assert reload(booking).capture_lease_owner is None

    def test_release_expired_leases(self, db):
        AuthorizedBookingFactory(
            capture_lease_owner="crashed",
            capture_lease_expires_at=timezone.now() - timedelta(seconds=1),
        )
        AuthorizedBookingFactory(
            capture_lease_owner="busy",
            capture_lease_expires_at=timezone.now() + timedelta(minutes=5),
        )

        assert CaptureService.release_expired_leases() == 1


class TestNotCapturable:
    def test_pending_payment(self, db):
        booking = BookingFactory()

        with patch(CAPTURE_PATH) as mock_capture:
            attempt = CaptureService.capture_booking(booking.id)

        assert attempt.status == CaptureStatus.NOT_CAPTURABLE
        mock_capture.assert_not_called()

    def test_already_captured_booking(self, db):
        booking = AuthorizedBookingFactory()
        with patch(CAPTURE_PATH, return_value=completed()):
            CaptureService.capture_booking(booking.id)

        with patch(CAPTURE_PATH) as mock_capture:
            attempt = CaptureService.capture_booking(booking.id)

        assert attempt.status == CaptureStatus.NOT_CAPTURABLE
        mock_capture.assert_not_called()

    def test_unknown_booking(self, db):
        attempt = CaptureService.capture_booking(uuid.uuid4())

        assert attempt.status == CaptureStatus.NOT_FOUND

    def test_to_dict_drops_empty_fields(self, db):
        attempt = CaptureService.capture_booking(uuid.uuid4())

        assert set(attempt.to_dict()) == {"booking_id", "status"}
