"""
Tests for the capture and retry sweeps and their Celery tasks.

PayPal is mocked at PayPalAdapter.capture_authorization. Sweeps run
inline (SWEEP_MAX_WORKERS=1) so they share the test transaction.
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

from django.utils import timezone

from bookings.adapters import CaptureResult
from bookings.exceptions import ProviderConfigurationError, ProviderUnavailableError
from bookings.models import Booking, WebhookEvent
from bookings.services.retry_manager import RETRY_HANDLERS
from bookings.state_machines import (
    CaptureRuleType,
    ContractStatus,
    PaymentStatus,
    WebhookEventStatus,
    WebhookProvider,
)
from bookings.tasks import capture_booking_payment
from bookings.tests.factories import (
    AuthorizedBookingFactory,
    BookingFactory,
    CaptureRuleFactory,
    WebhookEventFactory,
)
from bookings.workers import (
    process_webhook_retries,
    release_expired_leases,
    run_capture_sweep,
    run_retry_sweep,
)
from bookings.workers.pool import run_bounded

CAPTURE_PATH = "bookings.services.capture_service.PayPalAdapter.capture_authorization"


def completed(capture_id="CAP-1"):
    return CaptureResult(
        id=capture_id,
        status="COMPLETED",
        amount=Decimal("120.00"),
        currency="USD",
        raw_response={
            "id": capture_id,
            "status": "COMPLETED",
            "amount": {"value": "120.00", "currency_code": "USD"},
            "final_capture": True,
        },
    )


# =============================================================================
# Capture Sweep
# =============================================================================


class TestCaptureSweep:
    def test_captures_eligible_and_skips_the_rest(self, db):
        CaptureRuleFactory(rule_type=CaptureRuleType.CONTRACT_SIGNED)
        signed = AuthorizedBookingFactory(contract_status=ContractStatus.SIGNED)
        unsigned = AuthorizedBookingFactory()
        BookingFactory()

        with patch(CAPTURE_PATH, return_value=completed()) as mock_capture:
            summary = run_capture_sweep()

        assert summary["processed_count"] == 2
        assert summary["captured"] == 1
        assert summary["skipped"] == 1
        assert summary["failed"] == 0
        mock_capture.assert_called_once()
        assert Booking.objects.get(pk=signed.pk).payment_status == PaymentStatus.CAPTURED
        assert Booking.objects.get(pk=unsigned.pk).payment_status == PaymentStatus.AUTHORIZED

    def test_hours_rule_uses_sweep_time(self, db):
        CaptureRuleFactory(rule_type=CaptureRuleType.HOURS_BEFORE_RENTAL, config={"hours": 24})
        booking = AuthorizedBookingFactory()

        with patch(CAPTURE_PATH, return_value=completed()):
            early = run_capture_sweep()
            later = run_capture_sweep(now=booking.start_at - timedelta(hours=1))

        assert early["captured"] == 0
        assert later["captured"] == 1

    def test_live_capture_lease_excludes_booking(self, db):
        CaptureRuleFactory(rule_type=CaptureRuleType.CONTRACT_SIGNED)
        AuthorizedBookingFactory(
            contract_status=ContractStatus.SIGNED,
            capture_lease_owner="other",
            capture_lease_expires_at=timezone.now() + timedelta(minutes=5),
        )

        with patch(CAPTURE_PATH) as mock_capture:
            summary = run_capture_sweep()

        assert summary["processed_count"] == 0
        mock_capture.assert_not_called()

    def test_transient_failure_counts_as_failed(self, db):
        CaptureRuleFactory(rule_type=CaptureRuleType.CONTRACT_SIGNED)
        AuthorizedBookingFactory(contract_status=ContractStatus.SIGNED)

        with patch(CAPTURE_PATH, side_effect=ProviderUnavailableError("down", provider="paypal")):
            summary = run_capture_sweep()

        assert summary["failed"] == 1
        assert summary["results"][0]["status"] == "queued_for_retry"
        assert WebhookEvent.objects.filter(webhook_type=WebhookProvider.SYSTEM_CAPTURE).count() == 1

    def test_configuration_error_counts_as_failed(self, db):
        CaptureRuleFactory(rule_type=CaptureRuleType.CONTRACT_SIGNED)
        booking = AuthorizedBookingFactory(contract_status=ContractStatus.SIGNED)

        with patch(
            CAPTURE_PATH,
            side_effect=ProviderConfigurationError("no credentials", provider="paypal"),
        ):
            summary = run_capture_sweep()

        assert summary["failed"] == 1
        assert summary["results"][0]["status"] == "error"
        assert Booking.objects.get(pk=booking.pk).payment_status == PaymentStatus.AUTHORIZED
        assert not WebhookEvent.objects.exists()

    def test_one_bad_item_does_not_abort_batch(self, db):
        CaptureRuleFactory(rule_type=CaptureRuleType.CONTRACT_SIGNED)
        AuthorizedBookingFactory(contract_status=ContractStatus.SIGNED)
        AuthorizedBookingFactory(contract_status=ContractStatus.SIGNED)

        with patch(
            "bookings.workers.capture_evaluator.CaptureService.capture_booking",
            side_effect=RuntimeError("boom"),
        ) as mock_capture:
            summary = run_capture_sweep()

        assert mock_capture.call_count == 2
        assert summary["failed"] == 2
        assert [r["status"] for r in summary["results"]] == ["error", "error"]

    def test_limit(self, db):
        CaptureRuleFactory(rule_type=CaptureRuleType.CONTRACT_SIGNED)
        AuthorizedBookingFactory.create_batch(3)

        summary = run_capture_sweep(limit=2)

        assert summary["processed_count"] == 2


# =============================================================================
# Retry Sweep
# =============================================================================


class TestRetrySweep:
    def test_summary_counts(self, db, settings):
        settings.WEBHOOK_RETRY_MAX_ATTEMPTS = 5
        good = WebhookEventFactory()
        WebhookEventFactory(webhook_id="WH-BAD")
        WebhookEventFactory(webhook_id="WH-LAST", attempt_count=4)

        def handler(record):
            if record.id != good.id:
                raise RuntimeError("still broken")
            return {"outcome": "processed"}

        with patch.dict(RETRY_HANDLERS, {WebhookProvider.PAYPAL: handler}):
            summary = run_retry_sweep()

        assert summary["processed"] == 3
        assert summary["succeeded"] == 1
        assert summary["failed"] == 2
        assert summary["retrying"] == 1
        assert summary["dead_lettered"] == 1
        assert {e["webhook_id"] for e in summary["errors"]} == {"WH-BAD", "WH-LAST"}

    def test_lost_lease_is_not_counted_as_failure(self, db):
        record = WebhookEventFactory()

        def handler(claimed):
            WebhookEvent.objects.filter(pk=claimed.pk).update(lease_owner="other-sweep")
            return {"outcome": "processed"}

        with patch.dict(RETRY_HANDLERS, {WebhookProvider.PAYPAL: handler}):
            summary = run_retry_sweep()

        assert summary["processed"] == 1
        assert summary["lease_lost"] == 1
        assert summary["succeeded"] == 0
        assert summary["failed"] == 0
        assert summary["errors"] == []
        stored = WebhookEvent.objects.get(pk=record.pk)
        assert stored.status == WebhookEventStatus.PROCESSING
        assert stored.lease_owner == "other-sweep"

    def test_rows_not_due_are_left_alone(self, db):
        record = WebhookEventFactory(next_retry_at=timezone.now() + timedelta(hours=1))

        summary = run_retry_sweep()

        assert summary["processed"] == 0
        assert WebhookEvent.objects.get(pk=record.pk).status == WebhookEventStatus.PENDING

    def test_system_capture_retry_end_to_end(self, db):
        booking = AuthorizedBookingFactory()
        with patch(CAPTURE_PATH, side_effect=ProviderUnavailableError("down", provider="paypal")):
            capture_booking_payment(str(booking.id), "contract_signed")

        with patch(CAPTURE_PATH, return_value=completed()):
            summary = run_retry_sweep()

        assert summary["succeeded"] == 1
        assert Booking.objects.get(pk=booking.pk).payment_status == PaymentStatus.CAPTURED


# =============================================================================
# Tasks
# =============================================================================


class TestTasks:
    def test_capture_task_rejects_bad_uuid(self):
        result = capture_booking_payment("not-a-uuid")

        assert result["status"] == "not_found"

    def test_capture_task_returns_attempt(self, db):
        booking = AuthorizedBookingFactory()

        with patch(CAPTURE_PATH, return_value=completed()):
            result = capture_booking_payment(str(booking.id), "admin:1")

        assert result["status"] == "captured"
        assert result["capture_id"] == "CAP-1"

    def test_process_webhook_retries_task(self, db):
        with patch("bookings.workers.retry_worker.run_retry_sweep", return_value={"processed": 0}) as mock_sweep:
            result = process_webhook_retries.apply(kwargs={"limit": 10}).get()

        assert result == {"processed": 0}
        mock_sweep.assert_called_once_with(limit=10)

    def test_release_expired_leases_task(self, db):
        WebhookEventFactory(
            status=WebhookEventStatus.PROCESSING,
            lease_owner="crashed",
            lease_expires_at=timezone.now() - timedelta(seconds=1),
        )
        AuthorizedBookingFactory(
            capture_lease_owner="crashed",
            capture_lease_expires_at=timezone.now() - timedelta(seconds=1),
        )

        result = release_expired_leases.apply().get()

        assert result == {"retry_leases_released": 1, "capture_leases_released": 1}


class TestRunBounded:
    def test_inline_with_one_worker(self, settings):
        settings.SWEEP_MAX_WORKERS = 1

        assert run_bounded(lambda n: n * 2, [1, 2, 3]) == [2, 4, 6]

    def test_thread_pool_returns_every_result(self, settings):
        settings.SWEEP_MAX_WORKERS = 3

        assert sorted(run_bounded(lambda n: n * 2, [1, 2, 3, 4])) == [2, 4, 6, 8]

    def test_empty(self):
        assert run_bounded(lambda n: n, []) == []

    def test_pool_threads_close_their_connection(self, settings):
        settings.SWEEP_MAX_WORKERS = 3

        with patch("bookings.workers.pool.connection", MagicMock()) as mock_connection:
            run_bounded(lambda n: n, [1, 2, 3])

        assert mock_connection.close.call_count == 3

    def test_inline_run_keeps_the_connection(self, settings):
        settings.SWEEP_MAX_WORKERS = 1

        with patch("bookings.workers.pool.connection", MagicMock()) as mock_connection:
            run_bounded(lambda n: n, [1, 2, 3])

        mock_connection.close.assert_not_called()
