"""
Tests for booking models.

Covers FSM transitions on Booking, optimistic version bumps, the
append-only audit log, capture rule configuration and retry record
status helpers.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.db import IntegrityError
from django.utils import timezone
from django_fsm import TransitionNotAllowed

from bookings.models import (
    INVOICE_PREFIX,
    Booking,
    BookingEvent,
    CaptureRule,
    ImmutableRecordError,
    ProcessedWebhook,
)
from bookings.services import AuditLog
from bookings.state_machines import (
    ActorType,
    BookingEventType,
    CaptureRuleType,
    ContractStatus,
    OverallStatus,
    PaymentStatus,
    WebhookEventStatus,
)
from bookings.tests.factories import (
    AuthorizedBookingFactory,
    BookingFactory,
    CaptureRuleFactory,
    WebhookEventFactory,
)


# =============================================================================
# Booking Payment Transitions
# =============================================================================


class TestBookingPaymentTransitions:
    def test_authorize_records_id_and_amount(self, db):
        booking = BookingFactory()

        booking.authorize(authorization_id="AUTH-9", amount=Decimal("120.00"))
        booking.save()

        booking = Booking.objects.get(pk=booking.pk)
        assert booking.payment_status == PaymentStatus.AUTHORIZED
        assert booking.paypal_authorization_id == "AUTH-9"
        assert booking.authorized_amount == Decimal("120.00")
        assert booking.authorized_at is not None

    def test_capture_full_from_authorized(self, db):
        booking = AuthorizedBookingFactory()

        booking.capture_full(capture_id="CAP-1", amount=Decimal("120.00"))
        booking.save()

        booking = Booking.objects.get(pk=booking.pk)
        assert booking.payment_status == PaymentStatus.CAPTURED
        assert booking.paypal_capture_id == "CAP-1"
        assert booking.captured_amount == Decimal("120.00")

    def test_partial_captures_accumulate(self, db):
        booking = AuthorizedBookingFactory()

        booking.capture_partial(capture_id="CAP-1", amount=Decimal("50.00"))
        booking.capture_full(capture_id="CAP-2", amount=Decimal("70.00"))
        booking.save()

        assert booking.payment_status == PaymentStatus.CAPTURED
        assert booking.captured_amount == Decimal("120.00")

    def test_cannot_capture_pending_payment(self, db):
        booking = BookingFactory()

        with pytest.raises(TransitionNotAllowed):
            booking.capture_full(capture_id="CAP-1", amount=None)

    def test_cannot_capture_voided_payment(self, db):
        booking = AuthorizedBookingFactory()
        booking.void()

        with pytest.raises(TransitionNotAllowed):
            booking.capture_full(capture_id="CAP-1", amount=None)

    def test_failed_payment_can_be_reauthorized(self, db):
        booking = AuthorizedBookingFactory()
        booking.deny_capture()
        booking.authorize(authorization_id=None, amount=None)

        assert booking.payment_status == PaymentStatus.AUTHORIZED

    def test_status_cannot_be_assigned_directly(self, db):
        booking = BookingFactory()

        with pytest.raises(AttributeError):
            booking.payment_status = PaymentStatus.CAPTURED


# =============================================================================
# Booking Overall Transitions
# =============================================================================


class TestBookingOverallTransitions:
    def test_confirm_requires_signed_contract(self, db):
        booking = AuthorizedBookingFactory()

        with pytest.raises(TransitionNotAllowed):
            booking.confirm()

    def test_confirm_when_signed_and_authorized(self, db):
        booking = AuthorizedBookingFactory(contract_status=ContractStatus.SIGNED)

        booking.confirm()

        assert booking.overall_status == OverallStatus.UPCOMING

    def test_force_overall_status_ignores_conditions(self, db):
        booking = BookingFactory()

        booking.force_overall_status(OverallStatus.ACTIVE)

        assert booking.overall_status == OverallStatus.ACTIVE

    def test_dispute_from_any_status(self, db):
        booking = BookingFactory(overall_status=OverallStatus.COMPLETED)

        booking.open_dispute()

        assert booking.overall_status == OverallStatus.DISPUTED


# =============================================================================
# Booking Persistence
# =============================================================================


class TestBookingPersistence:
    def test_version_increments_on_update(self, db):
        booking = BookingFactory()
        assert booking.version == 1

        booking.customer_email = "changed@example.com"
        booking.save()

        assert booking.version == 2
        assert Booking.objects.get(pk=booking.pk).version == 2

    def test_invoice_reference(self, db):
        booking = BookingFactory()

        assert booking.invoice_reference == f"{INVOICE_PREFIX}-{booking.id}"

    def test_authorization_id_is_unique(self, db):
        AuthorizedBookingFactory(paypal_authorization_id="AUTH-DUP")

        with pytest.raises(IntegrityError):
            AuthorizedBookingFactory(paypal_authorization_id="AUTH-DUP")

    def test_has_active_capture_lease(self, db):
        booking = BookingFactory(capture_lease_expires_at=timezone.now() + timedelta(minutes=5))
        expired = BookingFactory(capture_lease_expires_at=timezone.now() - timedelta(minutes=5))

        assert booking.has_active_capture_lease is True
        assert expired.has_active_capture_lease is False


# =============================================================================
# Audit Log
# =============================================================================


class TestBookingEvent:
    def test_events_are_append_only(self, db):
        booking = BookingFactory()
        event = AuditLog.record(
            booking,
            BookingEventType.STATUS_OVERRIDDEN,
            ActorType.ADMIN,
            "Overridden",
        )

        event.summary = "edited"
        with pytest.raises(ImmutableRecordError):
            event.save()
        with pytest.raises(ImmutableRecordError):
            event.delete()

        assert BookingEvent.objects.get(pk=event.pk).summary == "Overridden"

    def test_timeline_is_oldest_first(self, db):
        booking = BookingFactory()
        first = AuditLog.record(booking, BookingEventType.PAYMENT_AUTHORIZED, ActorType.SYSTEM, "one")
        second = AuditLog.record(booking, BookingEventType.PAYMENT_CAPTURED, ActorType.SYSTEM, "two")

        assert list(AuditLog.timeline(booking.id)) == [first, second]


# =============================================================================
# Capture Rules
# =============================================================================


class TestCaptureRule:
    def test_active_manager_orders_by_priority(self, db):
        low = CaptureRuleFactory(priority=50)
        high = CaptureRuleFactory(priority=10)
        CaptureRuleFactory(priority=1, is_active=False)

        assert list(CaptureRule.active.all()) == [high, low]

    def test_hours_defaults_when_config_invalid(self, db):
        rule = CaptureRuleFactory(
            rule_type=CaptureRuleType.HOURS_BEFORE_RENTAL,
            config={"hours": "soon"},
        )

        assert rule.hours == 24

    def test_admin_approval_is_gate(self, db):
        rule = CaptureRuleFactory(rule_type=CaptureRuleType.ADMIN_APPROVAL)

        assert rule.is_gate is True


# =============================================================================
# Retry Records and Ledger
# =============================================================================


class TestWebhookEvent:
    def test_mark_attempt_failed_reschedules(self, db):
        record = WebhookEventFactory(lease_owner="w1")
        next_retry = timezone.now() + timedelta(minutes=2)

        record.mark_attempt_failed("boom", next_retry, {"exception": "RuntimeError"})

        assert record.attempt_count == 1
        assert record.status == WebhookEventStatus.PENDING
        assert record.next_retry_at == next_retry
        assert record.lease_owner is None

    def test_reset_for_resubmit_clears_acknowledgement(self, db):
        record = WebhookEventFactory(
            status=WebhookEventStatus.DEAD_LETTER,
            attempt_count=5,
            acknowledged_at=timezone.now(),
        )

        record.reset_for_resubmit()

        assert record.status == WebhookEventStatus.PENDING
        assert record.attempt_count == 0
        assert record.acknowledged_at is None
        assert record.is_terminal is False

    def test_unique_per_provider(self, db):
        WebhookEventFactory(webhook_id="WH-1")

        with pytest.raises(IntegrityError):
            WebhookEventFactory(webhook_id="WH-1")


class TestProcessedWebhook:
    def test_same_event_id_allowed_for_different_providers(self, db):
        ProcessedWebhook.objects.create(provider="paypal", event_id="E-1")
        ProcessedWebhook.objects.create(provider="docuseal", event_id="E-1")

        assert ProcessedWebhook.objects.count() == 2
