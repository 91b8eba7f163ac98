"""
Tests for BookingStateMachine.

Tests cover:
- Payment, contract, dispute and admin transitions
- Ignored events leave the booking unchanged and write one audit row
- Unhandled event types
- Capture queued after commit when a contract is signed
- Confirmation to upcoming only when signed and paid
"""

import uuid
from decimal import Decimal
from unittest.mock import patch

import pytest

from bookings.exceptions import BookingNotFoundError
from bookings.models import Booking, BookingEvent, Dispute
from bookings.services import BookingStateMachine, TransitionRequest
from bookings.services import state_machine as sm
from bookings.state_machines import (
    ActorType,
    BookingEventType,
    CaptureRuleType,
    ContractStatus,
    DisputeStatus,
    OverallStatus,
    PaymentStatus,
)
from bookings.tests.factories import (
    AuthorizedBookingFactory,
    BookingFactory,
    CaptureRuleFactory,
)


def apply(booking, event_type, data=None, actor_type=ActorType.WEBHOOK_PAYPAL, actor_id="WH-1"):
    return BookingStateMachine.apply(
        TransitionRequest(
            booking_id=booking.id,
            event_type=event_type,
            actor_type=actor_type,
            actor_id=actor_id,
            data=data or {},
        )
    )


def reload(booking):
    return Booking.objects.get(pk=booking.pk)


# =============================================================================
# Payment Events
# =============================================================================


class TestPaymentEvents:
    def test_authorization_created(self, db):
        booking = BookingFactory()

        outcome = apply(
            booking,
            sm.PAYMENT_AUTHORIZATION_CREATED,
            {
                "id": "AUTH-77",
                "amount": {"value": "120.00", "currency_code": "USD"},
                "supplementary_data": {"related_ids": {"order_id": "ORDER-77"}},
            },
        )

        booking = reload(booking)
        assert outcome.applied is True
        assert booking.payment_status == PaymentStatus.AUTHORIZED
        assert booking.paypal_authorization_id == "AUTH-77"
        assert booking.paypal_order_id == "ORDER-77"
        assert outcome.event.event_type == BookingEventType.PAYMENT_AUTHORIZED
        assert outcome.event.details["to"]["payment_status"] == PaymentStatus.AUTHORIZED

    def test_capture_completed_full(self, db):
        booking = AuthorizedBookingFactory()

        outcome = apply(
            booking,
            sm.PAYMENT_CAPTURE_COMPLETED,
            {"id": "CAP-1", "amount": {"value": "120.00", "currency_code": "USD"}},
        )

        booking = reload(booking)
        assert outcome.applied is True
        assert booking.payment_status == PaymentStatus.CAPTURED
        assert booking.paypal_capture_id == "CAP-1"
        assert booking.captured_amount == Decimal("120.00")

    def test_capture_completed_partial(self, db):
        booking = AuthorizedBookingFactory()

        outcome = apply(
            booking,
            sm.PAYMENT_CAPTURE_COMPLETED,
            {"id": "CAP-1", "amount": {"value": "40.00", "currency_code": "USD"}, "final_capture": False},
        )

        assert outcome.event.details["partial"] is True
        assert reload(booking).payment_status == PaymentStatus.PARTIALLY_CAPTURED

    def test_capture_completed_confirms_signed_booking(self, db):
        booking = AuthorizedBookingFactory(contract_status=ContractStatus.SIGNED)

        apply(
            booking,
            sm.PAYMENT_CAPTURE_COMPLETED,
            {"id": "CAP-1", "amount": {"value": "120.00", "currency_code": "USD"}},
        )

        assert reload(booking).overall_status == OverallStatus.UPCOMING

    def test_capture_completed_on_pending_payment_is_ignored(self, db):
        booking = BookingFactory()

        outcome = apply(booking, sm.PAYMENT_CAPTURE_COMPLETED, {"id": "CAP-1"})

        assert outcome.applied is False
        assert outcome.event.event_type == BookingEventType.TRANSITION_IGNORED
        assert reload(booking).payment_status == PaymentStatus.PENDING

    def test_capture_completed_twice_is_ignored(self, db):
        booking = AuthorizedBookingFactory()
        data = {"id": "CAP-1", "amount": {"value": "120.00", "currency_code": "USD"}}

        apply(booking, sm.PAYMENT_CAPTURE_COMPLETED, data, actor_id="WH-1")
        second = apply(booking, sm.PAYMENT_CAPTURE_COMPLETED, data, actor_id="WH-2")

        assert second.applied is False
        assert reload(booking).captured_amount == Decimal("120.00")

    def test_capture_denied(self, db):
        booking = AuthorizedBookingFactory()

        outcome = apply(
            booking,
            sm.PAYMENT_CAPTURE_DENIED,
            {"id": "CAP-1", "status_details": {"reason": "INSTRUMENT_DECLINED"}},
        )

        assert reload(booking).payment_status == PaymentStatus.FAILED
        assert outcome.event.details["reason"] == "INSTRUMENT_DECLINED"

    def test_capture_pending_is_audit_only(self, db):
        booking = AuthorizedBookingFactory()

        outcome = apply(booking, sm.PAYMENT_CAPTURE_PENDING, {"status_details": {"reason": "ECHECK"}})

        assert outcome.applied is True
        assert outcome.changed_state is False
        assert outcome.event.event_type == BookingEventType.CAPTURE_PENDING

    def test_voided(self, db):
        booking = AuthorizedBookingFactory()

        apply(booking, sm.PAYMENT_AUTHORIZATION_VOIDED, {"id": booking.paypal_authorization_id})

        booking = reload(booking)
        assert booking.payment_status == PaymentStatus.VOIDED
        assert booking.voided_at is not None

    def test_partial_then_full_refund(self, db):
        booking = AuthorizedBookingFactory()
        apply(booking, sm.PAYMENT_CAPTURE_COMPLETED, {"id": "CAP-1", "amount": {"value": "120.00"}})

        apply(booking, sm.PAYMENT_CAPTURE_REFUNDED, {"id": "R-1", "amount": {"value": "20.00"}}, actor_id="WH-2")
        assert reload(booking).payment_status == PaymentStatus.PARTIALLY_REFUNDED

        apply(booking, sm.PAYMENT_CAPTURE_REFUNDED, {"id": "R-2", "amount": {"value": "100.00"}}, actor_id="WH-3")
        booking = reload(booking)
        assert booking.payment_status == PaymentStatus.REFUNDED
        assert booking.refunded_amount == Decimal("120.00")

    def test_capture_failed_is_audit_only(self, db):
        booking = AuthorizedBookingFactory()

        outcome = apply(
            booking,
            sm.CAPTURE_FAILED,
            {"error": "paypal request timed out", "error_code": "PROVIDER_TIMEOUT"},
            actor_type=ActorType.SYSTEM,
        )

        assert outcome.applied is True
        assert outcome.event.event_type == BookingEventType.CAPTURE_FAILED
        assert reload(booking).payment_status == PaymentStatus.AUTHORIZED


# =============================================================================
# Contract Events
# =============================================================================


class TestContractEvents:
    def test_viewed_marks_sent(self, db):
        booking = BookingFactory()

        apply(booking, sm.CONTRACT_SUBMISSION_VIEWED, {"email": "a@example.com"}, ActorType.WEBHOOK_DOCUSEAL)

        assert reload(booking).contract_status == ContractStatus.SENT

    def test_completed_queues_capture_after_commit(self, db, django_capture_on_commit_callbacks):
        booking = AuthorizedBookingFactory()

        with patch("bookings.tasks.capture_booking_payment.delay") as mock_delay:
            with django_capture_on_commit_callbacks(execute=True):
                outcome = apply(
                    booking,
                    sm.CONTRACT_SUBMISSION_COMPLETED,
                    {
                        "submission_id": "900",
                        "completed_at": "2024-01-01T12:00:00Z",
                        "document_url": "https://docuseal.example/signed.pdf",
                        "email": "a@example.com",
                    },
                    ActorType.WEBHOOK_DOCUSEAL,
                )

        booking = reload(booking)
        assert booking.contract_status == ContractStatus.SIGNED
        assert booking.contract_submission_id == "900"
        assert booking.signed_contract_url == "https://docuseal.example/signed.pdf"
        assert outcome.event.details["capture_queued"] is True
        mock_delay.assert_called_once_with(str(booking.id), "contract_signed")

    def test_completed_respects_admin_approval_gate(self, db, django_capture_on_commit_callbacks):
        CaptureRuleFactory(rule_type=CaptureRuleType.ADMIN_APPROVAL)
        booking = AuthorizedBookingFactory()

        with patch("bookings.tasks.capture_booking_payment.delay") as mock_delay:
            with django_capture_on_commit_callbacks(execute=True):
                outcome = apply(booking, sm.CONTRACT_SUBMISSION_COMPLETED, {}, ActorType.WEBHOOK_DOCUSEAL)

        assert outcome.event.details["capture_awaiting_approval"] is True
        mock_delay.assert_not_called()

    def test_completed_on_captured_booking_confirms(self, db):
        booking = AuthorizedBookingFactory()
        apply(booking, sm.PAYMENT_CAPTURE_COMPLETED, {"id": "CAP-1", "amount": {"value": "120.00"}})

        outcome = apply(booking, sm.CONTRACT_SUBMISSION_COMPLETED, {}, ActorType.WEBHOOK_DOCUSEAL, "D-1")

        assert outcome.event.details["confirmed"] is True
        assert reload(booking).overall_status == OverallStatus.UPCOMING

    def test_signed_contract_without_payment_stays_pending_payment(self, db):
        booking = BookingFactory()

        apply(booking, sm.CONTRACT_SUBMISSION_COMPLETED, {}, ActorType.WEBHOOK_DOCUSEAL)

        booking = reload(booking)
        assert booking.contract_status == ContractStatus.SIGNED
        assert booking.overall_status == OverallStatus.PENDING_PAYMENT

    def test_declined_keeps_status(self, db):
        booking = BookingFactory()

        outcome = apply(
            booking,
            sm.CONTRACT_SUBMISSION_DECLINED,
            {"decline_reason": "Wrong dates"},
            ActorType.WEBHOOK_DOCUSEAL,
        )

        assert outcome.event.event_type == BookingEventType.CONTRACT_DECLINED
        assert reload(booking).contract_status == ContractStatus.PENDING

    def test_expired_after_signing_is_ignored(self, db):
        booking = BookingFactory(contract_status=ContractStatus.SIGNED)

        outcome = apply(booking, sm.CONTRACT_SUBMISSION_EXPIRED, {}, ActorType.WEBHOOK_DOCUSEAL)

        assert outcome.applied is False
        assert reload(booking).contract_status == ContractStatus.SIGNED


# =============================================================================
# Dispute Events
# =============================================================================


class TestDisputeEvents:
    def test_dispute_lifecycle(self, db):
        booking = AuthorizedBookingFactory()
        created = {
            "dispute_id": "PP-D-1",
            "reason": "MERCHANDISE_OR_SERVICE_NOT_RECEIVED",
            "status": "OPEN",
            "dispute_amount": {"value": "120.00", "currency_code": "usd"},
        }

        apply(booking, sm.DISPUTE_CREATED, created)
        dispute = Dispute.objects.get(provider_dispute_id="PP-D-1")
        assert reload(booking).overall_status == OverallStatus.DISPUTED
        assert dispute.amount == Decimal("120.00")
        assert dispute.currency == "USD"

        apply(booking, sm.DISPUTE_UPDATED, {**created, "status": "UNDER_REVIEW"}, actor_id="WH-2")
        dispute.refresh_from_db()
        assert dispute.dispute_status == DisputeStatus.UNDER_REVIEW

        apply(
            booking,
            sm.DISPUTE_RESOLVED,
            {**created, "status": "RESOLVED", "dispute_outcome": {"outcome_code": "RESOLVED_SELLER_FAVOUR"}},
            actor_id="WH-3",
        )
        dispute.refresh_from_db()
        assert dispute.dispute_status == DisputeStatus.RESOLVED
        assert dispute.outcome == "RESOLVED_SELLER_FAVOUR"
        assert reload(booking).overall_status == OverallStatus.DISPUTED

    def test_update_for_unknown_dispute_is_ignored(self, db):
        booking = BookingFactory()

        outcome = apply(booking, sm.DISPUTE_UPDATED, {"dispute_id": "PP-D-404"})

        assert outcome.applied is False


# =============================================================================
# Admin Events
# =============================================================================


class TestAdminEvents:
    def test_override_requires_admin_actor(self, db):
        booking = BookingFactory()

        outcome = apply(booking, sm.ADMIN_OVERRIDE, {"status": OverallStatus.CANCELLED})

        assert outcome.applied is False
        assert reload(booking).overall_status == OverallStatus.PENDING_PAYMENT

    def test_override_sets_any_status(self, db):
        booking = BookingFactory()

        outcome = apply(
            booking,
            sm.ADMIN_OVERRIDE,
            {"status": OverallStatus.ACTIVE, "reason": "manual check"},
            actor_type=ActorType.ADMIN,
            actor_id="7",
        )

        assert outcome.event.event_type == BookingEventType.STATUS_OVERRIDDEN
        assert outcome.event.actor_id == "7"
        assert reload(booking).overall_status == OverallStatus.ACTIVE

    def test_override_rejects_unknown_status(self, db):
        booking = BookingFactory()

        outcome = apply(booking, sm.ADMIN_OVERRIDE, {"status": "teleported"}, actor_type=ActorType.ADMIN)

        assert outcome.applied is False

    def test_capture_approval_only_once(self, db, staff_user):
        booking = AuthorizedBookingFactory()
        data = {"approved_by_id": staff_user.pk}

        first = apply(booking, sm.ADMIN_CAPTURE_APPROVED, data, actor_type=ActorType.ADMIN)
        second = apply(booking, sm.ADMIN_CAPTURE_APPROVED, data, actor_type=ActorType.ADMIN)

        assert first.applied is True
        assert second.applied is False
        assert reload(booking).capture_approved_by_id == staff_user.pk


# =============================================================================
# Bookkeeping
# =============================================================================


class TestApplyBookkeeping:
    def test_every_apply_writes_exactly_one_event(self, db):
        booking = BookingFactory()

        apply(booking, sm.PAYMENT_CAPTURE_COMPLETED, {"id": "CAP-1"})
        apply(booking, "paypal.SOMETHING.NEW", {})
        apply(booking, sm.PAYMENT_AUTHORIZATION_CREATED, {"id": "AUTH-1"})

        assert BookingEvent.objects.filter(booking=booking).count() == 3

    def test_unhandled_event_type(self, db):
        booking = BookingFactory()

        outcome = apply(booking, "paypal.BILLING.PLAN.CREATED", {})

        assert outcome.applied is False
        assert outcome.reason == "unhandled_event_type"
        assert outcome.event.event_type == BookingEventType.WEBHOOK_UNHANDLED

    def test_missing_booking_raises(self, db):
        with pytest.raises(BookingNotFoundError):
            BookingStateMachine.apply(
                TransitionRequest(booking_id=uuid.uuid4(), event_type=sm.PAYMENT_CAPTURE_COMPLETED)
            )
