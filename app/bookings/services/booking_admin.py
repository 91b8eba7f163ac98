"""
Admin operations on bookings.

Every operation goes through the state machine with actor_type=admin,
so it is audited like any webhook-driven change.

Usage:
    result = BookingAdminService.override_status(booking_id, request.user, "cancelled", reason="fraud")
    if not result:
        return Response(result.to_response(), status=409)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import transaction

from core.services import BaseService, ServiceResult

from bookings.adapters import DocuSealAdapter
from bookings.exceptions import BookingNotFoundError, ProviderError
from bookings.models import Booking
from bookings.services import state_machine as sm
from bookings.services.state_machine import BookingStateMachine, TransitionOutcome, TransitionRequest
from bookings.state_machines import ActorType, PaymentStatus

if TYPE_CHECKING:
    from typing import Any
    from uuid import UUID


class BookingAdminService(BaseService):
    """Approve, capture, override and reconcile bookings on behalf of an admin."""

    @classmethod
    def _apply(
        cls,
        booking_id: UUID,
        actor,
        event_type: str,
        data: dict[str, Any],
    ) -> ServiceResult[TransitionOutcome]:
        try:
            outcome = BookingStateMachine.apply(
                TransitionRequest(
                    booking_id=booking_id,
                    event_type=event_type,
                    actor_type=ActorType.ADMIN,
                    actor_id=str(actor.pk),
                    data=data,
                )
            )
        except BookingNotFoundError as e:
            return ServiceResult.from_exception(e)

        if not outcome.applied:
            return ServiceResult.failure(outcome.reason, error_code="TRANSITION_NOT_ALLOWED")
        return ServiceResult.success(outcome)

    @classmethod
    def approve_capture(cls, booking_id: UUID, actor) -> ServiceResult[TransitionOutcome]:
        """Satisfy the admin_approval gate for one booking."""
        return cls._apply(booking_id, actor, sm.ADMIN_CAPTURE_APPROVED, {"approved_by_id": actor.pk})

    @classmethod
    def override_status(
        cls,
        booking_id: UUID,
        actor,
        status: str,
        reason: str = "",
    ) -> ServiceResult[TransitionOutcome]:
        """Force overall_status."""
        return cls._apply(booking_id, actor, sm.ADMIN_OVERRIDE, {"status": status, "reason": reason})

    @classmethod
    def request_capture(cls, booking_id: UUID, actor) -> ServiceResult[dict[str, Any]]:
        """Queue an immediate capture, bypassing capture rules."""
        from bookings.tasks import capture_booking_payment

        booking = Booking.objects.filter(pk=booking_id).first()
        if booking is None:
            return ServiceResult.failure("Booking not found", error_code="BOOKING_NOT_FOUND")
        if booking.payment_status != PaymentStatus.AUTHORIZED or not booking.paypal_authorization_id:
            return ServiceResult.failure(
                f"Booking is not capturable (payment_status={booking.payment_status})",
                error_code="NOT_CAPTURABLE",
            )

        transaction.on_commit(
            lambda: capture_booking_payment.delay(str(booking.id), f"admin:{actor.pk}")
        )
        cls.get_logger().info(
            "Admin capture queued",
            extra={"booking_id": str(booking.id), "admin_id": str(actor.pk)},
        )
        return ServiceResult.success({"booking_id": str(booking.id), "queued": True})

    @classmethod
    def sync_contract(cls, booking_id: UUID, actor) -> ServiceResult[dict[str, Any]]:
        """
        Reconcile a contract whose completion webhook never arrived.

        Looks up the DocuSeal submission and, if it is completed, applies
        contract.submission.completed as the admin.
        """
        booking = Booking.objects.filter(pk=booking_id).first()
        if booking is None:
            return ServiceResult.failure("Booking not found", error_code="BOOKING_NOT_FOUND")
        if not booking.contract_submission_id:
            return ServiceResult.failure(
                "Booking has no contract submission",
                error_code="NO_CONTRACT_SUBMISSION",
            )

        try:
            submission = DocuSealAdapter.get_submission(booking.contract_submission_id)
        except ProviderError as e:
            return ServiceResult.from_exception(e)

        if not submission.is_completed:
            return ServiceResult.success(
                {"submission_status": submission.status, "applied": False}
            )

        result = cls._apply(
            booking.id,
            actor,
            sm.CONTRACT_SUBMISSION_COMPLETED,
            {
                "submission_id": submission.id,
                "completed_at": submission.completed_at,
                "document_url": submission.document_url,
                "email": submission.email,
            },
        )
        if not result:
            return ServiceResult.failure(result.error, error_code=result.error_code)
        return ServiceResult.success(
            {
                "submission_status": submission.status,
                "applied": True,
                "event_id": str(result.data.event.id),
            }
        )
