"""
Capture service: captures authorized PayPal payments for bookings.

Each capture:
1. Claims the booking's capture lease with a conditional UPDATE
2. Calls PayPal capture with PayPal-Request-Id capture-{authorization_id}
3. Feeds the result to the state machine
4. Stores a system-capture retry record on transient failure, or when
   the result cannot be recorded
5. Releases the lease

Only PayPal refusing the capture marks the payment failed. Missing or
rejected credentials leave the booking authorized and report an error.

The lease replaces a global lock: two sweeps (or a sweep and an admin)
can run at once, but only one of them captures a given booking.

Usage:
    from bookings.services.capture_service import CaptureService

    attempt = CaptureService.capture_booking(booking_id, reason="contract_signed")
    if attempt.status == CaptureStatus.CAPTURED:
        ...
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from core.services import BaseService

from bookings.adapters import ALREADY_CAPTURED_CODES, PayPalAdapter
from bookings.exceptions import (
    LeaseUnavailableError,
    ProviderConfigurationError,
    ProviderError,
    ProviderRequestError,
    ProviderUnavailableError,
)
from bookings.models import Booking
from bookings.services import state_machine as sm
from bookings.services.retry_manager import RetryManager, register_retry_handler
from bookings.services.state_machine import (
    BookingStateMachine,
    Effect,
    TransitionRequest,
    register_transition,
)
from bookings.state_machines import (
    ActorType,
    BookingEventType,
    PaymentStatus,
    WebhookEventStatus,
    WebhookProvider,
)

if TYPE_CHECKING:
    from typing import Any

    from bookings.models import WebhookEvent


class CaptureStatus:
    CAPTURED = "captured"
    PENDING = "pending"
    DENIED = "denied"
    ALREADY_CAPTURED = "already_captured"
    NOT_CAPTURABLE = "not_capturable"
    LEASE_UNAVAILABLE = "lease_unavailable"
    QUEUED_FOR_RETRY = "queued_for_retry"
    DEAD_LETTER = "dead_letter"
    ERROR = "error"
    NOT_FOUND = "not_found"


@dataclass
class CaptureAttempt:
    booking_id: str
    status: str
    capture_id: str | None = None
    error: str | None = None
    error_code: str | None = None
    retry_record_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


# Statuses treated as PayPal refusing the capture for good
DECLINED_STATUSES = frozenset({"DECLINED", "FAILED", "VOIDED"})

# Responses about our credentials, not about the authorization
CREDENTIAL_STATUS_CODES = frozenset({401, 403})

CAPTURE_ALREADY_COMPLETED = "capture.already_completed"


def is_capture_refusal(exc: ProviderRequestError) -> bool:
    """PayPal answered the capture itself with an issue code."""
    return bool(exc.provider_code) and exc.status_code not in CREDENTIAL_STATUS_CODES


@register_transition(CAPTURE_ALREADY_COMPLETED)
def handle_capture_already_completed(booking: Booking, request: TransitionRequest) -> Effect:
    """Audit only; the capture webhook settles payment_status."""
    return Effect(
        BookingEventType.CAPTURE_PENDING,
        "PayPal reports the authorization already captured; awaiting capture webhook",
        dict(request.data),
    )


class CaptureService(BaseService):
    """Leased, idempotent capture of authorized payments."""

    @classmethod
    def lease_seconds(cls) -> int:
        return int(getattr(settings, "CAPTURE_LEASE_SECONDS", 300))

    # =========================================================================
    # Lease
    # =========================================================================

    @classmethod
    def claim_lease(cls, booking_id, owner: str) -> bool:
        now = timezone.now()
        updated = (
            Booking.objects.filter(pk=booking_id)
            .filter(Q(capture_lease_expires_at__isnull=True) | Q(capture_lease_expires_at__lt=now))
            .update(
                capture_lease_owner=owner,
                capture_lease_expires_at=now + timedelta(seconds=cls.lease_seconds()),
                updated_at=now,
            )
        )
        return bool(updated)

    @classmethod
    def release_lease(cls, booking_id, owner: str) -> None:
        Booking.objects.filter(pk=booking_id, capture_lease_owner=owner).update(
            capture_lease_owner=None,
            capture_lease_expires_at=None,
        )

    @classmethod
    def release_expired_leases(cls) -> int:
        released = Booking.objects.filter(capture_lease_expires_at__lt=timezone.now()).update(
            capture_lease_owner=None,
            capture_lease_expires_at=None,
        )
        if released:
            cls.get_logger().warning(
                f"Released {released} expired capture leases",
                extra={"released_count": released},
            )
        return released

    # =========================================================================
    # Capture
    # =========================================================================

    @classmethod
    def capture_booking(
        cls,
        booking_id,
        reason: str = "",
        actor_type: str = ActorType.SYSTEM,
        actor_id: str = "",
        owner: str | None = None,
        raise_transient: bool = False,
    ) -> CaptureAttempt:
        """
        Capture a booking's authorized payment.

        Args:
            booking_id: Booking to capture
            reason: Why the capture happens (rule name, "admin", ...)
            actor_type/actor_id: Recorded on the audit events
            owner: Lease owner id (default: generated)
            raise_transient: Re-raise failures instead of storing a retry
                record or reporting an error (used when replaying that record)

        Raises:
            ProviderError, or the error that stopped the result being
            recorded: Only when raise_transient is True
        """
        owner = owner or f"capture-{uuid.uuid4().hex[:12]}"
        log_context = {"booking_id": str(booking_id), "reason": reason, "lease_owner": owner}

        if not cls.claim_lease(booking_id, owner):
            if not Booking.objects.filter(pk=booking_id).exists():
                return CaptureAttempt(str(booking_id), CaptureStatus.NOT_FOUND)
            cls.get_logger().info("Capture lease held elsewhere, skipping", extra=log_context)
            return CaptureAttempt(str(booking_id), CaptureStatus.LEASE_UNAVAILABLE)

        try:
            booking = Booking.objects.get(pk=booking_id)
            if (
                booking.payment_status != PaymentStatus.AUTHORIZED
                or not booking.paypal_authorization_id
            ):
                cls.get_logger().info(
                    f"Booking not capturable (payment_status={booking.payment_status})",
                    extra=log_context,
                )
                return CaptureAttempt(str(booking_id), CaptureStatus.NOT_CAPTURABLE)

            return cls._capture(booking, reason, actor_type, actor_id or owner, raise_transient)
        finally:
            cls.release_lease(booking_id, owner)

    @classmethod
    def _capture(
        cls,
        booking: Booking,
        reason: str,
        actor_type: str,
        actor_id: str,
        raise_transient: bool,
    ) -> CaptureAttempt:
        authorization_id = booking.paypal_authorization_id
        log_context = {
            "booking_id": str(booking.id),
            "authorization_id": authorization_id,
            "reason": reason,
        }

        def apply(event_type: str, data: dict[str, Any]) -> None:
            BookingStateMachine.apply(
                TransitionRequest(
                    booking_id=booking.id,
                    event_type=event_type,
                    actor_type=actor_type,
                    actor_id=actor_id,
                    data=data,
                )
            )

        try:
            result = PayPalAdapter.capture_authorization(
                authorization_id,
                request_id=f"capture-{authorization_id}",
            )
        except ProviderConfigurationError as e:
            if raise_transient:
                raise
            return cls._capture_error(booking, e, log_context)
        except ProviderRequestError as e:
            if e.provider_code in ALREADY_CAPTURED_CODES:
                apply(
                    CAPTURE_ALREADY_COMPLETED,
                    {"authorization_id": authorization_id, "provider_code": e.provider_code},
                )
                return CaptureAttempt(str(booking.id), CaptureStatus.ALREADY_CAPTURED)

            if not is_capture_refusal(e):
                if raise_transient:
                    raise
                return cls._capture_error(booking, e, log_context)

            cls.get_logger().error(
                f"Capture rejected by PayPal: {e.provider_code}",
                extra={**log_context, "provider_code": e.provider_code},
            )
            apply(
                sm.PAYMENT_CAPTURE_DENIED,
                {
                    "authorization_id": authorization_id,
                    "status_details": {"reason": e.provider_code},
                },
            )
            return CaptureAttempt(
                str(booking.id),
                CaptureStatus.DENIED,
                error=e.message,
                error_code=e.provider_code,
            )
        except ProviderUnavailableError as e:
            if raise_transient:
                raise
            return cls._queue_for_retry(booking, reason, e, apply)

        cls.get_logger().info(
            f"PayPal capture returned {result.status}",
            extra={**log_context, "capture_id": result.id},
        )

        try:
            if result.status == "COMPLETED":
                apply(sm.PAYMENT_CAPTURE_COMPLETED, result.raw_response)
                return CaptureAttempt(str(booking.id), CaptureStatus.CAPTURED, capture_id=result.id)

            if result.status in DECLINED_STATUSES:
                apply(sm.PAYMENT_CAPTURE_DENIED, result.raw_response)
                return CaptureAttempt(str(booking.id), CaptureStatus.DENIED, capture_id=result.id)

            apply(sm.PAYMENT_CAPTURE_PENDING, result.raw_response)
            return CaptureAttempt(str(booking.id), CaptureStatus.PENDING, capture_id=result.id)
        except Exception as e:
            if raise_transient:
                raise
            # Replaying reuses the PayPal-Request-Id, so PayPal returns this same capture
            cls.get_logger().exception(
                "PayPal capture result could not be recorded",
                extra={**log_context, "capture_id": result.id, "capture_status": result.status},
            )
            return cls._queue_for_retry(booking, reason, e, apply)

    @classmethod
    def _capture_error(cls, booking: Booking, exc: ProviderError, log_context: dict[str, Any]) -> CaptureAttempt:
        """Report a failure on our side of the integration; the booking is left as it is."""
        cls.get_logger().error(
            f"PayPal capture not attempted: {exc.error_code}",
            extra={**log_context, "error_code": exc.error_code, "status_code": exc.status_code},
        )
        return CaptureAttempt(
            str(booking.id),
            CaptureStatus.ERROR,
            error=exc.message,
            error_code=exc.error_code,
        )

    @classmethod
    def _queue_for_retry(cls, booking: Booking, reason: str, exc: Exception, apply) -> CaptureAttempt:
        authorization_id = booking.paypal_authorization_id
        message = getattr(exc, "message", "") or str(exc)
        error_code = getattr(exc, "error_code", "") or type(exc).__name__
        record = RetryManager.store_failed_webhook(
            webhook_type=WebhookProvider.SYSTEM_CAPTURE,
            webhook_id=f"capture:{authorization_id}",
            event_type="capture",
            payload={
                "booking_id": str(booking.id),
                "authorization_id": authorization_id,
                "reason": reason,
            },
            booking_id=booking.id,
            error=str(exc),
            error_details=getattr(exc, "details", None) or {},
        )

        status = CaptureStatus.QUEUED_FOR_RETRY
        if record.status == WebhookEventStatus.DEAD_LETTER:
            status = CaptureStatus.DEAD_LETTER
            cls.get_logger().error(
                "Capture failed and its retry record is dead-lettered; resubmit it to retry",
                extra={"booking_id": str(booking.id), "retry_record_id": str(record.id)},
            )

        apply(
            sm.CAPTURE_FAILED,
            {
                "error": message,
                "error_code": error_code,
                "authorization_id": authorization_id,
                "retry_record_id": str(record.id),
                "retry_status": record.status,
            },
        )
        return CaptureAttempt(
            str(booking.id),
            status,
            error=message,
            error_code=error_code,
            retry_record_id=str(record.id),
        )


@register_retry_handler(WebhookProvider.SYSTEM_CAPTURE)
def retry_capture(record: WebhookEvent) -> dict[str, Any]:
    """Replay a capture that previously hit a transient failure."""
    attempt = CaptureService.capture_booking(
        record.payload["booking_id"],
        reason=record.payload.get("reason") or "retry",
        actor_id=f"retry:{record.id}",
        raise_transient=True,
    )
    if attempt.status == CaptureStatus.LEASE_UNAVAILABLE:
        raise LeaseUnavailableError(
            "Capture lease held by another worker",
            details={"booking_id": attempt.booking_id},
        )
    return attempt.to_dict()
