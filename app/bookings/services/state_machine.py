"""
Booking state machine service.

Applies normalised events (from webhooks, the capture sweep, or admin
actions) to a booking. Every call:

1. Locks the booking row with select_for_update()
2. Runs the transition handler registered for the event type
3. Saves the booking
4. Writes exactly one BookingEvent in the same transaction

A failed precondition is not an error: the booking is left unchanged
and a transition_ignored event is written instead. This makes late and
out-of-order deliveries harmless.

Usage:
    from bookings.services.state_machine import BookingStateMachine, TransitionRequest

    outcome = BookingStateMachine.apply(
        TransitionRequest(
            booking_id=booking.id,
            event_type="payment.capture.completed",
            actor_type=ActorType.WEBHOOK_PAYPAL,
            actor_id=paypal_event_id,
            data=resource,
        )
    )
    if not outcome.applied:
        logger.info(f"Ignored: {outcome.reason}")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Callable

from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from django_fsm import can_proceed

from core.services import BaseService

from bookings.exceptions import BookingNotFoundError, InvalidStateTransitionError
from bookings.models import Booking, CaptureRule, Dispute
from bookings.services.audit_log import AuditLog
from bookings.state_machines import (
    ActorType,
    BookingEventType,
    CaptureRuleType,
    DisputeStatus,
    OverallStatus,
    PaymentStatus,
)

if TYPE_CHECKING:
    from typing import Any
    from uuid import UUID

    from bookings.models import BookingEvent


logger = logging.getLogger(__name__)


# =============================================================================
# Normalised Event Types
# =============================================================================

PAYMENT_AUTHORIZATION_CREATED = "payment.authorization.created"
PAYMENT_AUTHORIZATION_VOIDED = "payment.authorization.voided"
PAYMENT_CAPTURE_COMPLETED = "payment.capture.completed"
PAYMENT_CAPTURE_DENIED = "payment.capture.denied"
PAYMENT_CAPTURE_PENDING = "payment.capture.pending"
PAYMENT_CAPTURE_REFUNDED = "payment.capture.refunded"
CONTRACT_SUBMISSION_VIEWED = "contract.submission.viewed"
CONTRACT_SUBMISSION_COMPLETED = "contract.submission.completed"
CONTRACT_SUBMISSION_DECLINED = "contract.submission.declined"
CONTRACT_SUBMISSION_EXPIRED = "contract.submission.expired"
DISPUTE_CREATED = "dispute.created"
DISPUTE_UPDATED = "dispute.updated"
DISPUTE_RESOLVED = "dispute.resolved"
CAPTURE_FAILED = "capture.failed"
ADMIN_OVERRIDE = "admin.override"
ADMIN_CAPTURE_APPROVED = "admin.capture_approved"


# =============================================================================
# Request / Outcome Types
# =============================================================================


@dataclass(frozen=True)
class TransitionRequest:
    """
    A normalised event to apply to one booking.

    Attributes:
        booking_id: Target booking
        event_type: Normalised event type (see constants above)
        actor_type: Who caused the event
        actor_id: Provider event id, worker id, or admin user id
        data: Event data (PayPal resource, normalised DocuSeal data, admin input)
    """

    booking_id: UUID
    event_type: str
    actor_type: str = ActorType.SYSTEM
    actor_id: str = ""
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Effect:
    """What a transition handler did, for the audit entry."""

    event_type: str
    summary: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class TransitionOutcome:
    """
    Result of BookingStateMachine.apply.

    applied is False when the event was ignored (precondition failed
    or no handler exists); event is the single audit row written.
    """

    applied: bool
    booking: Booking
    event: BookingEvent
    reason: str = ""
    previous_state: dict[str, str] = field(default_factory=dict)

    @property
    def changed_state(self) -> bool:
        return self.previous_state != _snapshot(self.booking)


# =============================================================================
# Handler Registry
# =============================================================================


TransitionHandler = Callable[[Booking, TransitionRequest], Effect]

TRANSITION_HANDLERS: dict[str, TransitionHandler] = {}


def register_transition(event_type: str) -> Callable:
    """
    Decorator to register a transition handler.

    Handlers mutate the (locked) booking in memory and return an Effect.
    They raise InvalidStateTransitionError before mutating anything when
    a precondition fails. The caller saves.
    """

    def decorator(func: TransitionHandler) -> TransitionHandler:
        TRANSITION_HANDLERS[event_type] = func
        logger.debug(f"Registered transition handler for {event_type}")
        return func

    return decorator


class BookingStateMachine(BaseService):
    """Single entry point for booking status changes."""

    @classmethod
    def apply(cls, request: TransitionRequest) -> TransitionOutcome:
        """
        Apply one event to one booking.

        Raises:
            BookingNotFoundError: If the booking does not exist
        """
        log_context = {
            "booking_id": str(request.booking_id),
            "event_type": request.event_type,
            "actor_type": request.actor_type,
        }

        with transaction.atomic():
            booking = Booking.objects.select_for_update().filter(pk=request.booking_id).first()
            if booking is None:
                raise BookingNotFoundError(
                    f"Booking {request.booking_id} not found",
                    details={"booking_id": str(request.booking_id)},
                )

            before = _snapshot(booking)
            handler = TRANSITION_HANDLERS.get(request.event_type)

            if handler is None:
                cls.get_logger().info("No transition handler for event type", extra=log_context)
                event = AuditLog.record(
                    booking,
                    BookingEventType.WEBHOOK_UNHANDLED,
                    request.actor_type,
                    f"Unhandled event {request.event_type}",
                    actor_id=request.actor_id,
                    details={"requested_event": request.event_type, "state": before},
                )
                return TransitionOutcome(
                    applied=False,
                    booking=booking,
                    event=event,
                    reason="unhandled_event_type",
                    previous_state=before,
                )

            try:
                with transaction.atomic():
                    effect = handler(booking, request)
                    booking.save()
            except InvalidStateTransitionError as e:
                # Discard any in-memory changes; the row lock is still held
                booking = Booking.objects.get(pk=request.booking_id)
                cls.get_logger().info(
                    f"Transition ignored: {e.message}",
                    extra=log_context,
                )
                event = AuditLog.record(
                    booking,
                    BookingEventType.TRANSITION_IGNORED,
                    request.actor_type,
                    f"Ignored {request.event_type}: {e.message}",
                    actor_id=request.actor_id,
                    details={
                        "requested_event": request.event_type,
                        "reason": e.message,
                        "state": before,
                        **e.details,
                    },
                )
                return TransitionOutcome(
                    applied=False,
                    booking=booking,
                    event=event,
                    reason=e.message,
                    previous_state=before,
                )

            after = _snapshot(booking)
            event = AuditLog.record(
                booking,
                effect.event_type,
                request.actor_type,
                effect.summary,
                actor_id=request.actor_id,
                details={
                    **effect.details,
                    "source_event": request.event_type,
                    "from": before,
                    "to": after,
                },
            )

        cls.get_logger().info(
            f"Transition applied: {request.event_type}",
            extra={**log_context, "from": before, "to": after},
        )
        return TransitionOutcome(
            applied=True,
            booking=booking,
            event=event,
            previous_state=before,
        )


# =============================================================================
# Helpers
# =============================================================================


def _snapshot(booking: Booking) -> dict[str, str]:
    return {
        "payment_status": booking.payment_status,
        "contract_status": booking.contract_status,
        "overall_status": booking.overall_status,
    }


def _run(booking: Booking, method_name: str, *args, **kwargs) -> None:
    """Run an FSM transition or raise InvalidStateTransitionError."""
    method = getattr(booking, method_name)
    if not can_proceed(method):
        raise InvalidStateTransitionError(
            f"{method_name} not allowed from current state",
            details={"transition": method_name},
        )
    method(*args, **kwargs)


def _money(data: dict[str, Any], key: str = "amount") -> Decimal | None:
    """Parse a PayPal money object ({"value": "10.00", "currency_code": "USD"})."""
    money = data.get(key) or {}
    value = money.get("value") if isinstance(money, dict) else None
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _currency(data: dict[str, Any], key: str = "amount") -> str:
    money = data.get(key) or {}
    return (money.get("currency_code") or "").upper() if isinstance(money, dict) else ""


def _confirm_if_ready(booking: Booking) -> bool:
    """Move pending_payment -> upcoming when signed and paid."""
    if booking.overall_status == OverallStatus.PENDING_PAYMENT and can_proceed(booking.confirm):
        booking.confirm()
        return True
    return False


def _capture_gate_blocks(booking: Booking) -> bool:
    if booking.capture_approved_at is not None:
        return False
    return CaptureRule.active.filter(rule_type=CaptureRuleType.ADMIN_APPROVAL).exists()


def _queue_capture(booking_id: UUID, reason: str) -> None:
    from bookings.tasks import capture_booking_payment

    transaction.on_commit(lambda: capture_booking_payment.delay(str(booking_id), reason))


# =============================================================================
# Payment Transitions
# =============================================================================


@register_transition(PAYMENT_AUTHORIZATION_CREATED)
def handle_authorization_created(booking: Booking, request: TransitionRequest) -> Effect:
    data = request.data
    amount = _money(data)
    _run(booking, "authorize", authorization_id=data.get("id"), amount=amount)

    order_id = (data.get("supplementary_data") or {}).get("related_ids", {}).get("order_id")
    if order_id and not booking.paypal_order_id:
        booking.paypal_order_id = order_id

    return Effect(
        BookingEventType.PAYMENT_AUTHORIZED,
        f"Payment authorized ({amount} {_currency(data)})".rstrip(),
        {"authorization_id": data.get("id"), "amount": str(amount) if amount else None},
    )


@register_transition(PAYMENT_AUTHORIZATION_VOIDED)
def handle_authorization_voided(booking: Booking, request: TransitionRequest) -> Effect:
    _run(booking, "void")
    return Effect(
        BookingEventType.PAYMENT_VOIDED,
        "Payment authorization voided",
        {"authorization_id": request.data.get("id")},
    )


@register_transition(PAYMENT_CAPTURE_COMPLETED)
def handle_capture_completed(booking: Booking, request: TransitionRequest) -> Effect:
    data = request.data
    amount = _money(data)
    captured_so_far = booking.captured_amount or Decimal("0")
    is_partial = (
        amount is not None
        and booking.authorized_amount is not None
        and captured_so_far + amount < booking.authorized_amount
        and data.get("final_capture") is not True
    )

    _run(
        booking,
        "capture_partial" if is_partial else "capture_full",
        capture_id=data.get("id"),
        amount=amount,
    )
    confirmed = _confirm_if_ready(booking)

    label = "partially captured" if is_partial else "captured"
    return Effect(
        BookingEventType.PAYMENT_CAPTURED,
        f"Payment {label} ({amount} {_currency(data)})".rstrip(),
        {
            "capture_id": data.get("id"),
            "amount": str(amount) if amount is not None else None,
            "partial": is_partial,
            "confirmed": confirmed,
        },
    )


@register_transition(PAYMENT_CAPTURE_DENIED)
def handle_capture_denied(booking: Booking, request: TransitionRequest) -> Effect:
    _run(booking, "deny_capture")
    return Effect(
        BookingEventType.PAYMENT_CAPTURE_DENIED,
        "Payment capture denied",
        {
            "capture_id": request.data.get("id"),
            "reason": (request.data.get("status_details") or {}).get("reason", ""),
        },
    )


@register_transition(PAYMENT_CAPTURE_PENDING)
def handle_capture_pending(booking: Booking, request: TransitionRequest) -> Effect:
    """Audit only: PayPal accepted the capture but has not settled it."""
    if booking.payment_status not in (PaymentStatus.AUTHORIZED, PaymentStatus.PARTIALLY_CAPTURED):
        raise InvalidStateTransitionError(
            "Capture pending reported for a booking that is not awaiting capture",
        )
    reason = (request.data.get("status_details") or {}).get("reason", "")
    return Effect(
        BookingEventType.CAPTURE_PENDING,
        f"Capture pending at PayPal {reason}".rstrip(),
        {"capture_id": request.data.get("id"), "reason": reason},
    )


@register_transition(PAYMENT_CAPTURE_REFUNDED)
def handle_capture_refunded(booking: Booking, request: TransitionRequest) -> Effect:
    data = request.data
    amount = _money(data)
    refunded_so_far = booking.refunded_amount or Decimal("0")
    is_partial = (
        amount is not None
        and booking.captured_amount is not None
        and refunded_so_far + amount < booking.captured_amount
    )

    _run(booking, "refund_partial" if is_partial else "refund_full", amount=amount)

    return Effect(
        BookingEventType.PAYMENT_REFUNDED,
        f"Payment {'partially ' if is_partial else ''}refunded ({amount} {_currency(data)})".rstrip(),
        {
            "refund_id": data.get("id"),
            "amount": str(amount) if amount is not None else None,
            "partial": is_partial,
        },
    )


@register_transition(CAPTURE_FAILED)
def handle_capture_failed(booking: Booking, request: TransitionRequest) -> Effect:
    """Audit only: a capture attempt failed and was handed to the retry manager."""
    return Effect(
        BookingEventType.CAPTURE_FAILED,
        f"Capture attempt failed: {request.data.get('error', 'unknown error')}",
        dict(request.data),
    )


# =============================================================================
# Contract Transitions
# =============================================================================


@register_transition(CONTRACT_SUBMISSION_VIEWED)
def handle_contract_viewed(booking: Booking, request: TransitionRequest) -> Effect:
    _run(booking, "mark_contract_sent")
    return Effect(
        BookingEventType.CONTRACT_VIEWED,
        f"Contract viewed by {request.data.get('email') or 'customer'}",
        {"submission_id": request.data.get("submission_id")},
    )


@register_transition(CONTRACT_SUBMISSION_COMPLETED)
def handle_contract_completed(booking: Booking, request: TransitionRequest) -> Effect:
    data = request.data
    signed_at = parse_datetime(data["completed_at"]) if data.get("completed_at") else None
    _run(booking, "sign_contract", signed_at=signed_at, document_url=data.get("document_url"))

    submission_id = data.get("submission_id")
    if submission_id and not booking.contract_submission_id:
        booking.contract_submission_id = str(submission_id)

    capture_queued = False
    capture_blocked = False
    if booking.payment_status == PaymentStatus.AUTHORIZED:
        if _capture_gate_blocks(booking):
            capture_blocked = True
        else:
            _queue_capture(booking.id, reason="contract_signed")
            capture_queued = True

    confirmed = False
    if booking.payment_status == PaymentStatus.CAPTURED:
        confirmed = _confirm_if_ready(booking)

    return Effect(
        BookingEventType.CONTRACT_SIGNED,
        f"Contract signed by {data.get('email') or 'customer'}",
        {
            "submission_id": submission_id,
            "document_url": data.get("document_url"),
            "capture_queued": capture_queued,
            "capture_awaiting_approval": capture_blocked,
            "confirmed": confirmed,
        },
    )


@register_transition(CONTRACT_SUBMISSION_DECLINED)
def handle_contract_declined(booking: Booking, request: TransitionRequest) -> Effect:
    """Audit only. A declined contract stays pending so it can be re-sent."""
    return Effect(
        BookingEventType.CONTRACT_DECLINED,
        f"Contract declined by {request.data.get('email') or 'customer'}",
        {
            "submission_id": request.data.get("submission_id"),
            "reason": request.data.get("decline_reason", ""),
        },
    )


@register_transition(CONTRACT_SUBMISSION_EXPIRED)
def handle_contract_expired(booking: Booking, request: TransitionRequest) -> Effect:
    _run(booking, "expire_contract")
    return Effect(
        BookingEventType.CONTRACT_EXPIRED,
        "Contract submission expired",
        {"submission_id": request.data.get("submission_id")},
    )


# =============================================================================
# Dispute Transitions
# =============================================================================

# PayPal dispute statuses not listed here map to OPEN
_DISPUTE_STATUS_MAP = {
    "UNDER_REVIEW": DisputeStatus.UNDER_REVIEW,
    "RESOLVED": DisputeStatus.RESOLVED,
}


def _dispute_id(data: dict[str, Any]) -> str:
    return data.get("dispute_id") or data.get("id") or ""


@register_transition(DISPUTE_CREATED)
def handle_dispute_created(booking: Booking, request: TransitionRequest) -> Effect:
    data = request.data
    dispute_id = _dispute_id(data)
    if not dispute_id:
        raise InvalidStateTransitionError("Dispute event carries no dispute id")

    previous_overall = booking.overall_status
    _run(booking, "open_dispute")

    dispute, created = Dispute.objects.get_or_create(
        provider_dispute_id=dispute_id,
        defaults={
            "booking": booking,
            "reason": data.get("reason", ""),
            "amount": _money(data, "dispute_amount"),
            "currency": _currency(data, "dispute_amount"),
            "raw_resource": data,
        },
    )

    return Effect(
        BookingEventType.DISPUTE_CREATED,
        f"Dispute opened: {data.get('reason') or 'no reason given'}",
        {
            "dispute_id": dispute_id,
            "dispute_pk": str(dispute.id),
            "created": created,
            "previous_overall_status": previous_overall,
        },
    )


@register_transition(DISPUTE_UPDATED)
def handle_dispute_updated(booking: Booking, request: TransitionRequest) -> Effect:
    data = request.data
    dispute_id = _dispute_id(data)
    dispute = Dispute.objects.filter(provider_dispute_id=dispute_id, booking=booking).first()
    if dispute is None:
        raise InvalidStateTransitionError(
            "Dispute update for unknown dispute",
            details={"dispute_id": dispute_id},
        )

    dispute.dispute_status = _DISPUTE_STATUS_MAP.get(data.get("status", ""), DisputeStatus.OPEN)
    if data.get("reason"):
        dispute.reason = data["reason"]
    amount = _money(data, "dispute_amount")
    if amount is not None:
        dispute.amount = amount
        dispute.currency = _currency(data, "dispute_amount")
    dispute.raw_resource = data
    dispute.save()

    return Effect(
        BookingEventType.DISPUTE_UPDATED,
        f"Dispute {dispute_id} updated ({dispute.dispute_status})",
        {"dispute_id": dispute_id, "dispute_status": dispute.dispute_status},
    )


@register_transition(DISPUTE_RESOLVED)
def handle_dispute_resolved(booking: Booking, request: TransitionRequest) -> Effect:
    """
    Resolve the dispute record.

    overall_status stays disputed; restoring it is an admin decision.
    """
    data = request.data
    dispute_id = _dispute_id(data)
    dispute = Dispute.objects.filter(provider_dispute_id=dispute_id, booking=booking).first()
    if dispute is None or not dispute.is_open:
        raise InvalidStateTransitionError(
            "No open dispute to resolve",
            details={"dispute_id": dispute_id},
        )

    outcome = (data.get("dispute_outcome") or {}).get("outcome_code", "")
    dispute.dispute_status = DisputeStatus.RESOLVED
    dispute.outcome = outcome
    dispute.resolved_at = timezone.now()
    dispute.raw_resource = data
    dispute.save()

    return Effect(
        BookingEventType.DISPUTE_RESOLVED,
        f"Dispute {dispute_id} resolved ({outcome or 'no outcome'})",
        {"dispute_id": dispute_id, "outcome": outcome},
    )


# =============================================================================
# Admin Transitions
# =============================================================================


@register_transition(ADMIN_OVERRIDE)
def handle_admin_override(booking: Booking, request: TransitionRequest) -> Effect:
    if request.actor_type != ActorType.ADMIN:
        raise InvalidStateTransitionError("Status override requires an admin actor")

    target = request.data.get("status")
    if target not in OverallStatus.values:
        raise InvalidStateTransitionError(
            f"Unknown overall status {target!r}",
            details={"requested_status": target},
        )

    previous = booking.overall_status
    _run(booking, "force_overall_status", target)

    return Effect(
        BookingEventType.STATUS_OVERRIDDEN,
        f"Status overridden {previous} -> {target}",
        {"reason": request.data.get("reason", ""), "previous": previous, "status": target},
    )


@register_transition(ADMIN_CAPTURE_APPROVED)
def handle_capture_approved(booking: Booking, request: TransitionRequest) -> Effect:
    if request.actor_type != ActorType.ADMIN:
        raise InvalidStateTransitionError("Capture approval requires an admin actor")
    if booking.capture_approved_at is not None:
        raise InvalidStateTransitionError("Capture already approved")
    if booking.payment_status not in (PaymentStatus.PENDING, PaymentStatus.AUTHORIZED):
        raise InvalidStateTransitionError(
            "Capture approval only applies before capture",
            details={"payment_status": booking.payment_status},
        )

    booking.capture_approved_at = timezone.now()
    booking.capture_approved_by_id = request.data.get("approved_by_id")

    return Effect(
        BookingEventType.CAPTURE_APPROVED,
        "Capture approved by admin",
        {"approved_by_id": request.data.get("approved_by_id")},
    )
