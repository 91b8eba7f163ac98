"""
Booking services.

This module provides:
- BookingStateMachine: Applies normalised events to bookings
- AuditLog: Append-only booking timeline
- IdempotencyLedger: Records processed provider event ids
- RetryManager: Durable retry queue for failed webhooks and captures
- CaptureService: Leased capture of authorized payments

Usage:
    from bookings.services import BookingStateMachine, TransitionRequest

    outcome = BookingStateMachine.apply(
        TransitionRequest(booking_id=booking.id, event_type="payment.capture.completed", data=resource)
    )

    from bookings.services import CaptureService

    attempt = CaptureService.capture_booking(booking.id, reason="admin")
"""

from bookings.services.audit_log import AuditLog
from bookings.services.idempotency import IdempotencyLedger
from bookings.services.state_machine import (
    BookingStateMachine,
    Effect,
    TransitionOutcome,
    TransitionRequest,
    register_transition,
)
from bookings.services.retry_manager import (
    RetryManager,
    RetryOutcome,
    register_retry_handler,
)
from bookings.services.booking_admin import BookingAdminService
from bookings.services.capture_service import (
    CaptureAttempt,
    CaptureService,
    CaptureStatus,
)

__all__ = [
    "AuditLog",
    "BookingAdminService",
    "BookingStateMachine",
    "CaptureAttempt",
    "CaptureService",
    "CaptureStatus",
    "Effect",
    "IdempotencyLedger",
    "RetryManager",
    "RetryOutcome",
    "TransitionOutcome",
    "TransitionRequest",
    "register_retry_handler",
    "register_transition",
]
