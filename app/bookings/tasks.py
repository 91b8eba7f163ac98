"""
Celery tasks for bookings.

Periodic tasks live in bookings.workers and are re-exported here so
Celery autodiscovery (which imports <app>.tasks) registers them.

Usage:
    from bookings.tasks import capture_booking_payment

    capture_booking_payment.delay(str(booking.id), reason="contract_signed")
"""

from __future__ import annotations

import logging
from uuid import UUID

from celery import shared_task

from bookings.workers import (
    evaluate_capture_rules,
    process_webhook_retries,
    release_expired_leases,
)

logger = logging.getLogger(__name__)

__all__ = [
    "capture_booking_payment",
    "evaluate_capture_rules",
    "process_webhook_retries",
    "release_expired_leases",
]


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def capture_booking_payment(self, booking_id: str, reason: str = "") -> dict:
    """
    Capture one booking's authorized payment.

    Queued after commit when a contract is signed on an authorized
    booking, and by the admin capture endpoint. Transient PayPal
    failures are stored as system-capture retry records by the capture
    service, so the Celery retry only covers unexpected errors.

    Returns:
        CaptureAttempt as a dict (status is one of captured, pending,
        denied, already_captured, not_capturable, lease_unavailable,
        queued_for_retry, dead_letter, error, not_found)
    """
    from bookings.services.capture_service import CaptureService

    try:
        booking_uuid = UUID(str(booking_id))
    except ValueError:
        logger.error(f"Invalid booking_id format: {booking_id}")
        return {"status": "not_found", "booking_id": booking_id, "error": "Invalid UUID format"}

    logger.info(
        "Processing booking capture",
        extra={"booking_id": str(booking_uuid), "reason": reason},
    )
    attempt = CaptureService.capture_booking(booking_uuid, reason=reason)
    return attempt.to_dict()
