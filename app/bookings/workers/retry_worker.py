"""
Retry worker: drains the webhook retry queue.

Tasks:
- process_webhook_retries: Periodic sweep (celery-beat, every 5 minutes)
- release_expired_leases: Returns abandoned retry rows to the queue and
  clears expired booking capture leases (every 10 minutes)

Usage:
    from bookings.workers import process_webhook_retries

    process_webhook_retries.delay()
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from celery import shared_task

from bookings.services.capture_service import CaptureService
from bookings.services.retry_manager import LEASE_LOST, RetryManager
from bookings.state_machines import WebhookEventStatus
from bookings.workers.pool import run_bounded

if TYPE_CHECKING:
    from typing import Any

    from bookings.models import WebhookEvent

logger = logging.getLogger(__name__)


def run_retry_sweep(limit: int | None = None) -> dict[str, Any]:
    """
    Claim and replay due retry records.

    Rows claimed by another worker between selection and claim are
    skipped silently.

    Returns:
        Dict with processed, succeeded, failed, retrying, dead_lettered,
        lease_lost and errors (one entry per failed attempt)
    """
    owner = f"retry-sweep-{uuid.uuid4().hex[:8]}"
    summary: dict[str, Any] = {
        "processed": 0,
        "succeeded": 0,
        "failed": 0,
        "retrying": 0,
        "dead_lettered": 0,
        "lease_lost": 0,
        "errors": [],
    }

    claimed = [
        record
        for record in RetryManager.get_webhooks_for_retry(limit=limit)
        if RetryManager.claim(record, owner)
    ]

    def replay(record: WebhookEvent) -> tuple[WebhookEvent, Any]:
        try:
            return record, RetryManager.process_retry(record)
        except Exception as e:
            # process_retry records handler failures itself; this is a
            # failure to save the outcome, so the lease expiry reclaims it
            logger.exception(
                "Retry bookkeeping failed",
                extra={"retry_record_id": str(record.id), "error": str(e)},
            )
            return record, None

    for record, outcome in run_bounded(replay, claimed):
        summary["processed"] += 1
        if outcome is None:
            summary["failed"] += 1
            summary["errors"].append(
                {"id": str(record.id), "webhook_type": record.webhook_type, "error": "bookkeeping_failed"}
            )
            continue
        if outcome.success:
            summary["succeeded"] += 1
            continue
        if outcome.status == LEASE_LOST:
            summary["lease_lost"] += 1
            continue

        summary["failed"] += 1
        if outcome.status == WebhookEventStatus.DEAD_LETTER:
            summary["dead_lettered"] += 1
        elif outcome.should_retry:
            summary["retrying"] += 1
        summary["errors"].append(
            {
                "id": str(record.id),
                "webhook_type": record.webhook_type,
                "webhook_id": record.webhook_id,
                "error": outcome.error,
            }
        )

    logger.info(
        f"Retry sweep complete: {summary['succeeded']}/{summary['processed']} succeeded",
        extra={k: v for k, v in summary.items() if k != "errors"},
    )
    return summary


@shared_task(bind=True, acks_late=True)
def process_webhook_retries(self, limit: int | None = None) -> dict:
    """Periodic retry sweep (celery-beat)."""
    return run_retry_sweep(limit=limit)


@shared_task(bind=True)
def release_expired_leases(self) -> dict:
    """Reclaim work stranded by crashed sweeps."""
    retry_rows = RetryManager.release_expired_leases()
    capture_leases = CaptureService.release_expired_leases()
    return {
        "retry_leases_released": retry_rows,
        "capture_leases_released": capture_leases,
    }
