"""
Retry manager for failed webhook processing and capture attempts.

Failed work is stored as a WebhookEvent row and replayed by the retry
sweep with exponential backoff:

    delay = min(WEBHOOK_RETRY_BASE_SECONDS * 2 ** attempts_so_far,
                WEBHOOK_RETRY_MAX_BACKOFF_SECONDS)

After max_attempts failures a row moves to the dead-letter queue, where
it stays until an admin resubmits or acknowledges it.

Replays dispatch through a handler registry keyed by webhook_type.
Handlers register themselves with @register_retry_handler:
    - paypal / docuseal: bookings.webhooks.gateway.replay_webhook
    - system-capture: bookings.services.capture_service.retry_capture

Usage:
    record = RetryManager.store_failed_webhook(
        webhook_type="paypal",
        webhook_id=event_id,
        payload=payload,
        error=str(exc),
    )

    for record in RetryManager.get_webhooks_for_retry(limit=50):
        if RetryManager.claim(record, owner="worker-1"):
            outcome = RetryManager.process_retry(record)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Callable

from django.conf import settings
from django.db import transaction
from django.db.models import Avg, Count, Max, Min, Q
from django.utils import timezone

from core.services import BaseService, ServiceResult

from bookings.models import WebhookEvent
from bookings.services.audit_log import AuditLog
from bookings.state_machines import (
    ActorType,
    BookingEventType,
    WebhookEventStatus,
    WebhookProvider,
)

if TYPE_CHECKING:
    from typing import Any
    from uuid import UUID


logger = logging.getLogger(__name__)


# Upper bound for max_attempts on any record
MAX_ATTEMPTS_CEILING = 10

# RetryOutcome.status when another worker took the row over mid-attempt
LEASE_LOST = "lease_lost"


@dataclass(frozen=True)
class RetryOutcome:
    """
    Result of one retry attempt.

    Attributes:
        success: The handler completed
        should_retry: The row is rescheduled (False once dead-lettered)
        status: Row status after the attempt, or LEASE_LOST when the
            result was dropped because another worker owns the row
        error: Failure message, if any
    """

    success: bool
    should_retry: bool
    status: str
    error: str = ""


# =============================================================================
# Handler Registry
# =============================================================================


RetryHandler = Callable[[WebhookEvent], object]

RETRY_HANDLERS: dict[str, RetryHandler] = {}


def register_retry_handler(webhook_type: str) -> Callable:
    """
    Decorator to register the replay function for a webhook_type.

    A handler returns normally on success and raises on failure.
    """

    def decorator(func: RetryHandler) -> RetryHandler:
        RETRY_HANDLERS[webhook_type] = func
        logger.debug(f"Registered retry handler for {webhook_type}")
        return func

    return decorator


class RetryManager(BaseService):
    """Stores, schedules, claims and replays failed work."""

    # =========================================================================
    # Configuration
    # =========================================================================

    @classmethod
    def base_seconds(cls) -> int:
        return int(getattr(settings, "WEBHOOK_RETRY_BASE_SECONDS", 60))

    @classmethod
    def max_backoff_seconds(cls) -> int:
        return int(getattr(settings, "WEBHOOK_RETRY_MAX_BACKOFF_SECONDS", 3600))

    @classmethod
    def default_max_attempts(cls) -> int:
        return min(int(getattr(settings, "WEBHOOK_RETRY_MAX_ATTEMPTS", 5)), MAX_ATTEMPTS_CEILING)

    @classmethod
    def batch_size(cls) -> int:
        return int(getattr(settings, "WEBHOOK_RETRY_BATCH_SIZE", 50))

    @classmethod
    def lease_seconds(cls) -> int:
        return int(getattr(settings, "WEBHOOK_RETRY_LEASE_SECONDS", 300))

    @classmethod
    def backoff_seconds(cls, attempts_so_far: int) -> int:
        """Delay before the next attempt, given attempts already failed before this one."""
        return min(cls.base_seconds() * (2 ** attempts_so_far), cls.max_backoff_seconds())

    # =========================================================================
    # Storing
    # =========================================================================

    @classmethod
    def store_failed_webhook(
        cls,
        webhook_type: str,
        webhook_id: str,
        payload: dict[str, Any],
        event_type: str = "",
        headers: dict[str, str] | None = None,
        booking_id: UUID | None = None,
        error: str = "",
        error_details: dict[str, Any] | None = None,
        max_attempts: int | None = None,
    ) -> WebhookEvent:
        """
        Store failed work for retry.

        Reuses the existing row for (webhook_type, webhook_id); a new
        row starts at attempt 0 and is due immediately. A row that
        already succeeded is reopened with a fresh attempt budget. A
        dead-lettered row stays parked until an admin resubmits it;
        callers check the returned row's status.
        """
        attempts = min(max_attempts or cls.default_max_attempts(), MAX_ATTEMPTS_CEILING)
        record, created = WebhookEvent.objects.get_or_create(
            webhook_type=webhook_type,
            webhook_id=webhook_id,
            defaults={
                "event_type": event_type,
                "payload": payload,
                "headers": headers or {},
                "booking_id": booking_id,
                "status": WebhookEventStatus.PENDING,
                "attempt_count": 0,
                "max_attempts": attempts,
                "next_retry_at": timezone.now(),
                "last_error": error,
                "error_details": error_details or {},
            },
        )

        log_context = {
            "provider": webhook_type,
            "webhook_id": webhook_id,
            "retry_record_id": str(record.id),
        }
        if created:
            cls.get_logger().warning("Stored failed work for retry", extra=log_context)
        elif record.status == WebhookEventStatus.SUCCEEDED:
            record.payload = payload
            record.max_attempts = attempts
            if booking_id is not None:
                record.booking_id = booking_id
            record.reopen(error, error_details)
            record.save()
            cls.get_logger().warning("Reopened retry record after a new failure", extra=log_context)
        else:
            cls.get_logger().info(
                f"Retry record already exists ({record.status})",
                extra=log_context,
            )
        return record

    # =========================================================================
    # Claiming
    # =========================================================================

    @classmethod
    def _claimable(cls, now) -> Q:
        return Q(status=WebhookEventStatus.PENDING, next_retry_at__lte=now) | Q(
            status=WebhookEventStatus.PROCESSING, lease_expires_at__lt=now
        )

    @classmethod
    def get_webhooks_for_retry(cls, limit: int | None = None) -> list[WebhookEvent]:
        """Due pending rows and abandoned processing rows, oldest first."""
        now = timezone.now()
        return list(
            WebhookEvent.objects.filter(cls._claimable(now)).order_by("next_retry_at", "created_at")[
                : limit or cls.batch_size()
            ]
        )

    @classmethod
    def claim(cls, record: WebhookEvent, owner: str) -> bool:
        """
        Claim a row for processing with a compare-and-set update.

        Returns:
            False if another worker claimed it first
        """
        now = timezone.now()
        lease_until = now + timedelta(seconds=cls.lease_seconds())
        updated = (
            WebhookEvent.objects.filter(pk=record.pk)
            .filter(cls._claimable(now))
            .update(
                status=WebhookEventStatus.PROCESSING,
                lease_owner=owner,
                lease_expires_at=lease_until,
                updated_at=now,
            )
        )
        if not updated:
            return False

        record.status = WebhookEventStatus.PROCESSING
        record.lease_owner = owner
        record.lease_expires_at = lease_until
        return True

    # =========================================================================
    # Processing
    # =========================================================================

    @classmethod
    def process_retry(cls, record: WebhookEvent) -> RetryOutcome:
        """
        Replay a claimed row through its registered handler.

        The result is written only while this worker still holds the
        lease; if the lease expired and another worker re-claimed the
        row, the result is dropped and that worker's attempt stands.
        """
        owner = record.lease_owner
        log_context = {
            "provider": record.webhook_type,
            "webhook_id": record.webhook_id,
            "retry_record_id": str(record.id),
            "attempt": record.attempt_count + 1,
            "lease_owner": owner,
        }
        handler = RETRY_HANDLERS.get(record.webhook_type)

        try:
            if handler is None:
                raise LookupError(f"No retry handler registered for {record.webhook_type}")
            handler(record)
        except Exception as e:
            return cls._record_failure(record, owner, e, log_context)

        record.mark_succeeded()
        if not cls._finalize(record, owner):
            return cls._lease_lost(log_context)
        cls.get_logger().info("Retry succeeded", extra=log_context)
        return RetryOutcome(success=True, should_retry=False, status=record.status)

    @classmethod
    def _record_failure(
        cls,
        record: WebhookEvent,
        owner: str | None,
        exc: Exception,
        log_context: dict[str, Any],
    ) -> RetryOutcome:
        error = f"{type(exc).__name__}: {exc}"
        details = {
            "exception": type(exc).__name__,
            "error_code": getattr(exc, "error_code", None),
            "attempt": record.attempt_count + 1,
        }

        if record.attempt_count + 1 >= record.max_attempts:
            record.mark_dead_letter(error, details)
            if not cls._finalize(record, owner):
                return cls._lease_lost(log_context)
            cls.get_logger().error(
                "Retry attempts exhausted, moved to dead letter",
                extra={**log_context, "error": error},
            )
            return RetryOutcome(
                success=False,
                should_retry=False,
                status=record.status,
                error=error,
            )

        delay = cls.backoff_seconds(record.attempt_count)
        record.mark_attempt_failed(error, timezone.now() + timedelta(seconds=delay), details)
        if not cls._finalize(record, owner):
            return cls._lease_lost(log_context)
        cls.get_logger().warning(
            f"Retry failed, next attempt in {delay}s",
            extra={**log_context, "error": error},
        )
        return RetryOutcome(success=False, should_retry=True, status=record.status, error=error)

    @classmethod
    def _finalize(cls, record: WebhookEvent, owner: str | None) -> bool:
        """Write an attempt's result if the row is still leased to owner."""
        updated = WebhookEvent.objects.filter(
            pk=record.pk,
            status=WebhookEventStatus.PROCESSING,
            lease_owner=owner,
        ).update(
            status=record.status,
            attempt_count=record.attempt_count,
            next_retry_at=record.next_retry_at,
            last_attempt_at=record.last_attempt_at,
            last_error=record.last_error,
            error_details=record.error_details,
            succeeded_at=record.succeeded_at,
            dead_lettered_at=record.dead_lettered_at,
            booking_id=record.booking_id,
            lease_owner=None,
            lease_expires_at=None,
            updated_at=timezone.now(),
        )
        return bool(updated)

    @classmethod
    def _lease_lost(cls, log_context: dict[str, Any]) -> RetryOutcome:
        cls.get_logger().warning(
            "Retry lease lost before the result was saved; result dropped",
            extra=log_context,
        )
        return RetryOutcome(
            success=False,
            should_retry=False,
            status=LEASE_LOST,
            error="lease_lost",
        )

    @classmethod
    def release_expired_leases(cls) -> int:
        """Return abandoned processing rows to the queue."""
        now = timezone.now()
        released = WebhookEvent.objects.filter(
            status=WebhookEventStatus.PROCESSING,
            lease_expires_at__lt=now,
        ).update(
            status=WebhookEventStatus.PENDING,
            lease_owner=None,
            lease_expires_at=None,
            updated_at=now,
        )
        if released:
            cls.get_logger().warning(
                f"Released {released} expired retry leases",
                extra={"released_count": released},
            )
        return released

    # =========================================================================
    # Dead Letter Administration
    # =========================================================================

    @classmethod
    def resubmit_dead_letter(cls, record_id: UUID, actor) -> ServiceResult[WebhookEvent]:
        """Put a dead-lettered row back in the queue with a fresh attempt budget."""
        with transaction.atomic():
            record = (
                WebhookEvent.objects.select_for_update()
                .select_related("booking")
                .filter(pk=record_id)
                .first()
            )
            if record is None:
                return ServiceResult.failure("Retry record not found", error_code="NOT_FOUND")
            if record.status != WebhookEventStatus.DEAD_LETTER:
                return ServiceResult.failure(
                    f"Only dead-lettered rows can be resubmitted (status: {record.status})",
                    error_code="INVALID_STATE",
                )

            record.reset_for_resubmit()
            record.save()

            if record.booking is not None:
                AuditLog.record(
                    record.booking,
                    BookingEventType.WEBHOOK_RESUBMITTED,
                    ActorType.ADMIN,
                    f"Resubmitted {record.webhook_type} event {record.webhook_id}",
                    actor_id=str(getattr(actor, "pk", "") or ""),
                    details={
                        "retry_record_id": str(record.id),
                        "webhook_type": record.webhook_type,
                        "event_type": record.event_type,
                    },
                )

        cls.get_logger().info(
            "Dead-lettered row resubmitted",
            extra={
                "provider": record.webhook_type,
                "webhook_id": record.webhook_id,
                "retry_record_id": str(record.id),
            },
        )
        return ServiceResult.success(record)

    @classmethod
    def acknowledge_dead_letter(
        cls,
        record_id: UUID,
        actor,
        note: str = "",
    ) -> ServiceResult[WebhookEvent]:
        """Mark a dead-lettered row as seen and intentionally left alone."""
        with transaction.atomic():
            record = WebhookEvent.objects.select_for_update().filter(pk=record_id).first()
            if record is None:
                return ServiceResult.failure("Retry record not found", error_code="NOT_FOUND")
            if record.status != WebhookEventStatus.DEAD_LETTER:
                return ServiceResult.failure(
                    f"Only dead-lettered rows can be acknowledged (status: {record.status})",
                    error_code="INVALID_STATE",
                )

            record.acknowledged_at = timezone.now()
            record.acknowledged_by = actor if getattr(actor, "pk", None) else None
            record.acknowledgement_note = note
            record.save()

        return ServiceResult.success(record)

    # =========================================================================
    # Metrics
    # =========================================================================

    @classmethod
    def health_metrics(cls) -> dict[str, Any]:
        """Per-provider queue health for the operations dashboard."""
        now = timezone.now()
        providers: dict[str, Any] = {}

        for provider in WebhookProvider.values:
            rows = WebhookEvent.objects.filter(webhook_type=provider)
            by_status = {status: 0 for status in WebhookEventStatus.values}
            for row in rows.values("status").annotate(count=Count("id")):
                by_status[row["status"]] = row["count"]

            stats = rows.aggregate(
                avg_attempts=Avg("attempt_count"),
                max_attempts=Max("attempt_count"),
            )
            oldest_pending = rows.filter(status=WebhookEventStatus.PENDING).aggregate(
                oldest=Min("created_at")
            )["oldest"]
            unacknowledged = rows.filter(
                status=WebhookEventStatus.DEAD_LETTER,
                acknowledged_at__isnull=True,
            ).count()

            providers[provider] = {
                "by_status": by_status,
                "total": sum(by_status.values()),
                "avg_attempts": round(stats["avg_attempts"] or 0, 2),
                "max_attempts": stats["max_attempts"] or 0,
                "oldest_pending_at": oldest_pending.isoformat() if oldest_pending else None,
                "oldest_pending_age_seconds": int((now - oldest_pending).total_seconds())
                if oldest_pending
                else None,
                "unacknowledged_dead_letters": unacknowledged,
            }

        return {
            "generated_at": now.isoformat(),
            "providers": providers,
            "total_unacknowledged_dead_letters": sum(
                p["unacknowledged_dead_letters"] for p in providers.values()
            ),
        }
