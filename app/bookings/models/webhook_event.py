"""
WebhookEvent model: the retry record for failed webhook processing.

A row is created the first time processing of an external event fails
(or a capture attempt hits a transient error). It then tracks every
retry attempt until it either succeeds or lands in the dead-letter
queue. Rows are never deleted so the delivery history stays auditable.

Usage:
    from bookings.models import WebhookEvent
    from bookings.state_machines import WebhookEventStatus

    due = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PENDING,
        next_retry_at__lte=timezone.now(),
    )
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from bookings.state_machines import WebhookEventStatus, WebhookProvider


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    One delivery attempt chain for one external event.

    (webhook_type, webhook_id) is unique, so an event can never be
    queued for retry twice.

    Fields:
        webhook_type: Provider name, or "system-capture" for capture attempts
        webhook_id: Provider-assigned event id (synthetic for captures)
        event_type: Provider event type, for filtering in the dashboard
        payload: Parsed JSON payload as received
        headers: Provider headers relevant to the event (no secrets)
        booking: Resolved booking, if any
        attempt_count/max_attempts: Retry accounting
        next_retry_at: Earliest time the next attempt may run
        status: Processing status
        last_error/error_details: Most recent failure
        lease_owner/lease_expires_at: Claim held by a retry worker
        acknowledged_*: Manual "ignore" of a dead-lettered row
    """

    # ==========================================================================
    # Identity
    # ==========================================================================

    webhook_type = models.CharField(
        max_length=32,
        choices=WebhookProvider.choices,
        help_text="Provider that sent the event",
    )

    webhook_id = models.CharField(
        max_length=255,
        help_text="Provider-assigned event id",
    )

    event_type = models.CharField(
        max_length=100,
        blank=True,
        default="",
        db_index=True,
    )

    payload = models.JSONField(
        help_text="Event payload as received",
    )

    headers = models.JSONField(
        default=dict,
        blank=True,
        help_text="Provider headers relevant to the event",
    )

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="webhook_retries",
    )

    # ==========================================================================
    # Retry Accounting
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
    )

    attempt_count = models.PositiveIntegerField(default=0)

    max_attempts = models.PositiveIntegerField(default=5)

    next_retry_at = models.DateTimeField(
        default=timezone.now,
        help_text="Earliest time the next attempt may run",
    )

    last_attempt_at = models.DateTimeField(null=True, blank=True)

    last_error = models.TextField(blank=True, default="")

    error_details = models.JSONField(default=dict, blank=True)

    succeeded_at = models.DateTimeField(null=True, blank=True)

    dead_lettered_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Lease
    # ==========================================================================

    lease_owner = models.CharField(max_length=128, null=True, blank=True)

    lease_expires_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Manual Handling
    # ==========================================================================

    acknowledged_at = models.DateTimeField(null=True, blank=True)

    acknowledged_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    acknowledgement_note = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["next_retry_at", "created_at"]
        verbose_name = "Webhook Retry"
        verbose_name_plural = "Webhook Retries"
        constraints = [
            models.UniqueConstraint(
                fields=["webhook_type", "webhook_id"],
                name="webhook_event_unique_per_provider",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "next_retry_at"], name="bookings_we_status_7d2c90_idx"),
            models.Index(fields=["webhook_type", "status"], name="bookings_we_webhook_4a1b6e_idx"),
        ]

    def __str__(self) -> str:
        return (
            f"WebhookEvent({self.webhook_type}:{self.webhook_id}, "
            f"{self.status}, attempts={self.attempt_count})"
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            WebhookEventStatus.SUCCEEDED,
            WebhookEventStatus.DEAD_LETTER,
        )

    # ==========================================================================
    # Status Helpers
    # ==========================================================================
    # None of these save; the caller saves after calling.

    def mark_succeeded(self) -> None:
        now = timezone.now()
        self.status = WebhookEventStatus.SUCCEEDED
        self.succeeded_at = now
        self.last_attempt_at = now
        self._clear_lease()

    def mark_attempt_failed(self, error: str, next_retry_at, details: dict | None = None) -> None:
        """Count a failed attempt and reschedule."""
        self.attempt_count += 1
        self.status = WebhookEventStatus.PENDING
        self.last_attempt_at = timezone.now()
        self.next_retry_at = next_retry_at
        self.last_error = error
        self.error_details = details or {}
        self._clear_lease()

    def mark_dead_letter(self, error: str, details: dict | None = None) -> None:
        """Count the final failed attempt and park the row."""
        now = timezone.now()
        self.attempt_count += 1
        self.status = WebhookEventStatus.DEAD_LETTER
        self.last_attempt_at = now
        self.dead_lettered_at = now
        self.last_error = error
        self.error_details = details or {}
        self._clear_lease()

    def reset_for_resubmit(self) -> None:
        """Put a dead-lettered row back in the queue with a fresh budget."""
        self.status = WebhookEventStatus.PENDING
        self.attempt_count = 0
        self.next_retry_at = timezone.now()
        self.dead_lettered_at = None
        self.acknowledged_at = None
        self.acknowledged_by = None
        self.acknowledgement_note = ""
        self._clear_lease()

    def reopen(self, error: str, details: dict | None = None) -> None:
        """Start a fresh attempt chain on a row whose earlier chain succeeded."""
        self.reset_for_resubmit()
        self.succeeded_at = None
        self.last_error = error
        self.error_details = details or {}

    def _clear_lease(self) -> None:
        self.lease_owner = None
        self.lease_expires_at = None
