"""
BookingEvent model: the append-only audit log.

Every state transition, ignored event, and capture outcome writes one
row, in the same transaction as the change it describes. Rows are
never updated or deleted.
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin

from bookings.state_machines import ActorType, BookingEventType


class ImmutableRecordError(Exception):
    """Raised on any attempt to modify or delete an audit row."""


class BookingEvent(UUIDPrimaryKeyMixin, models.Model):
    """
    Immutable audit entry keyed by booking.

    Fields:
        booking: The booking the event belongs to
        event_type: What happened (see BookingEventType)
        actor_type: Who caused it (system, webhook_paypal, webhook_docuseal, admin)
        actor_id: Provider event id, worker id, or admin user id
        summary: Human-readable one-liner for the admin timeline
        details: Structured payload (status changes, provider ids, amounts)
        created_at: When the event was recorded
    """

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="events",
    )

    event_type = models.CharField(
        max_length=50,
        choices=BookingEventType.choices,
        db_index=True,
    )

    actor_type = models.CharField(
        max_length=20,
        choices=ActorType.choices,
    )

    actor_id = models.CharField(max_length=255, blank=True, default="")

    summary = models.CharField(max_length=500)

    details = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["booking", "created_at"], name="bookings_bo_booking_3e8f21_idx"),
        ]

    def __str__(self) -> str:
        return f"BookingEvent({self.booking_id}, {self.event_type}, {self.actor_type})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableRecordError("BookingEvent rows are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableRecordError("BookingEvent rows cannot be deleted")
