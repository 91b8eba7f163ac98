"""
Audit log service for booking events.

Every write goes through AuditLog.record so that summaries and details
have a consistent shape. Callers invoke it inside the same transaction
as the state change they describe.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.services import BaseService

from bookings.models import BookingEvent

if TYPE_CHECKING:
    from typing import Any
    from uuid import UUID

    from django.db.models import QuerySet

    from bookings.models import Booking


class AuditLog(BaseService):
    """Append-only writer and reader for BookingEvent rows."""

    @classmethod
    def record(
        cls,
        booking: Booking,
        event_type: str,
        actor_type: str,
        summary: str,
        actor_id: str = "",
        details: dict[str, Any] | None = None,
    ) -> BookingEvent:
        event = BookingEvent.objects.create(
            booking=booking,
            event_type=event_type,
            actor_type=actor_type,
            actor_id=str(actor_id or "")[:255],
            summary=summary[:500],
            details=details or {},
        )
        cls.get_logger().info(
            f"Booking event recorded: {event_type}",
            extra={
                "booking_id": str(booking.id),
                "event_type": event_type,
                "actor_type": actor_type,
            },
        )
        return event

    @classmethod
    def timeline(cls, booking_id: UUID) -> QuerySet[BookingEvent]:
        """Events for a booking, oldest first."""
        return BookingEvent.objects.filter(booking_id=booking_id).order_by("created_at")
