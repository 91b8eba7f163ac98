"""
Idempotency ledger for external events.

The ledger is a unique (provider, event_id) insert. Callers mark an
event processed inside the transaction that applied it: if the insert
loses a race, the caller raises DuplicateDeliveryError and the whole
transaction rolls back.

Usage:
    with transaction.atomic():
        outcome = BookingStateMachine.apply(request)
        if not IdempotencyLedger.mark_processed("paypal", event_id, booking.id):
            raise DuplicateDeliveryError(...)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction

from core.services import BaseService

from bookings.models import ProcessedWebhook

if TYPE_CHECKING:
    from typing import Any
    from uuid import UUID


class IdempotencyLedger(BaseService):
    @classmethod
    def is_processed(cls, provider: str, event_id: str) -> bool:
        return ProcessedWebhook.objects.filter(provider=provider, event_id=event_id).exists()

    @classmethod
    def mark_processed(
        cls,
        provider: str,
        event_id: str,
        booking_id: UUID | None = None,
        result_metadata: dict[str, Any] | None = None,
        event_type: str = "",
    ) -> bool:
        """
        Record an event as processed.

        Returns:
            True if this call recorded the event, False if it was
            already recorded. False is not an error.
        """
        try:
            # Savepoint so a unique violation leaves the outer transaction usable
            with transaction.atomic():
                ProcessedWebhook.objects.create(
                    provider=provider,
                    event_id=event_id,
                    event_type=event_type,
                    booking_id=booking_id,
                    result=result_metadata or {},
                )
        except IntegrityError:
            cls.get_logger().info(
                "Event already recorded in idempotency ledger",
                extra={"provider": provider, "webhook_id": event_id},
            )
            return False
        return True
