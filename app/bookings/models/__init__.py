"""
Booking models.

Booking is the aggregate root. WebhookEvent, ProcessedWebhook and
BookingEvent are the delivery, idempotency and audit records around it.
"""

from bookings.models.booking import INVOICE_PREFIX, Booking
from bookings.models.booking_event import BookingEvent, ImmutableRecordError
from bookings.models.capture_rule import DEFAULT_HOURS_BEFORE_RENTAL, CaptureRule
from bookings.models.dispute import Dispute
from bookings.models.processed_webhook import ProcessedWebhook
from bookings.models.webhook_event import WebhookEvent

__all__ = [
    "Booking",
    "BookingEvent",
    "CaptureRule",
    "DEFAULT_HOURS_BEFORE_RENTAL",
    "Dispute",
    "INVOICE_PREFIX",
    "ImmutableRecordError",
    "ProcessedWebhook",
    "WebhookEvent",
]
