"""
State machine enums for booking models.
"""

from bookings.state_machines.states import (
    ActorType,
    BookingEventType,
    CaptureRuleType,
    ContractStatus,
    DisputeStatus,
    OverallStatus,
    PaymentStatus,
    WebhookEventStatus,
    WebhookProvider,
)

__all__ = [
    "ActorType",
    "BookingEventType",
    "CaptureRuleType",
    "ContractStatus",
    "DisputeStatus",
    "OverallStatus",
    "PaymentStatus",
    "WebhookEventStatus",
    "WebhookProvider",
]
