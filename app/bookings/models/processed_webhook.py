"""
ProcessedWebhook model: one row per external event that was fully handled.

The unique (provider, event_id) constraint is what makes duplicate
deliveries harmless: a second insert fails and the transition it was
committed with rolls back.
"""

from django.db import models

from bookings.state_machines import WebhookProvider


class ProcessedWebhook(models.Model):
    provider = models.CharField(max_length=32, choices=WebhookProvider.choices)
    event_id = models.CharField(max_length=255)
    event_type = models.CharField(max_length=100, blank=True, default="")
    booking_id = models.UUIDField(null=True, blank=True, db_index=True)
    result = models.JSONField(default=dict, blank=True)
    processed_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-processed_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["provider", "event_id"],
                name="processed_webhook_unique_event",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.provider}:{self.event_id}"
