"""
Dispute model: a PayPal customer dispute raised against a booking.
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from bookings.state_machines import DisputeStatus


class Dispute(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks one PayPal dispute through created/updated/resolved webhooks.

    The booking's overall_status moves to disputed when the dispute is
    created. Resolving the dispute does not move it back; that is an
    admin decision.
    """

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="disputes",
    )

    provider_dispute_id = models.CharField(
        max_length=64,
        unique=True,
        help_text="PayPal dispute id, e.g. PP-D-12345",
    )

    dispute_status = models.CharField(
        max_length=20,
        choices=DisputeStatus.choices,
        default=DisputeStatus.OPEN,
        db_index=True,
    )

    reason = models.CharField(max_length=100, blank=True, default="")

    amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
    )

    currency = models.CharField(max_length=3, blank=True, default="")

    outcome = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="PayPal dispute_outcome.outcome_code once resolved",
    )

    resolved_at = models.DateTimeField(null=True, blank=True)

    raw_resource = models.JSONField(
        default=dict,
        blank=True,
        help_text="Latest dispute resource received from PayPal",
    )

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"Dispute({self.provider_dispute_id}, {self.dispute_status})"

    @property
    def is_open(self) -> bool:
        return self.dispute_status != DisputeStatus.RESOLVED
