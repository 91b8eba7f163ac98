"""
CaptureRule model: configurable conditions for capturing authorized payments.

Rules are managed in the Django admin and only read by
bookings.workers.capture_evaluator.
"""

from __future__ import annotations

from django.db import models

from core.models import BaseModel

from bookings.state_machines import CaptureRuleType

DEFAULT_HOURS_BEFORE_RENTAL = 24


class ActiveCaptureRuleManager(models.Manager):
    def get_queryset(self):
        return super().get_queryset().filter(is_active=True).order_by("priority", "id")


class CaptureRule(BaseModel):
    """
    A single capture rule.

    Fields:
        name: Admin label
        rule_type: contract_signed, hours_before_rental, or admin_approval
        priority: Lower numbers are evaluated first
        is_active: Inactive rules are ignored
        config: Rule parameters, e.g. {"hours": 48} for hours_before_rental
    """

    name = models.CharField(max_length=100)

    rule_type = models.CharField(
        max_length=32,
        choices=CaptureRuleType.choices,
    )

    priority = models.PositiveIntegerField(
        default=100,
        help_text="Lower numbers are evaluated first",
    )

    is_active = models.BooleanField(default=True, db_index=True)

    config = models.JSONField(default=dict, blank=True)

    description = models.TextField(blank=True, default="")

    objects = models.Manager()
    active = ActiveCaptureRuleManager()

    class Meta:
        ordering = ["priority", "id"]

    def __str__(self) -> str:
        state = "active" if self.is_active else "inactive"
        return f"{self.name} ({self.rule_type}, p{self.priority}, {state})"

    @property
    def is_gate(self) -> bool:
        return self.rule_type == CaptureRuleType.ADMIN_APPROVAL

    @property
    def hours(self) -> int:
        """Lead time for hours_before_rental rules."""
        try:
            return int(self.config.get("hours", DEFAULT_HOURS_BEFORE_RENTAL))
        except (TypeError, ValueError, AttributeError):
            return DEFAULT_HOURS_BEFORE_RENTAL
