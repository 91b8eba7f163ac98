"""
Capture rule evaluator and capture sweep.

Rules (CaptureRule rows, managed in the admin) decide when an authorized
payment is captured:

- contract_signed: the contract is signed (or not required)
- hours_before_rental: the rental starts within config["hours"] hours
- admin_approval: a gate; while active, bookings without
  capture_approved_at are never captured automatically

Non-gate rules are OR'd by default (first match by priority wins).
CAPTURE_RULE_COMBINATION = "all" requires every non-gate rule to hold.

Tasks:
- evaluate_capture_rules: Periodic sweep (celery-beat, every 15 minutes)

Usage:
    from bookings.workers.capture_evaluator import CaptureRuleEvaluator

    decision = CaptureRuleEvaluator.evaluate(booking, list(CaptureRule.active.all()))
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from celery import shared_task
from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from bookings.models import Booking, CaptureRule
from bookings.services.capture_service import CaptureService, CaptureStatus
from bookings.state_machines import CaptureRuleType, ContractStatus, PaymentStatus
from bookings.workers.pool import run_bounded

if TYPE_CHECKING:
    from datetime import datetime
    from typing import Any

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

COMBINE_ANY = "any"
COMBINE_ALL = "all"

DEFAULT_SWEEP_BATCH_SIZE = 100


# =============================================================================
# Evaluation
# =============================================================================


@dataclass(frozen=True)
class CaptureDecision:
    """
    Whether a booking should be captured now.

    Attributes:
        eligible: True if the booking should be captured
        rule: The rule that matched (None when not eligible or gate-only)
        reason: Short machine-readable reason
    """

    eligible: bool
    rule: CaptureRule | None = None
    reason: str = ""


class CaptureRuleEvaluator:
    """Pure evaluation of capture rules against a booking."""

    @staticmethod
    def combination() -> str:
        value = str(getattr(settings, "CAPTURE_RULE_COMBINATION", COMBINE_ANY)).lower()
        return COMBINE_ALL if value == COMBINE_ALL else COMBINE_ANY

    @staticmethod
    def rule_holds(rule: CaptureRule, booking: Booking, now: datetime) -> bool:
        if rule.rule_type == CaptureRuleType.CONTRACT_SIGNED:
            return booking.contract_status in (ContractStatus.SIGNED, ContractStatus.NOT_REQUIRED)
        if rule.rule_type == CaptureRuleType.HOURS_BEFORE_RENTAL:
            if booking.start_at is None:
                return False
            return now >= booking.start_at - timedelta(hours=rule.hours)
        if rule.rule_type == CaptureRuleType.ADMIN_APPROVAL:
            return booking.capture_approved_at is not None
        return False

    @classmethod
    def evaluate(
        cls,
        booking: Booking,
        rules: list[CaptureRule],
        now: datetime | None = None,
    ) -> CaptureDecision:
        """
        Evaluate active rules against a booking.

        Args:
            booking: Booking to evaluate
            rules: Active rules, ordered by priority
            now: Evaluation time (default: timezone.now())
        """
        now = now or timezone.now()
        rules = sorted((r for r in rules if r.is_active), key=lambda r: (r.priority, r.pk or 0))

        gates = [r for r in rules if r.is_gate]
        conditions = [r for r in rules if not r.is_gate]

        if gates and booking.capture_approved_at is None:
            return CaptureDecision(False, gates[0], "awaiting_admin_approval")

        if not conditions:
            if gates:
                return CaptureDecision(True, gates[0], "admin_approved")
            return CaptureDecision(False, None, "no_active_rules")

        if cls.combination() == COMBINE_ALL:
            for rule in conditions:
                if not cls.rule_holds(rule, booking, now):
                    return CaptureDecision(False, rule, f"{rule.rule_type}_not_met")
            return CaptureDecision(True, conditions[0], "all_rules_met")

        for rule in conditions:
            if cls.rule_holds(rule, booking, now):
                return CaptureDecision(True, rule, rule.rule_type)
        return CaptureDecision(False, None, "no_rule_matched")


# =============================================================================
# Sweep
# =============================================================================


def capturable_bookings(limit: int | None = None):
    """Authorized bookings with an authorization id and no live capture lease."""
    now = timezone.now()
    batch_size = limit or int(getattr(settings, "CAPTURE_SWEEP_BATCH_SIZE", DEFAULT_SWEEP_BATCH_SIZE))
    return (
        Booking.objects.filter(payment_status=PaymentStatus.AUTHORIZED)
        .exclude(paypal_authorization_id__isnull=True)
        .exclude(paypal_authorization_id="")
        .filter(Q(capture_lease_expires_at__isnull=True) | Q(capture_lease_expires_at__lt=now))
        .order_by("start_at", "created_at")[:batch_size]
    )


def run_capture_sweep(limit: int | None = None, now: datetime | None = None) -> dict[str, Any]:
    """
    Evaluate capture rules for authorized bookings and capture eligible ones.

    Returns:
        Dict with processed_count, captured, skipped, failed, and
        per-booking results
    """
    now = now or timezone.now()
    rules = list(CaptureRule.active.all())
    owner = f"capture-sweep-{uuid.uuid4().hex[:8]}"
    summary: dict[str, Any] = {
        "processed_count": 0,
        "captured": 0,
        "skipped": 0,
        "failed": 0,
        "results": [],
    }

    eligible: list[tuple[Booking, CaptureDecision]] = []
    for booking in capturable_bookings(limit):
        summary["processed_count"] += 1
        decision = CaptureRuleEvaluator.evaluate(booking, rules, now)
        if decision.eligible:
            eligible.append((booking, decision))
        else:
            summary["skipped"] += 1
            summary["results"].append(
                {"booking_id": str(booking.id), "status": "skipped", "reason": decision.reason}
            )

    def capture(item: tuple[Booking, CaptureDecision]) -> dict[str, Any]:
        booking, decision = item
        try:
            attempt = CaptureService.capture_booking(
                booking.id,
                reason=decision.reason,
                owner=f"{owner}-{booking.id.hex[:8]}",
            )
            return {**attempt.to_dict(), "reason": decision.reason}
        except Exception as e:
            logger.exception(
                "Capture sweep item failed",
                extra={"booking_id": str(booking.id), "error": str(e)},
            )
            return {"booking_id": str(booking.id), "status": "error", "error": str(e)}

    for result in run_bounded(capture, eligible):
        status = result["status"]
        if status in (CaptureStatus.CAPTURED, CaptureStatus.PENDING, CaptureStatus.ALREADY_CAPTURED):
            summary["captured"] += 1
        elif status in (CaptureStatus.LEASE_UNAVAILABLE, CaptureStatus.NOT_CAPTURABLE):
            summary["skipped"] += 1
        else:
            summary["failed"] += 1
        summary["results"].append(result)

    logger.info(
        f"Capture sweep complete: {summary['captured']} captured, "
        f"{summary['skipped']} skipped, {summary['failed']} failed",
        extra={k: v for k, v in summary.items() if k != "results"},
    )
    return summary


@shared_task(bind=True, acks_late=True)
def evaluate_capture_rules(self) -> dict:
    """Periodic capture sweep (celery-beat)."""
    return run_capture_sweep()
