"""
Workers for background booking operations.

This module contains Celery tasks run by celery-beat:
- process_webhook_retries: Replays due webhook and capture retries
- evaluate_capture_rules: Captures bookings whose capture rules are met
- release_expired_leases: Reclaims work stranded by crashed sweeps

Usage:
    from bookings.workers import run_capture_sweep, run_retry_sweep

    summary = run_retry_sweep(limit=50)
"""

from bookings.workers.capture_evaluator import (
    CaptureDecision,
    CaptureRuleEvaluator,
    evaluate_capture_rules,
    run_capture_sweep,
)
from bookings.workers.retry_worker import (
    process_webhook_retries,
    release_expired_leases,
    run_retry_sweep,
)

__all__ = [
    # Capture Evaluator
    "CaptureDecision",
    "CaptureRuleEvaluator",
    "evaluate_capture_rules",
    "run_capture_sweep",
    # Retry Worker
    "process_webhook_retries",
    "release_expired_leases",
    "run_retry_sweep",
]
