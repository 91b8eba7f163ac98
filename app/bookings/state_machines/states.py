"""
State enums for booking models.

These are Django TextChoices used by django-fsm fields and plain
status columns, so they double as database values and admin labels.

State Machines Overview:

Booking.payment_status:
    pending → authorized → captured → refunded / partially_refunded
    authorized → partially_captured → captured
    pending/authorized → voided
    pending/authorized/partially_captured → failed
    failed → authorized (re-authorization)

Booking.contract_status:
    not_required (no signature needed)
    pending → sent → signed
    pending/sent → expired

Booking.overall_status:
    pending_payment → upcoming → active → completed
    * → disputed (dispute webhook)
    * → any (admin override)

WebhookEvent.status (retry record):
    pending → processing → succeeded
    pending → processing → pending (rescheduled with backoff)
    pending → processing → dead_letter (max attempts reached)
    dead_letter → pending (manual resubmit)
"""

from django.db import models


class PaymentStatus(models.TextChoices):
    """
    Payment lifecycle of a booking, driven by PayPal events.

    CAPTURED is only reachable from AUTHORIZED or PARTIALLY_CAPTURED.
    """

    PENDING = "pending", "Pending"
    AUTHORIZED = "authorized", "Authorized"
    CAPTURED = "captured", "Captured"
    PARTIALLY_CAPTURED = "partially_captured", "Partially Captured"
    REFUNDED = "refunded", "Refunded"
    PARTIALLY_REFUNDED = "partially_refunded", "Partially Refunded"
    FAILED = "failed", "Failed"
    VOIDED = "voided", "Voided"


class ContractStatus(models.TextChoices):
    """Rental contract lifecycle, driven by DocuSeal events."""

    NOT_REQUIRED = "not_required", "Not Required"
    PENDING = "pending", "Pending"
    SENT = "sent", "Sent"
    SIGNED = "signed", "Signed"
    EXPIRED = "expired", "Expired"


class OverallStatus(models.TextChoices):
    """
    Customer-facing booking status.

    ACTIVE and UPCOMING require a signed contract and an authorized or
    captured payment, unless forced by an admin.
    """

    PENDING_PAYMENT = "pending_payment", "Pending Payment"
    ACTIVE = "active", "Active"
    UPCOMING = "upcoming", "Upcoming"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"
    DISPUTED = "disputed", "Disputed"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for a retry record.

    SUCCEEDED and DEAD_LETTER are terminal for automatic processing.
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    SUCCEEDED = "succeeded", "Succeeded"
    DEAD_LETTER = "dead_letter", "Dead Letter"


class WebhookProvider(models.TextChoices):
    """
    Sources of retryable work.

    SYSTEM_CAPTURE tags capture attempts issued by the capture sweep so
    they share the dead-letter queue with provider webhooks.
    """

    PAYPAL = "paypal", "PayPal"
    DOCUSEAL = "docuseal", "DocuSeal"
    SYSTEM_CAPTURE = "system-capture", "System Capture"


class ActorType(models.TextChoices):
    """Who caused a BookingEvent."""

    SYSTEM = "system", "System"
    WEBHOOK_PAYPAL = "webhook_paypal", "PayPal Webhook"
    WEBHOOK_DOCUSEAL = "webhook_docuseal", "DocuSeal Webhook"
    ADMIN = "admin", "Admin"


class BookingEventType(models.TextChoices):
    """Audit log entry types."""

    PAYMENT_AUTHORIZED = "payment_authorized", "Payment Authorized"
    PAYMENT_VOIDED = "payment_voided", "Payment Voided"
    PAYMENT_CAPTURED = "payment_captured", "Payment Captured"
    PAYMENT_CAPTURE_DENIED = "payment_capture_denied", "Payment Capture Denied"
    PAYMENT_REFUNDED = "payment_refunded", "Payment Refunded"
    CAPTURE_PENDING = "capture_pending", "Capture Pending"
    CAPTURE_FAILED = "capture_failed", "Capture Failed"
    CAPTURE_APPROVED = "capture_approved", "Capture Approved"
    CONTRACT_VIEWED = "contract_viewed", "Contract Viewed"
    CONTRACT_SIGNED = "contract_signed", "Contract Signed"
    CONTRACT_DECLINED = "contract_declined", "Contract Declined"
    CONTRACT_EXPIRED = "contract_expired", "Contract Expired"
    DISPUTE_CREATED = "dispute_created", "Dispute Created"
    DISPUTE_UPDATED = "dispute_updated", "Dispute Updated"
    DISPUTE_RESOLVED = "dispute_resolved", "Dispute Resolved"
    STATUS_OVERRIDDEN = "status_overridden", "Status Overridden"
    WEBHOOK_RESUBMITTED = "webhook_resubmitted", "Webhook Resubmitted"
    TRANSITION_IGNORED = "transition_ignored", "Transition Ignored"
    WEBHOOK_UNHANDLED = "webhook_unhandled", "Webhook Unhandled"


class DisputeStatus(models.TextChoices):
    OPEN = "open", "Open"
    UNDER_REVIEW = "under_review", "Under Review"
    RESOLVED = "resolved", "Resolved"


class CaptureRuleType(models.TextChoices):
    """
    Capture rule kinds.

    ADMIN_APPROVAL is a gate rather than a trigger: while active, no
    booking is captured automatically until an admin approves it.
    """

    CONTRACT_SIGNED = "contract_signed", "Contract Signed"
    HOURS_BEFORE_RENTAL = "hours_before_rental", "Hours Before Rental"
    ADMIN_APPROVAL = "admin_approval", "Admin Approval"


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
