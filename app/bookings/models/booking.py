"""
Booking model: the aggregate root of payment/contract orchestration.

A booking carries three independent status fields, each managed by
django-fsm:

    payment_status   - PayPal authorization/capture lifecycle
    contract_status  - DocuSeal e-signature lifecycle
    overall_status   - customer-facing status derived from the other two

All three are protected FSM fields. They change only through the
transition methods below, which are invoked by
bookings.services.state_machine.BookingStateMachine together with an
audit event.

Usage:
    from bookings.models import Booking

    booking = Booking.objects.select_for_update().get(pk=booking_id)
    if can_proceed(booking.capture_full):
        booking.capture_full(capture_id="3C679366", amount=Decimal("120.00"))
        booking.save()
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import F
from django.utils import timezone

from django_fsm import RETURN_VALUE, FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from bookings.state_machines import ContractStatus, OverallStatus, PaymentStatus

# Prefix used in PayPal invoice ids, e.g. "BOOKING-<uuid>"
INVOICE_PREFIX = "BOOKING"


def _is_confirmable(booking: Booking) -> bool:
    """A booking may become upcoming/active once signed and paid."""
    return booking.contract_status == ContractStatus.SIGNED and booking.payment_status in (
        PaymentStatus.AUTHORIZED,
        PaymentStatus.CAPTURED,
    )


class Booking(UUIDPrimaryKeyMixin, BaseModel):
    """
    A car rental booking.

    Created by the booking flow (outside this app) in
    payment_status=pending or authorized. Everything after that is driven
    by webhooks, the capture sweep, and admin actions.

    Fields:
        payment_status/contract_status/overall_status: FSM-managed states
        paypal_*: PayPal correlation ids
        contract_submission_id: DocuSeal submission id
        total_price/currency: Booking price
        authorized_amount/captured_amount/refunded_amount: Money movements
        start_at/end_at: Rental window, read by hours_before_rental rules
        capture_approved_*: Admin approval for gated capture
        capture_lease_*: Claim held by a capture worker
        version: Optimistic locking version
    """

    # ==========================================================================
    # Customer & Rental Window
    # ==========================================================================

    customer_email = models.EmailField(
        blank=True,
        default="",
        help_text="Customer email, used in audit summaries",
    )

    start_at = models.DateTimeField(
        help_text="Rental pickup time",
    )

    end_at = models.DateTimeField(
        help_text="Rental return time",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    payment_status = FSMField(
        default=PaymentStatus.PENDING,
        choices=PaymentStatus.choices,
        db_index=True,
        protected=True,
        help_text="Payment lifecycle (managed by FSM)",
    )

    contract_status = FSMField(
        default=ContractStatus.PENDING,
        choices=ContractStatus.choices,
        db_index=True,
        protected=True,
        help_text="Contract lifecycle (managed by FSM)",
    )

    overall_status = FSMField(
        default=OverallStatus.PENDING_PAYMENT,
        choices=OverallStatus.choices,
        db_index=True,
        protected=True,
        help_text="Customer-facing status (managed by FSM)",
    )

    # ==========================================================================
    # Provider Correlation
    # ==========================================================================

    paypal_order_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        db_index=True,
        help_text="PayPal order id",
    )

    paypal_authorization_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        unique=True,
        help_text="PayPal authorization id, also the capture idempotency seed",
    )

    paypal_capture_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="PayPal capture id once captured",
    )

    contract_submission_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        unique=True,
        help_text="DocuSeal submission id",
    )

    signed_contract_url = models.URLField(
        max_length=1024,
        blank=True,
        default="",
        help_text="Signed contract document URL reported by DocuSeal",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    total_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Booking total",
    )

    currency = models.CharField(
        max_length=3,
        default="USD",
        help_text="ISO 4217 currency code (uppercase, as PayPal reports it)",
    )

    authorized_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
    )

    captured_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
    )

    refunded_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
    )

    # ==========================================================================
    # Capture Gating & Lease
    # ==========================================================================

    capture_approved_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Set by an admin when an admin_approval rule gates capture",
    )

    capture_approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    capture_lease_owner = models.CharField(
        max_length=128,
        null=True,
        blank=True,
        help_text="Worker currently capturing this booking",
    )

    capture_lease_expires_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Capture lease expiry; an expired lease may be re-claimed",
    )

    # ==========================================================================
    # Timestamps & Concurrency
    # ==========================================================================

    authorized_at = models.DateTimeField(null=True, blank=True)
    captured_at = models.DateTimeField(null=True, blank=True)
    voided_at = models.DateTimeField(null=True, blank=True)
    contract_signed_at = models.DateTimeField(null=True, blank=True)

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata",
    )

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["payment_status", "start_at"], name="bookings_bo_payment_5b1d2e_idx"),
            models.Index(fields=["overall_status", "start_at"], name="bookings_bo_overall_9c4a7f_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(total_price__gte=0),
                name="booking_total_price_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"Booking({self.id}, payment={self.payment_status}, "
            f"contract={self.contract_status}, overall={self.overall_status})"
        )

    def save(self, *args, **kwargs):
        """Save with version auto-increment for optimistic locking."""
        is_update = self.pk and not self._state.adding and not kwargs.get(
            "force_insert", False
        )
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    @property
    def invoice_reference(self) -> str:
        """Invoice id sent to PayPal so webhooks can be correlated back."""
        return f"{INVOICE_PREFIX}-{self.id}"

    @property
    def has_active_capture_lease(self) -> bool:
        return (
            self.capture_lease_expires_at is not None
            and self.capture_lease_expires_at > timezone.now()
        )

    # ==========================================================================
    # Payment Transitions
    # ==========================================================================

    @transition(
        field=payment_status,
        source=[PaymentStatus.PENDING, PaymentStatus.FAILED],
        target=PaymentStatus.AUTHORIZED,
    )
    def authorize(self, authorization_id: str | None, amount: Decimal | None):
        """
        Record a PayPal authorization hold.

        Transition: PENDING/FAILED -> AUTHORIZED
        """
        if authorization_id:
            self.paypal_authorization_id = authorization_id
        if amount is not None:
            self.authorized_amount = amount
        self.authorized_at = timezone.now()

    @transition(
        field=payment_status,
        source=[PaymentStatus.PENDING, PaymentStatus.AUTHORIZED],
        target=PaymentStatus.VOIDED,
    )
    def void(self):
        """
        Authorization voided before capture.

        Transition: PENDING/AUTHORIZED -> VOIDED
        """
        self.voided_at = timezone.now()

    @transition(
        field=payment_status,
        source=[PaymentStatus.AUTHORIZED, PaymentStatus.PARTIALLY_CAPTURED],
        target=PaymentStatus.CAPTURED,
    )
    def capture_full(self, capture_id: str | None, amount: Decimal | None):
        """
        Funds captured in full.

        Transition: AUTHORIZED/PARTIALLY_CAPTURED -> CAPTURED
        """
        self._record_capture(capture_id, amount)

    @transition(
        field=payment_status,
        source=[PaymentStatus.AUTHORIZED, PaymentStatus.PARTIALLY_CAPTURED],
        target=PaymentStatus.PARTIALLY_CAPTURED,
    )
    def capture_partial(self, capture_id: str | None, amount: Decimal | None):
        """
        Part of the authorized amount captured.

        Transition: AUTHORIZED/PARTIALLY_CAPTURED -> PARTIALLY_CAPTURED
        """
        self._record_capture(capture_id, amount)

    @transition(
        field=payment_status,
        source=[
            PaymentStatus.PENDING,
            PaymentStatus.AUTHORIZED,
            PaymentStatus.PARTIALLY_CAPTURED,
        ],
        target=PaymentStatus.FAILED,
    )
    def deny_capture(self):
        """
        Capture denied by PayPal.

        Transition: PENDING/AUTHORIZED/PARTIALLY_CAPTURED -> FAILED
        """

    @transition(
        field=payment_status,
        source=[
            PaymentStatus.CAPTURED,
            PaymentStatus.PARTIALLY_CAPTURED,
            PaymentStatus.PARTIALLY_REFUNDED,
        ],
        target=PaymentStatus.REFUNDED,
    )
    def refund_full(self, amount: Decimal | None):
        """Transition: CAPTURED/PARTIALLY_CAPTURED/PARTIALLY_REFUNDED -> REFUNDED"""
        self._record_refund(amount)

    @transition(
        field=payment_status,
        source=[
            PaymentStatus.CAPTURED,
            PaymentStatus.PARTIALLY_CAPTURED,
            PaymentStatus.PARTIALLY_REFUNDED,
        ],
        target=PaymentStatus.PARTIALLY_REFUNDED,
    )
    def refund_partial(self, amount: Decimal | None):
        """Transition: CAPTURED/PARTIALLY_CAPTURED/PARTIALLY_REFUNDED -> PARTIALLY_REFUNDED"""
        self._record_refund(amount)

    # ==========================================================================
    # Contract Transitions
    # ==========================================================================

    @transition(
        field=contract_status,
        source=ContractStatus.PENDING,
        target=ContractStatus.SENT,
    )
    def mark_contract_sent(self):
        """Transition: PENDING -> SENT (customer opened the form)"""

    @transition(
        field=contract_status,
        source=[ContractStatus.PENDING, ContractStatus.SENT],
        target=ContractStatus.SIGNED,
    )
    def sign_contract(self, signed_at=None, document_url: str | None = None):
        """
        Contract completed in DocuSeal.

        Transition: PENDING/SENT -> SIGNED
        """
        self.contract_signed_at = signed_at or timezone.now()
        if document_url:
            self.signed_contract_url = document_url

    @transition(
        field=contract_status,
        source=[ContractStatus.PENDING, ContractStatus.SENT],
        target=ContractStatus.EXPIRED,
    )
    def expire_contract(self):
        """Transition: PENDING/SENT -> EXPIRED"""

    # ==========================================================================
    # Overall Transitions
    # ==========================================================================

    @transition(
        field=overall_status,
        source=OverallStatus.PENDING_PAYMENT,
        target=OverallStatus.UPCOMING,
        conditions=[_is_confirmable],
    )
    def confirm(self):
        """
        Booking confirmed: contract signed and payment secured.

        Transition: PENDING_PAYMENT -> UPCOMING
        """

    @transition(
        field=overall_status,
        source="*",
        target=OverallStatus.DISPUTED,
    )
    def open_dispute(self):
        """Transition: * -> DISPUTED"""

    @transition(
        field=overall_status,
        source="*",
        target=RETURN_VALUE(*OverallStatus.values),
    )
    def force_overall_status(self, status: str) -> str:
        """
        Admin override, exempt from the signed-and-paid requirement.

        Transition: * -> status
        """
        return status

    # ==========================================================================
    # Helpers
    # ==========================================================================

    def _record_capture(self, capture_id: str | None, amount: Decimal | None) -> None:
        if capture_id:
            self.paypal_capture_id = capture_id
        if amount is not None:
            self.captured_amount = (self.captured_amount or Decimal("0")) + amount
        self.captured_at = timezone.now()

    def _record_refund(self, amount: Decimal | None) -> None:
        if amount is not None:
            self.refunded_amount = (self.refunded_amount or Decimal("0")) + amount
