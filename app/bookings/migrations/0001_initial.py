import uuid

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Booking",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "customer_email",
                    models.EmailField(
                        blank=True,
                        default="",
                        help_text="Customer email, used in audit summaries",
                        max_length=254,
                    ),
                ),
                ("start_at", models.DateTimeField(help_text="Rental pickup time")),
                ("end_at", models.DateTimeField(help_text="Rental return time")),
                (
                    "payment_status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("authorized", "Authorized"),
                            ("captured", "Captured"),
                            ("partially_captured", "Partially Captured"),
                            ("refunded", "Refunded"),
                            ("partially_refunded", "Partially Refunded"),
                            ("failed", "Failed"),
                            ("voided", "Voided"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Payment lifecycle (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "contract_status",
                    django_fsm.FSMField(
                        choices=[
                            ("not_required", "Not Required"),
                            ("pending", "Pending"),
                            ("sent", "Sent"),
                            ("signed", "Signed"),
                            ("expired", "Expired"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Contract lifecycle (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "overall_status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending_payment", "Pending Payment"),
                            ("active", "Active"),
                            ("upcoming", "Upcoming"),
                            ("completed", "Completed"),
                            ("cancelled", "Cancelled"),
                            ("disputed", "Disputed"),
                        ],
                        db_index=True,
                        default="pending_payment",
                        help_text="Customer-facing status (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "paypal_order_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="PayPal order id",
                        max_length=64,
                        null=True,
                    ),
                ),
                (
                    "paypal_authorization_id",
                    models.CharField(
                        blank=True,
                        help_text="PayPal authorization id, also the capture idempotency seed",
                        max_length=64,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "paypal_capture_id",
                    models.CharField(
                        blank=True,
                        help_text="PayPal capture id once captured",
                        max_length=64,
                        null=True,
                    ),
                ),
                (
                    "contract_submission_id",
                    models.CharField(
                        blank=True,
                        help_text="DocuSeal submission id",
                        max_length=64,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "signed_contract_url",
                    models.URLField(
                        blank=True,
                        default="",
                        help_text="Signed contract document URL reported by DocuSeal",
                        max_length=1024,
                    ),
                ),
                (
                    "total_price",
                    models.DecimalField(decimal_places=2, help_text="Booking total", max_digits=10),
                ),
                (
                    "currency",
                    models.CharField(
                        default="USD",
                        help_text="ISO 4217 currency code (uppercase, as PayPal reports it)",
                        max_length=3,
                    ),
                ),
                (
                    "authorized_amount",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True),
                ),
                (
                    "captured_amount",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True),
                ),
                (
                    "refunded_amount",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True),
                ),
                (
                    "capture_approved_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Set by an admin when an admin_approval rule gates capture",
                        null=True,
                    ),
                ),
                (
                    "capture_lease_owner",
                    models.CharField(
                        blank=True,
                        help_text="Worker currently capturing this booking",
                        max_length=128,
                        null=True,
                    ),
                ),
                (
                    "capture_lease_expires_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Capture lease expiry; an expired lease may be re-claimed",
                        null=True,
                    ),
                ),
                ("authorized_at", models.DateTimeField(blank=True, null=True)),
                ("captured_at", models.DateTimeField(blank=True, null=True)),
                ("voided_at", models.DateTimeField(blank=True, null=True)),
                ("contract_signed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(blank=True, default=dict, help_text="Arbitrary JSON metadata"),
                ),
                (
                    "capture_approved_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["payment_status", "start_at"],
                        name="bookings_bo_payment_5b1d2e_idx",
                    ),
                    models.Index(
                        fields=["overall_status", "start_at"],
                        name="bookings_bo_overall_9c4a7f_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("total_price__gte", 0)),
                        name="booking_total_price_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="BookingEvent",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        choices=[
                            ("payment_authorized", "Payment Authorized"),
                            ("payment_voided", "Payment Voided"),
                            ("payment_captured", "Payment Captured"),
                            ("payment_capture_denied", "Payment Capture Denied"),
                            ("payment_refunded", "Payment Refunded"),
                            ("capture_pending", "Capture Pending"),
                            ("capture_failed", "Capture Failed"),
                            ("capture_approved", "Capture Approved"),
                            ("contract_viewed", "Contract Viewed"),
                            ("contract_signed", "Contract Signed"),
                            ("contract_declined", "Contract Declined"),
                            ("contract_expired", "Contract Expired"),
                            ("dispute_created", "Dispute Created"),
                            ("dispute_updated", "Dispute Updated"),
                            ("dispute_resolved", "Dispute Resolved"),
                            ("status_overridden", "Status Overridden"),
                            ("webhook_resubmitted", "Webhook Resubmitted"),
                            ("transition_ignored", "Transition Ignored"),
                            ("webhook_unhandled", "Webhook Unhandled"),
                        ],
                        db_index=True,
                        max_length=50,
                    ),
                ),
                (
                    "actor_type",
                    models.CharField(
                        choices=[
                            ("system", "System"),
                            ("webhook_paypal", "PayPal Webhook"),
                            ("webhook_docuseal", "DocuSeal Webhook"),
                            ("admin", "Admin"),
                        ],
                        max_length=20,
                    ),
                ),
                ("actor_id", models.CharField(blank=True, default="", max_length=255)),
                ("summary", models.CharField(max_length=500)),
                ("details", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="events",
                        to="bookings.booking",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(
                        fields=["booking", "created_at"],
                        name="bookings_bo_booking_3e8f21_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="CaptureRule",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                ("name", models.CharField(max_length=100)),
                (
                    "rule_type",
                    models.CharField(
                        choices=[
                            ("contract_signed", "Contract Signed"),
                            ("hours_before_rental", "Hours Before Rental"),
                            ("admin_approval", "Admin Approval"),
                        ],
                        max_length=32,
                    ),
                ),
                (
                    "priority",
                    models.PositiveIntegerField(
                        default=100,
                        help_text="Lower numbers are evaluated first",
                    ),
                ),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                ("config", models.JSONField(blank=True, default=dict)),
                ("description", models.TextField(blank=True, default="")),
            ],
            options={
                "ordering": ["priority", "id"],
            },
        ),
        migrations.CreateModel(
            name="Dispute",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "provider_dispute_id",
                    models.CharField(
                        help_text="PayPal dispute id, e.g. PP-D-12345",
                        max_length=64,
                        unique=True,
                    ),
                ),
                (
                    "dispute_status",
                    models.CharField(
                        choices=[
                            ("open", "Open"),
                            ("under_review", "Under Review"),
                            ("resolved", "Resolved"),
                        ],
                        db_index=True,
                        default="open",
                        max_length=20,
                    ),
                ),
                ("reason", models.CharField(blank=True, default="", max_length=100)),
                (
                    "amount",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True),
                ),
                ("currency", models.CharField(blank=True, default="", max_length=3)),
                (
                    "outcome",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="PayPal dispute_outcome.outcome_code once resolved",
                        max_length=100,
                    ),
                ),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                (
                    "raw_resource",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Latest dispute resource received from PayPal",
                    ),
                ),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="disputes",
                        to="bookings.booking",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="ProcessedWebhook",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "provider",
                    models.CharField(
                        choices=[
                            ("paypal", "PayPal"),
                            ("docuseal", "DocuSeal"),
                            ("system-capture", "System Capture"),
                        ],
                        max_length=32,
                    ),
                ),
                ("event_id", models.CharField(max_length=255)),
                ("event_type", models.CharField(blank=True, default="", max_length=100)),
                ("booking_id", models.UUIDField(blank=True, db_index=True, null=True)),
                ("result", models.JSONField(blank=True, default=dict)),
                ("processed_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["-processed_at"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("provider", "event_id"),
                        name="processed_webhook_unique_event",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "webhook_type",
                    models.CharField(
                        choices=[
                            ("paypal", "PayPal"),
                            ("docuseal", "DocuSeal"),
                            ("system-capture", "System Capture"),
                        ],
                        help_text="Provider that sent the event",
                        max_length=32,
                    ),
                ),
                (
                    "webhook_id",
                    models.CharField(help_text="Provider-assigned event id", max_length=255),
                ),
                (
                    "event_type",
                    models.CharField(blank=True, db_index=True, default="", max_length=100),
                ),
                ("payload", models.JSONField(help_text="Event payload as received")),
                (
                    "headers",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Provider headers relevant to the event",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("succeeded", "Succeeded"),
                            ("dead_letter", "Dead Letter"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("attempt_count", models.PositiveIntegerField(default=0)),
                ("max_attempts", models.PositiveIntegerField(default=5)),
                (
                    "next_retry_at",
                    models.DateTimeField(
                        default=django.utils.timezone.now,
                        help_text="Earliest time the next attempt may run",
                    ),
                ),
                ("last_attempt_at", models.DateTimeField(blank=True, null=True)),
                ("last_error", models.TextField(blank=True, default="")),
                ("error_details", models.JSONField(blank=True, default=dict)),
                ("succeeded_at", models.DateTimeField(blank=True, null=True)),
                ("dead_lettered_at", models.DateTimeField(blank=True, null=True)),
                ("lease_owner", models.CharField(blank=True, max_length=128, null=True)),
                ("lease_expires_at", models.DateTimeField(blank=True, null=True)),
                ("acknowledged_at", models.DateTimeField(blank=True, null=True)),
                ("acknowledgement_note", models.TextField(blank=True, default="")),
                (
                    "acknowledged_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "booking",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="webhook_retries",
                        to="bookings.booking",
                    ),
                ),
            ],
            options={
                "verbose_name": "Webhook Retry",
                "verbose_name_plural": "Webhook Retries",
                "ordering": ["next_retry_at", "created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "next_retry_at"],
                        name="bookings_we_status_7d2c90_idx",
                    ),
                    models.Index(
                        fields=["webhook_type", "status"],
                        name="bookings_we_webhook_4a1b6e_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("webhook_type", "webhook_id"),
                        name="webhook_event_unique_per_provider",
                    ),
                ],
            },
        ),
    ]
