"""
Bookings admin configuration.

Status fields are FSM-protected and read-only here; status changes go
through the state machine (admin API) so they are audited.
"""

from django.contrib import admin, messages

from bookings.models import (
    Booking,
    BookingEvent,
    CaptureRule,
    Dispute,
    ProcessedWebhook,
    WebhookEvent,
)
from bookings.state_machines import WebhookEventStatus


class BookingEventInline(admin.TabularInline):
    model = BookingEvent
    extra = 0
    can_delete = False
    fields = ["created_at", "event_type", "actor_type", "actor_id", "summary"]
    readonly_fields = fields
    ordering = ["-created_at"]

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "customer_email",
        "start_at",
        "payment_status",
        "contract_status",
        "overall_status",
        "total_price",
        "currency",
    ]
    list_filter = ["payment_status", "contract_status", "overall_status", "start_at"]
    search_fields = [
        "id",
        "customer_email",
        "paypal_order_id",
        "paypal_authorization_id",
        "paypal_capture_id",
        "contract_submission_id",
    ]
    readonly_fields = [
        "id",
        "payment_status",
        "contract_status",
        "overall_status",
        "authorized_amount",
        "captured_amount",
        "refunded_amount",
        "authorized_at",
        "captured_at",
        "voided_at",
        "contract_signed_at",
        "capture_approved_at",
        "capture_approved_by",
        "capture_lease_owner",
        "capture_lease_expires_at",
        "version",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "start_at"
    ordering = ["-start_at"]
    inlines = [BookingEventInline]

    fieldsets = (
        (None, {"fields": ("id", "customer_email", "start_at", "end_at")}),
        ("Status", {"fields": ("payment_status", "contract_status", "overall_status")}),
        (
            "Money",
            {
                "fields": (
                    "total_price",
                    "currency",
                    "authorized_amount",
                    "captured_amount",
                    "refunded_amount",
                ),
            },
        ),
        (
            "PayPal",
            {
                "fields": (
                    "paypal_order_id",
                    "paypal_authorization_id",
                    "paypal_capture_id",
                    "authorized_at",
                    "captured_at",
                    "voided_at",
                ),
            },
        ),
        (
            "Contract",
            {"fields": ("contract_submission_id", "signed_contract_url", "contract_signed_at")},
        ),
        (
            "Capture",
            {
                "fields": (
                    "capture_approved_at",
                    "capture_approved_by",
                    "capture_lease_owner",
                    "capture_lease_expires_at",
                ),
                "classes": ("collapse",),
            },
        ),
        ("Metadata", {"fields": ("metadata", "version"), "classes": ("collapse",)}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )


@admin.register(BookingEvent)
class BookingEventAdmin(admin.ModelAdmin):
    """Append-only audit log."""

    list_display = ["created_at", "booking", "event_type", "actor_type", "summary"]
    list_filter = ["event_type", "actor_type", "created_at"]
    search_fields = ["booking__id", "actor_id", "summary"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def get_readonly_fields(self, request, obj=None):
        return [f.name for f in self.model._meta.fields]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """Retry queue and dead letter."""

    list_display = [
        "id",
        "webhook_type",
        "webhook_id",
        "event_type",
        "status",
        "attempt_count",
        "next_retry_at",
        "acknowledged_at",
    ]
    list_filter = ["webhook_type", "status", "created_at"]
    search_fields = ["id", "webhook_id", "event_type", "booking__id"]
    readonly_fields = [
        "id",
        "webhook_type",
        "webhook_id",
        "event_type",
        "payload",
        "headers",
        "booking",
        "status",
        "attempt_count",
        "last_attempt_at",
        "last_error",
        "error_details",
        "succeeded_at",
        "dead_lettered_at",
        "lease_owner",
        "lease_expires_at",
        "acknowledged_at",
        "acknowledged_by",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["resubmit_selected"]

    @admin.action(description="Resubmit selected dead-lettered rows")
    def resubmit_selected(self, request, queryset):
        from bookings.services import RetryManager

        resubmitted = 0
        for record in queryset.filter(status=WebhookEventStatus.DEAD_LETTER):
            if RetryManager.resubmit_dead_letter(record.id, request.user):
                resubmitted += 1
        self.message_user(request, f"Resubmitted {resubmitted} rows", messages.SUCCESS)

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(ProcessedWebhook)
class ProcessedWebhookAdmin(admin.ModelAdmin):
    list_display = ["provider", "event_id", "event_type", "booking_id", "processed_at"]
    list_filter = ["provider", "processed_at"]
    search_fields = ["event_id", "booking_id"]
    ordering = ["-processed_at"]

    def get_readonly_fields(self, request, obj=None):
        return [f.name for f in self.model._meta.fields]

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(Dispute)
class DisputeAdmin(admin.ModelAdmin):
    list_display = ["provider_dispute_id", "booking", "dispute_status", "amount", "currency", "created_at"]
    list_filter = ["dispute_status", "created_at"]
    search_fields = ["provider_dispute_id", "booking__id"]
    readonly_fields = ["id", "booking", "provider_dispute_id", "raw_resource", "created_at", "updated_at"]
    ordering = ["-created_at"]


@admin.register(CaptureRule)
class CaptureRuleAdmin(admin.ModelAdmin):
    list_display = ["name", "rule_type", "priority", "is_active", "config"]
    list_filter = ["rule_type", "is_active"]
    list_editable = ["priority", "is_active"]
    ordering = ["priority", "id"]
