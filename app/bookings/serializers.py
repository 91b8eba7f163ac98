"""
Serializers for the bookings admin API.

Read serializers:
    BookingSerializer: Booking status summary
    BookingEventSerializer: Audit timeline entry
    WebhookEventSerializer: Retry queue / dead-letter row

Write serializers:
    OverrideStatusSerializer: Forced overall_status
    AcknowledgeDeadLetterSerializer: Optional acknowledgement note
"""

from __future__ import annotations

from rest_framework import serializers

from bookings.models import Booking, BookingEvent, WebhookEvent
from bookings.state_machines import OverallStatus


class BookingSerializer(serializers.ModelSerializer):
    invoice_reference = serializers.CharField(read_only=True)

    class Meta:
        model = Booking
        fields = [
            "id",
            "customer_email",
            "start_at",
            "end_at",
            "payment_status",
            "contract_status",
            "overall_status",
            "total_price",
            "currency",
            "authorized_amount",
            "captured_amount",
            "refunded_amount",
            "paypal_order_id",
            "paypal_authorization_id",
            "paypal_capture_id",
            "contract_submission_id",
            "signed_contract_url",
            "capture_approved_at",
            "invoice_reference",
            "version",
            "updated_at",
        ]
        read_only_fields = fields


class BookingEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = BookingEvent
        fields = [
            "id",
            "booking",
            "event_type",
            "actor_type",
            "actor_id",
            "summary",
            "details",
            "created_at",
        ]
        read_only_fields = fields


class WebhookEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = WebhookEvent
        fields = [
            "id",
            "webhook_type",
            "webhook_id",
            "event_type",
            "booking",
            "status",
            "attempt_count",
            "max_attempts",
            "next_retry_at",
            "last_attempt_at",
            "last_error",
            "error_details",
            "dead_lettered_at",
            "acknowledged_at",
            "acknowledged_by",
            "acknowledgement_note",
            "created_at",
        ]
        read_only_fields = fields


class OverrideStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=OverallStatus.choices)
    reason = serializers.CharField(max_length=500, allow_blank=True, required=False, default="")


class AcknowledgeDeadLetterSerializer(serializers.Serializer):
    note = serializers.CharField(allow_blank=True, required=False, default="")
