"""
Payload schemas for inbound webhooks.

Serializers only check the envelope shape the gateway depends on; the
provider resource itself is passed through as a dict.

Usage:
    serializer = PayPalWebhookSerializer(data=payload)
    if not serializer.is_valid():
        return IngestionResult(IngestionOutcome.REJECTED_PAYLOAD, detail=serializer.errors)
"""

from __future__ import annotations

from rest_framework import serializers


class PayPalWebhookSerializer(serializers.Serializer):
    """
    PayPal webhook event envelope.

    Example:
        {
            "id": "WH-2WR32451HC0233532-67976317FL4543714",
            "event_type": "PAYMENT.CAPTURE.COMPLETED",
            "resource_type": "capture",
            "resource": {"id": "42311647XV020574X", "custom_id": "<booking uuid>", ...},
            "create_time": "2024-01-01T12:00:00Z"
        }
    """

    id = serializers.CharField(max_length=255)
    event_type = serializers.CharField(max_length=100)
    resource_type = serializers.CharField(required=False, allow_blank=True, default="")
    resource = serializers.DictField()
    create_time = serializers.CharField(required=False, allow_blank=True, default="")


class DocuSealDataSerializer(serializers.Serializer):
    id = serializers.CharField(max_length=64)
    submission_id = serializers.CharField(max_length=64, required=False, allow_null=True)
    email = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    status = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    completed_at = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    metadata = serializers.DictField(required=False, allow_null=True)


class DocuSealWebhookSerializer(serializers.Serializer):
    """
    DocuSeal webhook envelope.

    DocuSeal sends no event id, so the gateway derives one from
    event_type, data.id and timestamp; all three are stable across
    redeliveries of the same event.

    Example:
        {
            "event_type": "form.completed",
            "timestamp": "2024-01-01T12:00:00.000Z",
            "data": {
                "id": 1,
                "submission_id": 12,
                "email": "customer@example.com",
                "status": "completed",
                "documents": [{"name": "contract", "url": "https://..."}],
                "metadata": {"booking_id": "<booking uuid>"}
            }
        }
    """

    event_type = serializers.CharField(max_length=100)
    timestamp = serializers.CharField(max_length=64)
    data = serializers.DictField()

    def validate_data(self, value):
        inner = DocuSealDataSerializer(data=value)
        inner.is_valid(raise_exception=True)
        return value
