"""
DRF views for the bookings app.

Endpoints:
    Scheduler triggers (Authorization: Bearer <CRON_SECRET>):
        POST /api/v1/bookings/cron/process-webhook-retries/
        POST /api/v1/bookings/cron/process-payment-captures/

    Admin API (staff users, JWT or session auth):
        GET  /api/v1/bookings/admin/bookings/{id}/
        POST /api/v1/bookings/admin/bookings/{id}/approve-capture/
        POST /api/v1/bookings/admin/bookings/{id}/capture/
        POST /api/v1/bookings/admin/bookings/{id}/override-status/
        POST /api/v1/bookings/admin/bookings/{id}/sync-contract/
        GET  /api/v1/bookings/admin/bookings/{id}/events/
        GET  /api/v1/bookings/admin/webhooks/
        GET  /api/v1/bookings/admin/webhooks/health/
        GET  /api/v1/bookings/admin/webhooks/dead-letter/
        POST /api/v1/bookings/admin/webhooks/{id}/resubmit/
        POST /api/v1/bookings/admin/webhooks/{id}/acknowledge/

Webhook endpoints live in bookings.webhooks.views.
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import extend_schema, extend_schema_view
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from bookings.models import Booking, WebhookEvent
from bookings.permissions import HasCronSecret
from bookings.serializers import (
    AcknowledgeDeadLetterSerializer,
    BookingEventSerializer,
    BookingSerializer,
    OverrideStatusSerializer,
    WebhookEventSerializer,
)
from bookings.services import AuditLog, RetryManager
from bookings.services.booking_admin import BookingAdminService
from bookings.state_machines import WebhookEventStatus
from bookings.workers import run_capture_sweep, run_retry_sweep

logger = logging.getLogger(__name__)

# ServiceResult error codes that map to something other than 409
ERROR_STATUS_CODES = {
    "BOOKING_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "NO_CONTRACT_SUBMISSION": status.HTTP_400_BAD_REQUEST,
    "PROVIDER_UNAVAILABLE": status.HTTP_502_BAD_GATEWAY,
    "PROVIDER_TIMEOUT": status.HTTP_502_BAD_GATEWAY,
    "CIRCUIT_OPEN": status.HTTP_502_BAD_GATEWAY,
    "PROVIDER_REQUEST_REJECTED": status.HTTP_502_BAD_GATEWAY,
    "PROVIDER_NOT_CONFIGURED": status.HTTP_502_BAD_GATEWAY,
    "PROVIDER_AUTH_FAILED": status.HTTP_502_BAD_GATEWAY,
}


def _error_response(result) -> Response:
    return Response(
        result.to_response(),
        status=ERROR_STATUS_CODES.get(result.error_code, status.HTTP_409_CONFLICT),
    )


def _outcome_response(result) -> Response:
    if not result:
        return _error_response(result)
    outcome = result.data
    return Response(
        {
            "success": True,
            "data": {
                "booking": BookingSerializer(outcome.booking).data,
                "event": BookingEventSerializer(outcome.event).data,
            },
        }
    )


# =============================================================================
# Scheduler Triggers
# =============================================================================


class CronProcessWebhookRetriesView(APIView):
    """Run one retry sweep synchronously and return its summary."""

    authentication_classes: list = []
    permission_classes = [HasCronSecret]

    @extend_schema(
        operation_id="cron_process_webhook_retries",
        summary="Process due webhook retries",
        tags=["Bookings - Cron"],
    )
    def post(self, request):
        summary = run_retry_sweep()
        return Response({"success": True, "data": summary})


class CronProcessPaymentCapturesView(APIView):
    """Run one capture sweep synchronously and return its summary."""

    authentication_classes: list = []
    permission_classes = [HasCronSecret]

    @extend_schema(
        operation_id="cron_process_payment_captures",
        summary="Evaluate capture rules and capture eligible bookings",
        tags=["Bookings - Cron"],
    )
    def post(self, request):
        summary = run_capture_sweep()
        return Response({"success": True, "data": summary})


# =============================================================================
# Admin: Bookings
# =============================================================================


@extend_schema_view(
    retrieve=extend_schema(
        operation_id="admin_get_booking",
        summary="Get booking status",
        tags=["Bookings - Admin"],
    ),
)
class BookingAdminViewSet(mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = Booking.objects.all()
    serializer_class = BookingSerializer
    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="admin_approve_capture",
        summary="Approve capture for a booking",
        tags=["Bookings - Admin"],
    )
    @action(detail=True, methods=["post"], url_path="approve-capture")
    def approve_capture(self, request, pk=None):
        booking = self.get_object()
        return _outcome_response(BookingAdminService.approve_capture(booking.id, request.user))

    @extend_schema(
        operation_id="admin_capture_booking",
        summary="Queue an immediate capture",
        tags=["Bookings - Admin"],
    )
    @action(detail=True, methods=["post"])
    def capture(self, request, pk=None):
        booking = self.get_object()
        result = BookingAdminService.request_capture(booking.id, request.user)
        if not result:
            return _error_response(result)
        return Response(result.to_response(), status=status.HTTP_202_ACCEPTED)

    @extend_schema(
        operation_id="admin_override_status",
        summary="Force a booking's overall status",
        request=OverrideStatusSerializer,
        tags=["Bookings - Admin"],
    )
    @action(detail=True, methods=["post"], url_path="override-status")
    def override_status(self, request, pk=None):
        booking = self.get_object()
        serializer = OverrideStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return _outcome_response(
            BookingAdminService.override_status(
                booking.id,
                request.user,
                serializer.validated_data["status"],
                reason=serializer.validated_data["reason"],
            )
        )

    @extend_schema(
        operation_id="admin_sync_contract",
        summary="Reconcile contract status from DocuSeal",
        tags=["Bookings - Admin"],
    )
    @action(detail=True, methods=["post"], url_path="sync-contract")
    def sync_contract(self, request, pk=None):
        booking = self.get_object()
        result = BookingAdminService.sync_contract(booking.id, request.user)
        if not result:
            return _error_response(result)
        return Response(result.to_response())

    @extend_schema(
        operation_id="admin_booking_events",
        summary="Booking audit timeline",
        responses=BookingEventSerializer(many=True),
        tags=["Bookings - Admin"],
    )
    @action(detail=True, methods=["get"])
    def events(self, request, pk=None):
        booking = self.get_object()
        events = AuditLog.timeline(booking.id)
        return Response(BookingEventSerializer(events, many=True).data)


# =============================================================================
# Admin: Webhook Operations
# =============================================================================


@extend_schema_view(
    list=extend_schema(
        operation_id="admin_list_webhook_retries",
        summary="List retry queue rows",
        tags=["Bookings - Webhooks"],
    ),
    retrieve=extend_schema(
        operation_id="admin_get_webhook_retry",
        summary="Get a retry queue row",
        tags=["Bookings - Webhooks"],
    ),
)
class WebhookAdminViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = WebhookEventSerializer
    permission_classes = [IsAdminUser]

    def get_queryset(self):
        queryset = WebhookEvent.objects.all().order_by("-created_at")
        if provider := self.request.query_params.get("provider"):
            queryset = queryset.filter(webhook_type=provider)
        if row_status := self.request.query_params.get("status"):
            queryset = queryset.filter(status=row_status)
        return queryset

    @extend_schema(
        operation_id="admin_webhook_health",
        summary="Retry queue health per provider",
        tags=["Bookings - Webhooks"],
    )
    @action(detail=False, methods=["get"])
    def health(self, request):
        return Response(RetryManager.health_metrics())

    @extend_schema(
        operation_id="admin_webhook_dead_letter",
        summary="List dead-lettered rows",
        tags=["Bookings - Webhooks"],
    )
    @action(detail=False, methods=["get"], url_path="dead-letter")
    def dead_letter(self, request):
        queryset = self.get_queryset().filter(status=WebhookEventStatus.DEAD_LETTER)
        if request.query_params.get("include_acknowledged") != "true":
            queryset = queryset.filter(acknowledged_at__isnull=True)

        page = self.paginate_queryset(queryset)
        if page is not None:
            return self.get_paginated_response(self.get_serializer(page, many=True).data)
        return Response(self.get_serializer(queryset, many=True).data)

    @extend_schema(
        operation_id="admin_webhook_resubmit",
        summary="Resubmit a dead-lettered row",
        tags=["Bookings - Webhooks"],
    )
    @action(detail=True, methods=["post"])
    def resubmit(self, request, pk=None):
        record = self.get_object()
        result = RetryManager.resubmit_dead_letter(record.id, request.user)
        if not result:
            return _error_response(result)
        return Response({"success": True, "data": self.get_serializer(result.data).data})

    @extend_schema(
        operation_id="admin_webhook_acknowledge",
        summary="Acknowledge a dead-lettered row",
        request=AcknowledgeDeadLetterSerializer,
        tags=["Bookings - Webhooks"],
    )
    @action(detail=True, methods=["post"])
    def acknowledge(self, request, pk=None):
        record = self.get_object()
        serializer = AcknowledgeDeadLetterSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = RetryManager.acknowledge_dead_letter(
            record.id,
            request.user,
            note=serializer.validated_data["note"],
        )
        if not result:
            return _error_response(result)
        return Response({"success": True, "data": self.get_serializer(result.data).data})
