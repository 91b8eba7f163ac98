"""
Webhook ingestion gateway.

Single pipeline for PayPal and DocuSeal deliveries:

1. Verify signature          -> rejected_signature (401), never retried
2. Parse payload             -> rejected_payload (400), never retried
3. Idempotency check         -> duplicate (200)
4. Resolve booking           -> unresolved (200), recorded in the ledger
5. Normalise and apply       -> processed (200)
6. Any exception in 4-5      -> stored for retry, queued_for_retry (503)

Steps 3-5 live in ``handle`` so the retry worker can replay stored
payloads through the same path without re-verifying them (payloads are
only stored after verification succeeded).

Usage:
    result = WebhookIngestionGateway.receive("paypal", request.body, request.headers)
    return JsonResponse(result.to_response(), status=result.http_status)
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from django.db import transaction

from core.services import BaseService, ServiceResult

from bookings.adapters import PAYPAL_SIGNATURE_HEADERS
from bookings.exceptions import DuplicateDeliveryError
from bookings.models import INVOICE_PREFIX, Booking
from bookings.services import state_machine as sm
from bookings.services.idempotency import IdempotencyLedger
from bookings.services.retry_manager import RetryManager, register_retry_handler
from bookings.services.state_machine import BookingStateMachine, TransitionRequest
from bookings.state_machines import ActorType, WebhookProvider
from bookings.webhooks.serializers import DocuSealWebhookSerializer, PayPalWebhookSerializer
from bookings.webhooks.verifiers import get_header, verify_signature

if TYPE_CHECKING:
    from collections.abc import Mapping
    from typing import Any

    from bookings.models import WebhookEvent


logger = logging.getLogger(__name__)


# =============================================================================
# Event Normalisation
# =============================================================================

PAYPAL_EVENT_MAP = {
    "PAYMENT.AUTHORIZATION.CREATED": sm.PAYMENT_AUTHORIZATION_CREATED,
    "PAYMENT.AUTHORIZATION.VOIDED": sm.PAYMENT_AUTHORIZATION_VOIDED,
    "PAYMENT.CAPTURE.COMPLETED": sm.PAYMENT_CAPTURE_COMPLETED,
    "PAYMENT.CAPTURE.DENIED": sm.PAYMENT_CAPTURE_DENIED,
    "PAYMENT.CAPTURE.PENDING": sm.PAYMENT_CAPTURE_PENDING,
    "PAYMENT.CAPTURE.REFUNDED": sm.PAYMENT_CAPTURE_REFUNDED,
    "CUSTOMER.DISPUTE.CREATED": sm.DISPUTE_CREATED,
    "CUSTOMER.DISPUTE.UPDATED": sm.DISPUTE_UPDATED,
    "CUSTOMER.DISPUTE.RESOLVED": sm.DISPUTE_RESOLVED,
}

DOCUSEAL_EVENT_MAP = {
    "form.viewed": sm.CONTRACT_SUBMISSION_VIEWED,
    "form.started": sm.CONTRACT_SUBMISSION_VIEWED,
    "form.completed": sm.CONTRACT_SUBMISSION_COMPLETED,
    "submission.completed": sm.CONTRACT_SUBMISSION_COMPLETED,
    "form.declined": sm.CONTRACT_SUBMISSION_DECLINED,
    "submission.expired": sm.CONTRACT_SUBMISSION_EXPIRED,
}

ACTOR_BY_PROVIDER = {
    WebhookProvider.PAYPAL: ActorType.WEBHOOK_PAYPAL,
    WebhookProvider.DOCUSEAL: ActorType.WEBHOOK_DOCUSEAL,
}


def normalise_event_type(provider: str, raw_event_type: str) -> str:
    """
    Map a provider event type to the state machine vocabulary.

    Unknown types pass through prefixed with the provider so the state
    machine records them as unhandled.
    """
    mapping = PAYPAL_EVENT_MAP if provider == WebhookProvider.PAYPAL else DOCUSEAL_EVENT_MAP
    return mapping.get(raw_event_type, f"{provider}.{raw_event_type}")


# =============================================================================
# Result Types
# =============================================================================


class IngestionOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    UNRESOLVED = "unresolved"
    REJECTED_SIGNATURE = "rejected_signature"
    REJECTED_PAYLOAD = "rejected_payload"
    QUEUED_FOR_RETRY = "queued_for_retry"


HTTP_STATUS_BY_OUTCOME = {
    IngestionOutcome.PROCESSED: 200,
    IngestionOutcome.DUPLICATE: 200,
    IngestionOutcome.UNRESOLVED: 200,
    IngestionOutcome.REJECTED_SIGNATURE: 401,
    IngestionOutcome.REJECTED_PAYLOAD: 400,
    IngestionOutcome.QUEUED_FOR_RETRY: 503,
}


@dataclass(frozen=True)
class WebhookEnvelope:
    """
    A verified, parsed webhook.

    Attributes:
        provider: "paypal" or "docuseal"
        event_id: Idempotency key for the ledger
        raw_event_type: Provider event type as sent
        event_type: Normalised event type
        data: Event data handed to the state machine
        payload: Full parsed body, stored verbatim for retries
    """

    provider: str
    event_id: str
    raw_event_type: str
    event_type: str
    data: dict[str, Any]
    payload: dict[str, Any]


@dataclass
class IngestionResult:
    outcome: IngestionOutcome
    event_id: str = ""
    event_type: str = ""
    booking_id: uuid.UUID | None = None
    applied: bool | None = None
    retry_record_id: uuid.UUID | None = None
    detail: Any = None

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_OUTCOME[self.outcome]

    @property
    def is_settled(self) -> bool:
        """True when the provider does not need to redeliver."""
        return self.http_status == 200

    def to_response(self) -> dict[str, Any]:
        response: dict[str, Any] = {"outcome": self.outcome.value}
        if self.event_id:
            response["event_id"] = self.event_id
        if self.booking_id:
            response["booking_id"] = str(self.booking_id)
        if self.applied is not None:
            response["applied"] = self.applied
        if self.detail:
            response["detail"] = self.detail
        return response


# =============================================================================
# Gateway
# =============================================================================


class WebhookIngestionGateway(BaseService):
    @classmethod
    def receive(
        cls,
        provider: str,
        raw_body: bytes,
        headers: Mapping[str, str],
    ) -> IngestionResult:
        """
        Run the full ingestion pipeline for one delivery.

        Never raises. Every failure maps to an IngestionOutcome.
        """
        log = cls.get_logger()

        verification = verify_signature(provider, raw_body, headers)
        if not verification.ok:
            return IngestionResult(
                IngestionOutcome.REJECTED_SIGNATURE,
                detail=verification.reason,
            )

        parsed = cls.parse(provider, raw_body)
        if not parsed:
            log.warning(
                f"Rejected {provider} webhook payload: {parsed.error}",
                extra={"provider": provider, "errors": parsed.errors},
            )
            return IngestionResult(
                IngestionOutcome.REJECTED_PAYLOAD,
                detail=parsed.errors or parsed.error,
            )

        envelope = parsed.data
        log_context = {
            "provider": provider,
            "webhook_id": envelope.event_id,
            "event_type": envelope.raw_event_type,
        }
        log.info(f"Received {provider} webhook: {envelope.raw_event_type}", extra=log_context)

        try:
            return cls.handle(envelope)
        except Exception as e:
            log.error(
                f"Webhook processing failed: {type(e).__name__}: {e}",
                extra=log_context,
                exc_info=True,
            )
            return cls._queue_for_retry(envelope, headers, e)

    @classmethod
    def parse(cls, provider: str, raw_body: bytes) -> ServiceResult[WebhookEnvelope]:
        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as e:
            return ServiceResult.failure(f"Invalid JSON: {e}", error_code="INVALID_JSON")
        if not isinstance(payload, dict):
            return ServiceResult.failure("Payload must be a JSON object", error_code="INVALID_JSON")
        return cls.parse_payload(provider, payload)

    @classmethod
    def parse_payload(
        cls,
        provider: str,
        payload: dict[str, Any],
    ) -> ServiceResult[WebhookEnvelope]:
        """Validate a decoded payload and build the envelope."""
        if provider == WebhookProvider.PAYPAL:
            serializer = PayPalWebhookSerializer(data=payload)
            if not serializer.is_valid():
                return ServiceResult.failure(
                    "Invalid PayPal webhook payload",
                    error_code="INVALID_PAYLOAD",
                    errors=serializer.errors,
                )
            validated = serializer.validated_data
            raw_type = validated["event_type"]
            return ServiceResult.success(
                WebhookEnvelope(
                    provider=provider,
                    event_id=validated["id"],
                    raw_event_type=raw_type,
                    event_type=normalise_event_type(provider, raw_type),
                    data=payload["resource"],
                    payload=payload,
                )
            )

        if provider == WebhookProvider.DOCUSEAL:
            serializer = DocuSealWebhookSerializer(data=payload)
            if not serializer.is_valid():
                return ServiceResult.failure(
                    "Invalid DocuSeal webhook payload",
                    error_code="INVALID_PAYLOAD",
                    errors=serializer.errors,
                )
            validated = serializer.validated_data
            raw_type = validated["event_type"]
            data = payload["data"]
            return ServiceResult.success(
                WebhookEnvelope(
                    provider=provider,
                    event_id=f"{raw_type}:{data['id']}:{validated['timestamp']}",
                    raw_event_type=raw_type,
                    event_type=normalise_event_type(provider, raw_type),
                    data=_docuseal_data(raw_type, data),
                    payload=payload,
                )
            )

        return ServiceResult.failure(f"Unknown provider {provider}", error_code="UNKNOWN_PROVIDER")

    @classmethod
    def handle(cls, envelope: WebhookEnvelope) -> IngestionResult:
        """
        Steps 3-5 for an already-verified, parsed event.

        Transient exceptions propagate to the caller.
        """
        log_context = {
            "provider": envelope.provider,
            "webhook_id": envelope.event_id,
            "event_type": envelope.raw_event_type,
        }
        base = {"event_id": envelope.event_id, "event_type": envelope.event_type}

        if IdempotencyLedger.is_processed(envelope.provider, envelope.event_id):
            cls.get_logger().info("Duplicate webhook delivery", extra=log_context)
            return IngestionResult(IngestionOutcome.DUPLICATE, **base)

        booking = resolve_booking(envelope)
        if booking is None:
            recorded = IdempotencyLedger.mark_processed(
                envelope.provider,
                envelope.event_id,
                None,
                {"outcome": IngestionOutcome.UNRESOLVED.value},
                event_type=envelope.raw_event_type,
            )
            cls.get_logger().warning("Webhook could not be matched to a booking", extra=log_context)
            outcome = IngestionOutcome.UNRESOLVED if recorded else IngestionOutcome.DUPLICATE
            return IngestionResult(outcome, **base)

        request = TransitionRequest(
            booking_id=booking.id,
            event_type=envelope.event_type,
            actor_type=ACTOR_BY_PROVIDER[envelope.provider],
            actor_id=envelope.event_id,
            data=envelope.data,
        )

        try:
            with transaction.atomic():
                outcome = BookingStateMachine.apply(request)
                recorded = IdempotencyLedger.mark_processed(
                    envelope.provider,
                    envelope.event_id,
                    booking.id,
                    {
                        "outcome": IngestionOutcome.PROCESSED.value,
                        "applied": outcome.applied,
                        "changed_state": outcome.changed_state,
                        "reason": outcome.reason,
                        "booking_event_id": str(outcome.event.id),
                    },
                    event_type=envelope.raw_event_type,
                )
                if not recorded:
                    raise DuplicateDeliveryError(
                        f"Event {envelope.event_id} processed concurrently",
                        details={"provider": envelope.provider, "event_id": envelope.event_id},
                    )
        except DuplicateDeliveryError:
            cls.get_logger().info(
                "Concurrent duplicate delivery rolled back",
                extra={**log_context, "booking_id": str(booking.id)},
            )
            return IngestionResult(IngestionOutcome.DUPLICATE, booking_id=booking.id, **base)

        return IngestionResult(
            IngestionOutcome.PROCESSED,
            booking_id=booking.id,
            applied=outcome.applied,
            detail=outcome.reason or None,
            **base,
        )

    @classmethod
    def _queue_for_retry(
        cls,
        envelope: WebhookEnvelope,
        headers: Mapping[str, str],
        exc: Exception,
    ) -> IngestionResult:
        base = {"event_id": envelope.event_id, "event_type": envelope.event_type}
        try:
            record = RetryManager.store_failed_webhook(
                webhook_type=envelope.provider,
                webhook_id=envelope.event_id,
                event_type=envelope.raw_event_type,
                payload=envelope.payload,
                headers=relevant_headers(envelope.provider, headers),
                error=f"{type(exc).__name__}: {exc}",
                error_details={"exception": type(exc).__name__},
            )
        except Exception:
            # Provider redelivery is the remaining backstop
            cls.get_logger().error(
                "Failed to store webhook for retry",
                extra={"provider": envelope.provider, "webhook_id": envelope.event_id},
                exc_info=True,
            )
            return IngestionResult(IngestionOutcome.QUEUED_FOR_RETRY, detail="retry_store_failed", **base)

        return IngestionResult(
            IngestionOutcome.QUEUED_FOR_RETRY,
            retry_record_id=record.id,
            **base,
        )


# =============================================================================
# Booking Resolution
# =============================================================================


def _as_uuid(value: Any) -> uuid.UUID | None:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except (ValueError, AttributeError, TypeError):
        return None


def _from_invoice(value: Any) -> uuid.UUID | None:
    """Parse "BOOKING-<uuid>"; the uuid itself contains dashes."""
    if not isinstance(value, str) or "-" not in value:
        return None
    prefix, rest = value.split("-", 1)
    if prefix.upper() != INVOICE_PREFIX:
        return None
    return _as_uuid(rest)


def _paypal_candidate_ids(resource: dict[str, Any]) -> list[uuid.UUID]:
    candidates = [
        _as_uuid(resource.get("custom_id")),
        _from_invoice(resource.get("invoice_id")),
        _from_invoice(resource.get("invoice_number")),
    ]
    for transaction_ in resource.get("disputed_transactions") or []:
        if isinstance(transaction_, dict):
            candidates.append(_as_uuid(transaction_.get("custom")))
            candidates.append(_from_invoice(transaction_.get("invoice_number")))
    return [c for c in candidates if c is not None]


def resolve_booking(envelope: WebhookEnvelope) -> Booking | None:
    """Find the booking an event refers to, or None."""
    data = envelope.data

    if envelope.provider == WebhookProvider.PAYPAL:
        for booking_id in _paypal_candidate_ids(data):
            booking = Booking.objects.filter(pk=booking_id).first()
            if booking:
                return booking

        related = (data.get("supplementary_data") or {}).get("related_ids") or {}
        authorization_ids = [related.get("authorization_id")]
        if envelope.raw_event_type.startswith("PAYMENT.AUTHORIZATION."):
            authorization_ids.insert(0, data.get("id"))
        for authorization_id in filter(None, authorization_ids):
            booking = Booking.objects.filter(paypal_authorization_id=authorization_id).first()
            if booking:
                return booking

        capture_ids = [
            t.get("seller_transaction_id")
            for t in data.get("disputed_transactions") or []
            if isinstance(t, dict)
        ]
        if envelope.raw_event_type.startswith("PAYMENT.CAPTURE."):
            capture_ids.insert(0, data.get("id"))
        for capture_id in filter(None, capture_ids):
            booking = Booking.objects.filter(paypal_capture_id=capture_id).first()
            if booking:
                return booking

        order_id = related.get("order_id")
        if order_id:
            return Booking.objects.filter(paypal_order_id=order_id).first()
        return None

    booking_id = _as_uuid((data.get("metadata") or {}).get("booking_id"))
    if booking_id:
        booking = Booking.objects.filter(pk=booking_id).first()
        if booking:
            return booking
    submission_id = data.get("submission_id")
    if submission_id:
        return Booking.objects.filter(contract_submission_id=str(submission_id)).first()
    return None


# =============================================================================
# Payload Helpers
# =============================================================================


def _docuseal_data(raw_event_type: str, data: dict[str, Any]) -> dict[str, Any]:
    """
    Flatten DocuSeal's form.* and submission.* shapes.

    form.* events describe a submitter (data.id is the submitter id);
    submission.* events describe the submission itself.
    """
    is_submission_event = raw_event_type.startswith("submission.")
    submission = data.get("submission") if isinstance(data.get("submission"), dict) else {}
    submitters = data.get("submitters") or []
    first_submitter = submitters[0] if submitters and isinstance(submitters[0], dict) else {}

    submission_id = data.get("submission_id") or submission.get("id")
    if not submission_id and is_submission_event:
        submission_id = data.get("id")

    documents = data.get("documents") or first_submitter.get("documents") or []
    document_url = data.get("combined_document_url") or submission.get("combined_document_url")
    if not document_url and documents and isinstance(documents[0], dict):
        document_url = documents[0].get("url")

    return {
        "submission_id": str(submission_id) if submission_id else None,
        "submitter_id": None if is_submission_event else str(data.get("id")),
        "email": data.get("email") or first_submitter.get("email") or "",
        "status": data.get("status") or "",
        "completed_at": data.get("completed_at") or first_submitter.get("completed_at"),
        "document_url": document_url,
        "decline_reason": data.get("decline_reason") or "",
        "metadata": data.get("metadata") or {},
    }


def relevant_headers(provider: str, headers: Mapping[str, str]) -> dict[str, str]:
    """
    Headers worth keeping with a retry record.

    The DocuSeal signature header may carry the shared secret itself,
    so nothing is kept for DocuSeal.
    """
    if provider != WebhookProvider.PAYPAL:
        return {}
    return {
        name: value
        for name in PAYPAL_SIGNATURE_HEADERS
        if (value := get_header(headers, name))
    }


# =============================================================================
# Retry Replay
# =============================================================================


@register_retry_handler(WebhookProvider.PAYPAL)
@register_retry_handler(WebhookProvider.DOCUSEAL)
def replay_webhook(record: WebhookEvent) -> dict[str, Any]:
    """
    Replay a stored webhook through the gateway.

    Duplicates and unresolved events count as success: the event no
    longer needs processing.
    """
    parsed = WebhookIngestionGateway.parse_payload(record.webhook_type, record.payload)
    if not parsed:
        raise ValueError(f"Stored payload no longer parses: {parsed.error}")

    result = WebhookIngestionGateway.handle(parsed.data)
    logger.info(
        f"Replayed {record.webhook_type} webhook: {result.outcome.value}",
        extra={
            "provider": record.webhook_type,
            "webhook_id": record.webhook_id,
            "retry_record_id": str(record.id),
        },
    )
    if result.booking_id and record.booking_id is None:
        record.booking_id = result.booking_id
    return result.to_response()
