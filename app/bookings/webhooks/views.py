"""
Webhook endpoint views for PayPal and DocuSeal.

Both views hand the raw body and headers to WebhookIngestionGateway and
translate the outcome to an HTTP status:
- 200: processed, duplicate, or unresolved (provider stops redelivering)
- 400: payload failed validation
- 401: signature verification failed
- 503: processing failed and was stored for retry

Usage:
    # In urls.py
    from bookings.webhooks.views import docuseal_webhook, paypal_webhook

    urlpatterns = [
        path("webhooks/paypal/", paypal_webhook, name="paypal_webhook"),
        path("webhooks/docuseal/", docuseal_webhook, name="docuseal_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from bookings.state_machines import WebhookProvider
from bookings.webhooks.gateway import WebhookIngestionGateway

logger = logging.getLogger(__name__)


def _receive(provider: str, request: HttpRequest) -> JsonResponse:
    result = WebhookIngestionGateway.receive(provider, request.body, request.headers)
    if not result.is_settled:
        logger.warning(
            f"{provider} webhook not settled: {result.outcome.value}",
            extra={
                "provider": provider,
                "webhook_id": result.event_id,
                "outcome": result.outcome.value,
                "status_code": result.http_status,
            },
        )
    return JsonResponse(result.to_response(), status=result.http_status)


@csrf_exempt
@require_POST
def paypal_webhook(request: HttpRequest) -> JsonResponse:
    """Receive a PayPal webhook delivery."""
    return _receive(WebhookProvider.PAYPAL, request)


@csrf_exempt
@require_POST
def docuseal_webhook(request: HttpRequest) -> JsonResponse:
    """Receive a DocuSeal webhook delivery."""
    return _receive(WebhookProvider.DOCUSEAL, request)
