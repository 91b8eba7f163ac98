"""
Webhook signature verification.

Each provider has its own scheme:

PayPal:
    Five PAYPAL-* transmission headers plus PAYPAL_WEBHOOK_ID are sent
    to PayPal's verify-webhook-signature API. Only a
    verification_status of "SUCCESS" passes.

DocuSeal:
    X-DocuSeal-Signature carries either "sha256=<hex HMAC-SHA256 of the
    raw body>" or the shared secret itself (DocuSeal's custom header
    mode). Both forms are compared in constant time.

Missing configuration rejects the request. The only way to accept
unverified webhooks is DEBUG=True together with
WEBHOOKS_ALLOW_UNVERIFIED=True, for local tunnels.

Usage:
    result = verify_signature("docuseal", request.body, request.headers)
    if not result.ok:
        return HttpResponse(status=401)
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.conf import settings

from bookings.adapters import PAYPAL_SIGNATURE_HEADERS, PayPalAdapter
from bookings.state_machines import WebhookProvider

if TYPE_CHECKING:
    from collections.abc import Mapping


logger = logging.getLogger(__name__)

DOCUSEAL_SIGNATURE_HEADER = "X-DocuSeal-Signature"


@dataclass(frozen=True)
class VerificationResult:
    ok: bool
    reason: str = ""


def _unverified_allowed() -> bool:
    return bool(settings.DEBUG and getattr(settings, "WEBHOOKS_ALLOW_UNVERIFIED", False))


def get_header(headers: Mapping[str, str], name: str) -> str:
    """Case-insensitive header lookup for plain dicts and HttpHeaders alike."""
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        value = next((v for k, v in headers.items() if k.lower() == lowered), None)
    return value or ""


def verify_signature(
    provider: str,
    raw_body: bytes,
    headers: Mapping[str, str],
) -> VerificationResult:
    """
    Verify a webhook delivery.

    Never raises: any error during verification is a rejection.
    """
    try:
        if provider == WebhookProvider.PAYPAL:
            return _verify_paypal(raw_body, headers)
        if provider == WebhookProvider.DOCUSEAL:
            return _verify_docuseal(raw_body, headers)
        return VerificationResult(False, "unknown_provider")
    except Exception as e:
        logger.warning(
            f"Webhook verification error: {type(e).__name__}: {e}",
            extra={"provider": provider},
        )
        return VerificationResult(False, "verification_error")


def _verify_paypal(raw_body: bytes, headers: Mapping[str, str]) -> VerificationResult:
    webhook_id = getattr(settings, "PAYPAL_WEBHOOK_ID", "")
    signature_headers = {name: get_header(headers, name) for name in PAYPAL_SIGNATURE_HEADERS}
    missing = [name for name, value in signature_headers.items() if not value]

    if not webhook_id or missing:
        if _unverified_allowed():
            logger.warning(
                "Accepting unverified PayPal webhook (DEBUG)",
                extra={"provider": "paypal", "missing_headers": missing},
            )
            return VerificationResult(True, "unverified_allowed")
        reason = "missing_webhook_id" if not webhook_id else "missing_headers"
        logger.warning(
            "PayPal webhook rejected before verification",
            extra={"provider": "paypal", "reason": reason, "missing_headers": missing},
        )
        return VerificationResult(False, reason)

    webhook_event = json.loads(raw_body)
    status = PayPalAdapter.verify_webhook_signature(signature_headers, webhook_event, webhook_id)
    if status == "SUCCESS":
        return VerificationResult(True, "verified")

    logger.warning(
        "PayPal signature verification failed",
        extra={"provider": "paypal", "verification_status": status},
    )
    return VerificationResult(False, "signature_mismatch")


def _verify_docuseal(raw_body: bytes, headers: Mapping[str, str]) -> VerificationResult:
    secret = getattr(settings, "DOCUSEAL_WEBHOOK_SECRET", "")
    signature = get_header(headers, DOCUSEAL_SIGNATURE_HEADER)

    if not secret or not signature:
        if _unverified_allowed():
            logger.warning(
                "Accepting unverified DocuSeal webhook (DEBUG)",
                extra={"provider": "docuseal"},
            )
            return VerificationResult(True, "unverified_allowed")
        reason = "missing_secret" if not secret else "missing_signature"
        logger.warning(
            "DocuSeal webhook rejected before verification",
            extra={"provider": "docuseal", "reason": reason},
        )
        return VerificationResult(False, reason)

    if signature.startswith("sha256="):
        expected = hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()
        ok = hmac.compare_digest(signature[len("sha256="):], expected)
    else:
        ok = hmac.compare_digest(signature.encode(), secret.encode())

    if ok:
        return VerificationResult(True, "verified")

    logger.warning("DocuSeal signature mismatch", extra={"provider": "docuseal"})
    return VerificationResult(False, "signature_mismatch")
