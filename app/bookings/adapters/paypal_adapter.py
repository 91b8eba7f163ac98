"""
PayPal REST API adapter.

All PayPal calls go through this adapter to get consistent timeouts,
error translation, circuit breaking and logging.

Features:
- OAuth client-credentials token cached in the Django cache
- Webhook signature verification via PayPal's verify endpoint
- Idempotent authorization capture (PayPal-Request-Id)
- Authorization lookup for admin reconciliation

Configuration (via settings):
- PAYPAL_CLIENT_ID / PAYPAL_CLIENT_SECRET: REST app credentials
- PAYPAL_WEBHOOK_ID: Webhook id used for signature verification
- PAYPAL_MODE: "sandbox" or "live"
- PAYPAL_TIMEOUT_SECONDS: Per-request timeout (default: 10)

Usage:
    from bookings.adapters import PayPalAdapter

    result = PayPalAdapter.capture_authorization("0VF52814937998046")
    if result.status == "COMPLETED":
        ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from django.conf import settings
from django.core.cache import cache

from core.circuit_breaker import CircuitBreaker

from bookings.adapters.base import HttpProviderAdapter
from bookings.exceptions import ProviderConfigurationError, ProviderRequestError

if TYPE_CHECKING:
    from typing import Any


PAYPAL_BASE_URLS = {
    "sandbox": "https://api-m.sandbox.paypal.com",
    "live": "https://api-m.paypal.com",
}

TOKEN_CACHE_KEY = "paypal:access_token"

# Headers PayPal signs every webhook delivery with
PAYPAL_SIGNATURE_HEADERS = (
    "PAYPAL-TRANSMISSION-ID",
    "PAYPAL-TRANSMISSION-TIME",
    "PAYPAL-TRANSMISSION-SIG",
    "PAYPAL-CERT-URL",
    "PAYPAL-AUTH-ALGO",
)

# Capture error names that mean the capture already happened
ALREADY_CAPTURED_CODES = frozenset({"AUTHORIZATION_ALREADY_CAPTURED"})


# =============================================================================
# Data Types
# =============================================================================


def _parse_amount(money: dict[str, Any] | None) -> tuple[Decimal | None, str]:
    if not isinstance(money, dict) or money.get("value") in (None, ""):
        return None, ""
    try:
        return Decimal(str(money["value"])), (money.get("currency_code") or "").upper()
    except InvalidOperation:
        return None, ""


@dataclass
class CaptureResult:
    """
    Result of capturing an authorization.

    Attributes:
        id: Capture id
        status: COMPLETED, PENDING, DECLINED, ...
        amount/currency: Captured amount
        final_capture: Whether the remaining authorization was released
        raw_response: Full PayPal response (fed to the state machine)
    """

    id: str
    status: str
    amount: Decimal | None = None
    currency: str = ""
    final_capture: bool = True
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class AuthorizationResult:
    id: str
    status: str
    amount: Decimal | None = None
    currency: str = ""
    expiration_time: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# PayPal Adapter
# =============================================================================


class PayPalAdapter(HttpProviderAdapter):
    """
    Adapter for PayPal REST operations.

    All methods are classmethods - no instance state is maintained.
    Thread-safe for use from Celery workers and sweep threads.
    """

    provider = "paypal"
    circuit = CircuitBreaker("paypal", failure_threshold=5, recovery_timeout=60)

    # =========================================================================
    # Configuration
    # =========================================================================

    @classmethod
    def _base_url(cls) -> str:
        mode = getattr(settings, "PAYPAL_MODE", "sandbox")
        return PAYPAL_BASE_URLS.get(mode, PAYPAL_BASE_URLS["sandbox"])

    @classmethod
    def _timeout(cls) -> float:
        return float(getattr(settings, "PAYPAL_TIMEOUT_SECONDS", 10))

    @classmethod
    def _auth_headers(cls) -> dict[str, str]:
        return {"Authorization": f"Bearer {cls.get_access_token()}"}

    @classmethod
    def _on_unauthorized(cls) -> None:
        cache.delete(TOKEN_CACHE_KEY)

    @classmethod
    def _provider_code(cls, body: dict[str, Any]) -> str | None:
        details = body.get("details")
        if isinstance(details, list) and details and isinstance(details[0], dict):
            issue = details[0].get("issue")
            if issue:
                return issue
        return body.get("name") or body.get("error")

    # =========================================================================
    # Authentication
    # =========================================================================

    @classmethod
    def get_access_token(cls) -> str:
        """
        Return a cached OAuth access token, fetching a new one if needed.

        Raises:
            ProviderConfigurationError: Credentials missing or rejected
            ProviderUnavailableError: PayPal unreachable
        """
        token = cache.get(TOKEN_CACHE_KEY)
        if token:
            return token

        client_id = getattr(settings, "PAYPAL_CLIENT_ID", "")
        client_secret = getattr(settings, "PAYPAL_CLIENT_SECRET", "")
        if not client_id or not client_secret:
            raise ProviderConfigurationError(
                "PayPal credentials are not configured",
                provider=cls.provider,
                error_code="PROVIDER_NOT_CONFIGURED",
            )

        try:
            body = cls._request(
                "POST",
                "/v1/oauth2/token",
                {"operation": "get_access_token", "provider": cls.provider},
                data={"grant_type": "client_credentials"},
                auth=(client_id, client_secret),
                authenticated=False,
            )
        except ProviderRequestError as e:
            raise ProviderConfigurationError(
                "PayPal rejected the REST app credentials",
                provider=cls.provider,
                error_code="PROVIDER_AUTH_FAILED",
                status_code=e.status_code,
                provider_code=e.provider_code,
            ) from e

        token = body.get("access_token", "")
        expires_in = int(body.get("expires_in", 0) or 0)
        # Refresh a minute before PayPal expires the token
        cache.set(TOKEN_CACHE_KEY, token, timeout=max(expires_in - 60, 60))
        return token

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    @classmethod
    def verify_webhook_signature(
        cls,
        headers: dict[str, str],
        webhook_event: dict[str, Any],
        webhook_id: str,
    ) -> str:
        """
        Ask PayPal to verify a webhook delivery.

        Args:
            headers: The five PAYPAL-* signature headers (upper-case keys)
            webhook_event: The parsed webhook body
            webhook_id: PAYPAL_WEBHOOK_ID

        Returns:
            PayPal's verification_status ("SUCCESS" or "FAILURE")
        """
        body = cls._request(
            "POST",
            "/v1/notifications/verify-webhook-signature",
            {
                "operation": "verify_webhook_signature",
                "provider": cls.provider,
                "webhook_id": webhook_event.get("id"),
            },
            json={
                "auth_algo": headers["PAYPAL-AUTH-ALGO"],
                "cert_url": headers["PAYPAL-CERT-URL"],
                "transmission_id": headers["PAYPAL-TRANSMISSION-ID"],
                "transmission_sig": headers["PAYPAL-TRANSMISSION-SIG"],
                "transmission_time": headers["PAYPAL-TRANSMISSION-TIME"],
                "webhook_id": webhook_id,
                "webhook_event": webhook_event,
            },
        )
        return body.get("verification_status", "")

    # =========================================================================
    # Payments
    # =========================================================================

    @classmethod
    def capture_authorization(
        cls,
        authorization_id: str,
        request_id: str | None = None,
    ) -> CaptureResult:
        """
        Capture an authorized payment in full.

        The PayPal-Request-Id makes the call idempotent: repeating it
        after a timeout returns the original capture instead of
        capturing twice.

        Args:
            authorization_id: PayPal authorization id
            request_id: Idempotency key (default: capture-{authorization_id})

        Raises:
            ProviderRequestError: Authorization not capturable (declined,
                voided, expired, already captured)
            ProviderConfigurationError: Credentials missing or rejected
            ProviderUnavailableError: Transient failure
        """
        request_id = request_id or f"capture-{authorization_id}"
        body = cls._request(
            "POST",
            f"/v2/payments/authorizations/{authorization_id}/capture",
            {
                "operation": "capture_authorization",
                "provider": cls.provider,
                "authorization_id": authorization_id,
                "idempotency_key": request_id,
            },
            json={"final_capture": True},
            headers={
                "PayPal-Request-Id": request_id,
                "Prefer": "return=representation",
            },
        )
        amount, currency = _parse_amount(body.get("amount"))
        return CaptureResult(
            id=body.get("id", ""),
            status=body.get("status", ""),
            amount=amount,
            currency=currency,
            final_capture=body.get("final_capture", True),
            raw_response=body,
        )

    @classmethod
    def get_authorization(cls, authorization_id: str) -> AuthorizationResult:
        """Fetch an authorization's current status."""
        body = cls._request(
            "GET",
            f"/v2/payments/authorizations/{authorization_id}",
            {
                "operation": "get_authorization",
                "provider": cls.provider,
                "authorization_id": authorization_id,
            },
        )
        amount, currency = _parse_amount(body.get("amount"))
        return AuthorizationResult(
            id=body.get("id", authorization_id),
            status=body.get("status", ""),
            amount=amount,
            currency=currency,
            expiration_time=body.get("expiration_time"),
            raw_response=body,
        )
