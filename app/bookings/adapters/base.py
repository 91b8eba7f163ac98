"""
Shared HTTP plumbing for provider adapters.

Adapters call providers through httpx with a per-provider timeout and a
per-provider circuit breaker, and translate every failure into the
ProviderError hierarchy:

    timeout / connection error / 429 / 5xx  -> ProviderUnavailableError (retryable)
    other 4xx                                -> ProviderRequestError (permanent)
    circuit open                             -> ProviderUnavailableError (retryable)
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, NoReturn

import httpx

from core.circuit_breaker import CircuitBreaker, CircuitOpenError

from bookings.exceptions import ProviderRequestError, ProviderUnavailableError

if TYPE_CHECKING:
    from typing import Any


# Status codes that indicate a transient provider problem
RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


class HttpProviderAdapter:
    """
    Base class for httpx-backed provider adapters.

    Subclasses set ``provider`` and implement ``_base_url``,
    ``_timeout`` and ``_auth_headers``. All methods are classmethods;
    no instance state is kept, so adapters are safe to use from
    concurrent sweep threads.
    """

    provider: str = ""
    circuit: CircuitBreaker

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    def _base_url(cls) -> str:
        raise NotImplementedError

    @classmethod
    def _timeout(cls) -> float:
        raise NotImplementedError

    @classmethod
    def _auth_headers(cls) -> dict[str, str]:
        raise NotImplementedError

    @classmethod
    def _client(cls) -> httpx.Client:
        return httpx.Client(base_url=cls._base_url(), timeout=cls._timeout())

    # =========================================================================
    # Request Execution
    # =========================================================================

    @classmethod
    def _request(
        cls,
        method: str,
        path: str,
        log_context: dict[str, Any],
        json: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        auth: tuple[str, str] | None = None,
        authenticated: bool = True,
    ) -> dict[str, Any]:
        """
        Execute a request through the circuit breaker.

        Returns:
            Decoded JSON body ({} for empty responses)

        Raises:
            ProviderUnavailableError: Transient failure or circuit open
            ProviderRequestError: Provider rejected the request
        """
        try:
            with cls.circuit.call(trip_on=(ProviderUnavailableError,)):
                return cls._send(
                    method,
                    path,
                    log_context,
                    json=json,
                    data=data,
                    headers=headers,
                    auth=auth,
                    authenticated=authenticated,
                )
        except CircuitOpenError as e:
            cls.get_logger().warning(
                f"{cls.provider} circuit open, call skipped",
                extra=log_context,
            )
            raise ProviderUnavailableError(
                str(e),
                provider=cls.provider,
                error_code="CIRCUIT_OPEN",
            ) from e

    @classmethod
    def _send(
        cls,
        method: str,
        path: str,
        log_context: dict[str, Any],
        json: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        auth: tuple[str, str] | None = None,
        authenticated: bool = True,
    ) -> dict[str, Any]:
        logger = cls.get_logger()
        request_headers = {"Accept": "application/json"}
        if authenticated:
            request_headers.update(cls._auth_headers())
        request_headers.update(headers or {})

        start_time = time.time()
        logger.info(f"Starting {cls.provider} operation", extra=log_context)

        try:
            with cls._client() as client:
                response = client.request(
                    method,
                    path,
                    json=json,
                    data=data,
                    headers=request_headers,
                    auth=auth,
                )
        except httpx.TimeoutException as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.warning(
                f"{cls.provider} request timed out",
                extra={**log_context, "duration_ms": duration_ms},
            )
            raise ProviderUnavailableError(
                f"{cls.provider} request timed out",
                provider=cls.provider,
                error_code="PROVIDER_TIMEOUT",
            ) from e
        except httpx.TransportError as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"Connection error to {cls.provider}: {type(e).__name__}",
                extra={**log_context, "duration_ms": duration_ms},
            )
            raise ProviderUnavailableError(
                f"Could not connect to {cls.provider}",
                provider=cls.provider,
            ) from e

        duration_ms = (time.time() - start_time) * 1000

        if response.is_success:
            logger.info(
                f"{cls.provider} operation completed",
                extra={
                    **log_context,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )
            return cls._decode(response)

        cls._handle_error_response(response, log_context, duration_ms)

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {"items": body}

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _provider_code(cls, body: dict[str, Any]) -> str | None:
        """Extract the provider's machine-readable error name."""
        return body.get("error") if isinstance(body.get("error"), str) else None

    @classmethod
    def _on_unauthorized(cls) -> None:
        """Hook for adapters that cache credentials."""

    @classmethod
    def _handle_error_response(
        cls,
        response: httpx.Response,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> NoReturn:
        """
        Translate a non-2xx response into a domain exception.

        Raises:
            ProviderUnavailableError: 401 with cached credentials, 429, 5xx
            ProviderRequestError: Any other 4xx
        """
        logger = cls.get_logger()
        body = cls._decode(response)
        provider_code = cls._provider_code(body)
        status_code = response.status_code
        context = {
            **log_context,
            "status_code": status_code,
            "provider_code": provider_code,
            "duration_ms": duration_ms,
        }

        if status_code == 401 and log_context.get("operation") != "get_access_token":
            # Stale cached token; the next attempt re-authenticates
            cls._on_unauthorized()
            logger.warning(f"{cls.provider} rejected credentials", extra=context)
            raise ProviderUnavailableError(
                f"{cls.provider} rejected credentials",
                provider=cls.provider,
                status_code=status_code,
                provider_code=provider_code,
            )

        if status_code in RETRYABLE_STATUS_CODES:
            logger.warning(f"Transient {cls.provider} error {status_code}", extra=context)
            raise ProviderUnavailableError(
                f"{cls.provider} returned {status_code}",
                provider=cls.provider,
                status_code=status_code,
                provider_code=provider_code,
            )

        logger.error(f"{cls.provider} rejected request with {status_code}", extra=context)
        raise ProviderRequestError(
            body.get("message") or f"{cls.provider} returned {status_code}",
            provider=cls.provider,
            status_code=status_code,
            provider_code=provider_code,
            details={"response": body} if body else None,
        )
