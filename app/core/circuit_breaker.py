"""
Circuit breaker for outbound provider calls.

State lives in the Django cache (Redis) so every web worker and Celery
worker sees the same view of a provider's health. Only transient
failures (timeouts, connection errors, 5xx) trip the circuit; a
provider rejecting a request with a 4xx is a healthy provider.

States:
    - CLOSED: Normal operation, all requests pass through
    - OPEN: Provider is failing, requests fail fast without calling it
    - HALF_OPEN: Recovery probe, a limited number of calls are let through

Usage:
    from core.circuit_breaker import CircuitBreaker

    paypal_circuit = CircuitBreaker("paypal", failure_threshold=5)

    with paypal_circuit.call(trip_on=(ProviderUnavailableError,)):
        response = client.post(...)
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from enum import Enum
from typing import TYPE_CHECKING

from django.core.cache import cache

if TYPE_CHECKING:
    from collections.abc import Generator

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """
    Raised when attempting to call through an open circuit.

    This signals the provider is considered unavailable; no call was made.
    """


class CircuitBreaker:
    """
    Distributed circuit breaker keyed by provider name.

    Args:
        name: Provider identifier (e.g. "paypal", "docuseal")
        failure_threshold: Consecutive transient failures before opening
        recovery_timeout: Seconds to wait before a half-open probe
        half_open_max_calls: Probe calls allowed while half-open
        cache_ttl: TTL for cache keys, must exceed recovery_timeout
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        half_open_max_calls: int = 1,
        cache_ttl: int = 3600,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls
        self.cache_ttl = cache_ttl

        prefix = f"circuit:{name}"
        self._state_key = f"{prefix}:state"
        self._failures_key = f"{prefix}:failures"
        self._opened_at_key = f"{prefix}:opened_at"
        self._probes_key = f"{prefix}:probes"

    # =========================================================================
    # Public API
    # =========================================================================

    def is_available(self) -> bool:
        """
        Check whether a call may go through.

        Cache errors fail open: an unreachable Redis must not take the
        payment provider down with it.
        """
        try:
            state = self._get_state()
            if state == CircuitState.CLOSED:
                return True

            if state == CircuitState.OPEN:
                opened_at = cache.get(self._opened_at_key)
                if opened_at and time.time() - opened_at >= self.recovery_timeout:
                    self._set_state(CircuitState.HALF_OPEN)
                    cache.set(self._probes_key, 1, timeout=self.cache_ttl)
                    logger.info(
                        "Circuit half-open, probing provider",
                        extra={"circuit": self.name},
                    )
                    return True
                return False

            probes = cache.get(self._probes_key, 0)
            if probes < self.half_open_max_calls:
                self._incr(self._probes_key)
                return True
            return False

        except Exception as e:
            logger.warning(
                f"Circuit breaker cache error, failing open: {e}",
                extra={"circuit": self.name},
            )
            return True

    def record_success(self) -> None:
        try:
            if self._get_state() != CircuitState.CLOSED:
                self._set_state(CircuitState.CLOSED)
                logger.info("Circuit closed", extra={"circuit": self.name})
            cache.set(self._failures_key, 0, timeout=self.cache_ttl)
        except Exception as e:
            logger.warning(
                f"Circuit breaker failed to record success: {e}",
                extra={"circuit": self.name},
            )

    def record_failure(self) -> None:
        try:
            if self._get_state() == CircuitState.HALF_OPEN:
                self._open()
                logger.warning(
                    "Circuit reopened after failed probe",
                    extra={"circuit": self.name},
                )
                return

            failures = self._incr(self._failures_key)
            if failures >= self.failure_threshold:
                self._open()
                logger.warning(
                    f"Circuit opened after {failures} failures",
                    extra={"circuit": self.name, "failure_count": failures},
                )
        except Exception as e:
            logger.warning(
                f"Circuit breaker failed to record failure: {e}",
                extra={"circuit": self.name},
            )

    @contextmanager
    def call(
        self, trip_on: tuple[type[BaseException], ...] = (Exception,)
    ) -> Generator[None, None, None]:
        """
        Guard a provider call.

        Exceptions matching ``trip_on`` count as failures; any other
        exception propagates without touching the failure counter.

        Raises:
            CircuitOpenError: The circuit is open, the call was not made
        """
        if not self.is_available():
            raise CircuitOpenError(f"Circuit '{self.name}' is open")

        try:
            yield
        except trip_on:
            self.record_failure()
            raise
        self.record_success()

    def reset(self) -> None:
        cache.delete_many(
            [self._state_key, self._failures_key, self._opened_at_key, self._probes_key]
        )

    def get_status(self) -> dict:
        """Current state for the webhook health endpoint."""
        try:
            return {
                "name": self.name,
                "state": self._get_state().value,
                "failure_count": cache.get(self._failures_key, 0),
                "failure_threshold": self.failure_threshold,
            }
        except Exception as e:
            return {"name": self.name, "state": "unknown", "error": str(e)}

    # =========================================================================
    # Private cache operations
    # =========================================================================

    def _get_state(self) -> CircuitState:
        try:
            return CircuitState(cache.get(self._state_key, CircuitState.CLOSED.value))
        except ValueError:
            return CircuitState.CLOSED

    def _set_state(self, state: CircuitState) -> None:
        cache.set(self._state_key, state.value, timeout=self.cache_ttl)

    def _open(self) -> None:
        self._set_state(CircuitState.OPEN)
        cache.set(self._opened_at_key, time.time(), timeout=self.cache_ttl)

    def _incr(self, key: str) -> int:
        try:
            return cache.incr(key)
        except ValueError:
            cache.set(key, 1, timeout=self.cache_ttl)
            return 1

    def __repr__(self) -> str:
        return f"CircuitBreaker(name={self.name!r}, state={self._get_state().value})"
