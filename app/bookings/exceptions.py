"""
Booking-specific exceptions.

Exception Hierarchy:
    BookingNotFoundError - Booking lookup failures (inherits NotFoundError)
    ProviderError - PayPal/DocuSeal call failures (inherits ExternalServiceError)
    ├── ProviderRequestError - Permanent 4xx responses (do not retry)
    ├── ProviderConfigurationError - Missing or rejected credentials
    └── ProviderUnavailableError - Timeouts, 429, 5xx (transient, retry)

    DuplicateDeliveryError - Event already processed (inherits ConflictError)
    LeaseUnavailableError - Row claimed by another worker (inherits ConflictError)
    InvalidStateTransitionError - FSM transition not allowed (inherits ConflictError)

Usage:
    from bookings.exceptions import ProviderError

    try:
        PayPalAdapter.capture_authorization(authorization_id)
    except ProviderError as e:
        if e.is_retryable:
            RetryManager.store_failed_webhook(...)
        else:
            ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import ConflictError, ExternalServiceError, NotFoundError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Booking Domain Exceptions
# =============================================================================


class BookingNotFoundError(NotFoundError):
    """
    Raised when a booking cannot be found.

    Example:
        booking = Booking.objects.filter(id=booking_id).first()
        if not booking:
            raise BookingNotFoundError(
                f"Booking {booking_id} not found",
                details={"booking_id": str(booking_id)},
            )
    """

    default_error_code: str = "BOOKING_NOT_FOUND"


# =============================================================================
# Provider Exceptions
# =============================================================================


class ProviderError(ExternalServiceError):
    """
    Base exception for PayPal and DocuSeal API failures.

    Attributes:
        provider: "paypal" or "docuseal"
        status_code: HTTP status returned by the provider, if any
        provider_code: Provider error name (e.g. PayPal "INSTRUMENT_DECLINED")
        is_retryable: Whether the call may succeed if repeated later
    """

    default_error_code: str = "PROVIDER_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        provider: str,
        error_code: str | None = None,
        status_code: int | None = None,
        provider_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        details["provider"] = provider
        if status_code is not None:
            details["status_code"] = status_code
        if provider_code:
            details["provider_code"] = provider_code
        super().__init__(message, error_code=error_code, details=details)
        self.provider = provider
        self.status_code = status_code
        self.provider_code = provider_code


class ProviderRequestError(ProviderError):
    """
    The provider rejected the request.

    This is a permanent error - the same request will never succeed.
    For captures this means the authorization cannot be captured
    (declined, expired, voided, already captured).
    """

    default_error_code: str = "PROVIDER_REQUEST_REJECTED"
    is_retryable: bool = False


class ProviderConfigurationError(ProviderError):
    """
    Our side of the integration is broken: credentials missing, or the
    provider rejected them.

    Not a verdict on the payment. Callers must not treat it as the
    provider refusing an operation.
    """

    default_error_code: str = "PROVIDER_NOT_CONFIGURED"
    is_retryable: bool = False


class ProviderUnavailableError(ProviderError):
    """
    The provider could not be reached or answered with 429/5xx.

    IMPORTANT: A timed-out capture may have succeeded at PayPal. Retries
    reuse the same PayPal-Request-Id so the provider returns the
    original result instead of capturing twice.
    """

    default_error_code: str = "PROVIDER_UNAVAILABLE"
    is_retryable: bool = True


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class DuplicateDeliveryError(ConflictError):
    """
    Raised when an event has already been recorded in the idempotency ledger.

    Raising it inside the transition's transaction rolls the transition
    back, so a concurrent duplicate never applies twice.
    """

    default_error_code: str = "DUPLICATE_DELIVERY"


class LeaseUnavailableError(ConflictError):
    """
    Raised when a row is already claimed by another worker.

    Example:
        raise LeaseUnavailableError(
            f"Capture lease for booking {booking_id} is held",
            details={"booking_id": str(booking_id), "owner": owner},
        )
    """

    default_error_code: str = "LEASE_UNAVAILABLE"


class InvalidStateTransitionError(ConflictError):
    """
    Raised when an FSM transition is not allowed from the current state.

    The state machine converts these into transition_ignored audit
    events; admin endpoints surface them as 409.
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"
