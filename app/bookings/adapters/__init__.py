"""
External provider adapters.

Usage:
    from bookings.adapters import PayPalAdapter, DocuSealAdapter
"""

from bookings.adapters.docuseal_adapter import DocuSealAdapter, SubmissionResult
from bookings.adapters.paypal_adapter import (
    ALREADY_CAPTURED_CODES,
    PAYPAL_SIGNATURE_HEADERS,
    AuthorizationResult,
    CaptureResult,
    PayPalAdapter,
)

__all__ = [
    "ALREADY_CAPTURED_CODES",
    "AuthorizationResult",
    "CaptureResult",
    "DocuSealAdapter",
    "PAYPAL_SIGNATURE_HEADERS",
    "PayPalAdapter",
    "SubmissionResult",
]
