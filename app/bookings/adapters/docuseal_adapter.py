"""
DocuSeal API adapter.

Only submission lookup is needed: contracts are created by the booking
flow, and their lifecycle arrives via webhooks. Admins use the lookup
to reconcile a contract whose webhook never arrived.

Configuration (via settings):
- DOCUSEAL_API_URL: API base URL (default: https://api.docuseal.com)
- DOCUSEAL_API_KEY: API token (sent as X-Auth-Token)
- DOCUSEAL_TIMEOUT_SECONDS: Per-request timeout (default: 10)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from django.conf import settings

from core.circuit_breaker import CircuitBreaker

from bookings.adapters.base import HttpProviderAdapter
from bookings.exceptions import ProviderConfigurationError

if TYPE_CHECKING:
    from typing import Any


@dataclass
class SubmissionResult:
    """
    A DocuSeal submission.

    Attributes:
        id: Submission id
        status: pending, completed, declined, expired
        completed_at: ISO timestamp when all submitters completed
        document_url: Signed (combined) document URL, if completed
        email: First submitter's email
    """

    id: str
    status: str
    completed_at: str | None = None
    document_url: str | None = None
    email: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"


class DocuSealAdapter(HttpProviderAdapter):
    provider = "docuseal"
    circuit = CircuitBreaker("docuseal", failure_threshold=5, recovery_timeout=60)

    @classmethod
    def _base_url(cls) -> str:
        return getattr(settings, "DOCUSEAL_API_URL", "https://api.docuseal.com").rstrip("/")

    @classmethod
    def _timeout(cls) -> float:
        return float(getattr(settings, "DOCUSEAL_TIMEOUT_SECONDS", 10))

    @classmethod
    def _auth_headers(cls) -> dict[str, str]:
        api_key = getattr(settings, "DOCUSEAL_API_KEY", "")
        if not api_key:
            raise ProviderConfigurationError(
                "DocuSeal API key is not configured",
                provider=cls.provider,
                error_code="PROVIDER_NOT_CONFIGURED",
            )
        return {"X-Auth-Token": api_key}

    @classmethod
    def get_submission(cls, submission_id: str) -> SubmissionResult:
        """
        Fetch a submission.

        Raises:
            ProviderConfigurationError: API key missing
            ProviderRequestError: Unknown submission or bad credentials
            ProviderUnavailableError: Transient failure
        """
        body = cls._request(
            "GET",
            f"/submissions/{submission_id}",
            {
                "operation": "get_submission",
                "provider": cls.provider,
                "submission_id": submission_id,
            },
        )

        submitters = body.get("submitters") or []
        first = submitters[0] if submitters and isinstance(submitters[0], dict) else {}
        documents = body.get("documents") or first.get("documents") or []
        document_url = body.get("combined_document_url") or (
            documents[0].get("url") if documents and isinstance(documents[0], dict) else None
        )

        return SubmissionResult(
            id=str(body.get("id", submission_id)),
            status=body.get("status", ""),
            completed_at=body.get("completed_at") or first.get("completed_at"),
            document_url=document_url,
            email=first.get("email", ""),
            raw_response=body,
        )
