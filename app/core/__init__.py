"""
Core Application - Infrastructure & Base Classes

Generic, reusable building blocks with no booking-specific logic.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Standard result wrapper for success/failure handling

Exceptions (import from core.exceptions):
    - BaseApplicationError, NotFoundError,
      ConflictError, ExternalServiceError

Resilience (import from core.circuit_breaker):
    - CircuitBreaker: Cache-backed circuit breaker for provider calls

Views (import from core.views):
    - health_check: Liveness/readiness endpoint
"""
