"""
Core Application - Infrastructure & Base Classes

Generic building blocks shared by domain apps. No billing logic lives here.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)
    - UUIDPrimaryKeyMixin: UUID as primary key

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Result wrapper carrying an explicit retry flag

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes and is_retryable
    - ValidationError, AuthenticationError, NotFoundError, ConflictError
    - ExternalServiceError: Third-party service failures (retryable)

Circuit breaker (import from core.circuit_breaker):
    - CircuitBreaker, CircuitOpenError

Helpers (import from core.helpers):
    - get_client_ip, get_user_agent

Note:
    Django models are NOT imported here to avoid AppRegistryNotReady
    errors. Import them directly from core.models.
"""

# Services (no Django model dependencies)
from .services import BaseService, ServiceResult

# Exceptions (no Django dependencies)
from .exceptions import (
    AuthenticationError,
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

# Helpers (no Django model dependencies)
from .helpers import get_client_ip, get_user_agent

__all__ = [
    # Services
    "BaseService",
    "ServiceResult",
    # Exceptions
    "BaseApplicationError",
    "ValidationError",
    "AuthenticationError",
    "NotFoundError",
    "ConflictError",
    "ExternalServiceError",
    # Helpers
    "get_client_ip",
    "get_user_agent",
]
