"""
Base exception classes for application-wide error handling.

Every application error carries a machine-readable code and an explicit
retry classification. Callers decide whether to retry by reading
``is_retryable`` rather than inspecting the message text.

Exception Hierarchy:
    BaseApplicationError (base, permanent)
    ├── ValidationError - Malformed or incomplete input
    ├── AuthenticationError - Missing or wrong credentials
    ├── NotFoundError - Referenced record does not exist
    ├── ConflictError - State conflicts (duplicates, concurrent updates)
    └── ExternalServiceError - Third-party service failures (retryable)

Usage:
    from core.exceptions import NotFoundError

    raise NotFoundError("Account not found", details={"customer": "cus_1"})

    try:
        ...
    except BaseApplicationError as e:
        status = 422 if e.is_retryable else 400
        return Response(e.to_dict(), status=status)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context
        is_retryable: Whether repeating the operation may succeed
    """

    default_error_code: str = "APPLICATION_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Returns:
            Dict with error, error_code and (when present) details keys
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, error_code={self.error_code!r})"
        )


class ValidationError(BaseApplicationError):
    """Input failed validation (missing fields, wrong types)."""

    default_error_code = "VALIDATION_ERROR"


class AuthenticationError(BaseApplicationError):
    """Request credentials are missing or do not match."""

    default_error_code = "AUTHENTICATION_FAILED"


class NotFoundError(BaseApplicationError):
    """Requested resource does not exist."""

    default_error_code = "NOT_FOUND"


class ConflictError(BaseApplicationError):
    """
    Operation conflicts with current state.

    Raised for duplicate records and concurrent modifications that
    lost a race.
    """

    default_error_code = "CONFLICT"


class ExternalServiceError(BaseApplicationError):
    """
    Third-party service call failed.

    Attributes:
        service_name: Name of the external service
    """

    default_error_code = "EXTERNAL_SERVICE_ERROR"
    is_retryable = True

    def __init__(
        self,
        message: str,
        service_name: str | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.service_name = service_name
        details = details or {}
        if service_name:
            details["service"] = service_name
        super().__init__(message, error_code, details)
