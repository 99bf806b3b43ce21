"""
Service layer primitives shared by domain apps.

- ServiceResult: result wrapper for expected failures (business rules,
  missing records, unresolvable data). Carries an explicit ``retryable``
  flag so callers never have to guess from the error message whether a
  retry could succeed.
- BaseService: logger helper for stateless services.

Pattern:
    - ServiceResult for expected failures a caller must branch on
    - Exceptions (core.exceptions) for failures that abort the operation

Usage:
    from core.services import BaseService, ServiceResult

    class CreditLedger(BaseService):
        @classmethod
        def confirm(cls, purchase_id) -> ServiceResult[CreditGrant]:
            try:
                grant = ...
            except BillingError as exc:
                return ServiceResult.from_exception(exc)
            return ServiceResult.success(grant)

    result = CreditLedger.confirm(purchase_id)
    if not result:
        status = 422 if result.retryable else 400
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful
        error: Human-readable error message if failed
        error_code: Machine-readable error code
        retryable: Whether repeating the same operation may succeed
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    retryable: bool = False

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:  # type: ignore[no-redef]
        """
        Create a successful result.

        The classmethod lives on the class; instances shadow it with the
        boolean ``success`` field set in __init__.
        """
        return cls(success=True, data=data)

    @classmethod
    def from_exception(
        cls, exc: Exception, error_code: str | None = None
    ) -> ServiceResult[T]:
        """
        Create a failed result from an exception.

        The retry classification comes from the exception's own
        ``is_retryable`` attribute; exceptions that do not declare one
        are treated as permanent.
        """
        message = getattr(exc, "message", None) or str(exc)
        code = error_code or getattr(exc, "error_code", None)
        return cls(
            success=False,
            error=message,
            error_code=code or exc.__class__.__name__.upper(),
            retryable=bool(getattr(exc, "is_retryable", False)),
        )

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for stateless service classes.

    Services expose classmethods only; state lives in the database.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Logger named after the concrete service class."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")
