"""
Billing-specific exceptions.

Each exception declares whether a replay of the webhook could succeed
(``is_retryable``). The webhook layer maps that flag to the HTTP status
the gateway sees: 422 asks the gateway to redeliver, 400 tells it not to.

Exception Hierarchy:
    BillingError (base, permanent)
    ├── WebhookValidationError - Malformed payload (400)
    ├── WebhookAuthError - Missing/wrong shared secret (401)
    ├── AccountNotFoundError - No account for the gateway customer
    ├── CriticalDataError - Plan unresolvable; safe partial state applied
    └── TransientBillingError - Store timeouts, lost races (retryable)
        └── GatewayError - Gateway API call failed (retryable)

Usage:
    from billing.exceptions import AccountNotFoundError

    raise AccountNotFoundError(
        "No account for gateway customer",
        details={"gateway_customer_id": "cus_123"},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    AuthenticationError,
    BaseApplicationError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


class BillingError(BaseApplicationError):
    """Base exception for billing operations."""

    default_error_code = "BILLING_ERROR"


class WebhookValidationError(BillingError, ValidationError):
    """Webhook body is not valid JSON or lacks required fields."""

    default_error_code = "INVALID_WEBHOOK_PAYLOAD"


class WebhookAuthError(BillingError, AuthenticationError):
    """Shared-secret header missing or not matching the configured token."""

    default_error_code = "INVALID_ACCESS_TOKEN"


class AccountNotFoundError(BillingError, NotFoundError):
    """
    No account matches the payload's customer id.

    Not retryable: account matching is stable, a replay finds nothing either.
    """

    default_error_code = "ACCOUNT_NOT_FOUND"


class CriticalDataError(BillingError):
    """
    Data needed for a correct state change could not be determined.

    Raised after the safe part of the change has been applied (for an
    activation: status ACTIVE, no plan or credit limit). An operator has to
    complete the record by hand, so replays are pointless.
    """

    default_error_code = "CRITICAL_DATA_MISSING"


class TransientBillingError(BillingError):
    """Temporary failure; the same webhook may succeed later."""

    default_error_code = "TRANSIENT_ERROR"
    is_retryable = True


class GatewayError(TransientBillingError, ExternalServiceError):
    """
    Call to the payment gateway API failed.

    Attributes:
        status_code: HTTP status returned by the gateway, if any
    """

    default_error_code = "GATEWAY_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.status_code = status_code
        details = details or {}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(
            message,
            service_name="asaas",
            error_code=error_code,
            details=details,
        )
