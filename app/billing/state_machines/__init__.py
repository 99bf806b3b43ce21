"""
State machine enums and choice types for billing models.
"""

from billing.state_machines.states import (
    AuditCategory,
    AuditLevel,
    BillingCycle,
    CreditPurchaseStatus,
    CreditSource,
    CreditTransactionType,
    PaymentStatus,
    PaymentType,
    PlanType,
    SubscriptionStatus,
    WebhookEventStatus,
)

__all__ = [
    "AuditCategory",
    "AuditLevel",
    "BillingCycle",
    "CreditPurchaseStatus",
    "CreditSource",
    "CreditTransactionType",
    "PaymentStatus",
    "PaymentType",
    "PlanType",
    "SubscriptionStatus",
    "WebhookEventStatus",
]
