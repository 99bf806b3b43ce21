"""
Billing domain models.

- Account: billing view of a gateway customer (subscription + credits)
- PaymentRecord: internal record of each gateway payment
- CreditPackage / CreditPurchase / CreditTransaction: credits sold and granted
- Influencer: referral partner and commission totals
- WebhookEvent: every received webhook and its processing outcome
- BillingAuditLog: operator-facing audit trail
"""

from billing.models.account import Account
from billing.models.audit_log import BillingAuditLog
from billing.models.credits import CreditPackage, CreditPurchase, CreditTransaction
from billing.models.influencer import Influencer
from billing.models.payment_record import PaymentRecord
from billing.models.webhook_event import WebhookEvent

__all__ = [
    "Account",
    "BillingAuditLog",
    "CreditPackage",
    "CreditPurchase",
    "CreditTransaction",
    "Influencer",
    "PaymentRecord",
    "WebhookEvent",
]
