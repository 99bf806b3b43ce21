"""
Billing services.

Each service owns one slice of state:
- PaymentResolver: PaymentRecord lifecycle
- SubscriptionActivator: subscription fields of Account
- CreditLedger: CreditPurchase confirmation and CreditTransaction entries
- CommissionCalculator: Influencer commission totals
- StateChangeNotifier: best-effort client notifications

Usage:
    from billing.services import PaymentResolver, PaymentLookup

    resolved = PaymentResolver.resolve(account, PaymentLookup.from_payment(payment))
"""

from billing.services.commission import CommissionCalculator
from billing.services.credit_ledger import CreditGrant, CreditLedger, parse_credit_amount
from billing.services.notifier import StateChangeNotifier
from billing.services.payment_resolver import (
    PaymentLookup,
    PaymentResolver,
    ResolvedPayment,
)
from billing.services.subscription_activator import (
    ActivationContext,
    ActivationResult,
    SubscriptionActivator,
    first_resolved,
)

__all__ = [
    "ActivationContext",
    "ActivationResult",
    "CommissionCalculator",
    "CreditGrant",
    "CreditLedger",
    "PaymentLookup",
    "PaymentResolver",
    "ResolvedPayment",
    "StateChangeNotifier",
    "SubscriptionActivator",
    "first_resolved",
    "parse_credit_amount",
]
