"""
State and choice enums for billing models.

These are Django TextChoices for database storage and admin integration.
Values mirror the gateway's own vocabulary (upper case) so payload values
such as ``cycle="MONTHLY"`` compare directly.

State Machines Overview:

Account.subscription_status:
    (none) → ACTIVE (confirmed payment or checkout)
    ACTIVE → OVERDUE (overdue subscription payment)
    ACTIVE/OVERDUE → CANCELLED
    ACTIVE/OVERDUE/CANCELLED → EXPIRED (plan is kept)
    CANCELLED/EXPIRED → ACTIVE (reactivation)

PaymentRecord.status:
    PENDING → CONFIRMED
    PENDING → OVERDUE → CONFIRMED (late payment)
    PENDING/OVERDUE/CONFIRMED → CANCELLED | REFUNDED

WebhookEvent.status:
    PENDING → PROCESSED | FAILED (both terminal)
"""

from django.db import models


class WebhookEventStatus(models.TextChoices):
    """
    Processing status of a received webhook.

    A replay of a FAILED event is a new row, so both terminal states
    are final for the row that reached them.
    """

    PENDING = "PENDING", "Pending"
    PROCESSED = "PROCESSED", "Processed"
    FAILED = "FAILED", "Failed"


class SubscriptionStatus(models.TextChoices):
    """Subscription status of an Account. Null means never subscribed."""

    ACTIVE = "ACTIVE", "Active"
    OVERDUE = "OVERDUE", "Overdue"
    CANCELLED = "CANCELLED", "Cancelled"
    EXPIRED = "EXPIRED", "Expired"


class PaymentStatus(models.TextChoices):
    """Lifecycle of a PaymentRecord."""

    PENDING = "PENDING", "Pending"
    CONFIRMED = "CONFIRMED", "Confirmed"
    OVERDUE = "OVERDUE", "Overdue"
    CANCELLED = "CANCELLED", "Cancelled"
    REFUNDED = "REFUNDED", "Refunded"


class CreditPurchaseStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    CONFIRMED = "CONFIRMED", "Confirmed"


class PaymentType(models.TextChoices):
    SUBSCRIPTION = "SUBSCRIPTION", "Subscription"
    CREDIT_PURCHASE = "CREDIT_PURCHASE", "Credit Purchase"


class PlanType(models.TextChoices):
    """
    Subscription plans.

    Declaration order is the order used when matching plan names in
    free-text gateway descriptions.
    """

    STARTER = "STARTER", "Starter"
    PREMIUM = "PREMIUM", "Premium"
    GOLD = "GOLD", "Gold"


class BillingCycle(models.TextChoices):
    MONTHLY = "MONTHLY", "Monthly"
    YEARLY = "YEARLY", "Yearly"


class CreditTransactionType(models.TextChoices):
    EARNED = "EARNED", "Earned"
    SPENT = "SPENT", "Spent"
    EXPIRED = "EXPIRED", "Expired"
    REFUNDED = "REFUNDED", "Refunded"


class CreditSource(models.TextChoices):
    SUBSCRIPTION = "SUBSCRIPTION", "Subscription"
    PURCHASE = "PURCHASE", "Purchase"
    BONUS = "BONUS", "Bonus"
    REFUND = "REFUND", "Refund"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT", "Admin Adjustment"


class AuditLevel(models.TextChoices):
    INFO = "INFO", "Info"
    WARNING = "WARNING", "Warning"
    ERROR = "ERROR", "Error"
    CRITICAL = "CRITICAL", "Critical"


class AuditCategory(models.TextChoices):
    WEBHOOK = "WEBHOOK", "Webhook"
    PAYMENT = "PAYMENT", "Payment"
    SUBSCRIPTION = "SUBSCRIPTION", "Subscription"
    CREDITS = "CREDITS", "Credits"
    COMMISSION = "COMMISSION", "Commission"
