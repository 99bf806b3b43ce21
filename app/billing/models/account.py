"""
Account model: the billing view of a customer.

One Account per gateway customer. Several writers share the row but own
disjoint fields:

- Subscription fields: SubscriptionActivator (through the FSM transitions)
- credits_balance: CreditLedger, via F() increments only
- credits_limit / credits_used: SubscriptionActivator.apply_subscription

Writers always save with ``update_fields`` (or use queryset ``update()``)
so a stale in-memory copy never overwrites another writer's columns.

Usage:
    from billing.models import Account

    account = Account.objects.get(gateway_customer_id="cus_000005219613")
    account.mark_overdue()
    account.save(update_fields=["subscription_status", "updated_at"])
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from core.models import BaseModel, UUIDPrimaryKeyMixin

from billing.state_machines import BillingCycle, PlanType, SubscriptionStatus


class Account(UUIDPrimaryKeyMixin, BaseModel):
    """
    Billing account keyed by the gateway customer id.

    State Flow (subscription_status):
        None -> ACTIVE                      activate()
        ACTIVE/OVERDUE -> OVERDUE           mark_overdue()
        ACTIVE/OVERDUE/CANCELLED -> CANCELLED   cancel()
        ACTIVE/OVERDUE/CANCELLED/EXPIRED -> EXPIRED   expire()
        CANCELLED/EXPIRED -> ACTIVE         reactivate()

    Self-loops (OVERDUE -> OVERDUE, CANCELLED -> CANCELLED, ...) exist so
    duplicate deliveries converge instead of raising TransitionNotAllowed.
    """

    # ==========================================================================
    # Identity
    # ==========================================================================

    gateway_customer_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Gateway customer id (cus_xxx)",
    )

    email = models.EmailField(
        blank=True,
        default="",
    )

    # ==========================================================================
    # Subscription
    # ==========================================================================

    plan = models.CharField(
        max_length=20,
        choices=PlanType.choices,
        null=True,
        blank=True,
        help_text="Subscribed plan. Kept on cancellation and expiry.",
    )

    billing_cycle = models.CharField(
        max_length=20,
        choices=BillingCycle.choices,
        null=True,
        blank=True,
    )

    subscription_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Gateway subscription id (sub_xxx)",
    )

    subscription_status = FSMField(
        max_length=20,
        choices=SubscriptionStatus.choices,
        null=True,
        blank=True,
        default=None,
        db_index=True,
        help_text="Subscription status (managed by FSM)",
    )

    next_due_date = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Next due date captured when the subscription was created",
    )

    subscription_ends_at = models.DateTimeField(null=True, blank=True)
    subscription_started_at = models.DateTimeField(null=True, blank=True)
    subscription_cancelled_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Credits
    # ==========================================================================

    credits_limit = models.PositiveIntegerField(
        default=0,
        help_text="Plan credits available in the current period",
    )
    credits_used = models.PositiveIntegerField(
        default=0,
        help_text="Plan credits consumed in the current period",
    )
    credits_balance = models.IntegerField(
        default=0,
        help_text="Purchased credits. Only changed through F() increments.",
    )
    last_credit_renewal_at = models.DateTimeField(null=True, blank=True)
    credits_expires_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Referral
    # ==========================================================================

    referral_code_used = models.CharField(
        max_length=50,
        null=True,
        blank=True,
    )
    referred_by_influencer = models.ForeignKey(
        "billing.Influencer",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="referred_accounts",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Account"
        verbose_name_plural = "Accounts"
        indexes = [
            models.Index(fields=["subscription_status", "subscription_ends_at"]),
        ]

    def __str__(self) -> str:
        return f"Account({self.gateway_customer_id}, {self.subscription_status})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=subscription_status,
        source="*",
        target=SubscriptionStatus.ACTIVE,
    )
    def activate(self):
        """Activate after a confirmed subscription payment or checkout."""

    @transition(
        field=subscription_status,
        source=[SubscriptionStatus.ACTIVE, SubscriptionStatus.OVERDUE],
        target=SubscriptionStatus.OVERDUE,
    )
    def mark_overdue(self):
        pass

    @transition(
        field=subscription_status,
        source=[
            None,
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.OVERDUE,
            SubscriptionStatus.CANCELLED,
        ],
        target=SubscriptionStatus.CANCELLED,
    )
    def cancel(self, ends_at=None):
        """
        Cancel the subscription.

        The first cancellation stamps subscription_cancelled_at; repeats
        keep the original timestamp. A cancellation can arrive before the
        first activation, so a never-activated account can be cancelled.

        Args:
            ends_at: End of the paid period, when known
        """
        if self.subscription_status != SubscriptionStatus.CANCELLED:
            self.subscription_cancelled_at = timezone.now()
        if ends_at is not None:
            self.subscription_ends_at = ends_at

    @transition(
        field=subscription_status,
        source=[
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.OVERDUE,
            SubscriptionStatus.CANCELLED,
            SubscriptionStatus.EXPIRED,
        ],
        target=SubscriptionStatus.EXPIRED,
    )
    def expire(self):
        """Expire the subscription. The plan is deliberately kept."""
        if self.subscription_status != SubscriptionStatus.EXPIRED:
            self.subscription_ends_at = timezone.now()

    @transition(
        field=subscription_status,
        source=[SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED],
        target=SubscriptionStatus.ACTIVE,
    )
    def reactivate(self):
        self.subscription_ends_at = None

    # ==========================================================================
    # Helper Properties
    # ==========================================================================

    @property
    def is_active(self) -> bool:
        return self.subscription_status == SubscriptionStatus.ACTIVE

    @property
    def credits_remaining(self) -> int:
        """Plan credits left this period plus purchased credits."""
        return max(self.credits_limit - self.credits_used, 0) + self.credits_balance
