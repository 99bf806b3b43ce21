"""
Subscription activator: owns the subscription fields of Account.

Activation needs a plan, a billing cycle and the end of the paid period,
and none of them is guaranteed to be in the webhook. Each is resolved by
an ordered chain of small pure functions over an ActivationContext; the
first non-empty answer wins. The chains are module-level lists so their
order is visible and testable on its own.

When no plan can be found the account is still activated (blocking a
paying customer is worse than a wrong credit limit), but no plan or
credit limit is invented: a CRITICAL audit entry is written and
CriticalDataError is raised for the handler to report.

Status transitions are django-fsm transitions on Account. A transition
that is not allowed from the current status is a logged no-op, so
duplicated and reordered events converge on the same state.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, TypeVar

from django.conf import settings
from django.utils import timezone
from django_fsm import can_proceed

from core.services import BaseService

from billing.exceptions import CriticalDataError
from billing.models import BillingAuditLog, PaymentRecord
from billing.services.plans import (
    credit_period_for,
    credits_limit_for,
    normalize_cycle,
    plan_from_text,
)
from billing.state_machines import AuditCategory, AuditLevel, PaymentType, SubscriptionStatus

if TYPE_CHECKING:
    from billing.models import Account
    from billing.webhooks.payloads import CheckoutNotification, SubscriptionNotification

T = TypeVar("T")


# =============================================================================
# Resolution context
# =============================================================================


@dataclass
class ActivationContext:
    """
    Everything the resolver chains may look at.

    Attributes:
        account: Account being activated
        record: PaymentRecord matched for the triggering payment
        recent_payment: Newest other subscription payment carrying a plan
        gateway_subscription: Subscription from the payload or the gateway API
        checkout: Paid checkout, for CHECKOUT_PAID events
    """

    account: Account
    record: PaymentRecord | None = None
    recent_payment: PaymentRecord | None = None
    gateway_subscription: SubscriptionNotification | None = None
    checkout: CheckoutNotification | None = None

    @classmethod
    def build(
        cls,
        account: Account,
        record: PaymentRecord | None = None,
        *,
        gateway_subscription: SubscriptionNotification | None = None,
        checkout: CheckoutNotification | None = None,
    ) -> ActivationContext:
        """Load the recent-payment source and assemble the context."""
        recent = PaymentRecord.objects.filter(
            account=account,
            type=PaymentType.SUBSCRIPTION,
            plan_type__isnull=False,
        ).order_by("-created_at", "-id")
        if record is not None:
            recent = recent.exclude(pk=record.pk)
        return cls(
            account=account,
            record=record,
            recent_payment=recent.first(),
            gateway_subscription=gateway_subscription,
            checkout=checkout,
        )

    @property
    def gateway_texts(self) -> list[str]:
        """Free text from the gateway that may name the plan."""
        texts: list[str] = []
        if self.gateway_subscription and self.gateway_subscription.description:
            texts.append(self.gateway_subscription.description)
        if self.checkout:
            texts.extend(self.checkout.descriptive_texts)
        return texts


def first_resolved(chain: list[Callable[[ActivationContext], T | None]], ctx) -> T | None:
    """Apply resolvers left to right; return the first non-empty value."""
    for resolver in chain:
        value = resolver(ctx)
        if value:
            return value
    return None


# =============================================================================
# Plan
# =============================================================================


def plan_from_account(ctx: ActivationContext) -> str | None:
    return ctx.account.plan


def plan_from_payment_record(ctx: ActivationContext) -> str | None:
    return ctx.record.plan_type if ctx.record else None


def plan_from_recent_payment(ctx: ActivationContext) -> str | None:
    return ctx.recent_payment.plan_type if ctx.recent_payment else None


def plan_from_gateway_text(ctx: ActivationContext) -> str | None:
    for text in ctx.gateway_texts:
        plan = plan_from_text(text)
        if plan:
            return plan
    return None


PLAN_RESOLVERS = [
    plan_from_account,
    plan_from_payment_record,
    plan_from_recent_payment,
    plan_from_gateway_text,
]


# =============================================================================
# Billing cycle
# =============================================================================


def cycle_from_account(ctx: ActivationContext) -> str | None:
    return ctx.account.billing_cycle


def cycle_from_payment_record(ctx: ActivationContext) -> str | None:
    return ctx.record.billing_cycle if ctx.record else None


def cycle_from_recent_payment(ctx: ActivationContext) -> str | None:
    return ctx.recent_payment.billing_cycle if ctx.recent_payment else None


def cycle_from_gateway(ctx: ActivationContext) -> str | None:
    if ctx.checkout and normalize_cycle(ctx.checkout.cycle):
        return normalize_cycle(ctx.checkout.cycle)
    if ctx.gateway_subscription:
        return normalize_cycle(ctx.gateway_subscription.cycle)
    return None


CYCLE_RESOLVERS = [
    cycle_from_account,
    cycle_from_payment_record,
    cycle_from_recent_payment,
    cycle_from_gateway,
]


# =============================================================================
# Period end
# =============================================================================


def period_end_from_account(ctx: ActivationContext) -> datetime | None:
    return ctx.account.next_due_date


def period_end_from_gateway_end_date(ctx: ActivationContext) -> datetime | None:
    if ctx.gateway_subscription and ctx.gateway_subscription.end_date:
        return ctx.gateway_subscription.end_date
    if ctx.checkout:
        return ctx.checkout.end_date
    return None


def period_end_from_gateway_next_due_date(ctx: ActivationContext) -> datetime | None:
    if ctx.gateway_subscription and ctx.gateway_subscription.next_due_date:
        return ctx.gateway_subscription.next_due_date
    if ctx.checkout:
        return ctx.checkout.next_due_date
    return None


PERIOD_END_RESOLVERS = [
    period_end_from_account,
    period_end_from_gateway_end_date,
    period_end_from_gateway_next_due_date,
]


# =============================================================================
# Activator
# =============================================================================


@dataclass
class ActivationResult:
    plan: str | None
    billing_cycle: str | None
    period_end: datetime | None
    credits_limit: int
    first_activation: bool


class SubscriptionActivator(BaseService):
    """
    Apply subscription state changes to an Account.

    Callers pass an account locked with select_for_update() inside their
    transaction. Every write uses save(update_fields=...) so columns owned
    by other writers (credits_balance) are never overwritten.
    """

    @classmethod
    def activate(
        cls,
        ctx: ActivationContext,
        *,
        subscription_id: str | None = None,
        webhook_event_id: str | None = None,
    ) -> ActivationResult:
        """
        Activate the subscription after a confirmed payment or checkout.

        A payment for the subscription the account already has cancelled
        (the cancellation arrived first) stores the plan and credits but
        leaves the status CANCELLED, so both arrival orders end the same.

        Raises:
            CriticalDataError: No plan could be resolved. The account is
                ACTIVE (or still CANCELLED) and saved when this is raised.
        """
        logger = cls.get_logger()
        account = ctx.account
        plan = first_resolved(PLAN_RESOLVERS, ctx)
        billing_cycle = first_resolved(CYCLE_RESOLVERS, ctx)
        period_end = first_resolved(PERIOD_END_RESOLVERS, ctx)
        first_activation = account.subscription_started_at is None

        log_extra = {
            "webhook_event_id": webhook_event_id,
            "account_id": str(account.id),
            "plan": plan,
            "billing_cycle": billing_cycle,
        }

        update_fields = ["updated_at"]
        if cls._holds_cancelled_subscription(account, subscription_id):
            logger.info(
                "Payment for a cancelled subscription, status stays CANCELLED",
                extra=log_extra,
            )
            if account.subscription_ends_at is not None:
                period_end = None
        else:
            account.activate()
            update_fields.append("subscription_status")
            if subscription_id and account.subscription_id != subscription_id:
                account.subscription_id = subscription_id
                update_fields.append("subscription_id")

        if plan is None:
            if period_end is not None:
                account.subscription_ends_at = period_end
                update_fields.append("subscription_ends_at")
            account.save(update_fields=update_fields)

            logger.critical("Subscription activated without a plan", extra=log_extra)
            BillingAuditLog.record(
                "PLAN_UNRESOLVED",
                "Subscription activated but no plan could be determined; "
                "plan and credit limit need manual correction",
                category=AuditCategory.SUBSCRIPTION,
                level=AuditLevel.CRITICAL,
                account=account,
                webhook_event_id=webhook_event_id,
                payment_record_id=str(ctx.record.id) if ctx.record else None,
                subscription_id=subscription_id,
            )
            raise CriticalDataError(
                "Subscription activated without a plan; manual correction required",
                details={"account_id": str(account.id), "subscription_id": subscription_id},
            )

        cls.apply_subscription(
            account,
            plan,
            billing_cycle,
            period_end=period_end,
            extra_fields=update_fields,
        )
        logger.info(
            "Subscription activated",
            extra={**log_extra, "credits_limit": account.credits_limit},
        )
        return ActivationResult(
            plan=plan,
            billing_cycle=account.billing_cycle,
            period_end=period_end,
            credits_limit=account.credits_limit,
            first_activation=first_activation,
        )

    @classmethod
    def apply_subscription(
        cls,
        account: Account,
        plan: str,
        billing_cycle: str | None,
        *,
        period_end: datetime | None = None,
        extra_fields: list[str] | None = None,
    ) -> None:
        """
        Store the plan and start a new credit period.

        Plan credits do not accumulate: the limit is reset to the plan's
        allowance (twelve months of it for yearly plans) and usage to zero.
        """
        now = timezone.now()
        account.plan = plan
        if billing_cycle:
            account.billing_cycle = billing_cycle
        account.credits_limit = credits_limit_for(plan, account.billing_cycle)
        account.credits_used = 0
        account.last_credit_renewal_at = now
        account.credits_expires_at = now + credit_period_for(account.billing_cycle)

        update_fields = list(extra_fields or []) + [
            "plan",
            "billing_cycle",
            "credits_limit",
            "credits_used",
            "last_credit_renewal_at",
            "credits_expires_at",
            "updated_at",
        ]
        if account.subscription_started_at is None:
            account.subscription_started_at = now
            update_fields.append("subscription_started_at")
        if period_end is not None:
            account.subscription_ends_at = period_end
            update_fields.append("subscription_ends_at")

        account.save(update_fields=list(dict.fromkeys(update_fields)))

    @staticmethod
    def _holds_cancelled_subscription(account: Account, subscription_id: str | None) -> bool:
        return (
            account.subscription_status == SubscriptionStatus.CANCELLED
            and subscription_id is not None
            and account.subscription_id == subscription_id
        )

    @classmethod
    def mark_overdue(cls, account: Account, *, webhook_event_id: str | None = None) -> bool:
        if not cls._allowed(account, account.mark_overdue, "mark_overdue", webhook_event_id):
            return False
        account.mark_overdue()
        account.save(update_fields=["subscription_status", "updated_at"])
        return True

    @classmethod
    def cancel(
        cls,
        account: Account,
        *,
        gateway_subscription: SubscriptionNotification | None = None,
        webhook_event_id: str | None = None,
    ) -> bool:
        """
        Cancel the subscription and record when the paid period ends.

        The end comes from the period-end chain; if nothing resolves,
        ``SUBSCRIPTION_CANCELLATION_FALLBACK_DAYS`` from now is used and
        logged as degraded. A repeated cancellation keeps an end date
        that is already stored rather than recomputing the fallback.
        """
        if not cls._allowed(account, account.cancel, "cancel", webhook_event_id):
            return False

        ctx = ActivationContext(account=account, gateway_subscription=gateway_subscription)
        ends_at = first_resolved(PERIOD_END_RESOLVERS, ctx)
        already_ended = account.subscription_ends_at is not None and not account.is_active
        if ends_at is None and not already_ended:
            ends_at = timezone.now() + timedelta(
                days=settings.SUBSCRIPTION_CANCELLATION_FALLBACK_DAYS
            )
            cls.get_logger().warning(
                "No period end known for cancelled subscription, using fallback",
                extra={
                    "webhook_event_id": webhook_event_id,
                    "account_id": str(account.id),
                    "subscription_ends_at": ends_at.isoformat(),
                },
            )

        update_fields = [
            "subscription_status",
            "subscription_cancelled_at",
            "subscription_ends_at",
            "updated_at",
        ]
        # Cancelled before any activation: remember which subscription
        if gateway_subscription and not account.subscription_id:
            account.subscription_id = gateway_subscription.subscription_id
            update_fields.append("subscription_id")

        account.cancel(ends_at=ends_at)
        account.save(update_fields=update_fields)
        return True

    @classmethod
    def expire(cls, account: Account, *, webhook_event_id: str | None = None) -> bool:
        """Expire the subscription. The plan stays on the account."""
        if not cls._allowed(account, account.expire, "expire", webhook_event_id):
            return False
        account.expire()
        account.save(update_fields=["subscription_status", "subscription_ends_at", "updated_at"])
        return True

    @classmethod
    def reactivate(cls, account: Account, *, webhook_event_id: str | None = None) -> bool:
        """Reactivate and restore the credit limit of the stored plan."""
        if not cls._allowed(account, account.reactivate, "reactivate", webhook_event_id):
            return False

        account.reactivate()
        update_fields = ["subscription_status", "subscription_ends_at", "updated_at"]
        if account.plan:
            account.credits_limit = credits_limit_for(account.plan, account.billing_cycle)
            update_fields.append("credits_limit")
        else:
            cls.get_logger().warning(
                "Reactivated account has no stored plan, credit limit unchanged",
                extra={"webhook_event_id": webhook_event_id, "account_id": str(account.id)},
            )
        account.save(update_fields=update_fields)
        return True

    @classmethod
    def record_subscription_created(
        cls,
        account: Account,
        subscription: SubscriptionNotification,
        *,
        webhook_event_id: str | None = None,
    ) -> list[str]:
        """
        Store details of a newly created subscription. Status is untouched.

        Returns:
            Names of the fields that changed
        """
        changes: dict[str, object] = {"subscription_id": subscription.subscription_id}
        if subscription.next_due_date:
            changes["next_due_date"] = subscription.next_due_date
        billing_cycle = normalize_cycle(subscription.cycle)
        if billing_cycle:
            changes["billing_cycle"] = billing_cycle
        plan = plan_from_text(subscription.description)
        if plan:
            changes["plan"] = plan

        changed = [name for name, value in changes.items() if getattr(account, name) != value]
        if changed:
            for name in changed:
                setattr(account, name, changes[name])
            account.save(update_fields=changed + ["updated_at"])

        cls.get_logger().info(
            "Subscription details stored",
            extra={
                "webhook_event_id": webhook_event_id,
                "account_id": str(account.id),
                "changed_fields": changed,
            },
        )
        return changed

    @classmethod
    def _allowed(cls, account: Account, transition, name: str, webhook_event_id) -> bool:
        if can_proceed(transition):
            return True
        cls.get_logger().info(
            f"Subscription transition '{name}' not allowed, ignoring",
            extra={
                "webhook_event_id": webhook_event_id,
                "account_id": str(account.id),
                "subscription_status": account.subscription_status,
            },
        )
        return False
