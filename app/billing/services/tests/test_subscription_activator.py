"""
Tests for SubscriptionActivator and its resolver chains.

Tests cover:
- Plan, billing cycle and period-end chain priority
- Credit limit reset on activation (no accumulation)
- Activation without a resolvable plan
- Cancellation end date, including the fallback
- Expiry, reactivation and SUBSCRIPTION_CREATED details
"""

from datetime import datetime, timezone

import pytest
from freezegun import freeze_time

from billing.exceptions import CriticalDataError
from billing.models import Account, BillingAuditLog
from billing.services.subscription_activator import (
    CYCLE_RESOLVERS,
    PERIOD_END_RESOLVERS,
    PLAN_RESOLVERS,
    ActivationContext,
    SubscriptionActivator,
    first_resolved,
)
from billing.state_machines import AuditLevel, BillingCycle, PlanType, SubscriptionStatus
from billing.tests.factories import AccountFactory, PaymentRecordFactory
from billing.tests.payloads import checkout_body, inbound, subscription_body

DUE = datetime(2026, 2, 10, tzinfo=timezone.utc)


# =============================================================================
# Resolver chains
# =============================================================================


class TestResolverChains:
    def test_first_resolved_skips_empty_values(self):
        chain = [lambda ctx: None, lambda ctx: "", lambda ctx: "GOLD", lambda ctx: "STARTER"]

        assert first_resolved(chain, ctx=None) == "GOLD"

    def test_account_plan_wins(self, account):
        account.plan = PlanType.GOLD
        record = PaymentRecordFactory(account=account, plan_type=PlanType.STARTER)

        ctx = ActivationContext.build(account, record)

        assert first_resolved(PLAN_RESOLVERS, ctx) == PlanType.GOLD

    def test_record_plan_before_recent_payment(self, account):
        PaymentRecordFactory(account=account, plan_type=PlanType.GOLD)
        record = PaymentRecordFactory(account=account, plan_type=PlanType.STARTER)

        ctx = ActivationContext.build(account, record)

        assert first_resolved(PLAN_RESOLVERS, ctx) == PlanType.STARTER

    def test_recent_payment_excludes_current_record(self, account):
        with freeze_time("2026-01-01"):
            PaymentRecordFactory(account=account, plan_type=PlanType.GOLD)
        with freeze_time("2026-01-02"):
            record = PaymentRecordFactory(account=account, plan_type=None)

        ctx = ActivationContext.build(account, record)

        assert ctx.recent_payment.plan_type == PlanType.GOLD
        assert first_resolved(PLAN_RESOLVERS, ctx) == PlanType.GOLD

    def test_plan_from_checkout_item_name(self, account):
        checkout = inbound(checkout_body(cycle="MONTHLY", item_name="Plano Premium")).checkout

        ctx = ActivationContext.build(account, checkout=checkout)

        assert first_resolved(PLAN_RESOLVERS, ctx) == PlanType.PREMIUM
        assert first_resolved(CYCLE_RESOLVERS, ctx) == BillingCycle.MONTHLY

    def test_account_next_due_date_wins_period_end(self, account):
        account.next_due_date = DUE
        subscription = inbound(subscription_body(end_date="2026-12-31")).subscription

        ctx = ActivationContext(account=account, gateway_subscription=subscription)

        assert first_resolved(PERIOD_END_RESOLVERS, ctx) == DUE

    def test_gateway_end_date_before_next_due_date(self, account):
        subscription = inbound(
            subscription_body(end_date="2026-12-31", next_due_date="2026-02-10")
        ).subscription

        ctx = ActivationContext(account=account, gateway_subscription=subscription)

        assert first_resolved(PERIOD_END_RESOLVERS, ctx) == datetime(
            2026, 12, 31, tzinfo=timezone.utc
        )


# =============================================================================
# Activation
# =============================================================================


class TestActivate:
    def test_activation_sets_plan_and_credits(self, account, pending_subscription_record):
        ctx = ActivationContext.build(account, pending_subscription_record)

        with freeze_time("2026-01-10 08:00:00"):
            result = SubscriptionActivator.activate(ctx, subscription_id="sub_1")

        account.refresh_from_db()
        assert result.first_activation is True
        assert account.subscription_status == SubscriptionStatus.ACTIVE
        assert account.plan == PlanType.PREMIUM
        assert account.billing_cycle == BillingCycle.MONTHLY
        assert account.subscription_id == "sub_1"
        assert account.credits_limit == 1200
        assert account.credits_used == 0
        assert account.credits_expires_at == datetime(2026, 2, 9, 8, tzinfo=timezone.utc)

    def test_renewal_resets_instead_of_accumulating(self, active_account):
        active_account.credits_used = 900
        active_account.save()

        SubscriptionActivator.activate(ActivationContext.build(active_account))

        active_account.refresh_from_db()
        assert active_account.credits_limit == 1200
        assert active_account.credits_used == 0

    def test_yearly_plan_gets_twelve_months(self, account):
        record = PaymentRecordFactory(
            account=account, plan_type=PlanType.STARTER, billing_cycle=BillingCycle.YEARLY
        )

        result = SubscriptionActivator.activate(ActivationContext.build(account, record))

        assert result.credits_limit == 6000

    def test_credits_balance_is_not_overwritten(self, account, pending_subscription_record):
        # Purchased credits granted by another writer after the row was loaded
        Account.objects.filter(pk=account.pk).update(credits_balance=250)

        SubscriptionActivator.activate(
            ActivationContext.build(account, pending_subscription_record)
        )

        account.refresh_from_db()
        assert account.credits_balance == 250

    def test_missing_plan_activates_and_raises(self, account):
        record = PaymentRecordFactory(account=account, plan_type=None)

        with pytest.raises(CriticalDataError):
            SubscriptionActivator.activate(
                ActivationContext.build(account, record), subscription_id="sub_1"
            )

        account.refresh_from_db()
        assert account.subscription_status == SubscriptionStatus.ACTIVE
        assert account.plan is None
        assert account.credits_limit == 0
        audit = BillingAuditLog.objects.get(action="PLAN_UNRESOLVED")
        assert audit.level == AuditLevel.CRITICAL
        assert audit.account == account


# =============================================================================
# Status changes
# =============================================================================


class TestCancel:
    def test_uses_stored_next_due_date(self, active_account):
        active_account.next_due_date = DUE
        active_account.save()

        assert SubscriptionActivator.cancel(active_account) is True

        active_account.refresh_from_db()
        assert active_account.subscription_status == SubscriptionStatus.CANCELLED
        assert active_account.subscription_ends_at == DUE

    @freeze_time("2026-03-01 10:00:00")
    def test_fallback_when_no_period_end_is_known(self, active_account, settings):
        settings.SUBSCRIPTION_CANCELLATION_FALLBACK_DAYS = 30

        SubscriptionActivator.cancel(active_account)

        active_account.refresh_from_db()
        assert active_account.subscription_ends_at == datetime(
            2026, 3, 31, 10, tzinfo=timezone.utc
        )

    def test_repeated_cancel_keeps_end_date(self, active_account):
        with freeze_time("2026-03-01"):
            SubscriptionActivator.cancel(active_account)
        first_end = Account.objects.get(pk=active_account.pk).subscription_ends_at

        with freeze_time("2026-03-20"):
            assert SubscriptionActivator.cancel(active_account) is True

        active_account.refresh_from_db()
        assert active_account.subscription_ends_at == first_end

    def test_cancel_before_first_activation(self, account):
        subscription = inbound(subscription_body("SUBSCRIPTION_CANCELLED")).subscription

        assert SubscriptionActivator.cancel(account, gateway_subscription=subscription) is True

        account.refresh_from_db()
        assert account.subscription_status == SubscriptionStatus.CANCELLED
        assert account.subscription_id == "sub_000000000001"
        assert account.subscription_ends_at == DUE

    def test_activation_of_cancelled_subscription_keeps_status(self, account):
        record = PaymentRecordFactory(account=account, plan_type=PlanType.GOLD)
        account.subscription_id = "sub_000000000001"
        account.subscription_status = SubscriptionStatus.CANCELLED
        account.subscription_ends_at = DUE
        account.save()

        SubscriptionActivator.activate(
            ActivationContext(account=account, record=record),
            subscription_id="sub_000000000001",
        )

        account.refresh_from_db()
        assert account.subscription_status == SubscriptionStatus.CANCELLED
        assert account.plan == PlanType.GOLD
        assert account.subscription_ends_at == DUE

    def test_activation_of_new_subscription_after_cancel(self, account):
        record = PaymentRecordFactory(account=account, plan_type=PlanType.GOLD)
        account.subscription_id = "sub_old"
        account.subscription_status = SubscriptionStatus.CANCELLED
        account.save()

        SubscriptionActivator.activate(
            ActivationContext(account=account, record=record),
            subscription_id="sub_new",
        )

        account.refresh_from_db()
        assert account.subscription_status == SubscriptionStatus.ACTIVE
        assert account.subscription_id == "sub_new"


class TestExpireAndReactivate:
    def test_expire_keeps_plan(self, active_account):
        assert SubscriptionActivator.expire(active_account) is True

        active_account.refresh_from_db()
        assert active_account.subscription_status == SubscriptionStatus.EXPIRED
        assert active_account.plan == PlanType.PREMIUM

    def test_reactivate_restores_plan_limit(self, active_account):
        SubscriptionActivator.expire(active_account)
        active_account.credits_limit = 0
        active_account.save()

        assert SubscriptionActivator.reactivate(active_account) is True

        active_account.refresh_from_db()
        assert active_account.subscription_status == SubscriptionStatus.ACTIVE
        assert active_account.credits_limit == 1200
        assert active_account.subscription_ends_at is None

    def test_reactivate_active_is_noop(self, active_account):
        assert SubscriptionActivator.reactivate(active_account) is False

    def test_overdue_requires_subscription(self, account):
        assert SubscriptionActivator.mark_overdue(account) is False


class TestRecordSubscriptionCreated:
    def test_stores_details_without_status_change(self, account):
        subscription = inbound(
            subscription_body(cycle="YEARLY", description="Plano Gold anual")
        ).subscription

        changed = SubscriptionActivator.record_subscription_created(account, subscription)

        account.refresh_from_db()
        assert set(changed) == {"subscription_id", "next_due_date", "billing_cycle", "plan"}
        assert account.subscription_id == "sub_000000000001"
        assert account.next_due_date == DUE
        assert account.billing_cycle == BillingCycle.YEARLY
        assert account.plan == PlanType.GOLD
        assert account.subscription_status is None

    def test_repeat_changes_nothing(self, account):
        subscription = inbound(subscription_body()).subscription
        SubscriptionActivator.record_subscription_created(account, subscription)

        assert SubscriptionActivator.record_subscription_created(account, subscription) == []

    def test_unknown_cycle_is_ignored(self, account):
        subscription = inbound(subscription_body(cycle="WEEKLY", description=None)).subscription

        changed = SubscriptionActivator.record_subscription_created(account, subscription)

        assert "billing_cycle" not in changed
