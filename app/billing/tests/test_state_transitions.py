"""
Tests for state machine transitions using django-fsm.

Tests valid transitions, self-loops that make duplicate events converge,
and transitions that must be refused for Account, PaymentRecord and
WebhookEvent.
"""

import pytest
from django_fsm import TransitionNotAllowed, can_proceed
from freezegun import freeze_time

from billing.state_machines import PaymentStatus, SubscriptionStatus, WebhookEventStatus
from billing.tests.factories import AccountFactory, PaymentRecordFactory, WebhookEventFactory


# =============================================================================
# Account.subscription_status
# =============================================================================


class TestAccountTransitions:
    def test_never_subscribed_can_activate(self, db):
        account = AccountFactory()

        account.activate()

        assert account.subscription_status == SubscriptionStatus.ACTIVE

    def test_never_subscribed_cannot_go_overdue(self, db):
        account = AccountFactory()

        assert can_proceed(account.mark_overdue) is False
        with pytest.raises(TransitionNotAllowed):
            account.mark_overdue()

    def test_overdue_is_a_self_loop(self, db):
        account = AccountFactory(subscription_status=SubscriptionStatus.OVERDUE)

        account.mark_overdue()

        assert account.subscription_status == SubscriptionStatus.OVERDUE

    def test_never_subscribed_can_be_cancelled(self, db):
        account = AccountFactory()

        account.cancel()

        assert account.subscription_status == SubscriptionStatus.CANCELLED
        assert account.subscription_cancelled_at is not None

    def test_first_cancel_stamps_cancelled_at(self, db):
        account = AccountFactory(subscription_status=SubscriptionStatus.ACTIVE)

        with freeze_time("2026-03-01 12:00:00"):
            account.cancel()
        first_cancelled_at = account.subscription_cancelled_at

        with freeze_time("2026-03-05 12:00:00"):
            account.cancel()

        assert account.subscription_status == SubscriptionStatus.CANCELLED
        assert account.subscription_cancelled_at == first_cancelled_at

    def test_expire_keeps_plan(self, db):
        account = AccountFactory(
            subscription_status=SubscriptionStatus.CANCELLED,
            plan="GOLD",
        )

        account.expire()

        assert account.subscription_status == SubscriptionStatus.EXPIRED
        assert account.plan == "GOLD"
        assert account.subscription_ends_at is not None

    def test_active_cannot_reactivate(self, db):
        account = AccountFactory(subscription_status=SubscriptionStatus.ACTIVE)

        assert can_proceed(account.reactivate) is False

    def test_expired_reactivates_and_clears_end(self, db):
        account = AccountFactory(subscription_status=SubscriptionStatus.EXPIRED)
        account.subscription_ends_at = account.created_at

        account.reactivate()

        assert account.subscription_status == SubscriptionStatus.ACTIVE
        assert account.subscription_ends_at is None


# =============================================================================
# PaymentRecord.status
# =============================================================================


class TestPaymentRecordTransitions:
    def test_pending_to_confirmed_sets_date(self, db):
        record = PaymentRecordFactory()

        record.confirm()

        assert record.status == PaymentStatus.CONFIRMED
        assert record.confirmed_date is not None

    def test_overdue_paid_late(self, db):
        record = PaymentRecordFactory()
        record.mark_overdue()
        record.confirm()

        assert record.status == PaymentStatus.CONFIRMED
        assert record.overdue_date is not None

    def test_confirmed_cannot_go_overdue(self, db):
        record = PaymentRecordFactory(status=PaymentStatus.CONFIRMED)

        assert can_proceed(record.mark_overdue) is False

    def test_confirmed_cannot_be_confirmed_again(self, db):
        record = PaymentRecordFactory(status=PaymentStatus.CONFIRMED)

        with pytest.raises(TransitionNotAllowed):
            record.confirm()

    @pytest.mark.parametrize("status", [PaymentStatus.CANCELLED, PaymentStatus.REFUNDED])
    def test_terminal_records_cannot_confirm(self, db, status):
        record = PaymentRecordFactory(status=status)

        assert can_proceed(record.confirm) is False

    def test_refunded_cannot_be_cancelled(self, db):
        record = PaymentRecordFactory(status=PaymentStatus.REFUNDED)

        assert can_proceed(record.cancel) is False
        assert can_proceed(record.refund) is True


# =============================================================================
# WebhookEvent.status
# =============================================================================


class TestWebhookEventTransitions:
    def test_pending_to_processed(self, db):
        event = WebhookEventFactory()

        event.mark_processed()

        assert event.status == WebhookEventStatus.PROCESSED
        assert event.processed_at is not None

    @pytest.mark.parametrize(
        "status", [WebhookEventStatus.PROCESSED, WebhookEventStatus.FAILED]
    )
    def test_terminal_rows_never_move(self, db, status):
        event = WebhookEventFactory(status=status)

        with pytest.raises(TransitionNotAllowed):
            event.mark_processed()
        with pytest.raises(TransitionNotAllowed):
            event.mark_failed("again", retryable=True)
