"""
End-to-end webhook journeys through the HTTP endpoint.

Each test posts gateway deliveries the way Asaas sends them, including
redeliveries and out-of-order events, and checks the resulting state.
"""

import json
from unittest.mock import patch

import pytest
from django.db import OperationalError
from django.urls import reverse

from billing.models import BillingAuditLog, CreditTransaction, PaymentRecord, WebhookEvent
from billing.state_machines import (
    PaymentStatus,
    PaymentType,
    PlanType,
    SubscriptionStatus,
    WebhookEventStatus,
)
from billing.tasks import retry_failed_webhook_events
from billing.tests.factories import PaymentRecordFactory
from billing.tests.payloads import payment_body, subscription_body

TOKEN = "test-webhook-token"


@pytest.fixture(autouse=True)
def webhook_token(settings):
    settings.ASAAS_WEBHOOK_TOKEN = TOKEN


@pytest.fixture
def deliver(client):
    """Post a webhook body the way the gateway does."""

    def _deliver(body):
        return client.post(
            reverse("billing:asaas_webhook"),
            data=json.dumps(body),
            content_type="application/json",
            HTTP_ASAAS_ACCESS_TOKEN=TOKEN,
        )

    return _deliver


class TestSubscriptionJourney:
    def test_subscribe_redeliver_cancel(self, deliver, account, pending_subscription_record):
        confirmed = payment_body(
            subscription="sub_000000000001",
            external_reference="chk_000000000001",
        )

        assert deliver(confirmed).json()["status"] == "processed"
        assert deliver(confirmed).json()["status"] == "already_processed"

        account.refresh_from_db()
        assert account.subscription_status == SubscriptionStatus.ACTIVE
        assert account.plan == PlanType.PREMIUM

        response = deliver(subscription_body("SUBSCRIPTION_CANCELLED"))

        account.refresh_from_db()
        pending_subscription_record.refresh_from_db()
        assert response.status_code == 200
        assert account.subscription_status == SubscriptionStatus.CANCELLED
        assert account.subscription_ends_at is not None
        assert pending_subscription_record.status == PaymentStatus.CONFIRMED
        assert pending_subscription_record.gateway_payment_id == "pay_000000000001"
        # The redelivery was acknowledged without a row
        assert WebhookEvent.objects.count() == 2

    def test_renewal_creates_new_record(self, deliver, active_account):
        deliver(payment_body(payment_id="pay_month_1", subscription="sub_000000000001"))
        deliver(payment_body(payment_id="pay_month_2", subscription="sub_000000000001"))

        active_account.refresh_from_db()
        assert PaymentRecord.objects.count() == 2
        assert set(PaymentRecord.objects.values_list("status", flat=True)) == {
            PaymentStatus.CONFIRMED
        }
        assert active_account.subscription_status == SubscriptionStatus.ACTIVE


class TestCreditsJourney:
    def test_confirmed_then_received(self, deliver, account, pending_credit_purchase):
        PaymentRecordFactory(
            account=account,
            type=PaymentType.CREDIT_PURCHASE,
            gateway_checkout_id="chk_credits_000001",
        )

        deliver(payment_body(external_reference="chk_credits_000001"))
        deliver(payment_body("PAYMENT_RECEIVED", external_reference="chk_credits_000001"))

        account.refresh_from_db()
        entry = CreditTransaction.objects.get()
        assert account.credits_balance == 350
        assert entry.balance_after == 350
        assert WebhookEvent.objects.filter(status=WebhookEventStatus.PROCESSED).count() == 2


class TestTransientFailureJourney:
    def test_failure_then_redelivery_then_retry_run(self, deliver, account):
        body = payment_body(external_reference="credits-100")

        with patch(
            "billing.webhooks.handlers.PaymentResolver.resolve",
            side_effect=OperationalError("database is locked"),
        ):
            assert deliver(body).status_code == 422

        assert deliver(body).status_code == 200

        summary = retry_failed_webhook_events.apply().get()

        account.refresh_from_db()
        assert account.credits_balance == 100
        assert summary["already_processed"] == 0
        # Fresh failure is still inside the retry delay
        assert WebhookEvent.objects.filter(status=WebhookEventStatus.FAILED).count() == 1
        assert not BillingAuditLog.objects.filter(action="WEBHOOK_RETRY_RUN").exists()
