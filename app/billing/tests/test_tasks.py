"""
Tests for the webhook replay tasks.

Tests cover:
- retry_failed_webhook_events candidate selection
- New attempt rows linked to the failed row
- Identity superseded by a processed delivery
- reprocess_webhook_event manual replays
"""

import uuid
from datetime import timedelta

import pytest
from django.utils import timezone
from freezegun import freeze_time

from billing.models import BillingAuditLog, CreditTransaction, WebhookEvent
from billing.state_machines import WebhookEventStatus
from billing.tasks import reprocess_webhook_event, retry_failed_webhook_events
from billing.tests.factories import WebhookEventFactory
from billing.tests.payloads import payment_body

pytestmark = pytest.mark.django_db


def failed_event(body=None, *, age=timedelta(hours=2), **kwargs):
    """A FAILED, retryable row holding ``body`` as its payload."""
    body = body or payment_body(external_reference="credits-100")
    defaults = {
        "event_type": body["event"],
        "gateway_payment_id": body["payment"]["id"],
        "gateway_customer_id": body["payment"]["customer"],
        "raw_payload": body,
        "status": WebhookEventStatus.FAILED,
        "retryable": True,
        "error_message": "OperationalError: database is locked",
        "received_at": timezone.now() - age,
    }
    defaults.update(kwargs)
    return WebhookEventFactory(**defaults)


# =============================================================================
# retry_failed_webhook_events
# =============================================================================


class TestRetryFailedWebhookEvents:
    def test_replays_eligible_event_as_new_attempt(self, account):
        failed = failed_event()

        summary = retry_failed_webhook_events()

        attempt = WebhookEvent.objects.get(retry_of=failed)
        failed.refresh_from_db()
        account.refresh_from_db()
        assert summary == {"processed": 1, "failed": 0, "already_processed": 0, "skipped": 0}
        assert attempt.attempt == 2
        assert attempt.status == WebhookEventStatus.PROCESSED
        assert failed.status == WebhookEventStatus.FAILED
        assert account.credits_balance == 100

    def test_records_audit_entry(self, account):
        failed_event()

        retry_failed_webhook_events()

        entry = BillingAuditLog.objects.get(action="WEBHOOK_RETRY_RUN")
        assert entry.metadata["processed"] == 1

    def test_nothing_to_do_writes_no_audit(self, account):
        summary = retry_failed_webhook_events()

        assert sum(summary.values()) == 0
        assert not BillingAuditLog.objects.filter(action="WEBHOOK_RETRY_RUN").exists()

    def test_waits_for_retry_delay(self, account, settings):
        settings.WEBHOOK_RETRY_DELAY_MINUTES = 30
        with freeze_time("2026-03-01 12:00:00"):
            failed = failed_event(age=timedelta(minutes=10))

        with freeze_time("2026-03-01 12:15:00"):
            retry_failed_webhook_events()
        assert not WebhookEvent.objects.filter(retry_of=failed).exists()

        with freeze_time("2026-03-01 12:45:00"):
            retry_failed_webhook_events()
        assert WebhookEvent.objects.filter(retry_of=failed).exists()

    def test_skips_non_retryable(self, account):
        failed = failed_event(retryable=False)

        retry_failed_webhook_events()

        assert not WebhookEvent.objects.filter(retry_of=failed).exists()

    def test_skips_exhausted_attempt_budget(self, account, settings):
        settings.WEBHOOK_MAX_ATTEMPTS = 5
        failed = failed_event(attempt=5)

        retry_failed_webhook_events()

        assert not WebhookEvent.objects.filter(retry_of=failed).exists()

    def test_skips_already_replayed(self, account):
        failed = failed_event()
        WebhookEventFactory(
            event_type=failed.event_type,
            gateway_payment_id=failed.gateway_payment_id,
            status=WebhookEventStatus.FAILED,
            retryable=True,
            retry_of=failed,
            attempt=2,
            received_at=timezone.now() - timedelta(hours=1),
        )

        summary = retry_failed_webhook_events()

        # Only the second attempt is a candidate
        assert sum(summary.values()) == 1
        assert WebhookEvent.objects.filter(retry_of=failed).count() == 1

    def test_identity_already_processed(self, account):
        failed = failed_event()
        WebhookEventFactory(
            event_type=failed.event_type,
            gateway_payment_id=failed.gateway_payment_id,
            status=WebhookEventStatus.PROCESSED,
        )

        summary = retry_failed_webhook_events()

        assert summary["already_processed"] == 1
        assert not WebhookEvent.objects.filter(retry_of=failed).exists()
        assert not CreditTransaction.objects.exists()

    def test_replay_failing_again(self, db):
        failed = failed_event(payment_body(customer="cus_unknown"))

        summary = retry_failed_webhook_events()

        attempt = WebhookEvent.objects.get(retry_of=failed)
        assert summary["failed"] == 1
        assert attempt.status == WebhookEventStatus.FAILED
        assert attempt.error_code == "ACCOUNT_NOT_FOUND"
        assert attempt.retryable is False

    def test_invalid_stored_payload_is_skipped(self, account):
        failed = failed_event(raw_payload={"event": "PAYMENT_CONFIRMED"})

        summary = retry_failed_webhook_events()

        assert summary["skipped"] == 1
        assert not WebhookEvent.objects.filter(retry_of=failed).exists()

    def test_respects_batch_size(self, account, settings):
        settings.WEBHOOK_RETRY_BATCH_SIZE = 1
        failed_event(payment_body(payment_id="pay_a", external_reference="credits-100"))
        failed_event(payment_body(payment_id="pay_b", external_reference="credits-100"))

        summary = retry_failed_webhook_events()

        assert summary["processed"] == 1
        assert WebhookEvent.objects.filter(attempt=2).count() == 1


# =============================================================================
# reprocess_webhook_event
# =============================================================================


class TestReprocessWebhookEvent:
    def test_not_found(self, db):
        missing = str(uuid.uuid4())

        assert reprocess_webhook_event(missing) == {
            "status": "not_found",
            "webhook_event_id": missing,
        }

    def test_skips_processed_event(self, account):
        event = WebhookEventFactory(status=WebhookEventStatus.PROCESSED)

        result = reprocess_webhook_event(str(event.id))

        assert result["status"] == "skipped"

    def test_skips_already_replayed(self, account):
        failed = failed_event()
        reprocess_webhook_event(str(failed.id))

        result = reprocess_webhook_event(str(failed.id))

        assert result["status"] == "skipped"
        assert WebhookEvent.objects.filter(retry_of=failed).count() == 1

    def test_replays_failed_event(self, account):
        failed = failed_event()

        result = reprocess_webhook_event(str(failed.id))

        attempt = WebhookEvent.objects.get(retry_of=failed)
        assert result == {
            "status": "processed",
            "webhook_event_id": str(failed.id),
            "attempt_id": str(attempt.id),
        }

    def test_ignores_attempt_budget(self, account, settings):
        settings.WEBHOOK_MAX_ATTEMPTS = 3
        failed = failed_event(attempt=3, retryable=False)

        result = reprocess_webhook_event(str(failed.id))

        assert result["status"] == "processed"
        assert WebhookEvent.objects.get(retry_of=failed).attempt == 4
