"""Tests for the billing admin replay action."""

from unittest.mock import patch

import pytest
from django.urls import reverse

from billing.state_machines import WebhookEventStatus
from billing.tests.factories import WebhookEventFactory


@pytest.mark.django_db
class TestReplayFailedEventsAction:
    def test_queues_only_failed_events(self, admin_client):
        failed = WebhookEventFactory(status=WebhookEventStatus.FAILED, retryable=True)
        processed = WebhookEventFactory(status=WebhookEventStatus.PROCESSED)

        with patch("billing.admin.reprocess_webhook_event") as task:
            response = admin_client.post(
                reverse("admin:billing_webhookevent_changelist"),
                {
                    "action": "replay_failed_events",
                    "_selected_action": [str(failed.id), str(processed.id)],
                },
                follow=True,
            )

        assert response.status_code == 200
        task.delay.assert_called_once_with(str(failed.id))

    def test_webhook_events_are_read_only(self, admin_client):
        event = WebhookEventFactory()

        response = admin_client.post(
            reverse("admin:billing_webhookevent_delete", args=[event.id]),
            {"post": "yes"},
        )

        assert response.status_code == 403
