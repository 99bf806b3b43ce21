"""Tests for StateChangeNotifier."""

from unittest.mock import patch

import pytest
from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

from billing.services.notifier import StateChangeNotifier


@pytest.fixture
def channel_layer():
    return get_channel_layer()


def receive_from_group(channel_layer, group: str) -> str:
    """Subscribe a fresh channel to ``group`` and return its name."""
    channel = async_to_sync(channel_layer.new_channel)()
    async_to_sync(channel_layer.group_add)(group, channel)
    return channel


class TestPublish:
    def test_group_name(self):
        assert StateChangeNotifier.group_name("abc") == "account_abc"

    def test_credits_updated_reaches_account_group(self, channel_layer):
        channel = receive_from_group(channel_layer, "account_42")

        assert StateChangeNotifier.credits_updated(42, 350, credits_added=350) is True

        message = async_to_sync(channel_layer.receive)(channel)
        assert message == {
            "type": "billing.credits_updated",
            "account_id": "42",
            "data": {"credits_balance": 350, "credits_added": 350},
        }

    def test_account_updated_payload(self, channel_layer):
        channel = receive_from_group(channel_layer, "account_7")

        StateChangeNotifier.account_updated(7, subscription_status="ACTIVE", plan="GOLD")

        message = async_to_sync(channel_layer.receive)(channel)
        assert message["type"] == "billing.account_updated"
        assert message["data"] == {"subscription_status": "ACTIVE", "plan": "GOLD"}

    def test_layer_failure_is_swallowed(self, channel_layer):
        with patch.object(
            type(channel_layer), "group_send", side_effect=RuntimeError("layer down")
        ):
            assert StateChangeNotifier.credits_updated(1, 10) is False

    def test_missing_layer(self):
        with patch("billing.services.notifier.get_channel_layer", return_value=None):
            assert StateChangeNotifier.account_updated(1, plan="GOLD") is False
