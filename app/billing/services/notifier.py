"""
Push account state changes to connected clients.

Publishing side only: messages go to the ``account_<id>`` group on the
Channels layer; whatever consumer the frontend connects through forwards
them. Delivery is best-effort. Failures are logged and never reach the
webhook that triggered them.

Handlers schedule notifications with ``transaction.on_commit`` so clients
are only told about state that was actually committed.

Usage:
    transaction.on_commit(
        lambda: StateChangeNotifier.credits_updated(account.id, balance)
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

from core.services import BaseService

if TYPE_CHECKING:
    from typing import Any


class StateChangeNotifier(BaseService):
    """Broadcast billing changes to the account's channel group."""

    CREDITS_UPDATED = "billing.credits_updated"
    ACCOUNT_UPDATED = "billing.account_updated"

    @staticmethod
    def group_name(account_id) -> str:
        return f"account_{account_id}"

    @classmethod
    def credits_updated(cls, account_id, credits_balance: int, **extra: Any) -> bool:
        return cls.publish(
            account_id,
            cls.CREDITS_UPDATED,
            {"credits_balance": credits_balance, **extra},
        )

    @classmethod
    def account_updated(cls, account_id, **changes: Any) -> bool:
        return cls.publish(account_id, cls.ACCOUNT_UPDATED, changes)

    @classmethod
    def publish(cls, account_id, message_type: str, payload: dict[str, Any]) -> bool:
        """
        Send one message to the account group.

        Returns:
            True if the channel layer accepted the message
        """
        logger = cls.get_logger()
        channel_layer = get_channel_layer()
        if channel_layer is None:
            logger.debug("No channel layer configured, notification dropped")
            return False

        try:
            async_to_sync(channel_layer.group_send)(
                cls.group_name(account_id),
                {
                    "type": message_type,
                    "account_id": str(account_id),
                    "data": payload,
                },
            )
        except Exception:
            logger.warning(
                "Failed to publish account notification",
                extra={"account_id": str(account_id), "message_type": message_type},
                exc_info=True,
            )
            return False
        return True
