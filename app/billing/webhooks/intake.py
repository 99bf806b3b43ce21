"""
Webhook intake pipeline shared by the HTTP endpoint and the retry tasks.

Steps for one delivery:
1. IdempotencyGuard: a PROCESSED row with the same identity means the
   delivery is acknowledged and nothing runs.
2. EventStore.record: a PENDING row is written and committed before any
   business logic, so a crash leaves a visible PENDING row.
3. dispatch_webhook: the handler for the event type runs.
4. EventStore.complete / fail_with_exception: the row moves once to
   PROCESSED or FAILED.

The guard is a lookup, not a constraint. Two concurrent first deliveries
can both pass it; exactly-once effects then rest on the handlers (unique
gateway ids, conditional updates).

Usage:
    outcome = process_inbound_event(event, ip_address=ip, user_agent=ua)
    if outcome.duplicate_of:
        ...
"""

from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from core.services import ServiceResult

from billing.models import WebhookEvent
from billing.state_machines import WebhookEventStatus
from billing.webhooks.handlers import dispatch_webhook

if TYPE_CHECKING:
    from billing.webhooks.payloads import InboundEvent


logger = logging.getLogger(__name__)


class IdempotencyGuard:
    """Detect deliveries whose effects were already applied."""

    @staticmethod
    def find_processed(event: InboundEvent) -> WebhookEvent | None:
        """
        The earliest PROCESSED row with the same identity, if any.

        ``None`` ids match NULL columns, so a subscription event never
        collides with a payment event of the same type.
        """
        return IdempotencyGuard.find_processed_identity(event.identity)

    @staticmethod
    def find_processed_identity(
        identity: tuple[str, str | None, str | None, str | None],
    ) -> WebhookEvent | None:
        event_type, payment_id, subscription_id, checkout_id = identity
        return (
            WebhookEvent.objects.filter(
                status=WebhookEventStatus.PROCESSED,
                event_type=event_type,
                gateway_payment_id=payment_id,
                gateway_subscription_id=subscription_id,
                gateway_checkout_id=checkout_id,
            )
            .order_by("received_at", "id")
            .first()
        )


class EventStore:
    """Persist deliveries and their terminal outcome."""

    @staticmethod
    def record(
        event: InboundEvent,
        *,
        ip_address: str | None = None,
        user_agent: str = "",
        retry_of: WebhookEvent | None = None,
    ) -> WebhookEvent:
        """Write the PENDING row. Called outside any transaction, so it commits."""
        return WebhookEvent.objects.create(
            event_type=event.event_type,
            gateway_payment_id=event.gateway_payment_id,
            gateway_subscription_id=event.gateway_subscription_id,
            gateway_checkout_id=event.gateway_checkout_id,
            gateway_customer_id=event.gateway_customer_id,
            raw_payload=event.raw_payload,
            ip_address=ip_address,
            user_agent=user_agent or "",
            retry_of=retry_of,
            attempt=retry_of.attempt + 1 if retry_of else 1,
        )

    @staticmethod
    def complete(webhook_event: WebhookEvent, result: ServiceResult) -> WebhookEvent:
        """Move the row to PROCESSED or FAILED from a handler result."""
        if result.success:
            webhook_event.mark_processed()
        else:
            webhook_event.mark_failed(
                result.error or "Webhook processing failed",
                retryable=result.retryable,
                error_code=result.error_code,
            )
        webhook_event.save()
        return webhook_event

    @staticmethod
    def fail_with_exception(webhook_event: WebhookEvent, exc: Exception) -> WebhookEvent:
        """Move the row to FAILED after a handler raised. Always retryable."""
        webhook_event.mark_failed(
            f"{exc.__class__.__name__}: {exc}",
            retryable=True,
            error_code="UNHANDLED_EXCEPTION",
            from_exception=True,
        )
        webhook_event.save()
        return webhook_event


@dataclass
class IntakeOutcome:
    """
    What happened to one delivery.

    Exactly one of ``duplicate_of``, ``result`` and ``exception`` is set.
    """

    webhook_event: WebhookEvent | None = None
    duplicate_of: WebhookEvent | None = None
    result: ServiceResult | None = None
    exception: Exception | None = None
    processing_ms: int = 0

    @property
    def event_id(self) -> str | None:
        row = self.duplicate_of or self.webhook_event
        return str(row.id) if row else None


def process_inbound_event(
    event: InboundEvent,
    *,
    ip_address: str | None = None,
    user_agent: str = "",
    retry_of: WebhookEvent | None = None,
) -> IntakeOutcome:
    """
    Run one delivery through guard, store, dispatcher and store again.

    Handler exceptions are caught, logged and recorded on the row; they
    are returned in the outcome rather than raised.
    """
    start_time = time.monotonic()

    def elapsed_ms() -> int:
        return int((time.monotonic() - start_time) * 1000)

    prior = IdempotencyGuard.find_processed(event)
    if prior is not None:
        logger.info(
            "Webhook already processed, skipping",
            extra={
                "webhook_event_id": str(prior.id),
                "event_type": event.event_type,
                "gateway_payment_id": event.gateway_payment_id,
            },
        )
        return IntakeOutcome(duplicate_of=prior, processing_ms=elapsed_ms())

    webhook_event = EventStore.record(
        event, ip_address=ip_address, user_agent=user_agent, retry_of=retry_of
    )
    event = dataclasses.replace(event, webhook_event_id=str(webhook_event.id))
    log_extra = {"webhook_event_id": event.webhook_event_id, "event_type": event.event_type}
    logger.info(f"Processing webhook {event.event_type}", extra=log_extra)

    try:
        result = dispatch_webhook(event)
    except Exception as e:
        logger.exception("Unhandled error while processing webhook", extra=log_extra)
        EventStore.fail_with_exception(webhook_event, e)
        return IntakeOutcome(
            webhook_event=webhook_event, exception=e, processing_ms=elapsed_ms()
        )

    EventStore.complete(webhook_event, result)
    if result.success:
        logger.info("Webhook processed", extra={**log_extra, "duration_ms": elapsed_ms()})
    else:
        logger.warning(
            f"Webhook failed: {result.error}",
            extra={**log_extra, "error_code": result.error_code, "retryable": result.retryable},
        )
    return IntakeOutcome(webhook_event=webhook_event, result=result, processing_ms=elapsed_ms())
