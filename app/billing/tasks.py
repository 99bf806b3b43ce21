"""
Celery tasks for webhook replays.

This module provides async tasks for:
- Replaying failed, retryable webhook events (periodic, via celery-beat)
- Replaying a single failed event on demand (admin/support)

A replay never reopens the failed row. It runs the stored payload through
the normal intake pipeline as a new attempt row linked to the failed one
(``retry_of``), so every attempt keeps its own terminal outcome.

Usage:
    from billing.tasks import reprocess_webhook_event

    reprocess_webhook_event.delay(str(webhook_event.id))
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.db import IntegrityError
from django.utils import timezone

from billing.models import BillingAuditLog, WebhookEvent
from billing.serializers import AsaasWebhookSerializer
from billing.state_machines import AuditCategory, WebhookEventStatus
from billing.webhooks.intake import IdempotencyGuard, IntakeOutcome, process_inbound_event
from billing.webhooks.payloads import InboundEvent

logger = logging.getLogger(__name__)


def _stored_event(webhook_event: WebhookEvent) -> InboundEvent | None:
    """Rebuild the inbound event from the stored payload."""
    serializer = AsaasWebhookSerializer(data=webhook_event.raw_payload)
    if not serializer.is_valid():
        logger.error(
            "Stored webhook payload no longer validates, cannot replay",
            extra={"webhook_event_id": str(webhook_event.id), "errors": serializer.errors},
        )
        return None
    return InboundEvent.from_validated_data(serializer.validated_data, webhook_event.raw_payload)


def _replay(webhook_event: WebhookEvent) -> IntakeOutcome | None:
    """
    Replay one failed row as a new attempt.

    Returns None when the payload cannot be rebuilt or another worker
    already created the next attempt.
    """
    event = _stored_event(webhook_event)
    if event is None:
        return None

    try:
        return process_inbound_event(event, retry_of=webhook_event)
    except IntegrityError:
        logger.info(
            "Webhook already replayed by another worker",
            extra={"webhook_event_id": str(webhook_event.id)},
        )
        return None


def _outcome_label(outcome: IntakeOutcome | None) -> str:
    if outcome is None:
        return "skipped"
    if outcome.duplicate_of is not None:
        return "already_processed"
    if outcome.result is not None and outcome.result.success:
        return "processed"
    return "failed"


@shared_task
def reprocess_webhook_event(webhook_event_id: str) -> dict:
    """
    Replay a single failed webhook event.

    Only FAILED rows without a later attempt are replayed; the attempt
    budget does not apply to manual replays.

    Returns:
        Dict with the outcome and the new attempt's id
    """
    try:
        webhook_event = WebhookEvent.objects.get(id=webhook_event_id)
    except WebhookEvent.DoesNotExist:
        logger.warning(
            "Webhook event not found for replay",
            extra={"webhook_event_id": webhook_event_id},
        )
        return {"status": "not_found", "webhook_event_id": webhook_event_id}

    if not webhook_event.is_failed or WebhookEvent.objects.filter(retry_of=webhook_event).exists():
        return {"status": "skipped", "webhook_event_id": webhook_event_id}

    outcome = _replay(webhook_event)
    status = _outcome_label(outcome)
    logger.info(
        f"Manual webhook replay finished: {status}",
        extra={"webhook_event_id": webhook_event_id, "event_type": webhook_event.event_type},
    )
    return {
        "status": status,
        "webhook_event_id": webhook_event_id,
        "attempt_id": outcome.event_id if outcome else None,
    }


@shared_task
def retry_failed_webhook_events() -> dict:
    """
    Periodic task to replay failed, retryable webhook events.

    Picks FAILED rows that are retryable, older than
    WEBHOOK_RETRY_DELAY_MINUTES, under WEBHOOK_MAX_ATTEMPTS, not yet
    replayed, and whose identity has no PROCESSED row. Scheduled hourly
    via CELERY_BEAT_SCHEDULE.

    Returns:
        Dict with counts per outcome
    """
    cutoff = timezone.now() - timedelta(minutes=settings.WEBHOOK_RETRY_DELAY_MINUTES)
    candidates = WebhookEvent.objects.filter(
        status=WebhookEventStatus.FAILED,
        retryable=True,
        attempt__lt=settings.WEBHOOK_MAX_ATTEMPTS,
        received_at__lte=cutoff,
        next_attempt__isnull=True,
    ).order_by("received_at")[: settings.WEBHOOK_RETRY_BATCH_SIZE]

    summary = {"processed": 0, "failed": 0, "already_processed": 0, "skipped": 0}
    for webhook_event in candidates:
        # Superseded by a successful delivery of the same event
        if IdempotencyGuard.find_processed_identity(webhook_event.identity) is not None:
            summary["already_processed"] += 1
            continue

        outcome = _replay(webhook_event)
        summary[_outcome_label(outcome)] += 1

    total = sum(summary.values())
    logger.info(f"Webhook retry run finished for {total} events", extra=summary)
    if total:
        BillingAuditLog.record(
            "WEBHOOK_RETRY_RUN",
            f"Replayed failed webhooks: {summary}",
            category=AuditCategory.WEBHOOK,
            **summary,
        )
    return summary
