"""
WebhookEvent model for gateway webhook tracking.

Every delivery is stored PENDING and committed before any business logic
runs, so a crash mid-processing leaves a visible PENDING row. The row then
moves exactly once to PROCESSED or FAILED and is never deleted.

Idempotency is a lookup, not a unique constraint: a delivery whose
identity tuple (event_type, payment id, subscription id, checkout id)
matches a PROCESSED row is acknowledged without re-running handlers.
Gateways resend the same event many times, so several FAILED rows may
share one identity; at most one row per identity ends up PROCESSED in
normal operation.

Usage:
    from billing.models import WebhookEvent

    event = WebhookEvent.objects.create(event_type="PAYMENT_CONFIRMED", ...)
    event.mark_processed()
    event.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from core.models import BaseModel, UUIDPrimaryKeyMixin

from billing.state_machines import WebhookEventStatus


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    One received gateway notification (or one replay attempt of it).

    Replays never reopen a terminal row. The retry job creates a new row
    pointing at the failed one through ``retry_of`` with ``attempt + 1``.

    Fields:
        event_type: Gateway event name (PAYMENT_CONFIRMED, ...)
        gateway_*_id: Identity fields extracted from the payload
        raw_payload: Full JSON body as received
        status: PENDING, PROCESSED or FAILED (managed by FSM)
        retryable: For FAILED rows, whether a replay may succeed
        retry_count: Attempts that ended in an unexpected exception
        attempt: 1 for a first delivery, n for the nth replay
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Gateway event type (e.g., 'PAYMENT_CONFIRMED')",
    )
    gateway_payment_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
    )
    gateway_subscription_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
    )
    gateway_checkout_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
    )
    gateway_customer_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
    )

    # ==========================================================================
    # Payload & request metadata
    # ==========================================================================

    raw_payload = models.JSONField(
        help_text="Full webhook body as received",
    )
    received_at = models.DateTimeField(default=timezone.now)
    user_agent = models.CharField(max_length=500, blank=True, default="")
    ip_address = models.GenericIPAddressField(null=True, blank=True)

    # ==========================================================================
    # Processing Status
    # ==========================================================================

    status = FSMField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
        help_text="Processing status (managed by FSM)",
    )
    processed_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Error Handling & Replays
    # ==========================================================================

    error_message = models.TextField(null=True, blank=True)
    error_code = models.CharField(max_length=100, null=True, blank=True)
    retryable = models.BooleanField(
        default=False,
        help_text="For failed events, whether a replay may succeed",
    )
    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Attempts that ended in an unexpected exception",
    )
    attempt = models.PositiveSmallIntegerField(default=1)
    retry_of = models.OneToOneField(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="next_attempt",
        help_text="Failed attempt this row replays",
    )

    class Meta:
        ordering = ["-received_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "received_at"]),
            models.Index(fields=["event_type", "status"]),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.event_type}, {self.status}, attempt {self.attempt})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=WebhookEventStatus.PENDING,
        target=WebhookEventStatus.PROCESSED,
    )
    def mark_processed(self):
        self.processed_at = timezone.now()
        self.error_message = None

    @transition(
        field=status,
        source=WebhookEventStatus.PENDING,
        target=WebhookEventStatus.FAILED,
    )
    def mark_failed(
        self,
        error_message: str,
        retryable: bool,
        error_code: str | None = None,
        from_exception: bool = False,
    ):
        """
        Mark the event as failed.

        Args:
            error_message: What went wrong
            retryable: Whether a replay may succeed
            error_code: Machine-readable code from the handler result
            from_exception: True when the handler raised instead of
                returning a failure; counts toward retry_count
        """
        self.error_message = error_message
        self.error_code = error_code
        self.retryable = retryable
        if from_exception:
            self.retry_count += 1

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def identity(self) -> tuple[str, str | None, str | None, str | None]:
        return (
            self.event_type,
            self.gateway_payment_id,
            self.gateway_subscription_id,
            self.gateway_checkout_id,
        )

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def is_failed(self) -> bool:
        return self.status == WebhookEventStatus.FAILED

    @property
    def can_retry(self) -> bool:
        """Failed, retryable and still under the attempt budget."""
        return (
            self.is_failed
            and self.retryable
            and self.attempt < settings.WEBHOOK_MAX_ATTEMPTS
        )
