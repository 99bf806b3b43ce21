"""
BillingAuditLog model: operator-facing record of notable billing events.

Application logs are for developers; this table is what support staff
query. CRITICAL entries mark data that needs manual correction (for
example an activation whose plan could not be determined).
"""

from __future__ import annotations

from django.db import models

from core.models import UUIDPrimaryKeyMixin

from billing.state_machines import AuditCategory, AuditLevel


class BillingAuditLog(UUIDPrimaryKeyMixin, models.Model):
    """Append-only audit entry."""

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    level = models.CharField(
        max_length=10,
        choices=AuditLevel.choices,
        default=AuditLevel.INFO,
        db_index=True,
    )
    category = models.CharField(max_length=20, choices=AuditCategory.choices)
    action = models.CharField(
        max_length=100,
        help_text="Machine-readable action (PAYMENT_CONFIRMED, WEBHOOK_UNHANDLED, ...)",
    )
    message = models.TextField()
    account = models.ForeignKey(
        "billing.Account",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="audit_logs",
    )
    webhook_event = models.ForeignKey(
        "billing.WebhookEvent",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="audit_logs",
    )
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Billing Audit Log"
        verbose_name_plural = "Billing Audit Logs"
        indexes = [
            models.Index(fields=["level", "created_at"]),
            models.Index(fields=["action"]),
        ]

    def __str__(self) -> str:
        return f"[{self.level}] {self.action}"

    @classmethod
    def record(
        cls,
        action: str,
        message: str,
        *,
        category: str,
        level: str = AuditLevel.INFO,
        account=None,
        webhook_event_id=None,
        **metadata,
    ) -> BillingAuditLog:
        """Create an entry; extra keyword arguments become metadata."""
        return cls.objects.create(
            action=action,
            message=message,
            category=category,
            level=level,
            account=account,
            webhook_event_id=webhook_event_id,
            metadata=metadata,
        )
