"""
PaymentRecord model: the internal ledger of gateway payments.

A record is usually created PENDING by the checkout flow, before the
gateway has assigned a payment id. The webhook then finds it (see
billing.services.payment_resolver) and confirms it, filling in
gateway_payment_id.

Invariant: at most one record per non-null gateway_payment_id. The unique
index turns a racing duplicate create into an IntegrityError.
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q
from django.utils import timezone
from django_fsm import FSMField, transition

from core.models import BaseModel, UUIDPrimaryKeyMixin

from billing.state_machines import BillingCycle, PaymentStatus, PaymentType, PlanType


class PaymentRecord(UUIDPrimaryKeyMixin, BaseModel):
    """
    One gateway payment (subscription charge or credit purchase).

    State Flow:
        PENDING -> CONFIRMED
        PENDING -> OVERDUE -> CONFIRMED (paid late)
        PENDING/OVERDUE/CONFIRMED -> CANCELLED | REFUNDED
    """

    account = models.ForeignKey(
        "billing.Account",
        on_delete=models.PROTECT,
        related_name="payments",
    )

    # ==========================================================================
    # Gateway References
    # ==========================================================================

    gateway_payment_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Gateway payment id (pay_xxx), unique when set",
    )
    gateway_checkout_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Checkout id set by the checkout flow before confirmation",
    )
    subscription_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
    )
    external_reference = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
    )

    # ==========================================================================
    # Payment Details
    # ==========================================================================

    type = models.CharField(
        max_length=20,
        choices=PaymentType.choices,
    )
    status = FSMField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
        db_index=True,
    )
    value = models.DecimalField(
        max_digits=12,
        decimal_places=2,
    )
    billing_type = models.CharField(
        max_length=30,
        null=True,
        blank=True,
        help_text="Gateway billing type (PIX, BOLETO, CREDIT_CARD, ...)",
    )
    description = models.CharField(
        max_length=500,
        blank=True,
        default="",
    )
    due_date = models.DateField(null=True, blank=True)
    overdue_date = models.DateTimeField(null=True, blank=True)
    confirmed_date = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Carried-forward business data
    # ==========================================================================

    plan_type = models.CharField(
        max_length=20,
        choices=PlanType.choices,
        null=True,
        blank=True,
    )
    billing_cycle = models.CharField(
        max_length=20,
        choices=BillingCycle.choices,
        null=True,
        blank=True,
    )
    influencer = models.ForeignKey(
        "billing.Influencer",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
    )
    referral_code_used = models.CharField(max_length=50, null=True, blank=True)
    commission_value = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
    )

    class Meta:
        ordering = ["-created_at", "-id"]
        verbose_name = "Payment Record"
        verbose_name_plural = "Payment Records"
        indexes = [
            models.Index(fields=["account", "type", "status"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(value__gte=0),
                name="payment_record_value_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"PaymentRecord({self.gateway_payment_id or self.id}, {self.status})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[PaymentStatus.PENDING, PaymentStatus.OVERDUE],
        target=PaymentStatus.CONFIRMED,
    )
    def confirm(self):
        self.confirmed_date = timezone.now()

    @transition(
        field=status,
        source=[PaymentStatus.PENDING, PaymentStatus.OVERDUE],
        target=PaymentStatus.OVERDUE,
    )
    def mark_overdue(self):
        if self.overdue_date is None:
            self.overdue_date = timezone.now()

    @transition(
        field=status,
        source=[
            PaymentStatus.PENDING,
            PaymentStatus.OVERDUE,
            PaymentStatus.CONFIRMED,
            PaymentStatus.CANCELLED,
        ],
        target=PaymentStatus.CANCELLED,
    )
    def cancel(self):
        pass

    @transition(
        field=status,
        source=[
            PaymentStatus.PENDING,
            PaymentStatus.OVERDUE,
            PaymentStatus.CONFIRMED,
            PaymentStatus.REFUNDED,
        ],
        target=PaymentStatus.REFUNDED,
    )
    def refund(self):
        pass

    @property
    def is_confirmed(self) -> bool:
        return self.status == PaymentStatus.CONFIRMED
