"""
Influencer model: referral partner and commission aggregate.

total_referrals and total_commissions are running totals, incremented with
F() expressions once per first confirmation of a referred payment (see
billing.services.commission).
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from django.db import models
from django.db.models import Q

from core.models import BaseModel, UUIDPrimaryKeyMixin

CENT = Decimal("0.01")


class Influencer(UUIDPrimaryKeyMixin, BaseModel):
    """
    Referral partner identified by a coupon code.

    Commission is the fixed value when one is configured and positive,
    otherwise a percentage of the payment value.
    """

    name = models.CharField(max_length=150)
    coupon_code = models.CharField(max_length=50, unique=True)
    commission_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal("0"),
        help_text="Percentage of each referred payment (0-100)",
    )
    commission_fixed_value = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Fixed commission per payment; overrides the percentage",
    )
    is_active = models.BooleanField(default=True)

    total_referrals = models.PositiveIntegerField(default=0)
    total_commissions = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal("0"),
    )

    class Meta:
        ordering = ["coupon_code"]
        verbose_name = "Influencer"
        verbose_name_plural = "Influencers"
        constraints = [
            models.CheckConstraint(
                condition=Q(commission_percentage__gte=0)
                & Q(commission_percentage__lte=100),
                name="influencer_commission_percentage_range",
            ),
        ]

    def __str__(self) -> str:
        return f"Influencer({self.coupon_code})"

    def commission_for(self, value: Decimal) -> Decimal:
        """
        Commission owed for a payment of ``value``, rounded half-up to cents.
        """
        fixed = self.commission_fixed_value
        if fixed is not None and fixed > 0:
            commission = Decimal(fixed)
        else:
            commission = Decimal(value) * Decimal(self.commission_percentage) / 100
        return commission.quantize(CENT, rounding=ROUND_HALF_UP)
