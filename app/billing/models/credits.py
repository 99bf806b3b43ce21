"""
Credit models: packages for sale, purchases, and the credit ledger.

- CreditPackage: catalogue entry (credits + bonus for a price)
- CreditPurchase: one purchase of credits; grants happen exactly once, on
  the PENDING -> CONFIRMED flip (see billing.services.credit_ledger)
- CreditTransaction: append-only ledger entry with a balance snapshot
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q

from core.exceptions import ConflictError
from core.models import BaseModel, UUIDPrimaryKeyMixin

from billing.state_machines import (
    CreditPurchaseStatus,
    CreditSource,
    CreditTransactionType,
)


class CreditPackage(UUIDPrimaryKeyMixin, BaseModel):
    """A purchasable bundle of credits."""

    name = models.CharField(max_length=100)
    credit_amount = models.PositiveIntegerField()
    bonus_credits = models.PositiveIntegerField(default=0)
    price = models.DecimalField(max_digits=12, decimal_places=2)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["price"]
        verbose_name = "Credit Package"
        verbose_name_plural = "Credit Packages"

    def __str__(self) -> str:
        return f"{self.name} ({self.total_credits} credits)"

    @property
    def total_credits(self) -> int:
        return self.credit_amount + self.bonus_credits


class CreditPurchase(UUIDPrimaryKeyMixin, BaseModel):
    """
    A purchase of credits by an account.

    Created PENDING by the checkout flow, or synthesized CONFIRMED from the
    payment's external reference when the webhook arrives first. The
    status is flipped with a conditional UPDATE, never through save(), so
    only one writer can observe the PENDING -> CONFIRMED change.
    """

    account = models.ForeignKey(
        "billing.Account",
        on_delete=models.PROTECT,
        related_name="credit_purchases",
    )
    package = models.ForeignKey(
        CreditPackage,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="purchases",
    )
    package_name = models.CharField(max_length=100)

    gateway_checkout_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
    )
    gateway_payment_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
    )

    credit_amount = models.PositiveIntegerField()
    bonus_credits = models.PositiveIntegerField(default=0)
    value = models.DecimalField(max_digits=12, decimal_places=2)

    status = models.CharField(
        max_length=20,
        choices=CreditPurchaseStatus.choices,
        default=CreditPurchaseStatus.PENDING,
        db_index=True,
    )
    valid_until = models.DateTimeField(null=True, blank=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        verbose_name = "Credit Purchase"
        verbose_name_plural = "Credit Purchases"
        indexes = [
            models.Index(fields=["account", "status"]),
        ]

    def __str__(self) -> str:
        return f"CreditPurchase({self.package_name}, {self.status})"


class CreditTransaction(UUIDPrimaryKeyMixin, models.Model):
    """
    Immutable credit ledger entry.

    One entry per actual credit movement. balance_after is the account's
    credits_balance right after the movement, read back from the database.
    Corrections are new entries; existing rows are never updated or
    deleted.
    """

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    account = models.ForeignKey(
        "billing.Account",
        on_delete=models.PROTECT,
        related_name="credit_transactions",
    )
    type = models.CharField(max_length=20, choices=CreditTransactionType.choices)
    source = models.CharField(max_length=20, choices=CreditSource.choices)
    amount = models.IntegerField(help_text="Signed credit delta")
    balance_after = models.IntegerField()
    reference_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Gateway payment id or other business reference",
    )
    credit_purchase = models.ForeignKey(
        CreditPurchase,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="transactions",
    )
    description = models.CharField(max_length=255, blank=True, default="")
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Credit Transaction"
        verbose_name_plural = "Credit Transactions"
        constraints = [
            models.CheckConstraint(
                condition=~Q(amount=0),
                name="credit_transaction_amount_non_zero",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.get_type_display()}: {self.amount} (balance {self.balance_after})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ConflictError(
                "Credit transactions are immutable",
                error_code="CREDIT_TRANSACTION_IMMUTABLE",
                details={"credit_transaction_id": str(self.pk)},
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ConflictError(
            "Credit transactions cannot be deleted",
            error_code="CREDIT_TRANSACTION_IMMUTABLE",
            details={"credit_transaction_id": str(self.pk)},
        )
