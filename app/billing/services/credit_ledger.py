"""
Credit ledger: grant purchased credits exactly once.

Credits are granted only by the request whose conditional UPDATE flips a
CreditPurchase from PENDING to CONFIRMED. Every other delivery of the same
payment sees a row count of zero and grants nothing, whatever order the
deliveries arrive in.

Every grant increments Account.credits_balance with an F() expression,
reads the new balance back and appends one immutable CreditTransaction
holding that balance as a snapshot.

Usage:
    with transaction.atomic():
        grant = CreditLedger.confirm_purchase(account, lookup)
    if grant is not None:
        print(grant.amount, grant.balance_after)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from core.services import BaseService

from billing.models import Account, CreditPurchase, CreditTransaction
from billing.state_machines import (
    CreditPurchaseStatus,
    CreditSource,
    CreditTransactionType,
)

if TYPE_CHECKING:
    from typing import Any

    from billing.services.payment_resolver import PaymentLookup


CREDIT_REFERENCE_PATTERN = re.compile(r"(?:credits?|package)-(\d+)", re.IGNORECASE)


def parse_credit_amount(reference: str | None) -> int:
    """
    Credit amount encoded in an external reference.

    "credits-100", "credit-100" and "package-300" yield 100 and 300;
    anything else yields 0.
    """
    if not reference:
        return 0
    match = CREDIT_REFERENCE_PATTERN.search(reference)
    return int(match.group(1)) if match else 0


@dataclass
class CreditGrant:
    """
    Credits granted for one purchase.

    Attributes:
        purchase: The purchase that was confirmed
        amount: Credits added (package credits plus bonus)
        balance_after: Account balance right after the increment
        transaction: Ledger entry written for the grant
        synthesized: True when the purchase was rebuilt from the reference
    """

    purchase: CreditPurchase
    amount: int
    balance_after: int
    transaction: CreditTransaction
    synthesized: bool = False


class CreditLedger(BaseService):
    """Confirm credit purchases and record credit movements."""

    @classmethod
    def confirm_purchase(
        cls,
        account: Account,
        lookup: PaymentLookup,
        *,
        webhook_event_id: str | None = None,
    ) -> CreditGrant | None:
        """
        Confirm the purchase behind a paid credit payment and grant credits.

        Resolution: the account's purchase whose checkout id equals the
        checkout reference, then the purchase holding the gateway payment
        id, then a purchase synthesized from a ``credits-<N>`` or
        ``package-<N>`` reference.

        Args:
            account: Locked account that paid
            lookup: Keys and data from the notification
            webhook_event_id: Included in logs and ledger metadata

        Returns:
            CreditGrant when this call granted credits, None when the
            purchase was already confirmed or could not be determined
        """
        logger = cls.get_logger()
        log_extra = {
            "webhook_event_id": webhook_event_id,
            "account_id": str(account.id),
            "gateway_payment_id": lookup.payment_id,
        }

        synthesized = False
        purchase = cls._find_purchase(account, lookup)
        if purchase is None:
            purchase = cls._synthesize_purchase(account, lookup)
            synthesized = purchase is not None
        if purchase is None:
            logger.warning(
                "No credit purchase found and reference has no credit amount",
                extra={**log_extra, "external_reference": lookup.external_reference},
            )
            return None

        if not cls._flip_to_confirmed(purchase, lookup):
            logger.info(
                "Credit purchase already confirmed, no credits granted",
                extra={**log_extra, "credit_purchase_id": str(purchase.id)},
            )
            return None

        amount = cls._grant_amount(purchase)
        ledger_entry = cls.grant_credits(
            account,
            amount,
            source=CreditSource.PURCHASE,
            reference_id=lookup.payment_id or purchase.gateway_checkout_id,
            description=f"Credit purchase: {purchase.package_name}",
            credit_purchase=purchase,
            metadata={
                "credit_amount": purchase.credit_amount,
                "bonus_credits": purchase.bonus_credits,
                "webhook_event_id": webhook_event_id,
            },
        )

        logger.info(
            "Credits granted",
            extra={
                **log_extra,
                "credit_purchase_id": str(purchase.id),
                "amount": amount,
                "balance_after": ledger_entry.balance_after,
            },
        )
        return CreditGrant(
            purchase=purchase,
            amount=amount,
            balance_after=ledger_entry.balance_after,
            transaction=ledger_entry,
            synthesized=synthesized,
        )

    @classmethod
    def grant_credits(
        cls,
        account: Account,
        amount: int,
        *,
        source: str,
        reference_id: str | None = None,
        description: str = "",
        credit_purchase: CreditPurchase | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> CreditTransaction:
        """
        Add ``amount`` credits to the account balance and log the movement.

        The balance is incremented in the database and read back; the
        in-memory ``account.credits_balance`` is refreshed to match.
        """
        Account.objects.filter(pk=account.pk).update(
            credits_balance=F("credits_balance") + amount,
            updated_at=timezone.now(),
        )
        balance_after = Account.objects.values_list("credits_balance", flat=True).get(
            pk=account.pk
        )
        account.credits_balance = balance_after

        return CreditTransaction.objects.create(
            account=account,
            type=CreditTransactionType.EARNED,
            source=source,
            amount=amount,
            balance_after=balance_after,
            reference_id=reference_id,
            credit_purchase=credit_purchase,
            description=description,
            metadata=metadata or {},
        )

    # =========================================================================
    # Internals
    # =========================================================================

    @classmethod
    def _find_purchase(
        cls, account: Account, lookup: PaymentLookup
    ) -> CreditPurchase | None:
        queryset = (
            CreditPurchase.objects.select_for_update()
            .filter(account=account)
            .order_by("-created_at", "-id")
        )
        if lookup.checkout_reference:
            purchase = queryset.filter(gateway_checkout_id=lookup.checkout_reference).first()
            if purchase is not None:
                return purchase
        if lookup.payment_id:
            return queryset.filter(gateway_payment_id=lookup.payment_id).first()
        return None

    @classmethod
    def _synthesize_purchase(
        cls, account: Account, lookup: PaymentLookup
    ) -> CreditPurchase | None:
        """
        Create a PENDING purchase from the external reference.

        The unique gateway_payment_id turns a concurrent duplicate into an
        IntegrityError; the loser continues with the winner's row and the
        conditional flip decides who grants.
        """
        amount = parse_credit_amount(lookup.external_reference)
        if amount <= 0:
            return None

        purchase = CreditPurchase(
            account=account,
            package_name=f"{amount} credits package",
            gateway_checkout_id=lookup.checkout_id,
            gateway_payment_id=lookup.payment_id,
            credit_amount=amount,
            value=lookup.value,
            valid_until=timezone.now()
            + timedelta(days=settings.CREDIT_PURCHASE_VALIDITY_DAYS),
        )
        try:
            with transaction.atomic():
                purchase.save()
        except IntegrityError:
            cls.get_logger().info(
                "Credit purchase created concurrently, using existing row",
                extra={"gateway_payment_id": lookup.payment_id},
            )
            return CreditPurchase.objects.select_for_update().get(
                gateway_payment_id=lookup.payment_id
            )

        cls.get_logger().warning(
            "Credit purchase synthesized from external reference",
            extra={
                "credit_purchase_id": str(purchase.id),
                "external_reference": lookup.external_reference,
                "credit_amount": amount,
            },
        )
        return purchase

    @classmethod
    def _flip_to_confirmed(cls, purchase: CreditPurchase, lookup: PaymentLookup) -> bool:
        """
        PENDING -> CONFIRMED as one conditional UPDATE.

        Returns True only for the caller whose update changed the row.
        """
        now = timezone.now()
        changes: dict[str, Any] = {
            "status": CreditPurchaseStatus.CONFIRMED,
            "confirmed_at": now,
            "updated_at": now,
        }
        if purchase.valid_until is None:
            changes["valid_until"] = now + timedelta(
                days=settings.CREDIT_PURCHASE_VALIDITY_DAYS
            )
        if lookup.payment_id and not purchase.gateway_payment_id:
            changes["gateway_payment_id"] = lookup.payment_id

        try:
            with transaction.atomic():
                updated = CreditPurchase.objects.filter(
                    pk=purchase.pk,
                    status=CreditPurchaseStatus.PENDING,
                ).update(**changes)
        except IntegrityError:
            # Another purchase already carries this payment id and was
            # confirmed for it.
            cls.get_logger().warning(
                "Gateway payment id already bound to another credit purchase",
                extra={
                    "credit_purchase_id": str(purchase.id),
                    "gateway_payment_id": lookup.payment_id,
                },
            )
            return False

        if updated:
            for name, value in changes.items():
                setattr(purchase, name, value)
        return bool(updated)

    @staticmethod
    def _grant_amount(purchase: CreditPurchase) -> int:
        """Package credits plus bonus; stored amounts if the package is gone."""
        package = purchase.package
        if package is not None:
            return package.total_credits
        return purchase.credit_amount + purchase.bonus_credits
