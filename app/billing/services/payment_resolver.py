"""
Payment resolver: map a gateway payment notification to one PaymentRecord.

The checkout flow creates a PENDING record before the gateway assigns a
payment id, and the webhook races with it. The only keys the two sides
share are the checkout id (echoed back as the external reference) and,
for recurring charges, the subscription id. Resolution therefore tries an
ordered list of matchers, most confident first; the first hit wins and is
confirmed. Without any hit a CONFIRMED record is rebuilt from the payload.

Matchers share one signature, ``(account, lookup) -> PaymentRecord | None``,
and every queryset is ordered newest first with the primary key as a tie
breaker, so the same candidates always resolve to the same record.

A record already bound to a different gateway payment is never reused for
a new payment: a monthly renewal shares the subscription id and external
reference with last month's charge but must produce its own record.

Usage:
    lookup = PaymentLookup.from_payment(event.payment)
    with transaction.atomic():
        resolved = PaymentResolver.resolve(account, lookup)
    if not resolved.was_already_confirmed:
        ...  # first confirmation, apply economic effects
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone
from django_fsm import can_proceed

from core.services import BaseService

from billing.models import PaymentRecord
from billing.state_machines import PaymentStatus, PaymentType

if TYPE_CHECKING:
    from django.db.models import QuerySet

    from billing.models import Account
    from billing.webhooks.payloads import CheckoutNotification, PaymentNotification


# =============================================================================
# Lookup & Result Types
# =============================================================================


@dataclass(frozen=True)
class PaymentLookup:
    """
    Keys and payload data a notification offers for resolution.

    Built from either a payment or a checkout notification so every
    matcher sees the same shape.

    Attributes:
        payment_type: SUBSCRIPTION or CREDIT_PURCHASE
        payment_id: Gateway payment id, when the gateway assigned one
        checkout_reference: Checkout id the checkout flow stored on the record
        checkout_id: Checkout id to store on a rebuilt record
        subscription_id: Gateway subscription id for recurring charges
        external_reference: Free reference set by the checkout flow
    """

    payment_type: str
    payment_id: str | None = None
    checkout_reference: str | None = None
    checkout_id: str | None = None
    subscription_id: str | None = None
    external_reference: str | None = None
    value: Decimal = Decimal("0")
    billing_type: str | None = None
    due_date: date | None = None
    description: str = ""

    @property
    def is_subscription(self) -> bool:
        return self.payment_type == PaymentType.SUBSCRIPTION

    @classmethod
    def from_payment(cls, payment: PaymentNotification) -> PaymentLookup:
        payment_type = (
            PaymentType.SUBSCRIPTION
            if payment.is_subscription_payment
            else PaymentType.CREDIT_PURCHASE
        )
        return cls(
            payment_type=payment_type,
            payment_id=payment.payment_id,
            checkout_reference=payment.external_reference,
            subscription_id=payment.subscription_id,
            external_reference=payment.external_reference,
            value=payment.value,
            billing_type=payment.billing_type,
            due_date=payment.due_date,
            description=payment.description or "",
        )

    @classmethod
    def from_checkout(cls, checkout: CheckoutNotification) -> PaymentLookup:
        payment_type = (
            PaymentType.SUBSCRIPTION
            if checkout.is_recurring
            else PaymentType.CREDIT_PURCHASE
        )
        return cls(
            payment_type=payment_type,
            payment_id=checkout.payment_id,
            checkout_reference=checkout.checkout_id,
            checkout_id=checkout.checkout_id,
            subscription_id=checkout.subscription_id,
            external_reference=checkout.external_reference,
            value=checkout.value,
            description=checkout.subscription_description or "",
        )


@dataclass
class ResolvedPayment:
    """
    Outcome of a resolution.

    Attributes:
        record: The confirmed PaymentRecord
        strategy: Name of the matcher that found it ("created" for a rebuild)
        plan_type: Plan carried by the record, if any
        billing_cycle: Billing cycle carried by the record, if any
        influencer_id: Referral partner carried by the record, if any
        referral_code_used: Coupon code carried by the record, if any
        was_already_confirmed: True when the effects of this payment were
            already applied; callers must not grant credits or commission
        created: True when the record was rebuilt from the payload
    """

    record: PaymentRecord
    strategy: str
    plan_type: str | None
    billing_cycle: str | None
    influencer_id: object | None
    referral_code_used: str | None
    was_already_confirmed: bool
    created: bool = False

    @classmethod
    def from_record(
        cls,
        record: PaymentRecord,
        strategy: str,
        was_already_confirmed: bool,
        created: bool = False,
    ) -> ResolvedPayment:
        return cls(
            record=record,
            strategy=strategy,
            plan_type=record.plan_type,
            billing_cycle=record.billing_cycle,
            influencer_id=record.influencer_id,
            referral_code_used=record.referral_code_used,
            was_already_confirmed=was_already_confirmed,
            created=created,
        )


# =============================================================================
# Matchers
# =============================================================================

Matcher = Callable[["Account", PaymentLookup], "PaymentRecord | None"]


def _locked(account: Account) -> QuerySet[PaymentRecord]:
    return (
        PaymentRecord.objects.select_for_update()
        .filter(account=account)
        .order_by("-created_at", "-id")
    )


def _reusable(account: Account, lookup: PaymentLookup) -> QuerySet[PaymentRecord]:
    """Records not yet bound to a different gateway payment."""
    queryset = _locked(account)
    if lookup.payment_id:
        queryset = queryset.filter(
            Q(gateway_payment_id__isnull=True) | Q(gateway_payment_id=lookup.payment_id)
        )
    return queryset


def match_by_checkout_reference(account, lookup):
    if not lookup.checkout_reference:
        return None
    return (
        _reusable(account, lookup)
        .filter(type=lookup.payment_type, gateway_checkout_id=lookup.checkout_reference)
        .first()
    )


def match_latest_pending_checkout(account, lookup):
    if not lookup.is_subscription:
        return None
    return (
        _locked(account)
        .filter(
            type=PaymentType.SUBSCRIPTION,
            status=PaymentStatus.PENDING,
            gateway_checkout_id__isnull=False,
            gateway_payment_id__isnull=True,
        )
        .first()
    )


def match_by_subscription_id(account, lookup):
    if not lookup.is_subscription or not lookup.subscription_id:
        return None
    return (
        _reusable(account, lookup)
        .filter(type=PaymentType.SUBSCRIPTION, subscription_id=lookup.subscription_id)
        .first()
    )


def match_by_gateway_payment_id(account, lookup):
    if not lookup.payment_id:
        return None
    return _locked(account).filter(gateway_payment_id=lookup.payment_id).first()


def match_pending_external_reference(account, lookup):
    if not lookup.external_reference:
        return None
    return (
        _reusable(account, lookup)
        .filter(
            status=PaymentStatus.PENDING,
            external_reference=lookup.external_reference,
        )
        .first()
    )


MATCHERS: list[Matcher] = [
    match_by_checkout_reference,
    match_latest_pending_checkout,
    match_by_subscription_id,
    match_by_gateway_payment_id,
    match_pending_external_reference,
]

# Copied from a merged record onto the row that owns the gateway payment id
CARRIED_FORWARD_FIELDS = [
    "gateway_checkout_id",
    "subscription_id",
    "external_reference",
    "plan_type",
    "billing_cycle",
    "influencer_id",
    "referral_code_used",
]


# =============================================================================
# Resolver
# =============================================================================


class PaymentResolver(BaseService):
    """
    Resolve and confirm the PaymentRecord behind a payment notification.

    Must run inside the handler's transaction: matchers lock candidate
    rows with select_for_update(), and writes that may collide on the
    unique gateway_payment_id run in a savepoint so a lost race surfaces
    as an IntegrityError that is recovered from, not a broken transaction.
    """

    @classmethod
    def resolve(
        cls,
        account: Account,
        lookup: PaymentLookup,
        *,
        plan_type: str | None = None,
        billing_cycle: str | None = None,
    ) -> ResolvedPayment:
        """
        Find or rebuild the record and move it to CONFIRMED.

        Args:
            account: Locked account the payment belongs to
            lookup: Keys and data from the notification
            plan_type: Plan to store when the record has none
            billing_cycle: Billing cycle to store when the record has none

        Returns:
            ResolvedPayment; ``was_already_confirmed`` tells the caller
            whether economic effects were applied before
        """
        for matcher in MATCHERS:
            record = matcher(account, lookup)
            if record is not None:
                return cls._confirm(
                    record,
                    lookup,
                    matcher.__name__,
                    plan_type=plan_type,
                    billing_cycle=billing_cycle,
                )
        return cls._create_confirmed(
            account, lookup, plan_type=plan_type, billing_cycle=billing_cycle
        )

    @classmethod
    def upsert_by_gateway_id(
        cls, account: Account, lookup: PaymentLookup
    ) -> tuple[PaymentRecord, bool]:
        """
        Fetch the record for ``lookup.payment_id`` or create it PENDING.

        Used by status events (overdue, cancelled, refunded) that always
        carry a payment id. The caller applies the status transition.

        Returns:
            (record, created)
        """
        record = match_by_gateway_payment_id(account, lookup)
        if record is not None:
            return record, False

        record = PaymentRecord(
            account=account,
            gateway_payment_id=lookup.payment_id,
            subscription_id=lookup.subscription_id,
            external_reference=lookup.external_reference,
            type=lookup.payment_type,
            value=lookup.value,
            billing_type=lookup.billing_type,
            due_date=lookup.due_date,
            description=lookup.description,
            influencer_id=account.referred_by_influencer_id,
            referral_code_used=account.referral_code_used,
        )
        try:
            with transaction.atomic():
                record.save()
        except IntegrityError:
            cls.get_logger().info(
                "Payment record created concurrently, using existing row",
                extra={"gateway_payment_id": lookup.payment_id},
            )
            return (
                PaymentRecord.objects.select_for_update().get(
                    gateway_payment_id=lookup.payment_id
                ),
                False,
            )
        return record, True

    @classmethod
    def _confirm(
        cls,
        record: PaymentRecord,
        lookup: PaymentLookup,
        strategy: str,
        *,
        plan_type: str | None,
        billing_cycle: str | None,
    ) -> ResolvedPayment:
        logger = cls.get_logger()

        if record.is_confirmed:
            logger.info(
                "Payment record already confirmed",
                extra={
                    "payment_record_id": str(record.id),
                    "strategy": strategy,
                    "gateway_payment_id": lookup.payment_id,
                },
            )
            return ResolvedPayment.from_record(record, strategy, was_already_confirmed=True)

        if not can_proceed(record.confirm):
            # Cancelled or refunded records are never re-confirmed; their
            # economic effects are treated as settled.
            logger.warning(
                "Confirmation for payment record in terminal state ignored",
                extra={
                    "payment_record_id": str(record.id),
                    "status": record.status,
                    "gateway_payment_id": lookup.payment_id,
                },
            )
            return ResolvedPayment.from_record(record, strategy, was_already_confirmed=True)

        record.confirm()
        update_fields = ["status", "confirmed_date", "updated_at"]
        if lookup.payment_id and not record.gateway_payment_id:
            record.gateway_payment_id = lookup.payment_id
            update_fields.append("gateway_payment_id")
        if lookup.subscription_id and not record.subscription_id:
            record.subscription_id = lookup.subscription_id
            update_fields.append("subscription_id")
        if lookup.billing_type and not record.billing_type:
            record.billing_type = lookup.billing_type
            update_fields.append("billing_type")
        if plan_type and not record.plan_type:
            record.plan_type = plan_type
            update_fields.append("plan_type")
        if billing_cycle and not record.billing_cycle:
            record.billing_cycle = billing_cycle
            update_fields.append("billing_cycle")

        try:
            with transaction.atomic():
                record.save(update_fields=update_fields)
        except IntegrityError:
            return cls._resolve_conflict(
                lookup, plan_type=plan_type, billing_cycle=billing_cycle, matched=record
            )

        logger.info(
            "Payment record confirmed",
            extra={
                "payment_record_id": str(record.id),
                "strategy": strategy,
                "gateway_payment_id": record.gateway_payment_id,
            },
        )
        return ResolvedPayment.from_record(record, strategy, was_already_confirmed=False)

    @classmethod
    def _create_confirmed(
        cls,
        account: Account,
        lookup: PaymentLookup,
        *,
        plan_type: str | None,
        billing_cycle: str | None,
    ) -> ResolvedPayment:
        """Rebuild a CONFIRMED record when nothing matched."""
        record = PaymentRecord(
            account=account,
            gateway_payment_id=lookup.payment_id,
            gateway_checkout_id=lookup.checkout_id,
            subscription_id=lookup.subscription_id,
            external_reference=lookup.external_reference,
            type=lookup.payment_type,
            status=PaymentStatus.CONFIRMED,
            value=lookup.value,
            billing_type=lookup.billing_type,
            due_date=lookup.due_date,
            description=lookup.description,
            confirmed_date=timezone.now(),
            plan_type=plan_type,
            billing_cycle=billing_cycle,
            influencer_id=account.referred_by_influencer_id,
            referral_code_used=account.referral_code_used,
        )
        try:
            with transaction.atomic():
                record.save()
        except IntegrityError:
            return cls._resolve_conflict(lookup, plan_type=plan_type, billing_cycle=billing_cycle)

        cls.get_logger().warning(
            "No payment record matched, rebuilt from payload",
            extra={
                "payment_record_id": str(record.id),
                "gateway_payment_id": lookup.payment_id,
                "payment_type": lookup.payment_type,
            },
        )
        return ResolvedPayment.from_record(
            record, "created", was_already_confirmed=False, created=True
        )

    @classmethod
    def _resolve_conflict(
        cls,
        lookup: PaymentLookup,
        *,
        plan_type: str | None,
        billing_cycle: str | None,
        matched: PaymentRecord | None = None,
    ) -> ResolvedPayment:
        """
        Another writer stored this gateway payment id first; use its row.

        When a different record had been matched (typically the checkout
        record, while a status event already created a bare row for the
        payment id), its checkout, plan and referral data move to the
        winner and the matched record is retired as CANCELLED.
        """
        if not lookup.payment_id:
            raise IntegrityError("Payment record conflict without a gateway payment id")

        winner = PaymentRecord.objects.select_for_update().get(
            gateway_payment_id=lookup.payment_id
        )
        if matched is not None and matched.pk != winner.pk:
            cls._merge_into(winner, matched)
        cls.get_logger().info(
            "Lost payment record race, continuing with existing row",
            extra={
                "payment_record_id": str(winner.id),
                "gateway_payment_id": lookup.payment_id,
            },
        )
        return cls._confirm(
            winner,
            lookup,
            "conflict",
            plan_type=plan_type,
            billing_cycle=billing_cycle,
        )

    @classmethod
    def _merge_into(cls, winner: PaymentRecord, matched: PaymentRecord) -> None:
        """Copy carried-forward data the winner lacks, then retire ``matched``."""
        # The failed save left unsaved changes on the instance
        matched.refresh_from_db()

        update_fields = []
        for field in CARRIED_FORWARD_FIELDS:
            value = getattr(matched, field)
            if value and not getattr(winner, field):
                setattr(winner, field, value)
                update_fields.append(field)
        if update_fields:
            winner.save(update_fields=[*update_fields, "updated_at"])

        retired = can_proceed(matched.cancel) and not matched.gateway_payment_id
        if retired:
            matched.cancel()
            matched.save(update_fields=["status", "updated_at"])

        cls.get_logger().info(
            "Merged matched payment record into existing row",
            extra={
                "payment_record_id": str(winner.id),
                "merged_record_id": str(matched.id),
                "fields": update_fields,
                "retired": retired,
            },
        )
