"""
Webhook event handlers for Asaas events.

This module provides a handler registry and the handlers for every gateway
event type the billing app reacts to.

Each handler runs its business changes in one database transaction with
the account row locked, and returns a ServiceResult. Expected failures
(billing errors, database errors) are converted into failed results
carrying an explicit ``retryable`` flag by the registry wrapper; anything
else propagates to the intake pipeline and is recorded as an exception.

Client notifications are scheduled with transaction.on_commit so they
only go out for committed changes.

Usage:
    from billing.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("PAYMENT_CREATED")
    def handle_payment_created(event: InboundEvent) -> ServiceResult:
        ...

    result = dispatch_webhook(event)
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from django.db import DatabaseError, transaction
from django_fsm import can_proceed

from core.services import ServiceResult

from billing.adapters import AsaasAdapter
from billing.exceptions import (
    AccountNotFoundError,
    BillingError,
    CriticalDataError,
    TransientBillingError,
    WebhookValidationError,
)
from billing.models import Account, BillingAuditLog, PaymentRecord
from billing.services import (
    ActivationContext,
    CommissionCalculator,
    CreditLedger,
    PaymentLookup,
    PaymentResolver,
    StateChangeNotifier,
    SubscriptionActivator,
)
from billing.services.plans import normalize_cycle
from billing.state_machines import AuditCategory, AuditLevel

if TYPE_CHECKING:
    from billing.services import ActivationResult, CreditGrant
    from billing.webhooks.payloads import InboundEvent, SubscriptionNotification


logger = logging.getLogger(__name__)

Handler = Callable[["InboundEvent"], ServiceResult]


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Handler] = {}


def _log_extra(event: InboundEvent, **extra) -> dict:
    return {
        "webhook_event_id": event.webhook_event_id,
        "event_type": event.event_type,
        **extra,
    }


def _error_boundary(func: Handler) -> Handler:
    """Convert expected exceptions into failed ServiceResults."""

    @functools.wraps(func)
    def wrapper(event: InboundEvent) -> ServiceResult:
        try:
            return func(event)
        except BillingError as e:
            logger.log(
                logging.ERROR if e.is_retryable else logging.WARNING,
                f"{event.event_type} handling failed: {e.message}",
                extra=_log_extra(event, error_code=e.error_code, retryable=e.is_retryable),
            )
            return ServiceResult.from_exception(e)
        except DatabaseError as e:
            logger.warning(
                f"{event.event_type} handling hit a database error",
                extra=_log_extra(event),
                exc_info=True,
            )
            return ServiceResult.from_exception(
                TransientBillingError(
                    "Database error while processing webhook",
                    error_code="DATABASE_ERROR",
                    details={"exception": e.__class__.__name__},
                )
            )

    return wrapper


def register_handler(*event_types: str) -> Callable[[Handler], Handler]:
    """
    Decorator to register a webhook event handler for one or more types.

    Usage:
        @register_handler("PAYMENT_CONFIRMED", "PAYMENT_RECEIVED")
        def handle_payment_success(event: InboundEvent) -> ServiceResult:
            ...
    """

    def decorator(func: Handler) -> Handler:
        wrapped = _error_boundary(func)
        for event_type in event_types:
            WEBHOOK_HANDLERS[event_type] = wrapped
            logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch_webhook(event: InboundEvent) -> ServiceResult:
    """
    Dispatch an event to the handler registered for its type.

    Unknown event types are acknowledged with success and no side
    effects beyond an informational audit entry, so the gateway does not
    keep redelivering them.
    """
    handler = WEBHOOK_HANDLERS.get(event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {event.event_type}",
            extra=_log_extra(event),
        )
        BillingAuditLog.record(
            "WEBHOOK_UNHANDLED",
            f"Unhandled webhook event type {event.event_type}",
            category=AuditCategory.WEBHOOK,
            level=AuditLevel.INFO,
            webhook_event_id=event.webhook_event_id,
        )
        return ServiceResult.success({"handled": False})

    logger.info(f"Dispatching {event.event_type} to handler", extra=_log_extra(event))
    return handler(event)


# =============================================================================
# Helpers
# =============================================================================


def _require(part, name: str, event: InboundEvent):
    if part is None:
        raise WebhookValidationError(
            f"Missing {name} data",
            details={"event_type": event.event_type},
        )
    return part


def _lock_account(customer_id: str) -> Account:
    """Load the account for a gateway customer, locked for this transaction."""
    try:
        return Account.objects.select_for_update().get(gateway_customer_id=customer_id)
    except Account.DoesNotExist:
        raise AccountNotFoundError(
            "Account not found for gateway customer",
            details={"gateway_customer_id": customer_id},
        ) from None


def _notify_on_commit(
    account: Account,
    *,
    grant: CreditGrant | None = None,
    account_changed: bool = False,
) -> None:
    account_id = account.id
    if grant is not None:
        balance, amount = grant.balance_after, grant.amount
        transaction.on_commit(
            lambda: StateChangeNotifier.credits_updated(
                account_id, balance, credits_added=amount
            )
        )
    if account_changed:
        changes = {
            "subscription_status": account.subscription_status,
            "plan": account.plan,
            "billing_cycle": account.billing_cycle,
            "credits_limit": account.credits_limit,
        }
        transaction.on_commit(
            lambda: StateChangeNotifier.account_updated(account_id, **changes)
        )


def _backfill_plan(record: PaymentRecord, activation: ActivationResult) -> None:
    """Store the resolved plan on the payment so later renewals find it."""
    changes = {}
    if activation.plan and not record.plan_type:
        changes["plan_type"] = activation.plan
    if activation.billing_cycle and not record.billing_cycle:
        changes["billing_cycle"] = activation.billing_cycle
    if changes:
        PaymentRecord.objects.filter(pk=record.pk).update(**changes)
        for name, value in changes.items():
            setattr(record, name, value)


def _subscription_mismatch(
    account: Account, subscription_id: str | None, event: InboundEvent
) -> bool:
    """True when the event is about a subscription the account no longer holds."""
    if (
        not account.subscription_id
        or not subscription_id
        or account.subscription_id == subscription_id
    ):
        return False
    logger.warning(
        "Subscription event for a subscription the account does not hold, ignoring",
        extra=_log_extra(
            event,
            account_id=str(account.id),
            account_subscription_id=account.subscription_id,
            event_subscription_id=subscription_id,
        ),
    )
    BillingAuditLog.record(
        "SUBSCRIPTION_MISMATCH",
        f"{event.event_type} for {subscription_id} ignored; "
        f"account holds {account.subscription_id}",
        category=AuditCategory.SUBSCRIPTION,
        level=AuditLevel.WARNING,
        account=account,
        webhook_event_id=event.webhook_event_id,
    )
    return True


def _activate(
    account: Account,
    record: PaymentRecord,
    event: InboundEvent,
    *,
    subscription_id: str | None,
    gateway_subscription: SubscriptionNotification | None = None,
) -> tuple[ActivationResult | None, CriticalDataError | None]:
    """Run the activator, keeping its safe partial state on CriticalDataError."""
    ctx = ActivationContext.build(
        account,
        record,
        gateway_subscription=gateway_subscription,
        checkout=event.checkout,
    )
    try:
        activation = SubscriptionActivator.activate(
            ctx,
            subscription_id=subscription_id,
            webhook_event_id=event.webhook_event_id,
        )
    except CriticalDataError as e:
        return None, e
    _backfill_plan(record, activation)
    return activation, None


# =============================================================================
# Payment Handlers
# =============================================================================


@register_handler("PAYMENT_CONFIRMED", "PAYMENT_RECEIVED")
def handle_payment_success(event: InboundEvent) -> ServiceResult:
    """
    Handle a paid payment (subscription charge or credit purchase).

    Resolves and confirms the PaymentRecord. On its first confirmation a
    subscription payment activates the subscription and a one-off payment
    grants the purchased credits; the referral commission is recorded
    either way. A payment confirmed before has no further effects.
    """
    payment = _require(event.payment, "payment", event)
    lookup = PaymentLookup.from_payment(payment)

    # Gateway enrichment happens outside the transaction.
    gateway_subscription = None
    if lookup.is_subscription:
        gateway_subscription = event.subscription or AsaasAdapter.get_subscription_quietly(
            payment.subscription_id,
            webhook_event_id=event.webhook_event_id,
        )

    critical = None
    with transaction.atomic():
        account = _lock_account(payment.customer_id)
        resolved = PaymentResolver.resolve(account, lookup)

        if resolved.was_already_confirmed:
            logger.info(
                "Payment already applied, skipping economic effects",
                extra=_log_extra(
                    event,
                    payment_record_id=str(resolved.record.id),
                    strategy=resolved.strategy,
                ),
            )
            return ServiceResult.success(
                {"payment_record_id": str(resolved.record.id), "already_confirmed": True}
            )

        grant = None
        if lookup.is_subscription:
            _, critical = _activate(
                account,
                resolved.record,
                event,
                subscription_id=payment.subscription_id,
                gateway_subscription=gateway_subscription,
            )
        else:
            grant = CreditLedger.confirm_purchase(
                account, lookup, webhook_event_id=event.webhook_event_id
            )

        CommissionCalculator.record_for_payment(
            resolved.record,
            resolved.was_already_confirmed,
            webhook_event_id=event.webhook_event_id,
        )
        BillingAuditLog.record(
            "PAYMENT_CONFIRMED",
            f"Payment {payment.payment_id} confirmed ({resolved.strategy})",
            category=AuditCategory.PAYMENT,
            account=account,
            webhook_event_id=event.webhook_event_id,
            payment_record_id=str(resolved.record.id),
            gateway_payment_id=payment.payment_id,
            strategy=resolved.strategy,
            value=str(payment.value),
            credits_granted=grant.amount if grant else 0,
        )
        _notify_on_commit(account, grant=grant, account_changed=lookup.is_subscription)

    if critical is not None:
        return ServiceResult.from_exception(critical)

    logger.info(
        "Payment processed",
        extra=_log_extra(
            event,
            payment_record_id=str(resolved.record.id),
            strategy=resolved.strategy,
        ),
    )
    return ServiceResult.success(
        {
            "payment_record_id": str(resolved.record.id),
            "already_confirmed": False,
            "credits_granted": grant.amount if grant else 0,
        }
    )


@register_handler("CHECKOUT_PAID")
def handle_checkout_paid(event: InboundEvent) -> ServiceResult:
    """
    Handle a paid checkout.

    A recurring checkout activates the subscription; the plan usually
    comes from the checkout's item names when the account has none yet.
    A one-off checkout confirms a credit purchase.
    """
    checkout = _require(event.checkout, "checkout", event)
    lookup = PaymentLookup.from_checkout(checkout)

    critical = None
    with transaction.atomic():
        account = _lock_account(checkout.customer_id)
        resolved = PaymentResolver.resolve(
            account, lookup, billing_cycle=normalize_cycle(checkout.cycle)
        )

        if resolved.was_already_confirmed:
            logger.info(
                "Checkout already applied, skipping economic effects",
                extra=_log_extra(event, payment_record_id=str(resolved.record.id)),
            )
            return ServiceResult.success(
                {"payment_record_id": str(resolved.record.id), "already_confirmed": True}
            )

        grant = None
        if lookup.is_subscription:
            _, critical = _activate(
                account,
                resolved.record,
                event,
                subscription_id=checkout.subscription_id,
            )
        else:
            grant = CreditLedger.confirm_purchase(
                account, lookup, webhook_event_id=event.webhook_event_id
            )

        CommissionCalculator.record_for_payment(
            resolved.record,
            resolved.was_already_confirmed,
            webhook_event_id=event.webhook_event_id,
        )
        BillingAuditLog.record(
            "CHECKOUT_PAID",
            f"Checkout {checkout.checkout_id} paid ({resolved.strategy})",
            category=AuditCategory.PAYMENT,
            account=account,
            webhook_event_id=event.webhook_event_id,
            payment_record_id=str(resolved.record.id),
            gateway_checkout_id=checkout.checkout_id,
            strategy=resolved.strategy,
            value=str(checkout.value),
        )
        _notify_on_commit(account, grant=grant, account_changed=lookup.is_subscription)

    if critical is not None:
        return ServiceResult.from_exception(critical)
    return ServiceResult.success(
        {"payment_record_id": str(resolved.record.id), "already_confirmed": False}
    )


@register_handler("PAYMENT_OVERDUE")
def handle_payment_overdue(event: InboundEvent) -> ServiceResult:
    """
    Mark the payment overdue, and the subscription too for charges of the
    subscription the account currently holds.

    A payment that is already confirmed stays confirmed and leaves the
    subscription alone (the overdue notice arrived late).
    """
    payment = _require(event.payment, "payment", event)
    lookup = PaymentLookup.from_payment(payment)

    with transaction.atomic():
        account = _lock_account(payment.customer_id)
        record, created = PaymentResolver.upsert_by_gateway_id(account, lookup)

        if can_proceed(record.mark_overdue):
            record.mark_overdue()
            record.save(update_fields=["status", "overdue_date", "updated_at"])
        else:
            logger.info(
                f"Payment in status {record.status} not marked overdue",
                extra=_log_extra(event, payment_record_id=str(record.id)),
            )

        account_changed = False
        if (
            lookup.is_subscription
            and not record.is_confirmed
            and not _subscription_mismatch(account, payment.subscription_id, event)
        ):
            account_changed = SubscriptionActivator.mark_overdue(
                account, webhook_event_id=event.webhook_event_id
            )
        _notify_on_commit(account, account_changed=account_changed)

    return ServiceResult.success(
        {"payment_record_id": str(record.id), "created": created, "status": record.status}
    )


@register_handler("PAYMENT_DELETED", "PAYMENT_REFUNDED")
def handle_payment_cancelled(event: InboundEvent) -> ServiceResult:
    """
    Cancel or refund the payment. A charge of the subscription the account
    currently holds also cancels that subscription; charges of an older
    subscription only update their record.

    Credits already granted are not taken back.
    """
    payment = _require(event.payment, "payment", event)
    lookup = PaymentLookup.from_payment(payment)
    refunded = event.event_type == "PAYMENT_REFUNDED"

    with transaction.atomic():
        account = _lock_account(payment.customer_id)
        record, created = PaymentResolver.upsert_by_gateway_id(account, lookup)

        change_status = record.refund if refunded else record.cancel
        if can_proceed(change_status):
            change_status()
            record.save(update_fields=["status", "updated_at"])
        else:
            logger.info(
                f"Payment in status {record.status} left unchanged",
                extra=_log_extra(event, payment_record_id=str(record.id)),
            )

        account_changed = False
        if lookup.is_subscription and not _subscription_mismatch(
            account, payment.subscription_id, event
        ):
            account_changed = SubscriptionActivator.cancel(
                account,
                gateway_subscription=event.subscription,
                webhook_event_id=event.webhook_event_id,
            )

        BillingAuditLog.record(
            "PAYMENT_REFUNDED" if refunded else "PAYMENT_CANCELLED",
            f"Payment {payment.payment_id} {'refunded' if refunded else 'cancelled'}",
            category=AuditCategory.PAYMENT,
            level=AuditLevel.WARNING,
            account=account,
            webhook_event_id=event.webhook_event_id,
            payment_record_id=str(record.id),
            gateway_payment_id=payment.payment_id,
        )
        _notify_on_commit(account, account_changed=account_changed)

    return ServiceResult.success(
        {"payment_record_id": str(record.id), "created": created, "status": record.status}
    )


# =============================================================================
# Subscription Handlers
# =============================================================================


@register_handler("SUBSCRIPTION_CREATED")
def handle_subscription_created(event: InboundEvent) -> ServiceResult:
    """Store subscription id, due date, cycle and plan. Status is untouched."""
    subscription = _require(event.subscription, "subscription", event)

    with transaction.atomic():
        account = _lock_account(subscription.customer_id)
        changed = SubscriptionActivator.record_subscription_created(
            account, subscription, webhook_event_id=event.webhook_event_id
        )

    return ServiceResult.success({"changed_fields": changed})


@register_handler("SUBSCRIPTION_CANCELLED")
def handle_subscription_cancelled(event: InboundEvent) -> ServiceResult:
    subscription = _require(event.subscription, "subscription", event)

    with transaction.atomic():
        account = _lock_account(subscription.customer_id)
        if _subscription_mismatch(account, subscription.subscription_id, event):
            return ServiceResult.success({"changed": False})

        changed = SubscriptionActivator.cancel(
            account,
            gateway_subscription=subscription,
            webhook_event_id=event.webhook_event_id,
        )
        if changed:
            BillingAuditLog.record(
                "SUBSCRIPTION_CANCELLED",
                f"Subscription {subscription.subscription_id} cancelled",
                category=AuditCategory.SUBSCRIPTION,
                account=account,
                webhook_event_id=event.webhook_event_id,
                subscription_ends_at=(
                    account.subscription_ends_at.isoformat()
                    if account.subscription_ends_at
                    else None
                ),
            )
        _notify_on_commit(account, account_changed=changed)

    return ServiceResult.success({"changed": changed})


@register_handler("SUBSCRIPTION_EXPIRED")
def handle_subscription_expired(event: InboundEvent) -> ServiceResult:
    subscription = _require(event.subscription, "subscription", event)

    with transaction.atomic():
        account = _lock_account(subscription.customer_id)
        if _subscription_mismatch(account, subscription.subscription_id, event):
            return ServiceResult.success({"changed": False})

        changed = SubscriptionActivator.expire(
            account, webhook_event_id=event.webhook_event_id
        )
        _notify_on_commit(account, account_changed=changed)

    return ServiceResult.success({"changed": changed})


@register_handler("SUBSCRIPTION_REACTIVATED")
def handle_subscription_reactivated(event: InboundEvent) -> ServiceResult:
    subscription = _require(event.subscription, "subscription", event)

    with transaction.atomic():
        account = _lock_account(subscription.customer_id)
        if _subscription_mismatch(account, subscription.subscription_id, event):
            return ServiceResult.success({"changed": False})

        changed = SubscriptionActivator.reactivate(
            account, webhook_event_id=event.webhook_event_id
        )
        _notify_on_commit(account, account_changed=changed)

    return ServiceResult.success({"changed": changed})
