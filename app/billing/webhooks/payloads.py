"""
Strict internal representation of a gateway webhook.

The view validates the JSON body with billing.serializers and converts it
into an InboundEvent once. Handlers only ever see these frozen dataclasses,
so optional gateway fields are normalized in one place (blank strings
become None, dates become aware datetimes, amounts are Decimals).

Usage:
    event = InboundEvent.from_validated_data(serializer.validated_data, raw)
    if event.payment and event.payment.subscription_id:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


def _text(value: str | None) -> str | None:
    """Strip and map blank to None."""
    if value is None:
        return None
    value = value.strip()
    return value or None


def _as_datetime(value: date | None) -> datetime | None:
    """Gateway dates are calendar days; store them as midnight UTC."""
    if value is None:
        return None
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


@dataclass(frozen=True)
class PaymentNotification:
    payment_id: str
    customer_id: str
    value: Decimal = Decimal("0")
    status: str | None = None
    billing_type: str | None = None
    due_date: date | None = None
    subscription_id: str | None = None
    external_reference: str | None = None
    description: str | None = None

    @property
    def is_subscription_payment(self) -> bool:
        return self.subscription_id is not None

    @classmethod
    def from_validated_data(cls, data: dict[str, Any]) -> PaymentNotification:
        return cls(
            payment_id=data["id"].strip(),
            customer_id=data["customer"].strip(),
            value=data.get("value") or Decimal("0"),
            status=_text(data.get("status")),
            billing_type=_text(data.get("billing_type")),
            due_date=data.get("due_date"),
            subscription_id=_text(data.get("subscription_id")),
            external_reference=_text(data.get("external_reference")),
            description=_text(data.get("description")),
        )


@dataclass(frozen=True)
class SubscriptionNotification:
    subscription_id: str
    customer_id: str
    status: str | None = None
    cycle: str | None = None
    value: Decimal | None = None
    next_due_date: datetime | None = None
    end_date: datetime | None = None
    description: str | None = None
    external_reference: str | None = None

    @classmethod
    def from_validated_data(cls, data: dict[str, Any]) -> SubscriptionNotification:
        return cls(
            subscription_id=data["id"].strip(),
            customer_id=data["customer"].strip(),
            status=_text(data.get("status")),
            cycle=_text(data.get("cycle")),
            value=data.get("value"),
            next_due_date=_as_datetime(data.get("next_due_date")),
            end_date=_as_datetime(data.get("end_date")),
            description=_text(data.get("description")),
            external_reference=_text(data.get("external_reference")),
        )


@dataclass(frozen=True)
class CheckoutItem:
    name: str | None = None
    description: str | None = None
    value: Decimal | None = None
    quantity: int = 1


@dataclass(frozen=True)
class CheckoutNotification:
    """
    A paid checkout.

    ``cycle``, ``next_due_date`` and ``end_date`` come from the embedded
    subscription settings and are None for one-off checkouts.
    """

    checkout_id: str
    customer_id: str
    status: str | None = None
    value: Decimal = Decimal("0")
    external_reference: str | None = None
    payment_id: str | None = None
    subscription_id: str | None = None
    cycle: str | None = None
    next_due_date: datetime | None = None
    end_date: datetime | None = None
    subscription_description: str | None = None
    items: tuple[CheckoutItem, ...] = field(default_factory=tuple)

    @property
    def is_recurring(self) -> bool:
        return self.cycle is not None or self.subscription_id is not None

    @property
    def descriptive_texts(self) -> list[str]:
        """Free text that may name the plan, most specific first."""
        texts = [self.subscription_description]
        for item in self.items:
            texts.extend([item.name, item.description])
        return [text for text in texts if text]

    @classmethod
    def from_validated_data(cls, data: dict[str, Any]) -> CheckoutNotification:
        subscription = data.get("subscription") or {}
        items = tuple(
            CheckoutItem(
                name=_text(item.get("name")),
                description=_text(item.get("description")),
                value=item.get("value"),
                quantity=item.get("quantity", 1),
            )
            for item in data.get("items") or []
        )
        return cls(
            checkout_id=data["id"].strip(),
            customer_id=data["customer"].strip(),
            status=_text(data.get("status")),
            value=data.get("value") or Decimal("0"),
            external_reference=_text(data.get("external_reference")),
            payment_id=_text(data.get("payment_id")),
            subscription_id=_text(subscription.get("id")),
            cycle=_text(subscription.get("cycle")),
            next_due_date=_as_datetime(subscription.get("next_due_date")),
            end_date=_as_datetime(subscription.get("end_date")),
            subscription_description=_text(subscription.get("description")),
            items=items,
        )


@dataclass(frozen=True)
class InboundEvent:
    """
    A validated webhook.

    The identity tuple drives idempotency: event type plus the payment,
    subscription and checkout ids (each None when the object is absent).
    ``webhook_event_id`` is the stored WebhookEvent row, set by the event
    store before dispatch.
    """

    event_type: str
    raw_payload: dict[str, Any]
    payment: PaymentNotification | None = None
    subscription: SubscriptionNotification | None = None
    checkout: CheckoutNotification | None = None
    gateway_event_id: str | None = None
    date_created: str | None = None
    webhook_event_id: str | None = None

    @property
    def gateway_payment_id(self) -> str | None:
        return self.payment.payment_id if self.payment else None

    @property
    def gateway_subscription_id(self) -> str | None:
        return self.subscription.subscription_id if self.subscription else None

    @property
    def gateway_checkout_id(self) -> str | None:
        return self.checkout.checkout_id if self.checkout else None

    @property
    def gateway_customer_id(self) -> str | None:
        for part in (self.payment, self.subscription, self.checkout):
            if part is not None:
                return part.customer_id
        return None

    @property
    def identity(self) -> tuple[str, str | None, str | None, str | None]:
        return (
            self.event_type,
            self.gateway_payment_id,
            self.gateway_subscription_id,
            self.gateway_checkout_id,
        )

    @classmethod
    def from_validated_data(
        cls, data: dict[str, Any], raw_payload: dict[str, Any]
    ) -> InboundEvent:
        payment = data.get("payment")
        subscription = data.get("subscription")
        checkout = data.get("checkout")
        return cls(
            event_type=data["event"].strip(),
            raw_payload=raw_payload,
            payment=PaymentNotification.from_validated_data(payment) if payment else None,
            subscription=(
                SubscriptionNotification.from_validated_data(subscription)
                if subscription
                else None
            ),
            checkout=(
                CheckoutNotification.from_validated_data(checkout) if checkout else None
            ),
            gateway_event_id=_text(data.get("gateway_event_id")),
            date_created=_text(data.get("date_created")),
        )
