"""
Factory Boy factories for billing test data.

Usage:
    from billing.tests.factories import AccountFactory, PaymentRecordFactory

    account = AccountFactory()
    record = PaymentRecordFactory(account=account, gateway_checkout_id="chk_1")
"""

from decimal import Decimal

import factory

from billing.models import (
    Account,
    CreditPackage,
    CreditPurchase,
    Influencer,
    PaymentRecord,
    WebhookEvent,
)
from billing.state_machines import (
    CreditPurchaseStatus,
    PaymentStatus,
    PaymentType,
    WebhookEventStatus,
)


class AccountFactory(factory.django.DjangoModelFactory):
    """An account that never subscribed (subscription_status None)."""

    class Meta:
        model = Account

    gateway_customer_id = factory.Sequence(lambda n: f"cus_{n:012d}")
    email = factory.Sequence(lambda n: f"customer{n}@example.com")


class InfluencerFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Influencer

    name = factory.Sequence(lambda n: f"Influencer {n}")
    coupon_code = factory.Sequence(lambda n: f"PROMO{n}")
    commission_percentage = Decimal("10.00")


class PaymentRecordFactory(factory.django.DjangoModelFactory):
    """A PENDING subscription payment created by the checkout flow."""

    class Meta:
        model = PaymentRecord

    account = factory.SubFactory(AccountFactory)
    type = PaymentType.SUBSCRIPTION
    status = PaymentStatus.PENDING
    value = Decimal("49.90")


class CreditPackageFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = CreditPackage

    name = factory.Sequence(lambda n: f"Package {n}")
    credit_amount = 100
    bonus_credits = 0
    price = Decimal("19.90")


class CreditPurchaseFactory(factory.django.DjangoModelFactory):
    """A PENDING purchase of the package's credits."""

    class Meta:
        model = CreditPurchase

    account = factory.SubFactory(AccountFactory)
    package = factory.SubFactory(CreditPackageFactory)
    package_name = factory.LazyAttribute(lambda o: o.package.name if o.package else "Credits")
    credit_amount = factory.LazyAttribute(lambda o: o.package.credit_amount if o.package else 100)
    bonus_credits = factory.LazyAttribute(lambda o: o.package.bonus_credits if o.package else 0)
    value = Decimal("19.90")
    status = CreditPurchaseStatus.PENDING


class WebhookEventFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = WebhookEvent

    event_type = "PAYMENT_CONFIRMED"
    gateway_payment_id = factory.Sequence(lambda n: f"pay_{n:012d}")
    raw_payload = factory.LazyAttribute(
        lambda o: {
            "event": o.event_type,
            "payment": {
                "id": o.gateway_payment_id,
                "customer": o.gateway_customer_id or "cus_000000000000",
                "value": 49.9,
            },
        }
    )
    gateway_customer_id = "cus_000000000000"
    status = WebhookEventStatus.PENDING
