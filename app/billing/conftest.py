"""
Pytest fixtures shared by the billing test packages.

Usage:
    def test_activation(account, pending_subscription_record):
        ...
"""

import pytest
from django.core.cache import cache

from billing.adapters import AsaasAdapter
from billing.state_machines import BillingCycle, PlanType, SubscriptionStatus
from billing.tests.factories import (
    AccountFactory,
    CreditPackageFactory,
    CreditPurchaseFactory,
    InfluencerFactory,
    PaymentRecordFactory,
)


@pytest.fixture(autouse=True)
def isolate_gateway():
    """No test talks to the real gateway or shares circuit state."""
    cache.clear()
    AsaasAdapter.set_transport(None)
    yield
    AsaasAdapter.set_transport(None)
    cache.clear()


# =============================================================================
# Account Fixtures
# =============================================================================


@pytest.fixture
def account(db):
    """An account that never subscribed, matching the builders' customer id."""
    return AccountFactory(gateway_customer_id="cus_000000000001")


@pytest.fixture
def active_account(db):
    """A PREMIUM monthly subscriber with subscription sub_000000000001."""
    return AccountFactory(
        gateway_customer_id="cus_000000000001",
        plan=PlanType.PREMIUM,
        billing_cycle=BillingCycle.MONTHLY,
        subscription_id="sub_000000000001",
        subscription_status=SubscriptionStatus.ACTIVE,
        credits_limit=1200,
    )


@pytest.fixture
def influencer(db):
    return InfluencerFactory(coupon_code="PROMO10")


# =============================================================================
# Payment Fixtures
# =============================================================================


@pytest.fixture
def pending_subscription_record(account):
    """PENDING subscription payment stored by the checkout flow."""
    return PaymentRecordFactory(
        account=account,
        gateway_checkout_id="chk_000000000001",
        plan_type=PlanType.PREMIUM,
        billing_cycle=BillingCycle.MONTHLY,
    )


@pytest.fixture
def credit_package(db):
    return CreditPackageFactory(name="Pack 300", credit_amount=300, bonus_credits=50)


@pytest.fixture
def pending_credit_purchase(account, credit_package):
    return CreditPurchaseFactory(
        account=account,
        package=credit_package,
        gateway_checkout_id="chk_credits_000001",
    )
