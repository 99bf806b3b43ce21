"""
Plan catalogue: credits per plan and how long plan credits last.

Plan credits are a per-period allowance (credits_limit), separate from
purchased credits (credits_balance). Yearly subscribers receive twelve
months of allowance at once.
"""

from __future__ import annotations

from datetime import timedelta

from billing.state_machines import BillingCycle, PlanType

PLAN_CREDITS: dict[str, int] = {
    PlanType.STARTER: 500,
    PlanType.PREMIUM: 1200,
    PlanType.GOLD: 2500,
}

YEARLY_MULTIPLIER = 12

CREDIT_PERIODS: dict[str, timedelta] = {
    BillingCycle.MONTHLY: timedelta(days=30),
    BillingCycle.YEARLY: timedelta(days=365),
}


def credits_limit_for(plan: str, billing_cycle: str | None) -> int:
    """Credit allowance for one billing period of ``plan``."""
    credits = PLAN_CREDITS[plan]
    if billing_cycle == BillingCycle.YEARLY:
        return credits * YEARLY_MULTIPLIER
    return credits


def credit_period_for(billing_cycle: str | None) -> timedelta:
    """How long plan credits last; monthly when the cycle is unknown."""
    return CREDIT_PERIODS.get(billing_cycle, CREDIT_PERIODS[BillingCycle.MONTHLY])


def plan_from_text(text: str | None) -> str | None:
    """
    Find a plan name inside free text.

    Case-insensitive substring match, tried in PlanType declaration order
    (STARTER, PREMIUM, GOLD), so the result is stable when a text happens
    to name more than one plan.
    """
    if not text:
        return None
    upper = text.upper()
    for plan in PlanType:
        if plan.value in upper:
            return plan.value
    return None


def normalize_cycle(value: str | None) -> str | None:
    """
    Map a gateway cycle onto a supported billing cycle.

    The gateway knows more cycles (WEEKLY, QUARTERLY, ...); only MONTHLY
    and YEARLY are sold, anything else resolves to None.
    """
    if not value:
        return None
    value = value.strip().upper()
    if value in BillingCycle.values:
        return value
    return None
