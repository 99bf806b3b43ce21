"""
Builders for Asaas webhook bodies used across the billing tests.

Bodies follow the gateway's camelCase shape. ``inbound()`` runs a body
through the same validation the view uses, so handler tests see exactly
what production handlers see.
"""

from __future__ import annotations

import dataclasses

from billing.serializers import AsaasWebhookSerializer
from billing.webhooks.payloads import InboundEvent


def payment_body(
    event: str = "PAYMENT_CONFIRMED",
    *,
    payment_id: str = "pay_000000000001",
    customer: str = "cus_000000000001",
    value: float = 49.9,
    subscription: str | None = None,
    external_reference: str | None = None,
    **payment_fields,
) -> dict:
    payment = {
        "id": payment_id,
        "customer": customer,
        "value": value,
        "status": "CONFIRMED",
        "billingType": "PIX",
        "dueDate": "2026-01-10",
        **payment_fields,
    }
    if subscription is not None:
        payment["subscription"] = subscription
    if external_reference is not None:
        payment["externalReference"] = external_reference
    return {"id": f"evt_{payment_id}", "event": event, "payment": payment}


def checkout_body(
    *,
    checkout_id: str = "chk_000000000001",
    customer: str = "cus_000000000001",
    value: float = 49.9,
    cycle: str | None = None,
    item_name: str | None = None,
    next_due_date: str | None = None,
    external_reference: str | None = None,
    subscription_id: str | None = None,
) -> dict:
    checkout = {
        "id": checkout_id,
        "customer": customer,
        "value": value,
        "status": "PAID",
    }
    if item_name:
        checkout["items"] = [{"name": item_name, "value": value, "quantity": 1}]
    if cycle or subscription_id:
        checkout["subscription"] = {
            "id": subscription_id,
            "cycle": cycle,
            "nextDueDate": next_due_date,
        }
    if external_reference:
        checkout["externalReference"] = external_reference
    return {"id": f"evt_{checkout_id}", "event": "CHECKOUT_PAID", "checkout": checkout}


def subscription_body(
    event: str = "SUBSCRIPTION_CREATED",
    *,
    subscription_id: str = "sub_000000000001",
    customer: str = "cus_000000000001",
    cycle: str = "MONTHLY",
    description: str | None = "Plano Premium",
    next_due_date: str | None = "2026-02-10",
    end_date: str | None = None,
) -> dict:
    subscription = {
        "id": subscription_id,
        "customer": customer,
        "cycle": cycle,
        "status": "ACTIVE",
        "value": 49.9,
        "description": description,
        "nextDueDate": next_due_date,
        "endDate": end_date,
    }
    return {"id": f"evt_{subscription_id}", "event": event, "subscription": subscription}


def inbound(body: dict, webhook_event_id: str | None = None) -> InboundEvent:
    """Validate a body and convert it like the webhook view does."""
    serializer = AsaasWebhookSerializer(data=body)
    serializer.is_valid(raise_exception=True)
    event = InboundEvent.from_validated_data(serializer.validated_data, body)
    if webhook_event_id is not None:
        event = dataclasses.replace(event, webhook_event_id=webhook_event_id)
    return event
