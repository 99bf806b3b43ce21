"""
Serializers for inbound gateway webhooks.

These validate the shape of the JSON body before anything is stored.
The gateway uses camelCase keys; ``source`` maps them onto snake_case
keys in ``validated_data``. Unknown keys are ignored so new gateway
fields never break intake.

Usage:
    serializer = AsaasWebhookSerializer(data=body)
    serializer.is_valid(raise_exception=True)
    event = InboundEvent.from_validated_data(serializer.validated_data)
"""

from __future__ import annotations

from rest_framework import serializers

DATE_INPUT_FORMATS = ["iso-8601", "%Y-%m-%d %H:%M:%S", "%d/%m/%Y"]


def _optional_char(**kwargs) -> serializers.CharField:
    return serializers.CharField(
        required=False,
        allow_null=True,
        allow_blank=True,
        max_length=kwargs.pop("max_length", 255),
        **kwargs,
    )


def _optional_date(**kwargs) -> serializers.DateField:
    return serializers.DateField(
        required=False,
        allow_null=True,
        input_formats=DATE_INPUT_FORMATS,
        **kwargs,
    )


def _optional_amount(**kwargs) -> serializers.DecimalField:
    return serializers.DecimalField(
        max_digits=14,
        decimal_places=2,
        required=False,
        allow_null=True,
        coerce_to_string=False,
        **kwargs,
    )


class PaymentPayloadSerializer(serializers.Serializer):
    """The ``payment`` object of a PAYMENT_* event."""

    id = serializers.CharField(max_length=255)
    customer = serializers.CharField(max_length=255)
    value = _optional_amount()
    status = _optional_char(max_length=50)
    billingType = _optional_char(source="billing_type", max_length=30)
    dueDate = _optional_date(source="due_date")
    subscription = _optional_char(source="subscription_id")
    externalReference = _optional_char(source="external_reference")
    description = _optional_char(max_length=500)


class SubscriptionPayloadSerializer(serializers.Serializer):
    """The ``subscription`` object of a SUBSCRIPTION_* event."""

    id = serializers.CharField(max_length=255)
    customer = serializers.CharField(max_length=255)
    status = _optional_char(max_length=50)
    cycle = _optional_char(max_length=30)
    value = _optional_amount()
    nextDueDate = _optional_date(source="next_due_date")
    endDate = _optional_date(source="end_date")
    description = _optional_char(max_length=500)
    externalReference = _optional_char(source="external_reference")


class CheckoutItemSerializer(serializers.Serializer):
    name = _optional_char(max_length=255)
    description = _optional_char(max_length=500)
    value = _optional_amount()
    quantity = serializers.IntegerField(required=False, default=1, min_value=0)


class CheckoutSubscriptionSerializer(serializers.Serializer):
    """Subscription settings embedded in a recurring checkout."""

    id = _optional_char()
    cycle = _optional_char(max_length=30)
    nextDueDate = _optional_date(source="next_due_date")
    endDate = _optional_date(source="end_date")
    description = _optional_char(max_length=500)


class CheckoutPayloadSerializer(serializers.Serializer):
    """The ``checkout`` object of a CHECKOUT_* event."""

    id = serializers.CharField(max_length=255)
    customer = serializers.CharField(max_length=255)
    status = _optional_char(max_length=50)
    value = _optional_amount()
    externalReference = _optional_char(source="external_reference")
    payment = _optional_char(source="payment_id")
    items = CheckoutItemSerializer(many=True, required=False)
    subscription = CheckoutSubscriptionSerializer(required=False, allow_null=True)


class AsaasWebhookSerializer(serializers.Serializer):
    """
    Top-level webhook body.

    Requires ``event`` and at least one of ``payment``, ``subscription``
    or ``checkout``. Which object an event type actually needs is checked
    by its handler.
    """

    id = _optional_char(source="gateway_event_id")
    event = serializers.CharField(max_length=100)
    dateCreated = _optional_char(source="date_created", max_length=50)
    payment = PaymentPayloadSerializer(required=False, allow_null=True)
    subscription = SubscriptionPayloadSerializer(required=False, allow_null=True)
    checkout = CheckoutPayloadSerializer(required=False, allow_null=True)

    def validate(self, attrs):
        if not any(attrs.get(key) for key in ("payment", "subscription", "checkout")):
            raise serializers.ValidationError(
                "Missing payment, subscription or checkout data"
            )
        return attrs
