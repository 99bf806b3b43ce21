"""
Webhook endpoint for Asaas.

The gateway waits for the response and redelivers on anything but 2xx,
so the status code is the retry signal:

- 200: processed, already processed, or an event type we ignore
- 400: malformed body or a permanent business failure (do not retry)
- 401: missing or wrong access token
- 422: transient business failure (retry later)
- 500: unexpected error, details only in logs and on the event row

Usage:
    # In urls.py
    from billing.webhooks.views import asaas_webhook

    urlpatterns = [
        path("webhooks/asaas/", asaas_webhook, name="asaas_webhook"),
    ]
"""

from __future__ import annotations

import json
import logging

from django.conf import settings
from django.http import HttpRequest, JsonResponse
from django.utils.crypto import constant_time_compare
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from core.helpers import get_client_ip, get_user_agent

from billing.exceptions import WebhookAuthError
from billing.serializers import AsaasWebhookSerializer
from billing.webhooks.intake import process_inbound_event
from billing.webhooks.payloads import InboundEvent

logger = logging.getLogger(__name__)

ACCESS_TOKEN_HEADER = "asaas-access-token"
INTERNAL_ERROR_MESSAGE = "Internal webhook processing error"


def verify_access_token(request: HttpRequest) -> None:
    """
    Check the shared secret header.

    With no ASAAS_WEBHOOK_TOKEN configured every request is accepted and
    a warning is logged.

    Raises:
        WebhookAuthError: Token configured and header missing or different
    """
    expected = settings.ASAAS_WEBHOOK_TOKEN
    if not expected:
        logger.warning(
            "ASAAS_WEBHOOK_TOKEN not configured, accepting unauthenticated webhook",
            extra={"ip_address": get_client_ip(request)},
        )
        return

    received = request.headers.get(ACCESS_TOKEN_HEADER, "")
    if not received or not constant_time_compare(received, expected):
        raise WebhookAuthError("Invalid access token")


@csrf_exempt
@require_POST
def asaas_webhook(request: HttpRequest) -> JsonResponse:
    """
    Receive and process an Asaas webhook synchronously.

    Processing happens in the request: the gateway's retry policy is our
    retry mechanism for transient failures, on top of the periodic
    replay of failed events (billing.tasks).
    """
    try:
        verify_access_token(request)
    except WebhookAuthError:
        logger.warning(
            "Webhook rejected: invalid access token",
            extra={"ip_address": get_client_ip(request)},
        )
        return JsonResponse({"error": "Invalid access token"}, status=401)

    try:
        body = json.loads(request.body)
    except (ValueError, UnicodeDecodeError):
        logger.warning("Webhook rejected: body is not valid JSON")
        return JsonResponse({"error": "Invalid JSON payload"}, status=400)

    if not isinstance(body, dict):
        return JsonResponse({"error": "Invalid JSON payload"}, status=400)

    serializer = AsaasWebhookSerializer(data=body)
    if not serializer.is_valid():
        logger.warning(
            "Webhook rejected: invalid payload",
            extra={"event_type": body.get("event"), "errors": serializer.errors},
        )
        return JsonResponse(
            {"error": "Invalid webhook payload", "details": serializer.errors},
            status=400,
        )

    event = InboundEvent.from_validated_data(serializer.validated_data, body)
    logger.info(
        f"Received Asaas webhook: {event.event_type}",
        extra={
            "event_type": event.event_type,
            "gateway_payment_id": event.gateway_payment_id,
            "gateway_subscription_id": event.gateway_subscription_id,
        },
    )

    try:
        outcome = process_inbound_event(
            event,
            ip_address=get_client_ip(request),
            user_agent=get_user_agent(request),
        )
    except Exception:
        # Failing before a row exists (e.g. the event store is down).
        logger.exception(
            "Webhook intake failed before processing",
            extra={"event_type": event.event_type},
        )
        return JsonResponse({"error": INTERNAL_ERROR_MESSAGE}, status=500)

    if outcome.duplicate_of is not None:
        return JsonResponse(
            {"status": "already_processed", "eventId": outcome.event_id},
            status=200,
        )

    if outcome.exception is not None:
        return JsonResponse({"error": INTERNAL_ERROR_MESSAGE}, status=500)

    result = outcome.result
    if result.success:
        return JsonResponse(
            {
                "status": "processed",
                "eventId": outcome.event_id,
                "processingTime": outcome.processing_ms,
            },
            status=200,
        )

    return JsonResponse(
        {
            "error": result.error,
            "eventId": outcome.event_id,
            "retryable": result.retryable,
        },
        status=422 if result.retryable else 400,
    )
