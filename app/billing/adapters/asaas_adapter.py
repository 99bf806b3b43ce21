"""
Asaas API adapter.

All outbound calls to the gateway go through AsaasAdapter so timeouts,
error translation and the circuit breaker are applied in one place.
Webhook handling only uses the gateway for enrichment (subscription
details when the payload lacks them), so handlers call the ``*_quietly``
variants, which log failures and return None.

Configuration (via settings):
- ASAAS_API_URL: API base URL (sandbox or production)
- ASAAS_API_KEY: API key sent in the ``access_token`` header
- ASAAS_API_TIMEOUT_SECONDS: Per-request timeout (default: 10)
- ASAAS_CIRCUIT_FAILURE_THRESHOLD: Failures before the circuit opens
- ASAAS_CIRCUIT_RECOVERY_TIMEOUT: Seconds before a probe is allowed

Usage:
    from billing.adapters import AsaasAdapter

    subscription = AsaasAdapter.get_subscription("sub_123")
    print(subscription.cycle, subscription.end_date)
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

import httpx
from django.conf import settings

from core.circuit_breaker import CircuitBreaker

from billing.exceptions import GatewayError
from billing.serializers import SubscriptionPayloadSerializer
from billing.webhooks.payloads import SubscriptionNotification

if TYPE_CHECKING:
    from typing import Any

CIRCUIT_NAME = "asaas-api"


class AsaasAdapter:
    """
    Adapter for Asaas REST API operations.

    All methods are classmethods; no instance state is kept. Only
    transport errors and 5xx responses count as circuit failures. A 4xx
    means the gateway is up and answered, so it closes the circuit.
    """

    # Transport override, for tests (httpx.MockTransport)
    _transport: httpx.BaseTransport | None = None

    @classmethod
    def set_transport(cls, transport: httpx.BaseTransport | None) -> None:
        cls._transport = transport

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    def get_circuit(cls) -> CircuitBreaker:
        return CircuitBreaker(
            CIRCUIT_NAME,
            failure_threshold=settings.ASAAS_CIRCUIT_FAILURE_THRESHOLD,
            recovery_timeout=settings.ASAAS_CIRCUIT_RECOVERY_TIMEOUT,
        )

    @classmethod
    def is_configured(cls) -> bool:
        return bool(settings.ASAAS_API_KEY)

    # =========================================================================
    # Operations
    # =========================================================================

    @classmethod
    def get_subscription(cls, subscription_id: str) -> SubscriptionNotification:
        """
        Fetch subscription details.

        Raises:
            GatewayError: Gateway unreachable, circuit open, error
                response, or a body that is not a subscription
        """
        data = cls._request("GET", f"/subscriptions/{subscription_id}")
        serializer = SubscriptionPayloadSerializer(data=data)
        if not serializer.is_valid():
            raise GatewayError(
                "Unexpected subscription response from gateway",
                error_code="GATEWAY_BAD_RESPONSE",
                details={"subscription_id": subscription_id, "errors": serializer.errors},
            )
        return SubscriptionNotification.from_validated_data(serializer.validated_data)

    @classmethod
    def get_subscription_quietly(
        cls, subscription_id: str | None, *, webhook_event_id: str | None = None
    ) -> SubscriptionNotification | None:
        """Best-effort get_subscription: None when unavailable."""
        if not subscription_id or not cls.is_configured():
            return None
        try:
            return cls.get_subscription(subscription_id)
        except GatewayError as e:
            cls.get_logger().warning(
                f"Gateway subscription lookup failed: {e.message}",
                extra={
                    "webhook_event_id": webhook_event_id,
                    "subscription_id": subscription_id,
                    "error_code": e.error_code,
                },
            )
            return None

    # =========================================================================
    # Transport
    # =========================================================================

    @classmethod
    def _client(cls) -> httpx.Client:
        return httpx.Client(
            base_url=settings.ASAAS_API_URL.rstrip("/"),
            timeout=settings.ASAAS_API_TIMEOUT_SECONDS,
            headers={
                "access_token": settings.ASAAS_API_KEY,
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            transport=cls._transport,
        )

    @classmethod
    def _request(cls, method: str, path: str, json: dict | None = None) -> dict[str, Any]:
        logger = cls.get_logger()
        circuit = cls.get_circuit()
        log_context = {"operation": f"{method} {path}"}

        if not circuit.is_available():
            raise GatewayError(
                "Gateway circuit is open, request not sent",
                error_code="CIRCUIT_OPEN",
                details=log_context,
            )

        start_time = time.time()
        try:
            with cls._client() as client:
                response = client.request(method, path, json=json)
        except httpx.RequestError as e:
            circuit.record_failure()
            logger.warning(
                f"Gateway request failed: {e}",
                extra={**log_context, "duration_ms": (time.time() - start_time) * 1000},
            )
            raise GatewayError(
                "Gateway request failed",
                error_code="GATEWAY_UNREACHABLE",
                details=log_context,
            ) from e

        duration_ms = (time.time() - start_time) * 1000
        if response.status_code >= 500:
            circuit.record_failure()
        else:
            circuit.record_success()

        if response.status_code >= 400:
            logger.warning(
                "Gateway returned an error response",
                extra={
                    **log_context,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )
            raise GatewayError(
                f"Gateway returned HTTP {response.status_code}",
                status_code=response.status_code,
                details={**log_context, "body": cls._safe_json(response)},
            )

        logger.debug(
            "Gateway request completed",
            extra={**log_context, "status_code": response.status_code, "duration_ms": duration_ms},
        )
        payload = cls._safe_json(response)
        if not isinstance(payload, dict):
            raise GatewayError(
                "Gateway response is not a JSON object",
                status_code=response.status_code,
                error_code="GATEWAY_BAD_RESPONSE",
                details=log_context,
            )
        return payload

    @staticmethod
    def _safe_json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None
