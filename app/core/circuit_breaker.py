"""
Circuit breaker for calls to external services.

State lives in Django's cache so every web and worker process shares it.
After ``failure_threshold`` consecutive failures the circuit opens and
calls fail fast with CircuitOpenError until ``recovery_timeout`` seconds
pass. The next call is then let through as a probe: success closes the
circuit, failure reopens it.

Usage:
    from core.circuit_breaker import CircuitBreaker

    gateway_circuit = CircuitBreaker("asaas-api", failure_threshold=5)

    with gateway_circuit.call():
        response = client.get(url)
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from enum import Enum
from typing import TYPE_CHECKING

from django.core.cache import cache

from core.exceptions import ExternalServiceError

if TYPE_CHECKING:
    from collections.abc import Generator

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(ExternalServiceError):
    """
    Raised when a call is refused because the circuit is open.

    No request was sent. Retryable, since the circuit closes again
    once the service recovers.
    """

    default_error_code = "CIRCUIT_OPEN"


class CircuitBreaker:
    """
    Cache-backed circuit breaker shared across processes.

    Attributes:
        name: Identifier used in cache keys and log records
        failure_threshold: Consecutive failures before the circuit opens
        recovery_timeout: Seconds the circuit stays open before a probe
    """

    cache_ttl = 3600

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._key = f"circuit:{name}"

    @property
    def state(self) -> CircuitState:
        try:
            return CircuitState(cache.get(f"{self._key}:state", CircuitState.CLOSED))
        except ValueError:
            return CircuitState.CLOSED

    def is_available(self) -> bool:
        """
        Check whether a call may go through.

        Moves an open circuit to half-open once the recovery timeout has
        elapsed. Cache errors fail open.
        """
        try:
            state = self.state
            if state != CircuitState.OPEN:
                return True

            opened_at = cache.get(f"{self._key}:opened_at")
            if opened_at and time.time() - opened_at >= self.recovery_timeout:
                self._set_state(CircuitState.HALF_OPEN)
                logger.info(
                    "Circuit breaker half-open, probing service",
                    extra={"circuit": self.name},
                )
                return True
            return False
        except Exception as e:
            logger.warning(
                f"Circuit breaker cache error, failing open: {e}",
                extra={"circuit": self.name},
            )
            return True

    def record_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            logger.info("Circuit breaker closed", extra={"circuit": self.name})
        self._set_state(CircuitState.CLOSED)
        cache.set(f"{self._key}:failures", 0, timeout=self.cache_ttl)

    def record_failure(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self._open()
            logger.warning(
                "Circuit breaker reopened after failed probe",
                extra={"circuit": self.name},
            )
            return

        failures_key = f"{self._key}:failures"
        try:
            failures = cache.incr(failures_key)
        except ValueError:
            cache.set(failures_key, 1, timeout=self.cache_ttl)
            failures = 1

        if failures >= self.failure_threshold:
            self._open()
            logger.warning(
                f"Circuit breaker opened after {failures} failures",
                extra={
                    "circuit": self.name,
                    "failure_count": failures,
                    "threshold": self.failure_threshold,
                },
            )

    @contextmanager
    def call(self) -> Generator[None, None, None]:
        """
        Guard a block, recording its outcome.

        Raises:
            CircuitOpenError: If the circuit is open
        """
        if not self.is_available():
            raise CircuitOpenError(
                f"Circuit '{self.name}' is open", service_name=self.name
            )

        try:
            yield
        except Exception:
            self.record_failure()
            raise
        self.record_success()

    def reset(self) -> None:
        self._set_state(CircuitState.CLOSED)
        cache.delete_many([f"{self._key}:failures", f"{self._key}:opened_at"])

    def _set_state(self, state: CircuitState) -> None:
        cache.set(f"{self._key}:state", state.value, timeout=self.cache_ttl)

    def _open(self) -> None:
        self._set_state(CircuitState.OPEN)
        cache.set(f"{self._key}:opened_at", time.time(), timeout=self.cache_ttl)

    def __repr__(self) -> str:
        return f"CircuitBreaker(name={self.name!r}, state={self.state.value})"
