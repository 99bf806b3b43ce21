"""
Tests for the shared service primitives.
"""

from __future__ import annotations

import logging

from django.conf import settings

from core.exceptions import ExternalServiceError, NotFoundError
from core.services import BaseService, ServiceResult


class TestServiceResult:
    def test_success_is_truthy(self):
        result = ServiceResult.success({"id": 1})

        assert result
        assert result.data == {"id": 1}
        assert result.error is None

    def test_permanent_error(self):
        result = ServiceResult.from_exception(NotFoundError("Account not found"))

        assert not result
        assert result.error == "Account not found"
        assert result.error_code == NotFoundError.default_error_code
        assert result.retryable is False

    def test_retryable_error(self):
        result = ServiceResult.from_exception(ExternalServiceError("Gateway down"))

        assert not result
        assert result.retryable is True

    def test_plain_exception_gets_class_name_code(self):
        result = ServiceResult.from_exception(ValueError("bad value"))

        assert result.error == "bad value"
        assert result.error_code == "VALUEERROR"
        assert result.retryable is False

    def test_explicit_error_code_wins(self):
        result = ServiceResult.from_exception(
            NotFoundError("missing"), error_code="PLAN_UNRESOLVED"
        )

        assert result.error_code == "PLAN_UNRESOLVED"


class TestBaseService:
    def test_logger_named_after_service(self):
        class LedgerService(BaseService):
            pass

        logger = LedgerService.get_logger()

        assert isinstance(logger, logging.Logger)
        assert logger.name.endswith(".LedgerService")


class TestTestEnvironment:
    def test_settings_load_without_exported_environment(self):
        # Defaults come from the pytest ini, before Django reads settings
        assert settings.SECRET_KEY
        assert settings.ASAAS_WEBHOOK_TOKEN
