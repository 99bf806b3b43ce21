"""
Pytest hooks shared by every app.

Tests are auto-marked by filename so ``pytest -m unit`` selects the fast
tests without a marker on every class.
"""

import pytest


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full webhook journeys)
    - test_views.py, test_handlers.py, test_tasks.py, etc. → integration
    - test_models.py, test_serializers.py, test_plans.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_handlers.py",
        "test_intake.py",
        "test_tasks.py",
        "test_admin.py",
        "test_payment_resolver.py",
        "test_credit_ledger.py",
        "test_subscription_activator.py",
        "test_commission.py",
        "test_notifier.py",
        "test_circuit_breaker.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_serializers.py",
        "test_payloads.py",
        "test_plans.py",
        "test_state_transitions.py",
        "test_adapters.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)
