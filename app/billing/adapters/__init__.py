"""
Adapters for the payment gateway.

All outbound Asaas API calls should go through these adapters so that
timeouts, error translation and circuit breaking stay consistent.

Usage:
    from billing.adapters import AsaasAdapter

    subscription = AsaasAdapter.get_subscription_quietly("sub_123")
"""

from billing.adapters.asaas_adapter import AsaasAdapter

__all__ = ["AsaasAdapter"]
