"""
Billing app configuration.
"""

from django.apps import AppConfig


class BillingConfig(AppConfig):
    """Configuration for the billing application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "billing"
    verbose_name = "Billing"

    def ready(self):
        # Populate the webhook handler registry
        from billing.webhooks import handlers  # noqa: F401
