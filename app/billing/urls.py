"""
URL configuration for the billing app.

Routes:
    - POST /webhooks/asaas/ - Asaas webhook endpoint

All routes are prefixed with /api/v1/billing/ when included in the main URLconf.
"""

from django.urls import path

from billing.webhooks.views import asaas_webhook

app_name = "billing"

urlpatterns = [
    # Webhook endpoints
    path("webhooks/asaas/", asaas_webhook, name="asaas_webhook"),
]
