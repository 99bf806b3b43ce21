"""
Billing app: Asaas webhook reconciliation.

This app handles:
- Authenticating, storing and de-duplicating gateway webhooks
- Confirming payment records and activating subscriptions
- Granting purchased credits exactly once
- Influencer commissions on referred payments
- Replaying failed webhook events (billing.tasks)

Usage:
    from billing.webhooks.intake import process_inbound_event

    outcome = process_inbound_event(event, ip_address=ip, user_agent=ua)
"""
