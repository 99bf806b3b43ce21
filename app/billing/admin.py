"""
Billing admin configuration.

Ledger-style tables (webhook events, credit transactions, audit log) are
read-only here. Business state changes go through the webhook pipeline
and the services, not through the admin.
"""

from django.contrib import admin, messages

from billing.models import (
    Account,
    BillingAuditLog,
    CreditPackage,
    CreditPurchase,
    CreditTransaction,
    Influencer,
    PaymentRecord,
    WebhookEvent,
)
from billing.state_machines import WebhookEventStatus
from billing.tasks import reprocess_webhook_event

__all__ = [
    "AccountAdmin",
    "PaymentRecordAdmin",
    "CreditPackageAdmin",
    "CreditPurchaseAdmin",
    "CreditTransactionAdmin",
    "InfluencerAdmin",
    "WebhookEventAdmin",
    "BillingAuditLogAdmin",
]


class ReadOnlyAdminMixin:
    """Rows are append-only; the admin only views them."""

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Account)
class AccountAdmin(admin.ModelAdmin):
    """
    Admin configuration for Account.

    credits_balance is read-only: it only moves through ledger entries.
    """

    list_display = [
        "gateway_customer_id",
        "email",
        "plan",
        "billing_cycle",
        "subscription_status",
        "credits_limit",
        "credits_balance",
        "created_at",
    ]
    list_filter = ["subscription_status", "plan", "billing_cycle"]
    search_fields = ["id", "gateway_customer_id", "email", "subscription_id"]
    readonly_fields = [
        "id",
        "credits_balance",
        "subscription_status",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "gateway_customer_id", "email"),
            },
        ),
        (
            "Subscription",
            {
                "fields": (
                    "plan",
                    "billing_cycle",
                    "subscription_id",
                    "subscription_status",
                    "next_due_date",
                    "subscription_started_at",
                    "subscription_ends_at",
                    "subscription_cancelled_at",
                ),
            },
        ),
        (
            "Credits",
            {
                "fields": (
                    "credits_limit",
                    "credits_used",
                    "credits_balance",
                    "last_credit_renewal_at",
                    "credits_expires_at",
                ),
            },
        ),
        (
            "Referral",
            {
                "fields": ("referral_code_used", "referred_by_influencer"),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )


@admin.register(PaymentRecord)
class PaymentRecordAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "account",
        "type",
        "status",
        "value",
        "plan_type",
        "gateway_payment_id",
        "confirmed_date",
        "created_at",
    ]
    list_filter = ["status", "type", "plan_type", "billing_type"]
    search_fields = [
        "id",
        "gateway_payment_id",
        "gateway_checkout_id",
        "subscription_id",
        "external_reference",
        "account__gateway_customer_id",
    ]
    readonly_fields = ["id", "status", "confirmed_date", "commission_value", "created_at", "updated_at"]
    raw_id_fields = ["account", "influencer"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]


@admin.register(CreditPackage)
class CreditPackageAdmin(admin.ModelAdmin):
    list_display = ["name", "credit_amount", "bonus_credits", "price", "is_active"]
    list_filter = ["is_active"]
    search_fields = ["name"]


@admin.register(CreditPurchase)
class CreditPurchaseAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "account",
        "package_name",
        "credit_amount",
        "bonus_credits",
        "value",
        "status",
        "confirmed_at",
    ]
    list_filter = ["status"]
    search_fields = ["id", "gateway_payment_id", "gateway_checkout_id", "account__gateway_customer_id"]
    readonly_fields = ["id", "status", "confirmed_at", "created_at", "updated_at"]
    raw_id_fields = ["account", "package"]
    ordering = ["-created_at"]


@admin.register(CreditTransaction)
class CreditTransactionAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """Credit ledger entries are immutable."""

    list_display = ["id", "account", "type", "source", "amount", "balance_after", "reference_id", "created_at"]
    list_filter = ["type", "source"]
    search_fields = ["id", "reference_id", "account__gateway_customer_id"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]


@admin.register(Influencer)
class InfluencerAdmin(admin.ModelAdmin):
    list_display = [
        "coupon_code",
        "name",
        "commission_percentage",
        "commission_fixed_value",
        "total_referrals",
        "total_commissions",
        "is_active",
    ]
    list_filter = ["is_active"]
    search_fields = ["coupon_code", "name"]
    readonly_fields = ["id", "total_referrals", "total_commissions", "created_at", "updated_at"]


@admin.register(WebhookEvent)
class WebhookEventAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Rows are immutable once received. Failed rows can be replayed with the
    "Replay" action, which queues a new attempt row.
    """

    list_display = [
        "id",
        "event_type",
        "status",
        "retryable",
        "attempt",
        "gateway_payment_id",
        "gateway_subscription_id",
        "received_at",
        "processed_at",
    ]
    list_filter = ["status", "event_type", "retryable"]
    search_fields = [
        "id",
        "event_type",
        "gateway_payment_id",
        "gateway_subscription_id",
        "gateway_checkout_id",
    ]
    date_hierarchy = "received_at"
    ordering = ["-received_at"]
    actions = ["replay_failed_events"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "event_type", "status", "received_at", "processed_at"),
            },
        ),
        (
            "Gateway References",
            {
                "fields": (
                    "gateway_payment_id",
                    "gateway_subscription_id",
                    "gateway_checkout_id",
                    "gateway_customer_id",
                ),
            },
        ),
        (
            "Error Info",
            {
                "fields": ("error_code", "error_message", "retryable", "retry_count", "attempt", "retry_of"),
                "classes": ("collapse",),
            },
        ),
        (
            "Request",
            {
                "fields": ("ip_address", "user_agent", "raw_payload"),
                "classes": ("collapse",),
            },
        ),
    )

    @admin.action(description="Replay selected failed events")
    def replay_failed_events(self, request, queryset):
        failed = queryset.filter(status=WebhookEventStatus.FAILED)
        queued = 0
        for event in failed:
            reprocess_webhook_event.delay(str(event.id))
            queued += 1
        self.message_user(
            request,
            f"Queued {queued} replay(s); {queryset.count() - queued} skipped (not failed).",
            messages.INFO,
        )


@admin.register(BillingAuditLog)
class BillingAuditLogAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ["created_at", "level", "category", "action", "account", "message"]
    list_filter = ["level", "category", "action"]
    search_fields = ["action", "message", "account__gateway_customer_id"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
