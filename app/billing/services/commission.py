"""
Referral commissions, recorded once per first confirmation of a payment.

Commission is a side effect the payment does not depend on: it runs in
its own savepoint and any failure is logged and swallowed, leaving the
payment confirmation intact.
"""

from __future__ import annotations

from decimal import Decimal

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from core.services import BaseService

from billing.models import BillingAuditLog, Influencer, PaymentRecord
from billing.state_machines import AuditCategory


class CommissionCalculator(BaseService):
    """Credit referral partners for referred payments."""

    @classmethod
    def record_for_payment(
        cls,
        record: PaymentRecord,
        was_already_confirmed: bool,
        *,
        webhook_event_id: str | None = None,
    ) -> Decimal | None:
        """
        Record the influencer commission for a newly confirmed payment.

        Skipped when the payment was confirmed before, when no influencer
        is attached, or when the commission rounds to zero.

        Returns:
            The commission recorded, or None when nothing was recorded
        """
        if was_already_confirmed or record.influencer_id is None:
            return None

        logger = cls.get_logger()
        log_extra = {
            "webhook_event_id": webhook_event_id,
            "payment_record_id": str(record.id),
            "influencer_id": str(record.influencer_id),
        }

        try:
            with transaction.atomic():
                influencer = Influencer.objects.get(pk=record.influencer_id)
                commission = influencer.commission_for(record.value)
                if commission <= 0:
                    logger.info("Commission is zero, nothing recorded", extra=log_extra)
                    return None

                Influencer.objects.filter(pk=influencer.pk).update(
                    total_referrals=F("total_referrals") + 1,
                    total_commissions=F("total_commissions") + commission,
                    updated_at=timezone.now(),
                )
                PaymentRecord.objects.filter(pk=record.pk).update(
                    commission_value=commission
                )
                record.commission_value = commission

                BillingAuditLog.record(
                    "COMMISSION_RECORDED",
                    f"Commission {commission} for {influencer.coupon_code}",
                    category=AuditCategory.COMMISSION,
                    account=record.account,
                    payment_record_id=str(record.id),
                    influencer_id=str(influencer.pk),
                    commission=str(commission),
                )
        except Exception:
            logger.exception("Failed to record commission", extra=log_extra)
            return None

        logger.info(
            "Commission recorded",
            extra={**log_extra, "commission": str(commission)},
        )
        return commission
