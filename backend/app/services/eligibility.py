"""Billing eligibility - whether a shop's pages may be monitored."""
from datetime import datetime
from typing import Callable

from ..models import Shop


class BillingEligibility:
    """Monitoring is allowed for exempt shops, active subscriptions and running trials."""

    def __init__(self, clock: Callable[[], datetime] = datetime.utcnow):
        self._clock = clock

    def is_monitoring_allowed(self, shop: Shop) -> bool:
        if shop.billing_exempt:
            return True
        if shop.billing_status == "active":
            return True
        if shop.billing_status == "trial":
            return shop.trial_ends_at is not None and shop.trial_ends_at > self._clock()
        return False


# Global instance
billing_eligibility = BillingEligibility()
