"""
Finds subscriptions that have been inactive long enough to qualify for a refund.

The scanner knows nothing about which notices were already sent. A subscription
keeps showing up in every scan until its status changes, and the notification
ledger turns the repeat into a no-op.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Protocol, Sequence

from app.models import SubscriptionSnapshot, SubscriptionStatus, utc_now

ELIGIBLE_STATUSES = frozenset({SubscriptionStatus.INACTIVE})


class SubscriptionSource(Protocol):
    def list_inactive_since(self, cutoff: datetime) -> Sequence[SubscriptionSnapshot]:
        ...


def is_eligible(subscription: SubscriptionSnapshot, cutoff: datetime) -> bool:
    return subscription.status in ELIGIBLE_STATUSES and subscription.last_activity_at < cutoff


class EligibilityScanner:
    def __init__(self, store: SubscriptionSource, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    def cutoff_for(self, threshold: timedelta) -> datetime:
        if threshold <= timedelta(0):
            raise ValueError("Inactivity threshold must be positive")
        return self.clock() - threshold

    def find_eligible(self, threshold: timedelta) -> list[SubscriptionSnapshot]:
        """Snapshot of eligible subscriptions, longest inactive first."""
        cutoff = self.cutoff_for(threshold)
        candidates = [s for s in self.store.list_inactive_since(cutoff) if is_eligible(s, cutoff)]
        candidates.sort(key=lambda s: (s.last_activity_at, s.id))
        return candidates
