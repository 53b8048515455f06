from datetime import timedelta

import pytest

from app.core.exceptions import TransientInfraError
from app.models import Base, SubscriptionSnapshot, SubscriptionStatus
from app.services.eligibility_scanner import EligibilityScanner
from app.services.subscription_store import SubscriptionStore

THRESHOLD = timedelta(hours=24)


@pytest.fixture
def scanner(session_factory, now):
    return EligibilityScanner(SubscriptionStore(session_factory), clock=lambda: now)


def test_only_inactive_subscriptions_past_threshold(scanner, add_subscription):
    add_subscription("S1", hours_inactive=30)
    add_subscription("S2", hours_inactive=2)
    add_subscription("ACTIVE", hours_inactive=48, status="active")
    add_subscription("CANCELLED", hours_inactive=48, status="cancelled")
    add_subscription("REFUNDED", hours_inactive=48, status="refunded")

    eligible = scanner.find_eligible(THRESHOLD)

    assert [s.id for s in eligible] == ["S1"]
    assert eligible[0].status is SubscriptionStatus.INACTIVE
    assert eligible[0].subscriber_email == "subscriber-s1@example.com"


def test_oldest_inactivity_first(scanner, add_subscription):
    add_subscription("S1", hours_inactive=30)
    add_subscription("OLD", hours_inactive=400)
    add_subscription("MID", hours_inactive=72)

    assert [s.id for s in scanner.find_eligible(THRESHOLD)] == ["OLD", "MID", "S1"]


def test_exactly_at_threshold_is_not_eligible(scanner, add_subscription):
    add_subscription("EDGE", hours_inactive=24)
    assert scanner.find_eligible(THRESHOLD) == []


def test_scanner_filters_and_orders_whatever_the_store_returns(now):
    old = SubscriptionSnapshot("OLD", "a@example.com", "b@example.com", now - timedelta(days=9), SubscriptionStatus.INACTIVE)
    newer = SubscriptionSnapshot("NEW", "a@example.com", "b@example.com", now - timedelta(days=2), SubscriptionStatus.INACTIVE)
    active = SubscriptionSnapshot("ACT", "a@example.com", "b@example.com", now - timedelta(days=9), SubscriptionStatus.ACTIVE)
    recent = SubscriptionSnapshot("REC", "a@example.com", "b@example.com", now - timedelta(hours=1), SubscriptionStatus.INACTIVE)

    class UnorderedStore:
        def list_inactive_since(self, cutoff):
            return [newer, active, recent, old]

    scanner = EligibilityScanner(UnorderedStore(), clock=lambda: now)
    assert [s.id for s in scanner.find_eligible(THRESHOLD)] == ["OLD", "NEW"]


def test_threshold_must_be_positive(scanner):
    with pytest.raises(ValueError):
        scanner.find_eligible(timedelta(0))


def test_store_failure_is_transient(engine, scanner):
    Base.metadata.drop_all(engine)
    with pytest.raises(TransientInfraError):
        scanner.find_eligible(THRESHOLD)
