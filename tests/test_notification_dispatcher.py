from datetime import timedelta

import pytest

from app.models import RecipientRole, SubscriptionSnapshot, SubscriptionStatus
from app.services.notification_dispatcher import FailureKind, NotificationDispatcher


@pytest.fixture
def subscription(now):
    return SubscriptionSnapshot(
        id="S1",
        subscriber_email="alice@example.com",
        supplier_email="shop@example.com",
        last_activity_at=now - timedelta(hours=30),
        status=SubscriptionStatus.INACTIVE,
    )


@pytest.fixture
def dispatcher(transport):
    return NotificationDispatcher(transport, email_url_host="refunds.example.com")


@pytest.mark.asyncio
async def test_send_uses_role_template(dispatcher, transport, subscription):
    result = await dispatcher.send("shop@example.com", subscription, RecipientRole.SUPPLIER)

    assert result.success is True
    [(to, template_id, data)] = transport.deliveries
    assert to == "shop@example.com"
    assert template_id == "refund_available_supplier"
    assert data["subscription_id"] == "S1"
    assert data["subscription_url"] == "https://refunds.example.com/subscriptions/S1"
    assert data["last_activity_at"] == "2024-01-09 06:00 UTC"


@pytest.mark.asyncio
@pytest.mark.parametrize("contact", [None, "", "not-an-email", "two@@example.com"])
async def test_malformed_address_is_invalid_without_sending(dispatcher, transport, subscription, contact):
    result = await dispatcher.send(contact, subscription, RecipientRole.SUBSCRIBER)

    assert result.success is False
    assert result.failure_kind is FailureKind.INVALID_RECIPIENT
    assert transport.attempts == []


@pytest.mark.asyncio
async def test_rejected_address_is_invalid(dispatcher, transport, subscription):
    transport.fail("alice@example.com", "invalid")
    result = await dispatcher.send("alice@example.com", subscription, RecipientRole.SUBSCRIBER)
    assert result.failure_kind is FailureKind.INVALID_RECIPIENT


@pytest.mark.asyncio
async def test_provider_outage_is_transient(dispatcher, transport, subscription):
    transport.fail("alice@example.com", "transient")
    result = await dispatcher.send("alice@example.com", subscription, RecipientRole.SUBSCRIBER)
    assert result.failure_kind is FailureKind.TRANSIENT
    assert "provider unavailable" in result.reason


@pytest.mark.asyncio
async def test_unexpected_transport_error_is_transient(subscription):
    class BrokenTransport:
        async def deliver(self, to_address, template_id, template_data):
            raise RuntimeError("socket closed")

    result = await NotificationDispatcher(BrokenTransport()).send(
        "alice@example.com", subscription, RecipientRole.SUBSCRIBER
    )
    assert result.success is False
    assert result.failure_kind is FailureKind.TRANSIENT
    assert "socket closed" in result.reason
