"""
SQLAlchemy models for the refund daemon.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


def utc_now() -> datetime:
    """Naive UTC timestamp, the format every DateTime column here stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class RecipientRole(str, enum.Enum):
    SUBSCRIBER = "subscriber"
    SUPPLIER = "supplier"


class Subscription(Base):
    """Owned by the CRUD layer. The daemon only reads it."""

    __tablename__ = "subscriptions"

    id = Column(String(64), primary_key=True)
    subscriber_email = Column(Text)
    supplier_email = Column(Text)
    status = Column(String(16), nullable=False, default=SubscriptionStatus.ACTIVE.value)
    last_activity_at = Column(DateTime, nullable=False, default=utc_now)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (Index("ix_subscriptions_status_last_activity", "status", "last_activity_at"),)


class NotificationRecord(Base):
    """Permanent proof that a refund notice reached one recipient of a subscription."""

    __tablename__ = "refund_notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subscription_id = Column(String(64), nullable=False, index=True)
    recipient_role = Column(String(16), nullable=False)
    sent_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint("subscription_id", "recipient_role", name="uq_refund_notification_recipient"),
    )


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Point-in-time copy of a subscription row, safe to pass between threads."""

    id: str
    subscriber_email: str | None
    supplier_email: str | None
    last_activity_at: datetime
    status: SubscriptionStatus

    @classmethod
    def from_row(cls, row: Subscription) -> "SubscriptionSnapshot":
        return cls(
            id=row.id,
            subscriber_email=row.subscriber_email,
            supplier_email=row.supplier_email,
            last_activity_at=row.last_activity_at,
            status=SubscriptionStatus(row.status),
        )

    def contact_for(self, role: RecipientRole) -> str | None:
        if role is RecipientRole.SUBSCRIBER:
            return self.subscriber_email
        return self.supplier_email
