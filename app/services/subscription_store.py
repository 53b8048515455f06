"""Read-only access to the subscriptions table for the refund daemon."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import TransientInfraError
from app.models import Subscription, SubscriptionSnapshot, SubscriptionStatus

logger = logging.getLogger(__name__)


class SubscriptionStore:
    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def list_inactive_since(self, cutoff: datetime) -> list[SubscriptionSnapshot]:
        """Inactive subscriptions whose last activity is older than ``cutoff``, oldest first."""
        query = (
            select(Subscription)
            .where(
                Subscription.status == SubscriptionStatus.INACTIVE.value,
                Subscription.last_activity_at < cutoff,
            )
            .order_by(Subscription.last_activity_at.asc(), Subscription.id.asc())
        )
        try:
            with self.session_factory() as db:
                rows = db.execute(query).scalars().all()
                return [SubscriptionSnapshot.from_row(row) for row in rows]
        except SQLAlchemyError as exc:
            logger.warning("Inactive subscription query failed: %s", exc)
            raise TransientInfraError(f"Subscription query failed: {exc}") from exc
