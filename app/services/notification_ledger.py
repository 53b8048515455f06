"""
Notification ledger for refund-availability notices.

One row per (subscription, recipient role), written only after the email was
confirmed sent. The write is a single conditional insert, so a retried commit
or a second daemon process racing on the same pair can never produce a second
row or an error.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import ConfigError, TransientInfraError
from app.models import NotificationRecord, RecipientRole, utc_now

logger = logging.getLogger(__name__)

CONFLICT_COLUMNS = ["subscription_id", "recipient_role"]


class NotificationLedger:
    def __init__(self, session_factory: Callable[[], Session], clock: Callable[[], datetime] = utc_now):
        self.session_factory = session_factory
        self.clock = clock

    def outstanding_recipients(self, subscription_id: str) -> set[RecipientRole]:
        """Roles that have not been recorded as notified for this subscription."""
        query = select(NotificationRecord.recipient_role).where(
            NotificationRecord.subscription_id == subscription_id
        )
        try:
            with self.session_factory() as db:
                sent = {RecipientRole(role) for role in db.execute(query).scalars().all()}
        except SQLAlchemyError as exc:
            raise TransientInfraError(f"Ledger read failed for {subscription_id}: {exc}") from exc
        return set(RecipientRole) - sent

    def record_sent(
        self,
        subscription_id: str,
        recipient_role: RecipientRole,
        sent_at: datetime | None = None,
    ) -> bool:
        """
        Mark a recipient as notified.

        Returns True when this call created the record and False when it was
        already there. Only call after the dispatcher confirmed the send.
        """
        values = {
            "subscription_id": subscription_id,
            "recipient_role": RecipientRole(recipient_role).value,
            "sent_at": sent_at or self.clock(),
        }
        try:
            with self.session_factory() as db:
                statement = self._insert_if_absent(db.get_bind().dialect.name, values)
                result = db.execute(statement)
                db.commit()
        except SQLAlchemyError as exc:
            raise TransientInfraError(
                f"Ledger commit failed for {subscription_id}/{values['recipient_role']}: {exc}"
            ) from exc

        created = result.rowcount == 1
        if not created:
            logger.debug(
                "Ledger already holds %s/%s, commit was a no-op", subscription_id, values["recipient_role"]
            )
        return created

    def records_for(self, subscription_id: str) -> list[NotificationRecord]:
        query = (
            select(NotificationRecord)
            .where(NotificationRecord.subscription_id == subscription_id)
            .order_by(NotificationRecord.recipient_role)
        )
        try:
            with self.session_factory() as db:
                records = db.execute(query).scalars().all()
                db.expunge_all()
                return list(records)
        except SQLAlchemyError as exc:
            raise TransientInfraError(f"Ledger read failed for {subscription_id}: {exc}") from exc

    @staticmethod
    def _insert_if_absent(dialect: str, values: dict[str, Any]):
        if dialect == "postgresql":
            return pg_insert(NotificationRecord).values(**values).on_conflict_do_nothing(
                index_elements=CONFLICT_COLUMNS
            )
        if dialect == "sqlite":
            return sqlite_insert(NotificationRecord).values(**values).on_conflict_do_nothing(
                index_elements=CONFLICT_COLUMNS
            )
        if dialect in ("mysql", "mariadb"):
            return insert(NotificationRecord).values(**values).prefix_with("IGNORE")
        raise ConfigError(f"DATABASE_URL dialect {dialect!r} has no conditional insert for the notification ledger")
