from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import Optional

from app.core.exceptions import InvalidRecipientError, TransientInfraError
from app.integrations.email import EmailTransport
from app.models import RecipientRole, SubscriptionSnapshot

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

TEMPLATE_IDS = {
    RecipientRole.SUBSCRIBER: "refund_available_subscriber",
    RecipientRole.SUPPLIER: "refund_available_supplier",
}


class FailureKind(str, enum.Enum):
    TRANSIENT = "transient"
    INVALID_RECIPIENT = "invalid_recipient"


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    failure_kind: Optional[FailureKind] = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "DispatchResult":
        return cls(success=True)

    @classmethod
    def failure(cls, kind: FailureKind, reason: str) -> "DispatchResult":
        return cls(success=False, failure_kind=kind, reason=reason)


class NotificationDispatcher:
    """Sends one refund-availability notice per call. Never retries."""

    def __init__(self, transport: EmailTransport, email_url_host: str = "myethersub.com"):
        self.transport = transport
        self.email_url_host = email_url_host

    async def send(
        self,
        recipient_contact: str | None,
        subscription: SubscriptionSnapshot,
        recipient_role: RecipientRole,
    ) -> DispatchResult:
        if not recipient_contact or not EMAIL_PATTERN.match(recipient_contact.strip()):
            return DispatchResult.failure(
                FailureKind.INVALID_RECIPIENT,
                f"Missing or malformed {recipient_role.value} address: {recipient_contact!r}",
            )

        try:
            await self.transport.deliver(
                recipient_contact.strip(),
                TEMPLATE_IDS[recipient_role],
                self.template_data(subscription, recipient_role),
            )
        except InvalidRecipientError as exc:
            return DispatchResult.failure(FailureKind.INVALID_RECIPIENT, str(exc))
        except TransientInfraError as exc:
            return DispatchResult.failure(FailureKind.TRANSIENT, str(exc))
        except Exception as exc:
            logger.exception("Unexpected transport error for subscription %s", subscription.id)
            return DispatchResult.failure(FailureKind.TRANSIENT, f"{type(exc).__name__}: {exc}")
        return DispatchResult.ok()

    def template_data(self, subscription: SubscriptionSnapshot, recipient_role: RecipientRole) -> dict:
        return {
            "subscription_id": subscription.id,
            "recipient_role": recipient_role.value,
            "last_activity_at": subscription.last_activity_at.strftime("%Y-%m-%d %H:%M UTC"),
            "subscription_url": f"https://{self.email_url_host}/subscriptions/{subscription.id}",
        }
