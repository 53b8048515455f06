"""
Background daemon that tells subscribers and suppliers when a refund is available.

Each cycle scans for subscriptions inactive past the configured threshold, asks
the ledger which recipients are still outstanding, dispatches to them and
commits each recipient to the ledger only after its send was confirmed.
"""
from __future__ import annotations

import asyncio
import enum
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from app.config import DaemonConfig
from app.core.exceptions import TransientInfraError
from app.core.logger import get_logger
from app.models import RecipientRole, SubscriptionSnapshot, utc_now
from app.services.eligibility_scanner import EligibilityScanner
from app.services.notification_dispatcher import FailureKind, NotificationDispatcher
from app.services.notification_ledger import NotificationLedger
from app.services.subscription_store import SubscriptionStore

logger = get_logger(__name__)


class DaemonState(str, enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    DISPATCHING = "dispatching"
    DISABLED = "disabled"


@dataclass
class CycleReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    candidates: int = 0
    sent: int = 0
    already_recorded: int = 0
    skipped_invalid: int = 0
    deferred: int = 0
    failures: Counter = field(default_factory=Counter)

    def as_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "candidates": self.candidates,
            "sent": self.sent,
            "already_recorded": self.already_recorded,
            "skipped_invalid": self.skipped_invalid,
            "deferred": self.deferred,
            "failures": dict(self.failures),
        }


class RefundDaemon:
    """Timer-driven, single-flight scan and dispatch loop."""

    def __init__(
        self,
        config: DaemonConfig,
        scanner: EligibilityScanner,
        ledger: NotificationLedger,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.scanner = scanner
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.clock = clock
        self.state = DaemonState.IDLE if config.enabled else DaemonState.DISABLED
        self.skipped_ticks = 0
        self.last_report: Optional[CycleReport] = None
        self._stop_event = asyncio.Event()
        self._timer_task: asyncio.Task | None = None
        self._cycle_task: asyncio.Task | None = None
        self._dispatch_slots = asyncio.Semaphore(config.dispatch_concurrency)
        self._invalid_contacts: dict[tuple[str, RecipientRole], str] = {}

    def start(self) -> None:
        """Start the timer loop as a background task."""
        if not self.config.enabled:
            self.state = DaemonState.DISABLED
            logger.info("Refund daemon disabled by configuration")
            return
        if self._timer_task and not self._timer_task.done():
            return
        self._stop_event.clear()
        self._timer_task = asyncio.create_task(self._run_timer())
        logger.info(
            "Refund daemon started (interval=%s, inactivity threshold=%s)",
            self.config.scan_interval,
            self.config.inactivity_threshold,
        )

    async def stop(self) -> None:
        """Stop the timer and let the in-flight cycle finish its started sends."""
        self._stop_event.set()
        if self._timer_task:
            await self._timer_task
        if self._cycle_task and not self._cycle_task.done():
            await self._cycle_task
        logger.info("Refund daemon stopped")

    @property
    def is_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    async def _run_timer(self) -> None:
        interval = self.config.scan_interval.total_seconds()
        while not self._stop_event.is_set():
            self.tick()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    def tick(self) -> Optional[asyncio.Task]:
        """Start a cycle unless one is still in flight. Skipped ticks are not queued."""
        if (self._cycle_task and not self._cycle_task.done()) or self.state is not DaemonState.IDLE:
            self.skipped_ticks += 1
            logger.info("Refund cycle still %s, skipping tick", self.state.value)
            return None
        self._cycle_task = asyncio.create_task(self._guarded_cycle())
        return self._cycle_task

    async def _guarded_cycle(self) -> Optional[CycleReport]:
        try:
            return await self.run_cycle()
        except Exception as exc:
            logger.exception("Refund cycle failed: %s", exc)
            return None

    async def run_cycle(self) -> Optional[CycleReport]:
        """Run one scan and dispatch pass. Returns None when another cycle is in flight."""
        if self.state is not DaemonState.IDLE:
            return None
        self.state = DaemonState.SCANNING
        report = CycleReport(started_at=self.clock())
        try:
            try:
                candidates = await asyncio.to_thread(
                    self.scanner.find_eligible, self.config.inactivity_threshold
                )
            except TransientInfraError as exc:
                report.failures["scan"] += 1
                logger.warning("Refund scan failed, retrying next cycle: %s", exc)
                return report
            except Exception:
                report.failures["scan"] += 1
                logger.exception("Refund scan raised unexpectedly")
                return report

            report.candidates = len(candidates)
            self._prune_invalid_contacts(candidates)
            self.state = DaemonState.DISPATCHING
            await asyncio.gather(*(self._process_subscription(s, report) for s in candidates))
            return report
        finally:
            report.finished_at = self.clock()
            self.last_report = report
            self.state = DaemonState.IDLE
            logger.info(
                "Refund cycle finished: candidates=%d sent=%d already_recorded=%d "
                "skipped_invalid=%d deferred=%d failures=%s",
                report.candidates,
                report.sent,
                report.already_recorded,
                report.skipped_invalid,
                report.deferred,
                dict(report.failures),
            )

    async def _process_subscription(self, subscription: SubscriptionSnapshot, report: CycleReport) -> None:
        try:
            outstanding = await asyncio.to_thread(self.ledger.outstanding_recipients, subscription.id)
        except Exception as exc:
            report.failures["ledger"] += 1
            logger.warning("Could not read ledger for subscription %s: %s", subscription.id, exc)
            return
        roles = sorted(outstanding, key=lambda role: role.value)
        await asyncio.gather(*(self._notify(subscription, role, report) for role in roles))

    async def _notify(self, subscription: SubscriptionSnapshot, role: RecipientRole, report: CycleReport) -> None:
        contact = subscription.contact_for(role)
        key = (subscription.id, role)
        if key in self._invalid_contacts and self._invalid_contacts[key] == contact:
            report.skipped_invalid += 1
            return

        async with self._dispatch_slots:
            if self._stop_event.is_set():
                report.deferred += 1
                return
            result = await self.dispatcher.send(contact, subscription, role)
            if not result.success:
                report.failures[result.failure_kind.value] += 1
                if result.failure_kind is FailureKind.INVALID_RECIPIENT:
                    self._invalid_contacts[key] = contact
                    logger.warning(
                        "Invalid %s contact for subscription %s, leaving outstanding: %s",
                        role.value,
                        subscription.id,
                        result.reason,
                    )
                else:
                    logger.warning(
                        "Refund notice to %s of subscription %s failed, retrying next cycle: %s",
                        role.value,
                        subscription.id,
                        result.reason,
                    )
                return

            self._invalid_contacts.pop(key, None)
            try:
                created = await asyncio.to_thread(self.ledger.record_sent, subscription.id, role, self.clock())
            except Exception as exc:
                report.failures["ledger"] += 1
                logger.error(
                    "Sent refund notice to %s of subscription %s but ledger commit failed: %s",
                    role.value,
                    subscription.id,
                    exc,
                )
                return

        if created:
            report.sent += 1
            logger.info("Refund notice sent to %s of subscription %s", role.value, subscription.id)
        else:
            report.already_recorded += 1

    def _prune_invalid_contacts(self, candidates: list[SubscriptionSnapshot]) -> None:
        """Drop memo entries for subscriptions that are no longer eligible."""
        eligible = {subscription.id for subscription in candidates}
        for key in [key for key in self._invalid_contacts if key[0] not in eligible]:
            del self._invalid_contacts[key]

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self.config.enabled,
            "state": self.state.value,
            "running": self.is_running,
            "scan_interval_seconds": self.config.scan_interval.total_seconds(),
            "inactivity_threshold_seconds": self.config.inactivity_threshold.total_seconds(),
            "skipped_ticks": self.skipped_ticks,
            "known_invalid_contacts": len(self._invalid_contacts),
            "last_cycle": self.last_report.as_dict() if self.last_report else None,
        }


def build_refund_daemon(config: DaemonConfig, session_factory, transport) -> RefundDaemon:
    """Wire the store, scanner, ledger and dispatcher around one session factory and transport."""
    return RefundDaemon(
        config=config,
        scanner=EligibilityScanner(SubscriptionStore(session_factory)),
        ledger=NotificationLedger(session_factory),
        dispatcher=NotificationDispatcher(transport, email_url_host=config.email_url_host),
    )
