from __future__ import annotations

from datetime import datetime
from typing import Dict

from pydantic import BaseModel


class CycleReportSchema(BaseModel):
    started_at: datetime
    finished_at: datetime | None = None
    candidates: int = 0
    sent: int = 0
    already_recorded: int = 0
    skipped_invalid: int = 0
    deferred: int = 0
    failures: Dict[str, int] = {}


class DaemonStatusSchema(BaseModel):
    enabled: bool
    state: str
    running: bool
    scan_interval_seconds: float
    inactivity_threshold_seconds: float
    skipped_ticks: int = 0
    known_invalid_contacts: int = 0
    last_cycle: CycleReportSchema | None = None
