"""Per-run context threaded through every step and through cleanup."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime

from synthetic_checks.assertions import AssertionLedger
from synthetic_checks.config import MonitorSettings
from synthetic_checks.flow.observer import NetworkObserver
from synthetic_checks.models import CleanupToken, FlowState


@dataclass
class RunContext:
    """Everything one flow run owns. Never shared between runs."""

    run_id: str
    settings: MonitorSettings
    observer: NetworkObserver
    state: FlowState = field(default_factory=FlowState)
    token: CleanupToken = field(default_factory=CleanupToken)
    assertions: AssertionLedger = field(default_factory=AssertionLedger)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def create(cls, settings: MonitorSettings, run_id: str | None = None) -> "RunContext":
        observer = NetworkObserver(
            settings.observed_endpoints + [settings.smart_endpoint_pattern],
            overload_status_code=settings.overload_status_code,
            body_excerpt_chars=settings.body_excerpt_chars,
        )
        return cls(
            run_id=run_id or uuid.uuid4().hex,
            settings=settings,
            observer=observer,
        )
