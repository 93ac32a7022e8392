"""
Flow Run - One complete, isolated execution of the onboarding flow.

Order of operations:
1. Fresh RunContext (state, cleanup token, observer, assertion ledger)
2. Observer attached before the first navigation
3. Driver runs inside cleanup_scope, so cleanup happens on every exit path
4. Observer detached; checkpoint assertions evaluated over the buffer
5. Verdict derived from flow state, gating assertions, overload events
   and any health reports attached to the run
"""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Callable, Iterable

import httpx

from synthetic_checks.config import MonitorSettings
from synthetic_checks.exceptions import (
    GatingAssertionError,
    OverloadRegression,
    UIStateTimeout,
)
from synthetic_checks.flow.cleanup import CleanupCoordinator, cleanup_scope
from synthetic_checks.flow.context import RunContext
from synthetic_checks.flow.driver import FlowDriver, QuizSelectors
from synthetic_checks.logging import bind_run_id, get_logger
from synthetic_checks.models import (
    AssertionResult,
    Classification,
    CleanupToken,
    ConsoleMessage,
    FlowState,
    HealthReport,
    HealthStatus,
    NetworkEvent,
    RequestFailure,
    SentRequest,
    Verdict,
)

if TYPE_CHECKING:
    from playwright.sync_api import Page


logger = get_logger("flow.run")


# =============================================================================
# EXCLUSION INVARIANTS
# =============================================================================


def exclusion_payloads(requests: Iterable[SentRequest]) -> list[tuple[int, list[str]]]:
    """(request sequence, exclude list) for every request that carried one, in send order."""
    payloads = []
    for request in sorted(requests, key=lambda r: r.sequence):
        payload = request.payload
        if isinstance(payload, dict) and isinstance(payload.get("exclude"), list):
            payloads.append((request.sequence, [str(x) for x in payload["exclude"]]))
    return payloads


def exclusion_violations(excludes: list[list[str]]) -> list[str]:
    """
    Check successive exclusion lists.

    Every list must be free of duplicates and must be a superset of the
    list sent before it.
    """
    violations = []
    previous: set[str] = set()
    for index, exclude in enumerate(excludes, start=1):
        duplicates = sorted(name for name, n in Counter(exclude).items() if n > 1)
        if duplicates:
            violations.append(f"request {index} repeats {duplicates}")
        current = set(exclude)
        dropped = sorted(previous - current)
        if dropped:
            violations.append(f"request {index} dropped previously excluded {dropped}")
        previous = current
    return violations


# =============================================================================
# RESULT
# =============================================================================


@dataclass
class RunResult:
    """Everything a finished run produced."""

    run_id: str
    state: FlowState
    token: CleanupToken
    assertions: list[AssertionResult]
    events: list[NetworkEvent]
    requests: list[SentRequest] = field(default_factory=list)
    request_failures: list[RequestFailure] = field(default_factory=list)
    console_errors: list[ConsoleMessage] = field(default_factory=list)
    health_reports: list[HealthReport] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    fault: str | None = None

    @property
    def overload_events(self) -> list[NetworkEvent]:
        return [e for e in self.events if e.classification == Classification.SERVER_OVERLOAD]

    @property
    def gating_failures(self) -> list[AssertionResult]:
        return [a for a in self.assertions if a.gating and not a.passed]

    @property
    def advisory_failures(self) -> list[AssertionResult]:
        return [a for a in self.assertions if not a.gating and not a.passed]

    @property
    def failure_reasons(self) -> list[str]:
        reasons = []
        if self.fault:
            reasons.append(f"unexpected fault: {self.fault}")
        if self.state.aborted:
            reasons.append(f"aborted: {self.state.abort_error}")
        elif not self.state.completed:
            reasons.append(f"flow stopped in {self.state.current_step.value}")
        for event in self.overload_events:
            reasons.append(f"overload: {event.method} {event.url} -> {event.status_code}")
        for failure in self.gating_failures:
            reasons.append(f"gating: {failure.name} {failure.detail}".rstrip())
        for report in self.health_reports:
            if report.service_status == HealthStatus.UNHEALTHY:
                reasons.append(f"health: {report.source} is unhealthy")
        return reasons

    @property
    def verdict(self) -> Verdict:
        if self.failure_reasons:
            return Verdict.FAIL
        if any(r.service_status == HealthStatus.DEGRADED for r in self.health_reports):
            return Verdict.DEGRADED
        return Verdict.PASS

    def raise_for_verdict(self) -> None:
        """Raise the most specific run-failing error, if the run failed."""
        if self.verdict != Verdict.FAIL:
            return

        overloads = self.overload_events
        if overloads:
            raise OverloadRegression(
                f"{len(overloads)} overload response(s) observed during the run",
                details={"events": [e.to_dict() for e in overloads]},
            )
        if isinstance(self.state.abort_error, UIStateTimeout):
            raise self.state.abort_error
        raise GatingAssertionError(
            "; ".join(self.failure_reasons),
            details={"reasons": self.failure_reasons},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "verdict": self.verdict.value,
            "failure_reasons": self.failure_reasons,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "flow": self.state.to_dict(),
            "cleanup": self.token.to_dict(),
            "assertions": [a.to_dict() for a in self.assertions],
            "network_events": [e.to_dict() for e in self.events],
            "requests": [
                {"sequence": r.sequence, "method": r.method, "url": r.url}
                for r in self.requests
            ],
            "request_failures": [
                {
                    "request_sequence": f.request_sequence,
                    "method": f.method,
                    "url": f.url,
                    "error": f.error_text,
                }
                for f in self.request_failures
            ],
            "console_errors": [c.text for c in self.console_errors],
            "health_reports": [r.to_dict() for r in self.health_reports],
            "fault": self.fault,
        }


# =============================================================================
# CHECKPOINTS
# =============================================================================


def evaluate_checkpoints(context: RunContext) -> None:
    """Run post-flow assertions over the observer buffer."""
    settings = context.settings
    observer = context.observer
    ledger = context.assertions
    smart = settings.smart_endpoint_pattern

    overloads = observer.overload_events()
    ledger.gate(
        "no overload responses",
        not overloads,
        ", ".join(f"{e.method} {e.url} -> {e.status_code}" for e in overloads),
    )

    server_errors = [
        e for e in observer.events() if e.classification == Classification.SERVER_ERROR
    ]
    ledger.gate(
        "observed endpoints answered below 500",
        not server_errors,
        ", ".join(f"{e.method} {e.url} -> {e.status_code}" for e in server_errors),
    )

    # Judged in send order, including requests that never got a response
    payloads = exclusion_payloads(observer.requests(smart))
    violations = exclusion_violations([exclude for _, exclude in payloads])
    ledger.gate("exclusion list grows monotonically", not violations, "; ".join(violations))

    uncovered = []
    for snapshot in context.state.pagination_snapshots:
        following = [exclude for seq, exclude in payloads if seq >= snapshot.checkpoint]
        if not following:
            continue
        missing = sorted(set(snapshot.exclusion) - set(following[0]))
        if missing:
            uncovered.append(f"round {snapshot.round} omitted {missing}")
    ledger.gate(
        "pagination requests exclude every shown or selected artist",
        not uncovered,
        "; ".join(uncovered),
    )

    benign = [p.lower() for p in settings.benign_console_patterns]
    significant = [
        c.text for c in observer.console_errors
        if not any(p in c.text.lower() for p in benign)
    ]
    api_errors = [
        text for text in significant
        if any(p in text for p in settings.api_console_patterns)
    ]
    ledger.gate("no API failures in console", not api_errors, "; ".join(api_errors[:5]))
    others = [text for text in significant if text not in api_errors]
    ledger.advise("no console errors", not others, "; ".join(others[:5]))

    failures = observer.request_failures
    ledger.advise(
        "no failed requests",
        not failures,
        "; ".join(f"{f.method} {f.url} {f.error_text}" for f in failures[:5]),
    )


def execute_flow_run(
    page: "Page",
    http_client: httpx.Client,
    settings: MonitorSettings,
    *,
    run_id: str | None = None,
    health_reports: Iterable[HealthReport] = (),
    selectors: QuizSelectors | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> RunResult:
    """
    Execute one flow run and return its result.

    Unexpected faults are logged and recorded on the result after cleanup
    has run; they never escape as exceptions.
    """
    context = RunContext.create(settings, run_id)

    with bind_run_id(context.run_id):
        logger.info(f"flow run started against {settings.frontend_origin}")
        context.observer.attach(page)
        driver = FlowDriver(page, context, selectors=selectors, clock=clock)
        coordinator = CleanupCoordinator(http_client, settings)
        fault = None

        try:
            with cleanup_scope(coordinator, context.token, driver.read_session_credential):
                driver.run()
        except Exception as e:
            logger.exception(f"flow run faulted in {context.state.current_step.value}")
            fault = f"{type(e).__name__}: {e}"
        finally:
            context.observer.detach(page)

        evaluate_checkpoints(context)

        result = RunResult(
            run_id=context.run_id,
            state=context.state,
            token=context.token,
            assertions=context.assertions.results,
            events=context.observer.events(),
            requests=context.observer.requests(),
            request_failures=context.observer.request_failures,
            console_errors=context.observer.console_errors,
            health_reports=list(health_reports),
            started_at=context.started_at,
            fault=fault,
        )
        logger.info(
            f"flow run finished: {result.verdict.value} "
            f"(step={context.state.current_step.value}, cleanup={context.token.status.value})"
        )
        return result
