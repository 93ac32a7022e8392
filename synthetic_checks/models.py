"""
Data model for probes and flow runs.

Health reports and network events are immutable once created. Flow state
and cleanup tokens are owned by exactly one run and never shared.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class Classification(str, Enum):
    SUCCESS = "success"
    CLIENT_ERROR = "clientError"
    SERVER_OVERLOAD = "serverOverload"
    SERVER_ERROR = "serverError"


class FlowStep(str, Enum):
    START = "Start"
    GENRE_SELECTION = "GenreSelection"
    DECADE_SELECTION = "DecadeSelection"
    PREFERENCES = "Preferences"
    MANUAL_ENTRY = "ManualEntry"
    SMART_SELECTION = "SmartSelection"
    COMPLETION = "Completion"
    ABORTED = "Aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (FlowStep.COMPLETION, FlowStep.ABORTED)


class Verdict(str, Enum):
    PASS = "pass"
    DEGRADED = "degraded"
    FAIL = "fail"


class CleanupStatus(str, Enum):
    PENDING = "pending"
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# =============================================================================
# HEALTH
# =============================================================================


HEALTHY_ALIASES = {"healthy", "ok", "alive", "up", "pass"}


def normalize_status(raw: Any) -> HealthStatus:
    """Map a dependency status string onto healthy / unhealthy."""
    if isinstance(raw, bool):
        return HealthStatus.HEALTHY if raw else HealthStatus.UNHEALTHY
    if str(raw).strip().lower() in HEALTHY_ALIASES:
        return HealthStatus.HEALTHY
    return HealthStatus.UNHEALTHY


def aggregate_status(statuses: Iterable[HealthStatus]) -> HealthStatus:
    """
    Aggregate dependency statuses into one service status.

    healthy iff every dependency is healthy, unhealthy iff none is,
    degraded otherwise. Callers must not pass an empty iterable.
    """
    values = list(statuses)
    if not values:
        raise ValueError("cannot aggregate an empty set of dependency statuses")
    healthy = sum(1 for s in values if s == HealthStatus.HEALTHY)
    if healthy == len(values):
        return HealthStatus.HEALTHY
    if healthy == 0:
        return HealthStatus.UNHEALTHY
    return HealthStatus.DEGRADED


@dataclass(frozen=True)
class DependencyCheck:
    """Status of one backing dependency."""

    status: HealthStatus
    detail: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY


@dataclass(frozen=True)
class HealthReport:
    """Result of one probe call."""

    service_status: HealthStatus
    checks: Mapping[str, DependencyCheck]
    observed_at: datetime
    reported_status: str | None = None
    source: str | None = None
    latency_ms: float | None = None

    @classmethod
    def from_checks(
        cls,
        checks: Mapping[str, DependencyCheck],
        *,
        reported_status: str | None = None,
        source: str | None = None,
        latency_ms: float | None = None,
        observed_at: datetime | None = None,
    ) -> "HealthReport":
        """Build a report whose service status follows the aggregation rule."""
        if checks:
            status = aggregate_status(c.status for c in checks.values())
        else:
            status = (
                HealthStatus.DEGRADED
                if str(reported_status).strip().lower() == HealthStatus.DEGRADED.value
                else normalize_status(reported_status)
            )
        return cls(
            service_status=status,
            checks=MappingProxyType(dict(checks)),
            observed_at=observed_at or datetime.now(UTC),
            reported_status=reported_status,
            source=source,
            latency_ms=latency_ms,
        )

    @property
    def unhealthy_dependencies(self) -> list[str]:
        return [name for name, check in self.checks.items() if not check.healthy]

    def to_dict(self) -> dict[str, Any]:
        return {
            "service_status": self.service_status.value,
            "reported_status": self.reported_status,
            "checks": {
                name: {"status": check.status.value, "detail": dict(check.detail)}
                for name, check in self.checks.items()
            },
            "observed_at": self.observed_at.isoformat(),
            "source": self.source,
            "latency_ms": self.latency_ms,
        }


# =============================================================================
# NETWORK
# =============================================================================


def classify_status(status_code: int, overload_status_code: int) -> Classification:
    """
    Classify a response status.

    The overload sentinel wins over the generic 5xx bucket. Anything below
    400 (including redirects) counts as success.
    """
    if status_code == overload_status_code:
        return Classification.SERVER_OVERLOAD
    if status_code >= 500:
        return Classification.SERVER_ERROR
    if status_code >= 400:
        return Classification.CLIENT_ERROR
    return Classification.SUCCESS


@dataclass(frozen=True)
class SentRequest:
    """
    A matched request, recorded when the browser issues it.

    ``sequence`` follows send order, which can differ from the order in
    which responses complete.
    """

    sequence: int
    url: str
    method: str
    observed_at: datetime
    payload: Any = None

    def matches(self, pattern: str) -> bool:
        return pattern in self.url


@dataclass(frozen=True)
class NetworkEvent:
    """One observed request/response exchange, in response order."""

    sequence: int
    url: str
    method: str
    status_code: int
    observed_at: datetime
    body_excerpt: str | None
    classification: Classification
    request_payload: Any = None
    request_sequence: int | None = None

    def matches(self, pattern: str) -> bool:
        return pattern in self.url

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence": self.sequence,
            "request_sequence": self.request_sequence,
            "url": self.url,
            "method": self.method,
            "status_code": self.status_code,
            "observed_at": self.observed_at.isoformat(),
            "classification": self.classification.value,
            "body_excerpt": self.body_excerpt,
        }


@dataclass(frozen=True)
class RequestFailure:
    """A matched request that never produced a response."""

    url: str
    method: str
    error_text: str
    observed_at: datetime
    request_sequence: int | None = None
    request_payload: Any = None


@dataclass(frozen=True)
class ConsoleMessage:
    """A browser console error captured during a run."""

    text: str
    observed_at: datetime


# =============================================================================
# FLOW
# =============================================================================


class ExclusionAccumulator:
    """
    Ordered, deduplicated, grow-only set of artist identifiers.

    Identifiers can only be added, never removed.
    """

    def __init__(self, initial: Iterable[str] = ()):
        self._items: dict[str, None] = {}
        self.merge(initial)

    def merge(self, names: Iterable[str]) -> list[str]:
        """Merge names, returning the ones that were not present before."""
        added = []
        for name in names:
            name = name.strip()
            if name and name not in self._items:
                self._items[name] = None
                added.append(name)
        return added

    def snapshot(self) -> tuple[str, ...]:
        return tuple(self._items)

    def __contains__(self, name: object) -> bool:
        return name in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(tuple(self._items))

    def __len__(self) -> int:
        return len(self._items)


@dataclass(frozen=True)
class PaginationSnapshot:
    """
    Exclusion set captured right before a pagination trigger.

    ``checkpoint`` is the observer's request cursor at that moment.
    """

    round: int
    checkpoint: int
    exclusion: tuple[str, ...]


@dataclass
class FlowState:
    """Mutable state of one flow run."""

    current_step: FlowStep = FlowStep.START
    selected_genres: set[str] = field(default_factory=set)
    selected_decades: set[str] = field(default_factory=set)
    preferences: dict[str, str] = field(default_factory=dict)
    manual_artists: list[str] = field(default_factory=list)
    manual_song_artists: list[str] = field(default_factory=list)
    shown_or_selected_artists: ExclusionAccumulator = field(
        default_factory=ExclusionAccumulator
    )
    completed_steps: list[FlowStep] = field(default_factory=list)
    pagination_snapshots: list[PaginationSnapshot] = field(default_factory=list)
    smart_entry_checkpoint: int | None = None
    abort_error: Exception | None = None

    def advance(self, step: FlowStep) -> None:
        if self.current_step.is_terminal:
            raise RuntimeError(f"flow already terminated in {self.current_step.value}")
        self.completed_steps.append(self.current_step)
        self.current_step = step

    def abort(self, error: Exception) -> None:
        if self.current_step.is_terminal:
            return
        self.abort_error = error
        self.current_step = FlowStep.ABORTED

    @property
    def completed(self) -> bool:
        return self.current_step == FlowStep.COMPLETION

    @property
    def aborted(self) -> bool:
        return self.current_step == FlowStep.ABORTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_step": self.current_step.value,
            "completed_steps": [s.value for s in self.completed_steps],
            "selected_genres": sorted(self.selected_genres),
            "selected_decades": sorted(self.selected_decades),
            "preferences": dict(self.preferences),
            "manual_artists": list(self.manual_artists),
            "manual_song_artists": list(self.manual_song_artists),
            "shown_or_selected_artists": list(self.shown_or_selected_artists),
            "pagination_rounds": len(self.pagination_snapshots),
            "abort_error": str(self.abort_error) if self.abort_error else None,
        }


@dataclass
class CleanupToken:
    """Session credential produced by a run, consumed once by cleanup."""

    credential: str | None = None
    attempted: bool = False
    status: CleanupStatus = CleanupStatus.PENDING
    detail: str | None = None

    def capture(self, credential: str | None) -> bool:
        """Record the credential the first time one becomes observable."""
        if self.credential is not None or not credential:
            return False
        self.credential = credential
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "credential_captured": self.credential is not None,
            "attempted": self.attempted,
            "status": self.status.value,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class AssertionResult:
    """Outcome of one gating or advisory check."""

    name: str
    passed: bool
    gating: bool
    detail: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "passed": self.passed,
            "tier": "gating" if self.gating else "advisory",
            "detail": self.detail,
        }
