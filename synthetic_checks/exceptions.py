"""Failure taxonomy for probes and flow runs."""

from __future__ import annotations

from typing import Any


class MonitorError(Exception):
    """Base monitoring exception with a structured description."""

    error_code: str = "MONITOR_ERROR"
    message: str = "Synthetic check failed"

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a problem-style dict for reports."""
        return {
            "error": self.error_code,
            "message": self.message,
            **({"details": self.details} if self.details else {}),
        }


class ProbeFailure(MonitorError):
    """Probe request could not be completed or parsed."""

    error_code = "PROBE_FAILURE"
    message = "Probe request failed"


class DependencyDegraded(MonitorError):
    """Health response is valid but reports unhealthy dependencies."""

    error_code = "DEPENDENCY_DEGRADED"
    message = "One or more dependencies are not healthy"


class OverloadRegression(MonitorError):
    """The service answered with the resource-exhaustion sentinel."""

    error_code = "OVERLOAD_REGRESSION"
    message = "Server overload observed"


class UIStateTimeout(MonitorError):
    """An expected UI affordance did not appear within its wait."""

    error_code = "UI_STATE_TIMEOUT"
    message = "UI affordance did not appear in time"

    def __init__(
        self,
        step: str,
        selector: str,
        timeout_ms: int,
        message: str | None = None,
    ):
        self.step = step
        self.selector = selector
        self.timeout_ms = timeout_ms
        super().__init__(
            message or f"{step}: '{selector}' not visible after {timeout_ms}ms",
            details={"step": step, "selector": selector, "timeout_ms": timeout_ms},
        )


class CleanupFailure(MonitorError):
    """Session deletion did not succeed. Never fails a run."""

    error_code = "CLEANUP_FAILURE"
    message = "Session cleanup failed"


class GatingAssertionError(MonitorError):
    """One or more gating assertions failed."""

    error_code = "GATING_ASSERTION_FAILED"
    message = "Gating assertion failed"
