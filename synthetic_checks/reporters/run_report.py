"""
Run Report - Structured record of one synthetic run.

Format designed to be:
1. Machine-parseable (JSON) for whatever harness ships it onward
2. Readable (markdown) for the operator on call
3. Self-contained: verdict, failure reasons, network log, cleanup outcome

Formatting for dashboards or alert channels happens elsewhere.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from synthetic_checks.flow.run import RunResult
from synthetic_checks.models import HealthReport, Verdict


@dataclass
class RunReport:
    """Report for a flow run, a probe-only run, or both."""

    name: str
    started_at: datetime
    finished_at: datetime
    verdict: Verdict
    failure_reasons: list[str] = field(default_factory=list)
    run: dict[str, Any] | None = None
    health_reports: list[dict[str, Any]] = field(default_factory=list)
    probe_errors: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_result(cls, result: RunResult, name: str = "onboarding-flow") -> "RunReport":
        return cls(
            name=name,
            started_at=result.started_at,
            finished_at=result.finished_at,
            verdict=result.verdict,
            failure_reasons=result.failure_reasons,
            run=result.to_dict(),
            health_reports=[r.to_dict() for r in result.health_reports],
        )

    @classmethod
    def from_probes(
        cls,
        reports: list[HealthReport],
        probe_errors: list[dict[str, Any]],
        started_at: datetime,
        name: str = "health-probes",
    ) -> "RunReport":
        """Report for a standalone probe run."""
        reasons = [e.get("message", e.get("error", "probe failed")) for e in probe_errors]
        statuses = {r.service_status.value for r in reports}
        if probe_errors or "unhealthy" in statuses:
            verdict = Verdict.FAIL
        elif "degraded" in statuses:
            verdict = Verdict.DEGRADED
        else:
            verdict = Verdict.PASS
        return cls(
            name=name,
            started_at=started_at,
            finished_at=datetime.now(UTC),
            verdict=verdict,
            failure_reasons=reasons,
            health_reports=[r.to_dict() for r in reports],
            probe_errors=probe_errors,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "verdict": self.verdict.value,
            "summary": self._generate_summary(),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_seconds": (self.finished_at - self.started_at).total_seconds(),
            "failure_reasons": self.failure_reasons,
            "health_reports": self.health_reports,
            "probe_errors": self.probe_errors,
            "run": self.run,
        }

    def to_json(self) -> str:
        """Serialize to JSON for file output."""
        return json.dumps(self.to_dict(), indent=2, default=str)

    def save(self, directory: Path | str = "test-results/synthetic-reports") -> Path:
        """Save the report as JSON with a markdown copy beside it; return the JSON path."""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        safe_name = self.name.replace("/", "_").replace("::", "_")
        timestamp = self.started_at.strftime("%Y%m%d_%H%M%S")
        run_id = (self.run or {}).get("run_id")
        suffix = f"_{run_id[:8]}" if run_id else ""
        filepath = directory / f"{safe_name}_{timestamp}{suffix}.json"
        filepath.write_text(self.to_json())
        filepath.with_suffix(".md").write_text(self.to_markdown())

        return filepath

    def _generate_summary(self) -> str:
        """Generate a one-line summary for quick triage."""
        parts = [self.verdict.value.upper()]

        run = self.run or {}
        flow = run.get("flow")
        if flow:
            parts.append(f"step {flow['current_step']}")

        events = run.get("network_events") or []
        overloads = [e for e in events if e["classification"] == "serverOverload"]
        if overloads:
            parts.append(f"{len(overloads)} overload response(s)")

        degraded = [r for r in self.health_reports if r["service_status"] != "healthy"]
        if degraded:
            parts.append(f"{len(degraded)} non-healthy health report(s)")

        if self.probe_errors:
            parts.append(f"{len(self.probe_errors)} probe failure(s)")

        cleanup = run.get("cleanup")
        if cleanup and cleanup["status"] == "failed":
            parts.append("cleanup failed")

        return " | ".join(parts)

    def to_markdown(self) -> str:
        """Generate markdown report for human review."""
        duration = (self.finished_at - self.started_at).total_seconds()

        md = f"""# Synthetic Run Report

## Run: `{self.name}`

**Verdict:** {self.verdict.value}
**Duration:** {duration:.2f}s
**Summary:** {self._generate_summary()}

---
"""

        if self.failure_reasons:
            md += "\n## Failure Reasons\n\n"
            for reason in self.failure_reasons:
                md += f"- {reason}\n"

        if self.health_reports:
            md += "\n## Health\n\n"
            for report in self.health_reports:
                md += f"- `{report['source']}`: **{report['service_status']}**\n"
                for name, check in report["checks"].items():
                    md += f"  - {name}: {check['status']}\n"

        run = self.run or {}
        if run.get("flow"):
            flow = run["flow"]
            md += "\n## Flow\n\n"
            md += f"- Final step: `{flow['current_step']}`\n"
            md += f"- Pagination rounds: {flow['pagination_rounds']}\n"
            md += f"- Excluded artists: {len(flow['shown_or_selected_artists'])}\n"
            if flow["abort_error"]:
                md += f"- Aborted: `{flow['abort_error']}`\n"

        if run.get("assertions"):
            md += "\n## Assertions\n\n"
            for assertion in run["assertions"]:
                icon = "✅" if assertion["passed"] else "❌"
                md += f"- {icon} [{assertion['tier']}] {assertion['name']}"
                md += f": {assertion['detail']}\n" if assertion["detail"] and not assertion["passed"] else "\n"

        if run.get("network_events"):
            md += "\n## Network\n\n"
            for event in run["network_events"][-20:]:
                md += (
                    f"- `{event['method']} {event['url']}` -> "
                    f"{event['status_code']} ({event['classification']})\n"
                )

        if run.get("cleanup"):
            cleanup = run["cleanup"]
            md += f"\n## Cleanup\n\n- {cleanup['status']}"
            md += f" ({cleanup['detail']})\n" if cleanup["detail"] else "\n"

        return md
