"""
Two-tier assertion ledger.

Gating assertions (status codes, schema keys, response classification)
fail the run. Advisory assertions (cosmetic UI presence) are logged and
recorded but never affect the verdict.
"""

from __future__ import annotations

from synthetic_checks.logging import get_logger
from synthetic_checks.models import AssertionResult


logger = get_logger("assertions")


class AssertionLedger:
    """Collects assertion outcomes for one run."""

    def __init__(self):
        self._results: list[AssertionResult] = []

    def gate(self, name: str, passed: bool, detail: str = "") -> bool:
        """Record a gating assertion. Returns ``passed``."""
        return self._record(AssertionResult(name, bool(passed), True, detail))

    def advise(self, name: str, passed: bool, detail: str = "") -> bool:
        """Record an advisory assertion. Returns ``passed``."""
        return self._record(AssertionResult(name, bool(passed), False, detail))

    def _record(self, result: AssertionResult) -> bool:
        self._results.append(result)
        if not result.passed:
            tier = "gating" if result.gating else "advisory"
            logger.warning(f"{tier} assertion failed: {result.name} {result.detail}".rstrip())
        return result.passed

    @property
    def results(self) -> list[AssertionResult]:
        return list(self._results)

    @property
    def gating_failures(self) -> list[AssertionResult]:
        return [r for r in self._results if r.gating and not r.passed]

    @property
    def advisory_failures(self) -> list[AssertionResult]:
        return [r for r in self._results if not r.gating and not r.passed]
