"""
Health Probe Runner - Point-in-time health queries.

Shallow probes hit the liveness surface with no dependency traversal.
Deep probes read per-dependency status and aggregate it into a single
service status. A reported ``unhealthy`` is a valid result; only
transport errors, non-2xx answers and malformed bodies raise
ProbeFailure. No retries happen here.
"""

from __future__ import annotations

import time
from types import MappingProxyType
from typing import Any, Iterable

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from synthetic_checks.config import MonitorSettings
from synthetic_checks.exceptions import DependencyDegraded, ProbeFailure
from synthetic_checks.logging import get_logger
from synthetic_checks.models import (
    DependencyCheck,
    HealthReport,
    HealthStatus,
    normalize_status,
)


logger = get_logger("probes.health")


class ShallowHealthPayload(BaseModel):
    """Body of the shallow health endpoint."""

    model_config = ConfigDict(extra="allow")

    status: str | bool


class DependencyPayload(BaseModel):
    """One entry of a deep health ``checks`` mapping."""

    model_config = ConfigDict(extra="allow")

    status: str | bool


class ProviderPayload(DependencyPayload):
    """One entry of a deep health ``providers`` list."""

    name: str


class DeepHealthPayload(BaseModel):
    """Body of the deep health endpoint."""

    model_config = ConfigDict(extra="allow")

    status: str
    checks: dict[str, DependencyPayload] | None = None
    providers: list[ProviderPayload] | None = None

    @model_validator(mode="after")
    def require_dependencies(self) -> "DeepHealthPayload":
        if self.checks is None and self.providers is None:
            raise ValueError("deep health body has neither 'checks' nor 'providers'")
        return self

    def dependency_checks(self) -> dict[str, DependencyCheck]:
        entries: list[tuple[str, DependencyPayload]] = []
        if self.checks:
            entries.extend(self.checks.items())
        if self.providers:
            entries.extend((p.name, p) for p in self.providers)

        return {
            name: DependencyCheck(
                status=normalize_status(entry.status),
                detail=MappingProxyType(entry.model_dump(exclude={"name"})),
            )
            for name, entry in entries
        }


def fetch_json(client: httpx.Client, url: str, timeout_ms: int) -> tuple[Any, str, float]:
    """
    GET ``url`` and return (decoded body, url, latency in ms).

    Raises ProbeFailure on transport errors, timeouts, non-2xx answers
    and non-JSON bodies.
    """
    start = time.perf_counter()
    try:
        response = client.get(url, timeout=timeout_ms / 1000)
    except httpx.TimeoutException as e:
        raise ProbeFailure(
            f"Probe to {url} timed out after {timeout_ms}ms",
            details={"url": url, "timeout_ms": timeout_ms},
        ) from e
    except httpx.RequestError as e:
        raise ProbeFailure(
            f"Cannot connect to {url}: {e}",
            details={"url": url},
        ) from e
    latency_ms = (time.perf_counter() - start) * 1000

    if not response.is_success:
        raise ProbeFailure(
            f"Probe to {url} returned HTTP {response.status_code}",
            details={"url": url, "status_code": response.status_code},
        )

    try:
        body = response.json()
    except ValueError as e:
        raise ProbeFailure(
            f"Probe to {url} returned a non-JSON body",
            details={"url": url, "body": response.text[:200]},
        ) from e

    return body, url, latency_ms


class ProbeRunner:
    """
    Issue health probes against one deployment.

    Usage:
        with httpx.Client() as client:
            runner = ProbeRunner(client, settings)
            report = runner.deep_probe()
            require_full_health(report, settings.required_dependencies)
    """

    def __init__(self, client: httpx.Client, settings: MonitorSettings):
        self.client = client
        self.settings = settings

    def shallow_probe(self, timeout_ms: int | None = None) -> HealthReport:
        """Query the liveness surface."""
        timeout_ms = timeout_ms or self.settings.shallow_timeout_ms
        body, url, latency_ms = self._fetch(self.settings.shallow_health_path, timeout_ms)

        try:
            payload = ShallowHealthPayload.model_validate(body)
        except ValidationError as e:
            raise ProbeFailure(
                f"Malformed shallow health body from {url}",
                details={"url": url, "errors": e.errors(include_url=False)},
            ) from e

        report = HealthReport.from_checks(
            {},
            reported_status=self._reported(payload.status),
            source=url,
            latency_ms=latency_ms,
        )
        logger.info(f"shallow probe {url}: {report.service_status.value} ({latency_ms:.0f}ms)")
        return report

    def deep_probe(self, timeout_ms: int | None = None) -> HealthReport:
        """Query the deep health surface and aggregate dependency statuses."""
        timeout_ms = timeout_ms or self.settings.deep_timeout_ms
        body, url, latency_ms = self._fetch(self.settings.deep_health_path, timeout_ms)

        try:
            payload = DeepHealthPayload.model_validate(body)
        except ValidationError as e:
            raise ProbeFailure(
                f"Malformed deep health body from {url}",
                details={"url": url, "errors": e.errors(include_url=False)},
            ) from e

        report = HealthReport.from_checks(
            payload.dependency_checks(),
            reported_status=payload.status,
            source=url,
            latency_ms=latency_ms,
        )

        if report.checks and payload.status.lower() != report.service_status.value:
            logger.warning(
                f"deep probe {url}: service reported '{payload.status}' but "
                f"dependencies aggregate to '{report.service_status.value}'"
            )

        logger.info(
            f"deep probe {url}: {report.service_status.value} "
            f"({len(report.checks)} dependencies, {latency_ms:.0f}ms)"
        )
        return report

    def _fetch(self, path: str, timeout_ms: int) -> tuple[Any, str, float]:
        return fetch_json(self.client, f"{self.settings.api_origin}{path}", timeout_ms)

    @staticmethod
    def _reported(status: str | bool) -> str:
        if isinstance(status, bool):
            return HealthStatus.HEALTHY.value if status else HealthStatus.UNHEALTHY.value
        return status


def require_full_health(
    report: HealthReport,
    required: Iterable[str] | None = None,
) -> None:
    """
    Assert that a report is fully healthy.

    With ``required``, each named dependency must be present and healthy.
    Raises DependencyDegraded otherwise.
    """
    missing: list[str] = []
    unhealthy = report.unhealthy_dependencies

    if required is not None:
        missing = [name for name in required if name not in report.checks]

    if report.service_status == HealthStatus.HEALTHY and not missing:
        return

    message = f"Service is {report.service_status.value}"
    if missing:
        message += f", missing dependencies: {', '.join(missing)}"

    raise DependencyDegraded(
        message,
        details={
            "service_status": report.service_status.value,
            "unhealthy": unhealthy,
            "missing": missing,
        },
    )
