"""
Audio Service Probe - Health of the audio download service.

The audio service is a separate deployment with its own origin. Its deep
health endpoint lists download providers (torrent trackers and a
streaming fallback); the basic endpoint reports the torrent client and
free disk space. Both are fetched the same way as the main service's
health probes. The ``require_*`` helpers turn the bodies into pass/fail.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterable, Mapping

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from synthetic_checks.config import MonitorSettings
from synthetic_checks.exceptions import DependencyDegraded, ProbeFailure
from synthetic_checks.logging import get_logger
from synthetic_checks.models import HealthReport, HealthStatus
from synthetic_checks.probes.health import DeepHealthPayload, ProviderPayload, fetch_json


logger = get_logger("probes.audio_service")

PROVIDER_OK = "ok"
STREAMING_ACCEPTED = frozenset({"ok", "degraded"})
SERVICEABLE = frozenset({HealthStatus.HEALTHY.value, HealthStatus.DEGRADED.value})


class AudioDeepHealthPayload(DeepHealthPayload):
    """Body of the audio service's deep health endpoint."""

    providers: list[ProviderPayload]
    checked_at: str
    healthy_count: int | None = None


class TransmissionPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    available: bool


class DiskPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    free_gb: float


class AudioBasicHealthPayload(BaseModel):
    """Body of the audio service's basic health endpoint."""

    model_config = ConfigDict(extra="allow")

    status: str
    transmission: TransmissionPayload
    disk: DiskPayload
    providers: Any


@dataclass(frozen=True)
class AudioDeepHealth:
    """Deep health of the audio service with raw provider statuses kept."""

    report: HealthReport
    reported_status: str
    provider_statuses: Mapping[str, str]
    healthy_count: int
    checked_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.report.to_dict(),
            "providers": dict(self.provider_statuses),
            "healthy_count": self.healthy_count,
            "checked_at": self.checked_at,
        }


@dataclass(frozen=True)
class AudioBasicHealth:
    status: str
    transmission_available: bool
    free_gb: float
    source: str
    latency_ms: float


class AudioServiceProbe:
    """
    Issue health probes against the audio service.

    Usage:
        probe = AudioServiceProbe(client, settings)
        deep = probe.deep_probe()
        require_audio_service(deep, probe.basic_probe(), settings)
    """

    def __init__(self, client: httpx.Client, settings: MonitorSettings):
        if not settings.audio_origin:
            raise ValueError("audio_service_url is not configured")
        self.client = client
        self.settings = settings

    def deep_probe(self, timeout_ms: int | None = None) -> AudioDeepHealth:
        timeout_ms = timeout_ms or self.settings.audio_deep_timeout_ms
        url = f"{self.settings.audio_origin}{self.settings.audio_deep_health_path}"
        body, url, latency_ms = fetch_json(self.client, url, timeout_ms)

        try:
            payload = AudioDeepHealthPayload.model_validate(body)
        except ValidationError as e:
            raise ProbeFailure(
                f"Malformed audio deep health body from {url}",
                details={"url": url, "errors": e.errors(include_url=False)},
            ) from e

        statuses = MappingProxyType({p.name: str(p.status).lower() for p in payload.providers})
        healthy_count = payload.healthy_count
        if healthy_count is None:
            healthy_count = sum(1 for s in statuses.values() if s == PROVIDER_OK)

        report = HealthReport.from_checks(
            payload.dependency_checks(),
            reported_status=payload.status,
            source=url,
            latency_ms=latency_ms,
        )
        logger.info(
            f"audio deep probe {url}: {payload.status} "
            f"({healthy_count}/{len(statuses)} providers ok, {latency_ms:.0f}ms)"
        )
        return AudioDeepHealth(
            report=report,
            reported_status=payload.status.lower(),
            provider_statuses=statuses,
            healthy_count=healthy_count,
            checked_at=payload.checked_at,
        )

    def basic_probe(self, timeout_ms: int | None = None) -> AudioBasicHealth:
        timeout_ms = timeout_ms or self.settings.audio_basic_timeout_ms
        url = f"{self.settings.audio_origin}{self.settings.audio_health_path}"
        body, url, latency_ms = fetch_json(self.client, url, timeout_ms)

        try:
            payload = AudioBasicHealthPayload.model_validate(body)
        except ValidationError as e:
            raise ProbeFailure(
                f"Malformed audio health body from {url}",
                details={"url": url, "errors": e.errors(include_url=False)},
            ) from e

        logger.info(
            f"audio basic probe {url}: {payload.status} "
            f"(transmission={payload.transmission.available}, free={payload.disk.free_gb:.1f}GB)"
        )
        return AudioBasicHealth(
            status=payload.status,
            transmission_available=payload.transmission.available,
            free_gb=payload.disk.free_gb,
            source=url,
            latency_ms=latency_ms,
        )


# =============================================================================
# CHECKS
# =============================================================================


def require_torrent_provider(health: AudioDeepHealth, names: Iterable[str]) -> None:
    """At least one of ``names`` must report ok."""
    names = list(names)
    if any(health.provider_statuses.get(name) == PROVIDER_OK for name in names):
        return
    raise DependencyDegraded(
        f"No torrent provider is ok (checked {', '.join(names)})",
        details={"providers": {name: health.provider_statuses.get(name) for name in names}},
    )


def require_streaming_provider(health: AudioDeepHealth, name: str) -> None:
    """The streaming provider must be listed and ok or degraded."""
    status = health.provider_statuses.get(name)
    if status in STREAMING_ACCEPTED:
        return
    message = f"{name} provider is missing" if status is None else f"{name} provider is {status}"
    raise DependencyDegraded(message, details={"provider": name, "status": status})


def require_serviceable(health: AudioDeepHealth, min_healthy: int = 1) -> None:
    """Overall status healthy or degraded, with at least ``min_healthy`` providers ok."""
    if health.reported_status in SERVICEABLE and health.healthy_count >= min_healthy:
        return
    raise DependencyDegraded(
        f"Audio service is {health.reported_status} with "
        f"{health.healthy_count} healthy provider(s)",
        details={
            "status": health.reported_status,
            "healthy_count": health.healthy_count,
            "min_healthy": min_healthy,
        },
    )


def require_download_capacity(basic: AudioBasicHealth, min_free_gb: float = 1.0) -> None:
    """Torrent client reachable and more than ``min_free_gb`` of free disk."""
    problems = []
    if not basic.transmission_available:
        problems.append("transmission is unavailable")
    if not basic.free_gb > min_free_gb:
        problems.append(f"only {basic.free_gb:.2f}GB free (need more than {min_free_gb}GB)")
    if problems:
        raise DependencyDegraded(
            f"Audio service cannot download: {'; '.join(problems)}",
            details={
                "transmission_available": basic.transmission_available,
                "free_gb": basic.free_gb,
                "source": basic.source,
            },
        )


def require_audio_service(
    deep: AudioDeepHealth,
    basic: AudioBasicHealth,
    settings: MonitorSettings,
) -> None:
    """Every audio service check, in the order they are reported."""
    require_serviceable(deep, settings.audio_min_healthy_providers)
    require_torrent_provider(deep, settings.audio_torrent_providers)
    require_streaming_provider(deep, settings.audio_streaming_provider)
    require_download_capacity(basic, settings.audio_min_free_disk_gb)
