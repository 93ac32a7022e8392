"""
Point-in-time probes package.
"""

from synthetic_checks.probes.audio_service import (
    AudioBasicHealth,
    AudioDeepHealth,
    AudioServiceProbe,
    require_audio_service,
)
from synthetic_checks.probes.catalog import CatalogProbe, SearchResult
from synthetic_checks.probes.health import ProbeRunner, fetch_json, require_full_health
from synthetic_checks.probes.smart_selection import (
    SmartSelectionProbe,
    SmartSelectionRequest,
    SmartSelectionResult,
    build_regression_request,
)

__all__ = [
    "AudioBasicHealth",
    "AudioDeepHealth",
    "AudioServiceProbe",
    "require_audio_service",
    "CatalogProbe",
    "SearchResult",
    "ProbeRunner",
    "fetch_json",
    "require_full_health",
    "SmartSelectionProbe",
    "SmartSelectionRequest",
    "SmartSelectionResult",
    "build_regression_request",
]
