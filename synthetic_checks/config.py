"""
Synthetic Check Configuration.

Controls target URLs, probe and flow timeouts, quiz selections and the
regression-guard parameters for the smart-selection endpoint, plus the
optional audio service target.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _split_csv(v):
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    return v


class MonitorSettings(BaseSettings):
    """Settings for one synthetic monitoring deployment."""

    model_config = SettingsConfigDict(
        env_prefix="SYNTHMON_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Target
    base_url: str = Field(
        default="http://localhost:3000",
        description="Frontend origin the browser flow runs against",
    )
    api_base_url: Optional[str] = Field(
        default=None, description="API origin (defaults to base_url)"
    )

    # Health probes
    shallow_health_path: str = "/api/health"
    deep_health_path: str = "/api/health/deep"
    shallow_timeout_ms: int = Field(default=10_000, ge=100)
    deep_timeout_ms: int = Field(default=30_000, ge=100)
    required_dependencies: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["firestore", "bigquery"],
        description="Dependencies that must be healthy for full-health checks",
    )

    # Catalog
    song_search_path: str = "/api/catalog/songs"
    artist_search_path: str = "/api/catalog/artists"
    artist_index_path: str = "/api/catalog/artists/index"
    song_search_query: str = "queen"
    artist_search_query: str = "radiohead"
    min_artist_index_count: int = Field(default=1000, ge=0)
    catalog_timeout_ms: int = Field(default=15_000, ge=100)

    # Flow timeouts (milliseconds)
    initial_step_timeout_ms: int = Field(default=15_000, ge=100)
    step_timeout_ms: int = Field(default=10_000, ge=100)
    input_timeout_ms: int = Field(default=5_000, ge=100)
    suggestion_wait_ms: int = Field(default=3_000, ge=0)
    debounce_ms: int = Field(default=1_500, ge=0)
    selection_settle_ms: int = Field(default=500, ge=0)
    pagination_timeout_ms: int = Field(default=5_000, ge=100)
    poll_interval_ms: int = Field(default=250, ge=10)
    finish_timeout_ms: int = Field(default=30_000, ge=100)

    # Quiz selections
    quiz_path: str = "/quiz"
    genres: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["pop", "rock", "electronic"]
    )
    decades: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["2010s", "2020s"]
    )
    energy: str = "medium"
    vocal_comfort: str = "any"
    manual_artists: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["Green Day", "Fall Out Boy"]
    )
    manual_songs: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["Bohemian Rhapsody"]
    )
    artists_to_select: int = Field(default=2, ge=0)
    pagination_rounds: int = Field(default=2, ge=0)

    # Network observation
    observed_endpoints: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["/api/quiz/artists"],
        description="URL substrings whose exchanges are buffered",
    )
    body_excerpt_chars: int = Field(default=200, ge=0)
    benign_console_patterns: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["favicon", "hydration", "third-party"]
    )
    api_console_patterns: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["503", "500", "Failed to fetch"]
    )

    # Regression guard
    smart_endpoint_pattern: str = "/api/quiz/artists/smart"
    overload_status_code: int = Field(
        default=503, description="Status code treated as resource exhaustion"
    )
    regression_exclude_size: int = Field(default=50, ge=0)
    regression_request_count: int = Field(default=50, ge=1)
    regression_timeout_ms: int = Field(default=60_000, ge=100)

    # Audio download service
    audio_service_url: Optional[str] = Field(
        default=None, description="Audio service origin; its checks are skipped when unset"
    )
    audio_health_path: str = "/health"
    audio_deep_health_path: str = "/health/deep"
    audio_basic_timeout_ms: int = Field(default=10_000, ge=100)
    audio_deep_timeout_ms: int = Field(default=30_000, ge=100)
    audio_torrent_providers: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["RED", "OPS"],
        description="At least one of these must report ok",
    )
    audio_streaming_provider: str = "YouTube"
    audio_min_healthy_providers: int = Field(default=1, ge=0)
    audio_min_free_disk_gb: float = Field(default=1.0, ge=0)

    # Cleanup
    cleanup_path: str = "/api/auth/me"
    credential_storage_key: str = "token"
    cleanup_timeout_ms: int = Field(default=10_000, ge=100)

    # Browser
    headless: bool = True

    # Reports
    report_dir: str = "test-results/synthetic-reports"

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"

    @field_validator(
        "required_dependencies",
        "genres",
        "decades",
        "manual_artists",
        "manual_songs",
        "observed_endpoints",
        "benign_console_patterns",
        "api_console_patterns",
        "audio_torrent_providers",
        mode="before",
    )
    @classmethod
    def parse_csv_lists(cls, v):
        return _split_csv(v)

    @field_validator("overload_status_code")
    @classmethod
    def validate_overload_status(cls, v: int) -> int:
        if not 500 <= v <= 599:
            raise ValueError("overload_status_code must be a 5xx status code")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            raise ValueError(f"log_level must be one of {valid}")
        return upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        lower = v.lower()
        if lower not in {"text", "json"}:
            raise ValueError("log_format must be 'text' or 'json'")
        return lower

    @property
    def api_origin(self) -> str:
        return (self.api_base_url or self.base_url).rstrip("/")

    @property
    def frontend_origin(self) -> str:
        return self.base_url.rstrip("/")

    def frontend_url(self, path: str) -> str:
        return f"{self.frontend_origin}{path}"

    @property
    def audio_origin(self) -> str | None:
        return self.audio_service_url.rstrip("/") if self.audio_service_url else None


@lru_cache
def get_settings() -> MonitorSettings:
    """Cached settings factory."""
    return MonitorSettings()
