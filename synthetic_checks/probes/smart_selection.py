"""
Smart Selection Probe - Direct regression check for the suggestion endpoint.

Replays the payload shape that once exhausted server memory: several
genres and decades, manual artists, manual song artists and a large
exclusion list. The endpoint must answer 2xx with an ``artists`` array
that contains none of the excluded identifiers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from synthetic_checks.config import MonitorSettings
from synthetic_checks.exceptions import OverloadRegression, ProbeFailure
from synthetic_checks.logging import get_logger
from synthetic_checks.models import Classification, classify_status


logger = get_logger("probes.smart_selection")


# Exclusion list observed when the smart endpoint ran out of memory.
INCIDENT_EXCLUDE_ARTISTS: tuple[str, ...] = (
    "Tears For Fears",
    "The All-American Rejects",
    "JoJo",
    "Dua Lipa",
    "Selena Gomez",
    "MercyMe",
    "Ace Of Base",
    "Pink",
    "Ricky Martin",
    "Newsboys",
    "Kelsea Ballerini",
    "Good Charlotte",
    "Glee",
    "Enrique Iglesias",
    "Erasure",
    "Sia",
    "Annie Lennox",
    "Paramore",
    "Simple Plan",
    "Genesis",
    "Stereophonics",
    "Camila Cabello",
    "Maná",
    "James Arthur",
    "Maroon 5",
    "The Kinks",
    "Ariana Grande",
    "My Chemical Romance",
    "Korn",
    "Blue",
    "Jimmy Eat World",
    "Sam Smith",
    "Depeche Mode",
    "Lewis Capaldi",
    "Toto",
    "Train",
    "Florida Georgia Line",
    "Dashboard Confessional",
    "Tiffany",
    "Dion",
    "Prince",
    "The Jam",
    "Kylie Minogue",
    "Sweet",
    "Monica",
    "Pet Shop Boys",
    "Adele",
    "Ashlee Simpson",
    "The Bangles",
    "Coldplay",
)

INCIDENT_MANUAL_ARTISTS = ("Green Day", "Fall Out Boy", "Panic! at the Disco")
INCIDENT_MANUAL_SONG_ARTISTS = ("Queen", "Bastille", "Coldplay")


class SmartSelectionRequest(BaseModel):
    """Body of the smart suggestion endpoint."""

    genres: list[str] = Field(default_factory=list)
    decades: list[str] = Field(default_factory=list)
    manual_artists: list[str] = Field(default_factory=list)
    manual_song_artists: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)
    count: int = Field(default=50, ge=1)


class SmartSelectionResponse(BaseModel):
    artists: list[Any]


@dataclass
class SmartSelectionResult:
    """Outcome of one direct smart-selection request."""

    status_code: int
    classification: Classification
    artists: list[str] = field(default_factory=list)
    reappeared: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return (
            self.classification == Classification.SUCCESS
            and bool(self.artists)
            and not self.reappeared
        )


def artist_name(entry: Any) -> str:
    """Artist identifier from a suggestion entry (string or object)."""
    if isinstance(entry, dict):
        for key in ("name", "artist", "artist_name", "id"):
            value = entry.get(key)
            if value:
                return str(value)
        return ""
    return str(entry)


def build_regression_request(settings: MonitorSettings) -> SmartSelectionRequest:
    """Assemble the regression payload from configuration."""
    size = settings.regression_exclude_size
    if size > len(INCIDENT_EXCLUDE_ARTISTS):
        # Pad with synthetic identifiers that never match a real artist
        extra = [f"synthetic-excluded-{i}" for i in range(size - len(INCIDENT_EXCLUDE_ARTISTS))]
        exclude = list(INCIDENT_EXCLUDE_ARTISTS) + extra
    else:
        exclude = list(INCIDENT_EXCLUDE_ARTISTS[:size])

    return SmartSelectionRequest(
        genres=list(settings.genres),
        decades=list(settings.decades),
        manual_artists=list(INCIDENT_MANUAL_ARTISTS),
        manual_song_artists=list(INCIDENT_MANUAL_SONG_ARTISTS),
        exclude=exclude,
        count=settings.regression_request_count,
    )


class SmartSelectionProbe:
    """POST a suggestion request with a bearer credential and judge it."""

    def __init__(self, client: httpx.Client, settings: MonitorSettings):
        self.client = client
        self.settings = settings

    def check(
        self,
        credential: str,
        request: SmartSelectionRequest | None = None,
    ) -> SmartSelectionResult:
        """
        Send one suggestion request.

        Raises OverloadRegression on the overload sentinel and ProbeFailure
        on transport errors, any other non-2xx answer, or a body without an
        ``artists`` array.
        """
        request = request or build_regression_request(self.settings)
        url = f"{self.settings.api_origin}{self.settings.smart_endpoint_pattern}"

        try:
            response = self.client.post(
                url,
                json=request.model_dump(),
                headers={"Authorization": f"Bearer {credential}"},
                timeout=self.settings.regression_timeout_ms / 1000,
            )
        except httpx.TimeoutException as e:
            raise ProbeFailure(
                f"Smart selection request to {url} timed out",
                details={"url": url, "exclude_size": len(request.exclude)},
            ) from e
        except httpx.RequestError as e:
            raise ProbeFailure(f"Cannot connect to {url}: {e}", details={"url": url}) from e

        classification = classify_status(
            response.status_code, self.settings.overload_status_code
        )
        logger.info(
            f"smart selection POST {url} with {len(request.exclude)} excluded: "
            f"HTTP {response.status_code} ({classification.value})"
        )

        if classification == Classification.SERVER_OVERLOAD:
            raise OverloadRegression(
                f"Smart selection returned overload sentinel {response.status_code} "
                f"with {len(request.exclude)} excluded artists",
                details={
                    "url": url,
                    "status_code": response.status_code,
                    "exclude_size": len(request.exclude),
                    "body": response.text[:200],
                },
            )

        if classification != Classification.SUCCESS:
            raise ProbeFailure(
                f"Smart selection returned HTTP {response.status_code}",
                details={"url": url, "status_code": response.status_code},
            )

        try:
            payload = SmartSelectionResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ProbeFailure(
                "Smart selection response has no 'artists' array",
                details={"url": url, "body": response.text[:200]},
            ) from e

        artists = [name for name in (artist_name(a) for a in payload.artists) if name]
        excluded = set(request.exclude)
        reappeared = [name for name in artists if name in excluded]
        if reappeared:
            logger.warning(f"smart selection returned excluded artists: {reappeared}")

        return SmartSelectionResult(
            status_code=response.status_code,
            classification=classification,
            artists=artists,
            reappeared=reappeared,
        )
