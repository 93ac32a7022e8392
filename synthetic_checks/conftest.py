"""
Synthetic Check Configuration - pytest fixtures for live monitoring runs.

This conftest runs the checks against a REAL deployment:
1. Probes hit the live health, catalog and suggestion endpoints
2. Browser flows run in a fresh context per test (no cookies, no storage)
3. Every guest session created by a test is deleted afterwards
4. A JSON run report is written for every failing flow run

CRITICAL: This file must stay in synthetic_checks/ so it only applies to
the live suite. The offline tests in tests/ use fakes and never touch
the network.

Run with: pytest synthetic_checks/ -v
"""

from __future__ import annotations

from typing import Generator

import httpx
import pytest
from playwright.sync_api import Browser, BrowserContext, Page

from synthetic_checks.config import MonitorSettings, get_settings
from synthetic_checks.flow.cleanup import CleanupCoordinator, cleanup_scope
from synthetic_checks.flow.driver import READ_LOCAL_STORAGE
from synthetic_checks.logging import setup_logging
from synthetic_checks.models import CleanupToken
from synthetic_checks.probes.audio_service import AudioServiceProbe
from synthetic_checks.probes.catalog import CatalogProbe
from synthetic_checks.probes.health import ProbeRunner
from synthetic_checks.probes.smart_selection import SmartSelectionProbe


# =============================================================================
# CONFIGURATION
# =============================================================================


@pytest.fixture(scope="session")
def monitor_settings() -> MonitorSettings:
    """Load monitoring configuration from environment."""
    settings = get_settings()
    setup_logging(settings)
    return settings


@pytest.fixture(scope="session", autouse=True)
def announce_target(monitor_settings: MonitorSettings):
    """Print the target once at the start of the session."""
    print("\n" + "=" * 60)
    print("🔍 SYNTHETIC MONITORING")
    print("=" * 60)
    print(f"  Frontend: {monitor_settings.frontend_origin}")
    print(f"  API: {monitor_settings.api_origin}")
    print(f"  Audio service: {monitor_settings.audio_origin or 'not configured'}")
    print(f"  Overload sentinel: HTTP {monitor_settings.overload_status_code}")
    print("=" * 60)


# =============================================================================
# HTTP CLIENT AND PROBES
# =============================================================================


@pytest.fixture(scope="session")
def http_client() -> Generator[httpx.Client, None, None]:
    """Plain HTTP client; every probe passes absolute URLs and timeouts."""
    with httpx.Client(follow_redirects=True) as client:
        yield client


@pytest.fixture
def probe_runner(http_client: httpx.Client, monitor_settings: MonitorSettings) -> ProbeRunner:
    return ProbeRunner(http_client, monitor_settings)


@pytest.fixture
def catalog_probe(http_client: httpx.Client, monitor_settings: MonitorSettings) -> CatalogProbe:
    return CatalogProbe(http_client, monitor_settings)


@pytest.fixture
def smart_selection_probe(
    http_client: httpx.Client,
    monitor_settings: MonitorSettings,
) -> SmartSelectionProbe:
    return SmartSelectionProbe(http_client, monitor_settings)


@pytest.fixture
def audio_service_probe(
    http_client: httpx.Client,
    monitor_settings: MonitorSettings,
) -> AudioServiceProbe:
    """Probe for the audio service; skips when no audio service URL is set."""
    if not monitor_settings.audio_origin:
        pytest.skip("SYNTHMON_AUDIO_SERVICE_URL not set")
    return AudioServiceProbe(http_client, monitor_settings)


@pytest.fixture
def cleanup_coordinator(
    http_client: httpx.Client,
    monitor_settings: MonitorSettings,
) -> CleanupCoordinator:
    return CleanupCoordinator(http_client, monitor_settings)


# =============================================================================
# BROWSER
# =============================================================================


@pytest.fixture
def guest_context(
    browser: Browser,
    monitor_settings: MonitorSettings,
) -> Generator[BrowserContext, None, None]:
    """Fresh browser context: a brand-new guest every test."""
    context = browser.new_context(
        base_url=monitor_settings.frontend_origin,
        viewport={"width": 1280, "height": 720},
        ignore_https_errors=True,
    )
    yield context
    context.close()


@pytest.fixture
def guest_page(guest_context: BrowserContext) -> Page:
    return guest_context.new_page()


@pytest.fixture
def guest_session(
    guest_page: Page,
    monitor_settings: MonitorSettings,
    cleanup_coordinator: CleanupCoordinator,
) -> Generator[CleanupToken, None, None]:
    """
    Create a guest session by visiting the quiz and delete it afterwards.

    Usage:
        def test_something(guest_session):
            if guest_session.credential is None:
                pytest.skip("no guest session")
            ...
    """
    token = CleanupToken()

    def read_credential() -> str | None:
        return guest_page.evaluate(READ_LOCAL_STORAGE, monitor_settings.credential_storage_key)

    with cleanup_scope(cleanup_coordinator, token, read_credential):
        guest_page.goto(monitor_settings.frontend_url(monitor_settings.quiz_path))
        guest_page.wait_for_load_state("networkidle")
        token.capture(read_credential())
        yield token

    print(f"\n  Guest session cleanup: {token.status.value}")


# =============================================================================
# PYTEST HOOKS
# =============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "workflow: Full browser flow against the live deployment",
    )
    config.addinivalue_line(
        "markers",
        "smoke: Quick probe of a critical endpoint or page",
    )
    config.addinivalue_line(
        "markers",
        "slow: Test that takes more than 10 seconds",
    )


def pytest_collection_modifyitems(config, items):
    """Add markers based on test location."""
    for item in items:
        if "/smoke/" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)

        if "/workflows/" in str(item.fspath):
            item.add_marker(pytest.mark.workflow)
            item.add_marker(pytest.mark.slow)
