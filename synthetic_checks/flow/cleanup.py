"""
Cleanup Coordinator - Delete the guest session a run created.

Hourly runs each create a guest user. Without cleanup the backing store
fills with abandoned sessions, so every run deletes its own session on
every exit path: normal completion, gating failure, abort or an
unexpected fault. The attempt happens exactly once per run and its
outcome is a side note that never changes the run's verdict.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Iterator, Optional

import httpx

from synthetic_checks.config import MonitorSettings
from synthetic_checks.exceptions import CleanupFailure
from synthetic_checks.logging import get_logger
from synthetic_checks.models import CleanupStatus, CleanupToken


logger = get_logger("flow.cleanup")

CredentialReader = Callable[[], Optional[str]]


class CleanupCoordinator:
    """Issue a best-effort, exactly-once session deletion."""

    def __init__(self, client: httpx.Client, settings: MonitorSettings):
        self.client = client
        self.settings = settings

    def run(
        self,
        token: CleanupToken,
        read_credential: CredentialReader | None = None,
    ) -> CleanupStatus:
        """
        Attempt cleanup for ``token``.

        Calling this again for the same token is a no-op that returns the
        first outcome. Never raises for cleanup problems.
        """
        if token.attempted:
            return token.status
        token.attempted = True

        if token.credential is None and read_credential is not None:
            try:
                token.capture(read_credential())
            except Exception as e:
                logger.warning(f"could not read session credential for cleanup: {e}")

        if token.credential is None:
            token.status = CleanupStatus.SKIPPED
            token.detail = "no session credential was produced"
            logger.info("cleanup skipped: no session credential")
            return token.status

        url = f"{self.settings.api_origin}{self.settings.cleanup_path}"
        try:
            response = self.client.delete(
                url,
                headers={"Authorization": f"Bearer {token.credential}"},
                timeout=self.settings.cleanup_timeout_ms / 1000,
            )
        except httpx.HTTPError as e:
            return self._failed(token, CleanupFailure(f"Error cleaning up session: {e}"))

        if not response.is_success:
            return self._failed(
                token,
                CleanupFailure(
                    f"Failed to clean up session: HTTP {response.status_code}",
                    details={"status_code": response.status_code},
                ),
            )

        token.status = CleanupStatus.SUCCEEDED
        token.detail = f"HTTP {response.status_code}"
        logger.info("session cleaned up")
        return token.status

    @staticmethod
    def _failed(token: CleanupToken, failure: CleanupFailure) -> CleanupStatus:
        token.status = CleanupStatus.FAILED
        token.detail = failure.message
        logger.warning(f"{failure.error_code}: {failure.message}")
        return token.status


@contextmanager
def cleanup_scope(
    coordinator: CleanupCoordinator,
    token: CleanupToken,
    read_credential: CredentialReader | None = None,
) -> Iterator[CleanupToken]:
    """
    Guarantee one cleanup attempt when the block exits, however it exits.

    Usage:
        with cleanup_scope(coordinator, context.token, driver.read_session_credential):
            driver.run()
    """
    try:
        yield token
    finally:
        coordinator.run(token, read_credential)
