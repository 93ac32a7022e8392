"""
Network Observer - Passive collector for browser network traffic.

Architecture:
1. attach() - Registers listeners BEFORE the flow navigates anywhere
2. Requests are recorded in send order as SentRequests; responses and
   failures are appended as immutable records that carry the sequence
   of the request they answer
3. checkpoint() / request_checkpoint() - Cursors into the two buffers
4. events(since=cursor) / requests(since=cursor) - Query after a cursor

Events may land after the step that caused them has finished, so
consumers only ever query at explicit checkpoints and never assume an
ordering between DOM changes and network completions. The observer
classifies responses but never decides pass/fail.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Iterable

from playwright.sync_api import Error as PlaywrightError

from synthetic_checks.logging import get_logger
from synthetic_checks.models import (
    Classification,
    ConsoleMessage,
    NetworkEvent,
    RequestFailure,
    SentRequest,
    classify_status,
)

if TYPE_CHECKING:
    from playwright.sync_api import ConsoleMessage as PageConsoleMessage
    from playwright.sync_api import Page, Request, Response


logger = get_logger("flow.observer")


class NetworkObserver:
    """
    Buffer network exchanges for endpoints of interest.

    Usage:
        observer = NetworkObserver(["/api/quiz/artists"], overload_status_code=503)
        observer.attach(page)
        mark = observer.checkpoint()
        # ... drive the UI ...
        smart_calls = observer.events("/smart", since=mark)
        observer.detach(page)
    """

    def __init__(
        self,
        patterns: Iterable[str],
        overload_status_code: int,
        body_excerpt_chars: int = 200,
    ):
        self.patterns = tuple(patterns)
        self.overload_status_code = overload_status_code
        self.body_excerpt_chars = body_excerpt_chars

        self._lock = threading.Lock()
        self._requests: list[SentRequest] = []
        self._sent: dict[Any, SentRequest] = {}
        self._events: list[NetworkEvent] = []
        self._failures: list[RequestFailure] = []
        self._console_errors: list[ConsoleMessage] = []
        self._attached: list[Any] = []

    # -------------------------------------------------------------------------
    # Subscription
    # -------------------------------------------------------------------------

    def attach(self, page: "Page") -> None:
        """Subscribe to the page's network and console events."""
        page.on("request", self._on_request)
        page.on("response", self._on_response)
        page.on("requestfailed", self._on_request_failed)
        page.on("console", self._on_console)
        self._attached.append(page)

    def detach(self, page: "Page") -> None:
        """Stop listening. Already-buffered events are kept."""
        if page not in self._attached:
            return
        page.remove_listener("request", self._on_request)
        page.remove_listener("response", self._on_response)
        page.remove_listener("requestfailed", self._on_request_failed)
        page.remove_listener("console", self._on_console)
        self._attached.remove(page)

    def matches(self, url: str) -> bool:
        return any(pattern in url for pattern in self.patterns)

    # -------------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------------

    def _on_request(self, request: "Request") -> None:
        if self.matches(request.url):
            self._record_request(request)

    def _record_request(self, request: "Request") -> SentRequest:
        """SentRequest for ``request``, recording it on first sight."""
        with self._lock:
            sent = self._sent.get(request)
            if sent is not None:
                return sent

        # Payload parsing stays outside the lock
        payload = self._request_payload(request)
        with self._lock:
            sent = self._sent.get(request)
            if sent is None:
                sent = SentRequest(
                    sequence=len(self._requests),
                    url=request.url,
                    method=request.method,
                    observed_at=datetime.now(UTC),
                    payload=payload,
                )
                self._requests.append(sent)
                self._sent[request] = sent
        return sent

    def _on_response(self, response: "Response") -> None:
        url = response.url
        if not self.matches(url):
            return

        # A response whose request predates attach() is recorded late
        sent = self._record_request(response.request)
        status = response.status
        classification = classify_status(status, self.overload_status_code)
        excerpt = self._body_excerpt(response)

        with self._lock:
            event = NetworkEvent(
                sequence=len(self._events),
                url=url,
                method=sent.method,
                status_code=status,
                observed_at=datetime.now(UTC),
                body_excerpt=excerpt,
                classification=classification,
                request_payload=sent.payload,
                request_sequence=sent.sequence,
            )
            self._events.append(event)

        if classification == Classification.SERVER_OVERLOAD:
            logger.warning(f"overload sentinel observed: {event.method} {url} -> {status}")
        else:
            logger.debug(f"observed {event.method} {url} -> {status} ({classification.value})")

    def _on_request_failed(self, request: "Request") -> None:
        if not self.matches(request.url):
            return
        sent = self._record_request(request)
        failure = RequestFailure(
            url=request.url,
            method=request.method,
            error_text=request.failure or "unknown",
            observed_at=datetime.now(UTC),
            request_sequence=sent.sequence,
            request_payload=sent.payload,
        )
        with self._lock:
            self._failures.append(failure)
        logger.warning(f"request failed: {failure.method} {failure.url} {failure.error_text}")

    def _on_console(self, message: "PageConsoleMessage") -> None:
        if message.type != "error":
            return
        with self._lock:
            self._console_errors.append(
                ConsoleMessage(text=message.text, observed_at=datetime.now(UTC))
            )

    def _body_excerpt(self, response: "Response") -> str | None:
        if not self.body_excerpt_chars:
            return None
        try:
            return response.text()[: self.body_excerpt_chars]
        except PlaywrightError:
            # Body not available (redirect, page closed)
            return None

    @staticmethod
    def _request_payload(request: "Request") -> Any:
        try:
            return request.post_data_json
        except ValueError:
            return request.post_data

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def checkpoint(self) -> int:
        """Cursor for 'every response observed from now on'."""
        with self._lock:
            return len(self._events)

    def request_checkpoint(self) -> int:
        """Cursor for 'every request sent from now on'."""
        with self._lock:
            return len(self._requests)

    def events(
        self,
        pattern: str | None = None,
        since: int = 0,
        classification: Classification | None = None,
    ) -> list[NetworkEvent]:
        """Buffered events matching ``pattern`` observed at or after ``since``."""
        with self._lock:
            snapshot = self._events[since:]
        return [
            e
            for e in snapshot
            if (pattern is None or e.matches(pattern))
            and (classification is None or e.classification == classification)
        ]

    def requests(self, pattern: str | None = None, since: int = 0) -> list[SentRequest]:
        """Requests matching ``pattern`` sent at or after ``since``, in send order."""
        with self._lock:
            snapshot = self._requests[since:]
        return [r for r in snapshot if pattern is None or r.matches(pattern)]

    def overload_events(self) -> list[NetworkEvent]:
        return self.events(classification=Classification.SERVER_OVERLOAD)

    @property
    def request_failures(self) -> list[RequestFailure]:
        with self._lock:
            return list(self._failures)

    @property
    def console_errors(self) -> list[ConsoleMessage]:
        with self._lock:
            return list(self._console_errors)
