"""Pytest configuration and fixtures.

The offline suite never opens a browser or a socket:
- HTTP goes through ``httpx.MockTransport``
- Pages are ``FakePage`` objects driven by a ``QuizApp`` simulator with a
  fake clock, so every bounded wait completes instantly
"""

from __future__ import annotations

import heapq
import itertools
import json
import re
from functools import partial
from typing import Any, Callable, Generator

import httpx
import pytest
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from synthetic_checks.config import MonitorSettings
from synthetic_checks.flow.driver import READ_LOCAL_STORAGE, SCROLL_TO_BOTTOM, QuizSelectors


ORIGIN = "http://monitor.test"
SMART_URL = f"{ORIGIN}/api/quiz/artists/smart"

DEFAULT_BATCHES = [
    ["Muse", "Blur", "Oasis", "Pulp", "Suede", "Elbow"],
    ["Keane", "Travis", "Embrace", "Feeder", "Placebo", "Kasabian"],
    ["Athlete", "Doves", "Editors", "Snow Patrol", "Starsailor", "Hard-Fi"],
]

SONG_ARTISTS = {"Bohemian Rhapsody": "Queen"}


# =============================================================================
# PLAYWRIGHT FAKES
# =============================================================================


class FakeRequest:
    def __init__(self, method: str, url: str, payload: Any = None, failure: str | None = None):
        self.method = method
        self.url = url
        self._payload = payload
        self.failure = failure

    @property
    def post_data(self) -> str | None:
        if self._payload is None:
            return None
        if isinstance(self._payload, str):
            return self._payload
        return json.dumps(self._payload)

    @property
    def post_data_json(self) -> Any:
        if isinstance(self._payload, str):
            return json.loads(self._payload)
        return self._payload


class FakeResponse:
    def __init__(self, url: str, status: int, request: FakeRequest, body: str | None = ""):
        self.url = url
        self.status = status
        self.request = request
        self._body = body

    def text(self) -> str:
        if self._body is None:
            raise PlaywrightError("Response body is unavailable for redirect responses")
        return self._body


class FakeConsoleMessage:
    def __init__(self, type: str, text: str):
        self.type = type
        self.text = text


class FakeElement:
    def __init__(
        self,
        text: str = "",
        attrs: dict[str, str] | None = None,
        on_click: Callable[[], None] | None = None,
    ):
        self.text = text
        self.attrs = attrs or {}
        self.on_click = on_click


class FakeLocator:
    """Just enough of ``Locator`` for the flow driver."""

    POLL_MS = 100

    def __init__(self, page: "FakePage", selector: str, index: int = 0):
        self.page = page
        self.selector = selector
        self.index = index

    @property
    def first(self) -> "FakeLocator":
        return FakeLocator(self.page, self.selector, 0)

    def nth(self, index: int) -> "FakeLocator":
        return FakeLocator(self.page, self.selector, index)

    def _element(self) -> FakeElement | None:
        elements = self.page.query(self.selector)
        return elements[self.index] if self.index < len(elements) else None

    def count(self) -> int:
        return len(self.page.query(self.selector))

    def is_visible(self) -> bool:
        return self._element() is not None

    def wait_for(self, state: str = "visible", timeout: float | None = None) -> None:
        timeout = self.page.default_timeout if timeout is None else timeout
        deadline = self.page.monotonic() + timeout / 1000
        while self._element() is None:
            if self.page.monotonic() >= deadline:
                raise PlaywrightTimeoutError(
                    f"Timeout {timeout}ms exceeded waiting for {self.selector}"
                )
            self.page.wait_for_timeout(self.POLL_MS)

    def click(self, timeout: float | None = None) -> None:
        self.wait_for("visible", timeout)
        element = self._element()
        if element.on_click:
            element.on_click()

    def fill(self, value: str) -> None:
        self.wait_for("visible")
        self.page.app.on_fill(self.selector, value)

    def inner_text(self) -> str:
        self.wait_for("visible")
        return self._element().text

    def get_attribute(self, name: str) -> str | None:
        self.wait_for("visible")
        return self._element().attrs.get(name)


class FakePage:
    """
    Page whose DOM is produced by a ``QuizApp`` and whose clock is fake.

    ``wait_for_timeout`` advances the clock and fires scheduled callbacks,
    which is how network responses "arrive" while the driver waits.
    """

    def __init__(self, app: "QuizApp"):
        self.app = app
        app.page = self
        self.url = "about:blank"
        self.default_timeout = 30_000
        self.local_storage: dict[str, str] = {}
        self.closed = False
        self._now = 0.0
        self._queue: list[tuple[float, int, Callable[[], None]]] = []
        self._seq = itertools.count()
        self._listeners: dict[str, list[Callable[[Any], None]]] = {}

    # Clock ---------------------------------------------------------------

    def monotonic(self) -> float:
        return self._now

    def schedule(self, delay_ms: float, callback: Callable[[], None]) -> None:
        heapq.heappush(self._queue, (self._now + delay_ms / 1000, next(self._seq), callback))

    def wait_for_timeout(self, timeout: float) -> None:
        target = self._now + timeout / 1000
        while self._queue and self._queue[0][0] <= target:
            due, _, callback = heapq.heappop(self._queue)
            self._now = max(self._now, due)
            callback()
        self._now = target

    # Events --------------------------------------------------------------

    def on(self, event: str, callback: Callable[[Any], None]) -> None:
        self._listeners.setdefault(event, []).append(callback)

    def remove_listener(self, event: str, callback: Callable[[Any], None]) -> None:
        self._listeners[event].remove(callback)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, payload: Any) -> None:
        for callback in list(self._listeners.get(event, [])):
            callback(payload)

    # Page API ------------------------------------------------------------

    def set_default_timeout(self, timeout: float) -> None:
        self.default_timeout = timeout

    def goto(self, url: str, wait_until: str | None = None, timeout: float | None = None) -> None:
        self.app.on_goto(url, timeout)

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    def query(self, selector: str) -> list[FakeElement]:
        return self.app.query(selector)

    def evaluate(self, expression: str, arg: Any = None) -> Any:
        if self.closed:
            raise PlaywrightError("Target page, context or browser has been closed")
        if expression == READ_LOCAL_STORAGE:
            return self.local_storage.get(arg)
        if expression == SCROLL_TO_BOTTOM:
            self.app.on_scroll()
            return None
        raise AssertionError(f"unexpected evaluate: {expression}")

    def wait_for_url(self, url: re.Pattern, timeout: float | None = None) -> None:
        timeout = self.default_timeout if timeout is None else timeout
        deadline = self._now + timeout / 1000
        while not url.search(self.url):
            if self._now >= deadline:
                raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {url}")
            self.wait_for_timeout(FakeLocator.POLL_MS)


# =============================================================================
# QUIZ SIMULATOR
# =============================================================================


class QuizApp:
    """
    In-memory onboarding quiz.

    Knobs:
        batches: artist batches served on entry and per scroll
        credential: guest token written to local storage on first visit
        missing: selectors that never render
        no_match: search queries with no suggestions
        overload_round: pagination round answered with the overload status
        drop_exclusions: pagination requests forget earlier batches
        stall_pagination: scrolling never loads anything
        smart_on_entry: entering the step requests suggestions
        goto_timeout: navigation times out
        finish_navigates: the finish button leads to the completion page
    """

    def __init__(
        self,
        settings: MonitorSettings,
        *,
        batches: list[list[str]] | None = None,
        credential: str | None = "guest-token-abc",
        missing: tuple[str, ...] = (),
        no_match: tuple[str, ...] = (),
        song_input: bool = True,
        overload_round: int | None = None,
        drop_exclusions: bool = False,
        stall_pagination: bool = False,
        smart_on_entry: bool = True,
        goto_timeout: bool = False,
        finish_navigates: bool = True,
        network_delay_ms: int = 120,
    ):
        self.settings = settings
        self.selectors = QuizSelectors()
        self.batches = batches if batches is not None else [list(b) for b in DEFAULT_BATCHES]
        self.credential = credential
        self.missing = set(missing)
        self.no_match = set(no_match)
        self.song_input = song_input
        self.overload_round = overload_round
        self.drop_exclusions = drop_exclusions
        self.stall_pagination = stall_pagination
        self.smart_on_entry = smart_on_entry
        self.goto_timeout = goto_timeout
        self.finish_navigates = finish_navigates
        self.network_delay_ms = network_delay_ms

        self.page: FakePage | None = None
        self.screen = "blank"
        self.genres: list[str] = []
        self.decades: list[str] = []
        self.preferences: dict[str, str] = {}
        self.manual_artists: list[str] = []
        self.manual_song_artists: list[str] = []
        self.suggestions: list[FakeElement] = []
        self.rendered: list[str] = []
        self.selected: list[str] = []
        self.exhausted = False
        self.scrolls = 0
        self.sent_excludes: list[list[str]] = []

    # Rendering -----------------------------------------------------------

    def query(self, selector: str) -> list[FakeElement]:
        if selector in self.missing:
            return []
        return self._elements().get(selector, [])

    def _elements(self) -> dict[str, list[FakeElement]]:
        s = self.selectors
        proceed = [FakeElement("Continue", on_click=self._continue)]

        if self.screen == "genre":
            elements = {
                s.genre_grid: [FakeElement()],
                s.genre_count: [FakeElement(f"{len(self.genres)} selected")],
                s.continue_button: proceed,
            }
            for genre in self.settings.genres:
                elements[s.genre_option.format(value=genre)] = [
                    FakeElement(genre, on_click=partial(self.genres.append, genre))
                ]
            return elements

        if self.screen == "decade":
            elements = {s.decade_section: [FakeElement()], s.continue_button: proceed}
            for decade in self.settings.decades:
                elements[s.decade_option.format(value=decade)] = [
                    FakeElement(decade, on_click=partial(self.decades.append, decade))
                ]
            return elements

        if self.screen == "preferences":
            energy = self.settings.energy
            vocal = self.settings.vocal_comfort
            return {
                s.energy_section: [FakeElement()],
                s.energy_option.format(value=energy): [
                    FakeElement(energy, on_click=partial(self.preferences.__setitem__, "energy", energy))
                ],
                s.vocal_comfort_option.format(value=vocal): [
                    FakeElement(vocal, on_click=partial(self.preferences.__setitem__, "vocal", vocal))
                ],
                s.continue_button: proceed,
            }

        if self.screen == "manual":
            elements = {
                s.manual_heading: [FakeElement("Music you know")],
                s.artist_input: [FakeElement()],
                s.suggestion_option: self.suggestions,
                s.continue_button: proceed,
            }
            if self.song_input:
                elements[s.song_input] = [FakeElement()]
            return elements

        if self.screen == "smart":
            return {
                s.artist_heading: [FakeElement("Pick artists")],
                s.artist_grid: [FakeElement()],
                s.artist_card: [
                    FakeElement(f"{name}\n12 songs", {"data-artist": name}, partial(self._select, name))
                    for name in self.rendered
                ],
                s.artist_grid_end: [FakeElement("No more artists")] if self.exhausted else [],
                s.finish_button: [FakeElement("See recommendations", on_click=self._finish)],
            }

        if self.screen == "done":
            return {s.completion_heading: [FakeElement("Your recommendations")]}

        return {}

    # Interaction ---------------------------------------------------------

    def on_goto(self, url: str, timeout: float | None) -> None:
        if self.goto_timeout:
            self.page.wait_for_timeout(timeout or self.page.default_timeout)
            raise PlaywrightTimeoutError(f"page.goto: Timeout {timeout}ms exceeded")
        self.page.url = url
        self.screen = "genre"
        if self.credential:
            self.page.local_storage.setdefault(self.settings.credential_storage_key, self.credential)

    def on_fill(self, selector: str, value: str) -> None:
        if value in self.no_match:
            self.suggestions = []
        elif selector == self.selectors.artist_input:
            self.suggestions = [
                FakeElement(value, {"data-artist": value}, partial(self._pick, self.manual_artists, value))
            ]
        elif selector == self.selectors.song_input:
            artist = SONG_ARTISTS.get(value, "Unknown Artist")
            self.suggestions = [
                FakeElement(f"{value} — {artist}", on_click=partial(self._pick, self.manual_song_artists, artist))
            ]

    def on_scroll(self) -> None:
        self.scrolls += 1
        if self.stall_pagination:
            return
        round_number = self.scrolls
        if round_number >= len(self.batches):
            self.exhausted = True
            return

        if self.drop_exclusions and round_number > 1:
            exclude = list(self.batches[round_number - 1])
        else:
            exclude = list(dict.fromkeys(self.selected + self.rendered))
        status = self.settings.overload_status_code if round_number == self.overload_round else 200
        self._send(exclude, status, then=partial(self.rendered.extend, self.batches[round_number]))

    def _pick(self, target: list[str], artist: str) -> None:
        target.append(artist)
        self.suggestions = []

    def _select(self, name: str) -> None:
        if name not in self.selected:
            self.selected.append(name)

    def _continue(self) -> None:
        order = ["genre", "decade", "preferences", "manual", "smart"]
        self.screen = order[order.index(self.screen) + 1]
        if self.screen == "smart":
            self.rendered = list(self.batches[0]) if self.batches else []
            if self.smart_on_entry:
                self._send([], 200)

    def _send(
        self,
        exclude: list[str],
        status: int,
        then: Callable[[], None] | None = None,
    ) -> None:
        """Issue a smart request now; its response lands after the network delay."""
        self.sent_excludes.append(exclude)
        payload = {
            "genres": self.genres,
            "decades": self.decades,
            "manual_artists": self.manual_artists,
            "manual_song_artists": self.manual_song_artists,
            "exclude": exclude,
            "count": 20,
        }
        request = FakeRequest("POST", SMART_URL, payload)
        self.page.emit("request", request)

        def respond() -> None:
            body = json.dumps({"artists": [{"name": "x"}]}) if status < 400 else "Service Unavailable"
            self.page.emit("response", FakeResponse(SMART_URL, status, request, body))
            if then is not None:
                then()

        self.page.schedule(self.network_delay_ms, respond)

    def _finish(self) -> None:
        if not self.finish_navigates:
            return
        self.page.url = f"{ORIGIN}/recommendations"
        self.screen = "done"


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def settings() -> MonitorSettings:
    """Settings pointed at a fake origin, isolated from env files."""
    return MonitorSettings(
        _env_file=None,
        base_url=ORIGIN,
        manual_artists=["Green Day", "Fall Out Boy"],
        manual_songs=["Bohemian Rhapsody"],
    )


@pytest.fixture
def make_app(settings: MonitorSettings) -> Callable[..., QuizApp]:
    """Factory for a quiz simulator with scenario knobs."""

    def _make(**knobs: Any) -> QuizApp:
        return QuizApp(settings, **knobs)

    return _make


@pytest.fixture
def make_page(make_app: Callable[..., QuizApp]) -> Callable[..., FakePage]:
    """Factory for a fake page backed by a fresh quiz simulator."""

    def _make(**knobs: Any) -> FakePage:
        return FakePage(make_app(**knobs))

    return _make


@pytest.fixture
def page(make_page: Callable[..., FakePage]) -> FakePage:
    return make_page()


@pytest.fixture
def fake_response() -> Callable[..., FakeResponse]:
    """Factory for a response event as the observer receives it."""

    def _make(
        url: str = SMART_URL,
        status: int = 200,
        payload: Any = None,
        body: str | None = '{"artists": []}',
        method: str = "POST",
        request: FakeRequest | None = None,
    ) -> FakeResponse:
        if request is None:
            request = FakeRequest(method, url, payload)
        return FakeResponse(request.url, status, request, body)

    return _make


@pytest.fixture
def fake_request() -> Callable[..., FakeRequest]:
    def _make(
        url: str = SMART_URL,
        method: str = "POST",
        payload: Any = None,
        failure: str | None = "net::ERR_FAILED",
    ) -> FakeRequest:
        return FakeRequest(method, url, payload, failure=failure)

    return _make


@pytest.fixture
def console_message() -> Callable[..., FakeConsoleMessage]:
    return FakeConsoleMessage


@pytest.fixture
def mock_client() -> Generator[Callable[..., httpx.Client], None, None]:
    """
    Factory for an httpx.Client whose requests go to a handler.

    Usage:
        client = mock_client(lambda request: httpx.Response(200, json={...}))
    """
    clients: list[httpx.Client] = []

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.close()


@pytest.fixture
def recorded_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def cleanup_client(mock_client, recorded_requests) -> httpx.Client:
    """Client that accepts session deletion and records every request."""

    def handler(request: httpx.Request) -> httpx.Response:
        recorded_requests.append(request)
        return httpx.Response(204)

    return mock_client(handler)
