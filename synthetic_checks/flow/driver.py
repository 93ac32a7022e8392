"""
Flow Driver - Walks the onboarding quiz like a real guest.

Steps:
    Start -> GenreSelection -> DecadeSelection -> Preferences
          -> ManualEntry -> SmartSelection -> Completion

Each step issues its actions, then waits (bounded) for the next step's
defining affordance before transitioning. A missing affordance aborts the
run with UIStateTimeout; nothing is retried. Manual entry is best-effort:
an empty suggestion list means "no match", not a failure.

SmartSelection is the regression-sensitive step. Before every pagination
trigger every rendered or selected artist is merged into the exclusion
accumulator, and a snapshot of it is recorded against the observer
checkpoint so the next request's exclusion payload can be verified.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from synthetic_checks.exceptions import UIStateTimeout
from synthetic_checks.logging import get_logger
from synthetic_checks.models import FlowState, FlowStep, PaginationSnapshot

if TYPE_CHECKING:
    from playwright.sync_api import Locator, Page

    from synthetic_checks.flow.context import RunContext


logger = get_logger("flow.driver")

SCROLL_TO_BOTTOM = "() => window.scrollTo(0, document.body.scrollHeight)"
READ_LOCAL_STORAGE = "key => window.localStorage.getItem(key)"


@dataclass(frozen=True)
class QuizSelectors:
    """Selectors for every affordance the quiz exposes."""

    genre_grid: str = "[data-testid='genre-grid']"
    genre_option: str = "[data-testid='genre-{value}']"
    genre_count: str = "[data-testid='genre-selection-count']"
    decade_section: str = "[data-testid='decade-section']"
    decade_option: str = "[data-testid='decade-{value}']"
    energy_section: str = "[data-testid='energy-section']"
    energy_option: str = "[data-testid='energy-{value}']"
    vocal_comfort_option: str = "[data-testid='vocal-comfort-{value}']"
    manual_heading: str = "[data-testid='music-you-know-heading']"
    artist_input: str = "input[placeholder*='Search for artists']"
    song_input: str = "input[placeholder*='Search for songs']"
    suggestion_option: str = "[role='listbox'] [role='option']"
    artist_heading: str = "[data-testid='artist-heading']"
    artist_grid: str = "[data-testid='artist-grid']"
    artist_card: str = "[data-testid='artist-grid'] > *"
    artist_grid_end: str = "[data-testid='artist-grid-end']"
    continue_button: str = "button:has-text('Continue')"
    finish_button: str = (
        "button:has-text('See recommendations'), "
        "button:has-text('Finish'), "
        "button:has-text('Submit')"
    )
    completion_heading: str = "h1"
    completion_url: str = r"/recommendations"


class PaginationOutcome(str, Enum):
    NEW_BATCH = "new_batch"
    EXHAUSTED = "exhausted"


class FlowDriver:
    """
    Drive one onboarding run against a live page.

    Usage:
        context = RunContext.create(settings)
        context.observer.attach(page)
        driver = FlowDriver(page, context)
        state = driver.run()  # never raises UIStateTimeout
    """

    _HANDLERS = {
        FlowStep.START: "_enter_quiz",
        FlowStep.GENRE_SELECTION: "_select_genres",
        FlowStep.DECADE_SELECTION: "_select_decades",
        FlowStep.PREFERENCES: "_set_preferences",
        FlowStep.MANUAL_ENTRY: "_enter_manual_music",
        FlowStep.SMART_SELECTION: "_select_smart_artists",
    }

    def __init__(
        self,
        page: "Page",
        context: "RunContext",
        selectors: QuizSelectors | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.page = page
        self.context = context
        self.settings = context.settings
        self.selectors = selectors or QuizSelectors()
        self.clock = clock
        self.page.set_default_timeout(self.settings.step_timeout_ms)

    @property
    def state(self) -> FlowState:
        return self.context.state

    def run(self) -> FlowState:
        """Execute steps until Completion or Aborted."""
        try:
            while not self.state.current_step.is_terminal:
                handler = getattr(self, self._HANDLERS[self.state.current_step])
                next_step = handler()
                logger.info(f"{self.state.current_step.value} -> {next_step.value}")
                self.state.advance(next_step)
        except UIStateTimeout as e:
            logger.warning(f"flow aborted in {e.step}: {e.message}")
            self.state.abort(e)
        return self.state

    def read_session_credential(self) -> str | None:
        """Guest bearer credential from local storage, if the page still has one."""
        try:
            return self.page.evaluate(READ_LOCAL_STORAGE, self.settings.credential_storage_key)
        except PlaywrightError as e:
            logger.debug(f"session credential not readable: {e}")
            return None

    # =========================================================================
    # STEPS
    # =========================================================================

    def _enter_quiz(self) -> FlowStep:
        url = self.settings.frontend_url(self.settings.quiz_path)
        try:
            self.page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self.settings.initial_step_timeout_ms,
            )
        except PlaywrightTimeoutError as e:
            raise UIStateTimeout(
                FlowStep.START.value, f"navigation to {url}", self.settings.initial_step_timeout_ms
            ) from e
        self._await_visible(self.selectors.genre_grid, self.settings.initial_step_timeout_ms)

        # Visiting the quiz creates the guest session
        if self.context.token.capture(self.read_session_credential()):
            logger.info("guest session credential captured")
        return FlowStep.GENRE_SELECTION

    def _select_genres(self) -> FlowStep:
        for genre in self.settings.genres:
            self._click(self.selectors.genre_option.format(value=genre))
            self.state.selected_genres.add(genre)

        expected = str(len(self.state.selected_genres))
        count_text = self._text_if_visible(self.selectors.genre_count)
        self.context.assertions.advise(
            "genre selection count shown",
            count_text is not None and expected in count_text,
            f"expected '{expected}' in {count_text!r}",
        )

        self._continue(self.selectors.decade_section)
        return FlowStep.DECADE_SELECTION

    def _select_decades(self) -> FlowStep:
        for decade in self.settings.decades:
            self._click(self.selectors.decade_option.format(value=decade))
            self.state.selected_decades.add(decade)

        self._continue(self.selectors.energy_section)
        return FlowStep.PREFERENCES

    def _set_preferences(self) -> FlowStep:
        self._click(self.selectors.energy_option.format(value=self.settings.energy))
        self.state.preferences["energy"] = self.settings.energy
        self._click(self.selectors.vocal_comfort_option.format(value=self.settings.vocal_comfort))
        self.state.preferences["vocal_comfort"] = self.settings.vocal_comfort

        self._continue(self.selectors.manual_heading)
        return FlowStep.MANUAL_ENTRY

    def _enter_manual_music(self) -> FlowStep:
        self._await_visible(self.selectors.artist_input, self.settings.input_timeout_ms)

        for query in self.settings.manual_artists:
            artist = self._search_and_select(self.selectors.artist_input, query)
            if artist and artist not in self.state.manual_artists:
                self.state.manual_artists.append(artist)

        if self.settings.manual_songs:
            if self._is_visible_within(self.selectors.song_input, self.settings.suggestion_wait_ms):
                for query in self.settings.manual_songs:
                    artist = self._search_and_select(self.selectors.song_input, query, song=True)
                    if artist and artist not in self.state.manual_song_artists:
                        self.state.manual_song_artists.append(artist)
            else:
                self.context.assertions.advise("song search input shown", False)

        # Suggestions may be requested as soon as Continue is clicked
        self.state.smart_entry_checkpoint = self.context.observer.request_checkpoint()
        self._continue(self.selectors.artist_heading, self.settings.initial_step_timeout_ms)
        return FlowStep.SMART_SELECTION

    def _select_smart_artists(self) -> FlowStep:
        observer = self.context.observer
        smart = self.settings.smart_endpoint_pattern

        self._await_visible(self.selectors.artist_grid, self.settings.initial_step_timeout_ms)
        self._await_visible(self.selectors.artist_card, self.settings.step_timeout_ms)

        entry = self.state.smart_entry_checkpoint or 0
        requested = self._wait_until(
            lambda: bool(observer.requests(smart, since=entry)),
            self.settings.pagination_timeout_ms,
        )
        self.context.assertions.gate(
            "smart suggestions requested on entry",
            requested,
            f"no {smart} request sent after entering the step",
        )

        cards = self.page.locator(self.selectors.artist_card)
        to_select = min(self.settings.artists_to_select, cards.count())
        for index in range(to_select):
            card = cards.nth(index)
            name = self._card_name(card)
            try:
                card.click()
            except PlaywrightTimeoutError as e:
                raise UIStateTimeout(
                    FlowStep.SMART_SELECTION.value,
                    f"{self.selectors.artist_card} >> nth={index}",
                    self.settings.step_timeout_ms,
                ) from e
            self.page.wait_for_timeout(self.settings.selection_settle_ms)
            self.state.shown_or_selected_artists.merge([name])

        for round_number in range(1, self.settings.pagination_rounds + 1):
            self.state.shown_or_selected_artists.merge(self._rendered_artists())
            snapshot = PaginationSnapshot(
                round=round_number,
                checkpoint=observer.request_checkpoint(),
                exclusion=self.state.shown_or_selected_artists.snapshot(),
            )
            self.state.pagination_snapshots.append(snapshot)

            before = cards.count()
            self.page.evaluate(SCROLL_TO_BOTTOM)
            outcome = self._await_next_batch(before)
            logger.info(
                f"pagination round {round_number}: {outcome.value} "
                f"({len(snapshot.exclusion)} excluded, {cards.count()} rendered)"
            )
            if outcome == PaginationOutcome.EXHAUSTED:
                break

        self.state.shown_or_selected_artists.merge(self._rendered_artists())

        self._click(self.selectors.finish_button, self.settings.input_timeout_ms)
        try:
            self.page.wait_for_url(
                re.compile(self.selectors.completion_url),
                timeout=self.settings.finish_timeout_ms,
            )
        except PlaywrightTimeoutError as e:
            raise UIStateTimeout(
                FlowStep.SMART_SELECTION.value,
                f"url ~ {self.selectors.completion_url}",
                self.settings.finish_timeout_ms,
            ) from e
        self._await_visible(self.selectors.completion_heading, self.settings.step_timeout_ms)

        self.context.token.capture(self.read_session_credential())
        return FlowStep.COMPLETION

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _await_visible(self, selector: str, timeout_ms: int | None = None) -> "Locator":
        timeout_ms = timeout_ms or self.settings.step_timeout_ms
        locator = self.page.locator(selector).first
        try:
            locator.wait_for(state="visible", timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise UIStateTimeout(self.state.current_step.value, selector, timeout_ms) from e
        return locator

    def _click(self, selector: str, timeout_ms: int | None = None) -> None:
        timeout_ms = timeout_ms or self.settings.step_timeout_ms
        locator = self._await_visible(selector, timeout_ms)
        try:
            locator.click(timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise UIStateTimeout(self.state.current_step.value, selector, timeout_ms) from e

    def _continue(self, next_affordance: str, timeout_ms: int | None = None) -> None:
        self._click(self.selectors.continue_button)
        self._await_visible(next_affordance, timeout_ms)

    def _is_visible_within(self, selector: str, timeout_ms: int) -> bool:
        try:
            self.page.locator(selector).first.wait_for(state="visible", timeout=timeout_ms)
        except PlaywrightTimeoutError:
            return False
        return True

    def _text_if_visible(self, selector: str) -> str | None:
        locator = self.page.locator(selector).first
        if not locator.is_visible():
            return None
        return locator.inner_text()

    def _search_and_select(self, input_selector: str, query: str, song: bool = False) -> str | None:
        """Type, wait out the debounce, pick the first suggestion if any."""
        self.page.locator(input_selector).first.fill(query)
        self.page.wait_for_timeout(self.settings.debounce_ms)

        option = self.page.locator(self.selectors.suggestion_option).first
        try:
            option.wait_for(state="visible", timeout=self.settings.suggestion_wait_ms)
            label = self._option_artist(option, song)
            option.click(timeout=self.settings.suggestion_wait_ms)
        except PlaywrightTimeoutError:
            logger.info(f"no suggestion for '{query}'")
            return None
        return label

    @staticmethod
    def _option_artist(option: "Locator", song: bool) -> str:
        artist = option.get_attribute("data-artist")
        if artist:
            return artist.strip()
        text = option.inner_text().strip()
        if song:
            for separator in (" — ", " – ", " - ", "\n"):
                if separator in text:
                    return text.rsplit(separator, 1)[-1].strip()
        return text

    @staticmethod
    def _card_name(card: "Locator") -> str:
        artist = card.get_attribute("data-artist")
        if artist:
            return artist.strip()
        return card.inner_text().strip().split("\n", 1)[0].strip()

    def _rendered_artists(self) -> list[str]:
        cards = self.page.locator(self.selectors.artist_card)
        return [self._card_name(cards.nth(i)) for i in range(cards.count())]

    def _wait_until(self, predicate: Callable[[], bool], timeout_ms: int) -> bool:
        """Poll ``predicate`` while letting the page deliver events."""
        deadline = self.clock() + timeout_ms / 1000
        while True:
            if predicate():
                return True
            if self.clock() >= deadline:
                return False
            self.page.wait_for_timeout(self.settings.poll_interval_ms)

    def _await_next_batch(self, rendered_before: int) -> PaginationOutcome:
        cards = self.page.locator(self.selectors.artist_card)
        end = self.page.locator(self.selectors.artist_grid_end)
        outcome: list[PaginationOutcome] = []

        def settled() -> bool:
            if cards.count() > rendered_before:
                outcome.append(PaginationOutcome.NEW_BATCH)
            elif end.count() and end.first.is_visible():
                outcome.append(PaginationOutcome.EXHAUSTED)
            return bool(outcome)

        if not self._wait_until(settled, self.settings.pagination_timeout_ms):
            raise UIStateTimeout(
                FlowStep.SMART_SELECTION.value,
                f"{self.selectors.artist_card} beyond {rendered_before} or {self.selectors.artist_grid_end}",
                self.settings.pagination_timeout_ms,
            )
        return outcome[0]
