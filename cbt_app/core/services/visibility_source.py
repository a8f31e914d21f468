"""Sources of visibility, focus, and fullscreen signals for the integrity monitor."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
from typing import Callable

logger = logging.getLogger(__name__)

Handler = Callable[[], None]


@dataclass(slots=True)
class SignalHandlers:
    """Callbacks a subscriber registers; each is invoked with no arguments."""

    on_hidden_changed: Handler
    on_blur: Handler
    on_fullscreen_changed: Handler
    on_fullscreen_denied: Handler


class VisibilitySource(ABC):
    """Capability the integrity monitor depends on instead of polling a DOM.

    Subclasses report state through `is_hidden` / `is_fullscreen` and call the
    `_emit_*` helpers whenever the environment changes.
    """

    def __init__(self) -> None:
        self._handlers: SignalHandlers | None = None

    def subscribe(self, handlers: SignalHandlers) -> None:
        self._handlers = handlers

    def unsubscribe(self) -> None:
        self._handlers = None

    def is_subscribed(self) -> bool:
        return self._handlers is not None

    @abstractmethod
    def is_hidden(self) -> bool:
        """Whether the exam document is currently hidden (another tab is in front)."""

    @abstractmethod
    def is_fullscreen(self) -> bool:
        """Whether the exam is currently displayed fullscreen."""

    @abstractmethod
    def request_fullscreen(self) -> None:
        """Ask the environment to re-enter fullscreen.

        Completion is reported later through the fullscreen-changed signal,
        refusal through the fullscreen-denied signal.
        """

    def _emit_hidden_changed(self) -> None:
        if self._handlers is not None:
            self._handlers.on_hidden_changed()

    def _emit_blur(self) -> None:
        if self._handlers is not None:
            self._handlers.on_blur()

    def _emit_fullscreen_changed(self) -> None:
        if self._handlers is not None:
            self._handlers.on_fullscreen_changed()

    def _emit_fullscreen_denied(self) -> None:
        if self._handlers is not None:
            self._handlers.on_fullscreen_denied()


class BrowserReportedSource(VisibilitySource):
    """State pushed by the student's browser page through the runner API.

    The page forwards `visibilitychange`, `blur`, and `fullscreenchange`
    events. Fullscreen requests cannot be issued from the server, so they are
    exposed as a pending flag the page polls and later acknowledges.
    """

    def __init__(self, hidden: bool = False, fullscreen: bool = False) -> None:
        super().__init__()
        self._hidden = hidden
        self._fullscreen = fullscreen
        self._fullscreen_requested = False

    def is_hidden(self) -> bool:
        return self._hidden

    def is_fullscreen(self) -> bool:
        return self._fullscreen

    def request_fullscreen(self) -> None:
        logger.debug("Fullscreen re-entry requested from the page")
        self._fullscreen_requested = True

    @property
    def fullscreen_requested(self) -> bool:
        return self._fullscreen_requested

    def report_visibility(self, hidden: bool) -> None:
        self._hidden = hidden
        self._emit_hidden_changed()

    def report_blur(self) -> None:
        self._emit_blur()

    def report_fullscreen(self, fullscreen: bool) -> None:
        self._fullscreen = fullscreen
        self._emit_fullscreen_changed()

    def acknowledge_fullscreen_request(self, granted: bool) -> None:
        """Resolve a pending fullscreen request with the page's outcome."""
        if not self._fullscreen_requested:
            return
        self._fullscreen_requested = False
        if granted:
            self.report_fullscreen(True)
        else:
            self._emit_fullscreen_denied()
