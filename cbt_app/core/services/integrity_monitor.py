"""Exam integrity monitoring: tab switches, focus loss, and fullscreen exits.

One monitor instance exists per exam attempt. It moves through
INACTIVE -> ACTIVE -> SUBMITTING -> INACTIVE and never back to ACTIVE;
`destroy()` returns it to INACTIVE and releases every subscription.
"""

from __future__ import annotations

from enum import Enum
import logging
import time
from typing import Callable, Generic, Sequence, TypeVar

from cbt_app.constants.exam_constants import (
    DEFAULT_VIOLATION_THRESHOLD,
    VIOLATION_DEBOUNCE_SECONDS,
)
from cbt_app.core.models import ViolationRecord, ViolationType, utc_now_iso
from cbt_app.core.services.visibility_source import SignalHandlers, VisibilitySource

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., object])

ViolationListener = Callable[[ViolationRecord, int, int], None]
AutoSubmitListener = Callable[[], None]


class ListenerList(Generic[F]):
    """Ordered observers; a failing observer never stops the ones after it."""

    def __init__(self, channel: str) -> None:
        self._channel = channel
        self._listeners: list[F] = []

    def add(self, listener: F) -> None:
        if not callable(listener):
            raise TypeError(f"{self._channel} listener must be callable")
        self._listeners.append(listener)

    def emit(self, *args: object) -> None:
        for listener in list(self._listeners):
            try:
                listener(*args)
            except Exception:
                logger.exception("Error in %s listener", self._channel)

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)


class MonitorState(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    SUBMITTING = "submitting"


_VIOLATION_WORDING = {
    ViolationType.FULLSCREEN_EXIT: (
        "You have exited fullscreen too many times.",
        "You must remain in fullscreen mode during the exam.",
    ),
    ViolationType.TAB_SWITCH: (
        "You have switched tabs too many times.",
        "You must not switch tabs during the exam.",
    ),
    ViolationType.WINDOW_BLUR: (
        "You have lost focus too many times.",
        "You must keep the exam window in focus.",
    ),
}


def warning_message(violation_type: ViolationType, count: int, threshold: int) -> tuple[str, str]:
    """Return the (title, message) shown to the student after a violation."""
    terminated, rule = _VIOLATION_WORDING[violation_type]
    if count >= threshold:
        return "EXAM TERMINATED", f"{terminated} Your exam will now be auto-submitted."
    remaining = threshold - count
    return (
        f"WARNING #{count}",
        f"{rule}\n\nViolations remaining before auto-submission: {remaining}",
    )


class IntegrityMonitor:
    """Counts integrity violations and signals auto-submission at the threshold."""

    def __init__(
        self,
        source: VisibilitySource,
        *,
        violation_threshold: int = DEFAULT_VIOLATION_THRESHOLD,
        auto_submit_on_violation: bool = True,
        clock: Callable[[], float] = time.monotonic,
        debounce_seconds: float = VIOLATION_DEBOUNCE_SECONDS,
    ) -> None:
        if violation_threshold < 1:
            raise ValueError("Violation threshold must be at least 1.")
        self._source = source
        self._threshold = violation_threshold
        self._auto_submit = auto_submit_on_violation
        self._clock = clock
        self._debounce_seconds = debounce_seconds

        self._state = MonitorState.INACTIVE
        self._violation_log: list[ViolationRecord] = []
        self._last_violation_at: float | None = None
        self._reentering = False
        self._auto_submit_fired = False

        self._violation_listeners: ListenerList[ViolationListener] = ListenerList("violation")
        self._limit_listeners: ListenerList[ViolationListener] = ListenerList("limit-reached")
        self._auto_submit_listeners: ListenerList[AutoSubmitListener] = ListenerList("auto-submit")

    # --- Lifecycle ---

    def activate(self, prior_violations: Sequence[ViolationRecord] = ()) -> None:
        """Start watching. `prior_violations` carries history over from a resumed session."""
        if self._state is not MonitorState.INACTIVE or self._auto_submit_fired:
            raise RuntimeError("Integrity monitor instances cannot be reactivated.")
        self._violation_log = list(prior_violations)
        self._last_violation_at = None
        self._reentering = False
        self._state = MonitorState.ACTIVE
        self._source.subscribe(
            SignalHandlers(
                on_hidden_changed=self._handle_hidden_changed,
                on_blur=self._handle_blur,
                on_fullscreen_changed=self._handle_fullscreen_changed,
                on_fullscreen_denied=self._handle_fullscreen_denied,
            )
        )
        logger.info(
            "Integrity monitor active (threshold=%d, auto-submit=%s, carried violations=%d)",
            self._threshold,
            self._auto_submit,
            len(self._violation_log),
        )

    def destroy(self) -> None:
        if self._state is not MonitorState.INACTIVE:
            logger.info("Integrity monitor stopped with %d violation(s)", self.violation_count)
        self._state = MonitorState.INACTIVE
        self._reentering = False
        self._source.unsubscribe()
        self._violation_listeners.clear()
        self._limit_listeners.clear()
        self._auto_submit_listeners.clear()

    # --- Observers ---

    def on_violation(self, listener: ViolationListener) -> None:
        self._violation_listeners.add(listener)

    def on_limit_reached(self, listener: ViolationListener) -> None:
        self._limit_listeners.add(listener)

    def on_auto_submit(self, listener: AutoSubmitListener) -> None:
        self._auto_submit_listeners.add(listener)

    # --- Queries ---

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def violation_threshold(self) -> int:
        return self._threshold

    @property
    def violation_count(self) -> int:
        return len(self._violation_log)

    @property
    def violation_log(self) -> list[ViolationRecord]:
        return list(self._violation_log)

    def is_reentering_fullscreen(self) -> bool:
        return self._reentering

    def is_submitting(self) -> bool:
        return self._state is MonitorState.SUBMITTING

    # --- Signals ---

    def trigger_violation(self, violation_type: ViolationType) -> None:
        """Record a violation detected outside the visibility source."""
        self._record_violation(violation_type)

    def _handle_hidden_changed(self) -> None:
        if self._source.is_hidden():
            self._record_violation(ViolationType.TAB_SWITCH)

    def _handle_blur(self) -> None:
        # A hidden document also blurs the window; that is already a tab switch.
        if not self._source.is_hidden():
            self._record_violation(ViolationType.WINDOW_BLUR)

    def _handle_fullscreen_changed(self) -> None:
        if self._source.is_fullscreen():
            if self._reentering:
                logger.debug("Fullscreen re-entry completed")
                self._reentering = False
            return
        self._record_violation(ViolationType.FULLSCREEN_EXIT)

    def _handle_fullscreen_denied(self) -> None:
        logger.debug("Fullscreen re-entry was refused")
        self._reentering = False

    def _record_violation(self, violation_type: ViolationType) -> None:
        if self._state is not MonitorState.ACTIVE:
            return
        if violation_type is ViolationType.FULLSCREEN_EXIT and self._reentering:
            logger.debug("Ignoring fullscreen exit while re-entry is pending")
            return

        now = self._clock()
        if self._last_violation_at is not None and now - self._last_violation_at < self._debounce_seconds:
            logger.debug("Violation %s debounced", violation_type.value)
            return
        self._last_violation_at = now

        record = ViolationRecord(type=violation_type, timestamp=utc_now_iso())
        self._violation_log.append(record)
        count = len(self._violation_log)
        logger.warning(
            "Integrity violation: %s (%d/%d)", violation_type.value, count, self._threshold
        )

        self._violation_listeners.emit(record, count, self._threshold)

        if count >= self._threshold:
            self._limit_listeners.emit(record, count, self._threshold)
            if self._auto_submit:
                self._trigger_auto_submit()
        elif violation_type is ViolationType.FULLSCREEN_EXIT:
            self._request_reentry()

    def _request_reentry(self) -> None:
        if self._reentering or self._state is not MonitorState.ACTIVE:
            return
        self._reentering = True
        try:
            self._source.request_fullscreen()
        except Exception:
            logger.exception("Fullscreen re-entry request failed")
            self._reentering = False

    def _trigger_auto_submit(self) -> None:
        if self._state is not MonitorState.ACTIVE or self._auto_submit_fired:
            return
        logger.warning("Violation threshold reached; triggering auto-submit")
        self._auto_submit_fired = True
        self._state = MonitorState.SUBMITTING
        self._auto_submit_listeners.emit()
