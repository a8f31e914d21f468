"""Cancellable once-per-interval ticker used for the exam clock."""

from __future__ import annotations

import logging
from threading import Event, Thread
from typing import Callable, Protocol

from cbt_app.constants.exam_constants import COUNTDOWN_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


class CountdownHandle(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...

    @property
    def running(self) -> bool: ...


CountdownFactory = Callable[[Callable[[], None]], CountdownHandle]


class Countdown:
    """Calls `on_tick` every `interval` seconds on a daemon thread until stopped.

    The countdown does not track remaining time itself; the owner decrements
    its own state in `on_tick` and calls `stop()` when it is done. `stop()` is
    idempotent and safe to call from inside `on_tick`.
    """

    def __init__(self, on_tick: Callable[[], None], interval: float = COUNTDOWN_INTERVAL_SECONDS) -> None:
        self._on_tick = on_tick
        self._interval = interval
        self._stop_event = Event()
        self._thread: Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and not self._stop_event.is_set()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = Event()
        self._thread = Thread(target=self._run, args=(self._stop_event,), name="ExamCountdown", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    def _run(self, stop_event: Event) -> None:
        while not stop_event.wait(self._interval):
            try:
                self._on_tick()
            except Exception:
                logger.exception("Countdown tick failed")
