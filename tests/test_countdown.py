from __future__ import annotations

from threading import Event

from cbt_app.core.services.countdown import Countdown


def test_countdown_ticks_until_stopped():
    ticks = []
    enough = Event()
    countdown = None

    def on_tick():
        ticks.append(1)
        if len(ticks) == 3:
            countdown.stop()
            enough.set()

    countdown = Countdown(on_tick, interval=0.01)
    countdown.start()

    assert enough.wait(timeout=5)
    assert not countdown.running
    assert len(ticks) == 3


def test_failing_tick_does_not_kill_the_countdown():
    calls = []
    done = Event()

    def on_tick():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("tick bug")
        done.set()

    countdown = Countdown(on_tick, interval=0.01)
    countdown.start()
    try:
        assert done.wait(timeout=5)
    finally:
        countdown.stop()


def test_stop_before_start_is_harmless():
    countdown = Countdown(lambda: None, interval=0.01)
    countdown.stop()
    assert not countdown.running
