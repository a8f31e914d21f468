"""Shared fixtures: sample exams, in-memory storage, and scripted collaborators."""

from __future__ import annotations

import copy
import random
from pathlib import Path
from typing import Any, Callable

import pytest

from cbt_app.core.exam_catalog import ExamCatalog
from cbt_app.core.exam_runner import ExamRunner
from cbt_app.core.services.storage import MemoryStore
from cbt_app.core.services.visibility_source import VisibilitySource


def make_question(question_id: int, difficulty: str | None = "medium", correct: str = "A", marks: int = 1) -> dict[str, Any]:
    question: dict[str, Any] = {
        "questionId": question_id,
        "text": f"Question **{question_id}**",
        "options": {"A": f"a{question_id}", "B": f"b{question_id}", "C": f"c{question_id}", "D": f"d{question_id}"},
        "correctAnswer": correct,
        "marks": marks,
    }
    if difficulty is not None:
        question["difficulty"] = difficulty
    return question


def make_exam(
    questions: list[dict[str, Any]] | None = None,
    exam_id: str = "MATH-JSS1-T1",
    **settings: Any,
) -> dict[str, Any]:
    exam_settings: dict[str, Any] = {"duration": 30, "passMark": 50}
    exam_settings.update(settings)
    return {
        "examId": exam_id,
        "metadata": {
            "title": "First Term Mathematics",
            "subject": "Mathematics",
            "class": "JSS1",
            "term": "First",
            "academicYear": "2025/2026",
            "instructions": "Answer all questions.",
        },
        "settings": exam_settings,
        "questions": questions if questions is not None else [make_question(i) for i in range(1, 6)],
    }


class FakeVisibilitySource(VisibilitySource):
    """Scripted environment signals for the integrity monitor."""

    def __init__(self) -> None:
        super().__init__()
        self.hidden = False
        self.fullscreen = True
        self.fullscreen_requests = 0
        self.fail_requests = False

    def is_hidden(self) -> bool:
        return self.hidden

    def is_fullscreen(self) -> bool:
        return self.fullscreen

    def request_fullscreen(self) -> None:
        self.fullscreen_requests += 1
        if self.fail_requests:
            raise RuntimeError("fullscreen not allowed")

    def hide(self) -> None:
        self.hidden = True
        self._emit_hidden_changed()

    def show(self) -> None:
        self.hidden = False
        self._emit_hidden_changed()

    def blur(self) -> None:
        self._emit_blur()

    def exit_fullscreen(self) -> None:
        self.fullscreen = False
        self._emit_fullscreen_changed()

    def enter_fullscreen(self) -> None:
        self.fullscreen = True
        self._emit_fullscreen_changed()

    def deny_fullscreen(self) -> None:
        self._emit_fullscreen_denied()


class ManualCountdown:
    """Countdown that only ticks when the test says so."""

    instances: list["ManualCountdown"] = []

    def __init__(self, on_tick: Callable[[], None]) -> None:
        self._on_tick = on_tick
        self._running = False
        ManualCountdown.instances.append(self)

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        self._running = True

    def stop(self) -> None:
        self._running = False

    def tick(self, times: int = 1) -> None:
        for _ in range(times):
            if not self._running:
                return
            self._on_tick()


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """Records webhook posts; fails the first `failures` calls."""

    def __init__(self, failures: int = 0, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error or ConnectionError("connection refused")
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def __call__(self, url: str, payload: dict[str, Any]) -> None:
        self.calls.append((url, copy.deepcopy(payload)))
        if self.failures > 0:
            self.failures -= 1
            raise self.error


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def source() -> FakeVisibilitySource:
    return FakeVisibilitySource()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture(autouse=True)
def _reset_countdowns():
    ManualCountdown.instances.clear()
    yield
    ManualCountdown.instances.clear()


@pytest.fixture
def exams_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "exams"
    directory.mkdir()
    return directory


@pytest.fixture
def runner(exams_dir: Path, memory_store: MemoryStore, transport: FakeTransport, sleep: RecordingSleep, clock: FakeClock) -> ExamRunner:
    return ExamRunner(
        ExamCatalog(exams_dir),
        memory_store,
        default_webhook_url="https://hooks.example.test/results",
        transport=transport,
        is_reachable=lambda url: True,
        sleep=sleep,
        countdown_factory=ManualCountdown,
        clock=clock,
        rng=random.Random(7),
        background_delivery=False,
    )
