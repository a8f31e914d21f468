"""Service driving one student's exam attempt from start to submitted result."""

from __future__ import annotations

import copy
from enum import Enum
import logging
import random
from threading import RLock
import time
from typing import Any, Callable

from cbt_app.constants.about import RESULT_SCHEMA_VERSION
from cbt_app.constants.exam_constants import CHECKPOINT_INTERVAL_SECONDS
from cbt_app.core.exam_validator import ensure_valid_exam
from cbt_app.core.models import (
    ExamDefinition,
    Question,
    Result,
    SessionState,
    StudentIdentity,
    SubmissionOutcome,
    SubmissionType,
    TimingRecord,
    ViolationRecord,
    utc_now_iso,
)
from cbt_app.core.services.activity_reporter import ActivityReporter
from cbt_app.core.services.countdown import Countdown, CountdownFactory, CountdownHandle
from cbt_app.core.services.integrity_monitor import IntegrityMonitor, warning_message
from cbt_app.core.services.question_selector import build_student_paper
from cbt_app.core.services.result_submitter import ResultSubmitter, generate_submission_id
from cbt_app.core.services.scoring import duration_used_minutes, score_paper
from cbt_app.core.services.session_store import SessionStore
from cbt_app.core.services.visibility_source import VisibilitySource

logger = logging.getLogger(__name__)

SubmitterFactory = Callable[[str | None], ResultSubmitter]


class SessionStatus(str, Enum):
    NOT_STARTED = "not-started"
    INSTRUCTIONS = "instructions-shown"
    IN_PROGRESS = "in-progress"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"


class SessionStateError(RuntimeError):
    """Raised when an operation is not allowed in the session's current status."""


class ExamSession:
    """Owns the session state for one attempt; nothing else mutates it.

    The integrity monitor, countdown, and result submitter are created per
    attempt and released on submission.
    """

    def __init__(
        self,
        store: SessionStore,
        submitter_factory: SubmitterFactory,
        source: VisibilitySource,
        *,
        reporter: ActivityReporter | None = None,
        rng: random.Random | None = None,
        countdown_factory: CountdownFactory = Countdown,
        clock: Callable[[], float] = time.monotonic,
        background_delivery: bool = True,
    ) -> None:
        self._lock = RLock()
        self._store = store
        self._submitter_factory = submitter_factory
        self._source = source
        self._reporter = reporter
        self._rng = rng or random.Random()
        self._countdown_factory = countdown_factory
        self._clock = clock
        self._background_delivery = background_delivery

        self._status = SessionStatus.NOT_STARTED
        self._state: SessionState | None = None
        self._monitor: IntegrityMonitor | None = None
        self._countdown: CountdownHandle | None = None
        self._submitter: ResultSubmitter | None = None
        self._result: Result | None = None
        self._last_outcome: SubmissionOutcome | None = None
        self._last_warning: tuple[str, str] | None = None

    # --- Lifecycle ---

    def start(
        self,
        exam_data: dict[str, Any],
        student: StudentIdentity,
        show_instructions: bool = False,
    ) -> None:
        """Validate the exam, build this student's paper, and begin (or show instructions)."""
        with self._lock:
            self._require(SessionStatus.NOT_STARTED)
            if not student.name.strip():
                raise ValueError("Student name is required.")
            ensure_valid_exam(exam_data)

            exam = ExamDefinition.from_dict(copy.deepcopy(exam_data))
            exam.questions = build_student_paper(exam, self._rng)
            duration = exam.settings.duration
            self._state = SessionState(
                student=student,
                exam=exam,
                current_index=0,
                answers={},
                time_left=duration * 60,
                timing=TimingRecord(started_at=utc_now_iso(), duration_allowed=duration),
            )
            self._submitter = self._submitter_factory(exam.settings.webhook_url)
            self._store.clear()
            logger.info(
                "Exam %s started for %s (%d question(s), %d minute(s))",
                exam.exam_id,
                student.name,
                len(exam.questions),
                duration,
            )
            if self._reporter is not None:
                self._reporter.report_activity(student.name, exam.metadata.subject)

            if show_instructions and exam.metadata.instructions.strip():
                self._status = SessionStatus.INSTRUCTIONS
                self._save()
                return
            self._begin()

    def begin(self) -> None:
        """Leave the instructions screen and start the clock."""
        with self._lock:
            self._require(SessionStatus.INSTRUCTIONS)
            assert self._state is not None
            self._state.timing.started_at = utc_now_iso()
            self._begin()

    def resume(self, state: SessionState) -> None:
        """Continue a saved attempt with its stored paper, answers, and clock."""
        with self._lock:
            self._require(SessionStatus.NOT_STARTED)
            state.submitted = False
            self._state = state
            self._submitter = self._submitter_factory(state.exam.settings.webhook_url)
            logger.info(
                "Resuming exam %s for %s at question %d with %ds left",
                state.exam.exam_id,
                state.student.name,
                state.current_index + 1,
                state.time_left,
            )
            self._begin()
            if state.time_left <= 0:
                self.submit(is_auto=True)

    def _begin(self) -> None:
        assert self._state is not None
        settings = self._state.exam.settings
        self._monitor = IntegrityMonitor(
            self._source,
            violation_threshold=settings.violation_threshold,
            auto_submit_on_violation=settings.auto_submit_on_violation,
            clock=self._clock,
        )
        self._monitor.on_violation(self._handle_violation)
        self._monitor.on_auto_submit(self._handle_auto_submit)
        self._monitor.activate(prior_violations=self._state.violation_log)

        self._status = SessionStatus.IN_PROGRESS
        self._countdown = self._countdown_factory(self.tick)
        self._countdown.start()
        self._save()

    # --- Clock ---

    def tick(self) -> None:
        """One second of exam time has passed."""
        with self._lock:
            if self._status is not SessionStatus.IN_PROGRESS or self._state is None:
                return
            self._state.time_left -= 1
            if self._state.time_left % CHECKPOINT_INTERVAL_SECONDS == 0:
                self._save()
            if self._state.time_left <= 0:
                self._stop_countdown()
                logger.info("Time is up for %s", self._state.student.name)
                self.submit(is_auto=True)

    # --- Navigation and answers ---

    def go_to(self, index: int) -> bool:
        with self._lock:
            if self._status is not SessionStatus.IN_PROGRESS or self._state is None:
                return False
            if not 0 <= index < len(self._state.exam.questions):
                return False
            self._state.current_index = index
            self._save()
            return True

    def next(self) -> bool:
        with self._lock:
            return self._state is not None and self.go_to(self._state.current_index + 1)

    def previous(self) -> bool:
        with self._lock:
            return self._state is not None and self.go_to(self._state.current_index - 1)

    def select_option(self, question_id: str | int, option_key: str) -> bool:
        """Record the student's choice; the latest choice for a question wins."""
        with self._lock:
            if self._status in (SessionStatus.SUBMITTING, SessionStatus.SUBMITTED):
                return False
            self._require(SessionStatus.IN_PROGRESS)
            assert self._state is not None
            question = self._find_question(question_id)
            if question is None:
                raise ValueError(f"Question {question_id} is not part of this paper.")
            if option_key not in question.options:
                raise ValueError(f"Option {option_key!r} is not available for question {question_id}.")
            self._state.answers[question.answer_key] = option_key
            self._save()
            return True

    # --- Submission ---

    def submit(
        self,
        is_auto: bool = False,
        submission_type: SubmissionType = SubmissionType.MANUAL,
    ) -> Result | None:
        """Finish the attempt. Only the first call has any effect."""
        with self._lock:
            if self._status in (SessionStatus.SUBMITTING, SessionStatus.SUBMITTED):
                logger.info("Submission already in progress; ignoring duplicate call")
                return None
            self._require(SessionStatus.IN_PROGRESS)
            state = self._state
            assert state is not None

            self._status = SessionStatus.SUBMITTING
            state.submitted = True
            self._stop_countdown()
            self._store.clear()
            state.timing.submitted_at = utc_now_iso()

            final_type = submission_type
            if is_auto and submission_type is SubmissionType.MANUAL:
                final_type = SubmissionType.AUTO_TIMEOUT
            logger.info("Submitting exam for %s (%s)", state.student.name, final_type.value)

            records, summary = score_paper(
                state.exam.questions, state.answers, state.exam.settings.pass_mark
            )
            violations: list[ViolationRecord] = []
            if self._monitor is not None:
                violations = self._monitor.violation_log
                self._monitor.destroy()
            state.violation_log = violations

            result = Result(
                submission_id=generate_submission_id(),
                version=RESULT_SCHEMA_VERSION,
                student=state.student,
                exam_id=state.exam.exam_id,
                metadata=state.exam.metadata,
                answers=tuple(records),
                scoring=summary,
                timing=copy.copy(state.timing),
                duration_used=duration_used_minutes(state.timing.duration_allowed, state.time_left),
                submission_type=final_type,
                client_timestamp=utc_now_iso(),
                violations=tuple(violations),
            )
            self._result = result
            logger.info(
                "Result %s: %d/%d marks (%.2f%%, %s)",
                result.submission_id,
                summary.obtained_marks,
                summary.total_marks,
                summary.percentage,
                "passed" if summary.passed else "failed",
            )
            self._deliver(result.to_payload())
            self._status = SessionStatus.SUBMITTED
            return result

    def _deliver(self, payload: dict[str, Any]) -> None:
        assert self._submitter is not None
        if self._background_delivery:
            self._submitter.submit_in_background(
                payload, on_complete=lambda outcome: self._handle_delivery_outcome(payload, outcome)
            )
        else:
            self._handle_delivery_outcome(payload, self._submitter.submit(payload))

    def _handle_delivery_outcome(self, payload: dict[str, Any], outcome: SubmissionOutcome) -> None:
        self._last_outcome = outcome
        if outcome.success:
            return
        logger.warning("Result %s not delivered: %s", outcome.submission_id, outcome.error)
        self._store.save_result_backup(payload)

    # --- Integrity callbacks ---

    def relay_signal(self, emit: Callable[[], None]) -> None:
        """Run a visibility or fullscreen signal under the session lock.

        The monitor's counters and any auto-submit it triggers then never
        interleave with a clock tick or a manual submission.
        """
        with self._lock:
            emit()

    def _handle_violation(self, record: ViolationRecord, count: int, threshold: int) -> None:
        with self._lock:
            self._last_warning = warning_message(record.type, count, threshold)
            self._save()

    def _handle_auto_submit(self) -> None:
        logger.warning("Auto-submitting after integrity violations")
        self.submit(is_auto=True, submission_type=SubmissionType.AUTO_VIOLATION)

    # --- Queries ---

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def state(self) -> SessionState | None:
        return self._state

    @property
    def result(self) -> Result | None:
        return self._result

    @property
    def last_outcome(self) -> SubmissionOutcome | None:
        return self._last_outcome

    @property
    def last_warning(self) -> tuple[str, str] | None:
        return self._last_warning

    @property
    def monitor(self) -> IntegrityMonitor | None:
        return self._monitor

    @property
    def submitter(self) -> ResultSubmitter | None:
        return self._submitter

    def current_question(self) -> Question | None:
        with self._lock:
            if self._state is None or not self._state.exam.questions:
                return None
            return self._state.exam.questions[self._state.current_index]

    def answered_count(self) -> int:
        with self._lock:
            if self._state is None:
                return 0
            keys = {question.answer_key for question in self._state.exam.questions}
            return sum(1 for key, value in self._state.answers.items() if key in keys and value)

    def unanswered_count(self) -> int:
        with self._lock:
            if self._state is None:
                return 0
            return len(self._state.exam.questions) - self.answered_count()

    def violation_count(self) -> int:
        with self._lock:
            if self._monitor is not None and self._status is SessionStatus.IN_PROGRESS:
                return self._monitor.violation_count
            return len(self._state.violation_log) if self._state is not None else 0

    # --- Helpers ---

    def _require(self, status: SessionStatus) -> None:
        if self._status is not status:
            raise SessionStateError(
                f"Exam session is {self._status.value}; expected {status.value}."
            )

    def _find_question(self, question_id: str | int) -> Question | None:
        assert self._state is not None
        wanted = str(question_id)
        return next((q for q in self._state.exam.questions if q.answer_key == wanted), None)

    def _save(self) -> None:
        state = self._state
        if state is None:
            return
        if self._monitor is not None and self._status is SessionStatus.IN_PROGRESS:
            state.violation_log = self._monitor.violation_log
        self._store.save(state)

    def _stop_countdown(self) -> None:
        if self._countdown is not None:
            self._countdown.stop()
