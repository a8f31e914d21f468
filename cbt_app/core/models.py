"""Domain models for the exam runner.

The JSON contract (exam files, session snapshots, webhook payloads) is
camelCase; the dataclasses here are snake_case and own the conversion in both
directions so that nothing outside this module touches raw key names.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from cbt_app.constants.exam_constants import (
    DEFAULT_DURATION_MINUTES,
    DEFAULT_PASS_MARK,
    DEFAULT_QUESTION_MARKS,
    DEFAULT_VIOLATION_THRESHOLD,
    OPTION_KEYS,
)


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"

    @classmethod
    def parse(cls, value: object) -> "Difficulty":
        """Case-insensitive parse; missing or unknown values count as medium."""
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                return cls.MEDIUM
        return cls.MEDIUM


class ViolationType(str, Enum):
    TAB_SWITCH = "tab-switch"
    WINDOW_BLUR = "window-blur"
    FULLSCREEN_EXIT = "fullscreen-exit"


class SubmissionType(str, Enum):
    MANUAL = "manual"
    AUTO_TIMEOUT = "auto-timeout"
    AUTO_VIOLATION = "auto-violation"


@dataclass(slots=True)
class Question:
    """Multiple-choice question keyed by option letters A..D."""

    question_id: str | int
    text: str
    options: dict[str, str]
    correct_answer: str
    marks: int = DEFAULT_QUESTION_MARKS
    difficulty: Difficulty = Difficulty.MEDIUM
    raw_difficulty: str | None = None  # as authored, kept for snapshots

    @property
    def answer_key(self) -> str:
        """Key used in the answers mapping (JSON object keys are strings)."""
        return str(self.question_id)

    def option_keys(self) -> list[str]:
        return [key for key in OPTION_KEYS if key in self.options]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Question":
        raw_difficulty = data.get("difficulty")
        marks = data.get("marks") or DEFAULT_QUESTION_MARKS
        return cls(
            question_id=data["questionId"],
            text=str(data.get("text", "")),
            options={str(key): str(value) for key, value in dict(data.get("options") or {}).items()},
            correct_answer=str(data.get("correctAnswer", "")),
            marks=int(marks),
            difficulty=Difficulty.parse(raw_difficulty),
            raw_difficulty=raw_difficulty if isinstance(raw_difficulty, str) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "questionId": self.question_id,
            "text": self.text,
            "options": dict(self.options),
            "correctAnswer": self.correct_answer,
            "marks": self.marks,
        }
        if self.raw_difficulty is not None:
            data["difficulty"] = self.raw_difficulty
        return data


@dataclass(slots=True)
class ExamMetadata:
    title: str = ""
    subject: str = ""
    class_name: str = ""
    term: str = ""
    academic_year: str = ""
    instructions: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ExamMetadata":
        data = data or {}
        return cls(
            title=str(data.get("title", "")),
            subject=str(data.get("subject", "")),
            class_name=str(data.get("class", "")),
            term=str(data.get("term", "")),
            academic_year=str(data.get("academicYear", "")),
            instructions=str(data.get("instructions", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "subject": self.subject,
            "class": self.class_name,
            "term": self.term,
            "academicYear": self.academic_year,
            "instructions": self.instructions,
        }


@dataclass(slots=True)
class ExamSettings:
    duration: int = DEFAULT_DURATION_MINUTES
    pass_mark: float = DEFAULT_PASS_MARK
    questions_per_student: int | str | None = None
    shuffle_questions: bool = False
    shuffle_options: bool = False
    show_results: bool = True
    auto_submit_on_violation: bool = True
    violation_threshold: int = DEFAULT_VIOLATION_THRESHOLD
    webhook_url: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ExamSettings":
        data = data or {}
        auto_submit = data.get("autoSubmitOnViolation")
        pass_mark = data.get("passMark")
        return cls(
            duration=int(data.get("duration") or DEFAULT_DURATION_MINUTES),
            pass_mark=DEFAULT_PASS_MARK if pass_mark is None else pass_mark,
            questions_per_student=data.get("questionsPerStudent"),
            shuffle_questions=bool(data.get("shuffleQuestions", False)),
            shuffle_options=bool(data.get("shuffleOptions", False)),
            show_results=bool(data.get("showResults", True)),
            auto_submit_on_violation=True if auto_submit is None else bool(auto_submit),
            violation_threshold=int(data.get("violationThreshold") or DEFAULT_VIOLATION_THRESHOLD),
            webhook_url=data.get("webhookUrl") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "duration": self.duration,
            "passMark": self.pass_mark,
            "shuffleQuestions": self.shuffle_questions,
            "shuffleOptions": self.shuffle_options,
            "showResults": self.show_results,
            "autoSubmitOnViolation": self.auto_submit_on_violation,
            "violationThreshold": self.violation_threshold,
        }
        if self.questions_per_student is not None:
            data["questionsPerStudent"] = self.questions_per_student
        if self.webhook_url:
            data["webhookUrl"] = self.webhook_url
        return data


@dataclass(slots=True)
class ExamDefinition:
    """An authored exam. When embedded in a session, `questions` is the student paper."""

    exam_id: str
    metadata: ExamMetadata
    settings: ExamSettings
    questions: list[Question]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExamDefinition":
        return cls(
            exam_id=str(data["examId"]),
            metadata=ExamMetadata.from_dict(data.get("metadata")),
            settings=ExamSettings.from_dict(data.get("settings")),
            questions=[Question.from_dict(item) for item in data.get("questions") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "examId": self.exam_id,
            "metadata": self.metadata.to_dict(),
            "settings": self.settings.to_dict(),
            "questions": [question.to_dict() for question in self.questions],
        }


@dataclass(slots=True)
class StudentIdentity:
    name: str
    seat_number: str = ""
    class_name: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StudentIdentity":
        return cls(
            name=str(data.get("name", "")),
            seat_number=str(data.get("seatNumber", "")),
            class_name=str(data.get("class", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "seatNumber": self.seat_number, "class": self.class_name}


@dataclass(slots=True)
class TimingRecord:
    started_at: str | None = None
    submitted_at: str | None = None
    duration_allowed: int = 0  # minutes

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "TimingRecord":
        data = data or {}
        return cls(
            started_at=data.get("startedAt"),
            submitted_at=data.get("submittedAt"),
            duration_allowed=int(data.get("durationAllowed") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "startedAt": self.started_at,
            "submittedAt": self.submitted_at,
            "durationAllowed": self.duration_allowed,
        }


@dataclass(frozen=True, slots=True)
class ViolationRecord:
    type: ViolationType
    timestamp: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ViolationRecord":
        return cls(type=ViolationType(data["type"]), timestamp=str(data["timestamp"]))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "timestamp": self.timestamp}


@dataclass(slots=True)
class SessionState:
    """Everything needed to resume an exam attempt after a reload."""

    student: StudentIdentity
    exam: ExamDefinition
    current_index: int = 0
    answers: dict[str, str] = field(default_factory=dict)
    time_left: int = 0
    timing: TimingRecord = field(default_factory=TimingRecord)
    submitted: bool = False
    violation_log: list[ViolationRecord] = field(default_factory=list)

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "student": self.student.to_dict(),
            "exam": self.exam.to_dict(),
            "currentQIndex": self.current_index,
            "answers": dict(self.answers),
            "timeLeft": self.time_left,
            "timing": self.timing.to_dict(),
            "integrity": {"violationLog": [record.to_dict() for record in self.violation_log]},
        }

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> "SessionState":
        integrity = data.get("integrity") or {}
        return cls(
            student=StudentIdentity.from_dict(data["student"]),
            exam=ExamDefinition.from_dict(data["exam"]),
            current_index=int(data.get("currentQIndex") or 0),
            answers={str(key): str(value) for key, value in dict(data.get("answers") or {}).items()},
            time_left=int(data["timeLeft"]),
            timing=TimingRecord.from_dict(data.get("timing")),
            violation_log=[ViolationRecord.from_dict(item) for item in integrity.get("violationLog") or []],
        )


@dataclass(frozen=True, slots=True)
class AnswerRecord:
    question_id: str | int
    selected_option: str | None
    is_correct: bool
    marks_awarded: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "questionId": self.question_id,
            "selectedOption": self.selected_option,
            "isCorrect": self.is_correct,
            "marksAwarded": self.marks_awarded,
        }


@dataclass(frozen=True, slots=True)
class ScoringSummary:
    total_questions: int
    attempted: int
    correct: int
    wrong: int
    unanswered: int
    total_marks: int
    obtained_marks: int
    percentage: float
    passed: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalQuestions": self.total_questions,
            "attemptedQuestions": self.attempted,
            "correctAnswers": self.correct,
            "wrongAnswers": self.wrong,
            "unansweredQuestions": self.unanswered,
            "totalMarks": self.total_marks,
            "obtainedMarks": self.obtained_marks,
            "percentage": self.percentage,
            "passed": self.passed,
        }


@dataclass(frozen=True, slots=True)
class Result:
    """Immutable outcome of one exam attempt, as delivered to the webhook."""

    submission_id: str
    version: str
    student: StudentIdentity
    exam_id: str
    metadata: ExamMetadata
    answers: tuple[AnswerRecord, ...]
    scoring: ScoringSummary
    timing: TimingRecord
    duration_used: int
    submission_type: SubmissionType
    client_timestamp: str
    violations: tuple[ViolationRecord, ...]

    def to_payload(self) -> dict[str, Any]:
        return {
            "submissionId": self.submission_id,
            "version": self.version,
            "student": {
                "fullName": self.student.name,
                "registrationNumber": self.student.seat_number,
                "class": self.student.class_name,
            },
            "exam": {
                "examId": self.exam_id,
                "title": self.metadata.title,
                "subject": self.metadata.subject,
                "class": self.metadata.class_name,
                "term": self.metadata.term,
                "academicYear": self.metadata.academic_year,
            },
            "answers": [answer.to_dict() for answer in self.answers],
            "scoring": self.scoring.to_dict(),
            "timing": {
                "startedAt": self.timing.started_at,
                "submittedAt": self.timing.submitted_at,
                "durationAllowed": self.timing.duration_allowed,
                "durationUsed": self.duration_used,
            },
            "submission": {
                "type": self.submission_type.value,
                "clientTimestamp": self.client_timestamp,
            },
            "integrity": {
                "violations": len(self.violations),
                "violationLog": [record.to_dict() for record in self.violations],
            },
        }


@dataclass(slots=True)
class SubmissionOutcome:
    """What the result submitter reports back after a delivery attempt."""

    success: bool
    submission_id: str | None
    timestamp: str
    error: str | None = None
    pending_count: int | None = None
