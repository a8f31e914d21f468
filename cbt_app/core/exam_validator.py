"""Structural validation of exam definition files.

The schema is expressed as pydantic models; pydantic's error list is turned
into `path: message` pairs worded for teachers reading them on screen.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

OptionKey = Literal["A", "B", "C", "D"]


class _Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class QuestionSchema(_Schema):
    question_id: str | int
    text: str = Field(min_length=1)
    options: dict[OptionKey, str] = Field(min_length=2)
    correct_answer: OptionKey
    marks: int = Field(default=1, ge=1)
    difficulty: str | None = None

    @model_validator(mode="after")
    def _correct_answer_is_an_option(self) -> "QuestionSchema":
        if self.correct_answer not in self.options:
            raise ValueError(
                f"correctAnswer '{self.correct_answer}' is not one of the question's options"
            )
        return self


class MetadataSchema(_Schema):
    title: str = Field(min_length=1)
    subject: str = Field(min_length=1)
    class_name: str = Field(default="", alias="class")
    term: str = ""
    academic_year: str = ""
    instructions: str = ""


class SettingsSchema(_Schema):
    duration: int = Field(default=30, gt=0)
    pass_mark: float = Field(default=50, ge=0, le=100)
    questions_per_student: int | str | None = None
    shuffle_questions: bool = False
    shuffle_options: bool = False
    show_results: bool = True
    auto_submit_on_violation: bool = True
    violation_threshold: int = Field(default=3, ge=1)
    webhook_url: str | None = None


class ExamSchema(_Schema):
    exam_id: str = Field(min_length=1)
    metadata: MetadataSchema
    settings: SettingsSchema = Field(default_factory=SettingsSchema)
    questions: list[QuestionSchema] = Field(min_length=1)

    @model_validator(mode="after")
    def _question_ids_are_unique(self) -> "ExamSchema":
        seen: set[str] = set()
        for question in self.questions:
            key = str(question.question_id)
            if key in seen:
                raise ValueError(f"Duplicate questionId '{key}'")
            seen.add(key)
        return self


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    path: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "message": self.message}


@dataclass(frozen=True, slots=True)
class ValidationReport:
    valid: bool
    errors: tuple[ValidationIssue, ...] = ()


class ExamValidationError(Exception):
    """Raised when an exam definition fails validation; carries every issue found."""

    def __init__(self, errors: tuple[ValidationIssue, ...] | list[ValidationIssue]) -> None:
        self.errors = tuple(errors)
        super().__init__("Invalid Exam File:\n" + format_errors(self.errors))

    @property
    def formatted(self) -> str:
        return format_errors(self.errors)


def validate_exam(data: Any) -> ValidationReport:
    if not isinstance(data, dict):
        return ValidationReport(
            valid=False,
            errors=(ValidationIssue(path="$", message="Exam definition must be a JSON object"),),
        )
    try:
        ExamSchema.model_validate(data)
    except ValidationError as exc:
        return ValidationReport(valid=False, errors=tuple(_to_issue(error) for error in exc.errors()))
    return ValidationReport(valid=True)


def ensure_valid_exam(data: Any) -> None:
    report = validate_exam(data)
    if not report.valid:
        raise ExamValidationError(report.errors)


def format_errors(errors: tuple[ValidationIssue, ...] | list[ValidationIssue]) -> str:
    return "\n".join(f"{index}. {error.path}: {error.message}" for index, error in enumerate(errors, start=1))


def _json_path(loc: tuple[Any, ...]) -> str:
    if not loc:
        return "$"
    return "/" + "/".join(str(part) for part in loc)


def _to_issue(error: dict[str, Any]) -> ValidationIssue:
    loc = tuple(error.get("loc", ()))
    error_type = error.get("type", "")
    ctx = error.get("ctx") or {}

    if error_type == "missing" and loc:
        return ValidationIssue(path=_json_path(loc[:-1]), message=f"Missing required field: {loc[-1]}")
    if error_type in ("literal_error", "enum"):
        return ValidationIssue(
            path=_json_path(loc),
            message=f"Invalid value. Allowed values: {ctx.get('expected', '')}",
        )
    message = str(error.get("msg", "Invalid value"))
    if error_type == "value_error":
        message = message.removeprefix("Value error, ")
    return ValidationIssue(path=_json_path(loc), message=message)
