from __future__ import annotations

import pytest

from cbt_app.core.exam_validator import (
    ExamValidationError,
    ValidationIssue,
    ensure_valid_exam,
    format_errors,
    validate_exam,
)
from conftest import make_exam, make_question


def test_valid_exam_passes():
    report = validate_exam(make_exam())
    assert report.valid is True
    assert report.errors == ()


def test_minimal_exam_uses_defaults():
    exam = {
        "examId": "ENG-1",
        "metadata": {"title": "English", "subject": "English"},
        "questions": [{"questionId": "q1", "text": "Pick", "options": {"A": "x", "B": "y"}, "correctAnswer": "B"}],
    }
    assert validate_exam(exam).valid is True


def test_non_object_is_rejected():
    report = validate_exam(["not", "an", "exam"])
    assert report.valid is False
    assert report.errors[0].path == "$"


def test_missing_field_is_reported_at_its_parent():
    exam = make_exam()
    del exam["questions"][1]["correctAnswer"]

    report = validate_exam(exam)

    assert report.valid is False
    assert ValidationIssue(path="/questions/1", message="Missing required field: correctAnswer") in report.errors


def test_missing_top_level_field():
    exam = make_exam()
    del exam["examId"]
    report = validate_exam(exam)
    assert ValidationIssue(path="$", message="Missing required field: examId") in report.errors


def test_invalid_correct_answer_lists_allowed_values():
    exam = make_exam([make_question(1, correct="E")])
    report = validate_exam(exam)
    issue = next(error for error in report.errors if error.path == "/questions/0/correctAnswer")
    assert issue.message.startswith("Invalid value. Allowed values:")


def test_correct_answer_must_be_an_existing_option():
    question = make_question(1, correct="D")
    question["options"] = {"A": "x", "B": "y"}
    report = validate_exam(make_exam([question]))
    assert report.valid is False
    assert "is not one of the question's options" in report.errors[0].message


def test_duplicate_question_ids_are_rejected():
    report = validate_exam(make_exam([make_question(1), make_question(1)]))
    assert report.valid is False
    assert report.errors[0].message == "Duplicate questionId '1'"


def test_exam_needs_questions():
    report = validate_exam(make_exam([]))
    assert report.valid is False
    assert report.errors[0].path == "/questions"


def test_every_problem_is_collected():
    exam = make_exam()
    del exam["metadata"]["subject"]
    exam["settings"]["duration"] = 0
    report = validate_exam(exam)
    assert {error.path for error in report.errors} >= {"/metadata", "/settings/duration"}


def test_ensure_valid_exam_raises_with_formatted_message():
    exam = make_exam()
    del exam["metadata"]["title"]

    with pytest.raises(ExamValidationError) as excinfo:
        ensure_valid_exam(exam)

    assert str(excinfo.value) == "Invalid Exam File:\n1. /metadata: Missing required field: title"
    assert excinfo.value.formatted == "1. /metadata: Missing required field: title"


def test_format_errors_numbers_each_line():
    errors = [ValidationIssue("/a", "first"), ValidationIssue("/b/0", "second")]
    assert format_errors(errors) == "1. /a: first\n2. /b/0: second"
