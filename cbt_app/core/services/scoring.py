"""Marks a submitted paper and summarizes the score."""

from __future__ import annotations

import math
from typing import Mapping, Sequence

from cbt_app.core.models import AnswerRecord, Question, ScoringSummary


def percentage_of(obtained: int, total: int) -> float:
    """Percentage rounded half-up to two decimal places; 0 when nothing is obtainable."""
    if total <= 0:
        return 0.0
    return math.floor(obtained / total * 10000 + 0.5) / 100


def duration_used_minutes(duration_allowed: int, time_left: int) -> int:
    """Whole minutes used, rounded up."""
    return math.ceil((duration_allowed * 60 - time_left) / 60)


def score_paper(
    questions: Sequence[Question],
    answers: Mapping[str, str],
    pass_mark: float,
) -> tuple[list[AnswerRecord], ScoringSummary]:
    """Mark each question against the student's answers.

    A blank or missing answer counts as unanswered. Matching is an exact,
    case-sensitive comparison of option keys.
    """
    records: list[AnswerRecord] = []
    total_marks = 0
    obtained_marks = 0
    correct = 0
    wrong = 0
    unanswered = 0

    for question in questions:
        selected = answers.get(question.answer_key) or None
        total_marks += question.marks
        is_correct = selected is not None and selected == question.correct_answer
        awarded = question.marks if is_correct else 0

        if selected is None:
            unanswered += 1
        elif is_correct:
            correct += 1
            obtained_marks += awarded
        else:
            wrong += 1

        records.append(
            AnswerRecord(
                question_id=question.question_id,
                selected_option=selected,
                is_correct=is_correct,
                marks_awarded=awarded,
            )
        )

    percentage = percentage_of(obtained_marks, total_marks)
    summary = ScoringSummary(
        total_questions=len(questions),
        attempted=len(questions) - unanswered,
        correct=correct,
        wrong=wrong,
        unanswered=unanswered,
        total_marks=total_marks,
        obtained_marks=obtained_marks,
        percentage=percentage,
        passed=percentage >= pass_mark,
    )
    return records, summary
