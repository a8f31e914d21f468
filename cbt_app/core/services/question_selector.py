"""Builds each student's paper from an exam's question pool.

The pipeline is fixed: difficulty-balanced subset selection first, then an
optional question-order shuffle, then optional per-question option shuffles.
Selecting before shuffling keeps the balance computed over the full pool.
"""

from __future__ import annotations

from collections import deque
from dataclasses import replace
import logging
import random
from typing import Sequence, TypeVar

from cbt_app.constants.exam_constants import (
    DIFFICULTY_WEIGHTS,
    EASY_PICK_THRESHOLD,
    HARD_PICK_THRESHOLD,
    OPTION_KEYS,
)
from cbt_app.core.models import Difficulty, ExamDefinition, Question

logger = logging.getLogger(__name__)

T = TypeVar("T")


def difficulty_weight(question: Question) -> int:
    return DIFFICULTY_WEIGHTS[question.difficulty.value]


def parse_limit(raw_limit: object) -> int | None:
    """Interpret a questionsPerStudent value; None means "no limit"."""
    if isinstance(raw_limit, bool):
        return None
    if isinstance(raw_limit, int):
        return raw_limit if raw_limit > 0 else None
    if isinstance(raw_limit, float) and raw_limit.is_integer():
        return int(raw_limit) if raw_limit > 0 else None
    if isinstance(raw_limit, str):
        try:
            parsed = int(raw_limit.strip())
        except ValueError:
            return None
        return parsed if parsed > 0 else None
    return None


def select_subset(questions: Sequence[Question], limit: object) -> list[Question]:
    """Pick `limit` questions whose average difficulty tracks the whole pool.

    Returns every question in the original order when the limit is missing,
    not a positive integer, or not smaller than the pool. The result may be
    shorter than `limit` only when every difficulty bucket runs dry.
    """
    parsed_limit = parse_limit(limit)
    if parsed_limit is None or parsed_limit >= len(questions):
        return list(questions)

    total_weight = sum(difficulty_weight(question) for question in questions)
    target_total = (total_weight / len(questions)) * parsed_limit

    buckets: dict[Difficulty, deque[Question]] = {
        Difficulty.HARD: deque(),
        Difficulty.MEDIUM: deque(),
        Difficulty.EASY: deque(),
    }
    for question in questions:
        buckets[question.difficulty].append(question)

    selected: list[Question] = []
    current_score = 0
    while len(selected) < parsed_limit:
        questions_needed = parsed_limit - len(selected)
        avg_needed = (target_total - current_score) / questions_needed
        bucket = _choose_bucket(buckets, avg_needed)
        if bucket is None:
            logger.warning(
                "Question pool exhausted after %d of %d questions", len(selected), parsed_limit
            )
            break
        question = bucket.popleft()
        selected.append(question)
        current_score += difficulty_weight(question)

    logger.debug(
        "Selected %d/%d questions (score %d, target %.2f)",
        len(selected),
        len(questions),
        current_score,
        target_total,
    )
    return selected


def _choose_bucket(
    buckets: dict[Difficulty, deque[Question]], avg_needed: float
) -> deque[Question] | None:
    hard = buckets[Difficulty.HARD]
    medium = buckets[Difficulty.MEDIUM]
    easy = buckets[Difficulty.EASY]
    if avg_needed >= HARD_PICK_THRESHOLD and hard:
        return hard
    if avg_needed <= EASY_PICK_THRESHOLD and easy:
        return easy
    for bucket in (medium, hard, easy):
        if bucket:
            return bucket
    return None


def shuffle_sequence(items: Sequence[T], rng: random.Random | None = None) -> list[T]:
    """Return a uniformly shuffled copy (Fisher-Yates); the input is untouched."""
    rng = rng or random.Random()
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def shuffle_options_of(question: Question, rng: random.Random | None = None) -> Question:
    """Return a copy of `question` with its option texts permuted across the keys.

    Keys are reassigned from the start of the fixed alphabet and
    `correct_answer` follows the originally-correct option.
    """
    original_keys = question.option_keys()
    pairs = shuffle_sequence([(key, question.options[key]) for key in original_keys], rng)

    new_options: dict[str, str] = {}
    new_correct = question.correct_answer
    for new_key, (old_key, text) in zip(OPTION_KEYS, pairs):
        new_options[new_key] = text
        if old_key == question.correct_answer:
            new_correct = new_key

    return replace(question, options=new_options, correct_answer=new_correct)


def build_student_paper(exam: ExamDefinition, rng: random.Random | None = None) -> list[Question]:
    """Apply selection, question shuffle, and option shuffle in that order."""
    rng = rng or random.Random()
    settings = exam.settings

    paper = select_subset(exam.questions, settings.questions_per_student)
    if settings.shuffle_questions:
        paper = shuffle_sequence(paper, rng)
    if settings.shuffle_options:
        paper = [shuffle_options_of(question, rng) for question in paper]

    logger.info(
        "Built paper of %d question(s) for exam %s (shuffle questions=%s, options=%s)",
        len(paper),
        exam.exam_id,
        settings.shuffle_questions,
        settings.shuffle_options,
    )
    return paper
