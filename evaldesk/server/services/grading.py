"""
Grading Engine.

Automatic grading of a student answer from the question's type-specific
document, plus the coefficient converting professor grading points into
evaluation points.

Answer documents graded here (``student_answers.answer``):

- multipleChoice: ``{"option_ids": [...], "comment": str}``
- trueFalse: ``{"is_true": bool}``
- exactMatch: ``{"fields": [{"field_id": str, "value": str}]}``
- code writing: ``{"test_results": [{"passed": bool, ...}]}`` written by the sandbox
- code reading: ``{"outputs": [{"snippet_id": str, "output": str}]}``

Essay, web and database answers need a professor and stay ``UNGRADED``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from evaldesk.core.database.entities import Question, StudentAnswer, StudentQuestionGrading
from evaldesk.core.logging_config import get_logger
from evaldesk.core.models import (
    CodeQuestionType,
    MultipleChoiceGradingPolicy,
    QuestionType,
    StudentQuestionGradingStatus,
)

logger = get_logger(__name__)

MANUAL_TYPES = (QuestionType.essay, QuestionType.web, QuestionType.database)

_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}
_DELIMITED_REGEX = re.compile(r"^/(.*)/([a-z]*)$", re.DOTALL)


@dataclass
class GradingOutcome:
    status: StudentQuestionGradingStatus
    points_obtained: float


def compute_coefficient(grading_points: float, points: float) -> float:
    """Factor converting points obtained on the grading scale into evaluation points."""
    if not grading_points:
        return 1.0 if not points else 0.0
    return points / grading_points


def final_points(points_obtained: float, grading_points: float, points: float) -> float:
    return round(points_obtained * compute_coefficient(grading_points, points), 2)


def _auto(points: float) -> GradingOutcome:
    return GradingOutcome(StudentQuestionGradingStatus.AUTOGRADED, points)


def grade_multiple_choice(config: Dict[str, Any], points: float, answer: Dict[str, Any]) -> float:
    options = config.get("options") or []
    correct = {option["id"] for option in options if option.get("is_correct")}
    incorrect = {option["id"] for option in options if not option.get("is_correct")}
    selected = set(answer.get("option_ids") or [])

    policy = config.get("grading_policy") or MultipleChoiceGradingPolicy.ALL_OR_NOTHING.value
    if policy != MultipleChoiceGradingPolicy.GRADUAL_CREDIT.value:
        return points if selected == correct else 0.0

    correct_ratio = len(selected & correct) / len(correct) if correct else 1.0
    incorrect_ratio = len(selected & incorrect) / len(incorrect) if incorrect else 0.0
    ratio = correct_ratio - incorrect_ratio
    if ratio < 0 and not config.get("negative_marking"):
        ratio = 0.0
    if ratio >= 0 and ratio * 100 < float(config.get("threshold") or 0):
        ratio = 0.0
    return round(points * ratio, 2)


def compile_match_regex(expression: str) -> Optional["re.Pattern[str]"]:
    """Compile ``/pattern/flags`` or a plain pattern; None when invalid."""
    flags = 0
    pattern = expression or ""
    delimited = _DELIMITED_REGEX.match(pattern)
    if delimited:
        pattern = delimited.group(1)
        for flag in delimited.group(2):
            flags |= _REGEX_FLAGS.get(flag, 0)
    try:
        return re.compile(pattern, flags)
    except re.error:
        logger.warning(f"Invalid exact match expression: {expression!r}")
        return None


def grade_exact_match(config: Dict[str, Any], points: float, answer: Dict[str, Any]) -> float:
    values = {entry.get("field_id"): entry.get("value") or "" for entry in answer.get("fields") or []}
    for field in config.get("fields") or []:
        regex = compile_match_regex(field.get("match_regex", ""))
        if regex is None or regex.fullmatch(values.get(field.get("id"), "")) is None:
            return 0.0
    return points


def grade_code(config: Dict[str, Any], points: float, answer: Dict[str, Any]) -> float:
    if config.get("code_type") == CodeQuestionType.codeReading.value:
        snippets = (config.get("code_reading") or {}).get("snippets") or []
        outputs = {entry.get("snippet_id"): entry.get("output") or "" for entry in answer.get("outputs") or []}
        if snippets and all(
            outputs.get(snippet["id"], "").strip() == (snippet.get("output") or "").strip() for snippet in snippets
        ):
            return points
        return 0.0
    results = answer.get("test_results") or []
    return points if results and all(result.get("passed") for result in results) else 0.0


def _is_missing(question_type: QuestionType, answer: Optional[Dict[str, Any]]) -> bool:
    if not answer:
        return True
    if question_type == QuestionType.trueFalse:
        return answer.get("is_true") is None
    return False


def grade(question: Question, points: float, answer: Optional[Dict[str, Any]]) -> GradingOutcome:
    """Grade an answer against a question.

    Args:
        question: Question with its type-specific document
        points: Maximum points on the grading scale
        answer: Student answer document, None when the student gave none

    Returns:
        Grading status and points obtained
    """
    question_type = QuestionType(question.type)
    if question_type in MANUAL_TYPES:
        return GradingOutcome(StudentQuestionGradingStatus.UNGRADED, 0.0)
    if _is_missing(question_type, answer):
        return _auto(0.0)

    config = question.type_specific or {}
    if question_type == QuestionType.multipleChoice:
        return _auto(grade_multiple_choice(config, points, answer))
    if question_type == QuestionType.trueFalse:
        return _auto(points if bool(answer.get("is_true")) == bool(config.get("is_true", True)) else 0.0)
    if question_type == QuestionType.exactMatch:
        return _auto(grade_exact_match(config, points, answer))
    return _auto(grade_code(config, points, answer))


def apply_outcome(grading: StudentQuestionGrading, outcome: GradingOutcome) -> bool:
    """Write an automatic outcome on a grading unless a professor signed it.

    Returns:
        True when the grading was updated
    """
    if grading.status == StudentQuestionGradingStatus.GRADED:
        return False
    grading.status = outcome.status
    grading.points_obtained = outcome.points_obtained
    return True


async def regrade(
    session: AsyncSession, question: Question, grading_points: float, student_answer: StudentAnswer
) -> StudentQuestionGrading:
    """Re-run the automatic grading of a student answer. Does not commit."""
    grading = await session.get(StudentQuestionGrading, (student_answer.user_email, student_answer.question_id))
    if grading is None:
        grading = StudentQuestionGrading(user_email=student_answer.user_email, question_id=student_answer.question_id)
    if apply_outcome(grading, grade(question, grading_points, student_answer.answer)):
        session.add(grading)
    return grading
