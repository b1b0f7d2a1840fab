"""
Question Bank Operations.

Operations on bank questions that touch more than one row: archiving (which
pulls the question out of evaluations still being composed) and the
multiple choice option list, whose order stays dense and whose selection
limit follows the number of correct options.
"""

from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from evaldesk.core.database.base import new_id, utc_now
from evaldesk.core.database.entities import Evaluation, EvaluationToQuestion, Question
from evaldesk.core.database.repositories import EvaluationRepository
from evaldesk.core.logging_config import get_logger
from evaldesk.core.models import EvaluationPhase, QuestionStatus
from evaldesk.server.errors import not_found

logger = get_logger(__name__)

EDITABLE_PHASES = (
    EvaluationPhase.NEW,
    EvaluationPhase.DRAFT,
    EvaluationPhase.SETTINGS,
    EvaluationPhase.COMPOSITION,
)


async def archive_question(session: AsyncSession, question: Question) -> List[str]:
    """Archive a question and remove it from evaluations still in composition. Does not commit.

    Returns:
        Ids of the evaluations the question was removed from
    """
    stmt = (
        select(EvaluationToQuestion.evaluation_id)
        .join(Evaluation, Evaluation.id == EvaluationToQuestion.evaluation_id)
        .where(EvaluationToQuestion.question_id == question.id, Evaluation.phase.in_(EDITABLE_PHASES))
    )
    evaluation_ids = list((await session.execute(stmt)).scalars().all())
    if evaluation_ids:
        await session.execute(
            delete(EvaluationToQuestion).where(
                EvaluationToQuestion.question_id == question.id,
                EvaluationToQuestion.evaluation_id.in_(evaluation_ids),
            )
        )
        repository = EvaluationRepository(session)
        for evaluation_id in evaluation_ids:
            await repository.compact_order(evaluation_id)
        logger.info(f"Archived question {question.id} removed from {len(evaluation_ids)} evaluation(s)")

    question.status = QuestionStatus.ARCHIVED
    question.updated_at = utc_now()
    session.add(question)
    return evaluation_ids


def unarchive_question(question: Question) -> Question:
    question.status = QuestionStatus.ACTIVE
    question.updated_at = utc_now()
    return question


def _with_options(question: Question, options: List[Dict[str, Any]]) -> Dict[str, Any]:
    """New type-specific document with the options renumbered and the limit synchronised."""
    options = sorted(options, key=lambda option: option.get("order", 0))
    for index, option in enumerate(options):
        option["order"] = index
    config = dict(question.type_specific or {})
    config["options"] = options
    if config.get("activate_selection_limit"):
        config["selection_limit"] = sum(1 for option in options if option.get("is_correct"))
    return config


def add_option(question: Question, text: str, is_correct: bool) -> Dict[str, Any]:
    options = [dict(option) for option in (question.type_specific or {}).get("options") or []]
    option = {"id": new_id(), "text": text, "is_correct": is_correct, "order": len(options)}
    options.append(option)
    question.type_specific = _with_options(question, options)
    return option


def update_option(question: Question, option_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    options = [dict(option) for option in (question.type_specific or {}).get("options") or []]
    target = next((option for option in options if option.get("id") == option_id), None)
    if target is None:
        raise not_found("Option not found")
    if changes.get("order") is not None:
        # Move the option: the others keep their relative order around it
        options.remove(target)
        options.insert(min(max(int(changes["order"]), 0), len(options)), target)
        for index, option in enumerate(options):
            option["order"] = index
    for key in ("text", "is_correct"):
        if changes.get(key) is not None:
            target[key] = changes[key]
    question.type_specific = _with_options(question, options)
    return target


def delete_option(question: Question, option_id: str) -> None:
    options = [dict(option) for option in (question.type_specific or {}).get("options") or []]
    remaining = [option for option in options if option.get("id") != option_id]
    if len(remaining) == len(options):
        raise not_found("Option not found")
    question.type_specific = _with_options(question, remaining)
