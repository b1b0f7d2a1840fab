"""
Evaluation Phase Lifecycle.

Ordering helpers over ``EvaluationPhase`` and the side effects of a phase
change:

- entering ``REGISTRATION`` (or any later phase while the composition still
  references bank questions) freezes the composition: each bank question is
  replaced by an ``EVAL`` copy owned by the evaluation, keeping order, points
  and title;
- entering ``IN_PROGRESS`` stamps ``start_at``, computes ``end_at`` when the
  duration is active and marks the source bank questions as used;
- leaving ``IN_PROGRESS`` for ``GRADING`` stamps ``end_at``.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from evaldesk.core.database.base import utc_now
from evaldesk.core.database.entities import Evaluation, EvaluationToQuestion, Question
from evaldesk.core.database.repositories import EvaluationRepository
from evaldesk.core.logging_config import get_logger
from evaldesk.core.models import EvaluationPhase, QuestionSource, QuestionUsageStatus
from evaldesk.server.services.question_copy import copy_question

logger = get_logger(__name__)

JOINABLE_PHASES = (EvaluationPhase.REGISTRATION, EvaluationPhase.IN_PROGRESS)


def phase_greater_than(phase: EvaluationPhase, other: EvaluationPhase) -> bool:
    return EvaluationPhase(phase).rank > EvaluationPhase(other).rank


def phase_greater_than_or_equal(phase: EvaluationPhase, other: EvaluationPhase) -> bool:
    return EvaluationPhase(phase).rank >= EvaluationPhase(other).rank


def is_joinable(phase: EvaluationPhase) -> bool:
    return phase in JOINABLE_PHASES


def is_finished(phase: EvaluationPhase) -> bool:
    return phase == EvaluationPhase.FINISHED


def is_composition_editable(phase: EvaluationPhase) -> bool:
    """Composition can change until the evaluation is frozen at registration."""
    return not phase_greater_than(phase, EvaluationPhase.COMPOSITION)


def planned_end(evaluation: Evaluation, start: datetime) -> datetime:
    return start + timedelta(hours=evaluation.duration_hours or 0, minutes=evaluation.duration_minutes or 0)


async def freeze_composition(session: AsyncSession, evaluation: Evaluation) -> int:
    """Replace every non-``EVAL`` question of the composition by an ``EVAL`` copy. Does not commit.

    Returns:
        Number of questions frozen
    """
    frozen = 0
    for entry, question in await EvaluationRepository(session).composition(evaluation.id):
        if question.source == QuestionSource.EVAL:
            continue
        replica = await copy_question(session, question, QuestionSource.EVAL)
        session.add(
            EvaluationToQuestion(
                evaluation_id=evaluation.id,
                question_id=replica.id,
                order=entry.order,
                points=entry.points,
                grading_points=entry.grading_points,
                title=entry.title,
            )
        )
        await session.delete(entry)
        frozen += 1
    if frozen:
        await session.flush()
        logger.info(f"Froze {frozen} question(s) of evaluation {evaluation.id}")
    return frozen


async def _mark_sources_used(session: AsyncSession, evaluation: Evaluation, now: datetime) -> None:
    questions: List[Question] = [question for _, question in await EvaluationRepository(session).composition(evaluation.id)]
    for question in questions:
        if not question.source_question_id:
            continue
        source = await session.get(Question, question.source_question_id)
        if source is None or source.source not in (QuestionSource.BANK, QuestionSource.COPY):
            continue
        source.usage_status = QuestionUsageStatus.USED
        source.last_used = now
        session.add(source)


async def apply_phase(session: AsyncSession, evaluation: Evaluation, phase: EvaluationPhase) -> Evaluation:
    """Move an evaluation to ``phase`` and run the transition side effects. Does not commit."""
    previous = evaluation.phase
    now = utc_now()

    if phase_greater_than_or_equal(phase, EvaluationPhase.REGISTRATION):
        await freeze_composition(session, evaluation)

    if phase == EvaluationPhase.IN_PROGRESS and previous != EvaluationPhase.IN_PROGRESS:
        evaluation.start_at = now
        evaluation.end_at = planned_end(evaluation, now) if evaluation.duration_active else None
        await _mark_sources_used(session, evaluation, now)

    if previous == EvaluationPhase.IN_PROGRESS and phase == EvaluationPhase.GRADING:
        evaluation.end_at = now

    evaluation.phase = phase
    evaluation.updated_at = now
    session.add(evaluation)
    logger.info(f"Evaluation {evaluation.id} phase {previous.value} -> {phase.value}")
    return evaluation
