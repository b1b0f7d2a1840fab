"""
Evaluation Purge Transaction.

Deletes the student data of an evaluation (answers, gradings, annotations,
code files and their history, database queries) while keeping the
evaluation, its composition and its roster. The deletes run in a fixed order
inside the caller's session and are committed together with the new
archival state; any failure rolls everything back and propagates.
"""

from __future__ import annotations

from typing import List, Tuple

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from evaldesk.core.database.base import utc_now
from evaldesk.core.database.entities import (
    Annotation,
    DatabaseQuery,
    Evaluation,
    EvaluationToQuestion,
    File,
    StudentAnswer,
    StudentAnswerCodeHistory,
    StudentAnswerCodeToFile,
    StudentAnswerDatabaseToQuery,
    StudentQuestionGrading,
    UserOnEvaluation,
)
from evaldesk.core.database.schemas.evaluations import PurgeStats
from evaldesk.core.logging_config import get_logger
from evaldesk.core.models import ArchivalPhase
from evaldesk.core.monitoring import log_purge

logger = get_logger(__name__)

NOTHING_TO_PURGE = "Nothing to purge - evaluation updated to purged state"
PURGED = "Evaluation data purged successfully"


async def _scope(session: AsyncSession, evaluation_id: str) -> Tuple[List[str], List[str]]:
    question_ids = (
        await session.execute(
            select(EvaluationToQuestion.question_id).where(EvaluationToQuestion.evaluation_id == evaluation_id)
        )
    ).scalars().all()
    emails = (
        await session.execute(
            select(UserOnEvaluation.user_email).where(UserOnEvaluation.evaluation_id == evaluation_id)
        )
    ).scalars().all()
    return list(question_ids), list(emails)


def _mark_purged(evaluation: Evaluation, phase: ArchivalPhase, user_email: str) -> None:
    now = utc_now()
    evaluation.archival_phase = phase
    evaluation.purged_at = now
    evaluation.purged_by_user_email = user_email
    evaluation.updated_at = now


async def purge_evaluation(
    session: AsyncSession,
    evaluation: Evaluation,
    user_email: str,
    phase: ArchivalPhase = ArchivalPhase.PURGED,
) -> Tuple[str, PurgeStats]:
    """Purge the student data of an evaluation and commit.

    Args:
        session: Async session; committed on success, rolled back on failure
        evaluation: Evaluation to purge
        user_email: Email recorded as ``purged_by_user_email``
        phase: Archival phase set on the evaluation

    Returns:
        ``(message, stats)``
    """
    question_ids, emails = await _scope(session, evaluation.id)
    stats = PurgeStats()

    if not question_ids or not emails:
        _mark_purged(evaluation, phase, user_email)
        session.add(evaluation)
        await session.commit()
        await session.refresh(evaluation)
        logger.info(f"Evaluation {evaluation.id} had no student data, marked {phase.value}")
        return NOTHING_TO_PURGE, stats

    def owned(model):
        return (model.user_email.in_(emails), model.question_id.in_(question_ids))

    try:
        query_ids = (
            await session.execute(select(StudentAnswerDatabaseToQuery.query_id).where(*owned(StudentAnswerDatabaseToQuery)))
        ).scalars().all()
        file_ids = (
            await session.execute(select(StudentAnswerCodeToFile.file_id).where(*owned(StudentAnswerCodeToFile)))
        ).scalars().all()

        if query_ids:
            result = await session.execute(delete(DatabaseQuery).where(DatabaseQuery.id.in_(query_ids)))
            stats.student_db_queries = result.rowcount or 0
        if file_ids:
            await session.execute(delete(Annotation).where(Annotation.file_id.in_(file_ids)))
            result = await session.execute(delete(File).where(File.id.in_(file_ids)))
            stats.files = result.rowcount or 0

        result = await session.execute(delete(StudentAnswerCodeHistory).where(*owned(StudentAnswerCodeHistory)))
        stats.code_history = result.rowcount or 0

        await session.execute(delete(StudentAnswerDatabaseToQuery).where(*owned(StudentAnswerDatabaseToQuery)))
        await session.execute(delete(StudentAnswerCodeToFile).where(*owned(StudentAnswerCodeToFile)))
        await session.execute(delete(StudentQuestionGrading).where(*owned(StudentQuestionGrading)))
        await session.execute(delete(Annotation).where(*owned(Annotation)))

        result = await session.execute(delete(StudentAnswer).where(*owned(StudentAnswer)))
        stats.student_answers = result.rowcount or 0

        _mark_purged(evaluation, phase, user_email)
        session.add(evaluation)
        await session.commit()
    except Exception:
        await session.rollback()
        logger.error(f"Purge of evaluation {evaluation.id} failed, transaction rolled back", exc_info=True)
        raise

    await session.refresh(evaluation)
    logger.info(f"Purged evaluation {evaluation.id}: {stats.model_dump()}")
    log_purge(evaluation.id, user_email, stats.model_dump())
    return PURGED, stats
