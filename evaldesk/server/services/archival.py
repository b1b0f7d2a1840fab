"""
Archival Workflow.

Administrative lifecycle of the student data of evaluations that reached
the exam itself (``IN_PROGRESS``, ``GRADING`` or ``FINISHED``)::

    ACTIVE --mark--> MARKED_FOR_ARCHIVAL --archive--> ARCHIVED --purge--> PURGED
    ACTIVE --archive--> ARCHIVED
    ACTIVE --exclude--> EXCLUDED_FROM_ARCHIVAL
    ACTIVE --purge without archive--> PURGED_WITHOUT_ARCHIVAL
    MARKED_FOR_ARCHIVAL / ARCHIVED --back to active--> ACTIVE

Transitions only update the evaluation row; the purges delegate to
``purge_evaluation``.
"""

from __future__ import annotations

from datetime import date, datetime, time
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from evaldesk.core.database.base import utc_now
from evaldesk.core.database.entities import Evaluation, EvaluationToQuestion, Group, UserOnEvaluation
from evaldesk.core.database.schemas.archive import ArchiveEntryRead, ArchiveListMode
from evaldesk.core.database.schemas.evaluations import PurgeStats
from evaldesk.core.logging_config import get_logger
from evaldesk.core.models import ArchivalPhase, EvaluationPhase
from evaldesk.server.errors import bad_request
from evaldesk.server.services.purge import purge_evaluation

logger = get_logger(__name__)

ARCHIVABLE_PHASES = (EvaluationPhase.IN_PROGRESS, EvaluationPhase.GRADING, EvaluationPhase.FINISHED)
TODO_PHASES = (ArchivalPhase.ACTIVE, ArchivalPhase.ARCHIVED)
DONE_PHASES = (
    ArchivalPhase.PURGED,
    ArchivalPhase.PURGED_WITHOUT_ARCHIVAL,
    ArchivalPhase.EXCLUDED_FROM_ARCHIVAL,
)


def archive_mode_of(evaluation: Evaluation, now: datetime) -> Optional[ArchiveListMode]:
    """Listing bucket of an evaluation.

    Archived evaluations stay in the work queue until their data is purged. A
    marked evaluation moves to the work queue once its deadline has passed.
    """
    phase = evaluation.archival_phase
    if phase in DONE_PHASES:
        return ArchiveListMode.done
    if phase in TODO_PHASES:
        return ArchiveListMode.todo
    if phase == ArchivalPhase.MARKED_FOR_ARCHIVAL:
        deadline = evaluation.archival_deadline
        return ArchiveListMode.todo if deadline is not None and deadline < now else ArchiveListMode.pending
    return None


async def list_archive(session: AsyncSession, mode: ArchiveListMode) -> List[ArchiveEntryRead]:
    """Evaluations of the archival listing for one mode, most recently updated first."""
    students = (
        select(UserOnEvaluation.evaluation_id, func.count().label("n"))
        .group_by(UserOnEvaluation.evaluation_id)
        .subquery()
    )
    questions = (
        select(EvaluationToQuestion.evaluation_id, func.count().label("n"))
        .group_by(EvaluationToQuestion.evaluation_id)
        .subquery()
    )
    stmt = (
        select(Evaluation, Group, func.coalesce(students.c.n, 0), func.coalesce(questions.c.n, 0))
        .join(Group, Group.id == Evaluation.group_id)
        .outerjoin(students, students.c.evaluation_id == Evaluation.id)
        .outerjoin(questions, questions.c.evaluation_id == Evaluation.id)
        .where(Evaluation.phase.in_(ARCHIVABLE_PHASES))
        .order_by(Evaluation.updated_at.desc())
    )
    now = utc_now()
    entries = []
    for evaluation, group, student_count, question_count in (await session.execute(stmt)).all():
        if archive_mode_of(evaluation, now) != mode:
            continue
        entries.append(
            ArchiveEntryRead(
                id=evaluation.id,
                label=evaluation.label,
                phase=evaluation.phase,
                archival_phase=evaluation.archival_phase,
                archival_deadline=evaluation.archival_deadline,
                archived_at=evaluation.archived_at,
                archived_by_user_email=evaluation.archived_by_user_email,
                purged_at=evaluation.purged_at,
                purged_by_user_email=evaluation.purged_by_user_email,
                excluded_from_archival_comment=evaluation.excluded_from_archival_comment,
                group_scope=group.scope,
                group_label=group.label,
                students=int(student_count),
                questions=int(question_count),
                updated_at=evaluation.updated_at,
            )
        )
    return entries


def _require(evaluation: Evaluation, *phases: ArchivalPhase) -> None:
    if evaluation.archival_phase not in phases:
        allowed = ", ".join(phase.value for phase in phases)
        raise bad_request(
            f"Invalid archival transition from {evaluation.archival_phase.value} (expected {allowed})",
            error_id="invalid-archival-transition",
        )


def mark_for_archival(evaluation: Evaluation, deadline: date, today: Optional[date] = None) -> Evaluation:
    _require(evaluation, ArchivalPhase.ACTIVE)
    today = today or utc_now().date()
    if deadline < today:
        raise bad_request("Archival deadline cannot be in the past")
    evaluation.archival_phase = ArchivalPhase.MARKED_FOR_ARCHIVAL
    evaluation.archival_deadline = datetime.combine(deadline, time.min)
    evaluation.updated_at = utc_now()
    return evaluation


def archive(evaluation: Evaluation, user_email: str, archived_at: Optional[datetime] = None) -> Evaluation:
    """Archive now, or at the given date when provided."""
    if evaluation.archival_phase in (
        ArchivalPhase.ARCHIVED,
        ArchivalPhase.PURGED,
        ArchivalPhase.PURGED_WITHOUT_ARCHIVAL,
    ):
        raise bad_request(f"Evaluation is already {evaluation.archival_phase.value}")
    evaluation.archival_phase = ArchivalPhase.ARCHIVED
    evaluation.archived_at = archived_at or utc_now()
    evaluation.archived_by_user_email = user_email
    evaluation.updated_at = utc_now()
    return evaluation


def back_to_active(evaluation: Evaluation) -> Evaluation:
    _require(evaluation, ArchivalPhase.MARKED_FOR_ARCHIVAL, ArchivalPhase.ARCHIVED)
    evaluation.archival_phase = ArchivalPhase.ACTIVE
    evaluation.archival_deadline = None
    evaluation.archived_at = None
    evaluation.archived_by_user_email = None
    evaluation.updated_at = utc_now()
    return evaluation


def exclude_from_archival(evaluation: Evaluation, user_email: str, comment: str) -> Evaluation:
    _require(evaluation, ArchivalPhase.ACTIVE)
    if not comment or not comment.strip():
        raise bad_request("A comment is required to exclude an evaluation from archival")
    now = utc_now()
    evaluation.archival_phase = ArchivalPhase.EXCLUDED_FROM_ARCHIVAL
    evaluation.excluded_from_archival_at = now
    evaluation.excluded_from_archival_by_user_email = user_email
    evaluation.excluded_from_archival_comment = comment.strip()
    evaluation.updated_at = now
    return evaluation


async def purge_archived(session: AsyncSession, evaluation: Evaluation, user_email: str) -> Tuple[str, PurgeStats]:
    _require(evaluation, ArchivalPhase.ARCHIVED)
    return await purge_evaluation(session, evaluation, user_email, ArchivalPhase.PURGED)


async def purge_without_archival(
    session: AsyncSession, evaluation: Evaluation, user_email: str
) -> Tuple[str, PurgeStats]:
    _require(evaluation, ArchivalPhase.ACTIVE)
    return await purge_evaluation(session, evaluation, user_email, ArchivalPhase.PURGED_WITHOUT_ARCHIVAL)
