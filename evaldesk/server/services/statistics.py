"""
Platform Usage Statistics.

Yearly activity figures for administrators. An academic year is written
``YYYY_YYYY`` and runs from September 1st of its first year to September 1st
of the next one. Groups whose scope is listed in
``STATISTICS_EXCLUDED_GROUPS`` (demo and test groups) are left out of every
figure.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from evaldesk.core.database.base import utc_now
from evaldesk.core.database.entities import (
    Evaluation,
    Group,
    Question,
    StudentAnswer,
    StudentQuestionGrading,
    User,
    UserOnEvaluation,
    UserOnGroup,
)
from evaldesk.core.database.schemas.archive import StatisticsRead
from evaldesk.core.logging_config import get_logger
from evaldesk.core.models import EvaluationPhase, QuestionSource, Role, StudentAnswerStatus
from evaldesk.server.core.config import settings
from evaldesk.server.errors import bad_request

logger = get_logger(__name__)

ACADEMIC_YEAR_PATTERN = re.compile(r"^(\d{4})_(\d{4})$")
FALLBACK_YEARS = 5


def parse_academic_year(academic_year: str) -> Tuple[datetime, datetime]:
    """Date range ``[start, end)`` of an academic year.

    Raises:
        ApiError: 400 on a malformed year or when the second year is not the first plus one.
    """
    match = ACADEMIC_YEAR_PATTERN.match(academic_year or "")
    if not match:
        raise bad_request("Invalid academic year format. Expected format: YYYY_YYYY")
    start_year, end_year = int(match.group(1)), int(match.group(2))
    if end_year != start_year + 1:
        raise bad_request("Invalid academic year. End year must be start year + 1")
    return datetime(start_year, 9, 1), datetime(end_year, 9, 1)


def academic_year_of(day: date) -> str:
    start = day.year if day.month >= 9 else day.year - 1
    return f"{start}_{start + 1}"


async def academic_years(session: AsyncSession, today: Optional[date] = None) -> List[str]:
    """Academic years with student activity, most recent first; the last five when there is none."""
    first, last = (await session.execute(select(func.min(StudentAnswer.created_at), func.max(StudentAnswer.created_at)))).one()
    if first is None or last is None:
        current = int(academic_year_of(today or utc_now().date()).split("_")[0])
        return [f"{year}_{year + 1}" for year in range(current, current - FALLBACK_YEARS, -1)]
    first_year = int(academic_year_of(first).split("_")[0])
    last_year = int(academic_year_of(last).split("_")[0])
    return [f"{year}_{year + 1}" for year in range(last_year, first_year - 1, -1)]


async def compute_statistics(session: AsyncSession, academic_year: str) -> StatisticsRead:
    start, end = parse_academic_year(academic_year)
    excluded_scopes = list(settings.statistics.excluded_groups)
    excluded_ids = list(
        (await session.execute(select(Group.id).where(Group.scope.in_(excluded_scopes)))).scalars().all()
    )

    def in_range(column):
        return (column >= start, column < end)

    # Professors who signed at least one grading on a question of a counted group
    signer_stmt = (
        select(StudentQuestionGrading.signed_by_user_email)
        .join(Question, Question.id == StudentQuestionGrading.question_id)
        .where(StudentQuestionGrading.signed_by_user_email.is_not(None), *in_range(StudentQuestionGrading.created_at))
        .where(Question.group_id.not_in(excluded_ids))
        .distinct()
    )
    signers = set((await session.execute(signer_stmt)).scalars().all())
    professors = sorted(
        user.email
        for user in (await session.execute(select(User).where(User.email.in_(signers)))).scalars().all()
        if user.has_any_role(Role.PROFESSOR)
    )

    participant_stmt = (
        select(User)
        .join(UserOnEvaluation, UserOnEvaluation.user_email == User.email)
        .where(*in_range(UserOnEvaluation.created_at))
        .distinct()
    )
    students = [
        user for user in (await session.execute(participant_stmt)).scalars().all() if list(user.roles or []) == [Role.STUDENT.value]
    ]

    finished = list(
        (
            await session.execute(
                select(Evaluation).where(
                    Evaluation.phase == EvaluationPhase.FINISHED,
                    Evaluation.group_id.not_in(excluded_ids),
                    *in_range(Evaluation.created_at),
                )
            )
        ).scalars().all()
    )
    real_evaluations = 0
    for evaluation in finished:
        members = set(
            (
                await session.execute(
                    select(User.email)
                    .join(UserOnGroup, UserOnGroup.user_id == User.id)
                    .where(UserOnGroup.group_id == evaluation.group_id)
                )
            ).scalars().all()
        )
        participants = (
            await session.execute(select(UserOnEvaluation.user_email).where(UserOnEvaluation.evaluation_id == evaluation.id))
        ).scalars().all()
        if any(email not in members for email in participants):
            real_evaluations += 1

    questions = (
        await session.execute(
            select(func.count())
            .select_from(Question)
            .where(
                Question.source == QuestionSource.BANK,
                Question.group_id.not_in(excluded_ids),
                *in_range(Question.created_at),
            )
        )
    ).scalar_one()
    submitted = (
        await session.execute(
            select(func.count())
            .select_from(StudentAnswer)
            .join(Question, Question.id == StudentAnswer.question_id)
            .where(
                StudentAnswer.status == StudentAnswerStatus.SUBMITTED,
                Question.group_id.not_in(excluded_ids),
                *in_range(StudentAnswer.created_at),
            )
        )
    ).scalar_one()
    groups = (
        await session.execute(
            select(func.count()).select_from(Group).where(Group.id.not_in(excluded_ids), *in_range(Group.created_at))
        )
    ).scalar_one()

    logger.debug(f"Statistics computed for {academic_year}")
    return StatisticsRead(
        academic_year=academic_year,
        start=start,
        end=end,
        excluded_groups=excluded_scopes,
        counts={
            "professors": len(professors),
            "students": len(students),
            "evaluations": len(finished),
            "real_evaluations": real_evaluations,
            "questions": int(questions),
            "submitted_answers": int(submitted),
            "groups": int(groups),
        },
        active_professors=professors,
    )
