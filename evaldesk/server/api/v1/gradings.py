"""
Grading and Annotation Endpoints.

Professors sign the grading of a student answer (overriding the automatic
grading) or unsign it to fall back to the automatic result, and leave
annotations on answers or on individual code files.

All routes live under `/{group_scope}`.
"""

from __future__ import annotations

from typing import Tuple

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from evaldesk.core.database import get_session
from evaldesk.core.database.base import utc_now
from evaldesk.core.database.entities import (
    Annotation,
    Evaluation,
    EvaluationToQuestion,
    Question,
    StudentQuestionGrading,
)
from evaldesk.core.database.schemas.answers import AnnotationRead, AnnotationUpsert, GradingRead, GradingUpdate
from evaldesk.core.logging_config import get_logger
from evaldesk.core.models import Role, StudentQuestionGradingStatus
from evaldesk.server.errors import bad_request, not_found
from evaldesk.server.services.authorization import GroupContext, ensure_not_purged, load_group_question, require_group
from evaldesk.server.services.grading import grade
from evaldesk.server.services.student import get_student_answer

logger = get_logger(__name__)

router = APIRouter()

professor_group = require_group(Role.PROFESSOR)


async def _evaluation_question(
    session: AsyncSession, ctx: GroupContext, question_id: str
) -> Tuple[Evaluation, EvaluationToQuestion, Question]:
    """Question of the group with the composition entry and evaluation that own it."""
    question = await load_group_question(session, ctx.group, question_id)
    stmt = (
        select(EvaluationToQuestion, Evaluation)
        .join(Evaluation, Evaluation.id == EvaluationToQuestion.evaluation_id)
        .where(EvaluationToQuestion.question_id == question.id)
    )
    row = (await session.execute(stmt)).first()
    if row is None:
        raise not_found("Question not found in evaluation")
    entry, evaluation = row[0], row[1]
    ensure_not_purged(evaluation)
    return evaluation, entry, question


@router.put(
    "/gradings",
    response_model=GradingRead,
    summary="Grade Answer",
    description="Sign or unsign the grading of a student answer.",
    responses={
        400: {"description": "Points out of range"},
        404: {"description": "Answer not found"},
        410: {"description": "Student data purged"},
    },
)
async def update_grading(
    payload: GradingUpdate,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> GradingRead:
    """
    Grade a student answer.

    Signing marks the grading GRADED with the given points and records the
    professor. Unsigning recomputes the automatic grading of the answer.

    - **user_email** / **question_id**: Answer to grade.
    - **points_obtained**: Between 0 and the grading points of the question.
    - **comment**: Feedback shown in consultation.
    - **signed**: False reverts to the automatic grading.
    """
    _, entry, question = await _evaluation_question(session, ctx, payload.question_id)
    answer = await get_student_answer(session, payload.user_email, question.id)
    grading = await session.get(StudentQuestionGrading, (answer.user_email, answer.question_id))
    if grading is None:
        grading = StudentQuestionGrading(user_email=answer.user_email, question_id=answer.question_id)

    if payload.comment is not None:
        grading.comment = payload.comment

    if payload.signed:
        points = grading.points_obtained if payload.points_obtained is None else payload.points_obtained
        if points < 0 or points > entry.grading_points:
            raise bad_request(f"Points must be between 0 and {entry.grading_points}")
        grading.points_obtained = points
        grading.status = StudentQuestionGradingStatus.GRADED
        grading.signed_by_user_email = ctx.user.email
    else:
        outcome = grade(question, entry.grading_points, answer.answer)
        grading.status = outcome.status
        grading.points_obtained = outcome.points_obtained
        grading.signed_by_user_email = None

    session.add(grading)
    await session.commit()
    await session.refresh(grading)
    logger.info(
        f"Grading of {grading.user_email} on {grading.question_id} set to {grading.status.value} by {ctx.user.email}"
    )
    return GradingRead.model_validate(grading)


@router.put(
    "/annotations",
    response_model=AnnotationRead,
    summary="Upsert Annotation",
    description="Create or replace the annotation of an answer or of one of its code files.",
)
async def upsert_annotation(
    payload: AnnotationUpsert,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> AnnotationRead:
    """
    Upsert an annotation.

    There is at most one annotation per answer and file; the answer-level
    annotation has no file.

    - **user_email** / **question_id**: Annotated answer.
    - **file_id**: Annotated code file, optional.
    - **content**: Annotation text.
    """
    await _evaluation_question(session, ctx, payload.question_id)
    await get_student_answer(session, payload.user_email, payload.question_id)
    stmt = select(Annotation).where(
        Annotation.user_email == payload.user_email,
        Annotation.question_id == payload.question_id,
        Annotation.file_id == payload.file_id if payload.file_id else Annotation.file_id.is_(None),
    )
    annotation = (await session.execute(stmt)).scalars().first()
    if annotation is None:
        annotation = Annotation(
            user_email=payload.user_email,
            question_id=payload.question_id,
            file_id=payload.file_id,
            content=payload.content,
            created_by_email=ctx.user.email,
        )
    else:
        annotation.content = payload.content
        annotation.updated_at = utc_now()
    session.add(annotation)
    await session.commit()
    await session.refresh(annotation)
    return AnnotationRead.model_validate(annotation)


@router.delete(
    "/annotations/{annotation_id}",
    summary="Delete Annotation",
    responses={404: {"description": "Annotation not found"}},
)
async def delete_annotation(
    annotation_id: str,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
):
    """
    Delete an annotation.
    """
    annotation = await session.get(Annotation, annotation_id)
    if annotation is None:
        raise not_found("Annotation not found")
    await _evaluation_question(session, ctx, annotation.question_id)
    await session.delete(annotation)
    await session.commit()
    return {"message": "Annotation deleted"}
