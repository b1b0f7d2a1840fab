"""
Evaluation Composition Endpoints.

The ordered list of questions of an evaluation with their points, grading
scale and custom title. Questions can be added, edited and removed until the
evaluation reaches registration; afterwards the composition is frozen.

All routes live under `/{group_scope}/evaluations/{evaluation_id}/composition`.
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from evaldesk.core.database import get_session
from evaldesk.core.database.entities import Evaluation, EvaluationToQuestion
from evaldesk.core.database.repositories import EvaluationRepository, QuestionRepository
from evaldesk.core.database.schemas.evaluations import (
    CompositionAdd,
    CompositionEntryRead,
    CompositionReorder,
    CompositionUpdate,
)
from evaldesk.core.logging_config import get_logger
from evaldesk.core.models import QuestionStatus, Role
from evaldesk.server.core.constant import DEFAULT_QUESTION_POINTS
from evaldesk.server.errors import bad_request, forbidden, not_found
from evaldesk.server.services.authorization import (
    GroupContext,
    load_group_evaluation,
    load_group_question,
    require_group,
    touch,
)
from evaldesk.server.services.phases import is_composition_editable

logger = get_logger(__name__)

router = APIRouter()

professor_group = require_group(Role.PROFESSOR)


async def composition_read(session: AsyncSession, evaluation_id: str) -> List[CompositionEntryRead]:
    return [
        CompositionEntryRead(
            question_id=entry.question_id,
            order=entry.order,
            points=entry.points,
            grading_points=entry.grading_points,
            title=entry.title,
            type=question.type,
            source_question_id=question.source_question_id,
        )
        for entry, question in await EvaluationRepository(session).composition(evaluation_id)
    ]


def _ensure_editable(evaluation: Evaluation) -> None:
    if not is_composition_editable(evaluation.phase):
        raise forbidden("The composition cannot be changed once the evaluation is in registration")


@router.get(
    "",
    response_model=List[CompositionEntryRead],
    summary="List Composition",
    description="Questions of the evaluation in order.",
)
async def list_composition(
    evaluation_id: str,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> List[CompositionEntryRead]:
    """
    List the composition of an evaluation.
    """
    evaluation = await load_group_evaluation(session, ctx.group, evaluation_id)
    return await composition_read(session, evaluation.id)


@router.post(
    "",
    response_model=List[CompositionEntryRead],
    status_code=status.HTTP_201_CREATED,
    summary="Add Questions",
    description="Append bank questions to the composition.",
    responses={
        400: {"description": "Archived question"},
        403: {"description": "Composition frozen"},
    },
)
async def add_questions(
    evaluation_id: str,
    payload: CompositionAdd,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> List[CompositionEntryRead]:
    """
    Add questions to an evaluation.

    Questions are appended in the given order. Points default to the points
    the question had in its last evaluation, or 4; the title defaults to the
    question title. Questions already in the composition are skipped.

    - **question_ids**: Bank questions of the group.
    """
    evaluation = await load_group_evaluation(session, ctx.group, evaluation_id)
    _ensure_editable(evaluation)
    repository = EvaluationRepository(session)
    questions_repository = QuestionRepository(session)
    order = len(await repository.composition(evaluation.id))

    for question_id in dict.fromkeys(payload.question_ids):
        question = await load_group_question(session, ctx.group, question_id)
        if question.status == QuestionStatus.ARCHIVED:
            raise bad_request(f"Question {question.id} is archived")
        if await repository.get_entry(evaluation.id, question.id) is not None:
            continue
        last = await questions_repository.last_usage(question.id)
        points = last.points if last is not None else DEFAULT_QUESTION_POINTS
        session.add(
            EvaluationToQuestion(
                evaluation_id=evaluation.id,
                question_id=question.id,
                order=order,
                points=points,
                grading_points=last.grading_points if last is not None else points,
                title=question.title,
            )
        )
        order += 1

    touch(session, evaluation)
    await session.commit()
    return await composition_read(session, evaluation.id)


@router.put(
    "/{question_id}",
    response_model=CompositionEntryRead,
    summary="Update Entry",
    description="Change the points, grading scale or title of a composed question.",
    responses={
        403: {"description": "Composition frozen"},
        404: {"description": "Question not in the composition"},
    },
)
async def update_entry(
    evaluation_id: str,
    question_id: str,
    payload: CompositionUpdate,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> CompositionEntryRead:
    """
    Update a composition entry.

    - **points**: Weight of the question in the evaluation.
    - **grading_points**: Scale professors grade the question on.
    - **title**: Title shown to students.
    """
    evaluation = await load_group_evaluation(session, ctx.group, evaluation_id)
    _ensure_editable(evaluation)
    entry = await EvaluationRepository(session).get_entry(evaluation.id, question_id)
    if entry is None:
        raise not_found("Question not found in evaluation")
    for key, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(entry, key, value)
    session.add(entry)
    touch(session, evaluation)
    await session.commit()
    return next(read for read in await composition_read(session, evaluation.id) if read.question_id == question_id)


@router.put(
    "",
    response_model=List[CompositionEntryRead],
    summary="Reorder",
    description="Set the order of the composition.",
    responses={400: {"description": "The list does not match the composition"}},
)
async def reorder(
    evaluation_id: str,
    payload: CompositionReorder,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> List[CompositionEntryRead]:
    """
    Reorder the composition.

    - **question_ids**: Every question of the composition, in the new order.
    """
    evaluation = await load_group_evaluation(session, ctx.group, evaluation_id)
    _ensure_editable(evaluation)
    entries = {entry.question_id: entry for entry, _ in await EvaluationRepository(session).composition(evaluation.id)}
    if sorted(entries) != sorted(payload.question_ids):
        raise bad_request("The new order must list every question of the composition exactly once")
    for index, question_id in enumerate(payload.question_ids):
        entries[question_id].order = index
        session.add(entries[question_id])
    touch(session, evaluation)
    await session.commit()
    return await composition_read(session, evaluation.id)


@router.delete(
    "/{question_id}",
    response_model=List[CompositionEntryRead],
    summary="Remove Question",
    description="Remove a question from the composition and compact the order.",
)
async def remove_question(
    evaluation_id: str,
    question_id: str,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> List[CompositionEntryRead]:
    """
    Remove a question from the composition.
    """
    evaluation = await load_group_evaluation(session, ctx.group, evaluation_id)
    _ensure_editable(evaluation)
    repository = EvaluationRepository(session)
    entry = await repository.get_entry(evaluation.id, question_id)
    if entry is None:
        raise not_found("Question not found in evaluation")
    await session.delete(entry)
    await session.flush()
    await repository.compact_order(evaluation.id)
    touch(session, evaluation)
    await session.commit()
    return await composition_read(session, evaluation.id)
