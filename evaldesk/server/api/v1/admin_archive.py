"""
Archival Administration Endpoints.

Archivists and super administrators follow the evaluations that were run
and decide what happens to their student data: mark them for archival with
a deadline, archive them, send them back to active, exclude them from
archival, or purge the student data with or without archiving first.

All routes live under `/admin/archive`.
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from evaldesk.core.database import get_session
from evaldesk.core.database.entities import Evaluation
from evaldesk.core.database.schemas.archive import (
    ArchiveEntryRead,
    ArchiveListMode,
    ArchiveWithDate,
    ExcludeFromArchival,
    MarkForArchival,
)
from evaldesk.core.database.schemas.evaluations import EvaluationRead, PurgeResult
from evaldesk.core.database.schemas.groups import SessionUser
from evaldesk.core.logging_config import get_logger
from evaldesk.core.models import Role
from evaldesk.server.services import archival
from evaldesk.server.services.authorization import load_evaluation, require_roles

logger = get_logger(__name__)

router = APIRouter()

archivist = require_roles(Role.SUPER_ADMIN, Role.ARCHIVIST)
super_admin = require_roles(Role.SUPER_ADMIN)


async def _save(session: AsyncSession, evaluation: Evaluation) -> EvaluationRead:
    session.add(evaluation)
    await session.commit()
    await session.refresh(evaluation)
    return EvaluationRead.model_validate(evaluation)


@router.get(
    "",
    response_model=List[ArchiveEntryRead],
    summary="Archival List",
    description="Run evaluations grouped by what remains to be done with their student data.",
)
async def list_archive(
    mode: ArchiveListMode = ArchiveListMode.todo,
    _: SessionUser = Depends(archivist),
    session: AsyncSession = Depends(get_session),
) -> List[ArchiveEntryRead]:
    """
    List evaluations for archival.

    Only evaluations in IN_PROGRESS, GRADING or FINISHED phase are listed.

    - **mode**:
        - `todo`: active, or marked for archival with no deadline or a past deadline
        - `pending`: marked for archival with a future deadline
        - `done`: archived, purged or excluded
    """
    return await archival.list_archive(session, mode)


@router.post(
    "/{evaluation_id}/mark",
    response_model=EvaluationRead,
    summary="Mark for Archival",
    responses={400: {"description": "Not ACTIVE or deadline in the past"}},
)
async def mark_for_archival(
    evaluation_id: str,
    payload: MarkForArchival,
    user: SessionUser = Depends(archivist),
    session: AsyncSession = Depends(get_session),
) -> EvaluationRead:
    """
    Mark an active evaluation for archival.

    - **archival_deadline**: Date by which the evaluation must be archived, today or later.
    """
    evaluation = await load_evaluation(session, evaluation_id)
    archival.mark_for_archival(evaluation, payload.archival_deadline)
    logger.info(f"Evaluation {evaluation.id} marked for archival by {user.email}")
    return await _save(session, evaluation)


@router.post(
    "/{evaluation_id}/archive",
    response_model=EvaluationRead,
    summary="Archive Now",
    responses={400: {"description": "Already archived or purged"}},
)
async def archive_now(
    evaluation_id: str,
    user: SessionUser = Depends(archivist),
    session: AsyncSession = Depends(get_session),
) -> EvaluationRead:
    """
    Archive an evaluation immediately.
    """
    evaluation = await load_evaluation(session, evaluation_id)
    archival.archive(evaluation, user.email)
    logger.info(f"Evaluation {evaluation.id} archived by {user.email}")
    return await _save(session, evaluation)


@router.post(
    "/{evaluation_id}/archive-with-date",
    response_model=EvaluationRead,
    summary="Archive With Date",
    description="Archive an evaluation recording an explicit archival date.",
)
async def archive_with_date(
    evaluation_id: str,
    payload: ArchiveWithDate,
    user: SessionUser = Depends(super_admin),
    session: AsyncSession = Depends(get_session),
) -> EvaluationRead:
    """
    Archive an evaluation at a given date, for archives made outside the platform.

    - **archive_date**: Recorded archival date; now when omitted.
    """
    evaluation = await load_evaluation(session, evaluation_id)
    archival.archive(evaluation, user.email, payload.archive_date)
    return await _save(session, evaluation)


@router.post(
    "/{evaluation_id}/back-to-active",
    response_model=EvaluationRead,
    summary="Back to Active",
    responses={400: {"description": "Not marked or archived"}},
)
async def back_to_active(
    evaluation_id: str,
    user: SessionUser = Depends(archivist),
    session: AsyncSession = Depends(get_session),
) -> EvaluationRead:
    """
    Send a marked or archived evaluation back to ACTIVE; the deadline is cleared.
    """
    evaluation = await load_evaluation(session, evaluation_id)
    archival.back_to_active(evaluation)
    logger.info(f"Evaluation {evaluation.id} back to active by {user.email}")
    return await _save(session, evaluation)


@router.post(
    "/{evaluation_id}/exclude",
    response_model=EvaluationRead,
    summary="Exclude From Archival",
    responses={400: {"description": "Not ACTIVE or missing comment"}},
)
async def exclude(
    evaluation_id: str,
    payload: ExcludeFromArchival,
    user: SessionUser = Depends(super_admin),
    session: AsyncSession = Depends(get_session),
) -> EvaluationRead:
    """
    Exclude an active evaluation from archival.

    - **comment**: Reason, required.
    """
    evaluation = await load_evaluation(session, evaluation_id)
    archival.exclude_from_archival(evaluation, user.email, payload.comment)
    return await _save(session, evaluation)


@router.post(
    "/{evaluation_id}/purge",
    response_model=PurgeResult,
    summary="Purge Archived Data",
    responses={
        400: {"description": "Not ARCHIVED"},
        500: {"description": "Purge failed, nothing was deleted"},
    },
)
async def purge_archived(
    evaluation_id: str,
    user: SessionUser = Depends(archivist),
    session: AsyncSession = Depends(get_session),
) -> PurgeResult:
    """
    Purge the student data of an archived evaluation. The evaluation becomes PURGED.
    """
    evaluation = await load_evaluation(session, evaluation_id)
    message, stats = await archival.purge_archived(session, evaluation, user.email)
    await session.refresh(evaluation)
    return PurgeResult(message=message, stats=stats, evaluation=EvaluationRead.model_validate(evaluation))


@router.post(
    "/{evaluation_id}/purge-without-archive",
    response_model=PurgeResult,
    summary="Purge Without Archival",
    responses={
        400: {"description": "Not ACTIVE"},
        500: {"description": "Purge failed, nothing was deleted"},
    },
)
async def purge_without_archival(
    evaluation_id: str,
    user: SessionUser = Depends(archivist),
    session: AsyncSession = Depends(get_session),
) -> PurgeResult:
    """
    Purge the student data of an active evaluation without archiving it first.
    The evaluation becomes PURGED_WITHOUT_ARCHIVAL.
    """
    evaluation = await load_evaluation(session, evaluation_id)
    message, stats = await archival.purge_without_archival(session, evaluation, user.email)
    await session.refresh(evaluation)
    return PurgeResult(message=message, stats=stats, evaluation=EvaluationRead.model_validate(evaluation))
