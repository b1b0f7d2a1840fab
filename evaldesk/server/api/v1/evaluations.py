"""
Evaluation Endpoints.

Professor management of the evaluations of a group: settings, phase
lifecycle, join PIN, time extension, student roster and denied access
attempts, results with their PDF export and the professor purge.

All routes live under `/{group_scope}/evaluations`.
"""

from __future__ import annotations

from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from evaldesk.core.database import get_session
from evaldesk.core.database.entities import (
    Evaluation,
    EvaluationToQuestion,
    Question,
    UserOnEvaluationDeniedAccessAttempt,
)
from evaldesk.core.database.repositories import EvaluationRepository
from evaldesk.core.database.schemas.evaluations import (
    ApproveAttempt,
    DeniedAttemptRead,
    EvaluationCreate,
    EvaluationPreset,
    EvaluationRead,
    EvaluationResults,
    EvaluationSettings,
    EvaluationUpdate,
    ParticipantRead,
    PhaseUpdate,
    ProgressAction,
    ProgressUpdate,
    PurgeResult,
)
from evaldesk.core.logging_config import get_logger
from evaldesk.core.models import (
    EvaluationPhase,
    QuestionSource,
    QuestionStatus,
    Role,
    UserOnEvaluationAccessMode,
)
from evaldesk.server.errors import bad_request, conflict, not_found
from evaldesk.server.services.authorization import (
    GroupContext,
    ensure_not_purged,
    load_group_evaluation,
    require_group,
    touch,
)
from evaldesk.server.services.export import build_results, render_results_pdf
from evaldesk.server.services.phases import apply_phase
from evaldesk.server.services.pin import PinGenerationError, assign_pin
from evaldesk.server.services.purge import purge_evaluation

logger = get_logger(__name__)

router = APIRouter()

professor_group = require_group(Role.PROFESSOR)

PURGEABLE_PHASES = (EvaluationPhase.GRADING, EvaluationPhase.FINISHED)
SETTING_FIELDS = tuple(EvaluationSettings.model_fields)


async def _ensure_label_free(session: AsyncSession, group_id: str, label: str, evaluation_id: Optional[str] = None) -> None:
    stmt = select(Evaluation.id).where(Evaluation.group_id == group_id, Evaluation.label == label)
    existing = (await session.execute(stmt)).scalars().first()
    if existing is not None and existing != evaluation_id:
        raise conflict("An evaluation with this label already exists in the group")


def _apply_settings(evaluation: Evaluation, values: dict) -> None:
    for key, value in values.items():
        if value is None:
            continue
        if key == "access_list":
            value = list(dict.fromkeys(email.strip() for email in value if email and email.strip()))
        setattr(evaluation, key, value)
    if evaluation.show_solutions_when_finished and not evaluation.consultation_enabled:
        raise bad_request("Solutions can only be shown when consultation is enabled")


async def _attach_template_questions(session: AsyncSession, evaluation: Evaluation, template: Evaluation) -> int:
    """Compose ``evaluation`` with the bank questions behind ``template``'s composition."""
    attached = 0
    for entry, question in await EvaluationRepository(session).composition(template.id):
        bank_question = question
        if question.source == QuestionSource.EVAL:
            bank_question = await session.get(Question, question.source_question_id) if question.source_question_id else None
        if bank_question is None or bank_question.status == QuestionStatus.ARCHIVED:
            continue
        if bank_question.source == QuestionSource.EVAL:
            continue
        session.add(
            EvaluationToQuestion(
                evaluation_id=evaluation.id,
                question_id=bank_question.id,
                order=attached,
                points=entry.points,
                grading_points=entry.grading_points,
                title=entry.title,
            )
        )
        attached += 1
    return attached


@router.get(
    "",
    response_model=List[EvaluationRead],
    summary="List Evaluations",
    description="Evaluations of the group, most recently updated first.",
)
async def list_evaluations(
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> List[EvaluationRead]:
    """
    List the evaluations of the group.
    """
    return [EvaluationRead.model_validate(e) for e in await EvaluationRepository(session).list_for_group(ctx.group.id)]


@router.post(
    "",
    response_model=EvaluationRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create Evaluation",
    description="Create an evaluation in DRAFT phase, blank or from an existing evaluation.",
    responses={
        201: {"description": "Evaluation created"},
        404: {"description": "Template evaluation not found"},
        409: {"description": "Label already used in the group"},
    },
)
async def create_evaluation(
    payload: EvaluationCreate,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> EvaluationRead:
    """
    Create an evaluation.

    With `preset=from_existing` the settings of the template evaluation are
    copied and its composition is rebuilt from the bank questions behind it;
    archived questions are skipped.

    - **label**: Unique within the group.
    - **preset**: `blank` or `from_existing`.
    - **template_evaluation_id**: Evaluation to start from.
    - Settings fields override the template's values.
    """
    await _ensure_label_free(session, ctx.group.id, payload.label)
    evaluation = Evaluation(group_id=ctx.group.id, label=payload.label, phase=EvaluationPhase.DRAFT)

    template = None
    if payload.preset == EvaluationPreset.from_existing:
        if not payload.template_evaluation_id:
            raise bad_request("A template evaluation is required")
        template = await load_group_evaluation(session, ctx.group, payload.template_evaluation_id)
        _apply_settings(evaluation, {key: getattr(template, key) for key in SETTING_FIELDS})

    _apply_settings(evaluation, payload.model_dump(include=set(SETTING_FIELDS)))
    session.add(evaluation)
    await session.flush()
    if template is not None:
        attached = await _attach_template_questions(session, evaluation, template)
        logger.info(f"Evaluation {evaluation.id} created from {template.id} with {attached} question(s)")
    await session.commit()
    await session.refresh(evaluation)
    return EvaluationRead.model_validate(evaluation)


@router.get(
    "/{evaluation_id}",
    response_model=EvaluationRead,
    summary="Get Evaluation",
    responses={404: {"description": "Evaluation not found"}},
)
async def get_evaluation(
    evaluation_id: str,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> EvaluationRead:
    """
    Get an evaluation with its settings, phase and archival state.
    """
    return EvaluationRead.model_validate(await load_group_evaluation(session, ctx.group, evaluation_id))


@router.put(
    "/{evaluation_id}",
    response_model=EvaluationRead,
    summary="Update Evaluation",
    description="Update the label, status or settings of an evaluation.",
    responses={
        400: {"description": "Solutions require consultation"},
        409: {"description": "Label already used in the group"},
    },
)
async def update_evaluation(
    evaluation_id: str,
    payload: EvaluationUpdate,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> EvaluationRead:
    """
    Update an evaluation.

    Switching the access mode back to `LINK_ONLY` clears the pending denied
    access attempts; adding emails to the access list clears their attempts.

    - **label**: New label, unique within the group.
    - **status**: ACTIVE or ARCHIVED (professor's list only).
    - **access_mode** / **access_list**: Admission of students.
    - **ip_restrictions**: Comma separated addresses, CIDR blocks or `a-b` ranges.
    - **desktop_app_required**: Only the desktop client may join.
    - **duration_active** / **duration_hours** / **duration_minutes**: Time limit.
    - **consultation_enabled** / **show_solutions_when_finished**: After the evaluation.
    """
    evaluation = await load_group_evaluation(session, ctx.group, evaluation_id)
    if payload.label is not None and payload.label != evaluation.label:
        await _ensure_label_free(session, ctx.group.id, payload.label, evaluation.id)
        evaluation.label = payload.label
    if payload.status is not None:
        evaluation.status = payload.status

    previous_mode = evaluation.access_mode
    _apply_settings(evaluation, payload.model_dump(include=set(SETTING_FIELDS)))
    if (
        previous_mode == UserOnEvaluationAccessMode.LINK_AND_ACCESS_LIST
        and evaluation.access_mode != UserOnEvaluationAccessMode.LINK_AND_ACCESS_LIST
    ):
        await EvaluationRepository(session).clear_denied_attempts(evaluation.id)
    elif evaluation.access_mode == UserOnEvaluationAccessMode.LINK_AND_ACCESS_LIST and payload.access_list is not None:
        # attempts of students now on the list are settled
        await EvaluationRepository(session).clear_denied_attempts(evaluation.id, evaluation.access_list)

    touch(session, evaluation)
    await session.commit()
    await session.refresh(evaluation)
    return EvaluationRead.model_validate(evaluation)


@router.delete(
    "/{evaluation_id}",
    summary="Delete Evaluation",
    description="Delete an evaluation and the question copies it owns.",
)
async def delete_evaluation(
    evaluation_id: str,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
):
    """
    Delete an evaluation.

    Bank questions stay in the bank; the frozen copies owned by the
    evaluation are deleted with it.
    """
    evaluation = await load_group_evaluation(session, ctx.group, evaluation_id)
    for _, question in await EvaluationRepository(session).composition(evaluation.id):
        if question.source == QuestionSource.EVAL:
            await session.delete(question)
    await session.delete(evaluation)
    await session.commit()
    logger.info(f"Evaluation {evaluation_id} deleted by {ctx.user.email}")
    return {"message": "Evaluation deleted"}


@router.put(
    "/{evaluation_id}/phase",
    response_model=EvaluationRead,
    summary="Change Phase",
    description="Move an evaluation to another phase and run the transition side effects.",
)
async def change_phase(
    evaluation_id: str,
    payload: PhaseUpdate,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> EvaluationRead:
    """
    Change the phase of an evaluation.

    - Reaching REGISTRATION freezes the composition into evaluation-owned copies.
    - Entering IN_PROGRESS stamps the start and, with an active duration, the planned end.
    - Going from IN_PROGRESS to GRADING stamps the end.

    - **phase**: Target phase.
    """
    evaluation = await load_group_evaluation(session, ctx.group, evaluation_id)
    await apply_phase(session, evaluation, payload.phase)
    await session.commit()
    await session.refresh(evaluation)
    return EvaluationRead.model_validate(evaluation)


@router.post(
    "/{evaluation_id}/pin",
    response_model=EvaluationRead,
    summary="Regenerate PIN",
    description="Give the evaluation a new join PIN.",
    responses={500: {"description": "No free PIN found"}},
)
async def regenerate_pin(
    evaluation_id: str,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> EvaluationRead:
    """
    Regenerate the join PIN of an evaluation.
    """
    evaluation = await load_group_evaluation(session, ctx.group, evaluation_id)
    try:
        await assign_pin(session, evaluation)
    except PinGenerationError:
        logger.error(f"PIN generation failed for evaluation {evaluation.id}")
        raise
    touch(session, evaluation)
    await session.commit()
    await session.refresh(evaluation)
    return EvaluationRead.model_validate(evaluation)


@router.patch(
    "/{evaluation_id}/progress",
    response_model=EvaluationRead,
    summary="Extend or Reduce Time",
    description="Move the planned end of a running evaluation.",
    responses={400: {"description": "Evaluation not running with a time limit"}},
)
async def update_progress(
    evaluation_id: str,
    payload: ProgressUpdate,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> EvaluationRead:
    """
    Extend or reduce the remaining time.

    - **action**: `extend` or `reduce`.
    - **amount_minutes**: Minutes added to or removed from the planned end.
    """
    evaluation = await load_group_evaluation(session, ctx.group, evaluation_id)
    if evaluation.phase != EvaluationPhase.IN_PROGRESS or not evaluation.duration_active or evaluation.end_at is None:
        raise bad_request("Only running evaluations with an active duration can be extended or reduced")
    delta = timedelta(minutes=payload.amount_minutes)
    evaluation.end_at = evaluation.end_at + delta if payload.action == ProgressAction.extend else evaluation.end_at - delta
    touch(session, evaluation)
    await session.commit()
    await session.refresh(evaluation)
    return EvaluationRead.model_validate(evaluation)


@router.get(
    "/{evaluation_id}/students",
    response_model=List[ParticipantRead],
    summary="List Students",
    description="Students who joined the evaluation.",
)
async def list_students(
    evaluation_id: str,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> List[ParticipantRead]:
    """
    List the joined students with their progress and session change flag.
    """
    evaluation = await load_group_evaluation(session, ctx.group, evaluation_id)
    return [
        ParticipantRead(
            user_email=participation.user_email,
            user_name=user.name,
            status=participation.status,
            finished_at=participation.finished_at,
            has_session_changed=participation.has_session_changed,
            created_at=participation.created_at,
        )
        for participation, user in await EvaluationRepository(session).participants(evaluation.id)
    ]


@router.get(
    "/{evaluation_id}/denied-attempts",
    response_model=List[DeniedAttemptRead],
    summary="List Denied Attempts",
    description="Students refused by the access list, awaiting approval.",
)
async def list_denied_attempts(
    evaluation_id: str,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> List[DeniedAttemptRead]:
    """
    List the denied access attempts, oldest first.
    """
    evaluation = await load_group_evaluation(session, ctx.group, evaluation_id)
    return [
        DeniedAttemptRead(user_email=attempt.user_email, user_name=user.name, attempted_at=attempt.attempted_at)
        for attempt, user in await EvaluationRepository(session).denied_attempts(evaluation.id)
    ]


@router.post(
    "/{evaluation_id}/denied-attempts/approve",
    response_model=EvaluationRead,
    summary="Approve Attempt",
    description="Add the student to the access list and drop the denied attempt.",
    responses={404: {"description": "No denied attempt for this student"}},
)
async def approve_attempt(
    evaluation_id: str,
    payload: ApproveAttempt,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> EvaluationRead:
    """
    Approve a denied access attempt.

    - **user_email**: Student to admit.
    """
    evaluation = await load_group_evaluation(session, ctx.group, evaluation_id)
    attempt = await session.get(UserOnEvaluationDeniedAccessAttempt, (payload.user_email, evaluation.id))
    if attempt is None:
        raise not_found("Denied attempt not found")
    if payload.user_email not in (evaluation.access_list or []):
        evaluation.access_list = [*(evaluation.access_list or []), payload.user_email]
    await session.delete(attempt)
    touch(session, evaluation)
    await session.commit()
    await session.refresh(evaluation)
    logger.info(f"{payload.user_email} admitted to evaluation {evaluation.id}")
    return EvaluationRead.model_validate(evaluation)


@router.get(
    "/{evaluation_id}/results",
    response_model=EvaluationResults,
    summary="Results",
    description="Points of every student on every question, scaled by the grading coefficient.",
    responses={410: {"description": "Student data purged"}},
)
async def get_results(
    evaluation_id: str,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> EvaluationResults:
    """
    Get the results of an evaluation.
    """
    evaluation = await load_group_evaluation(session, ctx.group, evaluation_id)
    ensure_not_purged(evaluation)
    return await build_results(session, evaluation)


@router.get(
    "/{evaluation_id}/export",
    summary="Export Results",
    description="Results of the evaluation as a PDF document.",
    responses={
        200: {"content": {"application/pdf": {}}, "description": "PDF document"},
        410: {"description": "Student data purged"},
    },
)
async def export_results(
    evaluation_id: str,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> Response:
    """
    Export the results as PDF.
    """
    evaluation = await load_group_evaluation(session, ctx.group, evaluation_id)
    ensure_not_purged(evaluation)
    results = await build_results(session, evaluation)
    content = render_results_pdf(results, ctx.group.label)
    filename = f"{ctx.group.scope}-{evaluation.id}-results.pdf"
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post(
    "/{evaluation_id}/purge",
    response_model=PurgeResult,
    summary="Purge Student Data",
    description="Delete the answers, files, queries and gradings of every student.",
    responses={
        400: {"description": "Evaluation not in GRADING or FINISHED"},
        410: {"description": "Already purged"},
        500: {"description": "Purge failed, nothing was deleted"},
    },
)
async def purge(
    evaluation_id: str,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> PurgeResult:
    """
    Purge the student data of an evaluation.

    The composition and the roster stay; the deletion runs in one
    transaction and is rolled back as a whole on failure.
    """
    evaluation = await load_group_evaluation(session, ctx.group, evaluation_id)
    ensure_not_purged(evaluation)
    if evaluation.phase not in PURGEABLE_PHASES:
        raise bad_request("Only evaluations in GRADING or FINISHED phase can be purged")
    message, stats = await purge_evaluation(session, evaluation, ctx.user.email)
    await session.refresh(evaluation)
    return PurgeResult(message=message, stats=stats, evaluation=EvaluationRead.model_validate(evaluation))
