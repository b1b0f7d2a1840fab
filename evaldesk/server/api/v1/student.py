"""
Student Evaluation Endpoints.

Everything a student does with an evaluation: resolve a join PIN, join,
take the evaluation and edit answers, run their code and queries in the
sandbox, finish, and consult the graded result afterwards.

All routes live under `/users/evaluations`. Access restrictions (desktop
client, IP ranges, access list) are enforced when joining and on every
request made while taking the evaluation.
"""

from __future__ import annotations

from typing import List, Tuple

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from evaldesk.core.database import get_session
from evaldesk.core.database.base import utc_now
from evaldesk.core.database.entities import Evaluation, EvaluationToQuestion, Question, StudentAnswer, UserOnEvaluation
from evaldesk.core.database.repositories import EvaluationRepository
from evaldesk.core.database.schemas.answers import (
    AnswerUpdate,
    ConsultQuestionRead,
    ConsultRead,
    DatabaseQueryUpdate,
    ExactMatchFieldUpdate,
    FileUpdate,
    ParticipationRead,
    StudentAnswerRead,
    StudentFileRead,
    StudentQueryRead,
    StudentStatusEvaluation,
    StudentStatusRead,
    TakeQuestionRead,
    TakeRead,
)
from evaldesk.core.database.schemas.evaluations import JoinByPin, JoinByPinRead
from evaldesk.core.database.schemas.groups import SessionUser
from evaldesk.core.logging_config import get_logger
from evaldesk.core.models import (
    DatabaseQueryOutputStatus,
    EvaluationPhase,
    QuestionType,
    Role,
    StudentAnswerStatus,
    UserOnEvaluationStatus,
)
from evaldesk.server.core.constant import PIN_LENGTH
from evaldesk.server.errors import bad_request, not_found
from evaldesk.server.services import student as student_service
from evaldesk.server.services.authorization import ensure_not_purged, load_evaluation, require_roles
from evaldesk.server.services.grading import regrade
from evaldesk.server.services.phases import is_joinable
from evaldesk.server.services.pin import normalize_pin
from evaldesk.server.services.restrictions import check_student_access
from evaldesk.server.services.sandbox import (
    CodeSandbox,
    DatabaseSandbox,
    SandboxFile,
    SandboxTest,
    get_code_sandbox,
    get_database_sandbox,
)

logger = get_logger(__name__)

router = APIRouter()

student_user = require_roles(Role.STUDENT, Role.PROFESSOR)


async def _taking(
    session: AsyncSession, request: Request, evaluation_id: str, user: SessionUser
) -> Tuple[Evaluation, UserOnEvaluation]:
    """Evaluation being taken by the student, with their participation."""
    evaluation = await load_evaluation(session, evaluation_id)
    ensure_not_purged(evaluation)
    await check_student_access(session, request, evaluation, user)
    if evaluation.phase != EvaluationPhase.IN_PROGRESS:
        raise bad_request("This evaluation is not in progress")
    participation = await student_service.get_participation_or_404(session, evaluation.id, user.email)
    if participation.status != UserOnEvaluationStatus.IN_PROGRESS:
        raise bad_request("You have already finished this evaluation")
    if evaluation.duration_active and evaluation.end_at is not None and utc_now() > evaluation.end_at:
        raise bad_request("The time allowed for this evaluation is over")
    await student_service.track_session_change(session, participation, user.session_token)
    return evaluation, participation


async def _editable_answer(
    session: AsyncSession, request: Request, evaluation_id: str, question_id: str, user: SessionUser
) -> Tuple[EvaluationToQuestion, Question, StudentAnswer]:
    _, participation = await _taking(session, request, evaluation_id, user)
    entry, question = await student_service.get_evaluation_question(session, evaluation_id, question_id)
    answer = await student_service.get_student_answer(session, user.email, question.id)
    student_service.ensure_editable(participation, answer)
    return entry, question, answer


def _participation_read(participation: UserOnEvaluation, evaluation: Evaluation) -> ParticipationRead:
    return ParticipationRead(
        user_email=participation.user_email,
        evaluation_id=participation.evaluation_id,
        status=participation.status,
        finished_at=participation.finished_at,
        phase=evaluation.phase,
        created_at=participation.created_at,
    )


@router.post(
    "/join-by-pin",
    response_model=JoinByPinRead,
    summary="Resolve PIN",
    description="Find the evaluation behind a join PIN.",
    responses={
        400: {"description": "Malformed PIN"},
        404: {"description": "No evaluation with this PIN"},
    },
)
async def join_by_pin(
    payload: JoinByPin,
    _: SessionUser = Depends(student_user),
    session: AsyncSession = Depends(get_session),
) -> JoinByPinRead:
    """
    Resolve a join PIN.

    The PIN is case insensitive and surrounding blanks are ignored.

    - **pin**: Six character PIN given by the professor.
    """
    pin = normalize_pin(payload.pin)
    if len(pin) != PIN_LENGTH:
        raise bad_request(f"The PIN must be {PIN_LENGTH} characters long")
    found = await EvaluationRepository(session).get_by_pin(pin)
    if found is None:
        raise not_found("No evaluation found for this PIN")
    evaluation, group = found
    return JoinByPinRead(
        evaluation_id=evaluation.id,
        label=evaluation.label,
        phase=evaluation.phase,
        status=evaluation.status,
        group_scope=group.scope,
        group_label=group.label,
    )


@router.post(
    "/{evaluation_id}/join",
    response_model=ParticipationRead,
    summary="Join Evaluation",
    description="Register the student on the evaluation and prepare their answers.",
    responses={
        400: {"description": "Evaluation not joinable"},
        401: {"description": "Desktop client, IP or access list restriction"},
        404: {"description": "Evaluation not found"},
    },
)
async def join(
    evaluation_id: str,
    request: Request,
    user: SessionUser = Depends(student_user),
    session: AsyncSession = Depends(get_session),
) -> ParticipationRead:
    """
    Join an evaluation.

    Joining twice returns the existing participation unchanged. Students
    refused by the access list are recorded as denied attempts until a
    professor approves them.
    """
    evaluation = await load_evaluation(session, evaluation_id)
    ensure_not_purged(evaluation)
    await check_student_access(session, request, evaluation, user)
    existing = await EvaluationRepository(session).get_participation(evaluation.id, user.email)
    if existing is None and not is_joinable(evaluation.phase):
        raise bad_request("This evaluation is not joinable")
    participation, _ = await student_service.join_evaluation(session, evaluation, user)
    return _participation_read(participation, evaluation)


@router.get(
    "/{evaluation_id}/take",
    response_model=TakeRead,
    summary="Take Evaluation",
    description="Questions of a running evaluation, without solutions.",
)
async def take(
    evaluation_id: str,
    request: Request,
    user: SessionUser = Depends(student_user),
    session: AsyncSession = Depends(get_session),
) -> TakeRead:
    """
    Take an evaluation.

    Questions come in order with their custom title, points and the status of
    the student's answer.
    """
    evaluation, _ = await _taking(session, request, evaluation_id, user)
    questions: List[TakeQuestionRead] = []
    for entry, question in await EvaluationRepository(session).composition(evaluation.id):
        answer = await session.get(StudentAnswer, (user.email, question.id))
        questions.append(
            TakeQuestionRead(
                question_id=question.id,
                order=entry.order,
                title=entry.title or question.title,
                points=entry.points,
                type=question.type,
                content=question.content,
                type_specific=student_service.strip_solutions(question),
                answer_status=answer.status if answer is not None else StudentAnswerStatus.MISSING,
            )
        )
    await session.commit()
    return TakeRead(
        evaluation_id=evaluation.id,
        label=evaluation.label,
        conditions=evaluation.conditions,
        start_at=evaluation.start_at,
        end_at=evaluation.end_at,
        questions=questions,
    )


@router.get(
    "/{evaluation_id}/questions/{question_id}/answer",
    response_model=StudentAnswerRead,
    summary="Get Answer",
)
async def get_answer(
    evaluation_id: str,
    question_id: str,
    request: Request,
    user: SessionUser = Depends(student_user),
    session: AsyncSession = Depends(get_session),
) -> StudentAnswerRead:
    """
    Get the student's answer to a question with its files and queries.

    Hidden files and queries are not returned.
    """
    await _taking(session, request, evaluation_id, user)
    await student_service.get_evaluation_question(session, evaluation_id, question_id)
    answer = await student_service.get_student_answer(session, user.email, question_id)
    await session.commit()
    return await student_service.build_answer_read(session, answer)


@router.put(
    "/{evaluation_id}/questions/{question_id}/answer",
    response_model=StudentAnswerRead,
    summary="Save Answer",
    description="Save the answer of a multiple choice, true/false, essay, web, exact match or code reading question.",
    responses={400: {"description": "Invalid answer or answer not editable"}},
)
async def put_answer(
    evaluation_id: str,
    question_id: str,
    payload: AnswerUpdate,
    request: Request,
    user: SessionUser = Depends(student_user),
    session: AsyncSession = Depends(get_session),
) -> StudentAnswerRead:
    """
    Save an answer.

    The answer moves to IN_PROGRESS and is graded again.

    - **answer**: Answer document of the question type.
    """
    entry, question, answer = await _editable_answer(session, request, evaluation_id, question_id, user)
    document = student_service.validate_answer(question, payload.answer)
    await student_service.save_answer(session, entry, question, answer, document)
    return await student_service.build_answer_read(session, answer)


@router.put(
    "/{evaluation_id}/questions/{question_id}/exact-match/fields/{field_id}",
    response_model=StudentAnswerRead,
    summary="Save Exact Match Field",
)
async def put_exact_match_field(
    evaluation_id: str,
    question_id: str,
    field_id: str,
    payload: ExactMatchFieldUpdate,
    request: Request,
    user: SessionUser = Depends(student_user),
    session: AsyncSession = Depends(get_session),
) -> StudentAnswerRead:
    """
    Save the value of one exact match field.

    - **value**: Text typed by the student.
    """
    entry, question, answer = await _editable_answer(session, request, evaluation_id, question_id, user)
    if question.type != QuestionType.exactMatch:
        raise bad_request("Question is not an exact match question")
    fields = [dict(field) for field in (answer.answer or {}).get("fields") or []]
    target = next((field for field in fields if field.get("field_id") == field_id), None)
    if target is None:
        raise not_found("Field not found")
    target["value"] = payload.value
    await student_service.save_answer(session, entry, question, answer, {**(answer.answer or {}), "fields": fields})
    return await student_service.build_answer_read(session, answer)


@router.put(
    "/{evaluation_id}/questions/{question_id}/files/{file_id}",
    response_model=StudentFileRead,
    summary="Save Code File",
    responses={403: {"description": "File is read-only"}},
)
async def put_file(
    evaluation_id: str,
    question_id: str,
    file_id: str,
    payload: FileUpdate,
    request: Request,
    user: SessionUser = Depends(student_user),
    session: AsyncSession = Depends(get_session),
) -> StudentFileRead:
    """
    Save one of the student's code files.

    A history snapshot is recorded and previous test results are cleared.

    - **content**: New file content.
    """
    entry, question, answer = await _editable_answer(session, request, evaluation_id, question_id, user)
    code_file = await student_service.save_code_file(session, entry, question, answer, file_id, payload.content)
    return next(
        read
        for read in (await student_service.build_answer_read(session, answer, include_hidden=True)).files
        if read.id == code_file.id
    )


@router.put(
    "/{evaluation_id}/questions/{question_id}/queries/{query_id}",
    response_model=StudentQueryRead,
    summary="Save Database Query",
    responses={403: {"description": "Query is read-only"}},
)
async def put_query(
    evaluation_id: str,
    question_id: str,
    query_id: str,
    payload: DatabaseQueryUpdate,
    request: Request,
    user: SessionUser = Depends(student_user),
    session: AsyncSession = Depends(get_session),
) -> StudentQueryRead:
    """
    Save one of the student's SQL queries. Its previous output is cleared.

    - **content**: New SQL text.
    """
    entry, question, answer = await _editable_answer(session, request, evaluation_id, question_id, user)
    query = await student_service.save_database_query(session, entry, question, answer, query_id, payload.content)
    return StudentQueryRead(
        id=query.id,
        order=query.order,
        title=query.title,
        description=query.description,
        content=query.content,
        student_permission=query.student_permission,
        output=query.output,
    )


@router.put(
    "/{evaluation_id}/questions/{question_id}/submit",
    response_model=StudentAnswerRead,
    summary="Submit Answer",
)
async def submit_answer(
    evaluation_id: str,
    question_id: str,
    request: Request,
    user: SessionUser = Depends(student_user),
    session: AsyncSession = Depends(get_session),
) -> StudentAnswerRead:
    """
    Submit an answer. Submitted answers cannot be edited until unsubmitted.
    """
    _, question, answer = await _editable_answer(session, request, evaluation_id, question_id, user)
    answer.status = StudentAnswerStatus.SUBMITTED
    answer.updated_at = utc_now()
    session.add(answer)
    await session.commit()
    await session.refresh(answer)
    return await student_service.build_answer_read(session, answer)


@router.put(
    "/{evaluation_id}/questions/{question_id}/unsubmit",
    response_model=StudentAnswerRead,
    summary="Unsubmit Answer",
    responses={400: {"description": "Answer not submitted"}},
)
async def unsubmit_answer(
    evaluation_id: str,
    question_id: str,
    request: Request,
    user: SessionUser = Depends(student_user),
    session: AsyncSession = Depends(get_session),
) -> StudentAnswerRead:
    """
    Unsubmit an answer so that it can be edited again.
    """
    await _taking(session, request, evaluation_id, user)
    await student_service.get_evaluation_question(session, evaluation_id, question_id)
    answer = await student_service.get_student_answer(session, user.email, question_id)
    if answer.status != StudentAnswerStatus.SUBMITTED:
        raise bad_request("This answer is not submitted")
    answer.status = StudentAnswerStatus.IN_PROGRESS
    answer.updated_at = utc_now()
    session.add(answer)
    await session.commit()
    await session.refresh(answer)
    return await student_service.build_answer_read(session, answer)


@router.post(
    "/{evaluation_id}/questions/{question_id}/code/sandbox",
    summary="Run My Code",
    description="Run the student's files against the test cases; results are stored and graded.",
)
async def run_my_code(
    evaluation_id: str,
    question_id: str,
    request: Request,
    user: SessionUser = Depends(student_user),
    session: AsyncSession = Depends(get_session),
    sandbox: CodeSandbox = Depends(get_code_sandbox),
):
    """
    Run the student's code.

    Every file of the answer is sent, including the hidden ones provided by
    the professor. The test results are stored on the answer, which is then
    graded.
    """
    entry, question, answer = await _editable_answer(session, request, evaluation_id, question_id, user)
    if question.type != QuestionType.code or student_service.is_code_reading(question):
        raise bad_request("Question is not a code writing question")
    config = question.type_specific or {}
    test_cases = (config.get("code_writing") or {}).get("test_cases") or []
    files = await student_service.student_files(session, user.email, question.id)
    result = await sandbox.run(
        files=[SandboxFile(path=code_file.path, content=code_file.content) for _, code_file in files],
        tests=[SandboxTest(exec=t["exec"], input=t.get("input") or "", expected_output=t.get("expected_output") or "") for t in test_cases],
        image=config.get("image"),
        before_all=config.get("before_all"),
    )
    document = {**(answer.answer or {}), "test_results": [test.to_dict() for test in result.tests]}
    await student_service.save_answer(session, entry, question, answer, document)
    return result.to_dict()


@router.post(
    "/{evaluation_id}/questions/{question_id}/database/sandbox",
    summary="Run My Queries",
    description="Run the student's queries in a fresh database; outputs are stored on the queries.",
)
async def run_my_queries(
    evaluation_id: str,
    question_id: str,
    request: Request,
    user: SessionUser = Depends(student_user),
    session: AsyncSession = Depends(get_session),
    sandbox: DatabaseSandbox = Depends(get_database_sandbox),
):
    """
    Run the student's queries in order.

    Queries after the first failing one are marked NEUTRAL with no output.
    """
    entry, question, answer = await _editable_answer(session, request, evaluation_id, question_id, user)
    if question.type != QuestionType.database:
        raise bad_request("Question is not a database question")
    queries = await student_service.student_queries(session, user.email, question.id)
    outputs = await sandbox.run([query.content for query in queries], image=(question.type_specific or {}).get("image"))
    for index, query in enumerate(queries):
        if index < len(outputs):
            query.output = outputs[index].to_dict()
            query.output_status = outputs[index].status
        else:
            query.output = None
            query.output_status = DatabaseQueryOutputStatus.NEUTRAL
        query.updated_at = utc_now()
        session.add(query)
    answer.status = StudentAnswerStatus.IN_PROGRESS
    answer.updated_at = utc_now()
    session.add(answer)
    await regrade(session, question, entry.grading_points, answer)
    await session.commit()
    return [output.to_dict() for output in outputs]


@router.get(
    "/{evaluation_id}/status",
    response_model=StudentStatusRead,
    summary="My Status",
    description="Participation status of the student with the evaluation timing.",
)
async def get_status(
    evaluation_id: str,
    user: SessionUser = Depends(student_user),
    session: AsyncSession = Depends(get_session),
) -> StudentStatusRead:
    """
    Get the student's status in an evaluation.

    Reports whether the attempt was continued from another browser session.
    """
    evaluation = await load_evaluation(session, evaluation_id)
    participation = await student_service.get_participation_or_404(session, evaluation.id, user.email)
    if participation.status == UserOnEvaluationStatus.IN_PROGRESS:
        await student_service.track_session_change(session, participation, user.session_token)
        await session.commit()
        await session.refresh(participation)
    return StudentStatusRead(
        status=participation.status,
        finished_at=participation.finished_at,
        has_session_changed=participation.has_session_changed,
        session_change_detected_at=participation.session_change_detected_at,
        evaluation=StudentStatusEvaluation(
            id=evaluation.id,
            label=evaluation.label,
            phase=evaluation.phase,
            start_at=evaluation.start_at,
            end_at=evaluation.end_at,
            duration_active=evaluation.duration_active,
            desktop_app_required=evaluation.desktop_app_required,
        ),
    )


@router.put(
    "/{evaluation_id}/status",
    response_model=ParticipationRead,
    summary="Finish Evaluation",
    description="End the student's attempt.",
)
async def finish(
    evaluation_id: str,
    user: SessionUser = Depends(student_user),
    session: AsyncSession = Depends(get_session),
) -> ParticipationRead:
    """
    Finish the evaluation. Finishing twice keeps the first finish time.
    """
    evaluation = await load_evaluation(session, evaluation_id)
    participation = await student_service.get_participation_or_404(session, evaluation.id, user.email)
    if participation.status != UserOnEvaluationStatus.FINISHED:
        participation.status = UserOnEvaluationStatus.FINISHED
        participation.finished_at = utc_now()
        session.add(participation)
        await session.commit()
        await session.refresh(participation)
        logger.info(f"Student {user.email} finished evaluation {evaluation.id}")
    return _participation_read(participation, evaluation)


@router.get(
    "/{evaluation_id}/consult",
    response_model=ConsultRead,
    summary="Consult Evaluation",
    description="Graded answers of a finished evaluation, with solutions when enabled.",
    responses={
        400: {"description": "Evaluation not finished or consultation disabled"},
        410: {"description": "Student data purged"},
    },
)
async def consult(
    evaluation_id: str,
    user: SessionUser = Depends(student_user),
    session: AsyncSession = Depends(get_session),
) -> ConsultRead:
    """
    Consult a finished evaluation.
    """
    evaluation = await load_evaluation(session, evaluation_id)
    ensure_not_purged(evaluation)
    if evaluation.phase != EvaluationPhase.FINISHED or not evaluation.consultation_enabled:
        raise bad_request("This evaluation cannot be consulted")
    await student_service.get_participation_or_404(session, evaluation.id, user.email)

    show_solutions = evaluation.show_solutions_when_finished
    questions: List[ConsultQuestionRead] = []
    for entry, question in await EvaluationRepository(session).composition(evaluation.id):
        answer = await student_service.get_student_answer(session, user.email, question.id)
        questions.append(
            ConsultQuestionRead(
                question_id=question.id,
                order=entry.order,
                title=entry.title or question.title,
                points=entry.points,
                type=question.type,
                content=question.content,
                type_specific=(question.type_specific or {}) if show_solutions else student_service.strip_solutions(question),
                answer_status=answer.status,
                answer=await student_service.build_answer_read(session, answer, include_grading=True),
            )
        )
    return ConsultRead(
        evaluation_id=evaluation.id,
        label=evaluation.label,
        show_solutions=show_solutions,
        questions=questions,
    )
