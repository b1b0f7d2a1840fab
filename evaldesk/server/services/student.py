"""
Student Participation Service.

Joining an evaluation, loading what a student may see, and editing answers.

Joining creates, in one transaction, the participation row and for every
question of the evaluation an answer, a grading and the type-specific
starting material (essay and web templates, code template files, database
queries, empty exact-match fields and code reading outputs). Every answer
edit moves the answer to ``IN_PROGRESS`` and re-runs the automatic grading.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from evaldesk.core.database.base import utc_now
from evaldesk.core.database.entities import (
    DatabaseQuery,
    Evaluation,
    EvaluationToQuestion,
    File,
    Question,
    StudentAnswer,
    StudentAnswerCodeHistory,
    StudentAnswerCodeToFile,
    StudentAnswerDatabaseToQuery,
    StudentQuestionGrading,
    UserOnEvaluation,
)
from evaldesk.core.database.repositories import EvaluationRepository
from evaldesk.core.database.schemas.answers import (
    ANSWER_MODELS,
    CodeReadingAnswer,
    GradingRead,
    StudentAnswerRead,
    StudentFileRead,
    StudentQueryRead,
)
from evaldesk.core.database.schemas.groups import SessionUser
from evaldesk.core.logging_config import get_logger
from evaldesk.core.models import (
    CodeQuestionType,
    QuestionType,
    StudentAnswerStatus,
    StudentPermission,
    UserOnEvaluationStatus,
)
from evaldesk.server.errors import bad_request, forbidden, not_found
from evaldesk.server.services.grading import grade, regrade

logger = get_logger(__name__)


def is_code_reading(question: Question) -> bool:
    return question.type == QuestionType.code and (question.type_specific or {}).get(
        "code_type"
    ) == CodeQuestionType.codeReading.value


def initial_answer(question: Question) -> Dict[str, Any]:
    """Answer document a student starts with."""
    config = question.type_specific or {}
    question_type = QuestionType(question.type)
    if question_type == QuestionType.multipleChoice:
        return {"option_ids": [], "comment": None}
    if question_type == QuestionType.trueFalse:
        return {"is_true": None}
    if question_type == QuestionType.essay:
        return {"content": config.get("template") or ""}
    if question_type == QuestionType.web:
        return {
            "html": config.get("template_html") or "",
            "css": config.get("template_css") or "",
            "js": config.get("template_js") or "",
        }
    if question_type == QuestionType.exactMatch:
        return {"fields": [{"field_id": field["id"], "value": ""} for field in config.get("fields") or []]}
    if question_type == QuestionType.code:
        if is_code_reading(question):
            snippets = (config.get("code_reading") or {}).get("snippets") or []
            return {"outputs": [{"snippet_id": snippet["id"], "output": ""} for snippet in snippets]}
        return {"test_results": []}
    return {}


def strip_solutions(question: Question) -> Dict[str, Any]:
    """Type-specific document without anything revealing the solution."""
    config = copy.deepcopy(question.type_specific or {})
    question_type = QuestionType(question.type)
    if question_type == QuestionType.multipleChoice:
        for option in config.get("options") or []:
            option.pop("is_correct", None)
    elif question_type == QuestionType.trueFalse:
        config.pop("is_true", None)
    elif question_type == QuestionType.essay:
        config.pop("solution", None)
    elif question_type == QuestionType.web:
        for key in ("solution_html", "solution_css", "solution_js"):
            config.pop(key, None)
    elif question_type == QuestionType.exactMatch:
        for field in config.get("fields") or []:
            field.pop("match_regex", None)
    elif question_type == QuestionType.code:
        writing = config.get("code_writing") or {}
        writing.pop("solution_files", None)
        for test in writing.get("test_cases") or []:
            test.pop("expected_output", None)
        for snippet in (config.get("code_reading") or {}).get("snippets") or []:
            snippet.pop("output", None)
    elif question_type == QuestionType.database:
        config.pop("solution_queries", None)
    return config


async def _create_code_files(session: AsyncSession, answer: StudentAnswer, config: Dict[str, Any]) -> None:
    templates = (config.get("code_writing") or {}).get("template_files") or []
    for index, template in enumerate(templates):
        code_file = File(path=template["path"], content=template.get("content") or "")
        session.add(code_file)
        await session.flush()
        session.add(
            StudentAnswerCodeToFile(
                user_email=answer.user_email,
                question_id=answer.question_id,
                file_id=code_file.id,
                order=template.get("order", index),
                student_permission=template.get("student_permission") or StudentPermission.UPDATE,
            )
        )


async def _create_database_queries(session: AsyncSession, answer: StudentAnswer, config: Dict[str, Any]) -> None:
    for solution in config.get("solution_queries") or []:
        permission = StudentPermission(solution.get("student_permission") or StudentPermission.UPDATE)
        query = DatabaseQuery(
            order=solution.get("order", 0),
            title=solution.get("title") or "",
            description=solution.get("description"),
            content=(solution.get("template") or "") if permission == StudentPermission.UPDATE else solution.get("content") or "",
            student_permission=permission,
        )
        session.add(query)
        await session.flush()
        session.add(
            StudentAnswerDatabaseToQuery(user_email=answer.user_email, question_id=answer.question_id, query_id=query.id)
        )


async def join_evaluation(
    session: AsyncSession, evaluation: Evaluation, user: SessionUser
) -> Tuple[UserOnEvaluation, bool]:
    """Register a student on an evaluation and prepare their answers.

    Returns:
        ``(participation, created)``; an existing participation is returned untouched
    """
    repository = EvaluationRepository(session)
    participation = await repository.get_participation(evaluation.id, user.email)
    if participation is not None:
        return participation, False

    try:
        participation = UserOnEvaluation(
            user_email=user.email,
            evaluation_id=evaluation.id,
            original_session_token=user.session_token,
        )
        session.add(participation)

        for entry, question in await repository.composition(evaluation.id):
            if await session.get(StudentAnswer, (user.email, question.id)) is not None:
                continue
            answer = StudentAnswer(user_email=user.email, question_id=question.id, answer=initial_answer(question))
            session.add(answer)
            await session.flush()

            outcome = grade(question, entry.grading_points, None)
            session.add(
                StudentQuestionGrading(
                    user_email=user.email,
                    question_id=question.id,
                    status=outcome.status,
                    points_obtained=outcome.points_obtained,
                )
            )
            if question.type == QuestionType.code and not is_code_reading(question):
                await _create_code_files(session, answer, question.type_specific or {})
            elif question.type == QuestionType.database:
                await _create_database_queries(session, answer, question.type_specific or {})

        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await session.refresh(participation)
    logger.info(f"Student {user.email} joined evaluation {evaluation.id}")
    return participation, True


async def track_session_change(session: AsyncSession, participation: UserOnEvaluation, token: Optional[str]) -> None:
    """Flag a participation whose session token differs from the one it started with. Does not commit."""
    if not token:
        return
    if not participation.original_session_token:
        participation.original_session_token = token
    elif participation.original_session_token != token:
        participation.has_session_changed = True
        participation.session_change_detected_at = utc_now()
        participation.original_session_token = token
        logger.warning(
            f"Session change detected for {participation.user_email} on evaluation {participation.evaluation_id}"
        )
    session.add(participation)


async def get_participation_or_404(session: AsyncSession, evaluation_id: str, email: str) -> UserOnEvaluation:
    participation = await EvaluationRepository(session).get_participation(evaluation_id, email)
    if participation is None:
        raise not_found("User not found in evaluation")
    return participation


async def get_evaluation_question(
    session: AsyncSession, evaluation_id: str, question_id: str
) -> Tuple[EvaluationToQuestion, Question]:
    entry = await EvaluationRepository(session).get_entry(evaluation_id, question_id)
    question = await session.get(Question, question_id)
    if entry is None or question is None:
        raise not_found("Question not found in evaluation")
    return entry, question


async def get_student_answer(session: AsyncSession, email: str, question_id: str) -> StudentAnswer:
    answer = await session.get(StudentAnswer, (email, question_id))
    if answer is None:
        raise not_found("Student answer not found")
    return answer


async def student_files(session: AsyncSession, email: str, question_id: str) -> List[Tuple[StudentAnswerCodeToFile, File]]:
    stmt = (
        select(StudentAnswerCodeToFile, File)
        .join(File, File.id == StudentAnswerCodeToFile.file_id)
        .where(StudentAnswerCodeToFile.user_email == email, StudentAnswerCodeToFile.question_id == question_id)
        .order_by(StudentAnswerCodeToFile.order)
    )
    return [(row[0], row[1]) for row in (await session.execute(stmt)).all()]


async def student_queries(session: AsyncSession, email: str, question_id: str) -> List[DatabaseQuery]:
    stmt = (
        select(DatabaseQuery)
        .join(StudentAnswerDatabaseToQuery, StudentAnswerDatabaseToQuery.query_id == DatabaseQuery.id)
        .where(
            StudentAnswerDatabaseToQuery.user_email == email,
            StudentAnswerDatabaseToQuery.question_id == question_id,
        )
        .order_by(DatabaseQuery.order)
    )
    return list((await session.execute(stmt)).scalars().all())


async def build_answer_read(
    session: AsyncSession, answer: StudentAnswer, include_hidden: bool = False, include_grading: bool = False
) -> StudentAnswerRead:
    """Answer with its files and queries; hidden material only for professors."""
    files = [
        StudentFileRead(
            id=code_file.id,
            path=code_file.path,
            content=code_file.content,
            order=link.order,
            student_permission=link.student_permission,
        )
        for link, code_file in await student_files(session, answer.user_email, answer.question_id)
        if include_hidden or link.student_permission != StudentPermission.HIDDEN
    ]
    queries = [
        StudentQueryRead(
            id=query.id,
            order=query.order,
            title=query.title,
            description=query.description,
            content=query.content,
            student_permission=query.student_permission,
            output=query.output,
        )
        for query in await student_queries(session, answer.user_email, answer.question_id)
        if include_hidden or query.student_permission != StudentPermission.HIDDEN
    ]
    grading = None
    if include_grading:
        row = await session.get(StudentQuestionGrading, (answer.user_email, answer.question_id))
        grading = GradingRead.model_validate(row) if row is not None else None
    return StudentAnswerRead(
        question_id=answer.question_id,
        status=answer.status,
        answer=answer.answer or {},
        files=files,
        queries=queries,
        grading=grading,
        updated_at=answer.updated_at,
    )


def ensure_editable(participation: UserOnEvaluation, answer: StudentAnswer) -> None:
    if participation.status != UserOnEvaluationStatus.IN_PROGRESS:
        raise bad_request("You have already finished this evaluation")
    if answer.status == StudentAnswerStatus.SUBMITTED:
        raise bad_request("This answer has been submitted, unsubmit it to edit it")


def validate_answer(question: Question, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a generic answer payload against the question type.

    Raises:
        ApiError: 400 when the type is not answered through the generic
            endpoint or the payload is invalid.
    """
    if is_code_reading(question):
        model = CodeReadingAnswer
    else:
        model = ANSWER_MODELS.get(QuestionType(question.type))
    if model is None:
        raise bad_request(f"Answers to {question.type} questions are edited through their files or queries")
    try:
        answer = model.model_validate(payload).model_dump(mode="json")
    except ValidationError as e:
        raise bad_request(f"Invalid answer: {e.errors()[0]['msg']}") from e

    config = question.type_specific or {}
    if question.type == QuestionType.multipleChoice:
        known = {option["id"] for option in config.get("options") or []}
        if not set(answer["option_ids"]) <= known:
            raise bad_request("Unknown option")
        if config.get("activate_selection_limit") and len(answer["option_ids"]) > int(config.get("selection_limit") or 0):
            raise bad_request("Too many options selected")
    return answer


async def save_answer(
    session: AsyncSession, entry: EvaluationToQuestion, question: Question, answer: StudentAnswer, document: Dict[str, Any]
) -> StudentAnswer:
    """Store an answer document, mark it in progress and regrade. Commits."""
    answer.answer = document
    answer.status = StudentAnswerStatus.IN_PROGRESS
    answer.updated_at = utc_now()
    session.add(answer)
    await regrade(session, question, entry.grading_points, answer)
    await session.commit()
    await session.refresh(answer)
    return answer


async def save_code_file(
    session: AsyncSession,
    entry: EvaluationToQuestion,
    question: Question,
    answer: StudentAnswer,
    file_id: str,
    content: str,
) -> File:
    """Update one of the student's code files and keep a history snapshot. Commits."""
    link = await session.get(StudentAnswerCodeToFile, (answer.user_email, answer.question_id, file_id))
    if link is None:
        raise not_found("File not found")
    if link.student_permission != StudentPermission.UPDATE:
        raise forbidden("This file cannot be edited")
    code_file = await session.get(File, file_id)
    code_file.content = content
    code_file.updated_at = utc_now()
    session.add(code_file)
    session.add(
        StudentAnswerCodeHistory(
            user_email=answer.user_email,
            question_id=answer.question_id,
            file_id=code_file.id,
            path=code_file.path,
            content=content,
        )
    )
    document = dict(answer.answer or {})
    document["test_results"] = []
    await save_answer(session, entry, question, answer, document)
    await session.refresh(code_file)
    return code_file


async def save_database_query(
    session: AsyncSession,
    entry: EvaluationToQuestion,
    question: Question,
    answer: StudentAnswer,
    query_id: str,
    content: str,
) -> DatabaseQuery:
    """Update one of the student's SQL queries. Commits."""
    link = await session.get(StudentAnswerDatabaseToQuery, (answer.user_email, answer.question_id, query_id))
    if link is None:
        raise not_found("Query not found")
    query = await session.get(DatabaseQuery, query_id)
    if query.student_permission != StudentPermission.UPDATE:
        raise forbidden("This query cannot be edited")
    query.content = content
    query.output = None
    query.output_status = None
    query.updated_at = utc_now()
    session.add(query)
    await save_answer(session, entry, question, answer, dict(answer.answer or {}))
    await session.refresh(query)
    return query
