"""
Question Bank Endpoints.

Group scoped CRUD over the question bank, tags, copies, multiple choice
options and grading policy, and the professor sandbox runs that compute the
expected outputs of code and database questions.

All routes live under `/{group_scope}/questions` and require the PROFESSOR
role plus membership of the group.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from evaldesk.core.database import get_session
from evaldesk.core.database.entities import Question
from evaldesk.core.database.repositories import QuestionFilters, QuestionRepository
from evaldesk.core.database.schemas.questions import (
    CodeSandboxRun,
    MultipleChoiceGradingUpdate,
    MultipleChoiceOptionCreate,
    MultipleChoiceOptionUpdate,
    QuestionCreate,
    QuestionRead,
    QuestionTagsUpdate,
    QuestionUpdate,
    TagRead,
    default_type_specific,
    parse_type_specific,
)
from evaldesk.core.logging_config import get_logger
from evaldesk.core.models import (
    CodeQuestionType,
    DatabaseQueryOutputStatus,
    QuestionSource,
    QuestionStatus,
    QuestionType,
    Role,
)
from evaldesk.server.errors import bad_request
from evaldesk.server.services import questions as question_service
from evaldesk.server.services.authorization import GroupContext, load_group_question, require_group, touch
from evaldesk.server.services.question_copy import copy_question
from evaldesk.server.services.sandbox import CodeSandbox, DatabaseSandbox, SandboxFile, SandboxTest, get_code_sandbox, get_database_sandbox
from evaldesk.server.services.sandbox.code_runner import snippet_files, snippet_tests

logger = get_logger(__name__)

router = APIRouter()

professor_group = require_group(Role.PROFESSOR)


async def to_read(session: AsyncSession, question: Question) -> QuestionRead:
    tags = (await QuestionRepository(session).tags_for([question.id])).get(question.id, [])
    return QuestionRead.model_validate(question).model_copy(update={"tags": tags})


def _validated_type_specific(question_type: QuestionType, data: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return parse_type_specific(question_type, data).model_dump(mode="json")
    except ValidationError as e:
        raise bad_request(f"Invalid {question_type.value} configuration: {e.errors()[0]['msg']}") from e


def _require_type(question: Question, question_type: QuestionType) -> None:
    if question.type != question_type:
        raise bad_request(f"Question is not of type {question_type.value}")


@router.get(
    "",
    response_model=List[QuestionRead],
    summary="List Questions",
    description="List the bank questions of the group with optional filters.",
)
async def list_questions(
    search: Optional[str] = None,
    tags: List[str] = Query(default=[]),
    question_types: List[QuestionType] = Query(default=[]),
    code_languages: List[str] = Query(default=[]),
    question_status: QuestionStatus = Query(default=QuestionStatus.ACTIVE, alias="status"),
    unused: bool = False,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> List[QuestionRead]:
    """
    List bank questions.

    Only questions authored in the bank or copied in it are listed; the
    frozen copies owned by evaluations are not.

    - **search**: Substring of the title or content.
    - **tags**: Every listed tag must be present (AND).
    - **question_types**: Restrict to these types.
    - **code_languages**: Restrict code questions to these languages.
    - **status**: ACTIVE (default) or ARCHIVED.
    - **unused**: Only questions never used in a started evaluation.
    """
    repository = QuestionRepository(session)
    questions = await repository.list_bank(
        ctx.group.id,
        QuestionFilters(
            search=search,
            tags=tags,
            question_types=question_types,
            code_languages=code_languages,
            status=question_status,
            unused=unused,
        ),
    )
    tag_map = await repository.tags_for([question.id for question in questions])
    return [
        QuestionRead.model_validate(question).model_copy(update={"tags": tag_map.get(question.id, [])})
        for question in questions
    ]


@router.post(
    "",
    response_model=QuestionRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create Question",
    description="Create a bank question initialised with the defaults of its type.",
)
async def create_question(
    payload: QuestionCreate,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> QuestionRead:
    """
    Create a question.

    Multiple choice questions start with two options, exact match questions
    with three fields, true/false questions with `is_true=True`, code
    questions as code writing with a template and a solution file, database
    questions with a PostgreSQL image.

    - **type**: Question type.
    - **title** / **content**: Statement of the question.
    - **type_specific**: Optional overrides merged over the type defaults.
    """
    type_specific = default_type_specific(payload.type)
    if payload.type_specific:
        type_specific = _validated_type_specific(payload.type, {**type_specific, **payload.type_specific})
    question = Question(
        group_id=ctx.group.id,
        type=payload.type,
        title=payload.title,
        content=payload.content,
        source=QuestionSource.BANK,
        type_specific=type_specific,
    )
    session.add(question)
    await session.commit()
    await session.refresh(question)
    logger.info(f"Question {question.id} ({question.type.value}) created in {ctx.group.scope}")
    return await to_read(session, question)


@router.get(
    "/tags",
    response_model=List[TagRead],
    summary="List Tags",
    description="Tags of the group with the number of questions using each of them.",
)
async def list_tags(
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> List[TagRead]:
    """
    List tags with their usage counts.
    """
    return [TagRead(label=label, count=count) for label, count in await QuestionRepository(session).tag_counts(ctx.group.id)]


@router.get(
    "/{question_id}",
    response_model=QuestionRead,
    summary="Get Question",
    responses={404: {"description": "Question not found"}, 401: {"description": "Question of another group"}},
)
async def get_question(
    question_id: str,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> QuestionRead:
    """
    Get a question with its tags and type-specific configuration.
    """
    return await to_read(session, await load_group_question(session, ctx.group, question_id))


@router.put(
    "/{question_id}",
    response_model=QuestionRead,
    summary="Update Question",
    description="Update the statement, status or type-specific configuration of a question.",
)
async def update_question(
    question_id: str,
    payload: QuestionUpdate,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> QuestionRead:
    """
    Update a question.

    Changing the status to ARCHIVED has the same effect as the archive
    endpoint.

    - **title** / **content**: Statement.
    - **status**: ACTIVE or ARCHIVED.
    - **type_specific**: Full type-specific document, validated against the question type.
    """
    question = await load_group_question(session, ctx.group, question_id)
    if payload.title is not None:
        question.title = payload.title
    if payload.content is not None:
        question.content = payload.content
    if payload.type_specific is not None:
        question.type_specific = _validated_type_specific(question.type, payload.type_specific)
    if payload.status == QuestionStatus.ARCHIVED and question.status != QuestionStatus.ARCHIVED:
        await question_service.archive_question(session, question)
    elif payload.status == QuestionStatus.ACTIVE:
        question_service.unarchive_question(question)
    touch(session, question)
    await session.commit()
    await session.refresh(question)
    return await to_read(session, question)


@router.delete(
    "/{question_id}",
    summary="Delete Question",
    description="Delete an archived question.",
    responses={400: {"description": "Only archived questions can be deleted"}},
)
async def delete_question(
    question_id: str,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
):
    """
    Delete a question. The question must be archived first.
    """
    question = await load_group_question(session, ctx.group, question_id)
    if question.status != QuestionStatus.ARCHIVED:
        raise bad_request("Only archived questions can be deleted")
    await session.delete(question)
    await session.commit()
    logger.info(f"Question {question_id} deleted from {ctx.group.scope}")
    return {"message": "Question deleted"}


@router.post(
    "/{question_id}/archive",
    response_model=QuestionRead,
    summary="Archive Question",
    description="Archive a question and remove it from evaluations still being composed.",
)
async def archive_question(
    question_id: str,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> QuestionRead:
    """
    Archive a question.

    The question is removed from evaluations in NEW, DRAFT, SETTINGS or
    COMPOSITION phase and their composition order is compacted.
    """
    question = await load_group_question(session, ctx.group, question_id)
    await question_service.archive_question(session, question)
    await session.commit()
    await session.refresh(question)
    return await to_read(session, question)


@router.post(
    "/{question_id}/unarchive",
    response_model=QuestionRead,
    summary="Unarchive Question",
)
async def unarchive_question(
    question_id: str,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> QuestionRead:
    """
    Bring an archived question back to the active bank.
    """
    question = await load_group_question(session, ctx.group, question_id)
    question_service.unarchive_question(question)
    session.add(question)
    await session.commit()
    await session.refresh(question)
    return await to_read(session, question)


@router.put(
    "/{question_id}/tags",
    response_model=QuestionRead,
    summary="Set Tags",
    description="Replace the tags of a question; unknown tags are created in the group.",
)
async def set_tags(
    question_id: str,
    payload: QuestionTagsUpdate,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> QuestionRead:
    """
    Set the tags of a question.

    - **tags**: Tag labels; blanks and duplicates are ignored.
    """
    question = await load_group_question(session, ctx.group, question_id)
    await QuestionRepository(session).set_tags(question, payload.tags)
    touch(session, question)
    await session.commit()
    await session.refresh(question)
    return await to_read(session, question)


@router.post(
    "/{question_id}/copy",
    response_model=QuestionRead,
    status_code=status.HTTP_201_CREATED,
    summary="Copy Question",
    description="Duplicate a question in the bank.",
)
async def copy_bank_question(
    question_id: str,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> QuestionRead:
    """
    Copy a question.

    The copy has source COPY, the title suffixed with " (copy)" and the same
    tags. Copies of questions owned by an evaluation are not tracked for
    usage (NOT_APPLICABLE).
    """
    question = await load_group_question(session, ctx.group, question_id)
    replica = await copy_question(session, question, QuestionSource.COPY, title=f"{question.title} (copy)", copy_tags=True)
    await session.commit()
    await session.refresh(replica)
    return await to_read(session, replica)


# =====================================================================
# Multiple choice
# =====================================================================


@router.post(
    "/{question_id}/multiple-choice/options",
    response_model=QuestionRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add Option",
)
async def add_option(
    question_id: str,
    payload: MultipleChoiceOptionCreate,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> QuestionRead:
    """
    Append an option to a multiple choice question.

    - **text**: Option label.
    - **is_correct**: Whether selecting the option is expected.
    """
    question = await load_group_question(session, ctx.group, question_id)
    _require_type(question, QuestionType.multipleChoice)
    question_service.add_option(question, payload.text, payload.is_correct)
    touch(session, question)
    await session.commit()
    await session.refresh(question)
    return await to_read(session, question)


@router.put(
    "/{question_id}/multiple-choice/options/{option_id}",
    response_model=QuestionRead,
    summary="Update Option",
)
async def update_option(
    question_id: str,
    option_id: str,
    payload: MultipleChoiceOptionUpdate,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> QuestionRead:
    """
    Update the text, correctness or position of an option.
    """
    question = await load_group_question(session, ctx.group, question_id)
    _require_type(question, QuestionType.multipleChoice)
    question_service.update_option(question, option_id, payload.model_dump(exclude_unset=True))
    touch(session, question)
    await session.commit()
    await session.refresh(question)
    return await to_read(session, question)


@router.delete(
    "/{question_id}/multiple-choice/options/{option_id}",
    response_model=QuestionRead,
    summary="Delete Option",
)
async def delete_option(
    question_id: str,
    option_id: str,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> QuestionRead:
    """
    Delete an option; the remaining options are renumbered.
    """
    question = await load_group_question(session, ctx.group, question_id)
    _require_type(question, QuestionType.multipleChoice)
    question_service.delete_option(question, option_id)
    touch(session, question)
    await session.commit()
    await session.refresh(question)
    return await to_read(session, question)


@router.get(
    "/{question_id}/multiple-choice/grading-policy",
    response_model=MultipleChoiceGradingUpdate,
    summary="Get Grading Policy",
)
async def get_grading_policy(
    question_id: str,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> MultipleChoiceGradingUpdate:
    """
    Get the grading policy of a multiple choice question.
    """
    question = await load_group_question(session, ctx.group, question_id)
    _require_type(question, QuestionType.multipleChoice)
    return MultipleChoiceGradingUpdate.model_validate(question.type_specific or {})


@router.put(
    "/{question_id}/multiple-choice/grading-policy",
    response_model=MultipleChoiceGradingUpdate,
    summary="Set Grading Policy",
)
async def set_grading_policy(
    question_id: str,
    payload: MultipleChoiceGradingUpdate,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
) -> MultipleChoiceGradingUpdate:
    """
    Set the grading policy of a multiple choice question.

    - **grading_policy**: ALL_OR_NOTHING or GRADUAL_CREDIT.
    - **threshold**: Minimum percentage of credit below which no points are given.
    - **negative_marking**: Allow negative scores with GRADUAL_CREDIT.
    """
    question = await load_group_question(session, ctx.group, question_id)
    _require_type(question, QuestionType.multipleChoice)
    question.type_specific = {**(question.type_specific or {}), **payload.model_dump(mode="json")}
    touch(session, question)
    await session.commit()
    return payload


# =====================================================================
# Sandbox runs
# =====================================================================


@router.post(
    "/{question_id}/code/sandbox",
    summary="Run Code Solution",
    description="Run the solution files of a code writing question against its test cases.",
)
async def run_code_solution(
    question_id: str,
    payload: CodeSandboxRun = CodeSandboxRun(),
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
    sandbox: CodeSandbox = Depends(get_code_sandbox),
):
    """
    Run the solution in the sandbox.

    - **update_expected_outputs**: Store the produced outputs as the expected
      outputs of the test cases.
    """
    question = await load_group_question(session, ctx.group, question_id)
    _require_type(question, QuestionType.code)
    config = question.type_specific or {}
    writing = config.get("code_writing") or {}
    test_cases = writing.get("test_cases") or []
    result = await sandbox.run(
        files=[SandboxFile(path=f["path"], content=f.get("content") or "") for f in writing.get("solution_files") or []],
        tests=[SandboxTest(exec=t["exec"], input=t.get("input") or "", expected_output=t.get("expected_output") or "") for t in test_cases],
        image=config.get("image"),
        before_all=config.get("before_all"),
    )
    if payload.update_expected_outputs and result.tests:
        updated = [
            {**test_case, "expected_output": test_result.output}
            for test_case, test_result in zip(test_cases, result.tests)
        ]
        question.type_specific = {**config, "code_writing": {**writing, "test_cases": updated}}
        touch(session, question)
        await session.commit()
    return result.to_dict()


@router.post(
    "/{question_id}/code/code-reading/sandbox",
    summary="Run Code Reading Snippets",
    description="Run every snippet of a code reading question and store its output as the expected output.",
)
async def run_code_reading(
    question_id: str,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
    sandbox: CodeSandbox = Depends(get_code_sandbox),
):
    """
    Compute the outputs of the code reading snippets.

    Students cannot run this sandbox: the outputs are what they must predict.
    """
    question = await load_group_question(session, ctx.group, question_id)
    _require_type(question, QuestionType.code)
    config = question.type_specific or {}
    if config.get("code_type") != CodeQuestionType.codeReading.value:
        raise bad_request("Question is not a code reading question")
    reading = config.get("code_reading") or {}
    snippets = sorted(reading.get("snippets") or [], key=lambda snippet: snippet.get("order", 0))
    result = await sandbox.run(
        files=snippet_files(reading.get("context_path") or "main.js", reading.get("context") or "", snippets),
        tests=snippet_tests(reading.get("context_exec") or "", snippets),
        image=config.get("image"),
        before_all=config.get("before_all"),
    )
    outputs = {index: test.output for index, test in enumerate(result.tests)}
    updated = [{**snippet, "output": outputs.get(index, "")} for index, snippet in enumerate(snippets)]
    question.type_specific = {**config, "code_reading": {**reading, "snippets": updated}}
    touch(session, question)
    await session.commit()
    return result.to_dict()


@router.post(
    "/{question_id}/database/sandbox",
    summary="Run Database Solution",
    description="Run the solution queries of a database question and store their outputs.",
)
async def run_database_solution(
    question_id: str,
    ctx: GroupContext = Depends(professor_group),
    session: AsyncSession = Depends(get_session),
    sandbox: DatabaseSandbox = Depends(get_database_sandbox),
):
    """
    Run the solution queries in a fresh database.

    Each query's output and status are stored on the solution query; queries
    after a failing one are reset to NEUTRAL.
    """
    question = await load_group_question(session, ctx.group, question_id)
    _require_type(question, QuestionType.database)
    config = question.type_specific or {}
    queries = sorted(config.get("solution_queries") or [], key=lambda query: query.get("order", 0))
    outputs = await sandbox.run([query.get("content") or "" for query in queries], image=config.get("image"))
    updated = []
    for index, query in enumerate(queries):
        if index < len(outputs):
            updated.append({**query, "output": outputs[index].to_dict(), "output_status": outputs[index].status.value})
        else:
            updated.append({**query, "output": None, "output_status": DatabaseQueryOutputStatus.NEUTRAL.value})
    question.type_specific = {**config, "solution_queries": updated}
    touch(session, question)
    await session.commit()
    return [output.to_dict() for output in outputs]
