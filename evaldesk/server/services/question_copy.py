"""
Question Replication.

A question is copied in two situations: a professor duplicates a bank
question (source ``COPY``), or an evaluation reaches registration and its
questions are frozen into copies it owns (source ``EVAL``).

The type-specific document is replicated through a registry keyed by
question type. Each replicator returns a deep copy in which the identifiers
students answer against (multiple choice options, exact match fields, code
reading snippets) are fresh.
"""

from __future__ import annotations

import copy
from typing import Any, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from evaldesk.core.database.base import new_id, utc_now
from evaldesk.core.database.entities import Question
from evaldesk.core.database.repositories import QuestionRepository
from evaldesk.core.logging_config import get_logger
from evaldesk.core.models import QuestionSource, QuestionType, QuestionUsageStatus

logger = get_logger(__name__)

Replicator = Callable[[Dict[str, Any]], Dict[str, Any]]

REPLICATORS: Dict[QuestionType, Replicator] = {}


def replicator(*question_types: QuestionType) -> Callable[[Replicator], Replicator]:
    """Register a replicator for one or more question types."""

    def decorator(func: Replicator) -> Replicator:
        for question_type in question_types:
            REPLICATORS[question_type] = func
        return func

    return decorator


def _refresh_ids(items: Any) -> None:
    for item in items or []:
        item["id"] = new_id()


@replicator(QuestionType.trueFalse, QuestionType.essay, QuestionType.web, QuestionType.database)
def replicate_plain(data: Dict[str, Any]) -> Dict[str, Any]:
    return copy.deepcopy(data)


@replicator(QuestionType.multipleChoice)
def replicate_multiple_choice(data: Dict[str, Any]) -> Dict[str, Any]:
    replica = copy.deepcopy(data)
    _refresh_ids(replica.get("options"))
    return replica


@replicator(QuestionType.exactMatch)
def replicate_exact_match(data: Dict[str, Any]) -> Dict[str, Any]:
    replica = copy.deepcopy(data)
    _refresh_ids(replica.get("fields"))
    return replica


@replicator(QuestionType.code)
def replicate_code(data: Dict[str, Any]) -> Dict[str, Any]:
    replica = copy.deepcopy(data)
    _refresh_ids((replica.get("code_reading") or {}).get("snippets"))
    return replica


def replicate_type_specific(question_type: QuestionType, data: Dict[str, Any]) -> Dict[str, Any]:
    try:
        func = REPLICATORS[QuestionType(question_type)]
    except KeyError as e:
        raise ValueError(f"No replicator registered for question type {question_type}") from e
    return func(data or {})


async def copy_question(
    session: AsyncSession,
    question: Question,
    source: QuestionSource,
    title: Optional[str] = None,
    copy_tags: bool = False,
) -> Question:
    """Create a copy of a question. Does not commit.

    Args:
        session: Async session of the surrounding transaction
        question: Question to copy
        source: ``COPY`` for a bank duplicate, ``EVAL`` for an evaluation freeze
        title: Title of the copy, defaults to the original title
        copy_tags: Replicate the tags of the original

    Returns:
        The new question, flushed so that its id is usable
    """
    if source == QuestionSource.EVAL:
        usage_status = QuestionUsageStatus.NOT_APPLICABLE
    elif question.source == QuestionSource.EVAL:
        usage_status = QuestionUsageStatus.NOT_APPLICABLE
    else:
        usage_status = QuestionUsageStatus.UNUSED

    now = utc_now()
    replica = Question(
        group_id=question.group_id,
        type=question.type,
        title=question.title if title is None else title,
        content=question.content,
        status=question.status,
        source=source,
        source_question_id=question.id,
        usage_status=usage_status,
        type_specific=replicate_type_specific(question.type, question.type_specific),
        created_at=now,
        updated_at=now,
    )
    session.add(replica)
    await session.flush()

    if copy_tags:
        repository = QuestionRepository(session)
        labels = (await repository.tags_for([question.id])).get(question.id, [])
        await repository.set_tags(replica, labels)

    logger.debug(f"Copied question {question.id} into {replica.id} ({source.value})")
    return replica
