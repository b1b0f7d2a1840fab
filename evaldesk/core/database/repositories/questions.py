"""
Question repository.

Data access for the question bank: filtered listing, tags and usage lookups.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy import delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from evaldesk.core.models import (
    QuestionSource,
    QuestionStatus,
    QuestionType,
    QuestionUsageStatus,
)

from ..entities.evaluations import Evaluation, EvaluationToQuestion
from ..entities.questions import Question, QuestionToTag, Tag
from .base import SQLModelRepository


@dataclass
class QuestionFilters:
    """Filters of the bank listing. Empty values do not filter."""

    search: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    question_types: List[QuestionType] = field(default_factory=list)
    code_languages: List[str] = field(default_factory=list)
    status: QuestionStatus = QuestionStatus.ACTIVE
    unused: bool = False


class QuestionRepository(SQLModelRepository[Question]):
    """Repository for questions and tags."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, Question)

    async def list_bank(self, group_id: str, filters: QuestionFilters) -> List[Question]:
        """List the bank questions of a group.

        Every tag of ``filters.tags`` must be present on a question (AND). The
        code language filter applies to code questions only and runs on the
        loaded rows since the language lives in the JSON document.
        """
        stmt = select(Question).where(
            Question.group_id == group_id,
            Question.source.in_([QuestionSource.BANK, QuestionSource.COPY]),
            Question.status == filters.status,
        )
        if filters.search:
            pattern = f"%{filters.search.lower()}%"
            stmt = stmt.where(or_(func.lower(Question.title).like(pattern), func.lower(Question.content).like(pattern)))
        for tag in filters.tags:
            tagged = select(QuestionToTag.question_id).where(
                QuestionToTag.group_id == group_id, QuestionToTag.label == tag
            )
            stmt = stmt.where(Question.id.in_(tagged))
        if filters.question_types:
            stmt = stmt.where(Question.type.in_(filters.question_types))
        if filters.unused:
            stmt = stmt.where(Question.usage_status == QuestionUsageStatus.UNUSED)
        stmt = stmt.order_by(Question.updated_at.desc())

        questions = list((await self.session.execute(stmt)).scalars().all())
        if filters.code_languages:
            questions = [
                question
                for question in questions
                if question.type != QuestionType.code
                or question.type_specific.get("language") in filters.code_languages
            ]
        return questions

    async def tags_for(self, question_ids: List[str]) -> Dict[str, List[str]]:
        """Tag labels of several questions, keyed by question id."""
        if not question_ids:
            return {}
        stmt = (
            select(QuestionToTag)
            .where(QuestionToTag.question_id.in_(question_ids))
            .order_by(QuestionToTag.label)
        )
        tags: Dict[str, List[str]] = {question_id: [] for question_id in question_ids}
        for link in (await self.session.execute(stmt)).scalars().all():
            tags[link.question_id].append(link.label)
        return tags

    async def set_tags(self, question: Question, labels: List[str]) -> None:
        """Replace the tags of a question, creating missing tags. Does not commit."""
        await self.session.execute(delete(QuestionToTag).where(QuestionToTag.question_id == question.id))
        for label in dict.fromkeys(label.strip() for label in labels if label.strip()):
            if await self.session.get(Tag, (label, question.group_id)) is None:
                self.session.add(Tag(label=label, group_id=question.group_id))
                await self.session.flush()
            self.session.add(QuestionToTag(question_id=question.id, label=label, group_id=question.group_id))

    async def tag_counts(self, group_id: str) -> List[tuple[str, int]]:
        """Tags of a group with the number of bank questions using them."""
        stmt = (
            select(Tag.label, func.count(QuestionToTag.question_id))
            .outerjoin(QuestionToTag, (QuestionToTag.label == Tag.label) & (QuestionToTag.group_id == Tag.group_id))
            .where(Tag.group_id == group_id)
            .group_by(Tag.label)
            .order_by(Tag.label)
        )
        return [(row[0], int(row[1])) for row in (await self.session.execute(stmt)).all()]

    async def last_usage(self, question_id: str) -> Optional[EvaluationToQuestion]:
        """Most recent composition entry using the question or one of its copies."""
        stmt = (
            select(EvaluationToQuestion)
            .join(Question, Question.id == EvaluationToQuestion.question_id)
            .join(Evaluation, Evaluation.id == EvaluationToQuestion.evaluation_id)
            .where(or_(Question.id == question_id, Question.source_question_id == question_id))
            .order_by(Evaluation.created_at.desc())
            .limit(1)
        )
        return (await self.session.execute(stmt)).scalars().first()
