"""
Evaluation repository.

Data access for evaluations, their composition and their participants.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..entities.evaluations import (
    Evaluation,
    EvaluationToQuestion,
    UserOnEvaluation,
    UserOnEvaluationDeniedAccessAttempt,
)
from ..entities.groups import Group
from ..entities.questions import Question
from ..entities.users import User
from .base import SQLModelRepository


class EvaluationRepository(SQLModelRepository[Evaluation]):
    """Repository for evaluations and their satellites."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, Evaluation)

    async def list_for_group(self, group_id: str) -> List[Evaluation]:
        stmt = select(Evaluation).where(Evaluation.group_id == group_id).order_by(Evaluation.updated_at.desc())
        return list((await self.session.execute(stmt)).scalars().all())

    async def get_with_group(self, evaluation_id: str) -> Optional[Tuple[Evaluation, Group]]:
        stmt = select(Evaluation, Group).join(Group, Group.id == Evaluation.group_id).where(Evaluation.id == evaluation_id)
        row = (await self.session.execute(stmt)).first()
        return (row[0], row[1]) if row else None

    async def get_by_pin(self, pin: str) -> Optional[Tuple[Evaluation, Group]]:
        stmt = select(Evaluation, Group).join(Group, Group.id == Evaluation.group_id).where(Evaluation.pin == pin)
        row = (await self.session.execute(stmt)).first()
        return (row[0], row[1]) if row else None

    async def pin_exists(self, pin: str) -> bool:
        stmt = select(func.count()).select_from(Evaluation).where(Evaluation.pin == pin)
        return (await self.session.execute(stmt)).scalar_one() > 0

    async def composition(self, evaluation_id: str) -> List[Tuple[EvaluationToQuestion, Question]]:
        """Composition entries with their question, in evaluation order."""
        stmt = (
            select(EvaluationToQuestion, Question)
            .join(Question, Question.id == EvaluationToQuestion.question_id)
            .where(EvaluationToQuestion.evaluation_id == evaluation_id)
            .order_by(EvaluationToQuestion.order)
        )
        return [(row[0], row[1]) for row in (await self.session.execute(stmt)).all()]

    async def get_entry(self, evaluation_id: str, question_id: str) -> Optional[EvaluationToQuestion]:
        return await self.session.get(EvaluationToQuestion, (evaluation_id, question_id))

    async def compact_order(self, evaluation_id: str) -> None:
        """Renumber the composition ``0..n-1`` keeping the current order. Does not commit."""
        for index, (entry, _) in enumerate(await self.composition(evaluation_id)):
            if entry.order != index:
                entry.order = index
                self.session.add(entry)

    async def participants(self, evaluation_id: str) -> List[Tuple[UserOnEvaluation, User]]:
        stmt = (
            select(UserOnEvaluation, User)
            .join(User, User.email == UserOnEvaluation.user_email)
            .where(UserOnEvaluation.evaluation_id == evaluation_id)
            .order_by(User.name, User.email)
        )
        return [(row[0], row[1]) for row in (await self.session.execute(stmt)).all()]

    async def get_participation(self, evaluation_id: str, user_email: str) -> Optional[UserOnEvaluation]:
        return await self.session.get(UserOnEvaluation, (user_email, evaluation_id))

    async def denied_attempts(self, evaluation_id: str) -> List[Tuple[UserOnEvaluationDeniedAccessAttempt, User]]:
        stmt = (
            select(UserOnEvaluationDeniedAccessAttempt, User)
            .join(User, User.email == UserOnEvaluationDeniedAccessAttempt.user_email)
            .where(UserOnEvaluationDeniedAccessAttempt.evaluation_id == evaluation_id)
            .order_by(UserOnEvaluationDeniedAccessAttempt.attempted_at)
        )
        return [(row[0], row[1]) for row in (await self.session.execute(stmt)).all()]

    async def clear_denied_attempts(self, evaluation_id: str, emails: Optional[List[str]] = None) -> None:
        """Remove the denied attempts of an evaluation, only those of ``emails`` when given. Does not commit."""
        stmt = delete(UserOnEvaluationDeniedAccessAttempt).where(
            UserOnEvaluationDeniedAccessAttempt.evaluation_id == evaluation_id
        )
        if emails is not None:
            stmt = stmt.where(UserOnEvaluationDeniedAccessAttempt.user_email.in_(emails))
        await self.session.execute(stmt)
