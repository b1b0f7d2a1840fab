"""
Group repository.

Data access for groups and their memberships.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from evaldesk.core.models import QuestionSource

from ..entities.evaluations import Evaluation
from ..entities.groups import Group, UserOnGroup
from ..entities.questions import Question
from ..entities.users import User
from .base import SQLModelRepository


class GroupRepository(SQLModelRepository[Group]):
    """Repository for groups and memberships."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, Group)

    async def get_by_scope(self, scope: str) -> Optional[Group]:
        result = await self.session.execute(select(Group).where(Group.scope == scope))
        return result.scalars().one_or_none()

    async def get_membership(self, group_id: str, user_id: str) -> Optional[UserOnGroup]:
        return await self.session.get(UserOnGroup, (user_id, group_id))

    async def members(self, group_id: str) -> List[User]:
        stmt = (
            select(User)
            .join(UserOnGroup, UserOnGroup.user_id == User.id)
            .where(UserOnGroup.group_id == group_id)
            .order_by(User.name, User.email)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def summaries(self) -> List[Tuple[Group, int, int, int]]:
        """Every group with its member, bank question and evaluation counts."""
        members = (
            select(UserOnGroup.group_id, func.count().label("n")).group_by(UserOnGroup.group_id).subquery()
        )
        questions = (
            select(Question.group_id, func.count().label("n"))
            .where(Question.source != QuestionSource.EVAL)
            .group_by(Question.group_id)
            .subquery()
        )
        evaluations = select(Evaluation.group_id, func.count().label("n")).group_by(Evaluation.group_id).subquery()
        stmt = (
            select(
                Group,
                func.coalesce(members.c.n, 0),
                func.coalesce(questions.c.n, 0),
                func.coalesce(evaluations.c.n, 0),
            )
            .outerjoin(members, members.c.group_id == Group.id)
            .outerjoin(questions, questions.c.group_id == Group.id)
            .outerjoin(evaluations, evaluations.c.group_id == Group.id)
            .order_by(Group.label)
        )
        result = await self.session.execute(stmt)
        return [(row[0], int(row[1]), int(row[2]), int(row[3])) for row in result.all()]

    async def unselect_all(self, user_id: str) -> None:
        """Clear the selected flag on every membership of a user, without committing."""
        result = await self.session.execute(
            select(UserOnGroup).where(UserOnGroup.user_id == user_id, UserOnGroup.selected == True)  # noqa: E712
        )
        for membership in result.scalars().all():
            membership.selected = False
            self.session.add(membership)
