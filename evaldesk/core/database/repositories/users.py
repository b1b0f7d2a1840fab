"""
User and session repository.

This module provides data access for users, their sessions and their group
memberships.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..entities.groups import Group, UserOnGroup
from ..entities.users import User, UserSession
from .base import SQLModelRepository


class UserRepository(SQLModelRepository[User]):
    """Repository for users and sessions."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async session for database operations
        """
        super().__init__(session, User)

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.email == email))
        return result.scalars().one_or_none()

    async def get_by_session_token(self, token: str, now: datetime) -> Optional[Tuple[User, UserSession]]:
        """Resolve a session token to its user.

        Args:
            token: Opaque session token
            now: Reference time; expired sessions are ignored

        Returns:
            ``(user, session)`` or None
        """
        stmt = (
            select(User, UserSession)
            .join(UserSession, UserSession.user_id == User.id)
            .where(UserSession.session_token == token, UserSession.expires > now)
        )
        row = (await self.session.execute(stmt)).first()
        if row is None:
            return None
        return row[0], row[1]

    async def delete_sessions(self, user_id: str) -> int:
        """Delete every session of a user, without committing."""
        result = await self.session.execute(delete(UserSession).where(UserSession.user_id == user_id))
        return result.rowcount or 0

    async def memberships(self, user_id: str) -> List[Tuple[Group, UserOnGroup]]:
        """Groups of a user ordered by label, with the membership row."""
        stmt = (
            select(Group, UserOnGroup)
            .join(UserOnGroup, UserOnGroup.group_id == Group.id)
            .where(UserOnGroup.user_id == user_id)
            .order_by(Group.label)
        )
        result = await self.session.execute(stmt)
        return [(row[0], row[1]) for row in result.all()]

    async def search(
        self, search: Optional[str], role: Optional[str], page: int, page_size: int
    ) -> Tuple[List[User], int, int]:
        """Paginated search on name and email.

        The role filter runs in Python because roles are a JSON array, which
        has no portable containment operator across PostgreSQL and SQLite.

        Returns:
            ``(users, total, total_pages)``
        """
        stmt = select(User).order_by(User.email)
        if search:
            pattern = f"%{search.lower()}%"
            stmt = stmt.where(or_(func.lower(User.email).like(pattern), func.lower(User.name).like(pattern)))
        users = list((await self.session.execute(stmt)).scalars().all())
        if role:
            users = [user for user in users if role in (user.roles or [])]
        total = len(users)
        total_pages = math.ceil(total / page_size) if page_size else 0
        start = (page - 1) * page_size
        return users[start : start + page_size], total, total_pages
