"""
User and session entity models.

Users are identified by their email across the whole schema (participations,
answers and gradings reference ``users.email``). Sessions are opaque bearer
tokens issued after an identity provider login; a user holds at most one.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import NaiveDatetime
from sqlalchemy import JSON, Column
from sqlmodel import Field

from evaldesk.core.models import Role

from ..base import Base, new_id, utc_now


class User(Base, table=True):
    """Platform user.

    ``roles`` holds ``Role`` values; a user without role can sign in but
    cannot reach any protected route.

    Table: users
    """

    __tablename__ = "users"

    id: str = Field(default_factory=new_id, primary_key=True)
    email: str = Field(unique=True, index=True)
    name: Optional[str] = Field(default=None)
    image: Optional[str] = Field(default=None)
    roles: List[str] = Field(default_factory=lambda: [Role.STUDENT.value], sa_column=Column(JSON, nullable=False))

    created_at: NaiveDatetime = Field(default_factory=utc_now)

    def has_any_role(self, *roles: Role) -> bool:
        return any(role.value in (self.roles or []) for role in roles)

    def __repr__(self) -> str:
        return f"User(id={self.id}, email={self.email}, roles={self.roles})"


class UserSession(Base, table=True):
    """Authenticated session.

    Table: sessions
    """

    __tablename__ = "sessions"

    id: str = Field(default_factory=new_id, primary_key=True)
    session_token: str = Field(unique=True, index=True)
    user_id: str = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    expires: NaiveDatetime

    def __repr__(self) -> str:
        return f"UserSession(id={self.id}, user_id={self.user_id}, expires={self.expires})"
