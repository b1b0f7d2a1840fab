"""
Group entity models.

A group is the tenant of the platform (a course or a class). Its ``scope`` is
the short identifier used in URLs to authorize access to the group's
questions and evaluations.
"""

from __future__ import annotations

from pydantic import NaiveDatetime
from sqlmodel import Field

from ..base import Base, new_id, utc_now


class Group(Base, table=True):
    """Course / class tenant.

    Table: groups
    """

    __tablename__ = "groups"

    id: str = Field(default_factory=new_id, primary_key=True)
    label: str = Field(unique=True)
    scope: str = Field(unique=True, index=True)
    created_by_id: str = Field(foreign_key="users.id")

    created_at: NaiveDatetime = Field(default_factory=utc_now)

    def __repr__(self) -> str:
        return f"Group(id={self.id}, scope={self.scope})"


class UserOnGroup(Base, table=True):
    """Membership of a user in a group.

    ``selected`` marks the group shown by default to the user; at most one
    membership per user is selected.

    Table: user_on_groups
    """

    __tablename__ = "user_on_groups"

    user_id: str = Field(foreign_key="users.id", ondelete="CASCADE", primary_key=True)
    group_id: str = Field(foreign_key="groups.id", ondelete="CASCADE", primary_key=True)
    selected: bool = Field(default=False)

    def __repr__(self) -> str:
        return f"UserOnGroup(user_id={self.user_id}, group_id={self.group_id}, selected={self.selected})"
