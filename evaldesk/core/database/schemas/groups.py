"""
Schema models for groups, users and sessions.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from evaldesk.core.models import Role


class GroupCreate(BaseModel):
    label: str = Field(min_length=1)
    scope: str = Field(min_length=1, pattern=r"^[a-z0-9][a-z0-9_-]*$")
    select: bool = False


class GroupRead(BaseModel):
    id: str
    label: str
    scope: str
    created_by_id: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GroupSummary(GroupRead):
    members: int = 0
    questions: int = 0
    evaluations: int = 0


class MembershipRead(BaseModel):
    group: GroupRead
    selected: bool


class MemberAdd(BaseModel):
    email: str


class SelectGroup(BaseModel):
    group_id: str


class UserRead(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    image: Optional[str] = None
    roles: List[str]

    model_config = ConfigDict(from_attributes=True)


class UserPage(BaseModel):
    users: List[UserRead]
    total: int
    page: int
    page_size: int
    total_pages: int


class RolesUpdate(BaseModel):
    roles: List[Role]


class SessionUser(BaseModel):
    """Authenticated user as exposed to routes and clients."""

    id: str
    email: str
    name: Optional[str] = None
    image: Optional[str] = None
    roles: List[str]
    groups: List[str] = Field(default_factory=list, description="Scopes of the user's groups, ordered by label")
    selected_group: Optional[str] = None
    session_token: Optional[str] = Field(default=None, exclude=True)

    def has_any_role(self, *roles: Role) -> bool:
        return any(role.value in self.roles for role in roles)


class SignIn(BaseModel):
    """Identity asserted by the trusted identity proxy."""

    email: str = Field(min_length=3)
    name: Optional[str] = None
    roles: Optional[List[Role]] = Field(default=None, description="Roles of a user created on first sign-in")


class SignInRead(BaseModel):
    session_token: str
    expires: datetime
    user: SessionUser
