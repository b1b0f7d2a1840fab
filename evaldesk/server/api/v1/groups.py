"""
Group Endpoints.

Groups are the tenants of the platform. Professors create them and manage
their members; super administrators see every group with its usage counts.
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from evaldesk.core.database import get_session
from evaldesk.core.database.entities import Group, UserOnGroup
from evaldesk.core.database.repositories import GroupRepository, UserRepository
from evaldesk.core.database.schemas.groups import GroupCreate, GroupRead, GroupSummary, MemberAdd, SessionUser, UserRead
from evaldesk.core.logging_config import get_logger
from evaldesk.core.models import Role
from evaldesk.server.errors import bad_request, conflict, not_found, unauthorized
from evaldesk.server.services.authorization import require_roles

logger = get_logger(__name__)

router = APIRouter()


async def _load_group_for_member(session: AsyncSession, group_id: str, user: SessionUser) -> Group:
    repository = GroupRepository(session)
    group = await repository.get_by_id(group_id)
    if group is None:
        raise not_found("Group not found")
    if not user.has_any_role(Role.SUPER_ADMIN) and await repository.get_membership(group_id, user.id) is None:
        raise unauthorized("You are not authorized to access this group")
    return group


@router.get(
    "",
    response_model=List[GroupSummary],
    summary="List Groups",
    description="Every group with its member, bank question and evaluation counts.",
    responses={401: {"description": "Only super administrators list every group"}},
)
async def list_groups(
    _: SessionUser = Depends(require_roles(Role.SUPER_ADMIN)),
    session: AsyncSession = Depends(get_session),
) -> List[GroupSummary]:
    """
    List all groups.

    Question counts exclude the frozen copies owned by evaluations.
    """
    return [
        GroupSummary(
            **GroupRead.model_validate(group).model_dump(),
            members=members,
            questions=questions,
            evaluations=evaluations,
        )
        for group, members, questions, evaluations in await GroupRepository(session).summaries()
    ]


@router.post(
    "",
    response_model=GroupRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create Group",
    description="Create a group; the creator becomes its first member.",
    responses={
        201: {"description": "Group created"},
        409: {"description": "Label or scope already used"},
    },
)
async def create_group(
    payload: GroupCreate,
    user: SessionUser = Depends(require_roles(Role.PROFESSOR)),
    session: AsyncSession = Depends(get_session),
) -> GroupRead:
    """
    Create a group.

    - **label**: Display name, unique.
    - **scope**: URL identifier (lowercase letters, digits, `-` and `_`), unique.
    - **select**: Make the new group the creator's selected group.
    """
    existing = await session.execute(
        select(Group).where(or_(Group.label == payload.label, Group.scope == payload.scope))
    )
    if existing.scalars().first() is not None:
        raise conflict("A group with this label or scope already exists")

    group = Group(label=payload.label, scope=payload.scope, created_by_id=user.id)
    session.add(group)
    await session.flush()
    if payload.select:
        await GroupRepository(session).unselect_all(user.id)
    session.add(UserOnGroup(user_id=user.id, group_id=group.id, selected=payload.select))
    await session.commit()
    await session.refresh(group)
    logger.info(f"Group {group.scope} created by {user.email}")
    return GroupRead.model_validate(group)


@router.delete(
    "/{group_id}",
    summary="Delete Group",
    description="Delete a group with its questions and evaluations.",
    responses={
        401: {"description": "Only the creator or a super administrator may delete a group"},
        404: {"description": "Group not found"},
    },
)
async def delete_group(
    group_id: str,
    user: SessionUser = Depends(require_roles(Role.PROFESSOR, Role.SUPER_ADMIN)),
    session: AsyncSession = Depends(get_session),
):
    """
    Delete a group.
    """
    group = await GroupRepository(session).get_by_id(group_id)
    if group is None:
        raise not_found("Group not found")
    if group.created_by_id != user.id and not user.has_any_role(Role.SUPER_ADMIN):
        raise unauthorized("Only the creator of the group can delete it")
    await session.delete(group)
    await session.commit()
    logger.info(f"Group {group.scope} deleted by {user.email}")
    return {"message": "Group deleted"}


@router.get(
    "/{group_id}/members",
    response_model=List[UserRead],
    summary="List Members",
    description="Members of a group.",
)
async def list_members(
    group_id: str,
    user: SessionUser = Depends(require_roles(Role.PROFESSOR, Role.SUPER_ADMIN)),
    session: AsyncSession = Depends(get_session),
) -> List[UserRead]:
    """
    List group members, ordered by name.
    """
    await _load_group_for_member(session, group_id, user)
    return [UserRead.model_validate(member) for member in await GroupRepository(session).members(group_id)]


@router.post(
    "/{group_id}/members",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add Member",
    description="Add a user to a group by email.",
    responses={
        404: {"description": "Group or user not found"},
        409: {"description": "Already a member"},
    },
)
async def add_member(
    group_id: str,
    payload: MemberAdd,
    user: SessionUser = Depends(require_roles(Role.PROFESSOR, Role.SUPER_ADMIN)),
    session: AsyncSession = Depends(get_session),
) -> UserRead:
    """
    Add a member.

    - **email**: Email of an existing user.
    """
    await _load_group_for_member(session, group_id, user)
    member = await UserRepository(session).get_by_email(payload.email)
    if member is None:
        raise not_found("User not found")
    if await GroupRepository(session).get_membership(group_id, member.id) is not None:
        raise conflict("User is already a member of this group")
    session.add(UserOnGroup(user_id=member.id, group_id=group_id))
    await session.commit()
    return UserRead.model_validate(member)


@router.delete(
    "/{group_id}/members/{user_id}",
    summary="Remove Member",
    description="Remove a user from a group. The creator of the group cannot be removed.",
    responses={
        400: {"description": "The creator cannot be removed"},
        404: {"description": "Group or membership not found"},
    },
)
async def remove_member(
    group_id: str,
    user_id: str,
    user: SessionUser = Depends(require_roles(Role.PROFESSOR, Role.SUPER_ADMIN)),
    session: AsyncSession = Depends(get_session),
):
    """
    Remove a member.
    """
    group = await _load_group_for_member(session, group_id, user)
    if group.created_by_id == user_id:
        raise bad_request("The creator of the group cannot be removed")
    membership = await GroupRepository(session).get_membership(group_id, user_id)
    if membership is None:
        raise not_found("Membership not found")
    await session.delete(membership)
    await session.commit()
    return {"message": "Member removed"}
