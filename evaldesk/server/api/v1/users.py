"""
User Endpoints.

User search, the current user's groups, role management and the per-user
server-sent events stream.
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from sse_starlette.sse import EventSourceResponse, ServerSentEvent

from evaldesk.core.database import get_session
from evaldesk.core.database.entities import User
from evaldesk.core.database.repositories import GroupRepository, UserRepository
from evaldesk.core.database.schemas.groups import (
    GroupRead,
    MembershipRead,
    RolesUpdate,
    SelectGroup,
    SessionUser,
    UserPage,
    UserRead,
)
from evaldesk.core.logging_config import get_logger
from evaldesk.core.models import Role
from evaldesk.server.core.config import settings
from evaldesk.server.errors import ApiError, bad_request, not_found
from evaldesk.server.services.authorization import get_optional_user, require_roles
from evaldesk.server.services.sse import SSERegistry, TooManyConnectionsError, get_sse_registry

logger = get_logger(__name__)

router = APIRouter()


@router.get(
    "",
    response_model=UserPage,
    summary="Search Users",
    description="Paginated user search on name and email, optionally filtered by role.",
    responses={
        200: {"description": "Page of users"},
        400: {"description": "Search term too short"},
        401: {"description": "Missing role"},
    },
)
async def search_users(
    search: Optional[str] = None,
    role: Optional[Role] = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    user: SessionUser = Depends(require_roles(Role.PROFESSOR, Role.SUPER_ADMIN)),
    session: AsyncSession = Depends(get_session),
) -> UserPage:
    """
    Search users.

    Professors must provide at least two characters; super administrators
    may list every user.

    - **search**: Substring of the name or email.
    - **role**: Only users carrying this role.
    - **page** / **page_size**: Pagination (1-based).
    """
    if not user.has_any_role(Role.SUPER_ADMIN) and len((search or "").strip()) < 2:
        raise bad_request("Search must be at least 2 characters long")
    users, total, total_pages = await UserRepository(session).search(
        search.strip() if search else None, role.value if role else None, page, page_size
    )
    return UserPage(
        users=[UserRead.model_validate(found) for found in users],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
    )


@router.get(
    "/groups",
    response_model=List[MembershipRead],
    summary="My Groups",
    description="Groups of the current user, ordered by label, with the selected flag.",
)
async def my_groups(
    user: SessionUser = Depends(require_roles()),
    session: AsyncSession = Depends(get_session),
) -> List[MembershipRead]:
    """
    List the groups of the current user.
    """
    memberships = await UserRepository(session).memberships(user.id)
    return [
        MembershipRead(group=GroupRead.model_validate(group), selected=membership.selected)
        for group, membership in memberships
    ]


@router.put(
    "/groups/select",
    response_model=MembershipRead,
    summary="Select Group",
    description="Make one of the user's groups the selected one.",
    responses={404: {"description": "The user is not a member of the group"}},
)
async def select_group(
    payload: SelectGroup,
    user: SessionUser = Depends(require_roles()),
    session: AsyncSession = Depends(get_session),
) -> MembershipRead:
    """
    Select a group.

    Clears the selected flag on every other membership of the user.

    - **group_id**: Group to select.
    """
    repository = GroupRepository(session)
    membership = await repository.get_membership(payload.group_id, user.id)
    if membership is None:
        raise not_found("Membership not found")
    await repository.unselect_all(user.id)
    membership.selected = True
    session.add(membership)
    await session.commit()
    group = await repository.get_by_id(payload.group_id)
    return MembershipRead(group=GroupRead.model_validate(group), selected=True)


@router.put(
    "/{user_id}/roles",
    response_model=UserRead,
    summary="Update Roles",
    description="Replace the roles of a user.",
    responses={
        401: {"description": "Only super administrators manage roles"},
        404: {"description": "User not found"},
    },
)
async def update_roles(
    user_id: str,
    payload: RolesUpdate,
    _: SessionUser = Depends(require_roles(Role.SUPER_ADMIN)),
    session: AsyncSession = Depends(get_session),
) -> UserRead:
    """
    Update the roles of a user.

    - **roles**: New list of roles; duplicates are removed.
    """
    target = await session.get(User, user_id)
    if target is None:
        raise not_found("User not found")
    target.roles = list(dict.fromkeys(role.value for role in payload.roles))
    session.add(target)
    await session.commit()
    await session.refresh(target)
    logger.info(f"Roles of {target.email} set to {target.roles}")
    return UserRead.model_validate(target)


@router.get(
    "/session-sse",
    summary="Session Event Stream",
    description="Server-sent events stream notifying the browser about its session.",
    responses={
        200: {"description": "Event stream"},
        429: {"description": "Too many open streams for this user"},
    },
)
async def session_events(
    request: Request,
    user: Optional[SessionUser] = Depends(get_optional_user),
    registry: SSERegistry = Depends(get_sse_registry),
):
    """
    Open the session event stream.

    Anonymous clients receive `{"status": "unauthenticated"}` and the stream
    ends. Authenticated users may hold a limited number of streams; the
    stream carries session invalidations and connection slot notices, with a
    `ping` comment as heartbeat.
    """
    if user is None:

        async def unauthenticated():
            yield ServerSentEvent(data='{"status": "unauthenticated"}')

        return EventSourceResponse(unauthenticated())

    try:
        connection = registry.add(user.id)
    except TooManyConnectionsError as e:
        raise ApiError(status.HTTP_429_TOO_MANY_REQUESTS, str(e), error_id="too-many-connections") from e

    return EventSourceResponse(registry.events(connection), ping=int(settings.sse.heartbeat_seconds))
