"""
Route Authorization.

FastAPI dependencies and helpers guarding the API:

- ``get_optional_user`` / ``get_current_user``: resolve the session user.
- ``require_roles(*roles)``: the user must carry one of the roles.
- ``require_group(*roles)``: roles plus membership of the ``{group_scope}``
  path segment; yields a ``GroupContext``.
- ``load_group_question`` / ``load_group_evaluation``: the addressed entity
  must exist and belong to the group of the route.
- ``ensure_not_purged``: student data of the evaluation must still exist.

Checks are linear role-membership tests; there is no policy engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Union

from fastapi import Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from evaldesk.core.database import get_session
from evaldesk.core.database.base import utc_now
from evaldesk.core.database.entities import Evaluation, Group, Question
from evaldesk.core.database.repositories import GroupRepository
from evaldesk.core.database.schemas.groups import SessionUser
from evaldesk.core.logging_config import get_logger
from evaldesk.core.models import ArchivalPhase, Role
from evaldesk.server.errors import ApiError, not_found, unauthorized
from evaldesk.server.services.auth import extract_session_token, resolve_session_user

logger = get_logger(__name__)

PURGED_PHASES = (ArchivalPhase.PURGED, ArchivalPhase.PURGED_WITHOUT_ARCHIVAL)


@dataclass
class GroupContext:
    """Group addressed by the route and the user acting on it."""

    group: Group
    user: SessionUser


async def get_optional_user(
    request: Request, session: AsyncSession = Depends(get_session)
) -> Optional[SessionUser]:
    """Session user of the request, or None when anonymous."""
    return await resolve_session_user(session, extract_session_token(request))


async def get_current_user(user: Optional[SessionUser] = Depends(get_optional_user)) -> SessionUser:
    """Session user of the request; anonymous requests get a 401."""
    if user is None:
        raise unauthorized("Unauthorized")
    return user


def check_roles(user: SessionUser, roles: tuple) -> None:
    """Raise a 401 unless the user carries one of ``roles``."""
    if not user.roles:
        raise unauthorized("You must have a role to access this page")
    if roles and not user.has_any_role(*roles):
        names = ", ".join(role.value for role in roles)
        raise unauthorized(f"You must have one of the following roles: {names}")


def require_roles(*roles: Role) -> Callable:
    """Dependency factory: the current user must carry one of ``roles``."""

    async def dependency(user: SessionUser = Depends(get_current_user)) -> SessionUser:
        check_roles(user, roles)
        return user

    return dependency


def require_group(*roles: Role) -> Callable:
    """Dependency factory: roles check plus membership of the ``group_scope`` path parameter."""

    async def dependency(
        group_scope: str,
        user: SessionUser = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
    ) -> GroupContext:
        check_roles(user, roles)
        if group_scope not in user.groups:
            logger.info(f"User {user.email} denied access to group {group_scope}")
            raise unauthorized("You are not authorized to access this group")
        group = await GroupRepository(session).get_by_scope(group_scope)
        if group is None:
            raise not_found("Group not found")
        return GroupContext(group=group, user=user)

    return dependency


def _check_entity(entity: Optional[Union[Question, Evaluation]], group: Group):
    if entity is None:
        raise not_found("Entity not found")
    if entity.group_id != group.id:
        raise unauthorized("Entity does not belong to the group")
    return entity


async def load_group_question(session: AsyncSession, group: Group, question_id: str) -> Question:
    """Question of the route's group."""
    return _check_entity(await session.get(Question, question_id), group)


async def load_group_evaluation(session: AsyncSession, group: Group, evaluation_id: str) -> Evaluation:
    """Evaluation of the route's group."""
    return _check_entity(await session.get(Evaluation, evaluation_id), group)


async def load_evaluation(session: AsyncSession, evaluation_id: str) -> Evaluation:
    """Evaluation by id regardless of group; 404 when missing."""
    evaluation = await session.get(Evaluation, evaluation_id)
    if evaluation is None:
        raise not_found("Evaluation not found")
    return evaluation


def is_purged(evaluation: Evaluation) -> bool:
    return evaluation.archival_phase in PURGED_PHASES


def ensure_not_purged(evaluation: Evaluation) -> None:
    """Raise a 410 when the student data of the evaluation was purged."""
    if is_purged(evaluation):
        raise ApiError(
            status.HTTP_410_GONE,
            "Evaluation data has been purged.",
            error_type="info",
            error_id="evaluation-purged",
        )


def touch(session: AsyncSession, entity: Union[Question, Evaluation]) -> None:
    """Bump ``updated_at`` of a mutated question or evaluation. Does not commit."""
    entity.updated_at = utc_now()
    session.add(entity)
