"""
Session Authentication Service.

Sessions are opaque random tokens stored in the ``sessions`` table. A client
presents its token either as ``Authorization: Bearer <token>`` or through the
session cookie. The identity provider integration (out of this service)
calls ``link_or_create_user`` then ``create_session`` after a successful
login and hands the token to the browser.

A user holds at most one session: creating a new one deletes the previous
sessions and closes the event streams opened with them.
"""

from __future__ import annotations

import secrets
from datetime import timedelta
from typing import List, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from evaldesk.core.database.base import utc_now
from evaldesk.core.database.entities import User, UserSession
from evaldesk.core.database.repositories import UserRepository
from evaldesk.core.database.schemas.groups import SessionUser
from evaldesk.core.logging_config import get_logger
from evaldesk.core.models import Role
from evaldesk.server.core.config import settings
from evaldesk.server.services.sse import SSERegistry

logger = get_logger(__name__)


def extract_session_token(request: Request) -> Optional[str]:
    """Session token of a request, from the bearer header or the session cookie."""
    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return request.cookies.get(settings.auth.session_cookie) or None


async def resolve_session_user(session: AsyncSession, token: Optional[str]) -> Optional[SessionUser]:
    """Build the session user of a token, or None for unknown or expired tokens."""
    if not token:
        return None
    repository = UserRepository(session)
    found = await repository.get_by_session_token(token, utc_now())
    if found is None:
        return None
    user, _ = found
    memberships = await repository.memberships(user.id)
    selected = next((group.scope for group, membership in memberships if membership.selected), None)
    return SessionUser(
        id=user.id,
        email=user.email,
        name=user.name,
        image=user.image,
        roles=list(user.roles or []),
        groups=[group.scope for group, _ in memberships],
        selected_group=selected,
        session_token=token,
    )


async def link_or_create_user(
    session: AsyncSession, email: str, name: Optional[str] = None, roles: Optional[List[Role]] = None
) -> User:
    """Find a user by email or create it with the given roles (STUDENT by default)."""
    repository = UserRepository(session)
    user = await repository.get_by_email(email)
    if user is not None:
        return user
    user = User(email=email, name=name, roles=[role.value for role in (roles or [Role.STUDENT])])
    logger.info(f"Creating user {email} with roles {user.roles}")
    return await repository.create(user)


async def create_session(session: AsyncSession, user: User, registry: SSERegistry) -> UserSession:
    """Open a new session for a user, replacing any existing one."""
    repository = UserRepository(session)
    replaced = await repository.delete_sessions(user.id)
    user_session = UserSession(
        session_token=secrets.token_urlsafe(32),
        user_id=user.id,
        expires=utc_now() + timedelta(seconds=settings.auth.session_max_age_seconds),
    )
    session.add(user_session)
    await session.commit()
    await session.refresh(user_session)
    if replaced:
        registry.invalidate(user.id, reason="unauthenticated")
        logger.info(f"Replaced {replaced} previous session(s) of user {user.email}")
    return user_session


async def sign_out(session: AsyncSession, user: SessionUser, registry: SSERegistry) -> None:
    """Delete the current user's sessions and close their event streams."""
    await UserRepository(session).delete_sessions(user.id)
    await session.commit()
    registry.invalidate(user.id, reason="unauthenticated")
