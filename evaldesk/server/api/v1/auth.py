"""
Session Endpoints.

Opens sessions for the identity proxy, exposes the current session, signs
out and offers a request diagnostics endpoint used when configuring IP
restrictions behind proxies.
"""

from __future__ import annotations

import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from evaldesk.core.database import get_session
from evaldesk.core.database.schemas.groups import SessionUser, SignIn, SignInRead
from evaldesk.core.logging_config import get_logger
from evaldesk.server.core.config import settings
from evaldesk.server.errors import not_found, unauthorized
from evaldesk.server.services.auth import create_session, link_or_create_user, resolve_session_user, sign_out
from evaldesk.server.services.authorization import get_current_user, get_optional_user
from evaldesk.server.services.restrictions import client_ip, forwarded_chain, is_desktop_app
from evaldesk.server.services.sse import SSERegistry, get_sse_registry

logger = get_logger(__name__)

router = APIRouter()


@router.get(
    "/auth/session",
    response_model=SessionUser,
    summary="Current Session",
    description="Return the user of the current session with their roles and groups.",
    responses={
        200: {"description": "Authenticated user"},
        401: {"description": "No valid session"},
    },
)
async def read_session(user: SessionUser = Depends(get_current_user)) -> SessionUser:
    """
    Get the current session user.

    The session token is read from the `Authorization: Bearer` header or from
    the session cookie. Expired sessions are treated as anonymous.
    """
    return user


@router.post(
    "/auth/signin",
    response_model=SignInRead,
    summary="Sign In",
    description="Open a session for an identity asserted by the trusted identity proxy.",
    responses={
        200: {"description": "Session opened, cookie set"},
        401: {"description": "Wrong proxy secret"},
        404: {"description": "Sign-in disabled"},
    },
)
async def signin(
    payload: SignIn,
    response: Response,
    x_signin_secret: Optional[str] = Header(default=None),
    session: AsyncSession = Depends(get_session),
    registry: SSERegistry = Depends(get_sse_registry),
) -> SignInRead:
    """
    Sign in.

    The identity provider flow runs in front of this service; the proxy that
    completed it calls this endpoint with the shared `X-Signin-Secret`. The
    user is created on first sign-in. Any previous session of the user is
    replaced and its event streams are closed.

    - **email**: Verified email of the user.
    - **name**: Display name.
    - **roles**: Roles of a newly created user (STUDENT by default).
    """
    expected = settings.auth.signin_secret
    if not expected:
        raise not_found("Sign-in is disabled")
    if not x_signin_secret or not secrets.compare_digest(x_signin_secret, expected):
        raise unauthorized("Unauthorized")

    user = await link_or_create_user(session, payload.email.strip().lower(), payload.name, payload.roles)
    user_session = await create_session(session, user, registry)
    response.set_cookie(
        settings.auth.session_cookie,
        user_session.session_token,
        max_age=settings.auth.session_max_age_seconds,
        httponly=True,
        samesite="lax",
    )
    logger.info(f"User {user.email} signed in")
    return SignInRead(
        session_token=user_session.session_token,
        expires=user_session.expires,
        user=await resolve_session_user(session, user_session.session_token),
    )


@router.post(
    "/auth/signout",
    summary="Sign Out",
    description="Delete the current session and close the user's event streams.",
    responses={
        200: {"description": "Signed out"},
        401: {"description": "No valid session"},
    },
)
async def signout(
    response: Response,
    user: SessionUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    registry: SSERegistry = Depends(get_sse_registry),
):
    """
    Sign out.

    Every session of the user is removed and the open server-sent event
    streams receive `{"status": "unauthenticated"}` before closing.
    """
    await sign_out(session, user, registry)
    response.delete_cookie(settings.auth.session_cookie)
    logger.info(f"User {user.email} signed out")
    return {"message": "Signed out"}


@router.get(
    "/whoami",
    summary="Request Diagnostics",
    description="Describe the request as the server sees it: client address, proxy chain and user agent.",
)
async def whoami(request: Request, user: Optional[SessionUser] = Depends(get_optional_user)):
    """
    Request diagnostics.

    - **client_ip**: Address used by IP restrictions (leftmost `X-Forwarded-For` entry or socket peer).
    - **forwarded_for**: Full `X-Forwarded-For` chain.
    - **desktop_app**: Whether the request comes from the desktop exam client.
    """
    address = client_ip(request)
    return {
        "client_ip": str(address) if address is not None else None,
        "socket_ip": request.client.host if request.client else None,
        "forwarded_for": forwarded_chain(request),
        "user_agent": request.headers.get("user-agent"),
        "desktop_app": is_desktop_app(request),
        "email": user.email if user else None,
    }
