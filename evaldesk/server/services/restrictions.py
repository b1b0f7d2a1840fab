"""
Student Access Restrictions.

Every student route addressing an evaluation runs ``check_student_access``,
which applies in order:

1. the evaluation must be past its composition phase;
2. the desktop application, when required;
3. the IP restrictions, when configured;
4. the access list, in ``LINK_AND_ACCESS_LIST`` mode.

IP restrictions are a comma separated list where each entry is a CIDR block
(``10.0.0.0/8``), an inclusive range (``192.168.1.10-192.168.1.20``) or a
single address, IPv4 or IPv6. Malformed entries never match.
"""

from __future__ import annotations

import ipaddress
from typing import List, Optional, Union

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from evaldesk.core.database.base import utc_now
from evaldesk.core.database.entities import Evaluation, UserOnEvaluationDeniedAccessAttempt
from evaldesk.core.database.schemas.groups import SessionUser
from evaldesk.core.logging_config import get_logger
from evaldesk.core.models import EvaluationPhase, UserOnEvaluationAccessMode
from evaldesk.server.core.constant import DESKTOP_APP_HEADER, DESKTOP_APP_USER_AGENT
from evaldesk.server.errors import bad_request, unauthorized

logger = get_logger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def normalize_ip(raw: Optional[str]) -> Optional[IPAddress]:
    """Parse a client address as found in headers or on the socket.

    Strips brackets, an IPv4 port suffix and the IPv6 zone id, and unwraps
    IPv4-mapped IPv6 addresses (``::ffff:10.0.0.1`` becomes ``10.0.0.1``).
    """
    if not raw:
        return None
    value = raw.strip()
    if value.startswith("["):
        value = value[1 : value.find("]")] if "]" in value else value[1:]
    elif value.count(":") == 1:
        value = value.split(":", 1)[0]
    value = value.split("%", 1)[0]
    try:
        address = ipaddress.ip_address(value)
    except ValueError:
        return None
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


def client_ip(request: Request) -> Optional[IPAddress]:
    """Client address: leftmost ``X-Forwarded-For`` entry, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        address = normalize_ip(forwarded.split(",")[0])
        if address is not None:
            return address
    if request.client is not None:
        return normalize_ip(request.client.host)
    return None


def forwarded_chain(request: Request) -> List[str]:
    forwarded = request.headers.get("x-forwarded-for", "")
    return [entry.strip() for entry in forwarded.split(",") if entry.strip()]


def _entry_matches(address: IPAddress, entry: str) -> bool:
    try:
        if "/" in entry:
            return address in ipaddress.ip_network(entry, strict=False)
        if "-" in entry:
            first, last = (normalize_ip(part) for part in entry.split("-", 1))
            if first is None or last is None or first.version != address.version or first.version != last.version:
                return False
            return first <= address <= last
        single = normalize_ip(entry)
        return single is not None and single == address
    except (ValueError, TypeError):
        logger.warning(f"Ignoring malformed IP restriction entry: {entry!r}")
        return False


def is_ip_allowed(address: Optional[IPAddress], restrictions: Optional[str]) -> bool:
    """Whether ``address`` satisfies a restriction list. An empty list allows everyone."""
    entries = [entry.strip() for entry in (restrictions or "").split(",") if entry.strip()]
    if not entries:
        return True
    if address is None:
        return False
    return any(_entry_matches(address, entry) for entry in entries)


def is_desktop_app(request: Request) -> bool:
    return (
        request.headers.get(DESKTOP_APP_HEADER, "").lower() == "true"
        and DESKTOP_APP_USER_AGENT in request.headers.get("user-agent", "")
    )


async def record_denied_attempt(session: AsyncSession, evaluation: Evaluation, user_email: str) -> None:
    """Upsert the denied access attempt of a student and commit it."""
    attempt = await session.get(UserOnEvaluationDeniedAccessAttempt, (user_email, evaluation.id))
    if attempt is None:
        attempt = UserOnEvaluationDeniedAccessAttempt(user_email=user_email, evaluation_id=evaluation.id)
    else:
        attempt.attempted_at = utc_now()
    session.add(attempt)
    await session.commit()


async def check_student_access(
    session: AsyncSession, request: Request, evaluation: Evaluation, user: SessionUser
) -> None:
    """Apply the evaluation's access restrictions to a student request.

    Raises:
        ApiError: 400 ``not-ready``, 401 ``desktop-app-required``,
            401 ``ip-restriction`` or 401 ``access-list`` (type ``info``).
    """
    if evaluation.phase.rank <= EvaluationPhase.COMPOSITION.rank:
        raise bad_request("This evaluation is not joinable", error_id="not-ready")

    if evaluation.desktop_app_required and not is_desktop_app(request):
        raise unauthorized(
            "This evaluation requires the desktop application", error_id="desktop-app-required"
        )

    if evaluation.ip_restrictions:
        address = client_ip(request)
        if not is_ip_allowed(address, evaluation.ip_restrictions):
            logger.info(f"IP {address} of {user.email} rejected on evaluation {evaluation.id}")
            raise unauthorized(
                f"Access denied: Your IP address {address} is not allowed to access this evaluation",
                error_id="ip-restriction",
            )

    if (
        evaluation.access_mode == UserOnEvaluationAccessMode.LINK_AND_ACCESS_LIST
        and user.email not in (evaluation.access_list or [])
    ):
        await record_denied_attempt(session, evaluation, user.email)
        raise unauthorized(
            "Your attempt to access this evaluation has been registered. Awaiting approval.",
            error_id="access-list",
            error_type="info",
        )
