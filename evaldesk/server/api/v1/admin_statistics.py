"""
Usage Statistics Endpoints.

Platform usage per academic year (September to September) for super
administrators. Groups listed in the statistics configuration (demo and
test groups) are left out of every count.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from evaldesk.core.database import get_session
from evaldesk.core.database.schemas.archive import AcademicYearsRead, StatisticsRead
from evaldesk.core.database.schemas.groups import SessionUser
from evaldesk.core.models import Role
from evaldesk.server.services.authorization import require_roles
from evaldesk.server.services.statistics import academic_years, compute_statistics

router = APIRouter()


@router.get(
    "",
    response_model=StatisticsRead,
    summary="Statistics",
    description="Usage counts of one academic year.",
    responses={400: {"description": "Malformed academic year"}},
)
async def get_statistics(
    academic_year: str,
    _: SessionUser = Depends(require_roles(Role.SUPER_ADMIN)),
    session: AsyncSession = Depends(get_session),
) -> StatisticsRead:
    """
    Get the statistics of an academic year.

    - **academic_year**: `YYYY_YYYY`, the second year being the first plus one.
    """
    return await compute_statistics(session, academic_year)


@router.get(
    "/academic-years",
    response_model=AcademicYearsRead,
    summary="Academic Years",
    description="Academic years with student activity, most recent first.",
)
async def get_academic_years(
    _: SessionUser = Depends(require_roles(Role.SUPER_ADMIN)),
    session: AsyncSession = Depends(get_session),
) -> AcademicYearsRead:
    """
    List the academic years available for statistics.

    Falls back to the last five academic years when nobody answered anything yet.
    """
    return AcademicYearsRead(years=await academic_years(session))
