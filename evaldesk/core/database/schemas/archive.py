"""
Schema models for the administrative archival workflow and statistics.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from evaldesk.core.models import ArchivalPhase, EvaluationPhase


class ArchiveListMode(str, Enum):
    todo = "todo"
    pending = "pending"
    done = "done"


class ArchiveEntryRead(BaseModel):
    id: str
    label: str
    phase: EvaluationPhase
    archival_phase: ArchivalPhase
    archival_deadline: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    archived_by_user_email: Optional[str] = None
    purged_at: Optional[datetime] = None
    purged_by_user_email: Optional[str] = None
    excluded_from_archival_comment: Optional[str] = None
    group_scope: str
    group_label: str
    students: int
    questions: int
    updated_at: datetime


class MarkForArchival(BaseModel):
    archival_deadline: date


class ArchiveWithDate(BaseModel):
    archive_date: Optional[datetime] = None


class ExcludeFromArchival(BaseModel):
    comment: str = Field(min_length=1)


class StatisticsRead(BaseModel):
    academic_year: str
    start: datetime
    end: datetime
    excluded_groups: List[str]
    counts: Dict[str, int]
    active_professors: List[str]


class AcademicYearsRead(BaseModel):
    years: List[str]
