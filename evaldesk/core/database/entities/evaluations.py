"""
Evaluation entity models.

An evaluation belongs to a group, is composed of ordered questions
(``evaluation_to_questions``) and is joined by students
(``user_on_evaluations``). Two independent lifecycles are tracked on the
evaluation row: the teaching ``phase`` and the administrative
``archival_phase``.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import NaiveDatetime
from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field

from evaldesk.core.models import (
    ArchivalPhase,
    EvaluationPhase,
    EvaluationStatus,
    UserOnEvaluationAccessMode,
    UserOnEvaluationStatus,
)

from ..base import Base, new_id, utc_now


class Evaluation(Base, table=True):
    """Exam instance.

    Table: evaluations
    """

    __tablename__ = "evaluations"
    __table_args__ = (UniqueConstraint("group_id", "label", name="uq_evaluations_group_label"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    group_id: str = Field(foreign_key="groups.id", ondelete="CASCADE", index=True)
    label: str

    phase: EvaluationPhase = Field(default=EvaluationPhase.NEW)
    status: EvaluationStatus = Field(default=EvaluationStatus.ACTIVE)
    pin: Optional[str] = Field(default=None, unique=True, index=True)

    # Settings
    conditions: str = Field(default="")
    desktop_app_required: bool = Field(default=False)
    ip_restrictions: Optional[str] = Field(default=None)
    access_mode: UserOnEvaluationAccessMode = Field(default=UserOnEvaluationAccessMode.LINK_ONLY)
    access_list: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    duration_active: bool = Field(default=False)
    duration_hours: int = Field(default=0)
    duration_minutes: int = Field(default=0)
    consultation_enabled: bool = Field(default=True)
    show_solutions_when_finished: bool = Field(default=False)

    start_at: Optional[NaiveDatetime] = Field(default=None)
    end_at: Optional[NaiveDatetime] = Field(default=None)

    # Archival workflow
    archival_phase: ArchivalPhase = Field(default=ArchivalPhase.ACTIVE, index=True)
    archival_deadline: Optional[NaiveDatetime] = Field(default=None)
    archived_at: Optional[NaiveDatetime] = Field(default=None)
    archived_by_user_email: Optional[str] = Field(default=None)
    purged_at: Optional[NaiveDatetime] = Field(default=None)
    purged_by_user_email: Optional[str] = Field(default=None)
    excluded_from_archival_at: Optional[NaiveDatetime] = Field(default=None)
    excluded_from_archival_by_user_email: Optional[str] = Field(default=None)
    excluded_from_archival_comment: Optional[str] = Field(default=None)

    created_at: NaiveDatetime = Field(default_factory=utc_now, index=True)
    updated_at: NaiveDatetime = Field(default_factory=utc_now)

    def __repr__(self) -> str:
        return f"Evaluation(id={self.id}, label={self.label}, phase={self.phase}, archival={self.archival_phase})"


class EvaluationToQuestion(Base, table=True):
    """Ordered composition entry of an evaluation.

    ``points`` is the weight of the question in the evaluation while
    ``grading_points`` is the scale professors grade on; the final score is
    ``points_obtained * compute_coefficient(grading_points, points)``.

    Table: evaluation_to_questions
    """

    __tablename__ = "evaluation_to_questions"

    evaluation_id: str = Field(foreign_key="evaluations.id", ondelete="CASCADE", primary_key=True)
    question_id: str = Field(foreign_key="questions.id", ondelete="CASCADE", primary_key=True)
    order: int = Field(default=0)
    points: float = Field(default=4.0)
    grading_points: float = Field(default=4.0)
    title: str = Field(default="")


class UserOnEvaluation(Base, table=True):
    """Participation of a student in an evaluation.

    Table: user_on_evaluations
    """

    __tablename__ = "user_on_evaluations"

    user_email: str = Field(foreign_key="users.email", ondelete="CASCADE", primary_key=True)
    evaluation_id: str = Field(foreign_key="evaluations.id", ondelete="CASCADE", primary_key=True)
    status: UserOnEvaluationStatus = Field(default=UserOnEvaluationStatus.IN_PROGRESS)
    finished_at: Optional[NaiveDatetime] = Field(default=None)

    # Session change detection
    original_session_token: Optional[str] = Field(default=None)
    has_session_changed: bool = Field(default=False)
    session_change_detected_at: Optional[NaiveDatetime] = Field(default=None)

    created_at: NaiveDatetime = Field(default_factory=utc_now)


class UserOnEvaluationDeniedAccessAttempt(Base, table=True):
    """Student blocked by the access list, awaiting professor approval.

    Table: user_on_evaluation_denied_access_attempts
    """

    __tablename__ = "user_on_evaluation_denied_access_attempts"

    user_email: str = Field(foreign_key="users.email", ondelete="CASCADE", primary_key=True)
    evaluation_id: str = Field(foreign_key="evaluations.id", ondelete="CASCADE", primary_key=True)
    attempted_at: NaiveDatetime = Field(default_factory=utc_now)
