"""
Schema models for evaluations, their composition and their participants.

These schemas are used for API serialization/deserialization and are separate
from the entity models to allow independent evolution of API contracts.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from evaldesk.core.models import (
    ArchivalPhase,
    EvaluationPhase,
    EvaluationStatus,
    QuestionType,
    StudentAnswerStatus,
    StudentQuestionGradingStatus,
    UserOnEvaluationAccessMode,
    UserOnEvaluationStatus,
)


class EvaluationSettings(BaseModel):
    """Settings shared by creation and update."""

    conditions: Optional[str] = None
    desktop_app_required: Optional[bool] = None
    ip_restrictions: Optional[str] = None
    access_mode: Optional[UserOnEvaluationAccessMode] = None
    access_list: Optional[List[str]] = None
    duration_active: Optional[bool] = None
    duration_hours: Optional[int] = Field(default=None, ge=0)
    duration_minutes: Optional[int] = Field(default=None, ge=0, lt=60)
    consultation_enabled: Optional[bool] = None
    show_solutions_when_finished: Optional[bool] = None


class EvaluationPreset(str, Enum):
    """How a new evaluation is initialised."""

    blank = "blank"
    from_existing = "from_existing"


class EvaluationCreate(EvaluationSettings):
    """Schema for creating an evaluation."""

    label: str = Field(min_length=1)
    preset: EvaluationPreset = EvaluationPreset.blank
    template_evaluation_id: Optional[str] = Field(
        default=None, description="Evaluation copied when preset is from_existing"
    )


class EvaluationUpdate(EvaluationSettings):
    """Schema for updating evaluation settings."""

    label: Optional[str] = Field(default=None, min_length=1)
    status: Optional[EvaluationStatus] = None


class EvaluationRead(BaseModel):
    """Schema for reading an evaluation."""

    id: str
    group_id: str
    label: str
    phase: EvaluationPhase
    status: EvaluationStatus
    pin: Optional[str] = None
    conditions: str
    desktop_app_required: bool
    ip_restrictions: Optional[str] = None
    access_mode: UserOnEvaluationAccessMode
    access_list: List[str]
    duration_active: bool
    duration_hours: int
    duration_minutes: int
    consultation_enabled: bool
    show_solutions_when_finished: bool
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    archival_phase: ArchivalPhase
    archival_deadline: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    purged_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PhaseUpdate(BaseModel):
    phase: EvaluationPhase


class ProgressAction(str, Enum):
    extend = "extend"
    reduce = "reduce"


class ProgressUpdate(BaseModel):
    action: ProgressAction
    amount_minutes: int = Field(gt=0)


class CompositionAdd(BaseModel):
    question_ids: List[str] = Field(min_length=1)


class CompositionUpdate(BaseModel):
    points: Optional[float] = Field(default=None, ge=0)
    grading_points: Optional[float] = Field(default=None, ge=0)
    title: Optional[str] = None


class CompositionReorder(BaseModel):
    question_ids: List[str]


class CompositionEntryRead(BaseModel):
    question_id: str
    order: int
    points: float
    grading_points: float
    title: str
    type: QuestionType
    source_question_id: Optional[str] = None


class ParticipantRead(BaseModel):
    user_email: str
    user_name: Optional[str] = None
    status: UserOnEvaluationStatus
    finished_at: Optional[datetime] = None
    has_session_changed: bool
    created_at: datetime


class DeniedAttemptRead(BaseModel):
    user_email: str
    user_name: Optional[str] = None
    attempted_at: datetime


class ApproveAttempt(BaseModel):
    user_email: str


class QuestionResult(BaseModel):
    question_id: str
    title: str
    points: float
    grading_points: float
    points_obtained: float
    final_points: float
    answer_status: StudentAnswerStatus
    grading_status: StudentQuestionGradingStatus


class StudentResult(BaseModel):
    user_email: str
    user_name: Optional[str] = None
    total_points: float
    obtained_points: float
    questions: List[QuestionResult]


class EvaluationResults(BaseModel):
    evaluation_id: str
    label: str
    total_points: float
    students: List[StudentResult]


class PurgeStats(BaseModel):
    student_db_queries: int = 0
    files: int = 0
    code_history: int = 0
    student_answers: int = 0


class PurgeResult(BaseModel):
    message: str
    stats: PurgeStats
    evaluation: EvaluationRead


class JoinByPin(BaseModel):
    pin: str


class JoinByPinRead(BaseModel):
    evaluation_id: str
    label: str
    phase: EvaluationPhase
    status: EvaluationStatus
    group_scope: str
    group_label: str
