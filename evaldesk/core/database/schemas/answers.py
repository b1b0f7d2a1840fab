"""
Schema models for student answers, gradings and annotations.

``ANSWER_MODELS`` maps the question types whose answer fits in the
``student_answers.answer`` document to the payload accepted by the generic
answer endpoint. Code writing and database answers are edited file by file
and query by query instead.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field

from evaldesk.core.models import (
    EvaluationPhase,
    QuestionType,
    StudentAnswerStatus,
    StudentPermission,
    StudentQuestionGradingStatus,
    UserOnEvaluationStatus,
)


class MultipleChoiceAnswer(BaseModel):
    option_ids: List[str] = Field(default_factory=list)
    comment: Optional[str] = None


class TrueFalseAnswer(BaseModel):
    is_true: Optional[bool] = None


class EssayAnswer(BaseModel):
    content: str = ""


class WebAnswer(BaseModel):
    html: str = ""
    css: str = ""
    js: str = ""


class ExactMatchFieldAnswer(BaseModel):
    field_id: str
    value: str = ""


class ExactMatchAnswer(BaseModel):
    fields: List[ExactMatchFieldAnswer] = Field(default_factory=list)


class CodeReadingOutputAnswer(BaseModel):
    snippet_id: str
    output: str = ""


class CodeReadingAnswer(BaseModel):
    outputs: List[CodeReadingOutputAnswer] = Field(default_factory=list)


ANSWER_MODELS: Dict[QuestionType, Type[BaseModel]] = {
    QuestionType.multipleChoice: MultipleChoiceAnswer,
    QuestionType.trueFalse: TrueFalseAnswer,
    QuestionType.essay: EssayAnswer,
    QuestionType.web: WebAnswer,
    QuestionType.exactMatch: ExactMatchAnswer,
}


class AnswerUpdate(BaseModel):
    """Generic answer payload; validated against the question type by the router."""

    answer: Dict[str, Any]


class ExactMatchFieldUpdate(BaseModel):
    value: str = ""


class FileUpdate(BaseModel):
    content: str


class DatabaseQueryUpdate(BaseModel):
    content: str


class StudentFileRead(BaseModel):
    id: str
    path: str
    content: str
    order: int
    student_permission: StudentPermission


class StudentQueryRead(BaseModel):
    id: str
    order: int
    title: str
    description: Optional[str] = None
    content: str
    student_permission: StudentPermission
    output: Optional[Dict[str, Any]] = None


class GradingRead(BaseModel):
    status: StudentQuestionGradingStatus
    points_obtained: float
    signed_by_user_email: Optional[str] = None
    comment: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class StudentAnswerRead(BaseModel):
    question_id: str
    status: StudentAnswerStatus
    answer: Dict[str, Any]
    files: List[StudentFileRead] = Field(default_factory=list)
    queries: List[StudentQueryRead] = Field(default_factory=list)
    grading: Optional[GradingRead] = None
    updated_at: datetime


class TakeQuestionRead(BaseModel):
    """A question as seen by a student taking the evaluation (no solutions)."""

    question_id: str
    order: int
    title: str
    points: float
    type: QuestionType
    content: str
    type_specific: Dict[str, Any]
    answer_status: StudentAnswerStatus


class TakeRead(BaseModel):
    evaluation_id: str
    label: str
    conditions: str
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    questions: List[TakeQuestionRead]


class ConsultQuestionRead(TakeQuestionRead):
    answer: StudentAnswerRead


class ConsultRead(BaseModel):
    evaluation_id: str
    label: str
    show_solutions: bool
    questions: List[ConsultQuestionRead]


class ParticipationRead(BaseModel):
    user_email: str
    evaluation_id: str
    status: UserOnEvaluationStatus
    finished_at: Optional[datetime] = None
    phase: EvaluationPhase
    created_at: datetime


class StudentStatusEvaluation(BaseModel):
    id: str
    label: str
    phase: EvaluationPhase
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    duration_active: bool
    desktop_app_required: bool


class StudentStatusRead(BaseModel):
    status: UserOnEvaluationStatus
    finished_at: Optional[datetime] = None
    has_session_changed: bool
    session_change_detected_at: Optional[datetime] = None
    evaluation: StudentStatusEvaluation


class GradingUpdate(BaseModel):
    """Professor grading of one student answer."""

    user_email: str
    question_id: str
    points_obtained: Optional[float] = Field(default=None, ge=0)
    comment: Optional[str] = None
    signed: bool = Field(default=True, description="False reverts to the automatic grading")


class AnnotationUpsert(BaseModel):
    user_email: str
    question_id: str
    file_id: Optional[str] = None
    content: str


class AnnotationRead(BaseModel):
    id: str
    user_email: str
    question_id: str
    file_id: Optional[str] = None
    content: str
    created_by_email: str
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
