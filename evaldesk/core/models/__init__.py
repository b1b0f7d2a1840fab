"""Core models shared by the database layer, the services and the API."""

from __future__ import annotations

from .domain import (
    ArchivalPhase,
    CodeQuestionType,
    DatabaseQueryOutputStatus,
    DatabaseQueryOutputType,
    EvaluationPhase,
    EvaluationStatus,
    MultipleChoiceGradingPolicy,
    QuestionSource,
    QuestionStatus,
    QuestionType,
    QuestionUsageStatus,
    Role,
    StudentAnswerStatus,
    StudentPermission,
    StudentQuestionGradingStatus,
    UserOnEvaluationAccessMode,
    UserOnEvaluationStatus,
)

__all__ = [
    "ArchivalPhase",
    "CodeQuestionType",
    "DatabaseQueryOutputStatus",
    "DatabaseQueryOutputType",
    "EvaluationPhase",
    "EvaluationStatus",
    "MultipleChoiceGradingPolicy",
    "QuestionSource",
    "QuestionStatus",
    "QuestionType",
    "QuestionUsageStatus",
    "Role",
    "StudentAnswerStatus",
    "StudentPermission",
    "StudentQuestionGradingStatus",
    "UserOnEvaluationAccessMode",
    "UserOnEvaluationStatus",
]
