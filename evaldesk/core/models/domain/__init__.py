"""Domain enumerations."""

from __future__ import annotations

from .enums import (
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
