"""
Database entity models.

Modules:
- users: Users and authenticated sessions
- groups: Groups (tenants) and memberships
- questions: Question bank, tags
- evaluations: Evaluations, composition, participations, denied access attempts
- answers: Student answers, gradings, code files and history, database queries, annotations
"""

from .answers import (
    Annotation,
    DatabaseQuery,
    File,
    StudentAnswer,
    StudentAnswerCodeHistory,
    StudentAnswerCodeToFile,
    StudentAnswerDatabaseToQuery,
    StudentQuestionGrading,
)
from .evaluations import (
    Evaluation,
    EvaluationToQuestion,
    UserOnEvaluation,
    UserOnEvaluationDeniedAccessAttempt,
)
from .groups import Group, UserOnGroup
from .questions import Question, QuestionToTag, Tag
from .users import User, UserSession

__all__ = [
    "Annotation",
    "DatabaseQuery",
    "Evaluation",
    "EvaluationToQuestion",
    "File",
    "Group",
    "Question",
    "QuestionToTag",
    "StudentAnswer",
    "StudentAnswerCodeHistory",
    "StudentAnswerCodeToFile",
    "StudentAnswerDatabaseToQuery",
    "StudentQuestionGrading",
    "Tag",
    "User",
    "UserOnEvaluation",
    "UserOnEvaluationDeniedAccessAttempt",
    "UserOnGroup",
    "UserSession",
]
