"""Domain enums for evaluations, questions and student answers."""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Platform roles carried by a user."""

    STUDENT = "STUDENT"
    PROFESSOR = "PROFESSOR"
    SUPER_ADMIN = "SUPER_ADMIN"
    ARCHIVIST = "ARCHIVIST"


class EvaluationPhase(str, Enum):
    """
    Lifecycle phase of an evaluation.

    Declaration order is the lifecycle order; comparisons go through
    ``EvaluationPhase.rank``.
    """

    NEW = "NEW"
    DRAFT = "DRAFT"
    SETTINGS = "SETTINGS"
    COMPOSITION = "COMPOSITION"
    REGISTRATION = "REGISTRATION"
    IN_PROGRESS = "IN_PROGRESS"
    GRADING = "GRADING"
    FINISHED = "FINISHED"

    @property
    def rank(self) -> int:
        return list(EvaluationPhase).index(self)


class EvaluationStatus(str, Enum):
    """Visibility status of an evaluation in the professor's list."""

    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class ArchivalPhase(str, Enum):
    """Administrative archival state of an evaluation's student data."""

    ACTIVE = "ACTIVE"
    MARKED_FOR_ARCHIVAL = "MARKED_FOR_ARCHIVAL"
    ARCHIVED = "ARCHIVED"
    PURGED = "PURGED"
    PURGED_WITHOUT_ARCHIVAL = "PURGED_WITHOUT_ARCHIVAL"
    EXCLUDED_FROM_ARCHIVAL = "EXCLUDED_FROM_ARCHIVAL"


class UserOnEvaluationAccessMode(str, Enum):
    """How students are admitted to an evaluation."""

    LINK_ONLY = "LINK_ONLY"
    LINK_AND_ACCESS_LIST = "LINK_AND_ACCESS_LIST"


class UserOnEvaluationStatus(str, Enum):
    """Progress of one student in an evaluation."""

    IN_PROGRESS = "IN_PROGRESS"
    FINISHED = "FINISHED"


class QuestionType(str, Enum):
    """Supported question types."""

    multipleChoice = "multipleChoice"
    trueFalse = "trueFalse"
    essay = "essay"
    web = "web"
    exactMatch = "exactMatch"
    code = "code"
    database = "database"


class CodeQuestionType(str, Enum):
    """Flavour of a code question."""

    codeWriting = "codeWriting"
    codeReading = "codeReading"


class QuestionSource(str, Enum):
    """Where a question row comes from."""

    BANK = "BANK"  # Authored in the group's question bank.
    COPY = "COPY"  # Copied in the bank from another question.
    EVAL = "EVAL"  # Frozen copy owned by an evaluation.


class QuestionStatus(str, Enum):
    """Bank status of a question."""

    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class QuestionUsageStatus(str, Enum):
    """Whether a bank question was already used in a started evaluation."""

    UNUSED = "UNUSED"
    USED = "USED"
    NOT_APPLICABLE = "NOT_APPLICABLE"


class StudentAnswerStatus(str, Enum):
    """Lifecycle status of a student's answer to one question."""

    MISSING = "MISSING"
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"


class StudentPermission(str, Enum):
    """What a student may do with a provided file or query."""

    UPDATE = "UPDATE"
    VIEW = "VIEW"
    HIDDEN = "HIDDEN"


class StudentQuestionGradingStatus(str, Enum):
    """Grading state of a student answer."""

    UNGRADED = "UNGRADED"
    AUTOGRADED = "AUTOGRADED"
    GRADED = "GRADED"


class MultipleChoiceGradingPolicy(str, Enum):
    """Grading policy of a multiple choice question."""

    ALL_OR_NOTHING = "ALL_OR_NOTHING"
    GRADUAL_CREDIT = "GRADUAL_CREDIT"


class DatabaseQueryOutputStatus(str, Enum):
    """Outcome of a sandboxed SQL query."""

    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    RUNNING = "RUNNING"
    NEUTRAL = "NEUTRAL"


class DatabaseQueryOutputType(str, Enum):
    """Shape of a sandboxed SQL query result."""

    TEXT = "TEXT"
    SCALAR = "SCALAR"
    TABULAR = "TABULAR"
