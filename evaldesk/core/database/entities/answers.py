"""
Student answer entity models.

Every student joining an evaluation receives one ``StudentAnswer`` and one
``StudentQuestionGrading`` per question. Simple answers (options, fields,
essay text, reading outputs, test results) live in the ``answer`` JSON
document; code files and database queries are rows of their own so that
history and annotations can point at them.

Deleting these rows is what the purge transaction does, which is why the
link tables cascade from both sides.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import NaiveDatetime
from sqlalchemy import JSON, Column, ForeignKeyConstraint
from sqlmodel import Field

from evaldesk.core.models import (
    DatabaseQueryOutputStatus,
    StudentAnswerStatus,
    StudentPermission,
    StudentQuestionGradingStatus,
)

from ..base import Base, new_id, utc_now


def _student_answer_fk() -> ForeignKeyConstraint:
    return ForeignKeyConstraint(
        ["user_email", "question_id"],
        ["student_answers.user_email", "student_answers.question_id"],
        ondelete="CASCADE",
    )


class StudentAnswer(Base, table=True):
    """Answer of a student to one question.

    Table: student_answers
    """

    __tablename__ = "student_answers"

    user_email: str = Field(foreign_key="users.email", ondelete="CASCADE", primary_key=True)
    question_id: str = Field(foreign_key="questions.id", ondelete="CASCADE", primary_key=True)
    status: StudentAnswerStatus = Field(default=StudentAnswerStatus.MISSING)
    answer: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    created_at: NaiveDatetime = Field(default_factory=utc_now, index=True)
    updated_at: NaiveDatetime = Field(default_factory=utc_now)


class StudentQuestionGrading(Base, table=True):
    """Grading of a student answer.

    Table: student_question_gradings
    """

    __tablename__ = "student_question_gradings"
    __table_args__ = (_student_answer_fk(),)

    user_email: str = Field(primary_key=True)
    question_id: str = Field(primary_key=True)
    status: StudentQuestionGradingStatus = Field(default=StudentQuestionGradingStatus.UNGRADED)
    points_obtained: float = Field(default=0.0)
    signed_by_user_email: Optional[str] = Field(default=None)
    comment: Optional[str] = Field(default=None)

    created_at: NaiveDatetime = Field(default_factory=utc_now)


class File(Base, table=True):
    """Source file edited by a student.

    Table: files
    """

    __tablename__ = "files"

    id: str = Field(default_factory=new_id, primary_key=True)
    path: str
    content: str = Field(default="")

    created_at: NaiveDatetime = Field(default_factory=utc_now)
    updated_at: NaiveDatetime = Field(default_factory=utc_now)


class StudentAnswerCodeToFile(Base, table=True):
    """Link between a code answer and one of its files.

    Table: student_answer_code_to_files
    """

    __tablename__ = "student_answer_code_to_files"
    __table_args__ = (_student_answer_fk(),)

    user_email: str = Field(primary_key=True)
    question_id: str = Field(primary_key=True)
    file_id: str = Field(foreign_key="files.id", ondelete="CASCADE", primary_key=True)
    order: int = Field(default=0)
    student_permission: StudentPermission = Field(default=StudentPermission.UPDATE)


class StudentAnswerCodeHistory(Base, table=True):
    """Snapshot of a code file each time a student saves it.

    Table: student_answer_code_histories
    """

    __tablename__ = "student_answer_code_histories"
    __table_args__ = (_student_answer_fk(),)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_email: str = Field(index=True)
    question_id: str = Field(index=True)
    file_id: Optional[str] = Field(default=None)
    path: str
    content: str = Field(default="")

    created_at: NaiveDatetime = Field(default_factory=utc_now)


class DatabaseQuery(Base, table=True):
    """SQL query written (or viewed) by a student.

    Table: database_queries
    """

    __tablename__ = "database_queries"

    id: str = Field(default_factory=new_id, primary_key=True)
    order: int = Field(default=0)
    title: str = Field(default="")
    description: Optional[str] = Field(default=None)
    content: str = Field(default="")
    student_permission: StudentPermission = Field(default=StudentPermission.UPDATE)
    output_status: Optional[DatabaseQueryOutputStatus] = Field(default=None)
    output: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))

    created_at: NaiveDatetime = Field(default_factory=utc_now)
    updated_at: NaiveDatetime = Field(default_factory=utc_now)


class StudentAnswerDatabaseToQuery(Base, table=True):
    """Link between a database answer and one of its queries.

    Table: student_answer_database_to_queries
    """

    __tablename__ = "student_answer_database_to_queries"
    __table_args__ = (_student_answer_fk(),)

    user_email: str = Field(primary_key=True)
    question_id: str = Field(primary_key=True)
    query_id: str = Field(foreign_key="database_queries.id", ondelete="CASCADE", primary_key=True)


class Annotation(Base, table=True):
    """Professor annotation on a student answer, optionally on one code file.

    Table: annotations
    """

    __tablename__ = "annotations"
    __table_args__ = (_student_answer_fk(),)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_email: str = Field(index=True)
    question_id: str = Field(index=True)
    file_id: Optional[str] = Field(default=None, foreign_key="files.id", ondelete="CASCADE", nullable=True)
    content: str = Field(default="")
    created_by_email: str

    created_at: NaiveDatetime = Field(default_factory=utc_now)
    updated_at: NaiveDatetime = Field(default_factory=utc_now)
