"""
Question entity models.

Questions live in a group's bank (source BANK or COPY) or are frozen copies
owned by an evaluation (source EVAL). The configuration that depends on the
question type (options, fields, test cases, solution queries...) is stored
as a JSON document in ``type_specific``; its shape is described by the
schemas in ``evaldesk.core.database.schemas.questions``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import NaiveDatetime
from sqlalchemy import JSON, Column, ForeignKeyConstraint
from sqlmodel import Field

from evaldesk.core.models import (
    QuestionSource,
    QuestionStatus,
    QuestionType,
    QuestionUsageStatus,
)

from ..base import Base, new_id, utc_now


class Tag(Base, table=True):
    """Label attached to questions, unique within a group.

    Table: tags
    """

    __tablename__ = "tags"

    label: str = Field(primary_key=True)
    group_id: str = Field(foreign_key="groups.id", ondelete="CASCADE", primary_key=True)

    created_at: NaiveDatetime = Field(default_factory=utc_now)


class QuestionToTag(Base, table=True):
    """Association between a question and a tag.

    Table: question_to_tags
    """

    __tablename__ = "question_to_tags"
    __table_args__ = (
        ForeignKeyConstraint(["label", "group_id"], ["tags.label", "tags.group_id"], ondelete="CASCADE"),
    )

    question_id: str = Field(foreign_key="questions.id", ondelete="CASCADE", primary_key=True)
    label: str = Field(primary_key=True)
    group_id: str = Field(primary_key=True)


class Question(Base, table=True):
    """Question of any type.

    Table: questions
    """

    __tablename__ = "questions"

    id: str = Field(default_factory=new_id, primary_key=True)
    group_id: str = Field(foreign_key="groups.id", ondelete="CASCADE", index=True)

    type: QuestionType
    title: str = Field(default="")
    content: str = Field(default="")
    status: QuestionStatus = Field(default=QuestionStatus.ACTIVE)
    source: QuestionSource = Field(default=QuestionSource.BANK)
    source_question_id: Optional[str] = Field(
        default=None, foreign_key="questions.id", ondelete="SET NULL", nullable=True
    )
    usage_status: QuestionUsageStatus = Field(default=QuestionUsageStatus.UNUSED)
    last_used: Optional[NaiveDatetime] = Field(default=None)

    type_specific: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    created_at: NaiveDatetime = Field(default_factory=utc_now, index=True)
    updated_at: NaiveDatetime = Field(default_factory=utc_now)

    def __repr__(self) -> str:
        return f"Question(id={self.id}, type={self.type}, source={self.source})"
