"""Initial schema for evaldesk

Revision ID: 20260901_000000
Revises: None
Create Date: 2026-09-01 00:00:00.000000

This is the initial migration that creates the tables of the evaluation
platform:
- Users, sessions, groups and memberships
- Question bank and tags
- Evaluations, composition, participations and denied access attempts
- Student answers, gradings, code files and history, database queries, annotations

Revision format: YYYYMMDD_HHMMSS_description

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ENUM

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20260901_000000"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUMS = {
    "evaluationphase": (
        "NEW",
        "DRAFT",
        "SETTINGS",
        "COMPOSITION",
        "REGISTRATION",
        "IN_PROGRESS",
        "GRADING",
        "FINISHED",
    ),
    "evaluationstatus": ("ACTIVE", "ARCHIVED"),
    "archivalphase": (
        "ACTIVE",
        "MARKED_FOR_ARCHIVAL",
        "ARCHIVED",
        "PURGED",
        "PURGED_WITHOUT_ARCHIVAL",
        "EXCLUDED_FROM_ARCHIVAL",
    ),
    "useronevaluationaccessmode": ("LINK_ONLY", "LINK_AND_ACCESS_LIST"),
    "useronevaluationstatus": ("IN_PROGRESS", "FINISHED"),
    "questiontype": ("multipleChoice", "trueFalse", "essay", "web", "exactMatch", "code", "database"),
    "questionsource": ("BANK", "COPY", "EVAL"),
    "questionstatus": ("ACTIVE", "ARCHIVED"),
    "questionusagestatus": ("UNUSED", "USED", "NOT_APPLICABLE"),
    "studentanswerstatus": ("MISSING", "IN_PROGRESS", "SUBMITTED"),
    "studentpermission": ("UPDATE", "VIEW", "HIDDEN"),
    "studentquestiongradingstatus": ("UNGRADED", "AUTOGRADED", "GRADED"),
    "databasequeryoutputstatus": ("SUCCESS", "ERROR", "RUNNING", "NEUTRAL"),
}


def enum(name: str) -> ENUM:
    return ENUM(*ENUMS[name], name=name, create_type=False)


def student_answer_fk() -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint(
        ["user_email", "question_id"],
        ["student_answers.user_email", "student_answers.question_id"],
        ondelete="CASCADE",
    )


def upgrade() -> None:
    """Create all tables."""
    bind = op.get_bind()
    for name in ENUMS:
        ENUM(*ENUMS[name], name=name).create(bind, checkfirst=True)

    # Users and sessions
    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("image", sa.String(), nullable=True),
        sa.Column("roles", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "sessions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("session_token", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("expires", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sessions_session_token", "sessions", ["session_token"], unique=True)
    op.create_index("ix_sessions_user_id", "sessions", ["user_id"])

    # Groups
    op.create_table(
        "groups",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("label", sa.String(), nullable=False),
        sa.Column("scope", sa.String(), nullable=False),
        sa.Column("created_by_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("label"),
    )
    op.create_index("ix_groups_scope", "groups", ["scope"], unique=True)

    op.create_table(
        "user_on_groups",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("group_id", sa.String(), nullable=False),
        sa.Column("selected", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id", "group_id"),
    )

    # Question bank
    op.create_table(
        "tags",
        sa.Column("label", sa.String(), nullable=False),
        sa.Column("group_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("label", "group_id"),
    )

    op.create_table(
        "questions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("group_id", sa.String(), nullable=False),
        sa.Column("type", enum("questiontype"), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("content", sa.String(), nullable=False),
        sa.Column("status", enum("questionstatus"), nullable=False),
        sa.Column("source", enum("questionsource"), nullable=False),
        sa.Column("source_question_id", sa.String(), nullable=True),
        sa.Column("usage_status", enum("questionusagestatus"), nullable=False),
        sa.Column("last_used", sa.DateTime(), nullable=True),
        sa.Column("type_specific", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["source_question_id"], ["questions.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_questions_group_id", "questions", ["group_id"])
    op.create_index("ix_questions_created_at", "questions", ["created_at"])

    op.create_table(
        "question_to_tags",
        sa.Column("question_id", sa.String(), nullable=False),
        sa.Column("label", sa.String(), nullable=False),
        sa.Column("group_id", sa.String(), nullable=False),
        sa.ForeignKeyConstraint(["question_id"], ["questions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["label", "group_id"], ["tags.label", "tags.group_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("question_id", "label", "group_id"),
    )

    # Evaluations
    op.create_table(
        "evaluations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("group_id", sa.String(), nullable=False),
        sa.Column("label", sa.String(), nullable=False),
        sa.Column("phase", enum("evaluationphase"), nullable=False),
        sa.Column("status", enum("evaluationstatus"), nullable=False),
        sa.Column("pin", sa.String(), nullable=True),
        sa.Column("conditions", sa.String(), nullable=False),
        sa.Column("desktop_app_required", sa.Boolean(), nullable=False),
        sa.Column("ip_restrictions", sa.String(), nullable=True),
        sa.Column("access_mode", enum("useronevaluationaccessmode"), nullable=False),
        sa.Column("access_list", sa.JSON(), nullable=False),
        sa.Column("duration_active", sa.Boolean(), nullable=False),
        sa.Column("duration_hours", sa.Integer(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("consultation_enabled", sa.Boolean(), nullable=False),
        sa.Column("show_solutions_when_finished", sa.Boolean(), nullable=False),
        sa.Column("start_at", sa.DateTime(), nullable=True),
        sa.Column("end_at", sa.DateTime(), nullable=True),
        sa.Column("archival_phase", enum("archivalphase"), nullable=False),
        sa.Column("archival_deadline", sa.DateTime(), nullable=True),
        sa.Column("archived_at", sa.DateTime(), nullable=True),
        sa.Column("archived_by_user_email", sa.String(), nullable=True),
        sa.Column("purged_at", sa.DateTime(), nullable=True),
        sa.Column("purged_by_user_email", sa.String(), nullable=True),
        sa.Column("excluded_from_archival_at", sa.DateTime(), nullable=True),
        sa.Column("excluded_from_archival_by_user_email", sa.String(), nullable=True),
        sa.Column("excluded_from_archival_comment", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("group_id", "label", name="uq_evaluations_group_label"),
    )
    op.create_index("ix_evaluations_group_id", "evaluations", ["group_id"])
    op.create_index("ix_evaluations_pin", "evaluations", ["pin"], unique=True)
    op.create_index("ix_evaluations_archival_phase", "evaluations", ["archival_phase"])
    op.create_index("ix_evaluations_created_at", "evaluations", ["created_at"])

    op.create_table(
        "evaluation_to_questions",
        sa.Column("evaluation_id", sa.String(), nullable=False),
        sa.Column("question_id", sa.String(), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.Column("points", sa.Float(), nullable=False),
        sa.Column("grading_points", sa.Float(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.ForeignKeyConstraint(["evaluation_id"], ["evaluations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["question_id"], ["questions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("evaluation_id", "question_id"),
    )

    op.create_table(
        "user_on_evaluations",
        sa.Column("user_email", sa.String(), nullable=False),
        sa.Column("evaluation_id", sa.String(), nullable=False),
        sa.Column("status", enum("useronevaluationstatus"), nullable=False),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.Column("original_session_token", sa.String(), nullable=True),
        sa.Column("has_session_changed", sa.Boolean(), nullable=False),
        sa.Column("session_change_detected_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_email"], ["users.email"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["evaluation_id"], ["evaluations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_email", "evaluation_id"),
    )

    op.create_table(
        "user_on_evaluation_denied_access_attempts",
        sa.Column("user_email", sa.String(), nullable=False),
        sa.Column("evaluation_id", sa.String(), nullable=False),
        sa.Column("attempted_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_email"], ["users.email"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["evaluation_id"], ["evaluations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_email", "evaluation_id"),
    )

    # Student answers
    op.create_table(
        "student_answers",
        sa.Column("user_email", sa.String(), nullable=False),
        sa.Column("question_id", sa.String(), nullable=False),
        sa.Column("status", enum("studentanswerstatus"), nullable=False),
        sa.Column("answer", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_email"], ["users.email"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["question_id"], ["questions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_email", "question_id"),
    )
    op.create_index("ix_student_answers_created_at", "student_answers", ["created_at"])

    op.create_table(
        "student_question_gradings",
        sa.Column("user_email", sa.String(), nullable=False),
        sa.Column("question_id", sa.String(), nullable=False),
        sa.Column("status", enum("studentquestiongradingstatus"), nullable=False),
        sa.Column("points_obtained", sa.Float(), nullable=False),
        sa.Column("signed_by_user_email", sa.String(), nullable=True),
        sa.Column("comment", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        student_answer_fk(),
        sa.PrimaryKeyConstraint("user_email", "question_id"),
    )

    op.create_table(
        "files",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("path", sa.String(), nullable=False),
        sa.Column("content", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "student_answer_code_to_files",
        sa.Column("user_email", sa.String(), nullable=False),
        sa.Column("question_id", sa.String(), nullable=False),
        sa.Column("file_id", sa.String(), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.Column("student_permission", enum("studentpermission"), nullable=False),
        student_answer_fk(),
        sa.ForeignKeyConstraint(["file_id"], ["files.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_email", "question_id", "file_id"),
    )

    op.create_table(
        "student_answer_code_histories",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_email", sa.String(), nullable=False),
        sa.Column("question_id", sa.String(), nullable=False),
        sa.Column("file_id", sa.String(), nullable=True),
        sa.Column("path", sa.String(), nullable=False),
        sa.Column("content", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        student_answer_fk(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_student_answer_code_histories_user_email", "student_answer_code_histories", ["user_email"])
    op.create_index("ix_student_answer_code_histories_question_id", "student_answer_code_histories", ["question_id"])

    op.create_table(
        "database_queries",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("content", sa.String(), nullable=False),
        sa.Column("student_permission", enum("studentpermission"), nullable=False),
        sa.Column("output_status", enum("databasequeryoutputstatus"), nullable=True),
        sa.Column("output", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "student_answer_database_to_queries",
        sa.Column("user_email", sa.String(), nullable=False),
        sa.Column("question_id", sa.String(), nullable=False),
        sa.Column("query_id", sa.String(), nullable=False),
        student_answer_fk(),
        sa.ForeignKeyConstraint(["query_id"], ["database_queries.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_email", "question_id", "query_id"),
    )

    op.create_table(
        "annotations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_email", sa.String(), nullable=False),
        sa.Column("question_id", sa.String(), nullable=False),
        sa.Column("file_id", sa.String(), nullable=True),
        sa.Column("content", sa.String(), nullable=False),
        sa.Column("created_by_email", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        student_answer_fk(),
        sa.ForeignKeyConstraint(["file_id"], ["files.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_annotations_user_email", "annotations", ["user_email"])
    op.create_index("ix_annotations_question_id", "annotations", ["question_id"])


def downgrade() -> None:
    """Drop all tables created in upgrade."""
    op.drop_table("annotations")
    op.drop_table("student_answer_database_to_queries")
    op.drop_table("database_queries")
    op.drop_table("student_answer_code_histories")
    op.drop_table("student_answer_code_to_files")
    op.drop_table("files")
    op.drop_table("student_question_gradings")
    op.drop_table("student_answers")
    op.drop_table("user_on_evaluation_denied_access_attempts")
    op.drop_table("user_on_evaluations")
    op.drop_table("evaluation_to_questions")
    op.drop_table("evaluations")
    op.drop_table("question_to_tags")
    op.drop_table("questions")
    op.drop_table("tags")
    op.drop_table("user_on_groups")
    op.drop_table("groups")
    op.drop_table("sessions")
    op.drop_table("users")

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        ENUM(name=name).drop(bind, checkfirst=True)
