"""
Schema models for questions.

The ``*Config`` models describe the ``type_specific`` JSON document stored on
``questions``; ``TYPE_SPECIFIC_MODELS`` maps a question type to its model.
The remaining models are the API contract of the question bank.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field

from evaldesk.core.models import (
    CodeQuestionType,
    DatabaseQueryOutputStatus,
    MultipleChoiceGradingPolicy,
    QuestionSource,
    QuestionStatus,
    QuestionType,
    QuestionUsageStatus,
    StudentPermission,
)


def _new_id() -> str:
    return str(uuid.uuid4())


# =====================================================================
# Type-specific configuration
# =====================================================================


class MultipleChoiceOption(BaseModel):
    id: str = Field(default_factory=_new_id)
    text: str = ""
    is_correct: bool = False
    order: int = 0


class MultipleChoiceConfig(BaseModel):
    """Multiple choice configuration and grading policy."""

    grading_policy: MultipleChoiceGradingPolicy = MultipleChoiceGradingPolicy.ALL_OR_NOTHING
    negative_marking: bool = False
    threshold: float = Field(default=0, ge=0, le=100, description="Minimum percentage to earn credit")
    activate_student_comment: bool = False
    student_comment_label: Optional[str] = None
    activate_selection_limit: bool = False
    selection_limit: int = 0
    options: List[MultipleChoiceOption] = Field(
        default_factory=lambda: [
            MultipleChoiceOption(text="Option 1", is_correct=False, order=0),
            MultipleChoiceOption(text="Option 2", is_correct=True, order=1),
        ]
    )


class TrueFalseConfig(BaseModel):
    is_true: bool = True


class EssayConfig(BaseModel):
    template: str = ""
    solution: str = ""


class WebConfig(BaseModel):
    template_html: str = ""
    template_css: str = ""
    template_js: str = ""
    solution_html: str = ""
    solution_css: str = ""
    solution_js: str = ""


class ExactMatchField(BaseModel):
    id: str = Field(default_factory=_new_id)
    order: int = 0
    statement: str = ""
    match_regex: str = ""


class ExactMatchConfig(BaseModel):
    fields: List[ExactMatchField] = Field(
        default_factory=lambda: [ExactMatchField(order=index) for index in range(3)]
    )


class CodeFile(BaseModel):
    path: str
    content: str = ""
    order: int = 0
    student_permission: StudentPermission = StudentPermission.UPDATE


class CodeTestCase(BaseModel):
    index: int = 0
    exec: str
    input: str = ""
    expected_output: str = ""


class CodeWritingConfig(BaseModel):
    template_files: List[CodeFile] = Field(default_factory=list)
    solution_files: List[CodeFile] = Field(default_factory=list)
    test_cases: List[CodeTestCase] = Field(default_factory=list)


class CodeReadingSnippet(BaseModel):
    id: str = Field(default_factory=_new_id)
    order: int = 0
    snippet: str = ""
    output: str = ""


class CodeReadingConfig(BaseModel):
    """Snippets run next to a shared context file; students predict their output."""

    context_path: str = "main.js"
    context: str = ""
    context_exec: str = "node main.js"
    snippets: List[CodeReadingSnippet] = Field(default_factory=list)


class CodeConfig(BaseModel):
    language: str = "javascript"
    image: str = "node:latest"
    before_all: Optional[str] = None
    code_type: CodeQuestionType = CodeQuestionType.codeWriting
    code_writing: CodeWritingConfig = Field(
        default_factory=lambda: CodeWritingConfig(
            template_files=[CodeFile(path="main.js", content="")],
            solution_files=[CodeFile(path="main.js", content="")],
            test_cases=[CodeTestCase(index=0, exec="node main.js", input="", expected_output="")],
        )
    )
    code_reading: CodeReadingConfig = Field(default_factory=CodeReadingConfig)


class DatabaseSolutionQuery(BaseModel):
    order: int = 0
    title: str = ""
    description: Optional[str] = None
    content: str = ""
    template: str = Field(default="", description="Starting content given to students who may edit the query")
    student_permission: StudentPermission = StudentPermission.UPDATE
    output_status: Optional[DatabaseQueryOutputStatus] = None
    output: Optional[Dict[str, Any]] = None


class DatabaseConfig(BaseModel):
    image: str = "postgres:latest"
    solution_queries: List[DatabaseSolutionQuery] = Field(default_factory=list)


TYPE_SPECIFIC_MODELS: Dict[QuestionType, Type[BaseModel]] = {
    QuestionType.multipleChoice: MultipleChoiceConfig,
    QuestionType.trueFalse: TrueFalseConfig,
    QuestionType.essay: EssayConfig,
    QuestionType.web: WebConfig,
    QuestionType.exactMatch: ExactMatchConfig,
    QuestionType.code: CodeConfig,
    QuestionType.database: DatabaseConfig,
}


def default_type_specific(question_type: QuestionType) -> Dict[str, Any]:
    """Type-specific document of a newly created question."""
    return TYPE_SPECIFIC_MODELS[question_type]().model_dump(mode="json")


def parse_type_specific(question_type: QuestionType, data: Optional[Dict[str, Any]]) -> Any:
    """Validate a type-specific document and return its model instance.

    Raises:
        pydantic.ValidationError: When the document does not match the type.
    """
    return TYPE_SPECIFIC_MODELS[question_type].model_validate(data or {})


# =====================================================================
# API contract
# =====================================================================


class QuestionCreate(BaseModel):
    """Schema for creating a bank question."""

    type: QuestionType
    title: str = ""
    content: str = ""
    type_specific: Optional[Dict[str, Any]] = Field(default=None, description="Overrides of the type defaults")


class QuestionUpdate(BaseModel):
    """Schema for updating a bank question."""

    title: Optional[str] = None
    content: Optional[str] = None
    status: Optional[QuestionStatus] = None
    type_specific: Optional[Dict[str, Any]] = None


class QuestionRead(BaseModel):
    """Schema for reading a question."""

    id: str
    group_id: str
    type: QuestionType
    title: str
    content: str
    status: QuestionStatus
    source: QuestionSource
    source_question_id: Optional[str] = None
    usage_status: QuestionUsageStatus
    last_used: Optional[datetime] = None
    type_specific: Dict[str, Any]
    tags: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class QuestionTagsUpdate(BaseModel):
    tags: List[str]


class TagRead(BaseModel):
    label: str
    count: int


class MultipleChoiceOptionCreate(BaseModel):
    text: str = ""
    is_correct: bool = False


class MultipleChoiceOptionUpdate(BaseModel):
    text: Optional[str] = None
    is_correct: Optional[bool] = None
    order: Optional[int] = None


class MultipleChoiceGradingUpdate(BaseModel):
    grading_policy: MultipleChoiceGradingPolicy
    threshold: float = Field(default=0, ge=0, le=100)
    negative_marking: bool = False


class CodeSandboxRun(BaseModel):
    """Options of a professor sandbox run on a code writing question."""

    update_expected_outputs: bool = Field(
        default=False, description="Store the produced outputs as the expected outputs of the test cases"
    )
