"""
Evaluation Results and PDF Export.

``build_results`` aggregates, per student and per question, the points
obtained on the grading scale and the final points after applying the
composition coefficient. ``render_results_pdf`` lays the same figures out on
A4 pages with reportlab: a header block (evaluation, group, date, maximum
points) followed by one section per student.
"""

from __future__ import annotations

import io
from typing import Dict, List, Optional, Tuple

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from evaldesk.core.database.base import utc_now
from evaldesk.core.database.entities import Evaluation, StudentAnswer, StudentQuestionGrading
from evaldesk.core.database.repositories import EvaluationRepository
from evaldesk.core.database.schemas.evaluations import EvaluationResults, QuestionResult, StudentResult
from evaldesk.core.logging_config import get_logger
from evaldesk.core.models import StudentAnswerStatus, StudentQuestionGradingStatus
from evaldesk.server.services.grading import final_points

logger = get_logger(__name__)

PAGE_W, PAGE_H = A4
MARGIN = 18 * mm
LINE = 5.5 * mm


async def build_results(session: AsyncSession, evaluation: Evaluation) -> EvaluationResults:
    repository = EvaluationRepository(session)
    composition = await repository.composition(evaluation.id)
    participants = await repository.participants(evaluation.id)
    question_ids = [question.id for _, question in composition]

    answers: Dict[Tuple[str, str], StudentAnswer] = {}
    gradings: Dict[Tuple[str, str], StudentQuestionGrading] = {}
    if question_ids:
        for answer in (
            await session.execute(select(StudentAnswer).where(StudentAnswer.question_id.in_(question_ids)))
        ).scalars():
            answers[(answer.user_email, answer.question_id)] = answer
        for grading in (
            await session.execute(
                select(StudentQuestionGrading).where(StudentQuestionGrading.question_id.in_(question_ids))
            )
        ).scalars():
            gradings[(grading.user_email, grading.question_id)] = grading

    total_points = round(sum(entry.points for entry, _ in composition), 2)
    students: List[StudentResult] = []
    for participation, user in participants:
        questions = []
        for entry, question in composition:
            key = (participation.user_email, question.id)
            grading = gradings.get(key)
            answer = answers.get(key)
            obtained = grading.points_obtained if grading else 0.0
            questions.append(
                QuestionResult(
                    question_id=question.id,
                    title=entry.title or question.title,
                    points=entry.points,
                    grading_points=entry.grading_points,
                    points_obtained=obtained,
                    final_points=final_points(obtained, entry.grading_points, entry.points),
                    answer_status=answer.status if answer else StudentAnswerStatus.MISSING,
                    grading_status=grading.status if grading else StudentQuestionGradingStatus.UNGRADED,
                )
            )
        students.append(
            StudentResult(
                user_email=participation.user_email,
                user_name=user.name,
                total_points=total_points,
                obtained_points=round(sum(result.final_points for result in questions), 2),
                questions=questions,
            )
        )
    return EvaluationResults(
        evaluation_id=evaluation.id, label=evaluation.label, total_points=total_points, students=students
    )


class _PdfWriter:
    """Top-down text cursor over reportlab pages."""

    def __init__(self, pdf: canvas.Canvas) -> None:
        self.pdf = pdf
        self.y = PAGE_H - MARGIN

    def ensure(self, lines: int = 1) -> None:
        if self.y - lines * LINE < MARGIN:
            self.pdf.showPage()
            self.y = PAGE_H - MARGIN

    def text(self, value: str, size: float = 10, bold: bool = False, indent: float = 0, right: Optional[str] = None):
        self.ensure()
        self.pdf.setFont("Helvetica-Bold" if bold else "Helvetica", size)
        self.pdf.drawString(MARGIN + indent, self.y, value[:110])
        if right is not None:
            self.pdf.drawRightString(PAGE_W - MARGIN, self.y, right)
        self.y -= LINE if size <= 11 else LINE * 1.5

    def rule(self) -> None:
        self.ensure()
        self.pdf.setLineWidth(0.4)
        self.pdf.line(MARGIN, self.y + 2 * mm, PAGE_W - MARGIN, self.y + 2 * mm)
        self.y -= 2 * mm


def render_results_pdf(results: EvaluationResults, group_label: str) -> bytes:
    """Render results as a PDF document."""
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    pdf.setTitle(f"{results.label} - results")
    writer = _PdfWriter(pdf)

    writer.text(results.label, size=16, bold=True)
    writer.text(f"Group: {group_label}")
    writer.text(f"Exported: {utc_now():%Y-%m-%d %H:%M} UTC")
    writer.text(f"Students: {len(results.students)}", right=f"Maximum: {results.total_points:g} pts")
    writer.rule()

    for student in results.students:
        writer.ensure(len(student.questions) + 3)
        name = f"{student.user_name} <{student.user_email}>" if student.user_name else student.user_email
        writer.text(name, size=11, bold=True, right=f"{student.obtained_points:g} / {student.total_points:g}")
        for index, question in enumerate(student.questions, start=1):
            writer.text(
                f"Q{index}. {question.title} [{question.grading_status.value.lower()}]",
                size=9,
                indent=6 * mm,
                right=f"{question.final_points:g} / {question.points:g}",
            )
        writer.rule()

    pdf.showPage()
    pdf.save()
    logger.debug(f"Rendered results PDF of evaluation {results.evaluation_id}")
    return buffer.getvalue()
