"""
Unit tests for the grading engine.

Covers the points coefficient, every automatically graded question type and
the rule that a signed grading is never overwritten by an automatic one.
"""

import pytest

from evaldesk.core.database.entities import Question, StudentQuestionGrading
from evaldesk.core.models import QuestionType, StudentQuestionGradingStatus
from evaldesk.server.services.grading import (
    GradingOutcome,
    apply_outcome,
    compile_match_regex,
    compute_coefficient,
    final_points,
    grade,
)


def _question(question_type: QuestionType, type_specific: dict) -> Question:
    return Question(group_id="g", type=question_type, type_specific=type_specific)


def _mc(policy: str = "ALL_OR_NOTHING", **extra) -> Question:
    options = [
        {"id": "a", "text": "A", "is_correct": True, "order": 0},
        {"id": "b", "text": "B", "is_correct": True, "order": 1},
        {"id": "c", "text": "C", "is_correct": False, "order": 2},
        {"id": "d", "text": "D", "is_correct": False, "order": 3},
    ]
    return _question(QuestionType.multipleChoice, {"options": options, "grading_policy": policy, **extra})


class TestCoefficient:
    def test_scales_grading_points_to_evaluation_points(self):
        assert compute_coefficient(10, 5) == 0.5
        assert final_points(8, 10, 5) == 4.0

    def test_zero_grading_points(self):
        assert compute_coefficient(0, 0) == 1.0
        assert compute_coefficient(0, 4) == 0.0


class TestMultipleChoice:
    def test_all_or_nothing_exact_selection(self):
        outcome = grade(_mc(), 4, {"option_ids": ["a", "b"]})
        assert outcome == GradingOutcome(StudentQuestionGradingStatus.AUTOGRADED, 4)

    def test_all_or_nothing_partial_selection_scores_zero(self):
        assert grade(_mc(), 4, {"option_ids": ["a"]}).points_obtained == 0.0

    def test_gradual_credit(self):
        # one correct out of two, no incorrect
        assert grade(_mc("GRADUAL_CREDIT"), 4, {"option_ids": ["a"]}).points_obtained == 2.0

    def test_gradual_credit_incorrect_selection_cancels_correct_one(self):
        assert grade(_mc("GRADUAL_CREDIT"), 4, {"option_ids": ["a", "c"]}).points_obtained == 0.0

    def test_gradual_credit_negative_marking(self):
        question = _mc("GRADUAL_CREDIT", negative_marking=True)
        assert grade(question, 4, {"option_ids": ["c", "d"]}).points_obtained == -4.0

    def test_gradual_credit_without_negative_marking_floors_at_zero(self):
        assert grade(_mc("GRADUAL_CREDIT"), 4, {"option_ids": ["c", "d"]}).points_obtained == 0.0

    def test_gradual_credit_threshold(self):
        question = _mc("GRADUAL_CREDIT", threshold=60)
        assert grade(question, 4, {"option_ids": ["a"]}).points_obtained == 0.0

    def test_missing_answer_is_autograded_zero(self):
        outcome = grade(_mc(), 4, None)
        assert outcome.status == StudentQuestionGradingStatus.AUTOGRADED
        assert outcome.points_obtained == 0.0


class TestTrueFalse:
    @pytest.mark.parametrize("answer, expected", [(True, 2.0), (False, 0.0)])
    def test_compares_with_solution(self, answer, expected):
        question = _question(QuestionType.trueFalse, {"is_true": True})
        assert grade(question, 2, {"is_true": answer}).points_obtained == expected

    def test_unanswered(self):
        question = _question(QuestionType.trueFalse, {"is_true": False})
        assert grade(question, 2, {"is_true": None}).points_obtained == 0.0


class TestExactMatch:
    def test_every_field_must_match(self):
        question = _question(
            QuestionType.exactMatch,
            {"fields": [{"id": "f1", "match_regex": "4[0-9]"}, {"id": "f2", "match_regex": "/paris/i"}]},
        )
        answer = {"fields": [{"field_id": "f1", "value": "42"}, {"field_id": "f2", "value": "PARIS"}]}
        assert grade(question, 3, answer).points_obtained == 3

        answer["fields"][0]["value"] = "420"
        assert grade(question, 3, answer).points_obtained == 0.0

    def test_invalid_regex_never_matches(self):
        assert compile_match_regex("([") is None
        question = _question(QuestionType.exactMatch, {"fields": [{"id": "f1", "match_regex": "(["}]})
        assert grade(question, 3, {"fields": [{"field_id": "f1", "value": "(["}]}).points_obtained == 0.0

    def test_delimited_flags(self):
        regex = compile_match_regex("/a.b/s")
        assert regex.fullmatch("a\nb") is not None


class TestCode:
    def test_code_writing_requires_every_test_to_pass(self):
        question = _question(QuestionType.code, {"code_type": "codeWriting"})
        assert grade(question, 5, {"test_results": [{"passed": True}, {"passed": True}]}).points_obtained == 5
        assert grade(question, 5, {"test_results": [{"passed": True}, {"passed": False}]}).points_obtained == 0.0
        assert grade(question, 5, {"test_results": []}).points_obtained == 0.0

    def test_code_reading_compares_trimmed_outputs(self):
        question = _question(
            QuestionType.code,
            {
                "code_type": "codeReading",
                "code_reading": {"snippets": [{"id": "s1", "output": "3\n"}, {"id": "s2", "output": "hello"}]},
            },
        )
        answer = {"outputs": [{"snippet_id": "s1", "output": " 3"}, {"snippet_id": "s2", "output": "hello\n"}]}
        assert grade(question, 2, answer).points_obtained == 2

        answer["outputs"][1]["output"] = "Hello"
        assert grade(question, 2, answer).points_obtained == 0.0


@pytest.mark.parametrize("question_type", [QuestionType.essay, QuestionType.web, QuestionType.database])
def test_manual_types_stay_ungraded(question_type):
    outcome = grade(_question(question_type, {}), 4, {"content": "anything"})
    assert outcome == GradingOutcome(StudentQuestionGradingStatus.UNGRADED, 0.0)


class TestApplyOutcome:
    def test_signed_grading_is_kept(self):
        grading = StudentQuestionGrading(
            user_email="s@test", question_id="q", status=StudentQuestionGradingStatus.GRADED, points_obtained=3
        )
        updated = apply_outcome(grading, GradingOutcome(StudentQuestionGradingStatus.AUTOGRADED, 0.0))
        assert updated is False
        assert grading.points_obtained == 3

    def test_automatic_grading_is_replaced(self):
        grading = StudentQuestionGrading(user_email="s@test", question_id="q")
        assert apply_outcome(grading, GradingOutcome(StudentQuestionGradingStatus.AUTOGRADED, 2.0)) is True
        assert grading.status == StudentQuestionGradingStatus.AUTOGRADED
        assert grading.points_obtained == 2.0
