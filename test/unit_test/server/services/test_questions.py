"""
Unit tests for question replication and bank question operations.
"""

import pytest

from evaldesk.core.database.entities import Question
from evaldesk.core.database.repositories import EvaluationRepository, QuestionRepository
from evaldesk.core.models import EvaluationPhase, QuestionSource, QuestionStatus, QuestionType, QuestionUsageStatus
from evaldesk.server.errors import ApiError
from evaldesk.server.services.question_copy import copy_question, replicate_type_specific
from evaldesk.server.services.questions import (
    add_option,
    archive_question,
    delete_option,
    unarchive_question,
    update_option,
)
from test.unit_test.server.factories import create_evaluation, create_group, create_question, create_user


class TestReplicateTypeSpecific:
    def test_multiple_choice_options_get_fresh_ids(self):
        data = {"options": [{"id": "a", "text": "A", "is_correct": True, "order": 0}], "grading_policy": "ALL_OR_NOTHING"}

        replica = replicate_type_specific(QuestionType.multipleChoice, data)

        assert replica["options"][0]["id"] != "a"
        assert replica["options"][0]["text"] == "A"
        assert replica["grading_policy"] == "ALL_OR_NOTHING"
        # the original is untouched
        assert data["options"][0]["id"] == "a"

    def test_exact_match_fields_get_fresh_ids(self):
        replica = replicate_type_specific(QuestionType.exactMatch, {"fields": [{"id": "f", "match_regex": "x"}]})
        assert replica["fields"][0]["id"] != "f"

    def test_code_reading_snippets_get_fresh_ids(self):
        data = {"code_reading": {"snippets": [{"id": "s", "snippet": "print(1)"}]}}
        replica = replicate_type_specific(QuestionType.code, data)
        assert replica["code_reading"]["snippets"][0]["id"] != "s"

    def test_plain_types_are_deep_copied(self):
        data = {"solution": {"nested": True}}
        replica = replicate_type_specific(QuestionType.essay, data)
        assert replica == data
        assert replica["solution"] is not data["solution"]


class TestCopyQuestion:
    @pytest.fixture
    async def group(self, session):
        professor, _ = await create_user(session, "p@test", ())
        return await create_group(session, "g1", professor)

    async def test_bank_copy_is_unused_and_keeps_tags(self, session, group):
        original = await create_question(session, group, QuestionType.trueFalse, title="Original")
        await QuestionRepository(session).set_tags(original, ["sql", "easy"])
        original.usage_status = QuestionUsageStatus.USED
        await session.commit()

        replica = await copy_question(session, original, QuestionSource.COPY, title="Original (copy)", copy_tags=True)
        await session.commit()

        assert replica.id != original.id
        assert replica.title == "Original (copy)"
        assert replica.source == QuestionSource.COPY
        assert replica.source_question_id == original.id
        assert replica.usage_status == QuestionUsageStatus.UNUSED
        tags = await QuestionRepository(session).tags_for([replica.id])
        assert tags[replica.id] == ["easy", "sql"]

    async def test_copies_of_eval_questions_are_not_applicable(self, session, group):
        frozen = await create_question(session, group, source=QuestionSource.EVAL)
        replica = await copy_question(session, frozen, QuestionSource.COPY)
        assert replica.usage_status == QuestionUsageStatus.NOT_APPLICABLE

    async def test_eval_copy_is_not_applicable(self, session, group):
        original = await create_question(session, group)
        replica = await copy_question(session, original, QuestionSource.EVAL)
        assert replica.usage_status == QuestionUsageStatus.NOT_APPLICABLE
        assert replica.title == original.title


class TestOptions:
    def _question(self, **config):
        options = [
            {"id": "a", "text": "A", "is_correct": True, "order": 0},
            {"id": "b", "text": "B", "is_correct": False, "order": 1},
            {"id": "c", "text": "C", "is_correct": False, "order": 2},
        ]
        return Question(group_id="g", type=QuestionType.multipleChoice, type_specific={"options": options, **config})

    def test_add_option_appends(self):
        question = self._question()
        option = add_option(question, "D", True)
        assert option["order"] == 3
        assert [o["text"] for o in question.type_specific["options"]] == ["A", "B", "C", "D"]

    def test_selection_limit_follows_correct_options(self):
        question = self._question(activate_selection_limit=True, selection_limit=1)
        add_option(question, "D", True)
        assert question.type_specific["selection_limit"] == 2

        update_option(question, "b", {"is_correct": True})
        assert question.type_specific["selection_limit"] == 3

        delete_option(question, "a")
        assert question.type_specific["selection_limit"] == 2

    def test_selection_limit_untouched_when_inactive(self):
        question = self._question(selection_limit=1)
        add_option(question, "D", True)
        assert question.type_specific["selection_limit"] == 1

    def test_update_option_moves_it(self):
        question = self._question()
        update_option(question, "c", {"order": 0, "text": "C!"})
        options = question.type_specific["options"]
        assert [(o["id"], o["order"]) for o in options] == [("c", 0), ("a", 1), ("b", 2)]
        assert options[0]["text"] == "C!"

    def test_delete_option_keeps_order_dense(self):
        question = self._question()
        delete_option(question, "a")
        assert [(o["id"], o["order"]) for o in question.type_specific["options"]] == [("b", 0), ("c", 1)]

    def test_unknown_option(self):
        question = self._question()
        for operation in (lambda: update_option(question, "zz", {}), lambda: delete_option(question, "zz")):
            with pytest.raises(ApiError) as exc:
                operation()
            assert exc.value.status_code == 404


async def test_archive_question_leaves_only_editable_evaluations(session):
    professor, _ = await create_user(session, "p@test", ())
    group = await create_group(session, "g1", professor)
    first = await create_question(session, group, title="First")
    archived = await create_question(session, group, title="Archived")
    composing = await create_evaluation(
        session, group, label="Composing", phase=EvaluationPhase.COMPOSITION, questions=[(archived, 1), (first, 1)]
    )
    running = await create_evaluation(
        session, group, label="Running", phase=EvaluationPhase.IN_PROGRESS, questions=[(archived, 1)]
    )

    removed_from = await archive_question(session, archived)
    await session.commit()

    assert removed_from == [composing.id]
    assert archived.status == QuestionStatus.ARCHIVED
    repository = EvaluationRepository(session)
    composition = await repository.composition(composing.id)
    assert [(entry.question_id, entry.order) for entry, _ in composition] == [(first.id, 0)]
    assert len(await repository.composition(running.id)) == 1

    unarchive_question(archived)
    assert archived.status == QuestionStatus.ACTIVE
