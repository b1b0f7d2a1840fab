"""Tests for the concrete repositories on an in-memory SQLite database."""

from datetime import timedelta
from test.unit_test.server.factories import (
    create_evaluation,
    create_group,
    create_question,
    create_user,
)

from evaldesk.core.database.base import utc_now
from evaldesk.core.database.entities import UserSession
from evaldesk.core.database.repositories import (
    EvaluationRepository,
    GroupRepository,
    QuestionFilters,
    QuestionRepository,
    UserRepository,
)
from evaldesk.core.models import (
    EvaluationPhase,
    QuestionSource,
    QuestionStatus,
    QuestionType,
    Role,
)


class TestUserRepository:
    async def test_get_by_email(self, in_memory_session):
        user, _ = await create_user(in_memory_session, "ada@school.test")
        repository = UserRepository(in_memory_session)

        assert (await repository.get_by_email("ada@school.test")).id == user.id
        assert await repository.get_by_email("nobody@school.test") is None

    async def test_session_token_resolution_ignores_expired(self, in_memory_session):
        user, token = await create_user(in_memory_session, "ada@school.test")
        in_memory_session.add(UserSession(session_token="old", user_id=user.id, expires=utc_now() - timedelta(minutes=1)))
        await in_memory_session.commit()
        repository = UserRepository(in_memory_session)

        resolved = await repository.get_by_session_token(token, utc_now())

        assert resolved is not None
        assert resolved[0].id == user.id
        assert resolved[1].session_token == token
        assert await repository.get_by_session_token("old", utc_now()) is None

    async def test_delete_sessions(self, in_memory_session):
        user, token = await create_user(in_memory_session, "ada@school.test")
        repository = UserRepository(in_memory_session)

        assert await repository.delete_sessions(user.id) == 1
        await in_memory_session.commit()
        assert await repository.get_by_session_token(token, utc_now()) is None

    async def test_search_with_role_and_pages(self, in_memory_session):
        for index in range(5):
            await create_user(in_memory_session, f"student{index}@school.test")
        await create_user(in_memory_session, "prof@school.test", roles=(Role.PROFESSOR,), name="Grace")
        repository = UserRepository(in_memory_session)

        users, total, pages = await repository.search(None, Role.STUDENT.value, page=2, page_size=2)
        assert total == 5
        assert pages == 3
        assert [user.email for user in users] == ["student2@school.test", "student3@school.test"]

        users, total, _ = await repository.search("GRACE", None, page=1, page_size=10)
        assert total == 1
        assert users[0].email == "prof@school.test"

    async def test_memberships_ordered_by_label(self, in_memory_session):
        user, _ = await create_user(in_memory_session, "prof@school.test", roles=(Role.PROFESSOR,))
        await create_group(in_memory_session, "zeta", user)
        await create_group(in_memory_session, "alpha", user)

        memberships = await UserRepository(in_memory_session).memberships(user.id)

        assert [group.scope for group, _ in memberships] == ["alpha", "zeta"]
        assert all(membership.user_id == user.id for _, membership in memberships)


class TestGroupRepository:
    async def test_scope_and_members(self, in_memory_session):
        prof, _ = await create_user(in_memory_session, "prof@school.test", roles=(Role.PROFESSOR,), name="B")
        other, _ = await create_user(in_memory_session, "other@school.test", roles=(Role.PROFESSOR,), name="A")
        group = await create_group(in_memory_session, "cs101", prof, other)
        repository = GroupRepository(in_memory_session)

        assert (await repository.get_by_scope("cs101")).id == group.id
        assert await repository.get_by_scope("nope") is None
        assert [user.name for user in await repository.members(group.id)] == ["A", "B"]
        assert (await repository.get_membership(group.id, prof.id)).selected is True

    async def test_summaries_skip_evaluation_copies(self, in_memory_session):
        prof, _ = await create_user(in_memory_session, "prof@school.test", roles=(Role.PROFESSOR,))
        group = await create_group(in_memory_session, "cs101", prof)
        await create_group(in_memory_session, "empty", prof)
        question = await create_question(in_memory_session, group)
        await create_question(in_memory_session, group, source=QuestionSource.EVAL)
        await create_evaluation(in_memory_session, group, questions=[(question, 1.0)])

        summaries = {row[0].scope: list(row[1:]) for row in await GroupRepository(in_memory_session).summaries()}

        assert summaries["cs101"] == [1, 1, 1]
        assert summaries["empty"] == [1, 0, 0]

    async def test_unselect_all(self, in_memory_session):
        prof, _ = await create_user(in_memory_session, "prof@school.test", roles=(Role.PROFESSOR,))
        group = await create_group(in_memory_session, "cs101", prof)
        repository = GroupRepository(in_memory_session)

        await repository.unselect_all(prof.id)
        await in_memory_session.commit()

        assert (await repository.get_membership(group.id, prof.id)).selected is False


class TestQuestionRepository:
    async def _group(self, session):
        prof, _ = await create_user(session, "prof@school.test", roles=(Role.PROFESSOR,))
        return await create_group(session, "cs101", prof)

    async def test_list_bank_filters(self, in_memory_session):
        group = await self._group(in_memory_session)
        true_false = await create_question(in_memory_session, group, title="Loops")
        python = await create_question(
            in_memory_session, group, QuestionType.code, title="Reverse", type_specific={"language": "python"}
        )
        await create_question(
            in_memory_session, group, QuestionType.code, title="Sort", type_specific={"language": "java"}
        )
        await create_question(in_memory_session, group, title="Hidden", source=QuestionSource.EVAL)
        archived = await create_question(in_memory_session, group, title="Old")
        archived.status = QuestionStatus.ARCHIVED
        await in_memory_session.commit()
        repository = QuestionRepository(in_memory_session)

        listed = await repository.list_bank(group.id, QuestionFilters())
        assert {question.title for question in listed} == {"Loops", "Reverse", "Sort"}

        by_search = await repository.list_bank(group.id, QuestionFilters(search="loop"))
        assert [question.id for question in by_search] == [true_false.id]

        by_language = await repository.list_bank(group.id, QuestionFilters(code_languages=["python"]))
        assert {question.id for question in by_language} == {true_false.id, python.id}

        by_type = await repository.list_bank(group.id, QuestionFilters(question_types=[QuestionType.code]))
        assert {question.title for question in by_type} == {"Reverse", "Sort"}

        by_status = await repository.list_bank(group.id, QuestionFilters(status=QuestionStatus.ARCHIVED))
        assert [question.id for question in by_status] == [archived.id]

    async def test_tags_are_anded(self, in_memory_session):
        group = await self._group(in_memory_session)
        first = await create_question(in_memory_session, group, title="First")
        second = await create_question(in_memory_session, group, title="Second")
        repository = QuestionRepository(in_memory_session)
        await repository.set_tags(first, ["loops", "basics", " loops "])
        await repository.set_tags(second, ["loops"])
        await in_memory_session.commit()

        tagged = await repository.list_bank(group.id, QuestionFilters(tags=["loops", "basics"]))

        assert [question.id for question in tagged] == [first.id]
        assert await repository.tags_for([first.id, second.id]) == {
            first.id: ["basics", "loops"],
            second.id: ["loops"],
        }
        assert await repository.tag_counts(group.id) == [("basics", 1), ("loops", 2)]

    async def test_set_tags_replaces(self, in_memory_session):
        group = await self._group(in_memory_session)
        question = await create_question(in_memory_session, group)
        repository = QuestionRepository(in_memory_session)
        await repository.set_tags(question, ["a", "b"])
        await in_memory_session.commit()

        await repository.set_tags(question, ["b"])
        await in_memory_session.commit()

        assert await repository.tags_for([question.id]) == {question.id: ["b"]}
        # tags stay in the group even when unused
        assert await repository.tag_counts(group.id) == [("a", 0), ("b", 1)]

    async def test_last_usage_follows_copies(self, in_memory_session):
        group = await self._group(in_memory_session)
        question = await create_question(in_memory_session, group)
        assert await QuestionRepository(in_memory_session).last_usage(question.id) is None

        copy = await create_question(in_memory_session, group, source=QuestionSource.EVAL)
        copy.source_question_id = question.id
        await in_memory_session.commit()
        evaluation = await create_evaluation(in_memory_session, group, questions=[(copy, 2.0)])

        usage = await QuestionRepository(in_memory_session).last_usage(question.id)

        assert usage.evaluation_id == evaluation.id
        assert usage.question_id == copy.id


class TestEvaluationRepository:
    async def test_get_by_pin(self, in_memory_session):
        prof, _ = await create_user(in_memory_session, "prof@school.test", roles=(Role.PROFESSOR,))
        group = await create_group(in_memory_session, "cs101", prof)
        evaluation = await create_evaluation(in_memory_session, group, phase=EvaluationPhase.IN_PROGRESS, pin="XYZ789")
        repository = EvaluationRepository(in_memory_session)

        found, found_group = await repository.get_by_pin("XYZ789")

        assert found.id == evaluation.id
        assert found_group.scope == "cs101"
        assert await repository.get_by_pin("NOPE00") is None
        assert await repository.pin_exists("XYZ789") is True
        assert await repository.pin_exists("NOPE00") is False

    async def test_composition_and_compact_order(self, in_memory_session):
        prof, _ = await create_user(in_memory_session, "prof@school.test", roles=(Role.PROFESSOR,))
        group = await create_group(in_memory_session, "cs101", prof)
        questions = [await create_question(in_memory_session, group, title=f"Q{index}") for index in range(3)]
        evaluation = await create_evaluation(in_memory_session, group, questions=[(q, 1.0) for q in questions])
        repository = EvaluationRepository(in_memory_session)

        middle = await repository.get_entry(evaluation.id, questions[1].id)
        await in_memory_session.delete(middle)
        await in_memory_session.flush()
        await repository.compact_order(evaluation.id)
        await in_memory_session.commit()

        composition = await repository.composition(evaluation.id)
        assert [(entry.order, question.title) for entry, question in composition] == [(0, "Q0"), (1, "Q2")]
