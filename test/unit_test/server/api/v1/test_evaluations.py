from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlmodel import select

from evaldesk.core.database.base import utc_now
from evaldesk.core.database.entities import (
    Question,
    StudentAnswer,
    StudentQuestionGrading,
    UserOnEvaluation,
    UserOnEvaluationDeniedAccessAttempt,
)
from evaldesk.core.database.repositories import EvaluationRepository
from evaldesk.core.models import (
    EvaluationPhase,
    QuestionSource,
    QuestionStatus,
    QuestionType,
    StudentAnswerStatus,
    StudentQuestionGradingStatus,
    UserOnEvaluationAccessMode,
)
from evaldesk.server.services.phases import apply_phase
from test.unit_test.server.factories import API, create_evaluation, create_question, create_user

# Mark all tests in this module as async
pytestmark = pytest.mark.asyncio

EVALUATIONS = f"http://localhost{API}/cs101/evaluations"


async def test_create_evaluation_in_draft(client: AsyncClient, group, prof_headers):
    response = await client.post(
        EVALUATIONS,
        json={"label": "Final", "duration_active": True, "duration_hours": 2, "access_list": ["a@x", " a@x ", ""]},
        headers=prof_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["phase"] == "DRAFT"
    assert data["duration_hours"] == 2
    assert data["access_list"] == ["a@x"]
    assert data["archival_phase"] == "ACTIVE"

    duplicate = await client.post(EVALUATIONS, json={"label": "Final"}, headers=prof_headers)
    assert duplicate.status_code == 409


async def test_solutions_require_consultation(client: AsyncClient, group, prof_headers):
    response = await client.post(
        EVALUATIONS,
        json={"label": "Final", "consultation_enabled": False, "show_solutions_when_finished": True},
        headers=prof_headers,
    )
    assert response.status_code == 400


async def test_create_from_existing_rebuilds_composition(client: AsyncClient, session, group, prof_headers):
    kept = await create_question(session, group, title="Kept")
    dropped = await create_question(session, group, title="Dropped")
    template = await create_evaluation(
        session,
        group,
        label="2025",
        phase=EvaluationPhase.COMPOSITION,
        questions=[(kept, 3.0), (dropped, 2.0)],
        conditions="Closed book",
    )
    await apply_phase(session, template, EvaluationPhase.REGISTRATION)
    dropped.status = QuestionStatus.ARCHIVED
    session.add(dropped)
    await session.commit()

    response = await client.post(
        EVALUATIONS,
        json={"label": "2026", "preset": "from_existing", "template_evaluation_id": template.id},
        headers=prof_headers,
    )
    assert response.status_code == 201
    created = response.json()
    assert created["conditions"] == "Closed book"

    composition = (await client.get(f"{EVALUATIONS}/{created['id']}/composition", headers=prof_headers)).json()
    # the bank question behind the frozen copy, not the copy itself
    assert [(entry["question_id"], entry["points"]) for entry in composition] == [(kept.id, 3.0)]


async def test_from_existing_requires_template(client: AsyncClient, group, prof_headers):
    response = await client.post(EVALUATIONS, json={"label": "X", "preset": "from_existing"}, headers=prof_headers)
    assert response.status_code == 400


async def test_update_clears_denied_attempts_when_leaving_access_list(
    client: AsyncClient, session, group, student, prof_headers
):
    evaluation = await create_evaluation(
        session, group, access_mode=UserOnEvaluationAccessMode.LINK_AND_ACCESS_LIST, access_list=[]
    )
    session.add(UserOnEvaluationDeniedAccessAttempt(user_email=student[0].email, evaluation_id=evaluation.id))
    await session.commit()
    url = f"{EVALUATIONS}/{evaluation.id}"

    assert len((await client.get(f"{url}/denied-attempts", headers=prof_headers)).json()) == 1

    response = await client.put(url, json={"label": "Renamed", "access_mode": "LINK_ONLY"}, headers=prof_headers)
    assert response.status_code == 200
    assert response.json()["label"] == "Renamed"
    assert (await client.get(f"{url}/denied-attempts", headers=prof_headers)).json() == []


async def test_update_access_list_settles_listed_attempts(
    client: AsyncClient, session, group, student, prof_headers
):
    other, _ = await create_user(session, "other@school.test")
    evaluation = await create_evaluation(
        session, group, access_mode=UserOnEvaluationAccessMode.LINK_AND_ACCESS_LIST, access_list=[]
    )
    for user in (student[0], other):
        session.add(UserOnEvaluationDeniedAccessAttempt(user_email=user.email, evaluation_id=evaluation.id))
    await session.commit()
    url = f"{EVALUATIONS}/{evaluation.id}"

    response = await client.put(url, json={"access_list": [student[0].email]}, headers=prof_headers)

    assert response.status_code == 200
    assert response.json()["access_mode"] == "LINK_AND_ACCESS_LIST"
    remaining = (await client.get(f"{url}/denied-attempts", headers=prof_headers)).json()
    assert [attempt["user_email"] for attempt in remaining] == ["other@school.test"]


async def test_approve_denied_attempt(client: AsyncClient, session, group, student, prof_headers):
    evaluation = await create_evaluation(
        session, group, access_mode=UserOnEvaluationAccessMode.LINK_AND_ACCESS_LIST, access_list=["x@school.test"]
    )
    session.add(UserOnEvaluationDeniedAccessAttempt(user_email=student[0].email, evaluation_id=evaluation.id))
    await session.commit()
    url = f"{EVALUATIONS}/{evaluation.id}/denied-attempts/approve"

    response = await client.post(url, json={"user_email": student[0].email}, headers=prof_headers)
    assert response.status_code == 200
    assert response.json()["access_list"] == ["x@school.test", student[0].email]

    assert (await client.post(url, json={"user_email": student[0].email}, headers=prof_headers)).status_code == 404


async def test_phase_change_and_progress(client: AsyncClient, session, group, prof_headers):
    evaluation = await create_evaluation(
        session, group, phase=EvaluationPhase.REGISTRATION, duration_active=True, duration_minutes=45
    )
    url = f"{EVALUATIONS}/{evaluation.id}"

    assert (
        await client.patch(f"{url}/progress", json={"action": "extend", "amount_minutes": 5}, headers=prof_headers)
    ).status_code == 400

    started = (await client.put(f"{url}/phase", json={"phase": "IN_PROGRESS"}, headers=prof_headers)).json()
    assert started["phase"] == "IN_PROGRESS"
    assert started["start_at"] is not None

    extended = await client.patch(f"{url}/progress", json={"action": "extend", "amount_minutes": 10}, headers=prof_headers)
    reduced = await client.patch(f"{url}/progress", json={"action": "reduce", "amount_minutes": 4}, headers=prof_headers)
    assert extended.status_code == 200
    assert reduced.status_code == 200
    await session.refresh(evaluation)
    assert evaluation.end_at - evaluation.start_at == timedelta(minutes=45 + 10 - 4)

    invalid = await client.patch(f"{url}/progress", json={"action": "extend", "amount_minutes": 0}, headers=prof_headers)
    assert invalid.status_code == 400


async def test_regenerate_pin(client: AsyncClient, session, group, prof_headers):
    evaluation = await create_evaluation(session, group, pin="AAAAAA")
    response = await client.post(f"{EVALUATIONS}/{evaluation.id}/pin", headers=prof_headers)
    assert response.status_code == 200
    assert response.json()["pin"] not in (None, "AAAAAA")


async def test_delete_removes_frozen_copies_only(client: AsyncClient, session, group, prof_headers):
    question = await create_question(session, group)
    evaluation = await create_evaluation(session, group, phase=EvaluationPhase.COMPOSITION, questions=[(question, 1.0)])
    await apply_phase(session, evaluation, EvaluationPhase.REGISTRATION)
    await session.commit()

    response = await client.delete(f"{EVALUATIONS}/{evaluation.id}", headers=prof_headers)
    assert response.status_code == 200

    remaining = (await session.execute(select(Question.id))).scalars().all()
    assert remaining == [question.id]
    assert (await client.get(f"{EVALUATIONS}/{evaluation.id}", headers=prof_headers)).status_code == 404


async def test_delete_keeps_copied_bank_questions(client: AsyncClient, session, group, prof_headers):
    copied = await create_question(session, group, title="Copied", source=QuestionSource.COPY)
    evaluation = await create_evaluation(session, group, questions=[(copied, 1.0)])

    response = await client.delete(f"{EVALUATIONS}/{evaluation.id}", headers=prof_headers)

    assert response.status_code == 200
    assert (await session.execute(select(Question.id))).scalars().all() == [copied.id]


@pytest.fixture
async def graded(session, group):
    alice, _ = await create_user(session, "alice@school.test", name="Alice")
    bob, _ = await create_user(session, "bob@school.test", name="Bob")
    first = await create_question(session, group, QuestionType.trueFalse, title="True or false")
    second = await create_question(session, group, QuestionType.essay, title="Essay")
    evaluation = await create_evaluation(
        session, group, phase=EvaluationPhase.GRADING, questions=[(first, 2.0), (second, 4.0)]
    )
    # the essay is graded on a 10 points scale
    entry_points = {first.id: 2.0, second.id: 10.0}
    for entry, _ in await EvaluationRepository(session).composition(evaluation.id):
        entry.grading_points = entry_points[entry.question_id]
        session.add(entry)
    for user in (alice, bob):
        session.add(UserOnEvaluation(user_email=user.email, evaluation_id=evaluation.id))
    session.add_all(
        [
            StudentAnswer(user_email=alice.email, question_id=first.id, status=StudentAnswerStatus.SUBMITTED),
            StudentQuestionGrading(
                user_email=alice.email,
                question_id=first.id,
                status=StudentQuestionGradingStatus.AUTOGRADED,
                points_obtained=2.0,
            ),
            StudentQuestionGrading(
                user_email=alice.email,
                question_id=second.id,
                status=StudentQuestionGradingStatus.GRADED,
                points_obtained=5.0,
            ),
        ]
    )
    await session.commit()
    return evaluation, first, second


async def test_results_scale_points(client: AsyncClient, graded, prof_headers):
    evaluation, first, second = graded

    response = await client.get(f"{EVALUATIONS}/{evaluation.id}/results", headers=prof_headers)

    assert response.status_code == 200
    results = response.json()
    assert results["total_points"] == 6.0
    by_email = {student["user_email"]: student for student in results["students"]}
    alice = by_email["alice@school.test"]
    assert alice["obtained_points"] == 4.0
    assert [q["final_points"] for q in alice["questions"]] == [2.0, 2.0]
    assert alice["questions"][0]["answer_status"] == "SUBMITTED"
    bob = by_email["bob@school.test"]
    assert bob["obtained_points"] == 0.0
    assert {q["grading_status"] for q in bob["questions"]} == {"UNGRADED"}
    assert {q["answer_status"] for q in bob["questions"]} == {"MISSING"}


async def test_export_pdf(client: AsyncClient, graded, prof_headers):
    evaluation, _, _ = graded

    response = await client.get(f"{EVALUATIONS}/{evaluation.id}/export", headers=prof_headers)

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")
    assert f"cs101-{evaluation.id}-results.pdf" in response.headers["content-disposition"]


async def test_purge_and_gone_afterwards(client: AsyncClient, graded, prof_headers):
    evaluation, _, _ = graded
    url = f"{EVALUATIONS}/{evaluation.id}"

    response = await client.post(f"{url}/purge", headers=prof_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Evaluation data purged successfully"
    assert data["stats"]["student_answers"] == 1
    assert data["evaluation"]["archival_phase"] == "PURGED"

    assert (await client.post(f"{url}/purge", headers=prof_headers)).status_code == 410
    gone = await client.get(f"{url}/results", headers=prof_headers)
    assert gone.status_code == 410
    assert gone.json()["id"] == "evaluation-purged"
    # the roster survives the purge
    assert len((await client.get(f"{url}/students", headers=prof_headers)).json()) == 2


async def test_purge_requires_grading_or_finished(client: AsyncClient, session, group, prof_headers):
    evaluation = await create_evaluation(session, group, phase=EvaluationPhase.IN_PROGRESS, start_at=utc_now())
    response = await client.post(f"{EVALUATIONS}/{evaluation.id}/purge", headers=prof_headers)
    assert response.status_code == 400
