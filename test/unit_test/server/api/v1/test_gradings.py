import pytest
from httpx import AsyncClient

from evaldesk.core.database.entities import StudentAnswer, StudentQuestionGrading, UserOnEvaluation
from evaldesk.core.models import ArchivalPhase, EvaluationPhase, QuestionType, StudentAnswerStatus
from test.unit_test.server.factories import API, create_evaluation, create_question

# Mark all tests in this module as async
pytestmark = pytest.mark.asyncio

GRADINGS = f"http://localhost{API}/cs101/gradings"
ANNOTATIONS = f"http://localhost{API}/cs101/annotations"


@pytest.fixture
async def answered(session, group, student):
    true_false = await create_question(session, group, QuestionType.trueFalse, title="Sky is blue")
    evaluation = await create_evaluation(session, group, phase=EvaluationPhase.GRADING, questions=[(true_false, 2.0)])
    email = student[0].email
    session.add(UserOnEvaluation(user_email=email, evaluation_id=evaluation.id))
    session.add(
        StudentAnswer(
            user_email=email, question_id=true_false.id, status=StudentAnswerStatus.SUBMITTED, answer={"is_true": True}
        )
    )
    await session.commit()
    return evaluation, true_false, email


async def test_sign_and_unsign_grading(client: AsyncClient, session, answered, prof_headers):
    _, question, email = answered

    signed = await client.put(
        GRADINGS,
        json={"user_email": email, "question_id": question.id, "points_obtained": 1.5, "comment": "Half right"},
        headers=prof_headers,
    )
    assert signed.status_code == 200
    data = signed.json()
    assert data["status"] == "GRADED"
    assert data["points_obtained"] == 1.5
    assert data["signed_by_user_email"] == "prof@school.test"
    assert data["comment"] == "Half right"

    unsigned = await client.put(
        GRADINGS, json={"user_email": email, "question_id": question.id, "signed": False}, headers=prof_headers
    )
    data = unsigned.json()
    # back to the automatic grading
    assert data["status"] == "AUTOGRADED"
    assert data["points_obtained"] == 2.0
    assert data["signed_by_user_email"] is None

    grading = await session.get(StudentQuestionGrading, (email, question.id))
    assert grading.comment == "Half right"


async def test_points_above_grading_scale(client: AsyncClient, answered, prof_headers):
    _, question, email = answered
    response = await client.put(
        GRADINGS, json={"user_email": email, "question_id": question.id, "points_obtained": 2.5}, headers=prof_headers
    )
    assert response.status_code == 400


async def test_grading_unknown_answer(client: AsyncClient, answered, prof_headers):
    _, question, _ = answered
    response = await client.put(
        GRADINGS, json={"user_email": "ghost@school.test", "question_id": question.id}, headers=prof_headers
    )
    assert response.status_code == 404


async def test_grading_purged_evaluation(client: AsyncClient, session, answered, prof_headers):
    evaluation, question, email = answered
    evaluation.archival_phase = ArchivalPhase.PURGED
    session.add(evaluation)
    await session.commit()

    response = await client.put(
        GRADINGS, json={"user_email": email, "question_id": question.id, "points_obtained": 1}, headers=prof_headers
    )
    assert response.status_code == 410


async def test_students_cannot_grade(client: AsyncClient, answered, student_headers):
    _, question, email = answered
    response = await client.put(
        GRADINGS, json={"user_email": email, "question_id": question.id, "points_obtained": 2}, headers=student_headers
    )
    assert response.status_code == 401


async def test_annotation_upsert_and_delete(client: AsyncClient, answered, prof_headers):
    _, question, email = answered
    payload = {"user_email": email, "question_id": question.id, "content": "Check the units"}

    created = await client.put(ANNOTATIONS, json=payload, headers=prof_headers)
    assert created.status_code == 200
    annotation = created.json()
    assert annotation["file_id"] is None
    assert annotation["created_by_email"] == "prof@school.test"

    replaced = await client.put(ANNOTATIONS, json={**payload, "content": "Units are fine"}, headers=prof_headers)
    assert replaced.json()["id"] == annotation["id"]
    assert replaced.json()["content"] == "Units are fine"

    assert (await client.delete(f"{ANNOTATIONS}/{annotation['id']}", headers=prof_headers)).status_code == 200
    assert (await client.delete(f"{ANNOTATIONS}/{annotation['id']}", headers=prof_headers)).status_code == 404
