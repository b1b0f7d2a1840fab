import pytest
from httpx import AsyncClient

from evaldesk.core.models import DatabaseQueryOutputStatus, DatabaseQueryOutputType, QuestionType, Role
from evaldesk.server.services.sandbox import get_code_sandbox, get_database_sandbox
from evaldesk.server.services.sandbox.code_runner import SandboxResult, SandboxTestResult
from evaldesk.server.services.sandbox.database_runner import QueryOutput, error_output
from test.unit_test.server.factories import API, create_group, create_question, create_user

# Mark all tests in this module as async
pytestmark = pytest.mark.asyncio

QUESTIONS = f"http://localhost{API}/cs101/questions"


class FakeCodeSandbox:
    def __init__(self, outputs):
        self.outputs = outputs
        self.calls = []

    async def run(self, files, tests, image=None, before_all=None):
        self.calls.append({"files": files, "tests": tests, "image": image, "before_all": before_all})
        return SandboxResult(
            before_all=None,
            tests=[
                SandboxTestResult(
                    exec=test.exec,
                    input=test.input,
                    output=output,
                    expected_output=test.expected_output,
                    execution_time_ms=1,
                    passed=output.strip() == test.expected_output.strip(),
                )
                for test, output in zip(tests, self.outputs)
            ],
        )


class FakeDatabaseSandbox:
    def __init__(self, outputs):
        self.outputs = outputs

    async def run(self, queries, image=None):
        return self.outputs


async def test_create_question_with_defaults(client: AsyncClient, group, prof_headers):
    response = await client.post(QUESTIONS, json={"type": "multipleChoice", "title": "Pick"}, headers=prof_headers)
    assert response.status_code == 201
    data = response.json()
    assert data["source"] == "BANK"
    assert data["usage_status"] == "UNUSED"
    assert [option["text"] for option in data["type_specific"]["options"]] == ["Option 1", "Option 2"]


async def test_create_question_rejects_invalid_configuration(client: AsyncClient, group, prof_headers):
    response = await client.post(
        QUESTIONS,
        json={"type": "multipleChoice", "type_specific": {"threshold": 150}},
        headers=prof_headers,
    )
    assert response.status_code == 400


async def test_students_cannot_reach_the_bank(client: AsyncClient, session, group, student, student_headers):
    response = await client.get(QUESTIONS, headers=student_headers)
    assert response.status_code == 401


async def test_question_of_another_group(client: AsyncClient, session, group, prof_headers):
    other_professor, _ = await create_user(session, "other@school.test", (Role.PROFESSOR,))
    other_group = await create_group(session, "other", other_professor)
    foreign = await create_question(session, other_group)

    assert (await client.get(f"{QUESTIONS}/{foreign.id}", headers=prof_headers)).status_code == 401
    assert (await client.get(f"{QUESTIONS}/missing", headers=prof_headers)).status_code == 404
    assert (await client.get(f"http://localhost{API}/other/questions", headers=prof_headers)).status_code == 401


async def test_list_filters(client: AsyncClient, session, group, prof_headers):
    sql = await create_question(session, group, QuestionType.database, title="Joins")
    await create_question(session, group, QuestionType.essay, title="Normal forms")
    await client.put(f"{QUESTIONS}/{sql.id}/tags", json={"tags": ["sql", "joins"]}, headers=prof_headers)

    titles = lambda response: sorted(question["title"] for question in response.json())  # noqa: E731
    assert titles(await client.get(QUESTIONS, headers=prof_headers)) == ["Joins", "Normal forms"]
    assert titles(await client.get(QUESTIONS, params={"search": "NORMAL"}, headers=prof_headers)) == ["Normal forms"]
    assert titles(await client.get(QUESTIONS, params={"tags": ["sql", "joins"]}, headers=prof_headers)) == ["Joins"]
    assert titles(await client.get(QUESTIONS, params={"tags": ["sql", "other"]}, headers=prof_headers)) == []
    assert titles(await client.get(QUESTIONS, params={"question_types": "essay"}, headers=prof_headers)) == [
        "Normal forms"
    ]

    tags = (await client.get(f"{QUESTIONS}/tags", headers=prof_headers)).json()
    assert tags == [{"label": "joins", "count": 1}, {"label": "sql", "count": 1}]


async def test_update_and_delete_lifecycle(client: AsyncClient, session, group, prof_headers):
    question = await create_question(session, group, QuestionType.trueFalse)
    url = f"{QUESTIONS}/{question.id}"

    response = await client.put(url, json={"title": "Renamed", "type_specific": {"is_true": False}}, headers=prof_headers)
    assert response.status_code == 200
    assert response.json()["title"] == "Renamed"
    assert response.json()["type_specific"] == {"is_true": False}

    assert (await client.delete(url, headers=prof_headers)).status_code == 400

    response = await client.post(f"{url}/archive", headers=prof_headers)
    assert response.json()["status"] == "ARCHIVED"
    assert (await client.get(QUESTIONS, headers=prof_headers)).json() == []
    archived = (await client.get(QUESTIONS, params={"status": "ARCHIVED"}, headers=prof_headers)).json()
    assert [q["id"] for q in archived] == [question.id]

    assert (await client.delete(url, headers=prof_headers)).status_code == 200
    assert (await client.get(url, headers=prof_headers)).status_code == 404


async def test_copy_question(client: AsyncClient, session, group, prof_headers):
    question = await create_question(session, group, QuestionType.multipleChoice, title="Pick")
    await client.put(f"{QUESTIONS}/{question.id}/tags", json={"tags": ["basics"]}, headers=prof_headers)

    response = await client.post(f"{QUESTIONS}/{question.id}/copy", headers=prof_headers)
    assert response.status_code == 201
    data = response.json()
    assert data["title"] == "Pick (copy)"
    assert data["source"] == "COPY"
    assert data["source_question_id"] == question.id
    assert data["tags"] == ["basics"]
    original_ids = {option["id"] for option in question.type_specific["options"]}
    assert not original_ids & {option["id"] for option in data["type_specific"]["options"]}


async def test_multiple_choice_options(client: AsyncClient, session, group, prof_headers):
    question = await create_question(session, group, QuestionType.multipleChoice)
    options_url = f"{QUESTIONS}/{question.id}/multiple-choice/options"

    response = await client.post(options_url, json={"text": "Option 3", "is_correct": True}, headers=prof_headers)
    assert response.status_code == 201
    options = response.json()["type_specific"]["options"]
    assert [option["order"] for option in options] == [0, 1, 2]

    last = options[-1]["id"]
    response = await client.put(f"{options_url}/{last}", json={"order": 0}, headers=prof_headers)
    assert response.json()["type_specific"]["options"][0]["id"] == last

    response = await client.delete(f"{options_url}/{last}", headers=prof_headers)
    assert [option["text"] for option in response.json()["type_specific"]["options"]] == ["Option 1", "Option 2"]
    assert (await client.delete(f"{options_url}/{last}", headers=prof_headers)).status_code == 404


async def test_options_on_other_types(client: AsyncClient, session, group, prof_headers):
    question = await create_question(session, group, QuestionType.essay)
    response = await client.post(f"{QUESTIONS}/{question.id}/multiple-choice/options", json={}, headers=prof_headers)
    assert response.status_code == 400


async def test_grading_policy(client: AsyncClient, session, group, prof_headers):
    question = await create_question(session, group, QuestionType.multipleChoice)
    url = f"{QUESTIONS}/{question.id}/multiple-choice/grading-policy"

    policy = {"grading_policy": "GRADUAL_CREDIT", "threshold": 50, "negative_marking": True}
    assert (await client.put(url, json=policy, headers=prof_headers)).json() == policy
    assert (await client.get(url, headers=prof_headers)).json() == policy
    assert (await client.put(url, json={**policy, "threshold": 101}, headers=prof_headers)).status_code == 400


async def test_code_solution_run_updates_expected_outputs(client: AsyncClient, session, group, prof_headers):
    from evaldesk.server.main import app

    question = await create_question(session, group, QuestionType.code)
    sandbox = FakeCodeSandbox(["42\n"])
    app.dependency_overrides[get_code_sandbox] = lambda: sandbox

    response = await client.post(
        f"{QUESTIONS}/{question.id}/code/sandbox", json={"update_expected_outputs": True}, headers=prof_headers
    )

    assert response.status_code == 200
    assert response.json()["tests"][0]["output"] == "42\n"
    assert sandbox.calls[0]["image"] == "node:latest"
    assert [f.path for f in sandbox.calls[0]["files"]] == ["main.js"]
    stored = (await client.get(f"{QUESTIONS}/{question.id}", headers=prof_headers)).json()
    assert stored["type_specific"]["code_writing"]["test_cases"][0]["expected_output"] == "42\n"


async def test_code_reading_run_stores_snippet_outputs(client: AsyncClient, session, group, prof_headers):
    from evaldesk.server.main import app

    config = {
        "language": "python",
        "image": "python:3.12-slim",
        "code_type": "codeReading",
        "code_reading": {
            "context_path": "main.py",
            "context": "{{SNIPPET}}",
            "context_exec": "python main.py",
            "snippets": [{"id": "s1", "order": 0, "snippet": "print(1)"}, {"id": "s2", "order": 1, "snippet": "print(2)"}],
        },
    }
    question = await create_question(session, group, QuestionType.code, type_specific=config)
    app.dependency_overrides[get_code_sandbox] = lambda: FakeCodeSandbox(["1\n", "2\n"])

    response = await client.post(f"{QUESTIONS}/{question.id}/code/code-reading/sandbox", headers=prof_headers)

    assert response.status_code == 200
    stored = (await client.get(f"{QUESTIONS}/{question.id}", headers=prof_headers)).json()
    assert [s["output"] for s in stored["type_specific"]["code_reading"]["snippets"]] == ["1\n", "2\n"]


async def test_database_solution_run(client: AsyncClient, session, group, prof_headers):
    from evaldesk.server.main import app

    config = {
        "image": "postgres:16",
        "solution_queries": [
            {"order": 0, "content": "CREATE TABLE t (id int)"},
            {"order": 1, "content": "SELEC oops"},
            {"order": 2, "content": "SELECT 1"},
        ],
    }
    question = await create_question(session, group, QuestionType.database, type_specific=config)
    outputs = [
        QueryOutput(1, DatabaseQueryOutputStatus.SUCCESS, "CREATE TABLE", DatabaseQueryOutputType.TEXT, "CREATE TABLE"),
        error_output("syntax error", 2),
    ]
    app.dependency_overrides[get_database_sandbox] = lambda: FakeDatabaseSandbox(outputs)

    response = await client.post(f"{QUESTIONS}/{question.id}/database/sandbox", headers=prof_headers)

    assert response.status_code == 200
    assert [output["status"] for output in response.json()] == ["SUCCESS", "ERROR"]
    stored = (await client.get(f"{QUESTIONS}/{question.id}", headers=prof_headers)).json()
    statuses = [query["output_status"] for query in stored["type_specific"]["solution_queries"]]
    assert statuses == ["SUCCESS", "ERROR", "NEUTRAL"]
