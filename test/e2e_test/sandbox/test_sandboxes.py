"""End-to-end tests running the sandboxes against real containers."""

from test.settings import test_settings

import pytest

from evaldesk.core.models import DatabaseQueryOutputStatus, DatabaseQueryOutputType
from evaldesk.server.core.config import SandboxConfig
from evaldesk.server.services.sandbox import CodeSandbox, DatabaseSandbox, SandboxFile, SandboxTest

pytestmark = pytest.mark.asyncio

CODE_IMAGE = test_settings.test.code_image
DATABASE_IMAGE = test_settings.test.database_image


class TestCodeSandbox:
    async def test_tests_against_files(self):
        sandbox = CodeSandbox(SandboxConfig(code_image=CODE_IMAGE))
        files = [SandboxFile(path="app/main.py", content="print(input()[::-1])")]
        tests = [
            SandboxTest(exec="python /app/main.py", input="evaldesk", expected_output="ksedlave"),
            SandboxTest(exec="python /app/main.py", input="abc", expected_output="abc"),
        ]

        result = await sandbox.run(files, tests, before_all="python --version")

        assert result.before_all.startswith("Python 3")
        assert [test.passed for test in result.tests] == [True, False]
        assert result.tests[1].output.strip() == "cba"

    async def test_timeout(self):
        sandbox = CodeSandbox(SandboxConfig(code_image=CODE_IMAGE, execution_timeout_seconds=1))
        tests = [SandboxTest(exec="sleep 5", expected_output="")]

        result = await sandbox.run([], tests)

        assert result.tests[0].timeout is True
        assert result.tests[0].output == "Execution Timeout (t > 1000ms)"

    async def test_output_is_truncated(self):
        sandbox = CodeSandbox(SandboxConfig(code_image=CODE_IMAGE, max_output_kb=1))
        tests = [SandboxTest(exec="python -c \"print('x' * 5000)\"", expected_output="")]

        result = await sandbox.run([], tests)

        assert len(result.tests[0].output) == 1024


class TestDatabaseSandbox:
    async def test_queries_in_order(self):
        sandbox = DatabaseSandbox(SandboxConfig(database_image=DATABASE_IMAGE, database_timeout_seconds=30))

        outputs = await sandbox.run(
            [
                "CREATE TABLE t (id int, name text)",
                "INSERT INTO t VALUES (1, 'a'), (2, 'b')",
                "SELECT count(*) FROM t",
                "SELECT * FROM t ORDER BY id",
                "SELEC oops",
                "SELECT 1",
            ]
        )

        assert [output.status for output in outputs] == [DatabaseQueryOutputStatus.SUCCESS] * 4 + [
            DatabaseQueryOutputStatus.ERROR
        ]
        assert outputs[2].type == DatabaseQueryOutputType.SCALAR
        assert outputs[3].type == DatabaseQueryOutputType.TABULAR
        assert outputs[4].order == 5
