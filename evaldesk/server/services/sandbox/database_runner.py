"""
Database Sandbox Runner.

Starts an ephemeral PostgreSQL container with testcontainers and executes a
list of SQL queries in order, on one autocommit connection. Each query
produces an output ``{order, status, feedback, type, result}``:

- ``TABULAR``: rows returned, ``result = {"columns": [...], "rows": [[...]]}``
- ``SCALAR``: a single value returned, ``result`` is that value
- ``TEXT``: no rows (DDL, DML), ``result`` is the command status

The first failing query ends the run with an ``ERROR`` output. The whole run
is bounded by the database timeout.
"""

from __future__ import annotations

import asyncio
import datetime
import decimal
import time
import uuid
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence

import docker
import psycopg
from docker.errors import DockerException, ImageNotFound
from testcontainers.postgres import PostgresContainer

from evaldesk.core.logging_config import get_logger
from evaldesk.core.models import DatabaseQueryOutputStatus, DatabaseQueryOutputType
from evaldesk.core.monitoring import log_sandbox_run
from evaldesk.server.core.config import SandboxConfig, settings

logger = get_logger(__name__)


@dataclass
class QueryOutput:
    order: Optional[int]
    status: DatabaseQueryOutputStatus
    feedback: str
    type: DatabaseQueryOutputType
    result: Any

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["type"] = self.type.value
        return data


def error_output(message: str, order: Optional[int] = None) -> QueryOutput:
    return QueryOutput(
        order=order,
        status=DatabaseQueryOutputStatus.ERROR,
        feedback=message,
        type=DatabaseQueryOutputType.TEXT,
        result=message,
    )


def to_json_value(value: Any) -> Any:
    """Convert a database value to something JSON can store."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, decimal.Decimal):
        return float(value)
    if isinstance(value, (datetime.date, datetime.time, datetime.datetime, uuid.UUID)):
        return value.isoformat() if hasattr(value, "isoformat") else str(value)
    if isinstance(value, (list, tuple)):
        return [to_json_value(item) for item in value]
    if isinstance(value, dict):
        return {str(key): to_json_value(item) for key, item in value.items()}
    return str(value)


def describe_cursor(cursor: Any, order: int) -> QueryOutput:
    """Build the output of a successfully executed query."""
    feedback = cursor.statusmessage or ""
    if cursor.description is None:
        return QueryOutput(order, DatabaseQueryOutputStatus.SUCCESS, feedback, DatabaseQueryOutputType.TEXT, feedback)
    columns = [column.name for column in cursor.description]
    rows = [[to_json_value(value) for value in row] for row in cursor.fetchall()]
    if len(columns) == 1 and len(rows) == 1:
        return QueryOutput(order, DatabaseQueryOutputStatus.SUCCESS, feedback, DatabaseQueryOutputType.SCALAR, rows[0][0])
    return QueryOutput(
        order,
        DatabaseQueryOutputStatus.SUCCESS,
        feedback,
        DatabaseQueryOutputType.TABULAR,
        {"columns": columns, "rows": rows},
    )


class DatabaseSandbox:
    """Container runner for database questions."""

    def __init__(self, config: Optional[SandboxConfig] = None) -> None:
        self.config = config or settings.sandbox

    def _create_container(self, image: str) -> PostgresContainer:
        return PostgresContainer(image, username="postgres", password="postgres", dbname="postgres", driver=None).with_kwargs(
            mem_limit=f"{int(self.config.database_memory_gb * 1024)}m",
            nano_cpus=int(self.config.database_cpu_quota * 1_000_000_000),
        )

    def _start(self, image: str) -> PostgresContainer:
        try:
            return self._create_container(image).start()
        except ImageNotFound:
            logger.info(f"Sandbox image {image} not found locally, pulling")
            docker.from_env().images.pull(image)
            return self._create_container(image).start()

    @staticmethod
    def _execute(url: str, queries: Sequence[str], outputs: List[QueryOutput]) -> List[QueryOutput]:
        """Run the queries, appending each output to ``outputs`` as soon as it is known."""
        with psycopg.connect(url, autocommit=True) as connection:
            for order, query in enumerate(queries, start=1):
                try:
                    with connection.cursor() as cursor:
                        cursor.execute(query)
                        outputs.append(describe_cursor(cursor, order))
                except psycopg.Error as e:
                    outputs.append(error_output(str(e).strip(), order))
                    break
        return outputs

    async def run(self, queries: Sequence[str], image: Optional[str] = None) -> List[QueryOutput]:
        """Execute queries in a fresh database.

        Args:
            queries: SQL texts, in execution order
            image: PostgreSQL image, defaults to the configured database image

        Returns:
            One output per executed query; a failure or timeout ends the list
            and a timeout keeps the outputs of the queries finished before it
        """
        image = image or self.config.database_image
        started = time.monotonic()
        try:
            container = await asyncio.to_thread(self._start, image)
        except (DockerException, OSError) as e:
            logger.warning(f"Database sandbox for {image} failed to start: {e}")
            log_sandbox_run("database", image, (time.monotonic() - started) * 1000, "start-error")
            return [error_output(f"Container start error: {e}")]

        outputs: List[QueryOutput] = []
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._execute, container.get_connection_url(), list(queries), outputs),
                timeout=self.config.database_timeout_seconds,
            )
            outcome = "completed"
        except asyncio.TimeoutError:
            # the worker thread may still be running: keep what finished so far
            outputs = [*outputs, error_output("Sandbox Execution Timeout")]
            outcome = "timeout"
        except psycopg.Error as e:
            outputs = [error_output(f"Client connection error: {e}")]
            outcome = "connection-error"
        finally:
            await asyncio.to_thread(container.stop)

        log_sandbox_run("database", image, (time.monotonic() - started) * 1000, outcome)
        return outputs


database_sandbox = DatabaseSandbox()


def get_database_sandbox() -> DatabaseSandbox:
    """Dependency returning the database sandbox runner."""
    return database_sandbox
