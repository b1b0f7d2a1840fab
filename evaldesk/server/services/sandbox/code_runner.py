"""
Code Sandbox Runner.

Runs student or professor code in an ephemeral container started with
testcontainers:

1. the files are packed in a tar archive and extracted at ``/``;
2. the optional before-all command runs once (compilation, dependencies);
3. each test runs as ``echo <input> | <exec> 2>&1 | head -c <max>`` with its
   own timeout and its output is compared to the expected output.

Isolation and resource limits are left to the container runtime (CPU and
memory quotas from ``SandboxConfig``). A missing image is pulled once and the
start retried; any start failure is reported as the before-all output with
no test results, the way a failing build would be.
"""

from __future__ import annotations

import asyncio
import io
import shlex
import tarfile
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import docker
from docker.errors import DockerException, ImageNotFound
from testcontainers.core.container import DockerContainer

from evaldesk.core.logging_config import get_logger
from evaldesk.core.monitoring import log_sandbox_run
from evaldesk.server.core.config import SandboxConfig, settings

logger = get_logger(__name__)


@dataclass
class SandboxFile:
    path: str
    content: str = ""


@dataclass
class SandboxTest:
    exec: str
    input: str = ""
    expected_output: str = ""


@dataclass
class SandboxTestResult:
    exec: str
    input: str
    output: str
    expected_output: str
    execution_time_ms: int
    passed: bool
    timeout: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SandboxResult:
    before_all: Optional[str] = None
    tests: List[SandboxTestResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"before_all": self.before_all, "tests": [test.to_dict() for test in self.tests]}


def build_archive(files: Sequence[SandboxFile]) -> bytes:
    """Tar archive of the files, paths relative to ``/``."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        for sandbox_file in files:
            data = (sandbox_file.content or "").encode("utf-8")
            info = tarfile.TarInfo(name=sandbox_file.path.lstrip("/"))
            info.size = len(data)
            info.mtime = int(time.time())
            info.mode = 0o644
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def clean_output(raw: Any) -> str:
    """Decode exec output, replacing invalid UTF-8 and dropping NUL bytes."""
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    return str(raw).replace("\x00", "")


def outputs_match(output: str, expected: str) -> bool:
    return output.strip() == (expected or "").strip()


class CodeSandbox:
    """Container runner for code questions."""

    def __init__(self, config: Optional[SandboxConfig] = None) -> None:
        self.config = config or settings.sandbox

    @property
    def max_output_bytes(self) -> int:
        return self.config.max_output_kb * 1024

    def _create_container(self, image: str) -> DockerContainer:
        return (
            DockerContainer(image)
            .with_command(["sleep", "infinity"])
            .with_env("NODE_NO_WARNINGS", "1")
            .with_kwargs(
                working_dir="/",
                mem_limit=f"{int(self.config.code_memory_gb * 1024)}m",
                nano_cpus=int(self.config.code_cpu_quota * 1_000_000_000),
            )
        )

    def _start(self, image: str, archive: bytes) -> DockerContainer:
        """Start a container and copy the files in; pulls the image once when missing."""
        try:
            container = self._create_container(image).start()
        except ImageNotFound:
            logger.info(f"Sandbox image {image} not found locally, pulling")
            docker.from_env().images.pull(image)
            container = self._create_container(image).start()
        container.get_wrapped_container().put_archive("/", archive)
        return container

    async def _exec(self, container: DockerContainer, command: str, timeout: float) -> str:
        result = await asyncio.wait_for(asyncio.to_thread(container.exec, ["sh", "-c", command]), timeout=timeout)
        return clean_output(result.output)

    async def run(
        self,
        files: Sequence[SandboxFile],
        tests: Sequence[SandboxTest],
        image: Optional[str] = None,
        before_all: Optional[str] = None,
    ) -> SandboxResult:
        """Run the tests against the files.

        Args:
            files: Files extracted at the container root
            tests: Commands with their input and expected output
            image: Container image, defaults to the configured code image
            before_all: Command run once before the tests

        Returns:
            The before-all output and one result per test
        """
        image = image or self.config.code_image
        started = time.monotonic()
        try:
            container = await asyncio.to_thread(self._start, image, build_archive(files))
        except (DockerException, OSError) as e:
            logger.warning(f"Sandbox container for {image} failed to start: {e}")
            log_sandbox_run("code", image, (time.monotonic() - started) * 1000, "start-error")
            return SandboxResult(before_all=str(e), tests=[])

        try:
            before_all_output = None
            if before_all:
                try:
                    before_all_output = await self._exec(
                        container,
                        f"{before_all} 2>&1 | head -c {self.max_output_bytes}",
                        self.config.before_all_timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    before_all_output = (
                        f"beforeAll Timeout (t > {int(self.config.before_all_timeout_seconds * 1000)}ms)"
                    )
                except DockerException as e:
                    logger.warning(f"Sandbox before-all command failed in {image}: {e}")
                    before_all_output = str(e)

            results = [await self._run_test(container, test) for test in tests]
            log_sandbox_run("code", image, (time.monotonic() - started) * 1000, "completed")
            return SandboxResult(before_all=before_all_output, tests=results)
        finally:
            await asyncio.to_thread(container.stop)

    async def _run_test(self, container: DockerContainer, test: SandboxTest) -> SandboxTestResult:
        command = f"echo {shlex.quote(test.input or '')} | ( {test.exec} ) 2>&1 | head -c {self.max_output_bytes}"
        started = time.monotonic()
        failed = False
        try:
            output = await self._exec(container, command, self.config.execution_timeout_seconds)
            timed_out = False
        except asyncio.TimeoutError:
            output = f"Execution Timeout (t > {int(self.config.execution_timeout_seconds * 1000)}ms)"
            timed_out = True
        except DockerException as e:
            logger.warning(f"Sandbox test command failed: {e}")
            output = str(e)
            timed_out = False
            failed = True
        elapsed = int((time.monotonic() - started) * 1000)
        return SandboxTestResult(
            exec=test.exec,
            input=test.input or "",
            output=output,
            expected_output=test.expected_output or "",
            execution_time_ms=elapsed,
            passed=not (timed_out or failed) and outputs_match(output, test.expected_output),
            timeout=timed_out,
        )


def snippet_files(
    context_path: str, context: str, snippets: Sequence[Dict[str, Any]]
) -> List[SandboxFile]:
    """Files of a code reading run: one copy of the context per snippet.

    The snippet replaces the ``{{SNIPPET}}`` marker of the context, or is
    appended to it when the marker is absent.
    """
    files = []
    for snippet in snippets:
        body = snippet.get("snippet") or ""
        content = context.replace("{{SNIPPET}}", body) if "{{SNIPPET}}" in context else f"{context}\n{body}"
        files.append(SandboxFile(path=f"snippets/{snippet.get('order', 0)}/{context_path}", content=content))
    return files


def snippet_tests(context_exec: str, snippets: Sequence[Dict[str, Any]]) -> List[SandboxTest]:
    return [
        SandboxTest(
            exec=f"cd /snippets/{snippet.get('order', 0)} && {context_exec}",
            expected_output=snippet.get("output") or "",
        )
        for snippet in snippets
    ]


code_sandbox = CodeSandbox()


def get_code_sandbox() -> CodeSandbox:
    """Dependency returning the code sandbox runner."""
    return code_sandbox
