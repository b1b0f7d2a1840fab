"""
Container sandboxes.

- code_runner: runs code questions (writing and reading) in a language image
- database_runner: runs SQL queries in a throwaway PostgreSQL
"""

from .code_runner import (
    CodeSandbox,
    SandboxFile,
    SandboxResult,
    SandboxTest,
    SandboxTestResult,
    get_code_sandbox,
)
from .database_runner import DatabaseSandbox, QueryOutput, get_database_sandbox

__all__ = [
    "CodeSandbox",
    "DatabaseSandbox",
    "QueryOutput",
    "SandboxFile",
    "SandboxResult",
    "SandboxTest",
    "SandboxTestResult",
    "get_code_sandbox",
    "get_database_sandbox",
]
