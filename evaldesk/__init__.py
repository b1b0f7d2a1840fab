"""evaldesk.

Backend service of an academic evaluation platform: professors compose
evaluations out of a per-group question bank, students join and answer them,
answers are auto-graded where possible and signed by professors, and
administrators run the archival workflow that eventually purges student data.

High-level architecture
-----------------------

- ``evaldesk.core``:

  - Logging and monitoring configuration.
  - Domain enumerations shared by every layer.
  - SQLModel entities, repositories and API schemas.

- ``evaldesk.server``:

  - FastAPI application, routers and exception handlers.
  - Services holding the non-trivial logic: authorization and access
    restrictions, evaluation phases, grading engine, question copy, purge
    transaction, server-sent events registry and container sandboxes.
"""

__version__ = "0.1.0"
