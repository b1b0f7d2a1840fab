"""
Repository layer.

Repositories wrap the queries that several routers or services share. Simple
single-row reads and writes stay in the routers, on the session.
"""

from .base import BaseRepository, QueryBuilder, SQLModelRepository
from .evaluations import EvaluationRepository
from .groups import GroupRepository
from .questions import QuestionFilters, QuestionRepository
from .users import UserRepository

__all__ = [
    "BaseRepository",
    "EvaluationRepository",
    "GroupRepository",
    "QueryBuilder",
    "QuestionFilters",
    "QuestionRepository",
    "SQLModelRepository",
    "UserRepository",
]
