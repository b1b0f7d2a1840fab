"""
API schema models.

These models define request and response contracts. They are kept separate
from the entities so that the JSON exposed by the API can evolve
independently from the tables.
"""

from . import answers, archive, evaluations, groups, questions

__all__ = ["answers", "archive", "evaluations", "groups", "questions"]
