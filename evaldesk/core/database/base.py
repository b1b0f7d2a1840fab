"""
Base database models and utilities.

This module provides the foundational database components used across
all entities using SQLModel.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import ConfigDict
from sqlmodel import SQLModel


class Base(SQLModel):
    """Base class for all SQLModel entities."""

    model_config = ConfigDict(arbitrary_types_allowed=True)


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, the way every timestamp column stores it."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    """Primary key factory for string identifiers."""
    return str(uuid.uuid4())
