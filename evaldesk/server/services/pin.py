"""
Join PIN generation.

A PIN is six characters drawn from an alphabet without the easily confused
``0``, ``1``, ``I`` and ``O``. Uniqueness is checked against the stored PINs
with a bounded retry loop; the unique index on ``evaluations.pin`` remains
the final guard.
"""

from __future__ import annotations

import secrets

from sqlalchemy.ext.asyncio import AsyncSession

from evaldesk.core.database.entities import Evaluation
from evaldesk.core.database.repositories import EvaluationRepository
from evaldesk.core.logging_config import get_logger
from evaldesk.server.core.constant import PIN_CHARSET, PIN_LENGTH, PIN_MAX_ATTEMPTS

logger = get_logger(__name__)


class PinGenerationError(RuntimeError):
    """No free PIN was found within the allowed attempts."""


def random_pin() -> str:
    return "".join(secrets.choice(PIN_CHARSET) for _ in range(PIN_LENGTH))


def normalize_pin(pin: str) -> str:
    return (pin or "").strip().upper()


async def generate_unique_pin(session: AsyncSession, max_attempts: int = PIN_MAX_ATTEMPTS) -> str:
    """Draw PINs until one is not used by any evaluation.

    Raises:
        PinGenerationError: After ``max_attempts`` collisions.
    """
    repository = EvaluationRepository(session)
    for attempt in range(1, max_attempts + 1):
        pin = random_pin()
        if not await repository.pin_exists(pin):
            if attempt > 1:
                logger.debug(f"PIN found after {attempt} attempts")
            return pin
    raise PinGenerationError(f"Unable to generate a unique PIN after {max_attempts} attempts")


async def assign_pin(session: AsyncSession, evaluation: Evaluation) -> str:
    """Give an evaluation a fresh PIN. Does not commit."""
    evaluation.pin = await generate_unique_pin(session)
    session.add(evaluation)
    return evaluation.pin
