"""
Unit tests for join PIN generation.
"""

from unittest.mock import patch

import pytest

from evaldesk.server.core.constant import PIN_CHARSET, PIN_LENGTH
from evaldesk.server.services.pin import (
    PinGenerationError,
    assign_pin,
    generate_unique_pin,
    normalize_pin,
    random_pin,
)
from test.unit_test.server.factories import create_evaluation, create_group, create_user


def test_random_pin_uses_unambiguous_charset():
    for _ in range(50):
        pin = random_pin()
        assert len(pin) == PIN_LENGTH
        assert set(pin) <= set(PIN_CHARSET)
        assert not set(pin) & set("01IO")


def test_normalize_pin():
    assert normalize_pin("  ab2c3d ") == "AB2C3D"
    assert normalize_pin(None) == ""


async def test_generate_unique_pin_skips_taken_pins(session):
    professor, _ = await create_user(session, "p@test", ())
    group = await create_group(session, "g1", professor)
    await create_evaluation(session, group, pin="AAAAAA")

    with patch("evaldesk.server.services.pin.random_pin", side_effect=["AAAAAA", "BBBBBB"]):
        assert await generate_unique_pin(session) == "BBBBBB"


async def test_generate_unique_pin_gives_up(session):
    professor, _ = await create_user(session, "p@test", ())
    group = await create_group(session, "g1", professor)
    await create_evaluation(session, group, pin="AAAAAA")

    with patch("evaldesk.server.services.pin.random_pin", return_value="AAAAAA"):
        with pytest.raises(PinGenerationError):
            await generate_unique_pin(session, max_attempts=3)


async def test_assign_pin(session):
    professor, _ = await create_user(session, "p@test", ())
    group = await create_group(session, "g1", professor)
    evaluation = await create_evaluation(session, group)

    pin = await assign_pin(session, evaluation)
    await session.commit()

    assert evaluation.pin == pin
    assert len(pin) == PIN_LENGTH
