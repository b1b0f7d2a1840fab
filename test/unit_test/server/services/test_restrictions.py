"""
Unit tests for student access restrictions: address parsing, IP restriction
matching and the ordered checks applied to student requests.
"""

import ipaddress
from unittest.mock import Mock

import pytest
from sqlmodel import select

from evaldesk.core.database.entities import UserOnEvaluationDeniedAccessAttempt
from evaldesk.core.database.schemas.groups import SessionUser
from evaldesk.core.models import EvaluationPhase, UserOnEvaluationAccessMode
from evaldesk.server.errors import ApiError
from evaldesk.server.services.restrictions import (
    check_student_access,
    client_ip,
    is_desktop_app,
    is_ip_allowed,
    normalize_ip,
)
from test.unit_test.server.factories import create_evaluation, create_group, create_user


def _request(headers=None, host="127.0.0.1"):
    request = Mock()
    request.headers = {key.lower(): value for key, value in (headers or {}).items()}
    request.client = Mock()
    request.client.host = host
    return request


class TestNormalizeIp:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("10.0.0.1", "10.0.0.1"),
            (" 10.0.0.1:8080 ", "10.0.0.1"),
            ("::ffff:10.0.0.1", "10.0.0.1"),
            ("[2001:db8::1]:443", "2001:db8::1"),
            ("fe80::1%eth0", "fe80::1"),
        ],
    )
    def test_normalizes(self, raw, expected):
        assert normalize_ip(raw) == ipaddress.ip_address(expected)

    @pytest.mark.parametrize("raw", [None, "", "not-an-ip", "999.1.1.1"])
    def test_invalid(self, raw):
        assert normalize_ip(raw) is None


class TestIsIpAllowed:
    def test_empty_restrictions_allow_everyone(self):
        assert is_ip_allowed(None, "")
        assert is_ip_allowed(normalize_ip("1.2.3.4"), " , ")

    def test_cidr(self):
        assert is_ip_allowed(normalize_ip("10.1.2.3"), "10.0.0.0/8")
        assert not is_ip_allowed(normalize_ip("11.1.2.3"), "10.0.0.0/8")

    def test_range_is_inclusive(self):
        restrictions = "192.168.1.10-192.168.1.20"
        assert is_ip_allowed(normalize_ip("192.168.1.10"), restrictions)
        assert is_ip_allowed(normalize_ip("192.168.1.20"), restrictions)
        assert not is_ip_allowed(normalize_ip("192.168.1.21"), restrictions)

    def test_single_address_and_ipv6(self):
        assert is_ip_allowed(normalize_ip("2001:db8::5"), "10.0.0.1, 2001:db8::/64")
        assert is_ip_allowed(normalize_ip("10.0.0.1"), "10.0.0.1")

    def test_malformed_entries_never_match(self):
        assert not is_ip_allowed(normalize_ip("10.0.0.1"), "garbage, 10.0.0.0/99")

    def test_unknown_address_is_refused_when_restricted(self):
        assert not is_ip_allowed(None, "10.0.0.0/8")


class TestRequestHelpers:
    def test_client_ip_prefers_leftmost_forwarded_entry(self):
        request = _request({"X-Forwarded-For": "203.0.113.7, 10.0.0.2"}, host="10.0.0.3")
        assert client_ip(request) == ipaddress.ip_address("203.0.113.7")

    def test_client_ip_falls_back_to_socket(self):
        assert client_ip(_request(host="10.0.0.3")) == ipaddress.ip_address("10.0.0.3")

    def test_desktop_app_needs_header_and_user_agent(self):
        assert is_desktop_app(_request({"x-opendidac-desktop": "true", "User-Agent": "Mozilla OpenDidacDesktop/1.0"}))
        assert not is_desktop_app(_request({"x-opendidac-desktop": "true", "User-Agent": "Mozilla"}))
        assert not is_desktop_app(_request({"User-Agent": "OpenDidacDesktop"}))


class TestCheckStudentAccess:
    @pytest.fixture
    async def setup(self, session):
        professor, _ = await create_user(session, "p@test", ())
        user, _ = await create_user(session, "s@test")
        group = await create_group(session, "g1", professor)
        student = SessionUser(id=user.id, email=user.email, roles=["STUDENT"])
        return session, group, student

    async def test_composition_phase_is_not_ready(self, setup):
        session, group, student = setup
        evaluation = await create_evaluation(session, group, phase=EvaluationPhase.COMPOSITION)
        with pytest.raises(ApiError) as exc:
            await check_student_access(session, _request(), evaluation, student)
        assert exc.value.status_code == 400
        assert exc.value.error_id == "not-ready"

    async def test_desktop_app_required(self, setup):
        session, group, student = setup
        evaluation = await create_evaluation(
            session, group, phase=EvaluationPhase.IN_PROGRESS, desktop_app_required=True
        )
        with pytest.raises(ApiError) as exc:
            await check_student_access(session, _request(), evaluation, student)
        assert exc.value.error_id == "desktop-app-required"

    async def test_ip_restriction(self, setup):
        session, group, student = setup
        evaluation = await create_evaluation(
            session, group, phase=EvaluationPhase.IN_PROGRESS, ip_restrictions="10.0.0.0/8"
        )
        with pytest.raises(ApiError) as exc:
            await check_student_access(session, _request(host="192.168.0.1"), evaluation, student)
        assert exc.value.status_code == 401
        assert exc.value.error_id == "ip-restriction"

        await check_student_access(session, _request(host="10.2.3.4"), evaluation, student)

    async def test_access_list_records_denied_attempt(self, setup):
        session, group, student = setup
        evaluation = await create_evaluation(
            session,
            group,
            phase=EvaluationPhase.REGISTRATION,
            access_mode=UserOnEvaluationAccessMode.LINK_AND_ACCESS_LIST,
            access_list=["someone.else@test"],
        )
        with pytest.raises(ApiError) as exc:
            await check_student_access(session, _request(), evaluation, student)
        assert exc.value.error_id == "access-list"
        assert exc.value.error_type == "info"

        attempts = (await session.execute(select(UserOnEvaluationDeniedAccessAttempt))).scalars().all()
        assert [(a.user_email, a.evaluation_id) for a in attempts] == [(student.email, evaluation.id)]

    async def test_listed_student_passes(self, setup):
        session, group, student = setup
        evaluation = await create_evaluation(
            session,
            group,
            phase=EvaluationPhase.IN_PROGRESS,
            access_mode=UserOnEvaluationAccessMode.LINK_AND_ACCESS_LIST,
            access_list=[student.email],
        )
        await check_student_access(session, _request(), evaluation, student)
