"""Fixtures shared by the end-to-end tests, which start real containers."""

from test.settings import test_settings

import pytest


def pytest_collection_modifyitems(config, items):
    if test_settings.test.run_docker_tests:
        return
    skip_docker = pytest.mark.skip(reason="Docker tests disabled, set TEST__RUN_DOCKER_TESTS=true to run them")
    for item in items:
        if "e2e_test" in str(item.fspath):
            item.add_marker(pytest.mark.docker)
            item.add_marker(skip_docker)
