"""Pytest configuration and shared fixtures."""

import logfire
import pytest


@pytest.fixture(scope="session", autouse=True)
def configure_logfire_for_tests() -> None:
    """Keep spans local: nothing is exported and nothing is printed."""
    logfire.configure(send_to_logfire=False, console=False)
