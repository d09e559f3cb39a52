"""Shared fixtures for the DOISYNC test suite."""

import pytest
from unittest.mock import patch

from doisync.utils.settings import (
    PRODUCTION_ENDPOINT,
    TEST_ENDPOINT,
    EnvironmentSettings,
    RegistrySettings,
)


@pytest.fixture
def mock_sleep():
    """Replace the transport's sleep so retries and pacing run instantly."""
    with patch('doisync.api.transport.time.sleep') as mock:
        yield mock


@pytest.fixture
def production_environment():
    return EnvironmentSettings(
        name="production",
        endpoint=PRODUCTION_ENDPOINT,
        username="TIB.GFZ",
        password="prod_password",
        prefixes=("10.5880", "10.26026")
    )


@pytest.fixture
def test_environment():
    return EnvironmentSettings(
        name="test",
        endpoint=TEST_ENDPOINT,
        username="XUVM.KDVJHQ",
        password="test_password",
        prefixes=("10.83279", "10.83186")
    )


@pytest.fixture
def settings(production_environment, test_environment):
    """Configuration with global test mode disabled."""
    return RegistrySettings(
        production=production_environment,
        test=test_environment,
        test_mode=False,
        client_id="tib.gfz"
    )
