"""Pytest configuration and fixtures."""

import sys
from collections.abc import Generator
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for aws_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from aws_mock import MockCloudFormationClient, MockStackState  # noqa: E402

from stackctl import config as config_module  # noqa: E402
from stackctl.config import Config  # noqa: E402

# Fast polling so lifecycle tests finish in milliseconds
TEST_POLL_INTERVAL = 0.01


@pytest.fixture
def state() -> MockStackState:
    """Empty mock CloudFormation state."""
    return MockStackState()


@pytest.fixture
def client(state: MockStackState) -> MockCloudFormationClient:
    """Mock control plane client backed by the state fixture."""
    return MockCloudFormationClient(state)


@pytest.fixture
def config() -> Config:
    """Configuration with fast polling."""
    return Config(region="us-east-1", poll_interval_seconds=TEST_POLL_INTERVAL)


@pytest.fixture(autouse=True)
def restore_default_poll_interval() -> Generator[None, None, None]:
    """Undo configure() calls made by a test."""
    original = config_module.default_poll_interval()
    yield
    config_module.configure(original)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the caller's AWS and stackctl settings out of the tests."""
    for key in (
        "AWS_REGION",
        "AWS_DEFAULT_REGION",
        "AWS_PROFILE",
        "PROXY",
        "https_proxy",
        "http_proxy",
        "STACKCTL_ENDPOINT_URL",
        "STACKCTL_POLL_INTERVAL",
        "STACKCTL_POLL_TIMEOUT",
        "STACKCTL_LOG_FORMAT",
        "STACKCTL_LOG_LEVEL",
    ):
        monkeypatch.delenv(key, raising=False)
