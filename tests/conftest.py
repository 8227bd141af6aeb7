"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for compute_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from vm_operator.config import ProviderConfig  # noqa: E402


@pytest.fixture
def provider_config() -> ProviderConfig:
    """Valid configuration with timings suitable for tests."""
    return ProviderConfig(
        api_url="https://pve.example.com:8006/api2/json",
        token_id="terraform@pve!ops",
        token_secret="secret",
        max_parallel=4,
        create_timeout_seconds=2,
        agent_poll_interval_seconds=0,
    )
