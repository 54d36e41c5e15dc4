"""
Pytest configuration and shared fixtures for the test suite.
"""

import pytest
import sys
from pathlib import Path

# Add the package source to Python path for testing
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from api_healer.core.models import (  # noqa: E402
    ExecutedTest,
    ExecutionOutcome,
    ExecutionStatus,
    FailedTestCase,
    HealingConfiguration
)


SAMPLE_TEST_SOURCE = """import { test, expect } from '@playwright/test';

test('get user profile', async ({ request }) => {
  const response = await request.get('/users/42');
  expect(response.status()).toBe(200);
  const body = await response.json();
  expect(body.user_id).toBe(42);
  expect(body.email).toBeDefined();
});
"""


class FakeClock:
    """Manually advanced clock returning seconds."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session")
def package_src_path():
    """Provide the package source path for tests."""
    return src_path


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def sample_source():
    return SAMPLE_TEST_SOURCE


@pytest.fixture
def api_tests_dir(tmp_path):
    """Create a temporary directory of API tests."""
    tests_dir = tmp_path / "api_tests"
    tests_dir.mkdir()
    return tests_dir


@pytest.fixture
def sample_test_file(api_tests_dir):
    """Write the sample Playwright API test to disk."""
    file_path = api_tests_dir / "users.spec.ts"
    file_path.write_text(SAMPLE_TEST_SOURCE, encoding="utf-8")
    return file_path


@pytest.fixture
def failed_test_case(sample_test_file):
    """A failing test whose response no longer carries ``user_id``."""
    return FailedTestCase(
        test_id="users-get-profile",
        name="get user profile",
        source_path=str(sample_test_file),
        source_code=SAMPLE_TEST_SOURCE,
        outcome=ExecutionOutcome(
            status=ExecutionStatus.FAILED,
            duration=0.4,
            error_message="Property 'user_id' is missing in response"
        ),
        endpoint="/users/42",
        method="GET"
    )


@pytest.fixture
def executed_failure(sample_test_file):
    return ExecutedTest(
        test_id="users-get-profile",
        name="get user profile",
        source_path=str(sample_test_file),
        outcome=ExecutionOutcome(
            status=ExecutionStatus.FAILED,
            duration=0.4,
            error_message="Expected status 200, received 201"
        ),
        endpoint="/users/42",
        method="GET"
    )


@pytest.fixture
def healing_config(tmp_path):
    """Healing configuration without re-runs or cache persistence."""
    return HealingConfiguration(
        max_attempts_per_test=2,
        max_total_time=300.0,
        auto_retry=False,
        backup_original=False,
        enable_ai=False
    )


@pytest.fixture(autouse=True)
def setup_test_logging():
    """Set up logging for tests."""
    import logging
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
