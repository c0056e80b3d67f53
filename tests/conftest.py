"""Shared fixtures."""
import pytest

from fakes import SleepRecorder
from scheduler_e2e.config import DEFAULT_CONFIG
from scheduler_e2e.credentials import Credentials
from scheduler_e2e.provisioning import Fixture


@pytest.fixture
def fixture():
    return Fixture("i-0123456789abcdef0", "us-east-2", "Schedule", "e2e-test")


@pytest.fixture
def credentials():
    return Credentials("AKIAEXAMPLE", "secret-value", "token-value")


@pytest.fixture
def config(tmp_path):
    return DEFAULT_CONFIG._replace(build_image=False,
                                   results_path=str(tmp_path / "results.json"))


@pytest.fixture
def sleep():
    return SleepRecorder()
