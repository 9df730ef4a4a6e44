"""
Shared fixtures for the unit tests.
"""

import pytest

from tests.unit.fakes import FakeClient, SleepRecorder


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def sleep():
    return SleepRecorder()
