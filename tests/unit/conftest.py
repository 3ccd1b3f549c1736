"""Fixtures for unit tests: in-memory repository and a fake runner."""

from __future__ import annotations

import pytest

from cronpilot.storage.memory import InMemoryStore
from cronpilot.storage.repository import AutomationRepository
from tests.unit.fakes import FakeRunner


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def repo(store):
    return AutomationRepository(store)


@pytest.fixture
def runner():
    return FakeRunner()
