"""Shared pytest fixtures for all test types."""

from __future__ import annotations

import pytest

from tests.unit.mocks.fake_agi import FakeAGISession
from tests.unit.mocks.fake_store import FakeStore


@pytest.fixture
def fake_store() -> FakeStore:
    """Directory with two tenants: acme owns 100 and 200, other owns 300."""
    store = FakeStore()
    store.add_tenant("acme", did="5551000", trunk="acme-trunk")
    store.add_tenant("other", did="5552000", trunk="other-trunk")
    store.add_extension("100", "acme")
    store.add_extension("200", "acme")
    store.add_extension("300", "other")
    return store


@pytest.fixture
def empty_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def agi_session() -> FakeAGISession:
    return FakeAGISession()
