from __future__ import annotations

from unittest.mock import patch

import pytest

from deepsearch.services.memory_store import InMemoryResearchStore
from fakes import FakeSearch


@pytest.fixture
def store():
    return InMemoryResearchStore()


@pytest.fixture
def fake_search():
    fake = FakeSearch()
    with patch("deepsearch.tools.search_provider.search", new=fake):
        yield fake


@pytest.fixture
def failing_third_search():
    fake = FakeSearch(fail_on=(3,))
    with patch("deepsearch.tools.search_provider.search", new=fake):
        yield fake
