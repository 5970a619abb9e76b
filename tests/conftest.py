# Shared fixtures.
# Created: 2026-10-18

import pytest

from fakes import ConcurrencyTracker


@pytest.fixture
def tracker() -> ConcurrencyTracker:
    return ConcurrencyTracker()
