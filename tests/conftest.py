"""Shared fixtures."""

# Disable these false positives as they are caused by pytest syntax
# pylint: disable=redefined-outer-name

import pytest
from helpers import TickingClock

from chathub.services.hub import ChatHub


@pytest.fixture
def clock() -> TickingClock:
    """Fresh deterministic clock."""
    return TickingClock()


@pytest.fixture
def hub(clock) -> ChatHub:
    """Hub with default settings and a deterministic clock."""
    return ChatHub(clock=clock)
