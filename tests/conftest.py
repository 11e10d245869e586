"""Shared test fixtures."""

from __future__ import annotations

import itertools
from collections.abc import Callable

import pytest

from requestdesk.agents.memory import InMemoryPlayoutAgent
from requestdesk.core.clock import ManualClock
from requestdesk.core.config import RequestDeskConfig
from requestdesk.core.store import RequestStore


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def config() -> RequestDeskConfig:
    return RequestDeskConfig()


@pytest.fixture()
def id_factory() -> Callable[[], str]:
    counter = itertools.count(1)
    return lambda: f"req-{next(counter)}"


@pytest.fixture()
def store(config: RequestDeskConfig, clock: ManualClock, id_factory: Callable[[], str]) -> RequestStore:
    return RequestStore(config, clock, id_factory=id_factory)


@pytest.fixture()
def agent() -> InMemoryPlayoutAgent:
    return InMemoryPlayoutAgent()
