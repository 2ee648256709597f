"""Shared fixtures: a mock analysis client, a manual clock and a manual sleep."""

import asyncio

import pytest

from sensei.analysis import MemoryConfigStore, SessionKey, TerminalMonitor
from sensei.llm.mock_provider import MockProvider
from sensei.llm.unified_client import UnifiedAnalysisClient

MOCK_MODEL = "mock-analyst"


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class ManualSleep:
    """Sleep replacement whose waits only end when the test fires them."""

    def __init__(self):
        self.waiters: list[tuple[float, asyncio.Future]] = []

    async def __call__(self, delay: float):
        fut = asyncio.get_running_loop().create_future()
        self.waiters.append((delay, fut))
        await fut

    @property
    def pending(self) -> list[float]:
        return [delay for delay, fut in self.waiters if not fut.done()]

    async def fire_all(self):
        await settle()
        waiters, self.waiters = self.waiters, []
        for _, fut in waiters:
            if not fut.done():
                fut.set_result(None)
        await settle()


async def settle(rounds: int = 20):
    """Let scheduled tasks run until they block again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def key():
    return SessionKey("srv-1", "sess-1")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manual_sleep():
    return ManualSleep()


@pytest.fixture
def mock_provider():
    return MockProvider(config={})


@pytest.fixture
def client(mock_provider):
    return UnifiedAnalysisClient({}, providers={"mock": mock_provider})


@pytest.fixture
def store():
    return MemoryConfigStore()


@pytest.fixture
def monitor(client, store, clock, manual_sleep):
    return TerminalMonitor({}, store=store, client=client, sleep=manual_sleep, clock=clock)


def enable(monitor, key, **overrides):
    """Enable ``key`` on the mock model with optional config overrides."""
    return monitor.initialize(key, {"enabled": True, "model": MOCK_MODEL, **overrides})


def reply(recommendation, confidence=None, command=None):
    data = {"recommendation": recommendation}
    if confidence is not None:
        data["confidence"] = confidence
    if command is not None:
        data["command"] = command
    return data
