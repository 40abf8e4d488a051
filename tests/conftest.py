import asyncio

import pytest

from livepoll.broadcast import BroadcastHub
from livepoll.guard import OneShotGuard, RateLimitGuard
from livepoll.state import InMemoryPollStore
from livepoll.voting import VoteProcessor


class FakeSubscriber:
    """In-memory stand-in for a websocket connection"""

    def __init__(self, name: str = "sub", fail: bool = False, delay: float = 0.0):
        self.name = name
        self.fail = fail
        self.delay = delay
        self.connected = True
        self.closed = False
        self.received = []

    async def send(self, message: dict) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError(f"{self.name} went away")
        self.received.append(message)

    async def close(self) -> None:
        self.closed = True
        self.connected = False

    def __repr__(self):
        return f"<FakeSubscriber {self.name}>"


class Clock:
    """Manually advanced monotonic clock"""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def make_subscriber():
    return FakeSubscriber


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store():
    return InMemoryPollStore()


@pytest.fixture
def hub():
    return BroadcastHub(send_timeout=0.5)


@pytest.fixture
def rate_guard():
    return RateLimitGuard(window=60)


@pytest.fixture
def one_shot_guard():
    return OneShotGuard()


@pytest.fixture
def processor(store, rate_guard, hub, clock):
    return VoteProcessor(store, rate_guard, hub, storage_timeout=1.0, clock=clock)
