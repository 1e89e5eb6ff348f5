import asyncio
import json

import pytest
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from agentlink.config import AIServiceSettings, AppConfig, CallSettings, WebSocketSettings
from agentlink.insights import CallInsights
from agentlink.session import CallerInfo
from agentlink.status_machine import AgentStatusMachine


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeSocket:
    """Stands in for a websockets ClientConnection."""

    def __init__(self, url: str):
        self.url = url
        self.state = State.OPEN
        self.sent: list[str] = []
        self._inbox: asyncio.Queue = asyncio.Queue()

    @property
    def sent_messages(self) -> list[dict]:
        return [json.loads(data) for data in self.sent]

    def sent_types(self) -> list[str]:
        return [message["type"] for message in self.sent_messages]

    def feed(self, message):
        self._inbox.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self):
        """Server side goes away."""
        self.state = State.CLOSED
        self._inbox.put_nowait(None)

    async def send(self, data: str):
        if self.state is not State.OPEN:
            raise ConnectionClosed(None, None)
        self.sent.append(data)

    async def close(self):
        self.state = State.CLOSED
        self._inbox.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is None:
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Replaces websockets.connect; records every attempt."""

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []
        self.sockets: list[FakeSocket] = []
        self.failures_left = 0

    async def __call__(self, url: str, **kwargs) -> FakeSocket:
        self.calls.append((url, kwargs))
        if self.failures_left:
            self.failures_left -= 1
            raise ConnectionRefusedError("connection refused")
        ws = FakeSocket(url)
        self.sockets.append(ws)
        return ws

    @property
    def live(self) -> list[FakeSocket]:
        return [ws for ws in self.sockets if ws.state is State.OPEN]

    @property
    def last(self) -> FakeSocket:
        return self.sockets[-1]


async def wait_until(predicate, timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def config():
    return AppConfig(
        websocket=WebSocketSettings(
            reconnect_interval=0.01,
            max_reconnect_delay=0.04,
            max_reconnect_attempts=3,
            heartbeat_interval=60.0,
        ),
        ai_service=AIServiceSettings(base_url=""),
        calls=CallSettings(agent_id="agent-007", tick_seconds=0.01),
    )


@pytest.fixture
def machine(clock):
    return AgentStatusMachine(clock=clock, tick_seconds=0.01)


@pytest.fixture
def insights():
    return CallInsights()


@pytest.fixture
def caller():
    return CallerInfo(name="Jane Doe", number="+15125551234", priority="high", location="Austin, TX")
