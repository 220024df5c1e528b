"""Fakes and polling helpers shared by the test modules."""

import asyncio
import time


async def wait_for(predicate, timeout: float = 1.0, interval: float = 0.005) -> bool:
    """Poll `predicate` on the event loop until it is true or `timeout` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


async def settle(rounds: int = 5) -> None:
    """Let pending callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self):
        self.sent = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, text):
        self.sent.append(text)

    async def close(self, code: int = 1000, reason: str = ""):
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(None)

    def feed(self, message) -> None:
        """Deliver a message from the peer."""
        self._incoming.put_nowait(message)

    def drop(self) -> None:
        """Peer closes the connection."""
        self.closed = True
        self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        message = await self._incoming.get()
        if message is None:
            raise StopAsyncIteration
        return message


class FakeConnector:
    """Replacement for websockets.connect that hands out FakeSockets."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = 0
        self.urls = []
        self.sockets = []
        self.gate = None

    async def __call__(self, url, **kwargs):
        self.calls += 1
        self.urls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            self.failures -= 1
            raise ConnectionRefusedError("refused")
        ws = FakeSocket()
        self.sockets.append(ws)
        return ws

    @property
    def last(self) -> FakeSocket:
        return self.sockets[-1]


class RecordingSink:
    """Command sink that records directions with timestamps."""

    def __init__(self):
        self.events = []

    def __call__(self, direction: str) -> None:
        self.events.append((time.monotonic(), direction))

    @property
    def directions(self):
        return [d for _, d in self.events]
