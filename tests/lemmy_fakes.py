import asyncio
import json

from websockets.exceptions import ConnectionClosedError


_DROP = object()


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, url):
        self.url = url
        self.sent = []
        self.closed = False
        self._incoming = asyncio.Queue()

    async def send(self, frame):
        self.sent.append(json.loads(frame))

    async def close(self):
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(None)

    def feed(self, payload):
        self._incoming.put_nowait(json.dumps(payload))

    def drop(self):
        self._incoming.put_nowait(_DROP)

    def sent_ops(self):
        return [frame["op"] for frame in self.sent]

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        if item is _DROP:
            self.closed = True
            raise ConnectionClosedError(None, None)
        return item


class FakeConnector:
    """Callable used in place of websockets.connect."""

    def __init__(self, fail_secure=True, fail_all=False):
        self.fail_secure = fail_secure
        self.fail_all = fail_all
        # When set, every attempt waits for it before succeeding or failing.
        self.gate = None
        self.urls = []
        self.sockets = []

    async def __call__(self, url):
        self.urls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_all or (self.fail_secure and url.startswith("wss://")):
            raise OSError(f"connection refused: {url}")
        websocket = FakeWebSocket(url)
        self.sockets.append(websocket)
        return websocket

    @property
    def last(self):
        return self.sockets[-1]
