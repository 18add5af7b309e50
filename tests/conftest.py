"""Shared fixtures: fake transport, static readers, polling helper."""

import asyncio
import json
import threading

import pytest

from safari_markdown.config import ConverterConfig
from safari_markdown.reader import PageContent
from safari_markdown.websocket import Connected, Disconnected, MessageReceived


PAGE = PageContent(
    url="https://example.com/post",
    title="Example Post",
    body_text="Hello from the page body.",
)


class StaticReader:
    """Returns a fixed page, or raises a fixed error."""

    def __init__(self, page: PageContent = PAGE, error: Exception | None = None):
        self.page = page
        self.error = error
        self.calls = 0

    def read_page(self) -> PageContent:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.page


class BlockingReader(StaticReader):
    """Blocks in read_page until `release()` is called."""

    def __init__(self, page: PageContent = PAGE):
        super().__init__(page)
        self._gate = threading.Event()

    def release(self):
        self._gate.set()

    def read_page(self) -> PageContent:
        self._gate.wait(timeout=5)
        return super().read_page()


class FakeTransport:
    """Stands in for RawWebSocket; the test plays the server side."""

    def __init__(self, host, port, post, verify_accept=False):
        self.host = host
        self.port = port
        self.post = post
        self.verify_accept = verify_accept
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.sent: list[dict] = []

    # RawWebSocket interface
    def connect(self):
        self.connect_calls += 1

    def send(self, text: str):
        self.sent.append(json.loads(text))

    def disconnect(self):
        self.disconnect_calls += 1

    # Server side
    def open(self):
        self.post(Connected())

    def receive(self, message):
        text = message if isinstance(message, str) else json.dumps(message)
        self.post(MessageReceived(text))

    def drop(self, reason: str):
        self.post(Disconnected(reason))


@pytest.fixture
def transports():
    """List that collects every FakeTransport a converter creates."""
    return []


@pytest.fixture
def transport_factory(transports):
    def factory(host, port, post, verify_accept=False):
        transport = FakeTransport(host, port, post, verify_accept=verify_accept)
        transports.append(transport)
        return transport
    return factory


@pytest.fixture
def config():
    return ConverterConfig(
        host="127.0.0.1",
        port=8080,
        model="test-model",
        effort="medium",
        cwd="/tmp/work",
        client_version="9.9.9",
    )


@pytest.fixture
def wait_for():
    """Poll `predicate` on the running loop until true, or fail."""

    async def _wait_for(predicate, timeout: float = 2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.005)

    return _wait_for
