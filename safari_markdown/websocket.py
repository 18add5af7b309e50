"""Minimal WebSocket client built directly on an asyncio TCP stream.

The peer is a Codex app server on loopback, which only ever sends single,
unfragmented text frames. This client therefore implements just:
1. The HTTP/1.1 upgrade handshake
2. Masked text frame output
3. Inbound frame reassembly from partial reads
4. Ping -> pong, close -> disconnect

The transport never touches session state. Everything it observes is handed
to a `post` callable as a `TransportEvent`; the owner decides what to do
with it on its own schedule.
"""

import asyncio
import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

from .errors import HandshakeError
from .frames import Opcode, ReceiveBuffer, encode_pong_frame, encode_text_frame

logger = logging.getLogger(__name__)

WS_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"
READ_CHUNK_SIZE = 65536


@dataclass(frozen=True)
class Connected:
    """Handshake succeeded; the socket accepts `send()`."""


@dataclass(frozen=True)
class MessageReceived:
    """One complete text frame."""
    text: str


@dataclass(frozen=True)
class Disconnected:
    """The stream is gone (closed, refused, rejected, or failed)."""
    reason: str


TransportEvent = Union[Connected, MessageReceived, Disconnected]
EventSink = Callable[[TransportEvent], None]


class ConnectionState(Enum):
    """Lifecycle of a single connection."""
    DISCONNECTED = "disconnected"
    HANDSHAKING = "handshaking"
    OPEN = "open"
    CLOSED = "closed"


def generate_key() -> str:
    """Random base64 Sec-WebSocket-Key (16 bytes of entropy)."""
    return base64.b64encode(secrets.token_bytes(16)).decode("ascii")


def expected_accept(key: str) -> str:
    """Sec-WebSocket-Accept value a compliant server answers `key` with."""
    digest = hashlib.sha1((key + WS_GUID).encode("ascii")).digest()
    return base64.b64encode(digest).decode("ascii")


def build_handshake_request(host: str, port: int, key: str, path: str = "/") -> bytes:
    """Literal upgrade request sent right after the TCP connect."""
    request = (
        f"GET {path} HTTP/1.1\r\n"
        f"Host: {host}:{port}\r\n"
        "Upgrade: websocket\r\n"
        "Connection: Upgrade\r\n"
        f"Sec-WebSocket-Key: {key}\r\n"
        "Sec-WebSocket-Version: 13\r\n"
        "\r\n"
    )
    return request.encode("ascii")


def parse_response_headers(response: str) -> dict[str, str]:
    """Header block -> {lowercased name: value}. The status line is skipped."""
    headers = {}
    for line in response.split("\r\n")[1:]:
        if not line:
            break
        name, sep, value = line.partition(":")
        if sep:
            headers[name.strip().lower()] = value.strip()
    return headers


def check_handshake_response(response: str, key: str, verify_accept: bool = False) -> None:
    """Raise HandshakeError unless `response` upgrades the connection.

    The default check is the lenient one: status 101 plus an `upgrade` token
    anywhere in the response. With `verify_accept`, Sec-WebSocket-Accept must
    also match `key`.
    """
    status_line = response.split("\r\n", 1)[0]
    parts = status_line.split()
    status = parts[1] if len(parts) >= 2 else ""
    if status != "101" or "upgrade" not in response.lower():
        raise HandshakeError(f"Handshake rejected: {response[:100]}")

    if verify_accept:
        accept = parse_response_headers(response).get("sec-websocket-accept", "")
        if accept != expected_accept(key):
            raise HandshakeError("Handshake rejected: Sec-WebSocket-Accept mismatch")


class RawWebSocket:
    """
    WebSocket client for one connection to a loopback peer.

    `connect()` returns immediately; TCP connect, handshake and the read loop
    run in a background task. Results arrive through `post`:
    - Connected() once the upgrade succeeds
    - MessageReceived(text) per decoded text frame
    - Disconnected(reason) when the connection fails or ends

    `disconnect()` is the caller's way out and posts nothing.
    """

    def __init__(
        self,
        host: str,
        port: int,
        post: EventSink,
        *,
        path: str = "/",
        verify_accept: bool = False,
    ):
        self.host = host
        self.port = port
        self.path = path
        self.verify_accept = verify_accept
        self._post = post

        self.state = ConnectionState.DISCONNECTED
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._task: Optional[asyncio.Task] = None
        self._buffer = ReceiveBuffer()

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    def connect(self) -> None:
        """Start connecting in the background. No-op if already running."""
        if self._task is not None and not self._task.done():
            return
        self.state = ConnectionState.HANDSHAKING
        self._task = asyncio.create_task(self._run(), name=f"ws-{self.host}:{self.port}")

    def send(self, text: str) -> None:
        """Send `text` as one masked text frame.

        Dropped silently unless the handshake has completed. There is no
        queue: anything sent before `Connected` is lost.
        """
        if self.state is not ConnectionState.OPEN:
            logger.debug("Dropping outbound message, socket is %s", self.state.value)
            return
        self._write(encode_text_frame(text))

    def disconnect(self) -> None:
        """Tear down the connection now. Safe to call repeatedly."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._close_stream()
        self.state = ConnectionState.DISCONNECTED

    # -------------------------------------------------------------------------
    # Background task
    # -------------------------------------------------------------------------

    async def _run(self):
        logger.debug("Connecting to ws://%s:%s%s", self.host, self.port, self.path)
        try:
            self._reader, self._writer = await asyncio.open_connection(self.host, self.port)
        except (OSError, OverflowError, ValueError) as e:
            logger.warning("TCP connect to %s:%s failed: %s", self.host, self.port, e)
            self._fail(f"Failed: {e}")
            return

        try:
            await self._handshake()
        except HandshakeError as e:
            logger.warning("%s", e)
            self._fail(str(e))
            return

        self.state = ConnectionState.OPEN
        logger.info("WebSocket connected to %s:%s", self.host, self.port)
        self._post(Connected())
        await self._read_loop()

    async def _handshake(self):
        key = generate_key()
        try:
            self._writer.write(build_handshake_request(self.host, self.port, key, self.path))
            await self._writer.drain()
        except OSError as e:
            raise HandshakeError(f"Handshake send failed: {e}") from e

        try:
            raw = await self._reader.readuntil(b"\r\n\r\n")
        except asyncio.IncompleteReadError as e:
            # Peer hung up mid-headers; whatever it did send may still explain why
            if not e.partial:
                raise HandshakeError("Handshake read failed: connection closed") from e
            raw = e.partial
        except (asyncio.LimitOverrunError, OSError) as e:
            raise HandshakeError(f"Handshake read failed: {e}") from e

        response = raw.decode("utf-8", errors="replace")
        logger.debug("Handshake response: %s", response.split("\r\n", 1)[0])
        check_handshake_response(response, key, self.verify_accept)

    async def _read_loop(self):
        while True:
            try:
                data = await self._reader.read(READ_CHUNK_SIZE)
            except OSError as e:
                self._fail(f"Read error: {e}")
                return
            if not data:
                self._fail("Connection closed")
                return
            self._buffer.feed(data)
            if not self._process_frames():
                return

    def _process_frames(self) -> bool:
        """Dispatch every complete buffered frame. False once the peer closed."""
        for frame in self._buffer.frames():
            if frame.opcode == Opcode.TEXT:
                try:
                    text = frame.payload.decode("utf-8")
                except UnicodeDecodeError:
                    logger.debug("Dropping text frame with invalid UTF-8 (%d bytes)", len(frame.payload))
                    continue
                self._post(MessageReceived(text))
            elif frame.opcode == Opcode.CLOSE:
                self._fail("Server closed connection")
                return False
            elif frame.opcode == Opcode.PING:
                self._write(encode_pong_frame(frame.payload))
            else:
                logger.debug("Ignoring frame with opcode 0x%X", frame.opcode)
        return self.state is ConnectionState.OPEN

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _write(self, data: bytes):
        if self._writer is None:
            return
        try:
            self._writer.write(data)
        except (OSError, RuntimeError) as e:
            self._fail(f"Write failed: {e}")

    def _fail(self, reason: str):
        if self.state is ConnectionState.CLOSED:
            return
        self._close_stream()
        self.state = ConnectionState.CLOSED
        self._post(Disconnected(reason))

    def _close_stream(self):
        if self._writer is not None:
            self._writer.close()
            self._writer = None
        self._reader = None
        self._buffer.clear()
