"""JSON-RPC 2.0 correlation for the Codex app-server protocol.

Outbound requests get monotonically increasing integer ids; the id -> method
table lets a later response be matched to the call that caused it.

Inbound text goes through `classify()` exactly once and comes out as one of:
- Response: answer to a request we sent (pending entry removed)
- ServerRequest: the server asking us something (e.g. an approval)
- Notification: streamed progress (deltas, turn completion)
- Ignored: anything unparseable or of unknown shape
"""

import json
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Union

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"

APPROVAL_METHODS = frozenset({"commandExecution", "fileChange"})
APPROVAL_ACCEPT = {"decision": "accept"}


@dataclass(frozen=True)
class Response:
    """Reply to one of our requests. `error` is set when the call failed."""
    id: int
    method: str
    result: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass(frozen=True)
class ServerRequest:
    """Request initiated by the server; expects `respond()` with the same id."""
    id: Any
    method: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Notification:
    """Fire-and-forget message from the server."""
    method: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Ignored:
    """Input that matched no known shape."""
    reason: str


RpcMessage = Union[Response, ServerRequest, Notification, Ignored]


def is_approval_request(method: str) -> bool:
    """True for server requests that ask the user to approve an action."""
    return "approval" in method.lower() or method in APPROVAL_METHODS


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _dumps(message: dict[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False)


class RpcCorrelator:
    """
    Request id allocation and response matching.

    `send_text` is the transport's send; the correlator only serializes and
    keeps the pending table. Not thread-safe: use from a single task.
    """

    def __init__(self, send_text: Callable[[str], None]):
        self._send_text = send_text
        self._next_id = 1
        self._pending: dict[int, str] = {}

    @property
    def pending(self) -> Mapping[int, str]:
        """Read-only view of {request id: method} awaiting a response."""
        return MappingProxyType(self._pending)

    @property
    def next_id(self) -> int:
        return self._next_id

    def reset(self) -> None:
        """Start a fresh session: ids restart at 1, pending table emptied."""
        self._next_id = 1
        self._pending.clear()

    def send(self, method: str, params: dict[str, Any]) -> int:
        """Send a request and remember which method its id belongs to."""
        request_id = self._next_id
        self._next_id += 1
        self._pending[request_id] = method

        self._send_text(_dumps({
            "jsonrpc": JSONRPC_VERSION,
            "id": request_id,
            "method": method,
            "params": params,
        }))
        logger.debug("-> %s (id=%d)", method, request_id)
        return request_id

    def respond(self, request_id: Any, result: dict[str, Any]) -> None:
        """Answer a server-initiated request. No bookkeeping."""
        self._send_text(_dumps({
            "jsonrpc": JSONRPC_VERSION,
            "id": request_id,
            "result": result,
        }))
        logger.debug("-> result (id=%s)", request_id)

    def classify(self, text: str) -> RpcMessage:
        """Parse one inbound frame and decide what kind of message it is."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return Ignored("invalid JSON")
        if not isinstance(data, dict):
            return Ignored("not a JSON object")

        request_id = data.get("id")
        method = data.get("method")

        # bool is an int subclass; a JSON `true` id is not one of ours
        if isinstance(request_id, int) and not isinstance(request_id, bool):
            pending_method = self._pending.pop(request_id, None)
            if pending_method is not None:
                error = data.get("error")
                if isinstance(error, dict):
                    message = error.get("message")
                    if not isinstance(message, str):
                        message = "Unknown error"
                    return Response(request_id, pending_method, error=message)
                return Response(request_id, pending_method, result=_as_dict(data.get("result")))

        if isinstance(method, str):
            params = _as_dict(data.get("params"))
            if request_id is not None:
                return ServerRequest(request_id, method, params)
            return Notification(method, params)

        return Ignored("unknown message shape")
