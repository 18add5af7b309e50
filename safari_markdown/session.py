"""Conversion state machine.

    IDLE -> READING_PAGE -> CONNECTING -> CONVERTING -> DONE
                 |              |              |
                 +--------------+--------------+--> ERROR(message)

`Session` holds the state plus everything scoped to one conversion (thread
id, streamed output, source page). Each event method updates the state and
returns the actions the caller must perform next; the session itself never
does I/O.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from .reader import PageContent
from .rpc import APPROVAL_ACCEPT, Notification, Response, ServerRequest, is_approval_request

METHOD_INITIALIZE = "initialize"
METHOD_THREAD_START = "thread/start"
METHOD_TURN_START = "turn/start"
NOTIFY_DELTA = "item/agentMessage/delta"
NOTIFY_TURN_COMPLETED = "turn/completed"
NOTIFY_TURN_ERROR = "turn/error"


class Phase(Enum):
    IDLE = "idle"
    READING_PAGE = "readingPage"
    CONNECTING = "connecting"
    CONVERTING = "converting"
    DONE = "done"
    ERROR = "error"


ACTIVE_PHASES = frozenset({Phase.READING_PAGE, Phase.CONNECTING, Phase.CONVERTING})


@dataclass(frozen=True)
class ConversionState:
    """Current phase; `message` is only meaningful for ERROR."""
    phase: Phase
    message: str = ""

    @classmethod
    def error(cls, message: str) -> "ConversionState":
        return cls(Phase.ERROR, message)

    @property
    def is_error(self) -> bool:
        return self.phase is Phase.ERROR

    @property
    def is_active(self) -> bool:
        """A conversion is in flight."""
        return self.phase in ACTIVE_PHASES

    @property
    def is_finished(self) -> bool:
        """DONE or ERROR: stable until the next convert/reset."""
        return self.phase in (Phase.DONE, Phase.ERROR)

    def __str__(self) -> str:
        if self.is_error:
            return f"error({self.message})"
        return self.phase.value


IDLE = ConversionState(Phase.IDLE)
READING_PAGE = ConversionState(Phase.READING_PAGE)
CONNECTING = ConversionState(Phase.CONNECTING)
CONVERTING = ConversionState(Phase.CONVERTING)
DONE = ConversionState(Phase.DONE)


# =============================================================================
# Actions
# =============================================================================

@dataclass(frozen=True)
class Connect:
    page: PageContent


@dataclass(frozen=True)
class SendInitialize:
    pass


@dataclass(frozen=True)
class SendThreadStart:
    pass


@dataclass(frozen=True)
class SendTurnStart:
    thread_id: str
    page: PageContent


@dataclass(frozen=True)
class Respond:
    id: Any
    result: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Disconnect:
    pass


Action = Union[Connect, SendInitialize, SendThreadStart, SendTurnStart, Respond, Disconnect]


def connect_error_message(host: str, port: int) -> str:
    return (
        "Could not connect to Codex server. "
        f"Is `codex-app-server --listen ws://{host}:{port}` running?"
    )


class Session:
    """
    State and per-conversion data for one converter.

    Not thread-safe. All calls must come from the converter's event consumer.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 8080):
        self.host = host
        self.port = port
        self.state = IDLE
        self.output = ""
        self.thread_id: Optional[str] = None
        self.page: Optional[PageContent] = None

    # -------------------------------------------------------------------------
    # Presentation helpers
    # -------------------------------------------------------------------------

    @property
    def source_title(self) -> str:
        return self.page.title if self.page else ""

    @property
    def source_url(self) -> str:
        return self.page.url if self.page else ""

    @property
    def page_char_count(self) -> int:
        return len(self.page.body_text) if self.page else 0

    @property
    def status_text(self) -> str:
        phase = self.state.phase
        if phase is Phase.IDLE:
            return "Ready"
        if phase is Phase.READING_PAGE:
            return "Reading page..."
        if phase is Phase.CONNECTING:
            return "Connecting to Codex server..."
        if phase is Phase.CONVERTING:
            return "Converting to Markdown..."
        if phase is Phase.DONE:
            return f"Done ({len(self.output)} chars)"
        return self.state.message

    # -------------------------------------------------------------------------
    # User commands
    # -------------------------------------------------------------------------

    def begin(self) -> bool:
        """Start a new conversion. False if one is already in flight."""
        if self.state.is_active:
            return False
        self.output = ""
        self.thread_id = None
        self.page = None
        self.state = READING_PAGE
        return True

    def cancel(self) -> list[Action]:
        """Abandon the conversion without reporting an error."""
        self.state = IDLE
        return [Disconnect()]

    def reset(self) -> list[Action]:
        """Cancel and forget everything from the last conversion."""
        actions = self.cancel()
        self.output = ""
        self.thread_id = None
        self.page = None
        return actions

    # -------------------------------------------------------------------------
    # Reader events
    # -------------------------------------------------------------------------

    def page_read(self, page: PageContent) -> list[Action]:
        if self.state != READING_PAGE:
            return []
        self.page = page
        self.state = CONNECTING
        return [Connect(page)]

    def page_failed(self, message: str) -> list[Action]:
        if self.state != READING_PAGE:
            return []
        self.state = ConversionState.error(message)
        return []

    # -------------------------------------------------------------------------
    # Transport events
    # -------------------------------------------------------------------------

    def connected(self) -> list[Action]:
        if self.state != CONNECTING:
            return []
        return [SendInitialize()]

    def disconnected(self, reason: str) -> list[Action]:
        if self.state == CONNECTING:
            self.state = ConversionState.error(connect_error_message(self.host, self.port))
        elif self.state == CONVERTING:
            self.state = ConversionState.error(f"Disconnected: {reason}")
        return []

    def timed_out(self, step: str) -> list[Action]:
        if not self.state.is_active:
            return []
        self.state = ConversionState.error(f"Timed out waiting for {step}")
        return [Disconnect()]

    # -------------------------------------------------------------------------
    # RPC messages
    # -------------------------------------------------------------------------

    def response(self, message: Response) -> list[Action]:
        if not self.state.is_active:
            return []

        if message.error is not None:
            self.state = ConversionState.error(f"Server error ({message.method}): {message.error}")
            return [Disconnect()]

        if message.method == METHOD_INITIALIZE:
            return [SendThreadStart()]

        if message.method == METHOD_THREAD_START:
            thread = message.result.get("thread")
            thread_id = thread.get("id") if isinstance(thread, dict) else None
            if not isinstance(thread_id, str):
                self.state = ConversionState.error("Failed to create thread")
                return [Disconnect()]
            self.thread_id = thread_id
            self.state = CONVERTING
            return [SendTurnStart(thread_id, self.page)]

        return []

    def server_request(self, message: ServerRequest) -> list[Action]:
        if not self.state.is_active or not is_approval_request(message.method):
            return []
        return [Respond(message.id, dict(APPROVAL_ACCEPT))]

    def notification(self, message: Notification) -> list[Action]:
        if self.state != CONVERTING:
            return []

        if message.method == NOTIFY_DELTA:
            delta = message.params.get("delta")
            if isinstance(delta, str):
                self.output += delta
            return []

        if message.method == NOTIFY_TURN_COMPLETED:
            self.state = DONE
            return [Disconnect()]

        if message.method == NOTIFY_TURN_ERROR:
            error = message.params.get("error")
            self.state = ConversionState.error(error if isinstance(error, str) else "Turn failed")
            return [Disconnect()]

        return []
