"""Page -> Markdown conversion through a local Codex app server.

This is the orchestrator. It:
1. Reads the page off the event loop (readers may block for a while)
2. Opens a RawWebSocket to the app server
3. Drives initialize -> thread/start -> turn/start
4. Accumulates item/agentMessage/delta text until turn/completed

Every input (reader outcome, transport event, watchdog timeout) is posted to
a single asyncio.Queue and handled by one consumer task. Only that task
touches the Session and the RpcCorrelator. Events are tagged with the
conversion generation they belong to, so anything still in flight from a
cancelled or superseded conversion is dropped on arrival.
"""

import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from .config import ConverterConfig
from .errors import ReaderError
from .prompt import initialize_params, thread_start_params, turn_start_params
from .reader import PageContent, PageReader
from .rpc import Ignored, Notification, Response, RpcCorrelator, RpcMessage, ServerRequest, is_approval_request
from .session import (
    METHOD_INITIALIZE,
    METHOD_THREAD_START,
    METHOD_TURN_START,
    NOTIFY_TURN_COMPLETED,
    Action,
    Connect,
    ConversionState,
    Disconnect,
    Phase,
    Respond,
    SendInitialize,
    SendThreadStart,
    SendTurnStart,
    Session,
)
from .websocket import Connected, Disconnected, MessageReceived, RawWebSocket, TransportEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageRead:
    page: PageContent


@dataclass(frozen=True)
class PageReadFailed:
    message: str


@dataclass(frozen=True)
class StepTimedOut:
    step: str


ConverterEvent = Union[TransportEvent, PageRead, PageReadFailed, StepTimedOut]

# (host, port, post, verify_accept=...) -> object with connect()/send()/disconnect()
TransportFactory = Callable[..., Any]


class MarkdownConverter:
    """
    Converts the current page to Markdown, one conversion at a time.

    `convert()`, `cancel()` and `reset()` must be called from the event loop
    thread. Progress is observable through the properties, `on_update`
    (called after every handled event) and `on_delta` (called with each
    appended chunk of Markdown).
    """

    def __init__(
        self,
        reader: PageReader,
        config: Optional[ConverterConfig] = None,
        *,
        transport_factory: TransportFactory = RawWebSocket,
        on_update: Optional[Callable[["MarkdownConverter"], None]] = None,
        on_delta: Optional[Callable[[str], None]] = None,
    ):
        self.reader = reader
        self.config = config or ConverterConfig.from_env()
        self.on_update = on_update
        self.on_delta = on_delta
        self._transport_factory = transport_factory

        self.session = Session(self.config.host, self.config.port)
        self.rpc = RpcCorrelator(self._send_text)

        self._transport = None
        self._generation = 0
        self._events: asyncio.Queue[tuple[int, ConverterEvent]] = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._watchdog: Optional[asyncio.TimerHandle] = None
        self._settled = asyncio.Event()
        self._settled.set()

    # -------------------------------------------------------------------------
    # Observable state
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConversionState:
        return self.session.state

    @property
    def output(self) -> str:
        return self.session.output

    @property
    def thread_id(self) -> Optional[str]:
        return self.session.thread_id

    @property
    def source_title(self) -> str:
        return self.session.source_title

    @property
    def source_url(self) -> str:
        return self.session.source_url

    @property
    def page_char_count(self) -> int:
        return self.session.page_char_count

    @property
    def status_text(self) -> str:
        return self.session.status_text

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def convert(self) -> bool:
        """Start converting the current page.

        Accepted from IDLE, DONE or any ERROR; ignored (returns False) while a
        conversion is in flight.
        """
        if not self.session.begin():
            logger.debug("convert() ignored while %s", self.session.state)
            return False

        self._teardown_transport()
        self._generation += 1
        self.rpc.reset()
        self._settled.clear()
        self._ensure_consumer()

        logger.info("Reading page...")
        self._reader_task = asyncio.create_task(self._read_page(self._generation))
        self._arm_watchdog()
        self._notify()
        return True

    def cancel(self) -> None:
        """Abandon the current conversion and go back to IDLE."""
        self._abandon()
        self._run_actions(self.session.cancel())
        self._settle()

    def reset(self) -> None:
        """Cancel and clear the last result."""
        self._abandon()
        self._run_actions(self.session.reset())
        self._settle()

    async def wait(self, timeout: Optional[float] = None) -> ConversionState:
        """Wait until the conversion is DONE, ERROR or cancelled."""
        await asyncio.wait_for(self._settled.wait(), timeout)
        return self.session.state

    async def run(self, timeout: Optional[float] = None) -> ConversionState:
        """convert() and wait() in one call."""
        self.convert()
        return await self.wait(timeout)

    async def close(self) -> None:
        """Cancel anything in flight and stop the consumer task.

        A finished result (DONE/ERROR) is kept.
        """
        if self.session.state.is_active:
            self.cancel()
        self._teardown_transport()
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None

    # -------------------------------------------------------------------------
    # Event plumbing
    # -------------------------------------------------------------------------

    def _post(self, generation: int, event: ConverterEvent) -> None:
        self._events.put_nowait((generation, event))

    def _ensure_consumer(self):
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume(), name="markdown-converter")

    async def _consume(self):
        while True:
            generation, event = await self._events.get()
            try:
                if generation != self._generation:
                    logger.debug("Dropping stale %s", type(event).__name__)
                    continue
                self._handle(event)
            except Exception:
                logger.exception("Error handling %s", type(event).__name__)
            finally:
                self._events.task_done()

    async def _read_page(self, generation: int):
        try:
            page = await asyncio.to_thread(self.reader.read_page)
        except ReaderError as e:
            logger.warning("Page read failed: %s", e)
            self._post(generation, PageReadFailed(str(e)))
        except Exception as e:
            logger.exception("Page reader crashed")
            self._post(generation, PageReadFailed(f"Could not read page: {e}"))
        else:
            self._post(generation, PageRead(page))

    def _handle(self, event: ConverterEvent):
        before = len(self.session.output)

        if isinstance(event, PageRead):
            logger.info("Read %r (%d chars)", event.page.title, len(event.page.body_text))
            actions = self.session.page_read(event.page)
        elif isinstance(event, PageReadFailed):
            actions = self.session.page_failed(event.message)
        elif isinstance(event, Connected):
            actions = self.session.connected()
        elif isinstance(event, MessageReceived):
            actions = self._handle_message(self.rpc.classify(event.text))
        elif isinstance(event, Disconnected):
            logger.info("Disconnected: %s", event.reason)
            self._transport = None
            actions = self.session.disconnected(event.reason)
        elif isinstance(event, StepTimedOut):
            logger.warning("Timed out waiting for %s", event.step)
            actions = self.session.timed_out(event.step)
        else:
            actions = []

        self._run_actions(actions)

        appended = self.session.output[before:]
        if appended and self.on_delta:
            self.on_delta(appended)

        if self.session.state.is_active:
            self._arm_watchdog()
        else:
            self._settle()
            return
        self._notify()

    def _handle_message(self, message: RpcMessage) -> list[Action]:
        if isinstance(message, Response):
            if message.error is not None:
                logger.error("%s failed: %s", message.method, message.error)
            else:
                logger.debug("<- %s response (id=%d)", message.method, message.id)
            return self.session.response(message)

        if isinstance(message, ServerRequest):
            if is_approval_request(message.method):
                logger.info("Auto-accepting %s (id=%s)", message.method, message.id)
            else:
                logger.debug("Ignoring server request %s", message.method)
            return self.session.server_request(message)

        if isinstance(message, Notification):
            return self.session.notification(message)

        if isinstance(message, Ignored):
            logger.debug("Ignoring message: %s", message.reason)
        return []

    def _run_actions(self, actions: list[Action]):
        config = self.config
        for action in actions:
            if isinstance(action, Connect):
                self._open_transport()
            elif isinstance(action, SendInitialize):
                self.rpc.send(METHOD_INITIALIZE, initialize_params(config.client_name, config.client_version))
            elif isinstance(action, SendThreadStart):
                self.rpc.send(METHOD_THREAD_START, thread_start_params(config.model, config.cwd))
            elif isinstance(action, SendTurnStart):
                logger.info("Thread %s started, converting...", action.thread_id)
                self.rpc.send(METHOD_TURN_START, turn_start_params(action.thread_id, action.page, config.effort))
            elif isinstance(action, Respond):
                self.rpc.respond(action.id, action.result)
            elif isinstance(action, Disconnect):
                self._teardown_transport()

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _open_transport(self):
        self._teardown_transport()
        post = functools.partial(self._post, self._generation)
        self._transport = self._transport_factory(
            self.config.host,
            self.config.port,
            post,
            verify_accept=self.config.verify_accept,
        )
        logger.info("Connecting to Codex server at %s:%s...", self.config.host, self.config.port)
        self._transport.connect()

    def _send_text(self, text: str):
        if self._transport is not None:
            self._transport.send(text)

    def _teardown_transport(self):
        if self._transport is not None:
            self._transport.disconnect()
            self._transport = None

    # -------------------------------------------------------------------------
    # Lifecycle helpers
    # -------------------------------------------------------------------------

    def _abandon(self):
        """Invalidate everything in flight for the current generation."""
        self._generation += 1
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
        self._reader_task = None

    def _settle(self):
        self._cancel_watchdog()
        self._settled.set()
        self._notify()

    def _notify(self):
        if self.on_update:
            self.on_update(self)

    def _awaited_step(self) -> str:
        """Name of what the conversion is currently waiting on."""
        phase = self.session.state.phase
        if phase is Phase.READING_PAGE:
            return "page content"
        pending = self.rpc.pending
        if pending:
            return pending[min(pending)]
        if phase is Phase.CONNECTING:
            return "handshake"
        return NOTIFY_TURN_COMPLETED

    def _arm_watchdog(self):
        self._cancel_watchdog()
        timeout = self.config.step_timeout
        if timeout is None:
            return
        loop = asyncio.get_running_loop()
        self._watchdog = loop.call_later(timeout, self._on_watchdog, self._generation)

    def _on_watchdog(self, generation: int):
        self._watchdog = None
        self._post(generation, StepTimedOut(self._awaited_step()))

    def _cancel_watchdog(self):
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
