"""Live chat session: one conversation with one backend.

A `ChatSession` runs at most one turn at a time. Each turn opens the backend,
feeds its output through a `LineBuffer` and the backend's `StreamParser`, and
publishes `ChatEvent`s to an `EventChannel` that the caller consumes. A
`SessionMonitor` supervises the turn; once it has failed the turn, nothing
else from that turn is published.
"""

import asyncio
import logging
import time
from typing import AsyncIterator, Callable

import httpx

from ..core import ChatEvent, SessionMessage, utc_now
from ..errors import AIChatBridgeError, SessionNotFoundError, TurnInProgressError, format_error_message
from .backends import ChatBackend
from .buffer import LineBuffer
from .monitor import SessionMonitor

logger = logging.getLogger(__name__)

IDLE = "idle"
PROCESSING = "processing"
STREAMING = "streaming"

HistoryLoader = Callable[[str], list[SessionMessage]]

_CLOSED = object()


class EventChannel:
    """Ordered, unbounded queue of ChatEvents with async iteration."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def put(self, event: ChatEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    async def get(self) -> ChatEvent | None:
        """Wait for the next event; None once the channel is closed."""
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def drain(self) -> list[ChatEvent]:
        """Return every event queued so far without waiting."""
        events = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                break
            events.append(item)
        return events

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[ChatEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event


class ChatSession:
    def __init__(
        self,
        backend: ChatBackend,
        session_id: str | None = None,
        model: str | None = None,
        history: HistoryLoader | None = None,
        channel: EventChannel | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backend = backend
        self.session_id = session_id
        self.model = model or backend.default_model()
        # model the current backend session was started with
        self.session_model = self.model
        self.history = history
        self.history_loaded = False
        self.events = channel or EventChannel()
        self.clock = clock
        self.state = IDLE

        self._parser = backend.new_parser()
        self._monitor: SessionMonitor | None = None
        self._handle = None
        self._turn = 0

    async def send_message(self, text: str) -> None:
        """Run one turn to completion, publishing its events.

        Raises TurnInProgressError if a turn is already running. Every other
        failure is published as an `error` event.
        """
        if self.state != IDLE:
            raise TurnInProgressError()

        self._turn += 1
        turn = self._turn
        self.state = PROCESSING
        try:
            if self.session_id and not self.history_loaded:
                await self._replay_history()

            self._emit(ChatEvent(type="system", content="Processing your message..."))
            monitor = SessionMonitor(
                self.backend.monitor_config,
                on_error=self._emit,
                on_timeout=lambda: self._kill_handle(turn),
                clock=self.clock,
            )
            self._monitor = monitor
            monitor.start()
            watcher = asyncio.create_task(monitor.watch())
            try:
                await self._run_turn(text, turn, monitor, LineBuffer())
            finally:
                monitor.complete()
                watcher.cancel()
        finally:
            # an interrupted turn may unwind after a newer one has started
            if self._turn == turn:
                self._handle = None
                self._monitor = None
                self.state = IDLE

    async def interrupt(self) -> None:
        """Stop the running turn, if any. Safe to call at any time."""
        if self.state == IDLE:
            return
        if self._monitor:
            self._monitor.complete()
        self._kill_handle(self._turn)
        self._handle = None
        self.state = IDLE
        self._emit(ChatEvent(type="system", content="Chat interrupted"))

    def set_model(self, model: str) -> None:
        """Switch models; a model other than the session's starts a fresh backend session."""
        if not model or model == self.model:
            return
        self.model = model
        if self.session_model != model:
            self.session_id = None
            self.history_loaded = False
            self._emit(ChatEvent(type="system", content=f"Switching to model: {model}"))

    async def close(self) -> None:
        await self.interrupt()
        self.events.close()

    # ── Private helpers ──────────────────────────────────────────────

    async def _run_turn(self, text: str, turn: int, monitor: SessionMonitor, buffer: LineBuffer) -> None:
        name = self.backend.display_name
        try:
            handle = await self.backend.open(text, self.session_id, self.model)
        except (AIChatBridgeError, OSError, httpx.HTTPError) as e:
            logger.error("[%s] Failed to start turn: %s", name, e)
            if not monitor.completed:
                self._emit(ChatEvent(type="error", content=format_error_message(e, name)))
            return

        if monitor.completed:
            # interrupted while the backend was starting
            handle.kill()
            await handle.wait()
            return
        self._handle = handle

        announced = getattr(handle, "session_id", None)
        if announced and announced != self.session_id:
            self._bind(announced)
            self._emit(ChatEvent(type="system", content=f"Session started {announced}"))

        stderr_task = asyncio.create_task(handle.read_stderr())
        received = False
        finished = False

        async for chunk in handle.stdout():
            if monitor.completed:
                break
            monitor.mark_activity()
            received = True
            if self.state == PROCESSING:
                self.state = STREAMING
            for line in buffer.append(chunk):
                if self._handle_line(line, monitor):
                    finished = True
                    break
                if monitor.completed:
                    break
            if finished or monitor.completed:
                break

        if not finished and not monitor.completed:
            tail = buffer.flush()
            if tail.strip():
                self._handle_line(tail, monitor)

        if monitor.completed:
            handle.kill()

        exit_code = await handle.wait()
        stderr = await stderr_task
        logger.info("[%s] Exited with code %s, received output: %s", name, exit_code, received)
        if stderr:
            logger.info("[%s] stderr: %s", name, stderr.strip())

        # the monitor already reported a timeout, or the turn was interrupted
        if monitor.completed:
            return
        monitor.complete()

        if exit_code != 0:
            message = stderr.strip() or f"{name} exited with code {exit_code}"
            self._emit(ChatEvent(type="error", content=format_error_message(message, name)))
        elif not received:
            self._emit(ChatEvent(type="error", content=self.backend.no_output_message))
        else:
            self._emit(ChatEvent(type="done", content="Response complete"))

    def _handle_line(self, line: str, monitor: SessionMonitor) -> bool:
        """Parse one output line; returns True if it ends the turn."""
        event = self._parser.decode_line(line)
        if event is None or not self._parser.belongs_to(event, self.session_id):
            return False

        prior = self.session_id
        events = self._parser.parse(event, prior)
        found = self._parser.session_id_from(event)
        if found and (prior is None or self._parser.rebind_session):
            self._bind(found)

        if not monitor.completed:
            for chat_event in events:
                self._emit(chat_event)
        return self._parser.turn_finished(event)

    def _bind(self, session_id: str) -> None:
        self.session_id = session_id
        self.session_model = self.model
        self.history_loaded = True

    async def _replay_history(self) -> None:
        self.history_loaded = True
        if self.history is None:
            return
        try:
            messages = await asyncio.to_thread(self.history, self.session_id)
        except SessionNotFoundError:
            logger.debug("No stored history for session %s", self.session_id)
            return

        for msg in messages:
            content = msg.content
            if msg.type == "tool_use" and msg.tool_input:
                content = msg.tool_input
            self._emit(ChatEvent(
                type=msg.type,
                content=content,
                tool_name=msg.tool_name,
                tool_id=msg.tool_id,
                timestamp=msg.timestamp or utc_now(),
            ))

    def _kill_handle(self, turn: int) -> None:
        if self._turn == turn and self._handle is not None:
            self._handle.kill()

    def _emit(self, event: ChatEvent) -> None:
        self.events.put(event)
