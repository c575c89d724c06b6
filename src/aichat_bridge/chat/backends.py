"""How each live chat backend is invoked for one turn.

A backend builds the invocation (argv for CLI agents, HTTP calls for an
`opencode serve` instance) and returns a handle with the `BackendProcess`
shape: `stdout()` byte chunks, `read_stderr()`, `wait()` and `kill()`.
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable

import httpx

from ..config import get_default_model
from ..core import AgentType
from ..errors import PreconditionFailedError
from ..execution import BackendProcess, ContainerExecutor, spawn
from . import monitor
from .parsers import ClaudeStreamParser, OpenCodeServerParser, OpenCodeStreamParser, StreamParser

logger = logging.getLogger(__name__)

Spawner = Callable[..., Awaitable[BackendProcess]]

# how long a finished turn waits for the prompt request to return
SEND_GRACE_SECONDS = 5.0


class ChatBackend:
    agent_type: AgentType
    display_name = "Backend"
    monitor_config = monitor.QUICK
    no_output_message = "No response from backend."

    def new_parser(self) -> StreamParser:
        raise NotImplementedError

    def default_model(self) -> str | None:
        return None

    async def open(self, message: str, session_id: str | None, model: str | None):
        """Start one turn and return its handle."""
        raise NotImplementedError

    async def aclose(self) -> None:
        pass


class SubprocessBackend(ChatBackend):
    """A CLI agent run once per turn, on the host or in a container."""

    def __init__(
        self,
        workdir: str | None = None,
        container: str | None = None,
        container_user: str | None = None,
        spawner: Spawner = spawn,
    ):
        self.workdir = workdir
        self.container = container
        self.container_user = container_user
        self.spawner = spawner

    def command(self, message: str, session_id: str | None, model: str | None) -> list[str]:
        raise NotImplementedError

    def build_argv(self, message: str, session_id: str | None, model: str | None) -> list[str]:
        argv = self.command(message, session_id, model)
        if self.container:
            executor = ContainerExecutor(self.container, default_user=self.container_user)
            return executor.wrap(argv, workdir=self.workdir, interactive=True)
        return argv

    async def open(self, message: str, session_id: str | None, model: str | None) -> BackendProcess:
        argv = self.build_argv(message, session_id, model)
        cwd = None if self.container else self.workdir
        return await self.spawner(argv, cwd=cwd)


class ClaudeCliBackend(SubprocessBackend):
    agent_type = AgentType.CLAUDE_CODE
    display_name = "Claude Code"
    # a frozen subprocess is detected after 60s of silence
    monitor_config = monitor.CLAUDE_CODE.with_activity_timeout(60_000)
    no_output_message = "No response from Claude. Check if Claude is authenticated."

    def new_parser(self) -> StreamParser:
        return ClaudeStreamParser()

    def default_model(self) -> str | None:
        return get_default_model()

    def command(self, message: str, session_id: str | None, model: str | None) -> list[str]:
        argv = [
            "claude",
            "--print",
            "--verbose",
            "--output-format", "stream-json",
            "--include-partial-messages",
            "--model", model or get_default_model(),
            "--dangerously-skip-permissions",
        ]
        if session_id:
            argv.extend(["--resume", session_id])
        argv.append(message)
        return argv


class OpenCodeCliBackend(SubprocessBackend):
    agent_type = AgentType.OPENCODE
    display_name = "OpenCode"
    monitor_config = monitor.OPENCODE
    no_output_message = "No response from OpenCode. Check if OpenCode is configured in the workspace."

    def new_parser(self) -> StreamParser:
        return OpenCodeStreamParser()

    def command(self, message: str, session_id: str | None, model: str | None) -> list[str]:
        argv = ["opencode", "run", "--format", "json"]
        if session_id:
            argv.extend(["--session", session_id])
        if model:
            argv.extend(["--model", model])
        argv.append(message)
        return argv


class ServerTurn:
    """One turn against `opencode serve`: the event stream plus the prompt request.

    The prompt is posted in the background because the server only answers it
    once the whole reply is generated; progress arrives on `/event`. The event
    stream is read by its own task so `kill()` can stop it without waiting for
    the server to send another byte.
    """

    def __init__(self, client: httpx.AsyncClient, session_id: str, message: str, model: str | None):
        self.client = client
        self.session_id = session_id
        self.message = message
        self.model = model
        self._response: httpx.Response | None = None
        self._chunks: asyncio.Queue = asyncio.Queue()
        self._reader: asyncio.Task | None = None
        self._send_task: asyncio.Task | None = None
        self._abort_task: asyncio.Task | None = None
        self._error: str | None = None
        self._killed = False

    async def start(self) -> None:
        request = self.client.build_request("GET", "/event")
        self._response = await self.client.send(request, stream=True)
        if self._response.status_code != 200:
            self._error = f"OpenCode event stream returned HTTP {self._response.status_code}"
            await self._response.aclose()
            return
        self._reader = asyncio.create_task(self._read_events())
        self._send_task = asyncio.create_task(self._post_message())

    async def stdout(self) -> AsyncIterator[bytes]:
        if self._reader is None:
            return
        while True:
            chunk = await self._chunks.get()
            if chunk is None or self._killed:
                return
            yield chunk

    async def read_stderr(self) -> str:
        return self._error or ""

    async def wait(self) -> int:
        self._stop_reading()
        tasks = [t for t in (self._reader, self._abort_task) if t is not None]
        if self._send_task is not None:
            if self._killed:
                self._send_task.cancel()
                tasks.append(self._send_task)
            else:
                try:
                    await asyncio.wait_for(self._send_task, timeout=SEND_GRACE_SECONDS)
                except asyncio.TimeoutError:
                    logger.warning("[opencode-server] Prompt request still pending, cancelled")
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._response is not None:
            await self._response.aclose()
        return 1 if self._error else 0

    def kill(self) -> None:
        if self._killed:
            return
        self._killed = True
        self._stop_reading()
        if self._send_task is not None and not self._send_task.done():
            self._send_task.cancel()
            self._abort_task = asyncio.create_task(self._abort())

    async def _read_events(self) -> None:
        try:
            async for chunk in self._response.aiter_bytes():
                self._chunks.put_nowait(chunk)
        except (httpx.HTTPError, httpx.StreamError) as e:
            if not self._killed and not self._error:
                self._error = str(e) or "OpenCode event stream failed"
        finally:
            self._chunks.put_nowait(None)

    def _stop_reading(self) -> None:
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
        # a reader cancelled before it first ran never reaches its finally
        self._chunks.put_nowait(None)

    async def _post_message(self) -> None:
        body = {"parts": [{"type": "text", "text": self.message}]}
        if self.model and "/" in self.model:
            provider_id, model_id = self.model.split("/", 1)
            body["model"] = {"providerID": provider_id, "modelID": model_id}
        try:
            response = await self.client.post(f"/session/{self.session_id}/message", json=body, timeout=None)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("[opencode-server] Send error: %s", e)
            self._error = str(e) or "Failed to send message to OpenCode"
            self._stop_reading()

    async def _abort(self) -> None:
        try:
            await self.client.post(f"/session/{self.session_id}/abort")
        except httpx.HTTPError as e:
            logger.debug("[opencode-server] Abort failed: %s", e)


class OpenCodeServerBackend(ChatBackend):
    """Talks to an already running `opencode serve` over HTTP."""

    agent_type = AgentType.OPENCODE
    display_name = "OpenCode"
    monitor_config = monitor.OPENCODE_SERVER
    no_output_message = "No response from OpenCode. Check if OpenCode is configured in the workspace."

    def __init__(self, base_url: str, client: httpx.AsyncClient | None = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(30.0, read=None),
        )

    def new_parser(self) -> StreamParser:
        return OpenCodeServerParser()

    async def open(self, message: str, session_id: str | None, model: str | None) -> ServerTurn:
        if not session_id:
            session_id = await self.create_session()
        turn = ServerTurn(self.client, session_id, message, model)
        await turn.start()
        return turn

    async def create_session(self) -> str:
        try:
            response = await self.client.post("/session", json={})
            response.raise_for_status()
        except httpx.ConnectError as e:
            raise PreconditionFailedError(f"OpenCode server is not running at {self.base_url}") from e
        except httpx.HTTPError as e:
            raise PreconditionFailedError(f"Could not create OpenCode session: {e}") from e

        session_id = response.json().get("id")
        if not session_id:
            raise PreconditionFailedError("OpenCode server returned a session without an id")
        logger.info("[opencode-server] Created session %s", session_id)
        return session_id

    async def aclose(self) -> None:
        await self.client.aclose()
