"""Process execution used by discovery (batch) and live chat (streaming).

Discovery issues short blocking commands through an `Executor`; live chat
spawns a long-running backend with `spawn()` and reads its stdout as it
arrives. Both run either on the host or inside a container via `docker exec`.
"""

import asyncio
import logging
import subprocess
from dataclasses import dataclass
from typing import AsyncIterator

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


@dataclass
class ExecResult:
    stdout: str
    stderr: str
    exit_code: int


class Executor:
    """Runs a command to completion and captures its output."""

    def run(self, argv: list[str], user: str | None = None) -> ExecResult:
        raise NotImplementedError


class LocalExecutor(Executor):
    """Runs commands directly on this machine. `user` is ignored."""

    def __init__(self, timeout: float = 60.0):
        self.timeout = timeout

    def run(self, argv: list[str], user: str | None = None) -> ExecResult:
        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
            )
        except FileNotFoundError:
            return ExecResult("", f"Command not found: {argv[0]}", 127)
        except subprocess.TimeoutExpired:
            return ExecResult("", f"Command timed out after {self.timeout}s", 124)
        return ExecResult(proc.stdout, proc.stderr, proc.returncode)


class ContainerExecutor(LocalExecutor):
    """Runs commands inside a named container with `docker exec`."""

    def __init__(self, container_name: str, default_user: str | None = None, timeout: float = 60.0):
        super().__init__(timeout=timeout)
        self.container_name = container_name
        self.default_user = default_user

    def wrap(self, argv: list[str], user: str | None = None, workdir: str | None = None,
             interactive: bool = False) -> list[str]:
        """Return the docker command line that runs `argv` in the container."""
        cmd = ["docker", "exec"]
        if interactive:
            cmd.append("-i")
        user = user or self.default_user
        if user:
            cmd.extend(["-u", user])
        if workdir:
            cmd.extend(["-w", workdir])
        cmd.append(self.container_name)
        cmd.extend(argv)
        return cmd

    def run(self, argv: list[str], user: str | None = None) -> ExecResult:
        return super().run(self.wrap(argv, user=user))


class BackendProcess:
    """A spawned backend with piped stdout/stderr.

    `kill()` is safe to call at any time, any number of times.
    """

    def __init__(self, proc: asyncio.subprocess.Process, argv: list[str]):
        self._proc = proc
        self.argv = argv
        self._killed = False

    @property
    def pid(self) -> int:
        return self._proc.pid

    async def stdout(self) -> AsyncIterator[bytes]:
        """Yield raw stdout chunks as they arrive; stops at EOF or after kill()."""
        stream = self._proc.stdout
        if stream is None:
            return
        while not self._killed:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            yield chunk

    async def read_stderr(self) -> str:
        if self._proc.stderr is None:
            return ""
        data = await self._proc.stderr.read()
        return data.decode("utf-8", errors="replace")

    async def wait(self) -> int:
        return await self._proc.wait()

    def kill(self) -> None:
        if self._killed:
            return
        self._killed = True
        if self._proc.returncode is None:
            try:
                self._proc.kill()
            except ProcessLookupError:
                pass
            logger.debug("Killed backend pid=%s", self._proc.pid)


async def spawn(argv: list[str], cwd: str | None = None, env: dict[str, str] | None = None) -> BackendProcess:
    """Start `argv` with stdin closed and stdout/stderr piped.

    Arguments are passed as an array, never through a shell.
    """
    logger.info("Running: %s", " ".join(argv))
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
        env=env,
    )
    return BackendProcess(proc, argv)
