"""Timeout and activity supervision for one live chat turn.

The monitor is a plain state object over deadlines: it never owns a timer.
`check()` evaluates the deadlines against an injectable clock, and `watch()`
is a small asyncio loop that calls `check()` until the turn is over. Tests
drive `check()` directly with a fake clock.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Callable

from ..core import ChatEvent

logger = logging.getLogger(__name__)

MAX_POLL_INTERVAL = 0.25


@dataclass(frozen=True)
class MonitorConfig:
    operation_timeout_ms: int
    initial_response_timeout_ms: int
    activity_timeout_ms: int = 0  # 0 disables the inactivity check
    operation_name: str = "Operation"

    def with_activity_timeout(self, ms: int) -> "MonitorConfig":
        return replace(self, activity_timeout_ms=ms)


# Claude Code CLI: subprocess output is continuous, no heartbeat
CLAUDE_CODE = MonitorConfig(300_000, 10_000, 0, "Claude Code")

# OpenCode CLI: one-shot subprocess, slower to boot than Claude
OPENCODE = MonitorConfig(300_000, 30_000, 0, "OpenCode")

# OpenCode server: heartbeats every 30s on the event stream
OPENCODE_SERVER = MonitorConfig(120_000, 5_000, 45_000, "OpenCode")

# Health checks and session verification
QUICK = MonitorConfig(10_000, 5_000, 0, "Operation")


class SessionMonitor:
    """Tracks the deadlines of one turn and reports the first one missed.

    Whichever comes first of `complete()` or a missed deadline wins; after
    that, `check()` is a no-op. `on_error` and `on_timeout` therefore run at
    most once per monitor.
    """

    def __init__(
        self,
        config: MonitorConfig,
        on_error: Callable[[ChatEvent], None] | None = None,
        on_timeout: Callable[[], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.on_error = on_error
        self.on_timeout = on_timeout
        self.clock = clock
        self.started_at: float | None = None
        self.last_activity: float | None = None
        self.completed = False
        self.failed = False
        self._armed = False

    def start(self) -> None:
        if self.started_at is not None:
            return
        self.started_at = self.clock()
        self._armed = True

    def mark_activity(self) -> None:
        self.last_activity = self.clock()

    def complete(self) -> None:
        self.completed = True
        self.cleanup()

    def cleanup(self) -> None:
        self._armed = False

    def is_completed(self) -> bool:
        return self.completed

    def check(self) -> ChatEvent | None:
        """Evaluate deadlines; returns the error event if one was just missed."""
        if not self._armed or self.completed:
            return None

        now = self.clock()
        elapsed_ms = (now - self.started_at) * 1000
        cfg = self.config

        if self.last_activity is None and elapsed_ms >= cfg.initial_response_timeout_ms:
            return self._fail(self._timeout_message("No response received from server"))

        if elapsed_ms >= cfg.operation_timeout_ms:
            seconds = cfg.operation_timeout_ms / 1000
            return self._fail(self._timeout_message(
                f"Request timed out after {seconds:g}s. The operation took too long to complete."
            ))

        if cfg.activity_timeout_ms > 0:
            since = (now - (self.last_activity or self.started_at)) * 1000
            if since > cfg.activity_timeout_ms:
                return self._fail(f"Connection to {cfg.operation_name} lost. Please try again.")

        return None

    async def watch(self, interval: float | None = None) -> None:
        """Poll `check()` until the turn completes or a deadline is missed."""
        interval = interval or self.poll_interval()
        while self._armed and not self.completed:
            await asyncio.sleep(interval)
            self.check()

    def poll_interval(self) -> float:
        cfg = self.config
        deadlines = [cfg.initial_response_timeout_ms, cfg.operation_timeout_ms]
        if cfg.activity_timeout_ms > 0:
            deadlines.append(cfg.activity_timeout_ms)
        return min(MAX_POLL_INTERVAL, min(deadlines) / 1000 / 2)

    # ── Private helpers ──────────────────────────────────────────────

    def _timeout_message(self, message: str) -> str:
        return f"{message} Please try again or check if {self.config.operation_name} is responding."

    def _fail(self, content: str) -> ChatEvent:
        self.completed = True
        self.failed = True
        self.cleanup()
        logger.warning("%s turn failed: %s", self.config.operation_name, content)

        event = ChatEvent(type="error", content=content)
        if self.on_error:
            self.on_error(event)
        if self.on_timeout:
            self.on_timeout()
        return event
