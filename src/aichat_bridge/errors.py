"""Exception hierarchy and user-facing error message cleanup.

Failures are scoped to one session or one chat turn; nothing here is fatal
to the process and nothing is retried automatically.
"""

import re


class AIChatBridgeError(Exception):
    """Base exception for all aichat-bridge errors."""


class SessionNotFoundError(AIChatBridgeError):
    """The requested session (or its workspace) does not exist."""

    def __init__(self, session_id: str, agent_type: str | None = None):
        self.session_id = session_id
        self.agent_type = agent_type
        where = f" ({agent_type})" if agent_type else ""
        super().__init__(f"Session not found: {session_id}{where}")


class PreconditionFailedError(AIChatBridgeError):
    """The backend is not in a state that allows the operation."""


class TurnInProgressError(PreconditionFailedError):
    """A chat turn is already running; interrupt it before sending again."""

    def __init__(self):
        super().__init__("A message is already being processed. Interrupt it first.")


class NoResponseError(AIChatBridgeError):
    """The backend exited cleanly without writing anything."""


class BackendFailureError(AIChatBridgeError):
    """The backend crashed or returned something unusable."""

    def __init__(self, message: str, exit_code: int | None = None):
        self.exit_code = exit_code
        super().__init__(message)


class SessionTimeoutError(AIChatBridgeError):
    """A live turn stalled past one of its monitor deadlines."""


_CLEAN_PATTERNS = [
    re.compile(r"\n\s*at\s+.*"),  # JS-style stack frames
    re.compile(r"Traceback \(most recent call last\):.*?(?=\w+(Error|Exception):)", re.DOTALL),
    re.compile(r'^\s*File ".*", line \d+.*$', re.MULTILINE),
    re.compile(r"\b(?:\w+\.)*\w*(?:Error|Exception):\s+"),
]


def format_error_message(error: BaseException | str | None, context: str) -> str:
    """Return a short, user-presentable message for a backend failure.

    Stack traces and exception type prefixes are stripped, the first letter is
    capitalized and terminal punctuation is ensured. Messages that are empty or
    too technical fall back to a generic "<context> failed" notice.
    """
    if error is None:
        return f"{context} failed. Please try again."

    message = str(error)
    for pattern in _CLEAN_PATTERNS:
        message = pattern.sub("", message)
    message = " ".join(message.split())

    if not message or len(message) < 5 or "undefined" in message or message == "None":
        return f"{context} failed. Please try again."

    message = message[0].upper() + message[1:]
    if message[-1] not in ".!?":
        message += "."
    return message
