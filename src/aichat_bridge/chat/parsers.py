"""Streaming output parsers, one per backend wire format.

A parser turns one decoded JSON object from a backend's output into zero or
more `ChatEvent`s. Parsers hold only per-conversation tool bookkeeping; the
bound backend session id lives on the `ChatSession`, which passes it in.
"""

import json
import logging

from ..core import ChatEvent

logger = logging.getLogger(__name__)


class StreamParser:
    """Base class for backend stream grammars."""

    name = "backend"

    # False when only the first announced session id may be bound
    rebind_session = True

    def decode_line(self, line: str) -> dict | None:
        """Parse one output line; malformed or blank lines yield None."""
        line = line.strip()
        if not line:
            return None
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("[%s] Failed to parse: %s", self.name, line[:200])
            return None
        return event if isinstance(event, dict) else None

    def session_id_from(self, event: dict) -> str | None:
        """Return the backend session id announced by `event`, if any."""
        return None

    def parse(self, event: dict, session_id: str | None) -> list[ChatEvent]:
        """Map one backend event to canonical events.

        `session_id` is the id bound before this event was seen.
        """
        raise NotImplementedError

    def turn_finished(self, event: dict) -> bool:
        """True when `event` marks the end of the turn on a long-lived stream."""
        return False

    def belongs_to(self, event: dict, session_id: str | None) -> bool:
        """False for events addressed to another session on a shared stream."""
        return True

    def parse_line(self, line: str, session_id: str | None = None) -> list[ChatEvent]:
        event = self.decode_line(line)
        if event is None:
            return []
        return self.parse(event, session_id)


class ClaudeStreamParser(StreamParser):
    """`claude --output-format stream-json --include-partial-messages`.

    Text arrives as partial `stream_event` deltas; the full `assistant`
    messages that follow are only mined for tool calls so text is not
    emitted twice.
    """

    name = "claude-code"

    def session_id_from(self, event: dict) -> str | None:
        if event.get("type") == "system" and event.get("subtype") == "init":
            return event.get("session_id") or None
        return None

    def parse(self, event: dict, session_id: str | None) -> list[ChatEvent]:
        event_type = event.get("type")

        if event_type == "system" and event.get("subtype") == "init":
            new_id = event.get("session_id") or ""
            return [ChatEvent(type="system", content=f"Session started: {new_id[:8]}...")]

        if event_type == "assistant":
            content = _obj(event.get("message")).get("content")
            if not isinstance(content, list):
                return []
            return [
                ChatEvent(
                    type="tool_use",
                    content=json.dumps(block.get("input"), indent=2),
                    tool_name=block.get("name"),
                    tool_id=block.get("id"),
                )
                for block in content
                if isinstance(block, dict) and block.get("type") == "tool_use"
            ]

        if event_type == "stream_event":
            inner = _obj(event.get("event"))
            if inner.get("type") == "content_block_delta":
                delta = _obj(inner.get("delta"))
                if delta.get("type") == "text_delta" and delta.get("text"):
                    return [ChatEvent(type="assistant", content=delta["text"])]

        return []


class _ToolTracker:
    """Remembers which tool calls were announced and which have results.

    Part-based backends re-send a tool part as its state changes; each call
    produces one `tool_use` and at most one `tool_result`.
    """

    def __init__(self):
        self.announced: set[str] = set()
        self.resulted: set[str] = set()

    def tool_events(self, tool_id: str, name: str, tool_input, output) -> list[ChatEvent]:
        events = []
        if tool_id not in self.announced:
            self.announced.add(tool_id)
            events.append(ChatEvent(
                type="tool_use",
                content=json.dumps(tool_input, indent=2),
                tool_name=name,
                tool_id=tool_id,
            ))
        if output and tool_id not in self.resulted:
            self.resulted.add(tool_id)
            events.append(ChatEvent(
                type="tool_result",
                content=output if isinstance(output, str) else json.dumps(output, indent=2),
                tool_name=name,
                tool_id=tool_id,
            ))
        return events


def _obj(value) -> dict:
    return value if isinstance(value, dict) else {}


def _tool_title(part: dict, state: dict, tool_input) -> str:
    tool = part.get("tool") or part.get("name") or "unknown"
    description = tool_input.get("description") if isinstance(tool_input, dict) else None
    return state.get("title") or description or tool


class OpenCodeStreamParser(StreamParser):
    """`opencode run --format json`: one event object per line."""

    name = "opencode"
    rebind_session = False

    def __init__(self):
        self.tools = _ToolTracker()

    def session_id_from(self, event: dict) -> str | None:
        if event.get("type") == "step_start":
            return event.get("sessionID") or None
        return None

    def parse(self, event: dict, session_id: str | None) -> list[ChatEvent]:
        event_type = event.get("type")
        part = event.get("part") if isinstance(event.get("part"), dict) else {}

        if event_type == "step_start":
            if event.get("sessionID") and not session_id:
                return [ChatEvent(type="system", content=f"Session started {event['sessionID']}")]
            return []

        if event_type == "text":
            if part.get("text"):
                return [ChatEvent(type="assistant", content=part["text"])]
            return []

        if event_type in ("tool_use", "tool_call"):
            state = _obj(part.get("state"))
            tool_input = state.get("input")
            tool_id = part.get("callID") or part.get("id") or ""
            output = state.get("output") or part.get("output") or event.get("output")
            return self.tools.tool_events(tool_id, _tool_title(part, state, tool_input), tool_input, output)

        if event_type == "tool_result":
            state = _obj(part.get("state"))
            tool_id = part.get("callID") or part.get("id") or event.get("callID") or ""
            output = state.get("output") or part.get("output") or event.get("output")
            if not output or tool_id in self.tools.resulted:
                return []
            self.tools.resulted.add(tool_id)
            return [ChatEvent(
                type="tool_result",
                content=output if isinstance(output, str) else json.dumps(output, indent=2),
                tool_id=tool_id,
            )]

        return []


class OpenCodeServerParser(StreamParser):
    """`opencode serve` event stream (`GET /event`, server-sent events).

    Only `data: ` lines carry payloads. Events for other sessions sharing the
    server are dropped by the caller via `belongs_to()`.
    """

    name = "opencode-server"

    def __init__(self):
        self.tools = _ToolTracker()

    def decode_line(self, line: str) -> dict | None:
        if not line.startswith("data: "):
            return None
        return super().decode_line(line[len("data: "):])

    def belongs_to(self, event: dict, session_id: str | None) -> bool:
        found = self._event_session_id(event)
        return not session_id or not found or found == session_id

    def turn_finished(self, event: dict) -> bool:
        if event.get("type") == "session.idle":
            return True
        part = _obj(_obj(event.get("properties")).get("part"))
        if event.get("type") != "message.part.updated" or part.get("type") != "step-finish":
            return False
        # a step that ends in tool calls is followed by another step
        return part.get("reason") != "tool-calls"

    def parse(self, event: dict, session_id: str | None) -> list[ChatEvent]:
        if event.get("type") != "message.part.updated":
            return []

        props = _obj(event.get("properties"))
        part = props.get("part")
        if not isinstance(part, dict):
            return []

        part_type = part.get("type")
        state = _obj(part.get("state"))

        if part_type == "text":
            if props.get("delta"):
                return [ChatEvent(type="assistant", content=props["delta"])]
            return []

        if part_type in ("tool", "tool-use"):
            tool_input = state.get("input")
            tool_id = part.get("callID") or part.get("id") or ""
            return self.tools.tool_events(tool_id, _tool_title(part, state, tool_input), tool_input,
                                          state.get("output"))

        if part_type == "tool-result" and state.get("output"):
            tool_id = part.get("callID") or part.get("id") or ""
            if tool_id in self.tools.resulted:
                return []
            self.tools.resulted.add(tool_id)
            return [ChatEvent(type="tool_result", content=state["output"], tool_id=tool_id)]

        return []

    def _event_session_id(self, event: dict) -> str | None:
        props = _obj(event.get("properties"))
        part = props.get("part") if isinstance(props.get("part"), dict) else {}
        info = props.get("info") if isinstance(props.get("info"), dict) else {}
        return part.get("sessionID") or props.get("sessionID") or info.get("sessionID")
