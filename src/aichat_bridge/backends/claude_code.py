"""Claude Code session storage backend.

Reads transcripts from ~/.claude/projects/<encoded-project-dir>/<session>.jsonl.
The directory name is the project path with "/" replaced by "-".
`agent-*.jsonl` files are sub-agent transcripts and are not sessions.

JSONL entry types:
- "user" or "human": User messages. Content can be a string or array of blocks.
  May also contain tool_result blocks (responses from tool execution).
- "assistant": AI responses. Content is an array of text and/or tool_use blocks.
  A single JSONL line can produce multiple messages (text + tool calls).
- "system" with subtype "session_name": user-assigned name, not a message.
- "result", other "system" lines, "summary", "file-history-snapshot",
  "progress", "queue-operation" and `isMeta` entries: bookkeeping, skipped.
"""

import logging
from datetime import datetime
from pathlib import Path

from ..config import get_claude_code_path
from ..core import AgentType, DeleteResult, RawSessionRef, SessionMessage
from ..provider import SessionProvider
from .common import (
    decode_project_path,
    dump_tool_input,
    extract_text,
    is_meaningful,
    iter_json_lines,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

SKIPPED_ENTRY_TYPES = (
    "file-history-snapshot", "progress", "summary", "queue-operation",
)


class ClaudeCodeProvider(SessionProvider):
    """Provider for Claude Code sessions."""

    agent_type = AgentType.CLAUDE_CODE

    def get_base_path(self) -> Path:
        return get_claude_code_path(self.get_home())

    def discover(self) -> list[RawSessionRef]:
        refs = []
        for stat in self.fs.scan(self.get_base_path(), "*.jsonl", depth=2):
            if stat.path.name.startswith("agent-") or stat.size == 0:
                continue
            refs.append(RawSessionRef(
                id=stat.path.stem,
                agent_type=self.agent_type,
                project_path=decode_project_path(stat.path.parent.name),
                mtime=stat.mtime,
                locator=str(stat.path),
            ))
        return refs

    def load_transcript(self, ref: RawSessionRef) -> tuple[list[SessionMessage], str | None]:
        text = self.fs.read_text(Path(ref.locator))
        if text is None:
            return [], None
        return parse_transcript(text, source=ref.locator)

    def session_id_for_path(self, path: Path) -> str | None:
        if path.suffix != ".jsonl" or path.name.startswith("agent-"):
            return None
        return path.stem

    def delete(self, session_id: str) -> DeleteResult:
        ref = self.find(session_id)
        if not ref:
            return DeleteResult(success=False, error="Session not found")

        error = self.fs.remove(Path(ref.locator))
        if error:
            return DeleteResult(success=False, error=error)
        logger.info("Deleted Claude Code session %s", session_id)
        return DeleteResult(success=True)


# ── Transcript parsing ───────────────────────────────────────────


def parse_transcript(text: str, source: str = "") -> tuple[list[SessionMessage], str | None]:
    """Parse a session's JSONL text into meaningful messages and its name.

    Each JSONL line can produce zero, one, or multiple messages.
    """
    messages = []
    name = None

    for _, entry in iter_json_lines(text, source):
        if entry.get("type") == "system" and entry.get("subtype") == "session_name":
            if name is None:
                name = entry.get("name") or None
            continue
        messages.extend(entry_to_messages(entry))

    return [m for m in messages if is_meaningful(m)], name


def entry_to_messages(entry: dict) -> list[SessionMessage]:
    """Convert one JSONL entry to messages, in block order.

    Returns an empty list for entries that should be skipped.
    """
    if entry.get("isMeta"):
        return []

    entry_type = entry.get("type", "")
    if entry_type in SKIPPED_ENTRY_TYPES:
        return []

    timestamp = parse_timestamp(entry.get("timestamp") or entry.get("ts"))
    role = entry.get("role")

    if entry_type in ("human", "user") or role == "user":
        return _parse_blocks(_entry_content(entry), "user", timestamp)

    if entry_type == "assistant" or role == "assistant":
        return _parse_blocks(_entry_content(entry), "assistant", timestamp)

    if entry_type == "result":
        subtype = entry.get("subtype", "")
        if subtype == "success":
            content = "Session completed ({} turns, ${:.4f})".format(
                entry.get("num_turns") or 0, entry.get("cost_usd") or 0,
            )
        else:
            content = f"Session ended: {subtype}"
        return [SessionMessage(type="system", content=content, timestamp=timestamp)]

    if entry_type == "system" and entry.get("subtype") != "init":
        return [SessionMessage(
            type="system",
            content=extract_text(entry.get("content")),
            timestamp=timestamp,
        )]

    return []


def _entry_content(entry: dict):
    if entry.get("content"):
        return entry["content"]
    message = entry.get("message")
    if isinstance(message, dict):
        return message.get("content")
    return None


def _parse_blocks(content, role: str, timestamp: datetime | None) -> list[SessionMessage]:
    """Split a content array into text, tool_use and tool_result messages.

    Consecutive text blocks are merged into one message so a prompt split into
    several blocks reads as one turn.
    """
    if isinstance(content, str):
        return [SessionMessage(type=role, content=content, timestamp=timestamp)]
    if not isinstance(content, list):
        return []

    messages = []
    text_parts = []

    def flush_text():
        if text_parts:
            messages.append(SessionMessage(
                type=role, content="\n".join(text_parts), timestamp=timestamp,
            ))
            text_parts.clear()

    for block in content:
        if isinstance(block, str):
            text_parts.append(block)
            continue
        if not isinstance(block, dict):
            continue

        block_type = block.get("type", "")

        if block_type == "text":
            text = block.get("text")
            if isinstance(text, str) and text.strip():
                text_parts.append(text)

        elif block_type == "tool_use":
            flush_text()
            messages.append(SessionMessage(
                type="tool_use",
                tool_name=block.get("name", "unknown"),
                tool_id=block.get("id", ""),
                tool_input=dump_tool_input(block.get("input")),
                timestamp=timestamp,
            ))

        elif block_type == "tool_result":
            flush_text()
            messages.append(SessionMessage(
                type="tool_result",
                content=_tool_result_text(block.get("content")),
                tool_id=block.get("tool_use_id", ""),
                timestamp=timestamp,
            ))

    flush_text()
    return messages


def _tool_result_text(content) -> str | None:
    """Flatten tool_result content, which may be a string or a block array."""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return None

    parts = []
    for sub in content:
        if isinstance(sub, dict):
            if sub.get("type") == "image":
                parts.append("[Image]")
            elif sub.get("text"):
                parts.append(sub["text"])
        elif isinstance(sub, str):
            parts.append(sub)
    return "\n".join(parts) or None
