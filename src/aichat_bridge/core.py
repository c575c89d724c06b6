"""Core data models for aichat-bridge."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class AgentType(str, Enum):
    """Backend families whose sessions are normalized."""

    CLAUDE_CODE = "claude-code"  # CLI with turn-based JSONL transcripts
    OPENCODE = "opencode"  # agent server with session/message/part storage
    CODEX = "codex"  # append-only rollout logs, discovery only

    @classmethod
    def parse(cls, value: str | None) -> Optional["AgentType"]:
        """Return the matching agent type, or None for empty/unknown values."""
        if not value:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


# Preference order when a session id is looked up without an agent type.
AGENT_PREFERENCE = (AgentType.CLAUDE_CODE, AgentType.OPENCODE, AgentType.CODEX)

MESSAGE_TYPES = ("user", "assistant", "system", "tool_use", "tool_result", "error", "done")

PREVIEW_LENGTH = 200


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class RawSessionRef:
    """A session found by a provider scan, before its transcript is read.

    `locator` is provider-private (a file path for most backends) and is never
    serialized.
    """

    id: str
    agent_type: AgentType
    project_path: str
    mtime: float  # seconds since epoch
    locator: str
    name: str | None = None

    @property
    def last_activity(self) -> datetime:
        return datetime.fromtimestamp(self.mtime, tz=timezone.utc)


@dataclass
class SessionMessage:
    """A single message within a stored session transcript."""

    type: str  # one of MESSAGE_TYPES
    content: str | None = None
    timestamp: datetime | None = None
    tool_name: str | None = None
    tool_id: str | None = None  # pairs a tool_use with its tool_result
    tool_input: str | None = None

    def has_content(self) -> bool:
        return bool(self.content and self.content.strip())

    def to_dict(self) -> dict:
        data = {
            "type": self.type,
            "content": self.content,
            "timestamp": _iso(self.timestamp),
        }
        if self.tool_name is not None:
            data["toolName"] = self.tool_name
        if self.tool_id is not None:
            data["toolId"] = self.tool_id
        if self.tool_input is not None:
            data["toolInput"] = self.tool_input
        return data


@dataclass
class SessionSummary:
    """A listed session, built from a RawSessionRef plus its parsed transcript."""

    id: str
    agent_type: AgentType
    name: str | None
    project_path: str
    message_count: int
    last_activity: datetime
    first_prompt: str | None = None  # at most PREVIEW_LENGTH chars

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "agentType": self.agent_type.value,
            "name": self.name,
            "projectPath": self.project_path,
            "messageCount": self.message_count,
            "lastActivity": _iso(self.last_activity),
            "firstPrompt": self.first_prompt,
        }


@dataclass
class SessionDetail:
    """A full transcript in storage order."""

    id: str
    agent_type: AgentType
    messages: list[SessionMessage] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "agentType": self.agent_type.value,
            "messages": [m.to_dict() for m in self.messages],
        }


@dataclass
class SearchHit:
    """A session whose stored files matched a search query."""

    id: str
    agent_type: AgentType
    match_count: int = 1
    locator: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "agentType": self.agent_type.value,
            "matchCount": self.match_count,
        }


@dataclass
class DeleteResult:
    """Outcome of a delete; "not found" is a failed result, not an exception."""

    success: bool
    error: str | None = None

    def to_dict(self) -> dict:
        data = {"success": self.success}
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class ChatEvent:
    """Canonical incremental event emitted by a live chat turn."""

    type: str  # one of MESSAGE_TYPES
    content: str | None = None
    tool_name: str | None = None
    tool_id: str | None = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        data = {
            "type": self.type,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.tool_name is not None:
            data["toolName"] = self.tool_name
        if self.tool_id is not None:
            data["toolId"] = self.tool_id
        return data


def first_prompt_preview(messages: list[SessionMessage]) -> str | None:
    """Return the first non-empty user message, truncated for listings."""
    for msg in messages:
        if msg.type == "user" and msg.has_content():
            return msg.content[:PREVIEW_LENGTH]
    return None
