"""Abstract base class for agent session storage providers."""

from abc import ABC, abstractmethod
from pathlib import Path

from .config import get_home_dir
from .core import (
    AgentType,
    DeleteResult,
    RawSessionRef,
    SearchHit,
    SessionDetail,
    SessionMessage,
    SessionSummary,
    first_prompt_preview,
)
from .storage import LocalFS, WorkspaceFS


class SessionProvider(ABC):
    """Base class for agent session storage backends.

    Each backend (Claude Code, OpenCode, Codex) implements this interface to
    turn its on-disk layout into the canonical session model. Implementations
    must never raise for missing directories or malformed records; they return
    empty results instead.
    """

    agent_type: AgentType

    def __init__(self, fs: WorkspaceFS | None = None, home: Path | None = None):
        self.fs = fs or LocalFS()
        self.home = home

    @property
    def name(self) -> str:
        return self.agent_type.value

    @abstractmethod
    def get_base_path(self) -> Path:
        """Return the root directory where this agent stores sessions."""
        ...

    def get_home(self) -> Path:
        return self.home or get_home_dir()

    def is_available(self) -> bool:
        """Return True if this agent's storage exists."""
        return self.fs.is_dir(self.get_base_path())

    @abstractmethod
    def discover(self) -> list[RawSessionRef]:
        """Scan storage and return one ref per stored session."""
        ...

    @abstractmethod
    def load_transcript(self, ref: RawSessionRef) -> tuple[list[SessionMessage], str | None]:
        """Return the meaningful messages of a session and any stored name."""
        ...

    @abstractmethod
    def session_id_for_path(self, path: Path) -> str | None:
        """Map a file under the storage root back to its session id, or None."""
        ...

    @abstractmethod
    def delete(self, session_id: str) -> DeleteResult:
        """Remove every file belonging to a session."""
        ...

    def search_roots(self) -> list[Path]:
        return [self.get_base_path()]

    def find(self, session_id: str) -> RawSessionRef | None:
        """Return the ref for `session_id`, or None if it is not stored here."""
        for ref in self.discover():
            if ref.id == session_id:
                return ref
        return None

    def get_detail(self, ref: RawSessionRef) -> SessionDetail:
        messages, _ = self.load_transcript(ref)
        return SessionDetail(id=ref.id, agent_type=self.agent_type, messages=messages)

    def summarize(self, ref: RawSessionRef) -> SessionSummary | None:
        """Build a listing entry; sessions without messages yield None."""
        messages, name = self.load_transcript(ref)
        if not messages:
            return None

        return SessionSummary(
            id=ref.id,
            agent_type=self.agent_type,
            name=name or ref.name,
            project_path=ref.project_path,
            message_count=len(messages),
            last_activity=ref.last_activity,
            first_prompt=first_prompt_preview(messages),
        )

    def list_sessions(self) -> list[SessionSummary]:
        """Return non-empty sessions, newest first."""
        sessions = []
        for ref in self.discover():
            summary = self.summarize(ref)
            if summary:
                sessions.append(summary)
        sessions.sort(key=lambda s: s.last_activity, reverse=True)
        return sessions

    def search(self, query: str) -> list[SearchHit]:
        """Case-insensitive substring search across this agent's storage."""
        counts: dict[str, SearchHit] = {}
        for path, count in self.fs.grep(self.search_roots(), query):
            session_id = self.session_id_for_path(path)
            if not session_id:
                continue
            hit = counts.get(session_id)
            if hit:
                hit.match_count += count
            else:
                counts[session_id] = SearchHit(
                    id=session_id,
                    agent_type=self.agent_type,
                    match_count=count,
                    locator=str(path),
                )
        return list(counts.values())
