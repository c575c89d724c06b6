"""Unified session operations across every agent backend.

`SessionService` is what the HTTP server and the CLI talk to. It merges the
providers' listings, layers user-assigned names over them and keeps the
recent-sessions cache in step with deletes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .backends import get_providers
from .config import get_workspace_id
from .core import AGENT_PREFERENCE, AgentType, DeleteResult, SearchHit, SessionDetail, SessionSummary
from .errors import SessionNotFoundError
from .names import NameOverrideStore
from .provider import SessionProvider
from .recent import RecentSessionsCache

logger = logging.getLogger(__name__)


@dataclass
class SessionPage:
    sessions: list[SessionSummary] = field(default_factory=list)
    total: int = 0
    has_more: bool = False

    def to_dict(self) -> dict:
        return {
            "sessions": [s.to_dict() for s in self.sessions],
            "total": self.total,
            "hasMore": self.has_more,
        }


class SessionService:
    def __init__(
        self,
        providers: dict[AgentType, SessionProvider] | None = None,
        names: NameOverrideStore | None = None,
        recent: RecentSessionsCache | None = None,
        workspace: str | None = None,
    ):
        self.providers = providers if providers is not None else get_providers()
        self.names = names or NameOverrideStore()
        self.recent = recent or RecentSessionsCache()
        self.workspace = workspace or get_workspace_id()

    def available_agents(self) -> list[AgentType]:
        return [agent for agent, p in self.providers.items() if p.is_available()]

    def list(self, agent_type: AgentType | None = None, limit: int = 50, offset: int = 0) -> SessionPage:
        """List non-empty sessions newest first, with name overrides applied."""
        sessions = []
        for provider in self._providers_for(agent_type):
            try:
                sessions.extend(provider.list_sessions())
            except Exception as e:
                logger.error("Failed to list sessions for %s: %s", provider.name, e)

        overrides = self.names.get_names(self.workspace)
        for session in sessions:
            if session.id in overrides:
                session.name = overrides[session.id]

        sessions.sort(key=lambda s: s.last_activity, reverse=True)
        total = len(sessions)
        page = sessions[offset: offset + limit]
        return SessionPage(sessions=page, total=total, has_more=offset + len(page) < total)

    def get(self, session_id: str, agent_type: AgentType | None = None) -> SessionDetail:
        """Return the first non-empty transcript for `session_id`.

        Without an agent type, providers are tried in preference order.
        Raises SessionNotFoundError when no provider has messages for it.
        """
        for provider in self._providers_for(agent_type):
            ref = provider.find(session_id)
            if not ref:
                continue
            detail = provider.get_detail(ref)
            if detail.messages:
                self.recent.record_access(self.workspace, session_id, provider.agent_type.value)
                return detail

        raise SessionNotFoundError(session_id, agent_type.value if agent_type else None)

    def search(self, query: str, agent_type: AgentType | None = None) -> list[SearchHit]:
        """Search stored session files; best matches first."""
        query = query.strip()
        if not query:
            return []

        hits = []
        for provider in self._providers_for(agent_type):
            try:
                hits.extend(provider.search(query))
            except Exception as e:
                logger.error("Search failed for %s: %s", provider.name, e)
        hits.sort(key=lambda h: h.match_count, reverse=True)
        return hits

    def rename(self, session_id: str, name: str) -> str:
        """Set a display name; raises ValueError for an invalid name."""
        saved = self.names.set_name(self.workspace, session_id, name)
        logger.info("Renamed session %s to %r", session_id, saved)
        return saved

    def clear_name(self, session_id: str) -> None:
        self.names.clear_name(self.workspace, session_id)

    def delete(self, session_id: str, agent_type: AgentType | None = None) -> DeleteResult:
        """Delete a session's files, then its name override and recent entry."""
        owner = None
        for provider in self._providers_for(agent_type):
            if provider.find(session_id):
                owner = provider
                break

        if owner is None:
            return DeleteResult(success=False, error="Session not found")

        result = owner.delete(session_id)
        if result.success:
            self.names.clear_name(self.workspace, session_id)
            self.recent.remove_session(self.workspace, session_id)
        return result

    # ── Private helpers ──────────────────────────────────────────────

    def _providers_for(self, agent_type: AgentType | None) -> list[SessionProvider]:
        if agent_type:
            provider = self.providers.get(agent_type)
            return [provider] if provider else []
        return [self.providers[a] for a in AGENT_PREFERENCE if a in self.providers]
