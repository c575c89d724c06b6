"""Most-recently-opened sessions, persisted across restarts."""

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path

from .config import get_state_dir
from .core import utc_now

logger = logging.getLogger(__name__)

CACHE_FILE = "recent-sessions.json"
MAX_RECENT = 20


@dataclass
class RecentSession:
    workspace: str
    session_id: str
    agent_type: str
    last_accessed: str  # ISO 8601

    def to_dict(self) -> dict:
        return {
            "workspace": self.workspace,
            "sessionId": self.session_id,
            "agentType": self.agent_type,
            "lastAccessed": self.last_accessed,
        }


class RecentSessionsCache:
    """A capped, most-recent-first list of opened sessions."""

    def __init__(self, state_dir: Path | None = None):
        self.path = (state_dir or get_state_dir()) / CACHE_FILE

    def get_recent(self, limit: int = 10) -> list[RecentSession]:
        return self._load()[:limit]

    def record_access(self, workspace: str, session_id: str, agent_type: str) -> None:
        entries = [e for e in self._load() if not _same(e, workspace, session_id)]
        entries.insert(0, RecentSession(
            workspace=workspace,
            session_id=session_id,
            agent_type=agent_type,
            last_accessed=utc_now().isoformat(),
        ))
        self._save(entries[:MAX_RECENT])

    def remove_session(self, workspace: str, session_id: str) -> None:
        entries = self._load()
        kept = [e for e in entries if not _same(e, workspace, session_id)]
        if len(kept) != len(entries):
            self._save(kept)

    def remove_for_workspace(self, workspace: str) -> None:
        entries = self._load()
        kept = [e for e in entries if e.workspace != workspace]
        if len(kept) != len(entries):
            self._save(kept)

    # ── Private helpers ──────────────────────────────────────────────

    def _load(self) -> list[RecentSession]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable recent-sessions cache %s: %s", self.path, e)
            return []

        entries = []
        for item in data.get("recent", []) if isinstance(data, dict) else []:
            try:
                entries.append(RecentSession(**item))
            except TypeError:
                continue
        return entries

    def _save(self, entries: list[RecentSession]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {"recent": [asdict(e) for e in entries]}
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def _same(entry: RecentSession, workspace: str, session_id: str) -> bool:
    return entry.workspace == workspace and entry.session_id == session_id
