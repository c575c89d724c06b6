"""User-assigned session display names, stored apart from agent storage.

The file is a JSON object keyed by workspace, each mapping session id to name:

    {"host": {"3f2a...": "Refactor auth"}}

Every write re-reads the file first; concurrent renames are last-write-wins.
"""

import json
import logging
from pathlib import Path

from .config import get_state_dir

logger = logging.getLogger(__name__)

NAMES_FILE = "session-names.json"
MAX_NAME_LENGTH = 200


class NameOverrideStore:
    """Persisted (workspace, session id) -> display name map."""

    def __init__(self, state_dir: Path | None = None):
        self.path = (state_dir or get_state_dir()) / NAMES_FILE

    def get_names(self, workspace: str) -> dict[str, str]:
        """Return all overrides for a workspace."""
        return dict(self._load().get(workspace, {}))

    def get_name(self, workspace: str, session_id: str) -> str | None:
        return self._load().get(workspace, {}).get(session_id)

    def set_name(self, workspace: str, session_id: str, name: str) -> str:
        """Store a display name and return it as saved (whitespace-trimmed).

        Raises ValueError if the trimmed name is empty or too long.
        """
        name = validate_name(name)
        data = self._load()
        data.setdefault(workspace, {})[session_id] = name
        self._save(data)
        return name

    def clear_name(self, workspace: str, session_id: str) -> bool:
        """Remove an override. Returns False if there was none."""
        data = self._load()
        names = data.get(workspace, {})
        if session_id not in names:
            return False
        del names[session_id]
        if not names:
            data.pop(workspace, None)
        self._save(data)
        return True

    def remove_workspace(self, workspace: str) -> None:
        data = self._load()
        if data.pop(workspace, None) is not None:
            self._save(data)

    # ── Private helpers ──────────────────────────────────────────────

    def _load(self) -> dict[str, dict[str, str]]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable name store %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, dict)}

    def _save(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")


def validate_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValueError("Session name must not be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise ValueError(f"Session name must be at most {MAX_NAME_LENGTH} characters")
    return name
