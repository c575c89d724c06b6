"""OpenCode session storage backend.

Reads session data from ~/.local/share/opencode/storage/.
Data is organized as a session/ -> message/ -> part/ hierarchy:

    session/<project-hash>/ses_<id>.json   session object (id, title, directory, time)
    message/ses_<id>/msg_<id>.json         one file per message (id, role, time)
    part/msg_<id>/prt_<id>.json            one file per content part

Supports two storage versions:
- v1.0 (older): Messages contain only metadata; no part/ directories.
  Content is limited to summary.title on user messages.
- v1.1+ (newer): Full content stored in part/ directories as prt_*.json files.
"""

import logging
from pathlib import Path

from ..config import get_opencode_path
from ..core import AgentType, DeleteResult, RawSessionRef, SessionMessage
from ..provider import SessionProvider
from .common import dump_tool_input, is_meaningful, load_json, parse_timestamp

logger = logging.getLogger(__name__)


class OpenCodeProvider(SessionProvider):
    """Provider for OpenCode sessions."""

    agent_type = AgentType.OPENCODE

    def get_base_path(self) -> Path:
        return get_opencode_path(self.get_home())

    def search_roots(self) -> list[Path]:
        base = self.get_base_path()
        return [base / "session", base / "message", base / "part"]

    def discover(self) -> list[RawSessionRef]:
        session_dir = self.get_base_path() / "session"
        refs = []
        for stat in self.fs.scan(session_dir, "ses_*.json", depth=2):
            data = load_json(self.fs.read_text(stat.path), str(stat.path))
            if not data or not data.get("id"):
                continue

            times = data.get("time")
            updated = times.get("updated") if isinstance(times, dict) else None
            mtime = updated / 1000 if isinstance(updated, (int, float)) else stat.mtime

            refs.append(RawSessionRef(
                id=data["id"],
                agent_type=self.agent_type,
                project_path=data.get("directory") or stat.path.parent.name,
                mtime=mtime,
                locator=str(stat.path),
                name=data.get("title") or None,
            ))
        return refs

    def load_transcript(self, ref: RawSessionRef) -> tuple[list[SessionMessage], str | None]:
        base = self.get_base_path()
        messages = []
        for msg_data in self._iter_message_files(ref.id):
            messages.extend(self._message_to_messages(msg_data, base))
        return [m for m in messages if is_meaningful(m)], ref.name

    def session_id_for_path(self, path: Path) -> str | None:
        base = self.get_base_path()
        try:
            rel = path.relative_to(base)
        except ValueError:
            return None
        if len(rel.parts) != 3:
            return None

        kind, parent, filename = rel.parts
        if kind == "session" and filename.startswith("ses_"):
            return Path(filename).stem
        if kind == "message" and parent.startswith("ses_"):
            return parent
        if kind == "part":
            # part dirs are keyed by message id; the part itself names its session
            data = load_json(self.fs.read_text(path), str(path))
            if data:
                return data.get("sessionID") or None
        return None

    def delete(self, session_id: str) -> DeleteResult:
        ref = self.find(session_id)
        if not ref:
            return DeleteResult(success=False, error="Session not found")

        error = self.fs.remove(Path(ref.locator))
        if error:
            return DeleteResult(success=False, error=f"Failed to delete session file: {error}")

        base = self.get_base_path()
        for msg_data in self._iter_message_files(session_id):
            if msg_data.get("id"):
                self.fs.remove_tree(base / "part" / msg_data["id"])
        self.fs.remove_tree(base / "message" / session_id)

        logger.info("Deleted OpenCode session %s", session_id)
        return DeleteResult(success=True)

    # ── Private helpers ──────────────────────────────────────────────

    def _iter_message_files(self, session_id: str):
        msg_dir = self.get_base_path() / "message" / session_id
        for stat in self.fs.scan(msg_dir, "msg_*.json", depth=1):
            data = load_json(self.fs.read_text(stat.path), str(stat.path))
            if data:
                yield data

    def _message_to_messages(self, data: dict, base: Path) -> list[SessionMessage]:
        """Assemble one stored message from its parts, in part file order."""
        msg_id = data.get("id")
        role = data.get("role")
        if not msg_id or role not in ("user", "assistant"):
            return []

        times = data.get("time")
        timestamp = parse_timestamp(times.get("created") if isinstance(times, dict) else None)
        messages = []

        for stat in self.fs.scan(base / "part" / msg_id, "prt_*.json", depth=1):
            part = load_json(self.fs.read_text(stat.path), str(stat.path))
            if not part:
                continue

            part_type = part.get("type")
            if part_type == "text" and part.get("text"):
                messages.append(SessionMessage(type=role, content=part["text"], timestamp=timestamp))

            elif part_type == "tool":
                state = part.get("state")
                if not isinstance(state, dict):
                    state = {}
                call_id = part.get("callID") or part.get("id") or ""
                messages.append(SessionMessage(
                    type="tool_use",
                    tool_name=state.get("title") or part.get("tool") or "",
                    tool_id=call_id,
                    tool_input=dump_tool_input(state.get("input")) or "",
                    timestamp=timestamp,
                ))
                if state.get("output"):
                    messages.append(SessionMessage(
                        type="tool_result",
                        content=state["output"],
                        tool_id=call_id,
                        timestamp=timestamp,
                    ))

        # v1.0 storage has no parts; the user prompt survives only as summary.title
        if not messages and role == "user":
            summary = data.get("summary")
            if isinstance(summary, dict) and summary.get("title"):
                messages.append(SessionMessage(type="user", content=summary["title"], timestamp=timestamp))

        return messages
