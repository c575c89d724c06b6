"""Codex session storage backend.

Reads rollout logs from ~/.codex/sessions/<yyyy>/<mm>/<dd>/rollout-*.jsonl.
Logs are append-only and read-only here; Codex has no live chat support.

The first line holds session metadata, either flat (`{"session_id": ...}` /
`{"id": ...}`) or wrapped (`{"type": "session_meta", "payload": {"id", "cwd"}}`).
Every later line is an event; those whose payload carries a user/assistant role
are messages, and `function_call` / `function_call_output` payloads are tool
traffic paired by `call_id`.
"""

import json
import logging
from pathlib import Path

from ..config import get_codex_path
from ..core import AgentType, DeleteResult, RawSessionRef, SessionMessage
from ..provider import SessionProvider
from .common import dump_tool_input, extract_text, is_meaningful, iter_json_lines, parse_timestamp

logger = logging.getLogger(__name__)


class CodexProvider(SessionProvider):
    """Provider for Codex rollout logs."""

    agent_type = AgentType.CODEX

    def get_base_path(self) -> Path:
        return get_codex_path(self.get_home())

    def discover(self) -> list[RawSessionRef]:
        base = self.get_base_path()
        refs = []
        for stat in self.fs.scan(base, "rollout-*.jsonl"):
            if stat.size == 0:
                continue
            meta = _parse_meta(self.fs.read_first_line(stat.path))
            refs.append(RawSessionRef(
                id=_meta_session_id(meta) or stat.path.stem,
                agent_type=self.agent_type,
                project_path=_meta_cwd(meta) or _relative_dir(stat.path, base),
                mtime=stat.mtime,
                locator=str(stat.path),
            ))
        return refs

    def find(self, session_id: str) -> RawSessionRef | None:
        """Match either the embedded session id or the rollout filename."""
        for ref in self.discover():
            if ref.id == session_id or Path(ref.locator).stem == session_id:
                return ref
        return None

    def load_transcript(self, ref: RawSessionRef) -> tuple[list[SessionMessage], str | None]:
        text = self.fs.read_text(Path(ref.locator))
        if text is None:
            return [], None
        return parse_rollout(text, source=ref.locator), None

    def session_id_for_path(self, path: Path) -> str | None:
        if not path.name.startswith("rollout-") or path.suffix != ".jsonl":
            return None
        meta = _parse_meta(self.fs.read_first_line(path))
        return _meta_session_id(meta) or path.stem

    def delete(self, session_id: str) -> DeleteResult:
        ref = self.find(session_id)
        if not ref:
            return DeleteResult(success=False, error="Session not found")

        error = self.fs.remove(Path(ref.locator))
        if error:
            return DeleteResult(success=False, error=error)
        logger.info("Deleted Codex session %s", session_id)
        return DeleteResult(success=True)


# ── Rollout parsing ──────────────────────────────────────────────


def parse_rollout(text: str, source: str = "") -> list[SessionMessage]:
    """Parse every event after the metadata line into meaningful messages."""
    messages = []
    for line_num, event in iter_json_lines(text, source):
        if line_num == 1:
            continue
        msg = event_to_message(event)
        if msg and is_meaningful(msg):
            messages.append(msg)
    return messages


def event_to_message(event: dict) -> SessionMessage | None:
    payload = event.get("payload")
    if not isinstance(payload, dict):
        return None

    timestamp = parse_timestamp(event.get("timestamp"))
    payload_type = payload.get("type")

    if payload_type == "function_call":
        arguments = payload.get("arguments")
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments)
            except json.JSONDecodeError:
                pass
        return SessionMessage(
            type="tool_use",
            tool_name=payload.get("name") or "unknown",
            tool_id=payload.get("call_id") or "",
            tool_input=dump_tool_input(arguments),
            timestamp=timestamp,
        )

    if payload_type == "function_call_output":
        output = payload.get("output")
        if isinstance(output, dict):
            output = output.get("output") or output.get("content")
        return SessionMessage(
            type="tool_result",
            content=output if isinstance(output, str) else dump_tool_input(output),
            tool_id=payload.get("call_id") or "",
            timestamp=timestamp,
        )

    message = payload.get("message") if isinstance(payload.get("message"), dict) else {}
    role = payload.get("role") or message.get("role")
    if role not in ("user", "assistant"):
        return None

    content = payload.get("content") or message.get("content")
    return SessionMessage(type=role, content=extract_text(content), timestamp=timestamp)


def _parse_meta(line: str | None) -> dict:
    if not line:
        return {}
    try:
        meta = json.loads(line)
    except json.JSONDecodeError:
        return {}
    return meta if isinstance(meta, dict) else {}


def _meta_session_id(meta: dict) -> str | None:
    payload = meta.get("payload") if isinstance(meta.get("payload"), dict) else {}
    return meta.get("session_id") or payload.get("id") or meta.get("id") or None


def _meta_cwd(meta: dict) -> str | None:
    payload = meta.get("payload") if isinstance(meta.get("payload"), dict) else {}
    return payload.get("cwd") or meta.get("cwd") or None


def _relative_dir(path: Path, base: Path) -> str:
    try:
        rel = path.parent.relative_to(base)
    except ValueError:
        return "unknown"
    return str(rel) if rel.parts else "unknown"
