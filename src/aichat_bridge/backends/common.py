"""Helpers shared by the storage backends."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Iterator

from ..core import SessionMessage

logger = logging.getLogger(__name__)


def decode_project_path(encoded: str) -> str:
    """Decode a Claude Code project directory name.

    Claude stores `/Users/alice/dev/app` as `-Users-alice-dev-app`. The mapping
    is lossy for paths that contain dashes; every caller uses this function so
    the same directory always decodes to the same path.
    """
    return encoded.replace("-", "/")


def encode_project_path(project_path: str) -> str:
    return project_path.replace("/", "-")


def iter_json_lines(text: str, source: str = "") -> Iterator[tuple[int, dict]]:
    """Yield (line number, object) for each JSON object line in `text`.

    Blank lines are skipped; malformed lines are logged and skipped.
    """
    for line_num, line in enumerate(text.splitlines(), 1):
        line = line.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError as e:
            logger.debug("Bad JSON at %s:%d: %s", source, line_num, e)
            continue
        if isinstance(obj, dict):
            yield line_num, obj


def load_json(text: str | None, source: str = "") -> dict | None:
    """Parse a whole-file JSON object, returning None on any problem."""
    if not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning("Failed to parse %s: %s", source, e)
        return None
    return data if isinstance(data, dict) else None


def extract_text(content: Any) -> str | None:
    """Pull plain text out of a string or a list of content blocks."""
    if not content:
        return None
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and "text" in str(block.get("type", "")):
                text = block.get("text")
                if text:
                    parts.append(text)
        return "\n".join(parts) or None
    return None


def dump_tool_input(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, ensure_ascii=False)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 string or a numeric epoch (seconds or milliseconds)."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (ValueError, OSError, OverflowError):
            return None
    if isinstance(value, str):
        try:
            if value.endswith("Z"):
                value = value[:-1] + "+00:00"
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


def is_meaningful(msg: SessionMessage) -> bool:
    """Keep tool traffic and any message with visible content; drop bookkeeping."""
    if msg.type == "system":
        return False
    if msg.type in ("tool_use", "tool_result"):
        return True
    return msg.has_content()
