"""Environment-driven path and runtime settings.

Every setting is resolved on call so tests and long-running servers pick up
changes to the environment without a restart.
"""

import os
import sys
from pathlib import Path

DEFAULT_CLAUDE_MODEL = "sonnet"
DEFAULT_CONTAINER_USER = "workspace"
CONTAINER_HOME = Path("/home/workspace")


def get_home_dir() -> Path:
    """Return the home directory whose agent storage is scanned."""
    env = os.environ.get("AICHAT_HOME")
    if env:
        return Path(env)
    if get_container_name():
        return CONTAINER_HOME
    return Path.home()


def get_claude_code_path(home: Path | None = None) -> Path:
    """Return the path to Claude Code's projects directory."""
    env = os.environ.get("AICHAT_CLAUDE_PATH")
    if env:
        return Path(env)

    return (home or get_home_dir()) / ".claude" / "projects"


def get_opencode_path(home: Path | None = None) -> Path:
    """Return the path to OpenCode's storage directory."""
    env = os.environ.get("AICHAT_OPENCODE_PATH")
    if env:
        return Path(env)

    return (home or get_home_dir()) / ".local" / "share" / "opencode" / "storage"


def get_codex_path(home: Path | None = None) -> Path:
    """Return the path to Codex's rollout log directory."""
    env = os.environ.get("AICHAT_CODEX_PATH")
    if env:
        return Path(env)

    return (home or get_home_dir()) / ".codex" / "sessions"


def get_state_dir() -> Path:
    """Return the directory holding name overrides and the recent-sessions cache."""
    env = os.environ.get("AICHAT_STATE_DIR")
    if env:
        return Path(env)

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "aichat-bridge"
    elif sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "")) / "aichat-bridge"
    else:  # Linux
        return Path.home() / ".config" / "aichat-bridge"


def get_container_name() -> str | None:
    """Return the container to run discovery and chat in, if any."""
    return os.environ.get("AICHAT_CONTAINER") or None


def get_container_user() -> str:
    return os.environ.get("AICHAT_CONTAINER_USER") or DEFAULT_CONTAINER_USER


def get_default_model() -> str:
    return os.environ.get("AICHAT_DEFAULT_MODEL") or DEFAULT_CLAUDE_MODEL


def get_workspace_id() -> str:
    """Return the key name overrides are stored under."""
    return get_container_name() or "host"


def get_opencode_server_url() -> str | None:
    """Return the base URL of a running `opencode serve`, if chat should use it."""
    return os.environ.get("AICHAT_OPENCODE_SERVER_URL") or None


def get_chat_workdir() -> str:
    """Return the directory live chat backends run in."""
    env = os.environ.get("AICHAT_WORKDIR")
    if env:
        return env
    return str(get_home_dir())
