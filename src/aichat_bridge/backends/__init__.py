"""Session storage backends and a registry keyed by agent type."""

import logging
from pathlib import Path

from ..config import get_container_name, get_container_user
from ..core import AGENT_PREFERENCE, AgentType
from ..execution import ContainerExecutor
from ..provider import SessionProvider
from ..storage import ContainerFS, LocalFS, WorkspaceFS
from .claude_code import ClaudeCodeProvider
from .codex import CodexProvider
from .opencode import OpenCodeProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[AgentType, type[SessionProvider]] = {
    AgentType.CLAUDE_CODE: ClaudeCodeProvider,
    AgentType.OPENCODE: OpenCodeProvider,
    AgentType.CODEX: CodexProvider,
}


def get_workspace_fs() -> WorkspaceFS:
    """Return a container-backed FS when AICHAT_CONTAINER is set, else the local one."""
    container = get_container_name()
    if container:
        logger.info("Discovering sessions inside container %s", container)
        return ContainerFS(ContainerExecutor(container), user=get_container_user())
    return LocalFS()


def get_providers(fs: WorkspaceFS | None = None, home: Path | None = None) -> dict[AgentType, SessionProvider]:
    """Return one provider per agent type, in lookup preference order."""
    fs = fs or get_workspace_fs()
    return {agent: PROVIDER_CLASSES[agent](fs=fs, home=home) for agent in AGENT_PREFERENCE}


def get_available_providers(fs: WorkspaceFS | None = None, home: Path | None = None) -> list[SessionProvider]:
    """Return providers whose storage root exists."""
    return [p for p in get_providers(fs, home).values() if p.is_available()]
