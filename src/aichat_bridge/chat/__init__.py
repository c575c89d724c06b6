"""Live chat: backends, stream parsers, turn supervision and sessions."""

from ..config import get_chat_workdir, get_container_name, get_container_user, get_opencode_server_url
from ..core import AgentType
from ..errors import PreconditionFailedError
from .backends import ChatBackend, ClaudeCliBackend, OpenCodeCliBackend, OpenCodeServerBackend


def create_backend(agent_type: AgentType, workdir: str | None = None) -> ChatBackend:
    """Build the chat backend for an agent from the environment.

    OpenCode goes through `opencode serve` when AICHAT_OPENCODE_SERVER_URL is
    set and through `opencode run` otherwise. Codex has no live chat.
    """
    workdir = workdir or get_chat_workdir()
    container = get_container_name()
    user = get_container_user() if container else None

    if agent_type == AgentType.CLAUDE_CODE:
        return ClaudeCliBackend(workdir=workdir, container=container, container_user=user)

    if agent_type == AgentType.OPENCODE:
        server_url = get_opencode_server_url()
        if server_url:
            return OpenCodeServerBackend(server_url)
        return OpenCodeCliBackend(workdir=workdir, container=container, container_user=user)

    raise PreconditionFailedError(f"Live chat is not supported for {agent_type.value}")
