"""CLI entry point for aichat-bridge."""

import json
import logging

import click
import uvicorn

from .core import AgentType
from .errors import SessionNotFoundError
from .sessions import SessionService

AGENT_CHOICE = click.Choice([a.value for a in AgentType])


def _agent(value: str | None) -> AgentType | None:
    return AgentType(value) if value else None


@click.group()
def main():
    """Browse and chat with Claude Code, OpenCode and Codex sessions."""
    pass


@main.command()
@click.option("--port", default=8080, help="Port to serve on.")
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
@click.option("--log-level", default="info", type=click.Choice(["debug", "info", "warning", "error"]))
def serve(port: int, host: str, log_level: str):
    """Start the HTTP and WebSocket server."""
    logging.basicConfig(level=log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    click.echo(f"Starting aichat-bridge on http://{host}:{port}")
    uvicorn.run("aichat_bridge.server:app", host=host, port=port, reload=False, log_level=log_level)


@main.command("list")
@click.option("--agent", type=AGENT_CHOICE, help="Only list this agent's sessions.")
@click.option("--limit", default=20, show_default=True)
@click.option("--offset", default=0)
@click.option("--json", "as_json", is_flag=True, help="Print JSON.")
def list_sessions(agent: str | None, limit: int, offset: int, as_json: bool):
    """List sessions, newest first."""
    page = SessionService().list(_agent(agent), limit=limit, offset=offset)
    if as_json:
        click.echo(json.dumps(page.to_dict(), indent=2))
        return

    for s in page.sessions:
        title = s.name or s.first_prompt or ""
        click.echo(f"{s.last_activity:%Y-%m-%d %H:%M}  {s.agent_type.value:<11}  {s.id}  "
                   f"{s.message_count:>4} msgs  {title[:60]}")
    if page.has_more:
        click.echo(f"... {page.total - offset - len(page.sessions)} more (use --offset)")


@main.command()
@click.argument("session_id")
@click.option("--agent", type=AGENT_CHOICE)
@click.option("--json", "as_json", is_flag=True, help="Print JSON.")
def show(session_id: str, agent: str | None, as_json: bool):
    """Print a session's transcript."""
    try:
        detail = SessionService().get(session_id, _agent(agent))
    except SessionNotFoundError as e:
        raise click.ClickException(str(e))

    if as_json:
        click.echo(json.dumps(detail.to_dict(), indent=2))
        return

    for msg in detail.messages:
        if msg.type == "tool_use":
            click.secho(f"[tool_use {msg.tool_name}]", fg="yellow")
            if msg.tool_input:
                click.echo(msg.tool_input)
        elif msg.type == "tool_result":
            click.secho("[tool_result]", fg="yellow")
            click.echo(msg.content or "")
        else:
            click.secho(f"{msg.type}:", fg="cyan" if msg.type == "user" else "green", bold=True)
            click.echo(msg.content or "")
        click.echo()


@main.command()
@click.argument("query")
@click.option("--agent", type=AGENT_CHOICE)
def search(query: str, agent: str | None):
    """Search stored sessions for QUERY (case-insensitive)."""
    hits = SessionService().search(query, _agent(agent))
    if not hits:
        click.echo("No matches.")
        return
    for hit in hits:
        click.echo(f"{hit.agent_type.value:<11}  {hit.id}  {hit.match_count} matches")


@main.command()
@click.argument("session_id")
@click.argument("name", required=False)
@click.option("--clear", is_flag=True, help="Remove the custom name.")
def rename(session_id: str, name: str | None, clear: bool):
    """Give a session a display name, or --clear it."""
    service = SessionService()
    if clear:
        service.clear_name(session_id)
        click.echo(f"Cleared name of {session_id}")
        return
    if not name:
        raise click.UsageError("NAME is required unless --clear is given")
    try:
        saved = service.rename(session_id, name)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="NAME")
    click.echo(f"Renamed {session_id} to {saved!r}")


@main.command()
@click.argument("session_id")
@click.option("--agent", type=AGENT_CHOICE)
@click.confirmation_option(prompt="Delete this session's files?")
def delete(session_id: str, agent: str | None):
    """Delete a session's stored files."""
    result = SessionService().delete(session_id, _agent(agent))
    if not result.success:
        raise click.ClickException(result.error or "Delete failed")
    click.echo(f"Deleted {session_id}")
