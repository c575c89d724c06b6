"""FastAPI web server for aichat-bridge."""

import asyncio
import logging

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .chat import create_backend
from .chat.session import IDLE, ChatSession
from .core import AgentType, ChatEvent
from .errors import PreconditionFailedError, SessionNotFoundError, TurnInProgressError
from .sessions import SessionService

logger = logging.getLogger(__name__)

app = FastAPI(title="aichat-bridge", version="0.1.0")

# Service cache (populated on first request)
_service: SessionService | None = None


def _get_service() -> SessionService:
    """Lazily initialize and cache the session service."""
    global _service
    if _service is None:
        _service = SessionService()
        logger.info("Session providers: %s", [a.value for a in _service.providers])
    return _service


def _parse_agent(value: str | None) -> AgentType | None:
    if not value:
        return None
    agent = AgentType.parse(value)
    if agent is None:
        raise HTTPException(status_code=400, detail=f"Unknown agent type: {value}")
    return agent


class RenameRequest(BaseModel):
    name: str


@app.exception_handler(SessionNotFoundError)
async def _not_found(request: Request, exc: SessionNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(PreconditionFailedError)
async def _precondition_failed(request: Request, exc: PreconditionFailedError):
    return JSONResponse(status_code=412, content={"detail": str(exc)})


# ── Routes ───────────────────────────────────────────────────────


@app.get("/api/sources")
async def get_sources():
    """Return the agent types whose storage exists."""
    return [a.value for a in _get_service().available_agents()]


@app.get("/api/sessions")
async def get_sessions(
    agent: str | None = Query(None, description="Filter by agent type"),
    limit: int = Query(50, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    """Return non-empty sessions across all agents, newest first."""
    page = _get_service().list(_parse_agent(agent), limit=limit, offset=offset)
    return page.to_dict()


@app.get("/api/session/{session_id}")
async def get_session(session_id: str, agent: str | None = Query(None)):
    """Return the full transcript of a session."""
    return _get_service().get(session_id, _parse_agent(agent)).to_dict()


@app.get("/api/search")
async def search_sessions(q: str = Query("", description="Text to search for"), agent: str | None = Query(None)):
    """Search stored session files for `q`, case-insensitively."""
    if not q.strip():
        raise HTTPException(status_code=400, detail="Query must not be empty")
    hits = _get_service().search(q, _parse_agent(agent))
    return {"results": [h.to_dict() for h in hits]}


@app.put("/api/session/{session_id}/name")
async def rename_session(session_id: str, body: RenameRequest):
    try:
        name = _get_service().rename(session_id, body.name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "name": name}


@app.delete("/api/session/{session_id}/name")
async def clear_session_name(session_id: str):
    _get_service().clear_name(session_id)
    return {"success": True}


@app.delete("/api/session/{session_id}")
async def delete_session(session_id: str, agent: str | None = Query(None)):
    result = _get_service().delete(session_id, _parse_agent(agent))
    if not result.success and result.error == "Session not found":
        raise HTTPException(status_code=404, detail=result.error)
    return result.to_dict()


@app.get("/api/recent")
async def get_recent(limit: int = Query(10, ge=1, le=20)):
    return [r.to_dict() for r in _get_service().recent.get_recent(limit)]


# ── Live chat ────────────────────────────────────────────────────


@app.websocket("/ws/chat/{agent}")
async def chat_socket(websocket: WebSocket, agent: str):
    """Relay control messages to a ChatSession and its events back.

    Inbound: {"type": "message", "content", "sessionId"?, "model"?} and
    {"type": "interrupt"}. Outbound: ChatEvent dicts.
    """
    await websocket.accept()

    agent_type = AgentType.parse(agent)
    try:
        if agent_type is None:
            raise PreconditionFailedError(f"Unknown agent type: {agent}")
        backend = create_backend(agent_type)
    except PreconditionFailedError as e:
        await websocket.send_json(ChatEvent(type="error", content=str(e)).to_dict())
        await websocket.close(code=1008)
        return

    service = _get_service()
    session = ChatSession(
        backend,
        session_id=websocket.query_params.get("sessionId") or None,
        model=websocket.query_params.get("model") or None,
        history=lambda sid: service.get(sid, agent_type).messages,
    )

    async def pump():
        async for event in session.events:
            await websocket.send_json(event.to_dict())

    async def run_turn(content: str):
        try:
            await session.send_message(content)
        except TurnInProgressError as e:
            session.events.put(ChatEvent(type="error", content=str(e)))

    pump_task = asyncio.create_task(pump())
    # an interrupted turn can still be unwinding when the next one starts
    turn_tasks: set[asyncio.Task] = set()

    try:
        while True:
            data = await websocket.receive_json()
            msg_type = data.get("type") if isinstance(data, dict) else None

            if msg_type == "message":
                content = (data.get("content") or "").strip()
                if not content:
                    continue
                if session.state != IDLE:
                    session.events.put(ChatEvent(type="error", content=str(TurnInProgressError())))
                    continue
                if data.get("model"):
                    session.set_model(data["model"])
                if data.get("sessionId") and not session.session_id:
                    session.session_id = data["sessionId"]
                task = asyncio.create_task(run_turn(content))
                turn_tasks.add(task)
                task.add_done_callback(turn_tasks.discard)

            elif msg_type == "interrupt":
                await session.interrupt()

            else:
                session.events.put(ChatEvent(type="error", content=f"Unknown message type: {msg_type}"))

    except WebSocketDisconnect:
        logger.info("Chat socket for %s disconnected", agent)
    finally:
        await session.close()
        await asyncio.gather(*turn_tasks, return_exceptions=True)
        pump_task.cancel()
        await backend.aclose()
