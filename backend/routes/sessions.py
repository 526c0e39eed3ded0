"""Conversation session endpoints, nested under /api/sessions/{session_id}/."""

from fastapi import APIRouter, HTTPException, Request

from backend.sessions import Session, SessionRegistry
from therapy_roleplay.orchestrator import ConversationRunning

from .models import ChatBody, StartBody

router = APIRouter(prefix="/sessions")


def _registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def _open(registry: SessionRegistry, session_id: str, **kwargs) -> Session:
    try:
        return registry.open(session_id, **kwargs)
    except ValueError as e:
        raise HTTPException(400, str(e))


def _existing(registry: SessionRegistry, session_id: str) -> Session:
    session = registry.get(session_id)
    if session is None:
        if session_id not in registry.store.list_sessions():
            raise HTTPException(404, "Session not found")
        session = _open(registry, session_id)
    return session


def _state(session: Session) -> dict:
    data = session.orchestrator.state.model_dump(mode="json")
    data["running"] = session.running or session.orchestrator.state.is_running
    return data


@router.post("/{session_id}/start")
async def start_session(session_id: str, request: Request, body: StartBody | None = None):
    """Start the automated turn loop in the background."""
    body = body or StartBody()
    registry = _registry(request)
    _open(registry, session_id, persona=body.persona)
    try:
        session = registry.launch(session_id, body.initial_role)
    except ConversationRunning:
        raise HTTPException(409, "Session is already running")
    return _state(session)


@router.post("/{session_id}/stop")
async def stop_session(session_id: str, request: Request):
    """Stop after the current turn finishes."""
    session = _existing(_registry(request), session_id)
    session.orchestrator.stop()
    return _state(session)


@router.post("/{session_id}/hard-stop")
async def hard_stop_session(session_id: str, request: Request):
    """Stop now, cancelling the reply being streamed."""
    session = _existing(_registry(request), session_id)
    interrupted = session.orchestrator.hard_stop()
    return {"interrupted": interrupted, **_state(session)}


@router.post("/{session_id}/chat")
async def chat(session_id: str, body: ChatBody, request: Request):
    """Send an operator message; the therapist answers it."""
    registry = _registry(request)
    session = _open(registry, session_id)
    if session.running:
        raise HTTPException(409, "Session is already running")
    try:
        result = await session.orchestrator.send_human_message(body.message)
    except ConversationRunning:
        raise HTTPException(409, "Session is already running")
    except ValueError as e:
        raise HTTPException(400, str(e))
    if result is None:
        return {"interrupted": True, "state": _state(session)}
    return {**result.model_dump(mode="json"), "state": _state(session)}


@router.get("/{session_id}/state")
async def get_state(session_id: str, request: Request):
    return _state(_existing(_registry(request), session_id))


@router.get("/{session_id}/messages")
async def get_messages(session_id: str, request: Request):
    session = _existing(_registry(request), session_id)
    return [m.model_dump(mode="json") for m in session.orchestrator.messages]


@router.get("/{session_id}/events")
async def get_events(session_id: str, request: Request, since: int = 0):
    """Events recorded after sequence number `since`, for polling."""
    session = _existing(_registry(request), session_id)
    return session.events.since(since)


@router.post("/{session_id}/cleanup")
async def cleanup_session(session_id: str, request: Request):
    """Prune empty abandoned messages."""
    session = _existing(_registry(request), session_id)
    if session.running:
        raise HTTPException(409, "Session is already running")
    return {"removed": session.orchestrator.cleanup()}
