"""FastAPI API endpoints under /api.

Endpoint groups: health and settings, and conversation sessions. Each
session's controls (start, stop, hard-stop, chat, cleanup) and views (state,
messages, events) are nested under /api/sessions/{session_id}/.
"""

from fastapi import APIRouter

from .sessions import router as sessions_router
from .settings import router as settings_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(sessions_router)
