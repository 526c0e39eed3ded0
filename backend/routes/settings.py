"""Health check and settings endpoints."""

from fastapi import APIRouter, HTTPException, Request
from pydantic import ValidationError

from therapy_roleplay.config import get_config, update_config

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/settings")
async def get_settings(request: Request):
    """Get settings (generator connection, orchestrator tuning, preferences)."""
    return get_config(request.app.state.sessions.data_dir)


@router.patch("/settings")
async def update_settings(body: dict, request: Request):
    """Update settings (partial merge). Applies to sessions opened afterwards."""
    try:
        return update_config(request.app.state.sessions.data_dir, body)
    except ValidationError as e:
        raise HTTPException(422, str(e))
