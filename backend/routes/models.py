"""Pydantic request models for API endpoints."""

from pydantic import BaseModel

from therapy_roleplay.models import PersonaContext, Role


class StartBody(BaseModel):
    initial_role: Role | None = None
    persona: PersonaContext | None = None


class ChatBody(BaseModel):
    message: str
