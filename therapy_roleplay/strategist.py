"""Strategist collaborator: advice for the therapist before each of its turns.

The turn executor optionally injects a strategist matching:

    async def advise(self, history, persona) -> StrategyAdvice: ...

`history` is the recent transcript as [{"speaker": ..., "text": ...}] dicts,
oldest first. The advice (sentiment, strategy, rationale, next steps) is
rendered into the therapist's instructions. Any failure falls back to the
neutral StrategyAdvice() defaults, so a missing strategist never blocks a turn.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx
from pydantic import ValidationError

from therapy_roleplay.config import GeneratorConnection
from therapy_roleplay.llm import GenerationError, History
from therapy_roleplay.models import PersonaContext, StrategyAdvice

logger = logging.getLogger(__name__)

STRATEGIST_TIMEOUT = 30.0


class Strategist(Protocol):
    async def advise(
        self, history: History, persona: PersonaContext
    ) -> StrategyAdvice: ...


class HttpStrategist:
    """Asks the session server's observer route for advice.

    POST {base}/api/observer
        {"messages": [{"text", "sender": "user" | "ai"}], "initialForm": {...}}
    Response: {"sentiment", "strategy", "rationale", "next_steps"}

    The therapist's lines are sent as "ai", everyone else as "user".
    """

    def __init__(
        self, provider_url: str, api_key: str = "", timeout: float = STRATEGIST_TIMEOUT
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def advise(
        self, history: History, persona: PersonaContext
    ) -> StrategyAdvice:
        url = f"{self._base_url}/api/observer"
        body: dict = {
            "messages": [
                {
                    "text": entry.get("text", ""),
                    "sender": "ai" if entry.get("speaker") == "therapist" else "user",
                }
                for entry in history
            ],
        }
        form = _initial_form(persona)
        if form:
            body["initialForm"] = form

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
                data = resp.json()
        except httpx.ConnectError as e:
            raise GenerationError(f"Cannot connect to strategist at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise GenerationError(
                f"Strategist returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise GenerationError(f"Strategist timed out after {self._timeout}s") from e
        except httpx.TransportError as e:
            raise GenerationError(f"Strategist request failed: {e}") from e
        except ValueError as e:
            raise GenerationError("Unexpected response format from strategist") from e

        try:
            advice = StrategyAdvice.model_validate(data)
        except ValidationError as e:
            raise GenerationError("Unexpected response format from strategist") from e
        logger.debug("strategist advice sentiment=%s strategy=%r", advice.sentiment, advice.strategy)
        return advice


def _initial_form(persona: PersonaContext) -> dict[str, str]:
    form = {
        "preferredName": persona.patient_name,
        "reasonForVisit": persona.presenting_problem,
        "additionalContext": persona.background,
    }
    return {k: v for k, v in form.items() if v}


def make_strategist(connection: GeneratorConnection) -> Strategist | None:
    """The observer route only exists on the session server (sse format)."""
    if (
        not connection.strategist
        or connection.provider_format != "sse"
        or not connection.provider_url
    ):
        return None
    return HttpStrategist(connection.provider_url, api_key=connection.api_key)
