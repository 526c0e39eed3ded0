"""Generation client: streamed utterances from a text-generation backend.

The turn executor injects a generator matching the protocol:

    def generate(self, role, instructions, history) -> AsyncIterator[str]: ...

`role` is the persona speaking ("therapist" or "patient"), `instructions` the
assembled system text for this turn, and `history` the recent transcript as
[{"speaker": ..., "text": ...}] dicts, oldest first. The iterator yields zero
or more text chunks and then ends; it may raise GenerationError before or
during streaming.

Two implementations are provided:

    HttpGenerator:  real streaming HTTP client. Selected by provider_format:
                     "sse" for the session server's text/event-stream routes,
                     "openai" for OpenAI-compatible chat completions.
    EchoGenerator:  streams the previous utterance back word by word. Useful
                     for smoke-testing the orchestrator without a model.

Tests use scripted generators defined in the test helpers instead.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Literal, Protocol

import httpx

from therapy_roleplay.config import GeneratorConnection
from therapy_roleplay.models import Role

logger = logging.getLogger(__name__)

History = list[dict[str, str]]


# ---------------------------------------------------------------------------
# Protocol: every generator implementation must match this signature
# ---------------------------------------------------------------------------

class Generator(Protocol):
    def generate(
        self, role: Role, instructions: str, history: History
    ) -> AsyncIterator[str]: ...


# ---------------------------------------------------------------------------
# HttpGenerator: streams from a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["sse", "openai"]


class HttpGenerator:
    """Async streaming HTTP client for generation backends.

    Supported formats:
      "sse":     POST /api/generate/{role}  {"role", "instructions", "history"}
                  Response: text/event-stream of `data: <text>` lines. A short
                  numeric data line carries the session id and is skipped.
                  `event: crisis` ends the stream with the crisis message.
      "openai":  POST /v1/chat/completions  {"model", "messages", "stream": true}
                  Response: `data: {json}` lines with choices[0].delta.content,
                  terminated by `data: [DONE]`.

    Args:
        provider_url:    Base URL of the backend, e.g. "http://localhost:4000".
        api_key:         Bearer token, or empty string if not required.
        provider_format: Wire format to use. Defaults to "sse".
        model:           Model identifier, used only by the openai format.
        timeout:         HTTP timeout in seconds. Defaults to 120.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "sse",
        model: str = "",
        timeout: float = 120.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(
        self, role: Role, instructions: str, history: History
    ) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        if self._format == "openai":
            url = f"{self._base_url}/v1/chat/completions"
            messages = [{"role": "system", "content": instructions}]
            for entry in history:
                chat_role = "assistant" if entry.get("speaker") == role else "user"
                messages.append({"role": chat_role, "content": entry.get("text", "")})
            body: dict = {"messages": messages, "stream": True}
            if self._model:
                body["model"] = self._model
            return url, body

        # sse (default)
        url = f"{self._base_url}/api/generate/{role}"
        return url, {"role": role, "instructions": instructions, "history": history}

    async def generate(
        self, role: Role, instructions: str, history: History
    ) -> AsyncIterator[str]:
        url, body = self._build_request(role, instructions, history)
        logger.debug(
            "generate role=%s url=%s instructions_len=%d history=%d",
            role, url, len(instructions), len(history),
        )

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                async with client.stream(
                    "POST", url, json=body, headers=self._headers()
                ) as resp:
                    resp.raise_for_status()
                    lines = resp.aiter_lines()
                    chunks = (
                        _openai_chunks(lines) if self._format == "openai"
                        else _sse_chunks(lines)
                    )
                    async for chunk in chunks:
                        yield chunk
        except httpx.ConnectError as e:
            raise GenerationError(
                f"Cannot connect to generation backend at {self._base_url}"
            ) from e
        except httpx.HTTPStatusError as e:
            raise GenerationError(
                f"Generation backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise GenerationError(
                f"Generation backend timed out after {self._timeout}s"
            ) from e
        except httpx.TransportError as e:
            raise GenerationError(f"Generation stream broke off: {e}") from e


def _is_session_id(content: str) -> bool:
    stripped = content.strip()
    return stripped.isdigit() and len(stripped) < 10


async def _sse_chunks(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    crisis = False
    async for line in lines:
        if line.startswith("event: crisis"):
            crisis = True
            continue
        if not line.startswith("data: "):
            continue
        content = line[len("data: "):]
        if crisis:
            logger.warning("crisis event received from generation backend")
            yield content
            return
        if not content.strip() or _is_session_id(content):
            continue
        yield content + "\n"


async def _openai_chunks(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    async for line in lines:
        if not line.startswith("data: "):
            continue
        payload = line[len("data: "):].strip()
        if payload == "[DONE]":
            return
        try:
            choice = json.loads(payload)["choices"][0]
        except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
            raise GenerationError(
                "Unexpected response format from OpenAI-compatible backend"
            ) from e
        content = (choice.get("delta") or {}).get("content")
        if content:
            yield content


# ---------------------------------------------------------------------------
# EchoGenerator: streams the previous utterance back; no network calls
# ---------------------------------------------------------------------------

class EchoGenerator:
    """Repeats the last history entry one word at a time.

    Lets you verify the orchestrator wiring (alternation, streaming, storage
    writes, loop and repetition stops) end-to-end without a running model.
    With no history it yields nothing, which exercises the empty-stream
    fallback.
    """

    async def generate(
        self, role: Role, instructions: str, history: History
    ) -> AsyncIterator[str]:
        logger.debug("EchoGenerator role=%s history=%d", role, len(history))
        if not history:
            return
        words = history[-1].get("text", "").split(" ")
        for i, word in enumerate(words):
            yield word if i == 0 else " " + word


# ---------------------------------------------------------------------------
# GenerationError: raised by generators for all connection and protocol failures
# ---------------------------------------------------------------------------

class GenerationError(RuntimeError):
    """Raised when the generation backend cannot be reached or returns an error."""


def make_generator(connection: GeneratorConnection) -> Generator:
    """Build the generator described by a stored connection."""
    if connection.provider_format == "echo" or not connection.provider_url:
        return EchoGenerator()
    return HttpGenerator(
        provider_url=connection.provider_url,
        api_key=connection.api_key,
        provider_format=connection.provider_format,
        model=connection.model,
        timeout=connection.timeout,
    )
