from collections.abc import AsyncIterator, Callable

import pytest

from therapy_roleplay.config import OrchestratorSettings
from therapy_roleplay.models import Message, Role
from therapy_roleplay.presentation import EventRecorder
from therapy_roleplay.storage import MemoryMessageStore


class ScriptedGenerator:
    """Streams scripted replies per role and records every call.

    A reply is a str (streamed word by word), a list of chunks, or an
    exception instance to raise instead of streaming. When a role's script
    runs out its last entry repeats.
    """

    def __init__(
        self,
        therapist: list | None = None,
        patient: list | None = None,
    ) -> None:
        self.scripts: dict[str, list] = {
            "therapist": list(therapist or ["Tell me about a specific moment."]),
            "patient": list(patient or ["Last week at home my sister yelled at me."]),
        }
        self.calls: list[dict] = []

    async def generate(
        self, role: Role, instructions: str, history: list[dict[str, str]]
    ) -> AsyncIterator[str]:
        self.calls.append({"role": role, "instructions": instructions, "history": history})
        script = self.scripts[role]
        reply = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(reply, BaseException):
            raise reply
        chunks = reply if isinstance(reply, list) else _words(reply)
        for chunk in chunks:
            yield chunk


def _words(text: str) -> list[str]:
    parts = text.split(" ")
    return [p if i == 0 else " " + p for i, p in enumerate(parts)]


@pytest.fixture
def store() -> MemoryMessageStore:
    return MemoryMessageStore()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def settings() -> OrchestratorSettings:
    return OrchestratorSettings(turn_delay=0)


@pytest.fixture
def scripted() -> Callable[..., ScriptedGenerator]:
    return ScriptedGenerator


@pytest.fixture
def make_messages() -> Callable[..., list[Message]]:
    """Build sent messages from (speaker, text) pairs."""

    def make(*pairs: tuple[str, str]) -> list[Message]:
        return [Message(speaker=s, text=t, status="sent") for s, t in pairs]

    return make
