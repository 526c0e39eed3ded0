"""In-process registry of live conversation sessions.

Each session id maps to one orchestrator, its event recorder and, while the
turn loop runs, the asyncio task driving it. Sessions are created lazily and
resume from the message store on first use.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from therapy_roleplay.config import get_config, settings_from_config
from therapy_roleplay.llm import Generator, make_generator
from therapy_roleplay.models import PersonaContext, Role
from therapy_roleplay.orchestrator import ConversationOrchestrator, ConversationRunning
from therapy_roleplay.presentation import EventRecorder
from therapy_roleplay.storage import JsonMessageStore, validate_session_id
from therapy_roleplay.strategist import make_strategist

logger = logging.getLogger(__name__)


class Session:
    def __init__(self, orchestrator: ConversationOrchestrator, events: EventRecorder) -> None:
        self.orchestrator = orchestrator
        self.events = events
        self.task: asyncio.Task[str] | None = None

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()


class SessionRegistry:
    def __init__(self, data_dir: Path, generator: Generator | None = None) -> None:
        self.data_dir = data_dir
        self.store = JsonMessageStore(data_dir)
        self._generator = generator
        self._sessions: dict[str, Session] = {}

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def open(self, session_id: str, persona: PersonaContext | None = None) -> Session:
        """Return the live session, creating and loading it on first use."""
        validate_session_id(session_id)
        session = self._sessions.get(session_id)
        if session is None:
            connection, settings, preferences = settings_from_config(get_config(self.data_dir))
            events = EventRecorder()
            orchestrator = ConversationOrchestrator(
                session_id,
                self._generator or make_generator(connection),
                self.store,
                presentation=events,
                settings=settings,
                persona=persona,
                preferences=preferences,
                strategist=make_strategist(connection),
            )
            orchestrator.load()
            session = Session(orchestrator=orchestrator, events=events)
            self._sessions[session_id] = session
            logger.info("opened session %s", session_id)
        elif persona is not None:
            session.orchestrator.persona = persona
        return session

    def launch(self, session_id: str, initial_role: Role | None = None) -> Session:
        """Start the turn loop in a background task."""
        session = self.open(session_id)
        if session.running or session.orchestrator.state.is_running:
            raise ConversationRunning(session_id)
        session.task = asyncio.create_task(
            session.orchestrator.start(initial_role),
            name=f"conversation-{session_id}",
        )
        return session

    async def wait(self, session_id: str) -> str | None:
        """Wait for the session's turn loop to end. Returns its stop reason."""
        session = self._sessions.get(session_id)
        if session is None or session.task is None:
            return None
        return await session.task

    async def shutdown(self) -> None:
        for session in self._sessions.values():
            if session.running:
                session.orchestrator.hard_stop()
        tasks = [s.task for s in self._sessions.values() if s.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
