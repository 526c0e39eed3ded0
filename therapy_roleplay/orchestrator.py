"""Conversation orchestrator: the automated therapist/patient turn loop.

One orchestrator owns one session. Turns run strictly one after another in a
single asyncio task:

    while turn_count < exchange_budget and running:
        stop requested?            → leave, nothing else happens
        execute one turn
        same role repeating itself → stop "repetitive" (turn not counted)
        count the turn, score it, check for completion
        completed?                 → stop with the completion reason
        short pause

stop() lets the streaming reply finish and halts at the next loop check.
hard_stop() also cancels the stream; the interrupted role speaks first on the
next start.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from therapy_roleplay.completion import detect_conversation_completion
from therapy_roleplay.config import OrchestratorSettings
from therapy_roleplay.llm import Generator
from therapy_roleplay.models import (
    CompletionResult,
    ConversationPreferences,
    ConversationState,
    Message,
    PersonaContext,
    Role,
    TurnResult,
    opposite,
)
from therapy_roleplay.phases import PHASE_LABELS
from therapy_roleplay.presentation import NullPresentation, Presentation
from therapy_roleplay.prompts import DEFAULT_OPENER
from therapy_roleplay.quality import QualityScorer
from therapy_roleplay.storage import MessageStore, StoreError
from therapy_roleplay.strategist import Strategist
from therapy_roleplay.turns import TurnCancelled, TurnExecutor

logger = logging.getLogger(__name__)

REASON_REPETITIVE = "repetitive"
REASON_BUDGET = "exchange budget reached"
REASON_STOPPED = "stopped"
REASON_ERROR = "error"


class ConversationRunning(RuntimeError):
    """Raised when an operation needs the turn loop to be idle."""


class ConversationOrchestrator:
    def __init__(
        self,
        session_id: str,
        generator: Generator,
        store: MessageStore,
        presentation: Presentation | None = None,
        settings: OrchestratorSettings | None = None,
        persona: PersonaContext | None = None,
        preferences: ConversationPreferences | None = None,
        strategist: Strategist | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session_id = session_id
        self.settings = settings or OrchestratorSettings()
        self.persona = persona or PersonaContext()
        self.presentation = presentation or NullPresentation()
        self.state = ConversationState(exchange_budget=self.settings.max_exchanges)
        self.messages: list[Message] = []
        self.scorer = QualityScorer(
            window=self.settings.analysis_window,
            history_limit=self.settings.history_limit,
            weights=self.settings.weights,
        )
        self.executor = TurnExecutor(
            session_id,
            self.state,
            self.messages,
            generator,
            store,
            self.presentation,
            self.settings,
            preferences=preferences,
            clock=clock,
            strategist=strategist,
        )
        self._store = store
        self._sleep = sleep
        self._stop_requested = False

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def load(self) -> list[Message]:
        """Resume from the store: replaces the in-memory message list."""
        if self.state.is_running:
            raise ConversationRunning(self.session_id)
        try:
            recent = self._store.list_recent(self.session_id, self.settings.history_context)
        except StoreError as e:
            logger.warning("could not load session %s: %s", self.session_id, e)
            self.presentation.on_warning(f"Conversation history could not be loaded: {e}")
            recent = []
        self.messages[:] = recent
        self.state.last_speaker = self._last_recorded_speaker()
        logger.info(
            "session %s loaded %d messages, last speaker %s",
            self.session_id, len(recent), self.state.last_speaker,
        )
        return list(self.messages)

    def cleanup(self) -> int:
        """Drop zero-length abandoned messages from the session and the store."""
        before = len(self.messages)
        self.messages[:] = [m for m in self.messages if m.text]
        removed = before - len(self.messages)
        try:
            self._store.prune_empty(self.session_id)
        except (StoreError, OSError) as e:
            logger.warning("cleanup could not prune store for %s: %s", self.session_id, e)
            self.presentation.on_warning(f"Cleanup failed: {e}")
        if removed:
            logger.debug("cleanup removed %d empty messages", removed)
        return removed

    def _last_recorded_speaker(self) -> Role | None:
        for m in reversed(self.messages):
            if m.is_blank or m.status != "sent":
                continue
            return "therapist" if m.speaker == "therapist" else "patient"
        return None

    def first_speaker(self, initial_role: Role | None = None) -> Role:
        if initial_role is not None:
            return initial_role
        last = self.state.last_speaker or self._last_recorded_speaker()
        if last is None:
            return "patient"
        return opposite(last)

    def _prior_utterance(self, role: Role) -> str:
        finished = self.executor.finished_messages()
        if finished:
            return finished[-1].text
        return DEFAULT_OPENER if role == "therapist" else ""

    def _reset(self) -> None:
        self.state.turn_count = 0
        self.state.exchange_budget = self.settings.max_exchanges
        self.state.completion = CompletionResult()
        self.state.stop_reason = None
        self.state.quality_history = []
        self.scorer.history.clear()

    # ------------------------------------------------------------------
    # Turn loop
    # ------------------------------------------------------------------

    async def start(self, initial_role: Role | None = None) -> str:
        """Run the turn loop until a stop condition. Returns the stop reason."""
        if self.state.is_running:
            raise ConversationRunning(self.session_id)
        self.cleanup()
        self._reset()
        self._stop_requested = False
        self.state.is_running = True

        role = self.first_speaker(initial_role)
        prior = self._prior_utterance(role)
        logger.info(
            "session %s started, %s speaks first, budget %d",
            self.session_id, role, self.state.exchange_budget,
        )

        reason = REASON_BUDGET
        failures = 0
        try:
            while self.state.turn_count < self.state.exchange_budget and self.state.is_running:
                if self._stop_requested:
                    reason = REASON_STOPPED
                    break
                try:
                    result = await self.executor.execute_turn(role, prior, self.persona)
                except TurnCancelled:
                    reason = REASON_STOPPED
                    break
                except Exception:
                    failures += 1
                    logger.exception(
                        "%s turn failed (%d in a row)", role, failures
                    )
                    if failures >= self.settings.max_consecutive_failures:
                        reason = REASON_ERROR
                        break
                    if self._stop_requested:
                        reason = REASON_STOPPED
                        break
                    role = opposite(role)
                    continue
                failures = 0

                if self.is_repetitive(role):
                    logger.info("%s is repeating itself, stopping", role)
                    reason = REASON_REPETITIVE
                    break

                self._after_turn()
                if self.state.completion.completed:
                    reason = self.state.completion.reason
                    break

                role, prior = result.next_role, result.response
                await self._sleep(self.settings.turn_delay)
        except asyncio.CancelledError:
            reason = REASON_STOPPED
            raise
        finally:
            self._finish(reason)
        return reason

    def is_repetitive(self, role: Role) -> bool:
        """Last N replies of `role` identical or sharing the same opening."""
        window = self.settings.repetition_window
        replies = [
            m.text for m in self.messages
            if m.speaker == role and m.status == "sent"
        ][-window:]
        if len(replies) < window:
            return False
        # identical replies share every prefix
        prefix = self.settings.repetition_prefix
        return len({r[:prefix] for r in replies}) == 1

    def _after_turn(self) -> None:
        previous = self.state.phase
        self.state.turn_count += 1
        phase = self.state.phase
        if phase != previous:
            logger.info(
                "session %s entered %s at turn %d",
                self.session_id, PHASE_LABELS[phase], self.state.turn_count,
            )
        finished = self.executor.finished_messages()
        self.scorer.score(finished, phase, self.state.turn_count)
        self.state.quality_history = list(self.scorer.history)
        self.state.completion = detect_conversation_completion(
            finished, phase, self.state.turn_count
        )

    def _finish(self, reason: str) -> None:
        self.state.is_running = False
        self.state.stop_reason = reason
        self.cleanup()
        logger.info(
            "session %s stopped after %d turns: %s",
            self.session_id, self.state.turn_count, reason,
        )
        self.presentation.on_conversation_stopped(reason)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """Halt after the current turn finishes."""
        if self.state.is_running:
            self._stop_requested = True

    def hard_stop(self) -> Role | None:
        """Halt now, cancelling the streaming reply. Returns the interrupted role."""
        self.stop()
        interrupted = self.executor.cancel()
        if interrupted is not None:
            self.state.last_speaker = opposite(interrupted)
            logger.info("hard stop interrupted %s turn", interrupted)
        return interrupted

    async def send_human_message(self, text: str) -> TurnResult | None:
        """Record an operator message and let the therapist answer it.

        Returns the therapist's turn, or None when it was hard-stopped.
        """
        if self.state.is_running:
            raise ConversationRunning(self.session_id)
        text = text.strip()
        if not text:
            raise ValueError("Message text must not be empty")

        message = Message(speaker="human", text=text, status="sent")
        self.messages.append(message)
        self.executor.save(message)
        self.presentation.on_turn_complete(message)
        self.state.last_speaker = "patient"

        self._stop_requested = False
        self.state.is_running = True
        try:
            result = await self.executor.execute_turn("therapist", text, self.persona)
        except TurnCancelled:
            return None
        finally:
            self.state.is_running = False
        self._after_turn()
        return result
