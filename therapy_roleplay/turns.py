"""Turn executor: one persona's utterance from instructions to persisted message.

Per turn:
  1. loop check over the recent window; inject an intervention block at most
     once per cooldown period
  2. therapist only: ask the strategist for advice, neutral advice on failure
  3. assemble instructions for the phase the turn will land in
  4. stream the reply through a StreamCollector
  5. therapist only: append a deepening follow-up when the reply invites no story
  6. persist (failures become presentation warnings)
  7. digest patient turns into the shared story summaries from story
     development onwards
  8. generation failures and empty streams are replaced by a fallback sentence
  9. hand the floor to the other role
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import re
import time
from collections.abc import Callable, Sequence

from therapy_roleplay.analyzers import (
    build_intervention_block,
    detect_conversation_loops,
    extract_story_elements,
    generate_deepening_prompt,
    has_story_prompt,
)
from therapy_roleplay.config import OrchestratorSettings
from therapy_roleplay.llm import Generator
from therapy_roleplay.models import (
    ConversationPreferences,
    ConversationState,
    Message,
    PersonaContext,
    Role,
    StrategyAdvice,
    TurnResult,
    opposite,
)
from therapy_roleplay.phases import Phase, phase_of
from therapy_roleplay.presentation import Presentation
from therapy_roleplay.prompts import build_instructions, detect_crisis
from therapy_roleplay.storage import MessageStore, StoreError
from therapy_roleplay.strategist import Strategist
from therapy_roleplay.streaming import StreamCollector

logger = logging.getLogger(__name__)

FALLBACK_SENTENCES: dict[Role, tuple[str, ...]] = {
    "therapist": (
        "I'd like to understand this better. Could you walk me through a "
        "recent moment when this came up?",
        "Let's slow down for a second. Can you describe the last time this "
        "happened, and who was there?",
        "I'm curious about the details. What happened right before you "
        "started feeling this way?",
    ),
    "patient": (
        "I'm not sure how to put it into words right now. I keep thinking "
        "about the last time it happened.",
        "It's hard to explain. Last week at home I kept going over it in my head.",
        "I need a moment. There was a conversation recently that stuck with me.",
    ),
}

SUMMARY_LENGTH = 160
_SENTENCE_END = re.compile(r"(?<=[.!?])\s")


class TurnCancelled(Exception):
    """The in-flight turn was interrupted by a hard stop."""

    def __init__(self, role: Role) -> None:
        super().__init__(f"{role} turn interrupted")
        self.role = role


def story_digest(text: str, limit: int = SUMMARY_LENGTH) -> str:
    """First sentence of `text`, cut to `limit` characters."""
    first = _SENTENCE_END.split(text.strip(), maxsplit=1)[0]
    if len(first) > limit:
        first = first[: limit - 3].rstrip() + "..."
    return first


class TurnExecutor:
    """Runs single turns against a session's shared message list.

    The executor and its orchestrator are the only writers of `state` and
    `messages`.
    """

    def __init__(
        self,
        session_id: str,
        state: ConversationState,
        messages: list[Message],
        generator: Generator,
        store: MessageStore,
        presentation: Presentation,
        settings: OrchestratorSettings,
        preferences: ConversationPreferences | None = None,
        clock: Callable[[], float] = time.monotonic,
        strategist: Strategist | None = None,
    ) -> None:
        self.session_id = session_id
        self.state = state
        self.messages = messages
        self._generator = generator
        self._store = store
        self._presentation = presentation
        self._settings = settings
        self.preferences = preferences
        self._clock = clock
        self._strategist = strategist
        self._fallbacks = {
            role: itertools.cycle(sentences)
            for role, sentences in FALLBACK_SENTENCES.items()
        }
        self._collector: StreamCollector | None = None
        self._current_role: Role | None = None

    @property
    def current_role(self) -> Role | None:
        """Role whose reply is streaming right now, if any."""
        return self._current_role

    def finished_messages(self) -> list[Message]:
        return [m for m in self.messages if m.status == "sent" and not m.is_blank]

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------

    async def execute_turn(
        self, role: Role, prior_utterance: str, persona: PersonaContext
    ) -> TurnResult:
        history = self.finished_messages()
        phase = phase_of(self.state.turn_count + 1)

        intervention = self._maybe_intervene(history)
        advice = await self._advise(history, persona) if role == "therapist" else None
        message = Message(speaker=role, status="streaming")
        self.messages.append(message)
        self._current_role = role

        try:
            text, failed = await self._generate(
                role, phase, persona, prior_utterance, intervention, advice, history, message
            )
        except (TurnCancelled, asyncio.CancelledError):
            message.status = "failed"
            message.error_detail = "interrupted"
            logger.info("%s turn interrupted after %d chars", role, len(message.text))
            raise
        except Exception:
            message.status = "failed"
            raise
        finally:
            self._collector = None
            self._current_role = None

        if role == "therapist" and prior_utterance and not has_story_prompt(text):
            bundle = extract_story_elements(prior_utterance, phase, self.state.turn_count)
            text = f"{text} {generate_deepening_prompt(bundle, phase)}"

        message.text = text
        message.status = "sent"
        self.save(message)

        if role == "patient" and phase != "diagnosis":
            self._add_summary(text)

        self.state.last_speaker = role
        self._presentation.on_turn_complete(message)
        logger.info(
            "turn done role=%s phase=%s chars=%d intervention=%s fallback=%s",
            role, phase, len(text), intervention is not None, failed,
        )
        return TurnResult(
            response=text,
            next_role=opposite(role),
            message=message,
            intervention_applied=intervention is not None,
            generation_failed=failed,
        )

    async def _generate(
        self,
        role: Role,
        phase: Phase,
        persona: PersonaContext,
        prior_utterance: str,
        intervention: str | None,
        advice: StrategyAdvice | None,
        history: Sequence[Message],
        message: Message,
    ) -> tuple[str, bool]:
        """Stream one reply. Returns (text, used_fallback)."""
        fallback = next(self._fallbacks[role])
        try:
            instructions = build_instructions(
                role,
                phase,
                persona,
                intervention=intervention,
                preferences=self.preferences,
                summaries=self.state.shared_story_summaries,
                crisis=role == "therapist" and detect_crisis(prior_utterance),
                strategy=advice,
            )
            context = self._transcript(history)
            source = self._generator.generate(role, instructions, context)

            def on_partial(text: str) -> None:
                message.text = text
                self._presentation.on_partial(message)

            self._collector = StreamCollector(source, on_partial=on_partial, fallback=fallback)
            text = await self._collector.start()
        except Exception as e:
            logger.warning("generation failed for %s, using fallback: %s", role, e)
            message.error_detail = str(e) or type(e).__name__
            return fallback, True

        if text is None:
            raise TurnCancelled(role)
        if self._collector.used_fallback:
            logger.warning("empty stream for %s, using fallback", role)
            message.error_detail = "empty stream"
            return text, True
        return text, False

    def cancel(self) -> Role | None:
        """Abort the streaming reply. Returns the interrupted role, or None."""
        if self._collector is not None and self._collector.cancel():
            return self._current_role
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _maybe_intervene(self, history: Sequence[Message]) -> str | None:
        report = detect_conversation_loops(history, window=self._settings.analysis_window)
        if not report.needs_intervention:
            return None
        now = self._clock()
        last = self.state.last_intervention_at
        if last is not None and now - last < self._settings.intervention_cooldown:
            logger.debug("loop detected but intervention cooling down")
            return None
        self.state.last_intervention_at = now
        logger.info(
            "loop intervention repetitions=%s themes=%s",
            report.repetitions, sorted(report.themes),
        )
        return build_intervention_block(report)

    def _transcript(self, history: Sequence[Message]) -> list[dict[str, str]]:
        return [
            {"speaker": m.speaker, "text": m.text}
            for m in history[-self._settings.history_context:]
        ]

    async def _advise(
        self, history: Sequence[Message], persona: PersonaContext
    ) -> StrategyAdvice | None:
        """Strategist advice for a therapist turn; neutral advice when it fails."""
        if self._strategist is None:
            return None
        try:
            advice = await self._strategist.advise(self._transcript(history), persona)
        except Exception as e:
            logger.warning("strategist failed, using neutral advice: %s", e)
            advice = StrategyAdvice()
        self.state.strategy = advice
        return advice

    def save(self, message: Message) -> bool:
        """Persist `message`. A failure is reported, never raised."""
        try:
            self._store.append(self.session_id, message)
        except StoreError as e:
            logger.warning("could not persist %s message: %s", message.speaker, e)
            self._presentation.on_warning(f"Message could not be saved: {e}")
            return False
        return True

    def _add_summary(self, text: str) -> None:
        summaries = self.state.shared_story_summaries
        summaries.append(story_digest(text))
        del summaries[: -self._settings.history_limit]
