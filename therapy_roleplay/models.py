"""Core domain models.

The orchestrator, executor, analyzers and stores all operate on these types.
Pydantic is used for validation and serialisation at every data boundary.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from therapy_roleplay.phases import Phase, phase_of

Role = Literal["therapist", "patient"]
Speaker = Literal["therapist", "patient", "human"]
MessageStatus = Literal["pending", "streaming", "sent", "failed"]
Sentiment = Literal["positive", "negative", "neutral", "urgent", "confused"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def opposite(role: Role) -> Role:
    """The role that speaks after `role`."""
    return "patient" if role == "therapist" else "therapist"


class Message(BaseModel):
    """A single utterance in a session's message list.

    Text grows in place while status is "streaming"; the message is frozen
    by convention once it reaches "sent" or "failed".
    """

    speaker: Speaker
    text: str = ""
    created_at: datetime = Field(default_factory=_utcnow)
    status: MessageStatus = "pending"
    error_detail: str | None = None

    @property
    def is_blank(self) -> bool:
        return not self.text.strip()


class CompletionResult(BaseModel):
    completed: bool = False
    reason: str = ""


class QualitySnapshot(BaseModel):
    """One scoring pass over the recent message window."""

    model_config = ConfigDict(frozen=True)

    turn: int
    story_extraction_score: int = Field(ge=0, le=100)
    loop_breaking_score: int = Field(ge=0, le=100)
    phase_progression_score: int = Field(ge=0, le=100)
    overall: int = Field(ge=0, le=100)


class StoryElementBundle(BaseModel):
    """Per-message story-element counts. Recomputed from raw text, never stored."""

    time_references: int = 0
    location_references: int = 0
    people_references: int = 0
    sensory_details: int = 0
    dialogue_fragments: int = 0
    emotional_states: int = 0
    internal_thoughts: int = 0

    def counts(self) -> dict[str, int]:
        return {
            "time": self.time_references,
            "location": self.location_references,
            "people": self.people_references,
            "sensory": self.sensory_details,
            "dialogue": self.dialogue_fragments,
            "emotion": self.emotional_states,
            "thought": self.internal_thoughts,
        }

    @property
    def depth(self) -> int:
        """Number of distinct non-empty categories (0-7)."""
        return sum(1 for n in self.counts().values() if n > 0)

    @property
    def completeness(self) -> int:
        """Sum of all category counts."""
        return sum(self.counts().values())

    @property
    def needs_deepening(self) -> bool:
        return self.depth < 3 or self.completeness < 5


class LoopReport(BaseModel):
    has_loop: bool = False
    theme_repetition: bool = False
    repetitions: dict[str, int] = Field(default_factory=dict)
    themes: set[str] = Field(default_factory=set)

    @property
    def needs_intervention(self) -> bool:
        return self.has_loop or self.theme_repetition


class PersonaContext(BaseModel):
    """What the instruction templates know about the two personas."""

    patient_name: str = "the client"
    presenting_problem: str = ""
    background: str = ""
    personality: str = ""
    therapist_name: str = "the therapist"


class ConversationPreferences(BaseModel):
    """Closed set of recognised tuning options for instruction assembly.

    tone:       neutral adds nothing; casual/professional add a register line.
    verbosity:  0 adds nothing; 1-100 asks for increasingly brief replies.
    approach:   balanced adds nothing; empathetic/solution_focused add a focus line.
    """

    tone: Literal["neutral", "casual", "professional"] = "neutral"
    verbosity: int = Field(default=0, ge=0, le=100)
    approach: Literal["balanced", "empathetic", "solution_focused"] = "balanced"


class StrategyAdvice(BaseModel):
    """Strategist guidance for the therapist's next turn.

    The defaults are the neutral advice used whenever no strategist answer
    is available.
    """

    sentiment: Sentiment = "neutral"
    strategy: str = "Continue with supportive conversation"
    rationale: str = "Maintaining supportive approach"
    next_steps: list[str] = Field(
        default_factory=lambda: ["Continue listening and providing support"]
    )


class ConversationState(BaseModel):
    """The orchestrator's mutable record of one running conversation."""

    turn_count: int = Field(default=0, ge=0)
    last_speaker: Role | None = None
    is_running: bool = False
    exchange_budget: int = 10
    last_intervention_at: float | None = None
    shared_story_summaries: list[str] = Field(default_factory=list)
    completion: CompletionResult = Field(default_factory=CompletionResult)
    quality_history: list[QualitySnapshot] = Field(default_factory=list)
    stop_reason: str | None = None
    strategy: StrategyAdvice | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def phase(self) -> Phase:
        return phase_of(self.turn_count)


class TurnResult(BaseModel):
    response: str
    next_role: Role
    message: Message
    intervention_applied: bool = False
    generation_failed: bool = False
