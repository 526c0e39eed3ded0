"""Three-phase narrative state machine.

The phase is a pure function of the cumulative turn count:

    turns 0-4   diagnosis           understand what brings the client in
    turns 5-8   story_development   draw out specific, concrete stories
    turns 9+    resolution          consolidate insight, look forward

Resolution is terminal; the conversation stays there until the completion
detector or the exchange budget ends the loop.
"""

from typing import Literal

Phase = Literal["diagnosis", "story_development", "resolution"]

PHASES: tuple[Phase, ...] = ("diagnosis", "story_development", "resolution")

DIAGNOSIS_LAST_TURN = 4
STORY_LAST_TURN = 8

PHASE_LABELS: dict[Phase, str] = {
    "diagnosis": "Diagnosis",
    "story_development": "Story Development",
    "resolution": "Resolution",
}

_PHASE_GOALS: dict[Phase, str] = {
    "diagnosis": (
        "Build rapport and understand what brings the client in. "
        "Ask one open question about how the difficulty shows up day to day."
    ),
    "story_development": (
        "Invite one specific story: a single moment with a when, a where and "
        "the people involved. Ask what was said and what they noticed."
    ),
    "resolution": (
        "Help the client name what they have learned, the strengths they "
        "showed, and one concrete step they want to take next."
    ),
}


def phase_of(turn_count: int) -> Phase:
    if turn_count <= DIAGNOSIS_LAST_TURN:
        return "diagnosis"
    if turn_count <= STORY_LAST_TURN:
        return "story_development"
    return "resolution"


def phase_goal(phase: Phase) -> str:
    return _PHASE_GOALS[phase]
