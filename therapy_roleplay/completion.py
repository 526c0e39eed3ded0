"""Natural conversation completion detection.

Rules, first match wins:
  1. fewer than 8 turns                       → continue
  2. scan patient text in the last 4 messages for closing phrases,
     resolution keywords and hope keywords
  3. closing phrase and (resolution ≥ 2 or hope ≥ 2)          → completed
  4. resolution phase, turn ≥ 10, (resolution ≥ 2 or hope ≥ 2) → completed
  5. turn ≥ 12 and (resolution ≥ 3 or hope ≥ 3)                → completed
  6. otherwise                                                 → continue
"""

import logging
import re
from collections.abc import Iterable, Sequence

from therapy_roleplay.models import CompletionResult, Message
from therapy_roleplay.phases import Phase

logger = logging.getLogger(__name__)

MIN_TURNS = 8
COMPLETION_WINDOW = 4

CLOSING_PHRASES: tuple[str, ...] = (
    "i feel better",
    "i'm feeling better",
    "thank you for listening",
    "thanks for listening",
    "thank you so much",
    "this really helped",
    "this has been helpful",
    "thanks for your help",
    "i know what to do now",
    "i appreciate you listening",
)

RESOLUTION_INDICATORS: tuple[str, ...] = (
    "next week",
    "future",
    "plan",
    "moving forward",
    "going forward",
    "progress",
    "strength",
    "stronger",
    "step",
    "ready",
    "try",
    "better",
)

HOPE_INDICATORS: tuple[str, ...] = (
    "hope",
    "hopeful",
    "optimistic",
    "looking forward",
    "excited",
    "possible",
    "believe",
    "confident",
    "lighter",
)

NATURAL_COMPLETION = "natural completion with resolution indicators"
RESOLUTION_PHASE_COMPLETION = "resolution phase completed with hope elements"
EXTENDED_COMPLETION = "extended conversation reached resolution"


def _keyword_pattern(words: Iterable[str]) -> re.Pattern[str]:
    alternation = "|".join(re.escape(w) for w in sorted(words, key=len, reverse=True))
    return re.compile(rf"\b(?:{alternation})\b", re.IGNORECASE)


_RESOLUTION_RE = _keyword_pattern(RESOLUTION_INDICATORS)
_HOPE_RE = _keyword_pattern(HOPE_INDICATORS)


def count_resolution_indicators(text: str) -> int:
    return len(_RESOLUTION_RE.findall(text))


def count_hope_indicators(text: str) -> int:
    return len(_HOPE_RE.findall(text))


def detect_conversation_completion(
    messages: Sequence[Message], phase: Phase, turn_count: int
) -> CompletionResult:
    if turn_count < MIN_TURNS:
        return CompletionResult(completed=False, reason="minimum turns not reached")

    patient_text = " ".join(
        m.text for m in messages[-COMPLETION_WINDOW:] if m.speaker != "therapist"
    )
    low = patient_text.lower()
    has_completion_signal = any(p in low for p in CLOSING_PHRASES)
    resolution_score = count_resolution_indicators(patient_text)
    hope_score = count_hope_indicators(patient_text)
    logger.debug(
        "completion check turn=%d phase=%s signal=%s resolution=%d hope=%d",
        turn_count, phase, has_completion_signal, resolution_score, hope_score,
    )

    if has_completion_signal and (resolution_score >= 2 or hope_score >= 2):
        return CompletionResult(completed=True, reason=NATURAL_COMPLETION)
    if (
        phase == "resolution"
        and turn_count >= 10
        and (resolution_score >= 2 or hope_score >= 2)
    ):
        return CompletionResult(completed=True, reason=RESOLUTION_PHASE_COMPLETION)
    if turn_count >= 12 and (resolution_score >= 3 or hope_score >= 3):
        return CompletionResult(completed=True, reason=EXTENDED_COMPLETION)
    return CompletionResult(completed=False, reason="conversation continuing")
