"""Response quality scoring over the recent message window.

Three independent sub-scores, each clamped to 0-100:

  story extraction   share of therapist messages that invite a concrete story
  loop breaking      100 minus 20 per filler phrase in therapist messages,
                     capped by the share of therapist messages free of filler
  phase progression  story depth/completeness of patient messages, plus a
                     resolution and hope keyword bonus in the resolution phase

overall = round(0.4 * story + 0.4 * loop + 0.2 * phase)
"""

from __future__ import annotations

import logging
import math
from collections import deque
from collections.abc import Sequence

from therapy_roleplay.analyzers import (
    contains_filler,
    count_filler_phrases,
    extract_story_elements,
    has_story_prompt,
)
from therapy_roleplay.completion import count_hope_indicators, count_resolution_indicators
from therapy_roleplay.models import Message, QualitySnapshot
from therapy_roleplay.phases import Phase

logger = logging.getLogger(__name__)

SCORE_WINDOW = 6
HISTORY_LIMIT = 10
FILLER_PENALTY = 20
RESOLUTION_BONUS = 10


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value: float) -> int:
    return max(0, min(100, round_half_up(value)))


def story_extraction_score(therapist: Sequence[Message]) -> int:
    if not therapist:
        return 0
    eliciting = sum(1 for m in therapist if has_story_prompt(m.text))
    return _clamp(eliciting / len(therapist) * 100)


def loop_breaking_score(therapist: Sequence[Message]) -> int:
    if not therapist:
        return 100
    occurrences = sum(count_filler_phrases(m.text for m in therapist).values())
    clean = sum(1 for m in therapist if not contains_filler(m.text))
    return _clamp(min(100 - FILLER_PENALTY * occurrences, clean / len(therapist) * 100))


def phase_progression_score(patient: Sequence[Message], phase: Phase) -> int:
    if not patient:
        return 0
    total = 0
    for i, m in enumerate(patient):
        bundle = extract_story_elements(m.text, phase, i)
        total += min(100, bundle.depth * 25) + min(50, bundle.completeness * 5)
    score = total / len(patient)
    if phase == "resolution":
        matches = sum(
            count_resolution_indicators(m.text) + count_hope_indicators(m.text)
            for m in patient
        )
        score += RESOLUTION_BONUS * matches
    return _clamp(score)


class QualityScorer:
    """Scores the recent window and keeps a rolling snapshot history."""

    def __init__(
        self,
        window: int = SCORE_WINDOW,
        history_limit: int = HISTORY_LIMIT,
        weights: tuple[float, float, float] = (0.4, 0.4, 0.2),
    ) -> None:
        self._window = window
        self._weights = weights
        self.history: deque[QualitySnapshot] = deque(maxlen=history_limit)

    def score(
        self, messages: Sequence[Message], phase: Phase, turn_count: int
    ) -> QualitySnapshot:
        recent = [m for m in messages if not m.is_blank][-self._window:]
        therapist = [m for m in recent if m.speaker == "therapist"]
        patient = [m for m in recent if m.speaker != "therapist"]

        story = story_extraction_score(therapist)
        loop = loop_breaking_score(therapist)
        progression = phase_progression_score(patient, phase)
        w_story, w_loop, w_phase = self._weights
        snapshot = QualitySnapshot(
            turn=turn_count,
            story_extraction_score=story,
            loop_breaking_score=loop,
            phase_progression_score=progression,
            overall=_clamp(w_story * story + w_loop * loop + w_phase * progression),
        )
        self.history.append(snapshot)
        logger.debug(
            "quality turn=%d story=%d loop=%d phase=%d overall=%d",
            turn_count, story, loop, progression, snapshot.overall,
        )
        return snapshot
