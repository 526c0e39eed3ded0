"""Conversational loop detection over the recent message window."""

from collections.abc import Sequence

from therapy_roleplay.models import LoopReport, Message

from .phrases import count_filler_phrases

LOOP_WINDOW = 6
LOOP_THRESHOLD = 2
MAX_REPEATED_THEMES = 2
MIN_MESSAGES_FOR_THEMES = 4

THEME_KEYWORDS: dict[str, tuple[str, ...]] = {
    "family_conflict": (
        "family", "mom", "mother", "dad", "father", "parents", "sister",
        "brother", "husband", "wife", "partner", "in-laws",
    ),
    "exhaustion": (
        "tired", "exhausted", "exhausting", "draining", "drained", "fatigue",
        "worn out", "no energy", "can't sleep",
    ),
    "arguments": (
        "argue", "arguing", "argument", "fight", "fighting", "yelling",
        "shouting", "conflict", "blow up",
    ),
}


def _themes_in(text: str) -> set[str]:
    low = text.lower()
    return {
        theme for theme, words in THEME_KEYWORDS.items()
        if any(w in low for w in words)
    }


def detect_conversation_loops(
    messages: Sequence[Message], window: int = LOOP_WINDOW
) -> LoopReport:
    """Tally filler phrases and coarse themes across the last `window` messages.

    A loop is any filler phrase seen at least twice. Theme repetition is a
    window of four or more messages that never leaves two themes.
    """
    recent = [m for m in messages if not m.is_blank][-window:]
    texts = [m.text for m in recent]

    repetitions = count_filler_phrases(texts)
    themes: set[str] = set()
    for text in texts:
        themes |= _themes_in(text)

    return LoopReport(
        has_loop=any(n >= LOOP_THRESHOLD for n in repetitions.values()),
        theme_repetition=(
            len(themes) <= MAX_REPEATED_THEMES
            and len(recent) >= MIN_MESSAGES_FOR_THEMES
        ),
        repetitions=repetitions,
        themes=themes,
    )


def build_intervention_block(report: LoopReport) -> str:
    """Instruction text that steers the next reply out of a detected loop."""
    lines = ["LOOP INTERVENTION: the conversation is going in circles."]
    repeated = sorted(p for p, n in report.repetitions.items() if n >= LOOP_THRESHOLD)
    if repeated:
        quoted = ", ".join(f'"{p}"' for p in repeated)
        lines.append(f"Do not use these phrases again: {quoted}.")
    if report.theme_repetition and report.themes:
        names = ", ".join(sorted(t.replace("_", " ") for t in report.themes))
        lines.append(f"The last several messages keep returning to: {names}.")
    lines.append(
        "Move to one specific, concrete moment that has not been discussed yet: "
        "when it happened, where, who was there, and what was said."
    )
    return "\n".join(lines)
