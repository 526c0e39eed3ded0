"""Banned filler phrases: detection and substitution.

The substitution table is applied word-boundary safe and case-insensitive,
longest phrase first. No replacement contains a banned phrase or matches a
loose pattern, so filtering is idempotent.
"""

import re
from collections.abc import Iterable

# Vague filler the personas fall back on when a conversation goes stale.
FILLER_PHRASES: tuple[str, ...] = (
    "walking on eggshells",
    "draining",
    "exhausting",
    "overwhelming",
    "heavy load",
    "it sounds like",
    "that must feel",
    "it's understandable",
    "takes courage",
)

PHRASE_REPLACEMENTS: dict[str, str] = {
    "walking on eggshells": "navigating carefully",
    "incredibly draining": "really demanding",
    "it's understandable": "it makes sense",
    "it sounds like": "I'm hearing that",
    "that must feel": "that might feel",
    "takes courage": "takes real strength",
    "heavy load": "heavy burden",
    "overwhelming": "intense",
    "exhausting": "wearing",
    "draining": "demanding",
    "i guess": "I think",
    "honestly": "truly",
    "cycle": "pattern",
}

# Looser variants, applied after the table.
LOOSE_REPLACEMENTS: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(
            r"\b(?:it|that) sounds (?:really |so |incredibly |very )?"
            r"(?:hard|tough|difficult|challenging|painful)\b",
            re.IGNORECASE,
        ),
        "help me understand what made that so hard",
    ),
    (re.compile(r"\bit sounds\b", re.IGNORECASE), "help me understand"),
    (
        re.compile(
            r"\bthat must (?:be|have been) (?:so |really |incredibly )?"
            r"(?:hard|tough|difficult)\b",
            re.IGNORECASE,
        ),
        "tell me more about that",
    ),
)


def _phrase_pattern(phrase: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(phrase)}\b", re.IGNORECASE)


_TABLE: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (_phrase_pattern(p), r)
    for p, r in sorted(PHRASE_REPLACEMENTS.items(), key=lambda kv: -len(kv[0]))
)
_FILLER: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (p, _phrase_pattern(p)) for p in FILLER_PHRASES
)


def _keep_case(replacement: str):
    def sub(match: re.Match[str]) -> str:
        if match.group(0)[:1].isupper():
            return replacement[:1].upper() + replacement[1:]
        return replacement
    return sub


def filter_banned_phrases(text: str) -> str:
    """Replace banned phrases and their loose variants in `text`."""
    for pattern, replacement in _TABLE:
        text = pattern.sub(_keep_case(replacement), text)
    for pattern, replacement in LOOSE_REPLACEMENTS:
        text = pattern.sub(_keep_case(replacement), text)
    return text


def count_filler_phrases(texts: Iterable[str]) -> dict[str, int]:
    """Occurrences of each filler phrase across `texts`. Absent phrases are omitted."""
    counts: dict[str, int] = {}
    for text in texts:
        for phrase, pattern in _FILLER:
            n = len(pattern.findall(text))
            if n:
                counts[phrase] = counts.get(phrase, 0) + n
    return counts


def contains_filler(text: str) -> bool:
    return any(pattern.search(text) for _, pattern in _FILLER)
