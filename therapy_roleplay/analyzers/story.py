"""Story-element extraction and deepening prompts.

Counts lexical markers of a concrete story in one message: when, where, who,
what was sensed (including physical sensation), what was said, what was felt
and what was thought. Depth is the number of categories present; completeness
is the total number of markers.
"""

import re

from therapy_roleplay.models import StoryElementBundle
from therapy_roleplay.phases import Phase

_I = re.IGNORECASE

_TIME = re.compile(
    r"\b(?:yesterday|today|tonight|this (?:morning|afternoon|evening|week)"
    r"|last (?:night|week|month|year|summer|winter|time)"
    r"|(?:\d+|a few|two|three|several) (?:days?|weeks?|months?|years?) ago"
    r"|when i was|back then|that (?:day|night|morning|evening)"
    r"|monday|tuesday|wednesday|thursday|friday|saturday|sunday|weekend"
    r"|christmas|thanksgiving|birthday|\d{1,2}(?::\d{2})?\s?(?:am|pm))\b",
    _I,
)
_LOCATION = re.compile(
    r"\b(?:home|house|apartment|kitchen|bedroom|living room|bathroom|office"
    r"|work|school|car|restaurant|hospital|park|store|street|church|gym"
    r"|parking lot|meeting room)\b",
    _I,
)
_PEOPLE = re.compile(
    r"\b(?:mom|mother|dad|father|parents?|sister|brother|wife|husband|partner"
    r"|boyfriend|girlfriend|son|daughter|kids?|children|friends?|boss|manager"
    r"|coworkers?|colleagues?|teacher|neighbou?r|grandm(?:a|other)|grandp(?:a|arent))\b",
    _I,
)
_SENSORY = re.compile(
    r"\b(?:saw|see|seeing|heard|hear|smell(?:ed)?|tast(?:e|ed)|touch(?:ed)?"
    r"|loud|quiet|silence|bright|dark|cold|warm|"
    # physical sensation
    r"heart (?:was )?(?:racing|pounding)|chest|stomach|shaking|trembling"
    r"|sweating|tight(?:ness)?|tense|breath(?:ing)?|knot)\b",
    _I,
)
_DIALOGUE = re.compile(
    r"\"[^\"]+\"|“[^”]+”"
    r"|\b(?:said|says|told me|asked|yelled|shouted|whispered|replied|screamed)\b",
    _I,
)
_EMOTION = re.compile(
    r"\b(?:angry|sad|scared|afraid|anxious|frustrated|hurt|ashamed|guilty"
    r"|lonely|alone|happy|relieved|nervous|upset|worried|embarrassed"
    r"|hopeless|hopeful|furious|panicked|numb)\b",
    _I,
)
_THOUGHT = re.compile(
    r"\b(?:i thought|i think|i wondered|i realized|i realised|i kept thinking"
    r"|i told myself|in my head|i felt like|i knew|i remember thinking"
    r"|i couldn't stop thinking)\b",
    _I,
)

# Missing-category priority for deepening prompts.
_DEEPENING_ORDER: tuple[tuple[str, str], ...] = (
    ("time", "when this happened"),
    ("location", "where you were"),
    ("people", "who was there with you"),
    ("sensory", "what you noticed around you or in your body"),
    ("dialogue", "what was actually said"),
    ("emotion", "what you were feeling in that moment"),
)

# Therapist phrasings that invite a concrete story.
STORY_PROMPT_PHRASES: tuple[str, ...] = (
    "tell me about",
    "tell me more",
    "can you describe",
    "could you describe",
    "walk me through",
    "paint me a picture",
    "what happened",
    "a time when",
    "specific moment",
    "specific time",
    "story",
    "what was that like",
    "what did you notice",
    "what was said",
    "help me understand",
)

_GENERIC_DEEPENING: dict[Phase, str] = {
    "diagnosis": "What feels most important for me to understand about this?",
    "story_development": "What happened right after that, and what went through your mind?",
    "resolution": "Looking back on that moment, what would you like to carry forward?",
}


def extract_story_elements(
    text: str, phase: Phase = "diagnosis", turn_index: int = 0
) -> StoryElementBundle:
    """Count story-element markers in one message.

    `phase` and `turn_index` are accepted so callers can pass the message's
    position; the counts themselves depend only on the text.
    """
    return StoryElementBundle(
        time_references=len(_TIME.findall(text)),
        location_references=len(_LOCATION.findall(text)),
        people_references=len(_PEOPLE.findall(text)),
        sensory_details=len(_SENSORY.findall(text)),
        dialogue_fragments=len(_DIALOGUE.findall(text)),
        emotional_states=len(_EMOTION.findall(text)),
        internal_thoughts=len(_THOUGHT.findall(text)),
    )


def has_story_prompt(text: str) -> bool:
    low = text.lower()
    return any(p in low for p in STORY_PROMPT_PHRASES)


def missing_categories(bundle: StoryElementBundle, limit: int = 2) -> list[str]:
    counts = bundle.counts()
    return [name for name, _ in _DEEPENING_ORDER if counts[name] == 0][:limit]


def generate_deepening_prompt(bundle: StoryElementBundle, phase: Phase) -> str:
    """One follow-up sentence asking for up to two missing story elements."""
    missing = missing_categories(bundle)
    if not missing:
        return _GENERIC_DEEPENING[phase]
    fragments = dict(_DEEPENING_ORDER)
    asked = " and ".join(fragments[name] for name in missing)
    return f"Could you tell me more about {asked}?"
