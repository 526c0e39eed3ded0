"""Text pattern analyzers.

Pure functions over message text, no state beyond their inputs:
  loops:    filler-phrase and theme repetition over the recent window
  story:    story-element extraction and deepening follow-ups
  phrases:  banned filler phrases and their substitutions
"""

from .loops import build_intervention_block, detect_conversation_loops  # noqa: F401
from .phrases import (  # noqa: F401
    FILLER_PHRASES,
    contains_filler,
    count_filler_phrases,
    filter_banned_phrases,
)
from .story import (  # noqa: F401
    extract_story_elements,
    generate_deepening_prompt,
    has_story_prompt,
)
