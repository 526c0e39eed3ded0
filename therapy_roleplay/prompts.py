"""Handlebars instruction templates for the two personas."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from typing import Any

import pybars

from therapy_roleplay.analyzers import FILLER_PHRASES
from therapy_roleplay.models import (
    ConversationPreferences,
    PersonaContext,
    Role,
    StrategyAdvice,
)
from therapy_roleplay.phases import PHASE_LABELS, Phase, phase_goal

logger = logging.getLogger(__name__)

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return compiled(context)
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Templates ────────────────────────────────────────────

THERAPIST_TEMPLATE = """\
You are {{{therapist_name}}}, a warm and skilled therapist in a session with {{{patient_name}}}.
Phase: {{{phase_label}}}. {{{phase_goal}}}
{{#if problem}}
What brings them in: {{{problem}}}
{{/if}}
{{#if summaries}}
Story so far:
{{#each summaries}}
- {{{this}}}
{{/each}}
{{/if}}
{{#if intervention}}

{{{intervention}}}
{{/if}}
{{#if strategy}}

Strategic guidance: {{{strategy}}}
{{#if rationale}}
Why: {{{rationale}}}
{{/if}}
{{#if next_steps}}
For this reply:
{{#each next_steps}}
- {{{this}}}
{{/each}}
{{/if}}
{{/if}}
{{#if sentiment_note}}
{{{sentiment_note}}}
{{/if}}
{{#if crisis}}

{{{crisis}}}
{{/if}}
{{#if preferences}}
Style: {{{preferences}}}
{{/if}}
Speak one short turn as the therapist. Ask at most one question and ask for \
specifics rather than reflecting feelings back in general terms.
Never use these phrases: {{{banned}}}.
"""

PATIENT_TEMPLATE = """\
You are {{{patient_name}}}, a client talking with {{{therapist_name}}} in a therapy session.
{{#if problem}}
What you are struggling with: {{{problem}}}
{{/if}}
{{#if background}}
Background: {{{background}}}
{{/if}}
{{#if personality}}
Personality: {{{personality}}}
{{/if}}
Phase: {{{phase_label}}}. {{{patient_goal}}}
{{#if summaries}}
What you have shared so far:
{{#each summaries}}
- {{{this}}}
{{/each}}
{{/if}}
{{#if intervention}}

{{{intervention}}}
{{/if}}
{{#if preferences}}
Style: {{{preferences}}}
{{/if}}
Speak one short turn in the first person. Answer with concrete moments: \
when it happened, where you were, who was there and what was said.
Never use these phrases: {{{banned}}}.
"""

_PATIENT_GOALS: dict[Phase, str] = {
    "diagnosis": "Describe what has been hard lately and how it shows up in your week.",
    "story_development": "Tell one specific recent moment in detail, including what you felt and thought.",
    "resolution": "Notice what has shifted, what you could try next, and what gives you hope.",
}

DEFAULT_OPENER = (
    "Hello, I am here for therapy. I have been struggling with some issues."
)

# ── Preferences ──────────────────────────────────────────


def preferences_instruction(prefs: ConversationPreferences | None) -> str:
    """Sentence list for the recognised tuning options, or "" when all are neutral."""
    if prefs is None:
        return ""
    parts: list[str] = []
    if prefs.verbosity > 0:
        if prefs.verbosity <= 25:
            parts.append("Keep responses somewhat concise")
        elif prefs.verbosity <= 50:
            parts.append("Keep responses moderately concise")
        elif prefs.verbosity <= 75:
            parts.append("Keep responses quite concise")
        else:
            parts.append("Keep responses very brief and concise")
    if prefs.approach == "empathetic":
        parts.append("Be empathetic and emotionally supportive")
    elif prefs.approach == "solution_focused":
        parts.append("Focus on providing practical solutions and advice")
    if prefs.tone == "casual":
        parts.append("Use a casual and friendly tone")
    elif prefs.tone == "professional":
        parts.append("Maintain a professional and formal approach")
    return ". ".join(parts) + "." if parts else ""


# ── Crisis protocol ──────────────────────────────────────

_CRISIS_RE = re.compile(
    r"\b(?:suicid(?:e|al)|kill(?:ing)? myself|end(?:ing)? my life|take my own life"
    r"|self[- ]harm|hurt(?:ing)? myself|want(?:ed)? to die|better off dead"
    r"|no reason to (?:live|go on))\b",
    re.IGNORECASE,
)

CRISIS_BLOCK = (
    "SAFETY FIRST: the client has said something that may indicate a risk of "
    "self-harm. Acknowledge their distress with care. State that you are an AI "
    "and cannot provide crisis support, and that if they are in immediate "
    "danger they can call or text 988 (US and Canada), text HOME to 741741, or "
    "call their local emergency number. Do not diagnose. Do not end the "
    "conversation abruptly."
)


def detect_crisis(text: str) -> bool:
    return bool(_CRISIS_RE.search(text))


# ── Strategist advice ────────────────────────────────────

_SENTIMENT_NOTES: dict[str, str] = {
    "urgent": (
        "The client seems to be in acute distress. Safety comes first: respond "
        "calmly, validate what they feel and stay with them."
    ),
    "negative": "The client's mood is low. Listen, validate and gently explore.",
    "positive": "The client's mood is positive. Notice what is working for them.",
    "confused": "The client seems confused. Keep your reply simple and clear.",
}


# ── Assembly ─────────────────────────────────────────────


def build_instructions(
    role: Role,
    phase: Phase,
    persona: PersonaContext,
    *,
    intervention: str | None = None,
    preferences: ConversationPreferences | None = None,
    summaries: Sequence[str] = (),
    crisis: bool = False,
    strategy: StrategyAdvice | None = None,
) -> str:
    """Assemble the system instructions for one turn.

    The crisis block and strategist advice are only ever added for the
    therapist.
    """
    advice = strategy if role == "therapist" else None
    context: dict[str, Any] = {
        "therapist_name": persona.therapist_name,
        "patient_name": persona.patient_name,
        "problem": persona.presenting_problem,
        "background": persona.background,
        "personality": persona.personality,
        "phase_label": PHASE_LABELS[phase],
        "phase_goal": phase_goal(phase),
        "patient_goal": _PATIENT_GOALS[phase],
        "summaries": list(summaries),
        "intervention": intervention or "",
        "crisis": CRISIS_BLOCK if crisis and role == "therapist" else "",
        "strategy": advice.strategy if advice else "",
        "rationale": advice.rationale if advice else "",
        "next_steps": list(advice.next_steps) if advice else [],
        "sentiment_note": _SENTIMENT_NOTES.get(advice.sentiment, "") if advice else "",
        "preferences": preferences_instruction(preferences),
        "banned": ", ".join(f'"{p}"' for p in FILLER_PHRASES),
    }
    template = THERAPIST_TEMPLATE if role == "therapist" else PATIENT_TEMPLATE
    text = render_prompt(template, context)
    return re.sub(r"\n{3,}", "\n\n", text).strip()
