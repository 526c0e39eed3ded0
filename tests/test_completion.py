"""Tests for therapy_roleplay.completion: natural completion rules."""

import pytest

from therapy_roleplay.completion import (
    EXTENDED_COMPLETION,
    NATURAL_COMPLETION,
    RESOLUTION_PHASE_COMPLETION,
    count_hope_indicators,
    count_resolution_indicators,
    detect_conversation_completion,
)

CLOSING = "I feel better, thank you for listening. I have a plan and I'm ready."


@pytest.mark.parametrize("turn", range(0, 8))
def test_never_completed_before_turn_eight(make_messages, turn):
    messages = make_messages(("patient", CLOSING), ("patient", CLOSING))
    result = detect_conversation_completion(messages, "resolution", turn)
    assert not result.completed


def test_hopeful_next_week_in_resolution(make_messages):
    messages = make_messages(
        ("patient", "I feel hopeful about next week"),
        ("therapist", "What would that look like?"),
        ("patient", "I feel hopeful about next week"),
        ("therapist", "What feels different now?"),
    )
    result = detect_conversation_completion(messages, "resolution", 11)
    assert result.completed
    assert result.reason == RESOLUTION_PHASE_COMPLETION
    assert "resolution phase" in result.reason


def test_closing_phrase_with_resolution(make_messages):
    messages = make_messages(("therapist", "How are you leaving today?"), ("patient", CLOSING))
    result = detect_conversation_completion(messages, "story_development", 8)
    assert result.completed
    assert result.reason == NATURAL_COMPLETION


def test_closing_phrase_alone_is_not_enough(make_messages):
    messages = make_messages(("patient", "Thank you for listening."))
    assert not detect_conversation_completion(messages, "story_development", 8).completed


def test_resolution_rule_needs_turn_ten(make_messages):
    messages = make_messages(("patient", "I feel hopeful about next week, hopeful really."))
    assert not detect_conversation_completion(messages, "resolution", 9).completed
    assert detect_conversation_completion(messages, "resolution", 10).completed


def test_extended_conversation(make_messages):
    messages = make_messages(("patient", "I'm hopeful, optimistic and confident."))
    result = detect_conversation_completion(messages, "story_development", 12)
    assert result.completed
    assert result.reason == EXTENDED_COMPLETION
    assert not detect_conversation_completion(messages, "story_development", 11).completed


def test_only_last_four_messages_scanned(make_messages):
    messages = make_messages(
        ("patient", CLOSING),
        ("therapist", "Go on."),
        ("patient", "Okay."),
        ("therapist", "Go on."),
        ("patient", "Okay."),
    )
    assert not detect_conversation_completion(messages, "resolution", 12).completed


def test_therapist_text_ignored(make_messages):
    messages = make_messages(("therapist", CLOSING), ("therapist", CLOSING))
    assert not detect_conversation_completion(messages, "resolution", 12).completed


def test_human_messages_count_as_patient(make_messages):
    messages = make_messages(("human", CLOSING))
    assert detect_conversation_completion(messages, "resolution", 8).completed


def test_indicator_counts():
    assert count_resolution_indicators("Next week I will try a new plan.") == 3
    assert count_hope_indicators("I feel hopeful, I hope so.") == 2
    assert count_hope_indicators("hopefully") == 0
