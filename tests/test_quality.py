"""Tests for therapy_roleplay.quality: sub-scores, overall and history."""

from therapy_roleplay.quality import QualityScorer, round_half_up

STORY_PROMPTS = [
    "Tell me about that evening.",
    "Can you walk me through what happened?",
    "Could you describe the kitchen?",
]


def _conversation(make_messages, therapist_lines, patient_line="ok"):
    pairs = []
    for line in therapist_lines:
        pairs.append(("patient", patient_line))
        pairs.append(("therapist", line))
    return make_messages(*pairs)


def test_all_filler_therapist_scores_zero_loop_breaking(make_messages):
    messages = _conversation(
        make_messages,
        ["It sounds like a lot.", "That is draining.", "So overwhelming."],
    )
    snap = QualityScorer().score(messages, "diagnosis", 6)
    assert snap.loop_breaking_score == 0


def test_single_filler_each_message_still_zero(make_messages):
    messages = _conversation(make_messages, ["Tell me more, it sounds like a lot."])
    snap = QualityScorer().score(messages, "diagnosis", 2)
    assert snap.loop_breaking_score == 0
    assert snap.story_extraction_score == 100


def test_clean_story_prompts_score_full(make_messages):
    messages = _conversation(make_messages, STORY_PROMPTS)
    snap = QualityScorer().score(messages, "diagnosis", 6)
    assert snap.story_extraction_score == 100
    assert snap.loop_breaking_score == 100


def test_partial_story_extraction(make_messages):
    messages = _conversation(make_messages, ["Tell me about it.", "I see.", "Okay.", "Right."])
    snap = QualityScorer(window=8).score(messages, "diagnosis", 8)
    assert snap.story_extraction_score == 25


def test_no_therapist_messages(make_messages):
    snap = QualityScorer().score(make_messages(("patient", "Hello.")), "diagnosis", 1)
    assert snap.story_extraction_score == 0
    assert snap.loop_breaking_score == 100


def test_window_is_last_six_messages(make_messages):
    messages = make_messages(("therapist", "It sounds like a lot.")) + _conversation(
        make_messages, STORY_PROMPTS
    )
    assert len(messages) == 7
    snap = QualityScorer().score(messages, "diagnosis", 7)
    assert snap.loop_breaking_score == 100


def test_phase_progression_for_rich_patient_story(make_messages):
    messages = make_messages(
        ("patient", 'Yesterday at home my mom said "you never listen" and I felt angry.'),
    )
    snap = QualityScorer().score(messages, "story_development", 5)
    assert snap.phase_progression_score == 100


def test_resolution_bonus_only_in_resolution(make_messages):
    messages = make_messages(("patient", "I have a plan for next week"))
    scorer = QualityScorer()
    assert scorer.score(messages, "diagnosis", 9).phase_progression_score == 0
    assert scorer.score(messages, "resolution", 9).phase_progression_score == 20


def test_hope_words_earn_resolution_bonus(make_messages):
    messages = make_messages(("patient", "I hope things get easier."))
    scorer = QualityScorer()
    base = scorer.score(messages, "diagnosis", 9).phase_progression_score
    assert scorer.score(messages, "resolution", 9).phase_progression_score == base + 10


def test_overall_uses_weights(make_messages):
    messages = _conversation(make_messages, ["Tell me about it.", "I see."])
    snap = QualityScorer().score(messages, "diagnosis", 4)
    expected = round_half_up(
        0.4 * snap.story_extraction_score
        + 0.4 * snap.loop_breaking_score
        + 0.2 * snap.phase_progression_score
    )
    assert snap.overall == expected
    assert snap.overall == 60


def test_history_keeps_ten_most_recent(make_messages):
    scorer = QualityScorer()
    messages = _conversation(make_messages, STORY_PROMPTS)
    for turn in range(1, 13):
        scorer.score(messages, "diagnosis", turn)
    assert len(scorer.history) == 10
    assert [s.turn for s in scorer.history] == list(range(3, 13))


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(0.5) == 1
    assert round_half_up(2.4) == 2
