"""Tests for therapy_roleplay.phases: the turn-count phase machine."""

import pytest

from therapy_roleplay.phases import PHASE_LABELS, PHASES, phase_goal, phase_of


@pytest.mark.parametrize(
    "turn, expected",
    [
        (0, "diagnosis"),
        (1, "diagnosis"),
        (4, "diagnosis"),
        (5, "story_development"),
        (8, "story_development"),
        (9, "resolution"),
        (250, "resolution"),
    ],
)
def test_phase_thresholds(turn, expected):
    assert phase_of(turn) == expected


def test_phase_never_goes_backwards():
    order = {p: i for i, p in enumerate(PHASES)}
    ranks = [order[phase_of(t)] for t in range(60)]
    assert ranks == sorted(ranks)


def test_every_phase_has_label_and_goal():
    for phase in PHASES:
        assert PHASE_LABELS[phase]
        assert phase_goal(phase)
