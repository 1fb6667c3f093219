from __future__ import annotations

import pytest

from story_branch.core.quantum_choice import collapse_quantum_choice, create_quantum_choice
from story_branch.core.scenarios import war_sacrifice_scenario
from story_branch.domain.errors import ChoiceNotFound
from story_branch.domain.models import WorldState


def test_quantum_choice_folds_candidates_into_weighted_outcomes() -> None:
    scenario = war_sacrifice_scenario()
    choices = scenario.script.choices
    candidates = [
        choices["analyze-intel"],
        choices["send-word-to-team"],
        choices["protect-intel"],
        choices["save-team"],
    ]

    quantum = create_quantum_choice(
        candidates, WorldState(premise_progression=15), scenario.premise
    )

    assert quantum.candidate_ids() == ["analyze-intel", "send-word-to-team", "protect-intel"]
    assert sum(outcome.probability for outcome in quantum.outcomes) == pytest.approx(1.0, abs=1e-3)
    assert quantum.quantum_duration == 2
    assert len(quantum.collapse_conditions) == 3
    assert quantum.quantum_id == create_quantum_choice(
        candidates, WorldState(premise_progression=15), scenario.premise
    ).quantum_id


def test_premise_testing_candidates_carry_more_weight() -> None:
    scenario = war_sacrifice_scenario()
    choices = scenario.script.choices
    quantum = create_quantum_choice(
        [choices["protect-intel"], choices["plan-final-strike"]],
        WorldState(),
        scenario.premise,
    )
    by_id = {outcome.choice_id: outcome.probability for outcome in quantum.outcomes}
    assert by_id["protect-intel"] > by_id["plan-final-strike"]


def test_quantum_choice_needs_two_candidates() -> None:
    scenario = war_sacrifice_scenario()
    with pytest.raises(ValueError, match="at least two"):
        create_quantum_choice(
            [scenario.script.choices["save-team"]], WorldState(), scenario.premise
        )


def test_collapse_returns_committed_candidate_or_raises() -> None:
    scenario = war_sacrifice_scenario()
    choices = scenario.script.choices
    quantum = create_quantum_choice(
        [choices["analyze-intel"], choices["send-word-to-team"]], WorldState(), scenario.premise
    )
    assert collapse_quantum_choice(quantum, "send-word-to-team").choice_id == "send-word-to-team"
    with pytest.raises(ChoiceNotFound):
        collapse_quantum_choice(quantum, "save-team")
