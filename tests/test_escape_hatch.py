from __future__ import annotations

from dataclasses import replace

import pytest

from story_branch.core.determinism import FixedRoll
from story_branch.core.escape_hatch import (
    arm_hatches,
    evaluate_escape_hatches,
    evaluate_requirement,
    required_roll,
)
from story_branch.core.scenarios import war_sacrifice_scenario
from story_branch.domain.errors import EscapeHatchMisconfigured
from story_branch.domain.models import BranchState, EscapeHatch, EscapeRequirement, HistoryEntry


def _armed_branch(hatch: EscapeHatch | None = None) -> tuple[BranchState, EscapeHatch]:
    scenario = war_sacrifice_scenario()
    hatch = hatch or scenario.hatches[0]
    branch = scenario.new_branch("main")
    trigger = scenario.script.choices["attempt-negotiation"]
    branch.choice_history.append(
        HistoryEntry(
            episode=0,
            choice=trigger,
            consequences=trigger.consequences,
            timestamp_utc="2026-01-01T00:00:00+00:00",
        )
    )
    assert arm_hatches(branch, [hatch]) == [hatch.hatch_id]
    return branch, hatch


def test_required_roll_uses_hatch_probability_or_default() -> None:
    hatch = war_sacrifice_scenario().hatches[0]
    assert required_roll(hatch) == 0.7
    assert required_roll(replace(hatch, activation_probability=0.9)) == pytest.approx(0.1)


def test_high_roll_fires_hatch_and_derails_branch() -> None:
    branch, hatch = _armed_branch()
    choice = war_sacrifice_scenario().script.choices["attempt-negotiation"]

    outcome = evaluate_escape_hatches(branch, choice, random_source=FixedRoll(0.99))

    assert outcome.fired is True
    assert outcome.fired_hatch == hatch
    assert branch.fired_hatch_ids == ["peaceful-resolution"]
    assert branch.escape_hatches == []
    assert branch.derailment_risk == 0
    assert branch.thematic_shift == "sacrifice of ego for peace"
    assert branch.description.startswith("DERAILED:")
    assert branch.story_direction is not None
    assert branch.story_direction.genre == "political thriller"


def test_roll_at_threshold_does_not_fire_and_retriable_hatch_stays_armed() -> None:
    branch, _ = _armed_branch()
    choice = war_sacrifice_scenario().script.choices["attempt-negotiation"]

    outcome = evaluate_escape_hatches(branch, choice, random_source=FixedRoll(0.7))

    assert outcome.fired is False
    assert outcome.evaluations[0].transition == "armed"
    assert branch.armed_hatch_ids() == {"peaceful-resolution"}


def test_non_retriable_hatch_expires_after_failed_roll() -> None:
    base = war_sacrifice_scenario().hatches[0]
    branch, _ = _armed_branch(replace(base, retriable=False))
    choice = war_sacrifice_scenario().script.choices["attempt-negotiation"]

    outcome = evaluate_escape_hatches(branch, choice, random_source=FixedRoll(0.1))

    assert outcome.evaluations[0].transition == "expired"
    assert branch.expired_hatch_ids == ["peaceful-resolution"]
    assert arm_hatches(branch, [base]) == []


def test_fired_hatch_never_fires_twice() -> None:
    branch, hatch = _armed_branch()
    choice = war_sacrifice_scenario().script.choices["attempt-negotiation"]
    evaluate_escape_hatches(branch, choice, random_source=FixedRoll(0.99))

    assert arm_hatches(branch, [hatch]) == []
    second = evaluate_escape_hatches(branch, choice, random_source=FixedRoll(0.99))
    assert second.fired is False
    assert second.evaluations == ()


def test_failed_requirement_gates_the_draw() -> None:
    gated = replace(
        war_sacrifice_scenario().hatches[0],
        activation_requirements=(
            EscapeRequirement(
                condition="team already rescued", kind="world-fact", target="team rescued"
            ),
        ),
    )
    branch, _ = _armed_branch(gated)
    choice = war_sacrifice_scenario().script.choices["attempt-negotiation"]

    outcome = evaluate_escape_hatches(branch, choice, random_source=FixedRoll(0.99))

    assert outcome.fired is False
    assert outcome.evaluations[0].transition == "gated"
    assert outcome.evaluations[0].failed_conditions == ("team already rescued",)
    assert outcome.evaluations[0].roll is None


def test_misconfigured_requirement_is_reported_not_raised() -> None:
    broken = replace(
        war_sacrifice_scenario().hatches[0],
        activation_requirements=(
            EscapeRequirement(
                condition="progress", kind="premise-progression-at-least", target="x"
            ),
        ),
    )
    branch, _ = _armed_branch(broken)
    choice = war_sacrifice_scenario().script.choices["attempt-negotiation"]

    outcome = evaluate_escape_hatches(branch, choice, random_source=FixedRoll(0.99))

    assert outcome.fired is False
    assert outcome.evaluations[0].misconfigured is True
    assert "numeric target" in outcome.misconfigurations[0]


def test_evaluate_requirement_kinds() -> None:
    branch = war_sacrifice_scenario().new_branch("main")
    branch.derailment_risk = 6
    assert evaluate_requirement(
        EscapeRequirement(condition="risky", kind="derailment-risk-at-least", target="5"),
        branch,
        hatch_id="h",
    )
    assert not evaluate_requirement(
        EscapeRequirement(condition="picked", kind="choice-selected", target="save-team"),
        branch,
        hatch_id="h",
    )
    with pytest.raises(EscapeHatchMisconfigured, match="no target"):
        evaluate_requirement(
            EscapeRequirement(condition="picked", kind="choice-selected"), branch, hatch_id="h"
        )


def test_free_text_requirement_fails_gating_as_misconfigured() -> None:
    branch = war_sacrifice_scenario().new_branch("main")
    free_text = EscapeRequirement(condition="player chose peaceful options before")

    with pytest.raises(EscapeHatchMisconfigured, match="no evaluable kind"):
        evaluate_requirement(free_text, branch, hatch_id="h")

    ungated = replace(war_sacrifice_scenario().hatches[0], activation_requirements=(free_text,))
    armed, _ = _armed_branch(ungated)
    choice = war_sacrifice_scenario().script.choices["attempt-negotiation"]
    outcome = evaluate_escape_hatches(armed, choice, random_source=FixedRoll(0.99))

    assert outcome.fired is False
    assert outcome.evaluations[0].misconfigured is True
    assert armed.fired_hatch_ids == []


def test_bundled_hatch_is_gated_until_negotiation_is_chosen() -> None:
    scenario = war_sacrifice_scenario()
    branch = scenario.new_branch("main")
    arm_hatches(branch, list(scenario.hatches))

    outcome = evaluate_escape_hatches(
        branch,
        scenario.script.choices["attempt-negotiation"],
        random_source=FixedRoll(0.99),
    )

    assert outcome.fired is False
    assert outcome.evaluations[0].transition == "gated"
    assert outcome.evaluations[0].failed_conditions == ("player chose peaceful options before",)
