from __future__ import annotations

import copy
from typing import Any

import pytest

from story_branch.core.determinism import FixedRoll
from story_branch.core.narrative_orchestrator import NarrativeOrchestrator, resolve_choice
from story_branch.core.scenarios import Scenario, war_sacrifice_scenario
from story_branch.domain.errors import ChoiceNotFound, InvariantViolation

NOW = "2026-01-01T00:00:00+00:00"


class _FailingGenerator:
    def generate(self, prompt: str, schema: dict[str, Any] | None = None) -> str:
        raise RuntimeError("endpoint down")


def _orchestrator(scenario: Scenario, **kwargs: Any) -> NarrativeOrchestrator:
    return NarrativeOrchestrator(script=scenario.script, premise=scenario.premise, **kwargs)


def test_premise_testing_choice_advances_premise_and_folds_quantum_choice() -> None:
    scenario = war_sacrifice_scenario()
    branch = scenario.new_branch("main")
    before = copy.deepcopy(branch)

    resolution = _orchestrator(scenario).resolve(
        branch, scenario.initial_catalog(), "protect-intel", scenario.hatches, now_utc=NOW
    )

    advanced = resolution.branch
    assert advanced is not branch
    assert branch == before
    assert advanced.current_episode == 2
    assert advanced.world_state.premise_progression == 15
    assert advanced.derailment_risk == 3
    assert advanced.world_state.facts["intel secured"] is True
    assert advanced.selected_choice_ids() == ["protect-intel"]
    assert advanced.player_investment.time_invested == 1
    assert resolution.derailed is False
    assert resolution.quantum_choice is not None
    assert len(resolution.quantum_choice.candidates) == 3
    assert {"analyze-intel", "send-word-to-team"} <= set(resolution.quantum_choice.candidate_ids())
    forced = resolution.forced_convergence
    assert forced is not None
    assert forced.target_episode == 4
    assert forced.convergence_force == 4
    assert forced.status == "scheduled"
    assert advanced.convergence_schedule.next_major_convergence == 4
    assert len(resolution.butterfly.emerging_effects) == 1


def test_other_choice_types_raise_derailment_risk() -> None:
    scenario = war_sacrifice_scenario()
    resolution = _orchestrator(scenario).resolve(
        scenario.new_branch("main"), scenario.initial_catalog(), "save-team", scenario.hatches
    )
    assert resolution.branch.world_state.premise_progression == 0
    assert resolution.branch.derailment_risk == 4
    assert resolution.branch.world_state.facts["team rescued"] is True
    assert resolution.quantum_choice is None


def test_premise_test_choice_keeps_the_story_going() -> None:
    scenario = war_sacrifice_scenario()
    orchestrator = _orchestrator(scenario)
    first = orchestrator.resolve(
        scenario.new_branch("main"), scenario.initial_catalog(), "save-team", scenario.hatches
    )
    premise_test = next(
        choice for choice in first.next_catalog if choice.choice_type == "premise-testing"
    )

    second = orchestrator.resolve(
        first.branch, first.next_catalog, premise_test.choice_id, scenario.hatches
    )

    assert second.branch.world_state.premise_progression == 15
    assert "regroup-hideout" in [choice.choice_id for choice in second.next_catalog]


def test_trigger_choice_is_recorded_before_hatches_are_evaluated() -> None:
    scenario = war_sacrifice_scenario()

    resolution = _orchestrator(scenario).resolve(
        scenario.new_branch("main"),
        scenario.initial_catalog(),
        "attempt-negotiation",
        scenario.hatches,
        random_source=FixedRoll(1.0),
        now_utc=NOW,
    )

    assert resolution.derailed is True
    assert resolution.branch.selected_choice_ids() == ["attempt-negotiation"]
    assert resolution.escape_outcome.evaluations[0].transition == "fired"


def test_progression_and_risk_are_clamped() -> None:
    scenario = war_sacrifice_scenario()
    orchestrator = _orchestrator(scenario)
    branch = scenario.new_branch("main")
    branch.world_state.premise_progression = 95
    branch.derailment_risk = 10

    premise = orchestrator.resolve(branch, scenario.initial_catalog(), "protect-intel")
    risk = orchestrator.resolve(branch, scenario.initial_catalog(), "save-team")

    assert premise.branch.world_state.premise_progression == 100
    assert risk.branch.derailment_risk == 10


def test_unknown_choice_raises_and_leaves_branch_untouched() -> None:
    scenario = war_sacrifice_scenario()
    branch = scenario.new_branch("main")
    before = copy.deepcopy(branch)

    with pytest.raises(ChoiceNotFound) as raised:
        _orchestrator(scenario).resolve(branch, scenario.initial_catalog(), "regroup-hideout")

    assert raised.value.choice_id == "regroup-hideout"
    assert branch == before


def test_high_escape_roll_derails_into_emergency_catalog() -> None:
    scenario = war_sacrifice_scenario()
    branch = scenario.new_branch("main")

    resolution = _orchestrator(scenario).resolve(
        branch,
        scenario.initial_catalog(),
        "attempt-negotiation",
        scenario.hatches,
        random_source=FixedRoll(1.0),
    )

    derailed = resolution.branch
    assert resolution.derailed is True
    assert derailed.current_episode == 2
    assert derailed.derailment_risk == 0
    assert derailed.world_state.premise_progression == 0
    assert derailed.name == "Main Timeline → The Diplomatic Solution"
    assert derailed.thematic_shift == "sacrifice of ego for peace"
    assert derailed.fired_hatch_ids == ["peaceful-resolution"]
    assert [choice.choice_id for choice in resolution.next_catalog] == ["diplomatic-mission"]
    assert "escape_hatch_fired" in [issue.code for issue in resolution.issues]


def test_low_escape_roll_keeps_story_on_track() -> None:
    scenario = war_sacrifice_scenario()

    resolution = _orchestrator(scenario).resolve(
        scenario.new_branch("main"),
        scenario.initial_catalog(),
        "attempt-negotiation",
        scenario.hatches,
        random_source=FixedRoll(0.5),
    )

    assert resolution.derailed is False
    assert resolution.branch.derailment_risk == 4
    assert resolution.branch.armed_hatch_ids() == {"peaceful-resolution"}
    assert [choice.choice_id for choice in resolution.next_catalog] == [
        "protect-intel",
        "save-team",
    ]


def test_unsupplied_hatch_is_reported() -> None:
    scenario = war_sacrifice_scenario()
    resolution = _orchestrator(scenario).resolve(
        scenario.new_branch("main"),
        scenario.initial_catalog(),
        "attempt-negotiation",
        random_source=FixedRoll(0.99),
    )
    assert resolution.derailed is False
    assert [issue.code for issue in resolution.issues] == ["escape_hatch_unknown"]


def test_broken_rigid_requirement_near_convergence_raises() -> None:
    scenario = war_sacrifice_scenario()
    branch = scenario.new_branch("main")
    branch.current_episode = 4
    branch.world_state.facts["protagonist alive"] = False
    before = copy.deepcopy(branch)

    with pytest.raises(InvariantViolation, match="protagonist alive"):
        _orchestrator(scenario).resolve(
            branch, scenario.initial_catalog(), "save-team", scenario.hatches
        )
    assert branch == before


def test_reaching_target_episode_resolves_convergence() -> None:
    scenario = war_sacrifice_scenario()
    branch = scenario.new_branch("main")
    branch.current_episode = 5

    resolution = _orchestrator(scenario).resolve(
        branch, scenario.initial_catalog(), "save-team", scenario.hatches
    )

    assert resolution.forced_convergence is not None
    assert resolution.forced_convergence.point_id == "final-confrontation"
    assert resolution.forced_convergence.status == "resolved"
    schedule = resolution.branch.convergence_schedule
    assert schedule.upcoming_points == []
    assert schedule.next_major_convergence is None


def test_walkthrough_advances_one_episode_per_choice_until_terminal() -> None:
    scenario = war_sacrifice_scenario()
    orchestrator = _orchestrator(scenario, seed=3)
    branch = scenario.new_branch("main")
    catalog = scenario.initial_catalog()
    episodes: list[int] = []

    for choice_id in ("protect-intel", "analyze-intel", "plan-final-strike"):
        resolution = orchestrator.resolve(branch, catalog, choice_id, scenario.hatches)
        branch, catalog = resolution.branch, resolution.next_catalog
        episodes.append(branch.current_episode)

    assert episodes == [2, 3, 4]
    assert catalog == []
    assert [point.target_episode for point in branch.convergence_schedule.resolved_points] == [4]


def test_resolution_is_deterministic_for_seed_and_timestamp() -> None:
    scenario = war_sacrifice_scenario()

    def run() -> list[str]:
        resolution = resolve_choice(
            scenario.new_branch("main"),
            scenario.initial_catalog(),
            "protect-intel",
            scenario.hatches,
            script=scenario.script,
            premise=scenario.premise,
            seed=11,
            now_utc=NOW,
        )
        return [choice.choice_id for choice in resolution.next_catalog]

    assert run() == run()


def test_generator_failure_is_reported_as_degraded_catalog() -> None:
    scenario = war_sacrifice_scenario()
    resolution = _orchestrator(scenario, content_generator=_FailingGenerator()).resolve(
        scenario.new_branch("main"), scenario.initial_catalog(), "save-team", scenario.hatches
    )
    assert resolution.catalog_degraded is True
    assert resolution.next_catalog
    assert "generation_unavailable" in [issue.code for issue in resolution.issues]


def test_collapse_and_resolve_commits_one_candidate() -> None:
    scenario = war_sacrifice_scenario()
    orchestrator = _orchestrator(scenario)
    first = orchestrator.resolve(
        scenario.new_branch("main"), scenario.initial_catalog(), "protect-intel", scenario.hatches
    )
    assert first.quantum_choice is not None

    second = orchestrator.collapse_and_resolve(
        first.branch, first.quantum_choice, "send-word-to-team", scenario.hatches
    )

    assert second.branch.current_episode == 3
    assert second.branch.selected_choice_ids() == ["protect-intel", "send-word-to-team"]
    with pytest.raises(ChoiceNotFound):
        orchestrator.collapse_and_resolve(first.branch, first.quantum_choice, "save-team")


def test_butterfly_view_matches_resolution_analysis() -> None:
    scenario = war_sacrifice_scenario()
    orchestrator = _orchestrator(scenario)
    resolution = orchestrator.resolve(
        scenario.new_branch("main"), scenario.initial_catalog(), "save-team", scenario.hatches
    )
    assert orchestrator.butterfly(resolution.branch) == resolution.butterfly
    assert resolution.branch.last_butterfly_analysis == resolution.butterfly
