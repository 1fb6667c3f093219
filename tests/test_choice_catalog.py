from __future__ import annotations

import json
from dataclasses import replace
from typing import Any

import pytest

from story_branch.core.choice_catalog import (
    ChoiceScript,
    generate_emergency_catalog,
    generate_follow_ups,
    generate_follow_ups_with_diagnostics,
)
from story_branch.core.escape_hatch import arm_hatches
from story_branch.core.scenarios import Scenario, war_sacrifice_scenario
from story_branch.domain.models import BranchState, HistoryEntry


class _FailingGenerator:
    def generate(self, prompt: str, schema: dict[str, Any] | None = None) -> str:
        raise RuntimeError("endpoint down")


class _StaticGenerator:
    def __init__(self, payload: object) -> None:
        self.payload = payload
        self.prompts: list[str] = []

    def generate(self, prompt: str, schema: dict[str, Any] | None = None) -> str:
        self.prompts.append(prompt)
        assert schema is not None and "choices" in schema["properties"]
        return json.dumps(self.payload)


def _generated_choice(choice_id: str, choice_type: str = "plot-advancing") -> dict[str, object]:
    return {
        "choice_id": choice_id,
        "text": "Bribe a guard",
        "description": "Coin opens doors",
        "choice_type": choice_type,
        "magnitude": "minor",
        "scope": "interpersonal",
        "branching_potential": {
            "branch_count": 2,
            "divergence_level": "minor",
            "convergence_likelihood": 0.6,
        },
        "moral_complexity": {"clear_right": False},
    }


def _after(scenario: Scenario, *choice_ids: str) -> BranchState:
    branch = scenario.new_branch("main")
    for choice_id in choice_ids:
        choice = scenario.script.choices[choice_id]
        branch.choice_history.append(
            HistoryEntry(
                episode=branch.current_episode,
                choice=choice,
                consequences=choice.consequences,
                timestamp_utc="2026-01-01T00:00:00+00:00",
            )
        )
        branch.current_episode += 1
    return branch


def test_script_rejects_unknown_references() -> None:
    choices = war_sacrifice_scenario().script.choices
    with pytest.raises(ValueError, match="missing-choice"):
        ChoiceScript(choices=choices, successors={"save-team": ("missing-choice",)})


def test_follow_ups_respect_prerequisites_and_add_premise_test() -> None:
    scenario = war_sacrifice_scenario()
    save_team = scenario.script.choices["save-team"]

    without_history = generate_follow_ups(
        save_team, scenario.new_branch("main"), scenario.premise, script=scenario.script
    )
    with_history = generate_follow_ups(
        save_team, _after(scenario, "save-team"), scenario.premise, script=scenario.script
    )

    assert [choice.choice_type for choice in without_history] == ["premise-testing"]
    assert [choice.choice_id for choice in with_history][1:] == ["regroup-hideout"]
    assert with_history[0].choice_id.startswith("premise-test_")
    assert with_history[0].scope == "global"


def test_premise_test_template_stops_at_progression_ceiling() -> None:
    scenario = war_sacrifice_scenario()
    branch = _after(scenario, "save-team")
    branch.world_state.premise_progression = 70

    catalog = generate_follow_ups(
        scenario.script.choices["save-team"], branch, scenario.premise, script=scenario.script
    )

    assert [choice.choice_id for choice in catalog] == ["regroup-hideout"]


def test_existing_premise_testing_successor_suppresses_template() -> None:
    scenario = war_sacrifice_scenario()
    catalog = generate_follow_ups(
        scenario.script.choices["attempt-negotiation"],
        _after(scenario, "attempt-negotiation"),
        scenario.premise,
        script=scenario.script,
    )
    assert [choice.choice_id for choice in catalog] == ["protect-intel", "save-team"]


def test_follow_ups_are_deterministic_for_same_inputs() -> None:
    scenario = war_sacrifice_scenario()
    protect = scenario.script.choices["protect-intel"]

    first = generate_follow_ups(
        protect, _after(scenario, "protect-intel"), scenario.premise, script=scenario.script, seed=4
    )
    second = generate_follow_ups(
        protect, _after(scenario, "protect-intel"), scenario.premise, script=scenario.script, seed=4
    )

    assert [choice.choice_id for choice in first] == [choice.choice_id for choice in second]
    assert first[-1].choice_id == "send-word-to-team"
    assert len(first) == 3


def test_terminal_and_unmapped_choices_yield_empty_catalog() -> None:
    scenario = war_sacrifice_scenario()
    branch = _after(scenario, "save-team", "regroup-hideout")

    catalog, diagnostics = generate_follow_ups_with_diagnostics(
        scenario.script.choices["plan-final-strike"],
        branch,
        scenario.premise,
        script=scenario.script,
    )
    unmapped = replace(scenario.script.choices["plan-final-strike"], choice_id="unmapped")
    finished = _after(scenario, "save-team", "regroup-hideout", "plan-final-strike")

    assert catalog == []
    assert diagnostics.terminal is True
    assert generate_follow_ups(unmapped, finished, scenario.premise, script=scenario.script) == []
    assert (
        generate_follow_ups(
            unmapped, scenario.new_branch("main"), scenario.premise, script=scenario.script
        )
        == []
    )


def test_premise_test_choice_continues_with_remaining_authored_successors() -> None:
    scenario = war_sacrifice_scenario()
    branch = _after(scenario, "save-team")
    first = generate_follow_ups(
        scenario.script.choices["save-team"], branch, scenario.premise, script=scenario.script
    )
    premise_test = first[0]
    assert premise_test.choice_type == "premise-testing"

    branch.choice_history.append(
        HistoryEntry(
            episode=branch.current_episode,
            choice=premise_test,
            consequences=premise_test.consequences,
            timestamp_utc="2026-01-01T00:00:00+00:00",
        )
    )
    branch.current_episode += 1
    catalog, diagnostics = generate_follow_ups_with_diagnostics(
        premise_test, branch, scenario.premise, script=scenario.script
    )

    assert diagnostics.terminal is False
    assert "regroup-hideout" in [choice.choice_id for choice in catalog]
    assert premise_test.choice_id not in [choice.choice_id for choice in catalog]


def test_generator_failure_degrades_to_templates() -> None:
    scenario = war_sacrifice_scenario()
    branch = _after(scenario, "protect-intel")
    protect = scenario.script.choices["protect-intel"]

    baseline = generate_follow_ups(protect, branch, scenario.premise, script=scenario.script)
    catalog, diagnostics = generate_follow_ups_with_diagnostics(
        protect,
        branch,
        scenario.premise,
        script=scenario.script,
        content_generator=_FailingGenerator(),
    )

    assert catalog == baseline
    assert diagnostics.degraded is True
    assert "endpoint down" in diagnostics.issues[0]


def test_generated_choices_are_appended_and_filtered() -> None:
    scenario = war_sacrifice_scenario()
    branch = _after(scenario, "protect-intel")
    generator = _StaticGenerator(
        {
            "choices": [
                _generated_choice("bribe-guard"),
                _generated_choice("rewrite-story", choice_type="escape-triggering"),
                _generated_choice("analyze-intel"),
            ]
        }
    )

    catalog, diagnostics = generate_follow_ups_with_diagnostics(
        scenario.script.choices["protect-intel"],
        branch,
        scenario.premise,
        script=scenario.script,
        content_generator=generator,
    )

    assert catalog[-1].choice_id == "bribe-guard"
    assert diagnostics.generated_count == 1
    assert diagnostics.template_count == 3
    assert "Secure the intel" in generator.prompts[0]


def test_malformed_generator_output_degrades() -> None:
    scenario = war_sacrifice_scenario()
    catalog, diagnostics = generate_follow_ups_with_diagnostics(
        scenario.script.choices["protect-intel"],
        _after(scenario, "protect-intel"),
        scenario.premise,
        script=scenario.script,
        content_generator=_StaticGenerator({"choices": [{"choice_id": "half"}]}),
    )
    assert diagnostics.degraded is True
    assert len(catalog) == 3


def test_retriable_escape_trigger_is_reoffered_when_risk_is_high() -> None:
    scenario = war_sacrifice_scenario()
    branch = _after(scenario, "save-team")
    arm_hatches(branch, list(scenario.hatches))
    branch.derailment_risk = 6

    catalog = generate_follow_ups(
        scenario.script.choices["save-team"], branch, scenario.premise, script=scenario.script
    )

    assert "attempt-negotiation" in [choice.choice_id for choice in catalog]


def test_emergency_catalog_uses_authored_choices_or_template() -> None:
    scenario = war_sacrifice_scenario()
    hatch = scenario.hatches[0]
    trigger = scenario.script.choices["attempt-negotiation"]

    authored = generate_emergency_catalog(hatch, trigger, script=scenario.script)
    fallback = generate_emergency_catalog(
        replace(hatch, hatch_id="unscripted"), trigger, script=scenario.script
    )

    assert [choice.choice_id for choice in authored] == ["diplomatic-mission"]
    assert len(fallback) == 1
    assert fallback[0].choice_id.startswith("emergency_")
    assert "political thriller" in fallback[0].text
