"""Walk a bundled scenario from the command line, one choice id per argument."""

from __future__ import annotations

import argparse
import json
import sys

from story_branch.adapters.observability import configure_runtime_logging
from story_branch.core.determinism import FixedRoll
from story_branch.core.engine_settings import load_engine_settings
from story_branch.core.narrative_orchestrator import ChoiceResolution, NarrativeOrchestrator
from story_branch.core.scenarios import SCENARIOS, load_scenario
from story_branch.domain.errors import ChoiceNotFound, InvariantViolation
from story_branch.domain.models import BranchState, Choice


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Play a branching scenario by resolving choice ids in order."
    )
    parser.add_argument("choices", nargs="*", help="Choice ids to resolve, in order.")
    parser.add_argument("--scenario", default="war-sacrifice", choices=sorted(SCENARIOS))
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument(
        "--escape-roll",
        type=float,
        default=None,
        help="Pin every escape-hatch draw to this value in [0, 1].",
    )
    parser.add_argument("--json", action="store_true", help="Print a JSON summary instead.")
    parser.add_argument("--log", action="store_true", help="Enable runtime logging.")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Resolve the requested choices and print each turn; returns a process exit code."""
    parser = build_arg_parser()
    parsed = parser.parse_args(argv)
    if parsed.escape_roll is not None and not 0.0 <= parsed.escape_roll <= 1.0:
        parser.error("--escape-roll must be within [0, 1].")
    if parsed.log:
        configure_runtime_logging()

    scenario = load_scenario(str(parsed.scenario))
    orchestrator = NarrativeOrchestrator(
        script=scenario.script,
        premise=scenario.premise,
        settings=load_engine_settings(),
        seed=int(parsed.seed),
    )
    branch = scenario.new_branch("cli")
    catalog = scenario.initial_catalog()
    turns: list[dict[str, object]] = []

    if not parsed.json:
        print(f"{scenario.title} [{scenario.key}]")
        print(f"premise: {scenario.premise.statement}")
        _print_catalog(catalog)

    for choice_id in parsed.choices:
        random_source = FixedRoll(parsed.escape_roll) if parsed.escape_roll is not None else None
        try:
            resolution = orchestrator.resolve(
                branch, catalog, str(choice_id), scenario.hatches, random_source=random_source
            )
        except ChoiceNotFound as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 2
        except InvariantViolation as exc:
            print(f"invariant violated: {exc}", file=sys.stderr)
            return 3
        branch = resolution.branch
        catalog = resolution.next_catalog
        turns.append(_turn_summary(str(choice_id), resolution))
        if not parsed.json:
            _print_turn(str(choice_id), resolution)

    if parsed.json:
        print(
            json.dumps(
                {"scenario": scenario.key, "turns": turns, "final": _branch_summary(branch)},
                indent=2,
                sort_keys=True,
            )
        )
    return 0


def _branch_summary(branch: BranchState) -> dict[str, object]:
    return {
        "name": branch.name,
        "episode": branch.current_episode,
        "premise_progression": branch.world_state.premise_progression,
        "derailment_risk": branch.derailment_risk,
        "thematic_shift": branch.thematic_shift,
    }


def _turn_summary(choice_id: str, resolution: ChoiceResolution) -> dict[str, object]:
    return {
        "choice_id": choice_id,
        "derailed": resolution.derailed,
        "branch": _branch_summary(resolution.branch),
        "next_choices": [choice.choice_id for choice in resolution.next_catalog],
        "quantum": resolution.quantum_choice.candidate_ids() if resolution.quantum_choice else None,
        "issues": [issue.code for issue in resolution.issues],
    }


def _print_catalog(catalog: list[Choice]) -> None:
    if not catalog:
        print("choices: none (story path complete)")
        return
    print("choices:")
    for choice in catalog:
        print(f"  {choice.choice_id} [{choice.choice_type}/{choice.magnitude}] {choice.text}")


def _print_turn(choice_id: str, resolution: ChoiceResolution) -> None:
    branch = resolution.branch
    print(f"\n> {choice_id}")
    if resolution.derailed:
        print(f"DERAILED: {branch.name}")
    print(
        f"episode {branch.current_episode} | premise {branch.world_state.premise_progression}% "
        f"| derailment risk {branch.derailment_risk}/10"
    )
    butterfly = resolution.butterfly
    print(
        f"butterfly: active={len(butterfly.active_effects)} "
        f"emerging={len(butterfly.emerging_effects)} risk={butterfly.systemic_risk:.2f}"
        + (" STORM" if butterfly.butterfly_storm else "")
    )
    if resolution.forced_convergence is not None:
        point = resolution.forced_convergence
        print(f"convergence: {point.name} (episode {point.target_episode}, {point.status})")
    if resolution.quantum_choice is not None:
        print(f"quantum: {', '.join(resolution.quantum_choice.candidate_ids())}")
    for issue in resolution.issues:
        print(f"[{issue.severity}] {issue.code}: {issue.message}")
    _print_catalog(resolution.next_catalog)


if __name__ == "__main__":
    raise SystemExit(main())
