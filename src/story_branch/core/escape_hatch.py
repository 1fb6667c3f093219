"""Escape-hatch gating, probability draws, and derailment of a branch."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal

from story_branch.core.engine_settings import DEFAULT_SETTINGS, EngineSettings
from story_branch.domain.errors import EscapeHatchMisconfigured
from story_branch.domain.models import (
    BranchState,
    Choice,
    EscapeHatch,
    EscapeRequirement,
)
from story_branch.domain.ports import RandomSource

logger = logging.getLogger(__name__)

HatchTransition = Literal["fired", "armed", "expired", "gated"]


@dataclass(frozen=True)
class HatchEvaluation:
    """What happened to one hatch during a resolution."""

    hatch_id: str
    transition: HatchTransition
    roll: float | None = None
    required_roll: float | None = None
    failed_conditions: tuple[str, ...] = ()
    misconfigured: bool = False


@dataclass(frozen=True)
class EscapeOutcome:
    fired_hatch: EscapeHatch | None = None
    evaluations: tuple[HatchEvaluation, ...] = ()
    misconfigurations: tuple[str, ...] = field(default_factory=tuple)

    @property
    def fired(self) -> bool:
        return self.fired_hatch is not None


def required_roll(hatch: EscapeHatch, *, settings: EngineSettings = DEFAULT_SETTINGS) -> float:
    """Roll value a draw must exceed for the hatch to fire."""
    if hatch.activation_probability is None:
        return settings.escape_fire_threshold
    return 1.0 - hatch.activation_probability


def evaluate_requirement(
    requirement: EscapeRequirement,
    branch: BranchState,
    *,
    hatch_id: str,
) -> bool:
    """Evaluate one gating condition against the branch state."""
    kind = requirement.kind
    if kind is None:
        raise EscapeHatchMisconfigured(
            hatch_id, f"requirement '{requirement.condition}' has no evaluable kind"
        )
    if kind == "always":
        return True
    target = requirement.target
    if target is None or not target.strip():
        raise EscapeHatchMisconfigured(
            hatch_id, f"requirement '{requirement.condition}' ({kind}) has no target"
        )
    if kind == "choice-selected":
        return target in branch.selected_choice_ids()
    if kind == "choice-type-selected":
        return any(entry.choice.choice_type == target for entry in branch.choice_history)
    if kind == "premise-progression-at-least":
        return branch.world_state.premise_progression >= _numeric_target(requirement, hatch_id)
    if kind == "derailment-risk-at-least":
        return branch.derailment_risk >= _numeric_target(requirement, hatch_id)
    if kind == "world-fact":
        return bool(branch.world_state.facts.get(target, False))
    raise EscapeHatchMisconfigured(hatch_id, f"unknown requirement kind '{kind}'")


def evaluate_requirements(
    hatch: EscapeHatch,
    branch: BranchState,
) -> tuple[bool, tuple[str, ...]]:
    """Return gating result and the conditions that failed.

    Raises EscapeHatchMisconfigured when any requirement cannot be evaluated.
    """
    failed: list[str] = []
    for requirement in hatch.activation_requirements:
        if not evaluate_requirement(requirement, branch, hatch_id=hatch.hatch_id):
            failed.append(requirement.condition)
    return not failed, tuple(failed)


def evaluate_escape_hatches(
    branch: BranchState,
    choice: Choice,
    *,
    random_source: RandomSource,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> EscapeOutcome:
    """Run the Armed -> Fired | Expired state machine for hatches triggered by `choice`.

    Mutates `branch` when a hatch fires or expires; callers pass a working copy.
    """
    triggered = [
        hatch
        for hatch in branch.escape_hatches
        if hatch.trigger_choice == choice.choice_id and hatch.hatch_id not in branch.fired_hatch_ids
    ]
    evaluations: list[HatchEvaluation] = []
    misconfigurations: list[str] = []

    for hatch in triggered:
        try:
            passed, failed_conditions = evaluate_requirements(hatch, branch)
        except EscapeHatchMisconfigured as exc:
            logger.warning("escape.misconfigured hatch_id=%s error=%s", hatch.hatch_id, exc)
            misconfigurations.append(str(exc))
            evaluations.append(
                HatchEvaluation(hatch_id=hatch.hatch_id, transition="gated", misconfigured=True)
            )
            continue
        if not passed:
            logger.info(
                "escape.gated hatch_id=%s failed_conditions=%s",
                hatch.hatch_id,
                len(failed_conditions),
            )
            evaluations.append(
                HatchEvaluation(
                    hatch_id=hatch.hatch_id,
                    transition="gated",
                    failed_conditions=failed_conditions,
                )
            )
            continue

        threshold = required_roll(hatch, settings=settings)
        roll = random_source.random()
        if roll > threshold:
            apply_derailment(branch, hatch)
            evaluations.append(
                HatchEvaluation(
                    hatch_id=hatch.hatch_id, transition="fired", roll=roll, required_roll=threshold
                )
            )
            logger.info(
                "escape.fired hatch_id=%s branch_id=%s roll=%.3f threshold=%.3f",
                hatch.hatch_id,
                branch.branch_id,
                roll,
                threshold,
            )
            return EscapeOutcome(
                fired_hatch=hatch,
                evaluations=tuple(evaluations),
                misconfigurations=tuple(misconfigurations),
            )

        transition: HatchTransition = "armed" if hatch.retriable else "expired"
        if not hatch.retriable:
            _expire(branch, hatch)
        evaluations.append(
            HatchEvaluation(
                hatch_id=hatch.hatch_id,
                transition=transition,
                roll=roll,
                required_roll=threshold,
            )
        )
        logger.info(
            "escape.no_fire hatch_id=%s transition=%s roll=%.3f threshold=%.3f",
            hatch.hatch_id,
            transition,
            roll,
            threshold,
        )

    return EscapeOutcome(
        fired_hatch=None,
        evaluations=tuple(evaluations),
        misconfigurations=tuple(misconfigurations),
    )


def apply_derailment(branch: BranchState, hatch: EscapeHatch) -> None:
    """Swap the branch's direction while keeping its world and characters."""
    branch.name = f"{branch.name} → {hatch.name}"
    branch.description = f"DERAILED: {hatch.new_story_direction.premise}"
    branch.thematic_shift = hatch.thematic_shift.to_theme
    branch.story_direction = hatch.new_story_direction
    branch.derailment_risk = 0
    for other in branch.escape_hatches:
        if other.hatch_id != hatch.hatch_id and other.hatch_id not in branch.expired_hatch_ids:
            branch.expired_hatch_ids.append(other.hatch_id)
    branch.escape_hatches = []
    if hatch.hatch_id not in branch.fired_hatch_ids:
        branch.fired_hatch_ids.append(hatch.hatch_id)


def arm_hatches(branch: BranchState, hatches: list[EscapeHatch]) -> list[str]:
    """Add hatches that have never fired or expired on this branch; return newly armed ids."""
    spent = set(branch.fired_hatch_ids) | set(branch.expired_hatch_ids)
    armed = branch.armed_hatch_ids()
    added: list[str] = []
    for hatch in hatches:
        if hatch.hatch_id in spent or hatch.hatch_id in armed:
            continue
        branch.escape_hatches.append(hatch)
        armed.add(hatch.hatch_id)
        added.append(hatch.hatch_id)
    return added


def _expire(branch: BranchState, hatch: EscapeHatch) -> None:
    branch.escape_hatches = [
        armed for armed in branch.escape_hatches if armed.hatch_id != hatch.hatch_id
    ]
    if hatch.hatch_id not in branch.expired_hatch_ids:
        branch.expired_hatch_ids.append(hatch.hatch_id)


def _numeric_target(requirement: EscapeRequirement, hatch_id: str) -> float:
    try:
        return float(str(requirement.target))
    except ValueError as exc:
        raise EscapeHatchMisconfigured(
            hatch_id,
            f"requirement '{requirement.condition}' needs a numeric target, got "
            f"'{requirement.target}'",
        ) from exc
