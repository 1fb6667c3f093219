"""Convergence scheduling, forcing, and multi-branch merging."""

from __future__ import annotations

import copy
import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace

from story_branch.core.determinism import stable_id
from story_branch.domain.errors import InvariantViolation
from story_branch.domain.models import (
    BranchState,
    Choice,
    ConvergencePoint,
    ConvergenceRequirement,
    ConvergenceScar,
    FactValue,
    FlexibleElement,
    LastingDifference,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConvergenceResult:
    """Outcome of merging branches at a convergence point."""

    unified_branch: BranchState
    point: ConvergencePoint
    convergence_scars: tuple[ConvergenceScar, ...]
    lasting_differences: tuple[LastingDifference, ...]
    merged_branch_ids: tuple[str, ...]


def should_force_convergence(
    branch: BranchState,
    convergence_points: Sequence[ConvergencePoint],
) -> ConvergencePoint | None:
    """Return the nearest non-optional point inside the branch's flexibility window."""
    window = branch.convergence_schedule.flexibility_window
    candidates = [
        point
        for point in convergence_points
        if point.status == "scheduled"
        and point.convergence_type != "optional"
        and point.target_episode - branch.current_episode <= window
    ]
    if not candidates:
        return None
    return min(
        candidates,
        key=lambda point: (
            abs(point.target_episode - branch.current_episode),
            -point.convergence_force,
            point.point_id,
        ),
    )


def requirement_holds(requirement: ConvergenceRequirement, branch: BranchState) -> bool:
    return bool(branch.world_state.facts.get(requirement.element, False))


def enforce_convergence_requirements(branch: BranchState, point: ConvergencePoint) -> None:
    """Raise InvariantViolation when a rigid element does not hold in the branch."""
    broken = [
        requirement.element
        for requirement in point.required_elements
        if requirement.flexibility == "none" and not requirement_holds(requirement, branch)
    ]
    if broken:
        raise InvariantViolation(
            f"Branch '{branch.branch_id}' cannot converge into '{point.point_id}': "
            f"required elements do not hold: {', '.join(broken)}."
        )


def schedule_convergence_point(
    branch: BranchState,
    choice: Choice,
    *,
    episode: int,
    lead: int,
) -> ConvergencePoint:
    """Schedule the juncture a resolved global choice must eventually rejoin."""
    force = max(1, min(10, round(choice.branching_potential.convergence_likelihood * 10)))
    flexible = tuple(
        FlexibleElement(element=consequence.description, adaptability="high")
        for consequence in choice.consequences
        if consequence.reversible
    )
    point = ConvergencePoint(
        point_id=stable_id(prefix="conv", text=f"{choice.choice_id}:{episode}"),
        name=f"Aftermath of {choice.text}",
        target_episode=episode + lead,
        convergence_type="negotiable",
        convergence_force=force,
        flexible_elements=flexible,
        narrative_justification=f"Global fallout from '{choice.choice_id}' must be reconciled.",
    )
    add_convergence_point(branch, point)
    return point


def add_convergence_point(branch: BranchState, point: ConvergencePoint) -> None:
    schedule = branch.convergence_schedule
    if any(existing.point_id == point.point_id for existing in schedule.upcoming_points):
        return
    schedule.upcoming_points.append(point)
    schedule.upcoming_points.sort(key=lambda item: (item.target_episode, item.point_id))
    _refresh_next_major(branch)


def resolve_convergence_point(branch: BranchState, point: ConvergencePoint) -> ConvergencePoint:
    """Move a reached point from upcoming to resolved."""
    schedule = branch.convergence_schedule
    resolved = replace(point, status="resolved")
    schedule.upcoming_points = [
        item for item in schedule.upcoming_points if item.point_id != point.point_id
    ]
    schedule.resolved_points.append(resolved)
    _refresh_next_major(branch)
    return resolved


def execute_convergence(
    branches: Sequence[BranchState],
    point: ConvergencePoint,
    *,
    unified_branch_id: str | None = None,
) -> ConvergenceResult:
    """Merge branches that reached `point` into one timeline that remembers their differences."""
    if not branches:
        raise ValueError("At least one branch is required to converge.")
    lagging = [b.branch_id for b in branches if b.current_episode < point.target_episode]
    if lagging:
        raise ValueError(
            f"Branches have not reached episode {point.target_episode}: {', '.join(lagging)}."
        )
    for branch in branches:
        enforce_convergence_requirements(branch, point)

    primary = max(branches, key=lambda branch: branch.current_episode)
    unified = copy.deepcopy(primary)
    unified.branch_id = unified_branch_id or stable_id(
        prefix="merged",
        text=f"{point.point_id}:{','.join(sorted(b.branch_id for b in branches))}",
    )
    unified.parent_branch_id = primary.branch_id
    unified.origin_choice = f"convergence:{point.point_id}"
    unified.name = point.name
    unified.world_state.premise_progression = round(
        sum(b.world_state.premise_progression for b in branches) / len(branches)
    )

    differences = _lasting_differences(branches)
    scars = _convergence_scars(branches, point)
    resolved_point = replace(
        point,
        status="resolved",
        convergence_scars=point.convergence_scars + scars,
        lasting_differences=point.lasting_differences + differences,
    )
    schedule = unified.convergence_schedule
    schedule.upcoming_points = [
        item for item in schedule.upcoming_points if item.point_id != point.point_id
    ]
    schedule.resolved_points.append(resolved_point)
    _refresh_next_major(unified)
    logger.info(
        "convergence.merged point_id=%s branches=%s scars=%s differences=%s",
        point.point_id,
        len(branches),
        len(scars),
        len(differences),
    )
    return ConvergenceResult(
        unified_branch=unified,
        point=resolved_point,
        convergence_scars=scars,
        lasting_differences=differences,
        merged_branch_ids=tuple(branch.branch_id for branch in branches),
    )


def _lasting_differences(branches: Sequence[BranchState]) -> tuple[LastingDifference, ...]:
    keys = sorted({key for branch in branches for key in branch.world_state.facts})
    differences: list[LastingDifference] = []
    for key in keys:
        values: list[tuple[str, FactValue | None]] = [
            (branch.name, branch.world_state.facts.get(key)) for branch in branches
        ]
        if len({repr(value) for _, value in values}) <= 1:
            continue
        differences.append(
            LastingDifference(
                aspect=key,
                differences=tuple(f"{name}: {value}" for name, value in values),
                impact=f"'{key}' stays divergent after convergence.",
            )
        )
    return tuple(differences)


def _convergence_scars(
    branches: Sequence[BranchState],
    point: ConvergencePoint,
) -> tuple[ConvergenceScar, ...]:
    scars: list[ConvergenceScar] = []
    for branch in branches:
        if branch.thematic_shift != "none":
            scars.append(
                ConvergenceScar(
                    description=f"{branch.name} arrives carrying a thematic shift.",
                    evidence=branch.thematic_shift,
                    permanence="permanent",
                )
            )
        for requirement in point.required_elements:
            if requirement.flexibility == "none" or requirement_holds(requirement, branch):
                continue
            scars.append(
                ConvergenceScar(
                    description=f"{branch.name} bends '{requirement.element}' to converge.",
                    evidence=f"flexibility={requirement.flexibility}",
                    permanence="lasting" if requirement.flexibility == "low" else "fading",
                )
            )
    return tuple(scars)


def _refresh_next_major(branch: BranchState) -> None:
    schedule = branch.convergence_schedule
    targets = [
        point.target_episode
        for point in schedule.upcoming_points
        if point.convergence_type != "optional"
    ]
    schedule.next_major_convergence = min(targets) if targets else None
