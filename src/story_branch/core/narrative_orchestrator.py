"""Choice resolution: the single entry point that advances a branch by one episode."""

from __future__ import annotations

import copy
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

from story_branch.core.butterfly_tracker import track_butterfly_effects
from story_branch.core.choice_catalog import (
    ChoiceScript,
    generate_emergency_catalog,
    generate_follow_ups_with_diagnostics,
)
from story_branch.core.convergence_planner import (
    enforce_convergence_requirements,
    resolve_convergence_point,
    schedule_convergence_point,
    should_force_convergence,
)
from story_branch.core.determinism import seeded_random, utc_now_iso
from story_branch.core.engine_settings import DEFAULT_SETTINGS, EngineSettings
from story_branch.core.escape_hatch import EscapeOutcome, arm_hatches, evaluate_escape_hatches
from story_branch.core.quantum_choice import (
    QuantumChoice,
    collapse_quantum_choice,
    create_quantum_choice,
)
from story_branch.domain.errors import ChoiceNotFound, InvariantViolation
from story_branch.domain.models import (
    BranchState,
    ButterflyAnalysis,
    Choice,
    ConvergencePoint,
    EscapeHatch,
    HistoryEntry,
    StoryPremise,
    magnitude_rank,
)
from story_branch.domain.ports import NarrativeContentGenerator, RandomSource

logger = logging.getLogger(__name__)

IssueSeverity = Literal["info", "warning"]

_CONVERGENCE_SCHEDULING_RANK = magnitude_rank("major")


@dataclass(frozen=True)
class EngineIssue:
    """Recovered problem or notable event surfaced alongside a resolution."""

    code: str
    severity: IssueSeverity
    message: str


@dataclass(frozen=True)
class ChoiceResolution:
    """Everything one resolution produced; `branch` is a new object."""

    branch: BranchState
    next_catalog: list[Choice]
    butterfly: ButterflyAnalysis
    quantum_choice: QuantumChoice | None
    escape_outcome: EscapeOutcome
    forced_convergence: ConvergencePoint | None
    issues: tuple[EngineIssue, ...] = ()
    catalog_degraded: bool = False

    @property
    def derailed(self) -> bool:
        return self.escape_outcome.fired


def find_choice(catalog: Sequence[Choice], choice_id: str) -> Choice:
    for choice in catalog:
        if choice.choice_id == choice_id:
            return choice
    raise ChoiceNotFound(choice_id)


def resolve_choice(
    branch: BranchState,
    catalog: Sequence[Choice],
    choice_id: str,
    hatches: Sequence[EscapeHatch] = (),
    *,
    script: ChoiceScript,
    premise: StoryPremise,
    settings: EngineSettings = DEFAULT_SETTINGS,
    random_source: RandomSource | None = None,
    content_generator: NarrativeContentGenerator | None = None,
    seed: int = 0,
    now_utc: str | None = None,
) -> ChoiceResolution:
    """Resolve one player choice against a branch and return the advanced branch.

    The input branch is never mutated: all work happens on a deep copy, so a
    failed or abandoned resolution leaves the caller's last-good state intact.

    Raises:
        ChoiceNotFound: `choice_id` is not in `catalog`.
        InvariantViolation: the advanced branch would break a rigid convergence
            requirement or the episode counter would not advance by exactly one.
    """
    choice = find_choice(catalog, choice_id)
    working = copy.deepcopy(branch)
    start_episode = working.current_episode
    issues: list[EngineIssue] = []
    logger.info(
        "choice.resolve.start branch_id=%s choice_id=%s episode=%s",
        working.branch_id,
        choice.choice_id,
        start_episode,
    )

    working.choice_history.append(
        HistoryEntry(
            episode=start_episode,
            choice=choice,
            consequences=choice.consequences,
            timestamp_utc=now_utc or utc_now_iso(),
        )
    )

    arm_hatches(working, list(hatches))
    if choice.escape_hatch_id and choice.escape_hatch_id not in _known_hatch_ids(working):
        issues.append(
            EngineIssue(
                code="escape_hatch_unknown",
                severity="warning",
                message=(
                    f"Choice '{choice.choice_id}' references hatch "
                    f"'{choice.escape_hatch_id}' that was never supplied."
                ),
            )
        )

    rng = random_source or seeded_random(
        "escape", seed, working.branch_id, choice.choice_id, start_episode
    )
    escape = evaluate_escape_hatches(working, choice, random_source=rng, settings=settings)
    issues.extend(
        EngineIssue(code="escape_hatch_misconfigured", severity="warning", message=message)
        for message in escape.misconfigurations
    )
    if escape.fired_hatch is not None:
        issues.append(
            EngineIssue(
                code="escape_hatch_fired",
                severity="info",
                message=f"Story derailed through '{escape.fired_hatch.name}'.",
            )
        )
    else:
        _apply_progression(working, choice, settings=settings)

    _apply_world_facts(working, choice)
    _update_player_investment(working, choice)
    schedules_convergence = magnitude_rank(choice.magnitude) >= _CONVERGENCE_SCHEDULING_RANK
    if choice.scope == "global" and schedules_convergence:
        schedule_convergence_point(
            working, choice, episode=start_episode, lead=settings.global_convergence_lead
        )

    working.current_episode = start_episode + 1

    butterfly = track_butterfly_effects(
        working.choice_history,
        working.world_state,
        working.current_episode,
        seed=seed,
        settings=settings,
    )
    working.last_butterfly_analysis = butterfly
    if butterfly.butterfly_storm:
        issues.append(
            EngineIssue(
                code="butterfly_storm",
                severity="warning",
                message=(
                    f"{len(butterfly.emerging_effects)} consequences are close to "
                    "manifesting at once."
                ),
            )
        )

    forced = should_force_convergence(working, working.convergence_schedule.upcoming_points)
    if forced is not None:
        enforce_convergence_requirements(working, forced)
        if forced.target_episode <= working.current_episode:
            forced = resolve_convergence_point(working, forced)
        logger.info(
            "convergence.forced branch_id=%s point_id=%s status=%s",
            working.branch_id,
            forced.point_id,
            forced.status,
        )

    catalog_degraded = False
    if escape.fired_hatch is not None:
        next_catalog = generate_emergency_catalog(escape.fired_hatch, choice, script=script)
    else:
        next_catalog, diagnostics = generate_follow_ups_with_diagnostics(
            choice,
            working,
            premise,
            script=script,
            seed=seed,
            settings=settings,
            content_generator=content_generator,
        )
        catalog_degraded = diagnostics.degraded
        issues.extend(
            EngineIssue(code="generation_unavailable", severity="warning", message=message)
            for message in diagnostics.issues
        )

    _verify_branch(working, start_episode=start_episode)
    quantum: QuantumChoice | None = None
    if choice.magnitude == "pivotal" and len(next_catalog) >= settings.quantum_fold_size:
        quantum = create_quantum_choice(
            next_catalog, working.world_state, premise, settings=settings
        )

    logger.info(
        "choice.resolve.done branch_id=%s choice_id=%s episode=%s derailed=%s "
        "premise_progression=%s derailment_risk=%s next_choices=%s",
        working.branch_id,
        choice.choice_id,
        working.current_episode,
        escape.fired,
        working.world_state.premise_progression,
        working.derailment_risk,
        len(next_catalog),
    )
    return ChoiceResolution(
        branch=working,
        next_catalog=next_catalog,
        butterfly=butterfly,
        quantum_choice=quantum,
        escape_outcome=escape,
        forced_convergence=forced,
        issues=tuple(issues),
        catalog_degraded=catalog_degraded,
    )


class NarrativeOrchestrator:
    """Binds a story script and its collaborators once for repeated resolutions."""

    def __init__(
        self,
        *,
        script: ChoiceScript,
        premise: StoryPremise,
        settings: EngineSettings = DEFAULT_SETTINGS,
        content_generator: NarrativeContentGenerator | None = None,
        seed: int = 0,
    ) -> None:
        self._script = script
        self._premise = premise
        self._settings = settings
        self._content_generator = content_generator
        self._seed = seed

    @property
    def premise(self) -> StoryPremise:
        return self._premise

    def initial_catalog(self) -> list[Choice]:
        return self._script.initial_choices()

    def resolve(
        self,
        branch: BranchState,
        catalog: Sequence[Choice],
        choice_id: str,
        hatches: Sequence[EscapeHatch] = (),
        *,
        random_source: RandomSource | None = None,
        now_utc: str | None = None,
    ) -> ChoiceResolution:
        return resolve_choice(
            branch,
            catalog,
            choice_id,
            hatches,
            script=self._script,
            premise=self._premise,
            settings=self._settings,
            random_source=random_source,
            content_generator=self._content_generator,
            seed=self._seed,
            now_utc=now_utc,
        )

    def collapse_and_resolve(
        self,
        branch: BranchState,
        quantum: QuantumChoice,
        choice_id: str,
        hatches: Sequence[EscapeHatch] = (),
        *,
        random_source: RandomSource | None = None,
        now_utc: str | None = None,
    ) -> ChoiceResolution:
        """Commit to one superposed candidate and resolve it like any other choice."""
        committed = collapse_quantum_choice(quantum, choice_id)
        return self.resolve(
            branch,
            [committed],
            committed.choice_id,
            hatches,
            random_source=random_source,
            now_utc=now_utc,
        )

    def butterfly(self, branch: BranchState) -> ButterflyAnalysis:
        return track_butterfly_effects(
            branch.choice_history,
            branch.world_state,
            branch.current_episode,
            seed=self._seed,
            settings=self._settings,
        )


def _apply_progression(branch: BranchState, choice: Choice, *, settings: EngineSettings) -> None:
    if choice.choice_type == "premise-testing":
        branch.world_state.premise_progression = min(
            100, branch.world_state.premise_progression + settings.premise_increment
        )
    else:
        branch.derailment_risk = min(10, branch.derailment_risk + 1)
    branch.world_state.premise_progression = max(0, branch.world_state.premise_progression)
    branch.derailment_risk = max(0, branch.derailment_risk)


def _apply_world_facts(branch: BranchState, choice: Choice) -> None:
    for consequence in choice.consequences:
        branch.world_state.facts.update(consequence.world_facts)


def _update_player_investment(branch: BranchState, choice: Choice) -> None:
    investment = branch.player_investment
    investment.time_invested += 1
    investment.consequences_experienced += len(choice.consequences)
    if choice.emotional_appeal is not None:
        investment.emotional_attachment = min(
            10, max(investment.emotional_attachment, choice.emotional_appeal.personal_stakes)
        )


def _known_hatch_ids(branch: BranchState) -> set[str]:
    return branch.armed_hatch_ids() | set(branch.fired_hatch_ids) | set(branch.expired_hatch_ids)


def _verify_branch(branch: BranchState, *, start_episode: int) -> None:
    if branch.current_episode != start_episode + 1:
        raise InvariantViolation(
            f"Branch '{branch.branch_id}' episode moved from {start_episode} "
            f"to {branch.current_episode}."
        )
    if not 0 <= branch.world_state.premise_progression <= 100:
        raise InvariantViolation(
            f"Branch '{branch.branch_id}' premise progression "
            f"{branch.world_state.premise_progression} is outside [0, 100]."
        )
    if not 0 <= branch.derailment_risk <= 10:
        raise InvariantViolation(
            f"Branch '{branch.branch_id}' derailment risk {branch.derailment_risk} "
            "is outside [0, 10]."
        )
