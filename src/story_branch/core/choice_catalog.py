"""Deterministic follow-up choice catalogs with optional generative enrichment."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from story_branch.core.branch_codec import choice_json_schema, parse_generated_choices
from story_branch.core.determinism import seeded_random, stable_id
from story_branch.core.engine_settings import DEFAULT_SETTINGS, EngineSettings
from story_branch.domain.errors import GenerationUnavailable
from story_branch.domain.models import (
    BranchingPotential,
    BranchState,
    Choice,
    EmotionalAppeal,
    EscapeHatch,
    MoralComplexity,
    PremiseAlignment,
    StoryPremise,
    magnitude_rank,
)
from story_branch.domain.ports import NarrativeContentGenerator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChoiceScript:
    """Authored story graph: every known choice plus successor and emergency mappings."""

    choices: dict[str, Choice]
    successors: dict[str, tuple[str, ...]] = field(default_factory=dict)
    emergency_catalogs: dict[str, tuple[str, ...]] = field(default_factory=dict)
    initial_catalog: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        referenced = set(self.initial_catalog)
        for targets in (*self.successors.values(), *self.emergency_catalogs.values()):
            referenced.update(targets)
        missing = sorted(referenced - set(self.choices))
        if missing:
            raise ValueError(f"Script references unknown choices: {', '.join(missing)}.")

    def initial_choices(self) -> list[Choice]:
        return [self.choices[choice_id] for choice_id in self.initial_catalog]

    def successors_of(self, choice_id: str) -> list[Choice] | None:
        targets = self.successors.get(choice_id)
        if targets is None:
            return None
        return [self.choices[target] for target in targets]


@dataclass(frozen=True)
class CatalogDiagnostics:
    """How a catalog was assembled."""

    source_choice_id: str
    template_count: int
    generated_count: int
    terminal: bool
    degraded: bool
    issues: tuple[str, ...] = ()


def generate_follow_ups(
    previous_choice: Choice,
    branch: BranchState,
    premise: StoryPremise,
    *,
    script: ChoiceScript,
    seed: int = 0,
    settings: EngineSettings = DEFAULT_SETTINGS,
    content_generator: NarrativeContentGenerator | None = None,
) -> list[Choice]:
    """Build the next catalog from the previous choice's successors."""
    catalog, _ = generate_follow_ups_with_diagnostics(
        previous_choice,
        branch,
        premise,
        script=script,
        seed=seed,
        settings=settings,
        content_generator=content_generator,
    )
    return catalog


def generate_follow_ups_with_diagnostics(
    previous_choice: Choice,
    branch: BranchState,
    premise: StoryPremise,
    *,
    script: ChoiceScript,
    seed: int = 0,
    settings: EngineSettings = DEFAULT_SETTINGS,
    content_generator: NarrativeContentGenerator | None = None,
) -> tuple[list[Choice], CatalogDiagnostics]:
    """Build the next catalog and report template/generated counts and degradation."""
    successors = _successor_pool(previous_choice, branch, script)
    if not successors:
        logger.info("catalog.terminal choice_id=%s", previous_choice.choice_id)
        return [], CatalogDiagnostics(
            source_choice_id=previous_choice.choice_id,
            template_count=0,
            generated_count=0,
            terminal=True,
            degraded=False,
        )

    history_ids = branch.selected_choice_ids()
    selected = set(history_ids)
    candidates = [
        choice for choice in successors if set(choice.requires_choices).issubset(selected)
    ]
    if branch.world_state.premise_progression < settings.premise_choice_ceiling and not any(
        choice.choice_type == "premise-testing" for choice in candidates
    ):
        candidates.append(premise_test_choice(premise, previous_choice, branch.current_episode))
    candidates.extend(
        _reoffered_escape_choices(branch, candidates, script=script, settings=settings)
    )

    rng = seeded_random(
        "catalog",
        seed,
        previous_choice.choice_id,
        branch.current_episode,
        branch.world_state.premise_progression,
        ",".join(history_ids),
    )
    tiebreak = {choice.choice_id: rng.random() for choice in candidates}
    ordered = sorted(
        candidates,
        key=lambda choice: (-magnitude_rank(choice.magnitude), tiebreak[choice.choice_id]),
    )

    generated: list[Choice] = []
    issues: list[str] = []
    degraded = False
    if content_generator is not None and settings.max_generated_choices > 0:
        try:
            generated = _generated_choices(
                content_generator,
                previous_choice=previous_choice,
                branch=branch,
                premise=premise,
                known_ids={choice.choice_id for choice in ordered},
                limit=settings.max_generated_choices,
            )
        except GenerationUnavailable as exc:
            degraded = True
            issues.append(str(exc))
            logger.warning(
                "catalog.generation_unavailable choice_id=%s error=%s",
                previous_choice.choice_id,
                exc,
            )

    catalog = ordered + generated
    logger.info(
        "catalog.built choice_id=%s templates=%s generated=%s degraded=%s",
        previous_choice.choice_id,
        len(ordered),
        len(generated),
        degraded,
    )
    return catalog, CatalogDiagnostics(
        source_choice_id=previous_choice.choice_id,
        template_count=len(ordered),
        generated_count=len(generated),
        terminal=False,
        degraded=degraded,
        issues=tuple(issues),
    )


def generate_emergency_catalog(
    hatch: EscapeHatch,
    trigger_choice: Choice,
    *,
    script: ChoiceScript,
) -> list[Choice]:
    """Catalog that replaces the normal follow-ups after a derailment."""
    authored = script.emergency_catalogs.get(hatch.hatch_id)
    if authored:
        return [script.choices[choice_id] for choice_id in authored]
    direction = hatch.new_story_direction
    narrative = hatch.emergency_narrative
    shift = hatch.thematic_shift
    return [
        Choice(
            choice_id=stable_id(
                prefix="emergency", text=f"{hatch.hatch_id}:{trigger_choice.choice_id}"
            ),
            text=f"Follow the new {direction.genre}: {narrative.fallback_plot}",
            description=(
                f"The story turns toward '{direction.premise}' while "
                f"{narrative.character_continuity}."
            ),
            choice_type="plot-advancing",
            magnitude="major",
            scope="global",
            branching_potential=BranchingPotential(
                branch_count=2, divergence_level="major", convergence_likelihood=0.5
            ),
            moral_complexity=MoralComplexity(
                clear_right=False,
                gray_areas=(f"{shift.from_theme} vs {shift.to_theme}",),
                philosophical_depth=7,
            ),
            premise_alignment=PremiseAlignment(
                supports=direction.premise,
                tests=shift.bridge_method,
                proves=narrative.world_consistency,
            ),
        )
    ]


def premise_test_choice(premise: StoryPremise, previous_choice: Choice, episode: int) -> Choice:
    """Template choice that puts the core premise under direct test."""
    return Choice(
        choice_id=stable_id(prefix="premise-test", text=f"{previous_choice.choice_id}:{episode}"),
        text=f"Test the premise: {premise.character} faces {premise.conflict}",
        description=f"A choice that directly tests whether {premise.statement}",
        choice_type="premise-testing",
        magnitude="major",
        scope="global",
        branching_potential=BranchingPotential(
            branch_count=2, divergence_level="moderate", convergence_likelihood=0.7
        ),
        moral_complexity=MoralComplexity(
            clear_right=False,
            gray_areas=("personal cost vs greater good", "immediate vs long-term consequences"),
            philosophical_depth=8,
        ),
        premise_alignment=PremiseAlignment(
            supports=premise.statement, tests=premise.conflict, proves=premise.resolution
        ),
        emotional_appeal=EmotionalAppeal(
            primary_emotion="tension", moral_weight=8, personal_stakes=9
        ),
        difficulty_level=8,
    )


def _reoffered_escape_choices(
    branch: BranchState,
    candidates: list[Choice],
    *,
    script: ChoiceScript,
    settings: EngineSettings,
) -> list[Choice]:
    if branch.derailment_risk / 10 < settings.escape_readiness_threshold:
        return []
    offered = {choice.choice_id for choice in candidates}
    reoffered: list[Choice] = []
    for hatch in branch.escape_hatches:
        trigger = script.choices.get(hatch.trigger_choice)
        if not hatch.retriable or trigger is None or trigger.choice_id in offered:
            continue
        offered.add(trigger.choice_id)
        reoffered.append(trigger)
    return reoffered


def _generated_choices(
    content_generator: NarrativeContentGenerator,
    *,
    previous_choice: Choice,
    branch: BranchState,
    premise: StoryPremise,
    known_ids: set[str],
    limit: int,
) -> list[Choice]:
    prompt = _generation_prompt(
        previous_choice=previous_choice, branch=branch, premise=premise, limit=limit
    )
    try:
        raw = content_generator.generate(prompt, choice_json_schema())
        parsed = parse_generated_choices(raw)
    except GenerationUnavailable:
        raise
    except Exception as exc:  # noqa: BLE001
        raise GenerationUnavailable(f"Choice generation failed: {exc}") from exc

    accepted: list[Choice] = []
    for choice in parsed:
        if choice.choice_id in known_ids or choice.choice_type == "escape-triggering":
            continue
        known_ids.add(choice.choice_id)
        accepted.append(choice)
        if len(accepted) >= limit:
            break
    return accepted


def _generation_prompt(
    *,
    previous_choice: Choice,
    branch: BranchState,
    premise: StoryPremise,
    limit: int,
) -> str:
    direction = branch.story_direction
    framing = (
        f"{direction.genre}: {direction.premise}" if direction is not None else premise.statement
    )
    return (
        f"Story premise: {framing}\n"
        f"Theme: {premise.theme}. Current thematic shift: {branch.thematic_shift}.\n"
        f"Episode {branch.current_episode}, premise progression "
        f"{branch.world_state.premise_progression}%.\n"
        f"The player just chose: {previous_choice.text}\n"
        f"Write up to {limit} new follow-up choices as JSON matching the schema. "
        "Do not write escape-triggering choices."
    )


def _successor_pool(
    previous_choice: Choice, branch: BranchState, script: ChoiceScript
) -> list[Choice] | None:
    """Successors of `previous_choice`; unscripted choices resume the latest authored one."""
    if previous_choice.choice_id in script.choices:
        return script.successors_of(previous_choice.choice_id)
    selected = set(branch.selected_choice_ids())
    for entry in reversed(branch.choice_history):
        authored = script.successors_of(entry.choice.choice_id)
        if authored is None:
            continue
        remaining = [choice for choice in authored if choice.choice_id not in selected]
        logger.info(
            "catalog.continue choice_id=%s from_choice_id=%s remaining=%s",
            previous_choice.choice_id,
            entry.choice.choice_id,
            len(remaining),
        )
        return remaining
    return None
