"""Core branching-narrative domain models."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Final, Literal

ChoiceType = Literal[
    "character-defining",
    "premise-testing",
    "plot-advancing",
    "escape-triggering",
    "relationship-shaping",
]
ChoiceMagnitude = Literal["micro", "minor", "moderate", "major", "pivotal", "catastrophic"]
ChoiceScope = Literal["interpersonal", "global", "meta"]
DivergenceLevel = Literal["minor", "moderate", "major", "catastrophic"]
EscapeType = Literal["minor-detour", "major-pivot", "genre-shift"]
DerailmentLevel = Literal["cosmetic", "structural", "thematic"]
RequirementKind = Literal[
    "always",
    "choice-selected",
    "choice-type-selected",
    "premise-progression-at-least",
    "derailment-risk-at-least",
    "world-fact",
]
ConvergenceType = Literal["inevitable", "negotiable", "optional"]
Flexibility = Literal["none", "low", "high"]
ConvergenceStatus = Literal["scheduled", "resolved"]
FactValue = str | int | float | bool

MAGNITUDE_ORDER: Final[tuple[ChoiceMagnitude, ...]] = (
    "micro",
    "minor",
    "moderate",
    "major",
    "pivotal",
    "catastrophic",
)
_MAGNITUDE_SEVERITY_CAP: Final[dict[ChoiceMagnitude, int]] = {
    "micro": 3,
    "minor": 5,
    "moderate": 7,
    "major": 8,
    "pivotal": 9,
    "catastrophic": 10,
}
_SCOPE_SEVERITY_BONUS: Final[dict[ChoiceScope, int]] = {
    "interpersonal": 0,
    "global": 1,
    "meta": 2,
}


def magnitude_rank(magnitude: ChoiceMagnitude) -> int:
    """Return the ordinal position of a magnitude (micro=0 .. catastrophic=5)."""
    return MAGNITUDE_ORDER.index(magnitude)


def max_consequence_severity(magnitude: ChoiceMagnitude, scope: ChoiceScope) -> int:
    """Upper bound on consequence severity a choice of this magnitude and scope may declare."""
    return min(10, _MAGNITUDE_SEVERITY_CAP[magnitude] + _SCOPE_SEVERITY_BONUS[scope])


def _require_range(value: float, *, low: float, high: float, label: str) -> None:
    if not low <= value <= high:
        raise ValueError(f"{label} must be within [{low}, {high}], got {value}.")


@dataclass(frozen=True)
class ButterflyPotential:
    """A small consequence that may cascade into a larger impact later."""

    description: str
    probability_threshold: float
    cascade_delay: int
    ultimate_impact: str

    def __post_init__(self) -> None:
        _require_range(
            self.probability_threshold, low=0.0, high=1.0, label="probability_threshold"
        )
        if self.cascade_delay < 0:
            raise ValueError("cascade_delay must not be negative.")


@dataclass(frozen=True)
class DelayedEffect:
    """Effect that lands a number of episodes after the choice."""

    description: str
    delay: int

    def __post_init__(self) -> None:
        if self.delay < 0:
            raise ValueError("delay must not be negative.")


@dataclass(frozen=True)
class Consequence:
    """Immutable effect record produced when its owning choice is selected."""

    consequence_id: str
    description: str
    severity: int
    immediate_effect: str
    cascade_risk: int
    delayed_effect: DelayedEffect | None = None
    butterfly_potential: tuple[ButterflyPotential, ...] = ()
    reversible: bool = False
    world_facts: dict[str, FactValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _require_range(self.severity, low=1, high=10, label="severity")
        _require_range(self.cascade_risk, low=1, high=10, label="cascade_risk")


@dataclass(frozen=True)
class BranchingPotential:
    """How far a choice can split the story and how likely it is to reconverge."""

    branch_count: int
    divergence_level: DivergenceLevel
    convergence_likelihood: float

    def __post_init__(self) -> None:
        if self.branch_count < 1:
            raise ValueError("branch_count must be at least 1.")
        _require_range(
            self.convergence_likelihood, low=0.0, high=1.0, label="convergence_likelihood"
        )


@dataclass(frozen=True)
class MoralComplexity:
    clear_right: bool
    gray_areas: tuple[str, ...] = ()
    philosophical_depth: int = 5


@dataclass(frozen=True)
class PremiseAlignment:
    supports: str
    tests: str
    proves: str


@dataclass(frozen=True)
class EmotionalAppeal:
    primary_emotion: str
    moral_weight: int
    personal_stakes: int


@dataclass(frozen=True)
class Choice:
    """A decision point offered to the player."""

    choice_id: str
    text: str
    description: str
    choice_type: ChoiceType
    magnitude: ChoiceMagnitude
    scope: ChoiceScope
    branching_potential: BranchingPotential
    moral_complexity: MoralComplexity
    consequences: tuple[Consequence, ...] = ()
    premise_alignment: PremiseAlignment | None = None
    emotional_appeal: EmotionalAppeal | None = None
    difficulty_level: int = 5
    requires_choices: tuple[str, ...] = ()
    escape_hatch_id: str | None = None

    def __post_init__(self) -> None:
        ceiling = max_consequence_severity(self.magnitude, self.scope)
        for consequence in self.consequences:
            if consequence.severity > ceiling:
                raise ValueError(
                    f"Consequence '{consequence.consequence_id}' severity {consequence.severity} "
                    f"exceeds {ceiling} allowed for {self.magnitude}/{self.scope} choice "
                    f"'{self.choice_id}'."
                )


@dataclass(frozen=True)
class StoryPremise:
    """The thematic premise a story sets out to test."""

    theme: str
    statement: str
    character: str
    conflict: str
    resolution: str


@dataclass(frozen=True)
class StoryDirection:
    genre: str
    premise: str
    protagonist: str


@dataclass(frozen=True)
class EmergencyNarrative:
    fallback_plot: str
    character_continuity: str
    world_consistency: str


@dataclass(frozen=True)
class ThematicShift:
    from_theme: str
    to_theme: str
    bridge_method: str


@dataclass(frozen=True)
class EscapeRequirement:
    """One gating condition for an escape hatch.

    `kind` selects the evaluator and `target` is its argument (a choice id, a
    choice type, a number, or a world-fact key). A requirement without a `kind`
    is free text the engine cannot evaluate and is reported as misconfigured.
    `probability` is the author's estimate that the condition holds in play and
    is reported, not rolled.
    """

    condition: str
    kind: RequirementKind | None = None
    target: str | None = None
    probability: float = 1.0


@dataclass(frozen=True)
class EscapeHatch:
    """A dormant derailment trigger attached to one choice."""

    hatch_id: str
    name: str
    trigger_choice: str
    escape_type: EscapeType
    derailment_level: DerailmentLevel
    new_story_direction: StoryDirection
    emergency_narrative: EmergencyNarrative
    thematic_shift: ThematicShift
    activation_requirements: tuple[EscapeRequirement, ...] = ()
    activation_probability: float | None = None
    retriable: bool = True

    def __post_init__(self) -> None:
        if self.activation_probability is not None:
            _require_range(
                self.activation_probability, low=0.0, high=1.0, label="activation_probability"
            )


@dataclass(frozen=True)
class ConvergenceRequirement:
    element: str
    flexibility: Flexibility


@dataclass(frozen=True)
class FlexibleElement:
    element: str
    adaptability: str


@dataclass(frozen=True)
class ConvergenceScar:
    description: str
    evidence: str
    permanence: str


@dataclass(frozen=True)
class LastingDifference:
    aspect: str
    differences: tuple[str, ...]
    impact: str


@dataclass(frozen=True)
class ConvergencePoint:
    """A future juncture every branch must reconcile into."""

    point_id: str
    name: str
    target_episode: int
    convergence_type: ConvergenceType
    convergence_force: int
    required_elements: tuple[ConvergenceRequirement, ...] = ()
    flexible_elements: tuple[FlexibleElement, ...] = ()
    convergence_scars: tuple[ConvergenceScar, ...] = ()
    lasting_differences: tuple[LastingDifference, ...] = ()
    narrative_justification: str = ""
    status: ConvergenceStatus = "scheduled"

    def __post_init__(self) -> None:
        _require_range(self.convergence_force, low=1, high=10, label="convergence_force")


@dataclass
class WorldState:
    """Premise progression plus arbitrary world facts."""

    premise_progression: int = 0
    facts: dict[str, FactValue] = field(default_factory=dict)


@dataclass
class CharacterState:
    name: str
    stress_level: int = 0
    relationships: dict[str, int] = field(default_factory=dict)
    branch_specific_traits: list[str] = field(default_factory=list)


@dataclass
class ConvergenceSchedule:
    upcoming_points: list[ConvergencePoint] = field(default_factory=list)
    next_major_convergence: int | None = None
    flexibility_window: int = 2
    resolved_points: list[ConvergencePoint] = field(default_factory=list)


@dataclass
class PlayerInvestment:
    """Descriptive engagement counters; nothing in the engine branches on them."""

    emotional_attachment: int = 5
    time_invested: int = 0
    consequences_experienced: int = 0


@dataclass(frozen=True)
class HistoryEntry:
    episode: int
    choice: Choice
    consequences: tuple[Consequence, ...]
    timestamp_utc: str


@dataclass(frozen=True)
class ActiveButterflyEffect:
    origin_choice: str
    butterfly: ButterflyPotential
    severity: int
    trigger_episode: int
    manifestation_episode: int
    impact: str


@dataclass(frozen=True)
class EmergingButterflyEffect:
    origin_choice: str
    butterfly: ButterflyPotential
    severity: int
    trigger_episode: int
    expected_manifestation: int
    current_probability: float


@dataclass(frozen=True)
class CascadePotential:
    trigger: str
    cascade_chain: tuple[str, ...]
    ultimate_effect: str


@dataclass(frozen=True)
class ButterflyAnalysis:
    """Derived view of how past consequences are cascading right now."""

    active_effects: tuple[ActiveButterflyEffect, ...] = ()
    emerging_effects: tuple[EmergingButterflyEffect, ...] = ()
    cascade_potential: tuple[CascadePotential, ...] = ()
    delayed_effects_due: tuple[str, ...] = ()
    dormant_count: int = 0
    systemic_risk: float = 0.0
    butterfly_storm: bool = False


@dataclass
class BranchState:
    """Mutable snapshot of one narrative timeline."""

    branch_id: str
    origin_choice: str
    name: str
    description: str
    thematic_shift: str = "none"
    current_episode: int = 1
    world_state: WorldState = field(default_factory=WorldState)
    character_states: list[CharacterState] = field(default_factory=list)
    convergence_schedule: ConvergenceSchedule = field(default_factory=ConvergenceSchedule)
    escape_hatches: list[EscapeHatch] = field(default_factory=list)
    derailment_risk: int = 0
    choice_history: list[HistoryEntry] = field(default_factory=list)
    player_investment: PlayerInvestment = field(default_factory=PlayerInvestment)
    parent_branch_id: str | None = None
    branched_episode: int = 1
    story_direction: StoryDirection | None = None
    fired_hatch_ids: list[str] = field(default_factory=list)
    expired_hatch_ids: list[str] = field(default_factory=list)
    last_butterfly_analysis: ButterflyAnalysis | None = None

    def selected_choice_ids(self) -> list[str]:
        return [entry.choice.choice_id for entry in self.choice_history]

    def armed_hatch_ids(self) -> set[str]:
        return {hatch.hatch_id for hatch in self.escape_hatches}


def fork_branch(
    parent: BranchState,
    *,
    branch_id: str,
    origin_choice: str,
    name: str,
    description: str,
) -> BranchState:
    """Create a child timeline that diverges independently from `parent`."""
    child = copy.deepcopy(parent)
    child.branch_id = branch_id
    child.origin_choice = origin_choice
    child.name = name
    child.description = description
    child.parent_branch_id = parent.branch_id
    child.branched_episode = parent.current_episode
    return child
