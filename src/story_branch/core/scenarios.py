"""Bundled playable scenarios."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from story_branch.core.choice_catalog import ChoiceScript
from story_branch.domain.models import (
    BranchingPotential,
    BranchState,
    ButterflyPotential,
    CharacterState,
    Choice,
    Consequence,
    ConvergencePoint,
    ConvergenceRequirement,
    ConvergenceSchedule,
    DelayedEffect,
    EmergencyNarrative,
    EmotionalAppeal,
    EscapeHatch,
    EscapeRequirement,
    FlexibleElement,
    MoralComplexity,
    PlayerInvestment,
    PremiseAlignment,
    StoryDirection,
    StoryPremise,
    ThematicShift,
    WorldState,
)


@dataclass(frozen=True)
class Scenario:
    """A premise, its authored choice graph, hatches, and opening state."""

    key: str
    title: str
    premise: StoryPremise
    script: ChoiceScript
    hatches: tuple[EscapeHatch, ...]
    opening: Callable[[str], BranchState]

    def new_branch(self, branch_id: str) -> BranchState:
        return self.opening(branch_id)

    def initial_catalog(self) -> list[Choice]:
        return self.script.initial_choices()


WAR_SACRIFICE_KEY = "war-sacrifice"

_PREMISE = StoryPremise(
    theme="sacrifice",
    statement=(
        "A resistance leader must choose between saving their captured team or protecting "
        "crucial intel that could end the war, knowing they cannot do both."
    ),
    character="the resistance leader",
    conflict="loyalty to the captured team against the intel that could end the war",
    resolution="true sacrifice costs what we love most",
)

_PEACEFUL_RESOLUTION = EscapeHatch(
    hatch_id="peaceful-resolution",
    name="The Diplomatic Solution",
    trigger_choice="attempt-negotiation",
    escape_type="major-pivot",
    derailment_level="thematic",
    activation_requirements=(
        EscapeRequirement(
            condition="player chose peaceful options before",
            kind="choice-selected",
            target="attempt-negotiation",
            probability=0.7,
        ),
    ),
    new_story_direction=StoryDirection(
        genre="political thriller",
        premise="Diplomacy over violence leads to unexpected alliances",
        protagonist="same character, different role",
    ),
    emergency_narrative=EmergencyNarrative(
        fallback_plot="negotiation and intrigue",
        character_continuity="maintained with new motivations",
        world_consistency="same world, different conflict resolution",
    ),
    thematic_shift=ThematicShift(
        from_theme="sacrifice in war",
        to_theme="sacrifice of ego for peace",
        bridge_method="character growth revelation",
    ),
)

_FINAL_CONFRONTATION = ConvergencePoint(
    point_id="final-confrontation",
    name="The Final Confrontation",
    target_episode=6,
    convergence_type="inevitable",
    convergence_force=9,
    required_elements=(
        ConvergenceRequirement(element="protagonist alive", flexibility="none"),
        ConvergenceRequirement(element="intel status determined", flexibility="high"),
    ),
    flexible_elements=(
        FlexibleElement(element="team composition", adaptability="high"),
        FlexibleElement(element="location details", adaptability="moderate"),
    ),
    narrative_justification="All paths lead to facing the enemy",
)


def _war_sacrifice_choices() -> list[Choice]:
    return [
        Choice(
            choice_id="save-team",
            text="Prioritize rescuing the captured team members",
            description="Rush to save your loyal friends, knowing the intel might be lost forever",
            choice_type="character-defining",
            magnitude="major",
            scope="interpersonal",
            premise_alignment=PremiseAlignment(
                supports="Loyalty over strategy",
                tests="Personal bonds vs greater good",
                proves="Some things matter more than victory",
            ),
            consequences=(
                Consequence(
                    consequence_id="team-saved",
                    description="Team members rescued but intel compromised",
                    severity=6,
                    immediate_effect="Team morale boost",
                    delayed_effect=DelayedEffect(
                        description="Enemy adapts to compromised intel", delay=2
                    ),
                    cascade_risk=7,
                    butterfly_potential=(
                        ButterflyPotential(
                            description="Saved team member becomes crucial in final battle",
                            probability_threshold=0.6,
                            cascade_delay=3,
                            ultimate_impact="Alternative victory path opens",
                        ),
                    ),
                    world_facts={
                        "team rescued": True,
                        "intel compromised": True,
                        "intel status determined": True,
                    },
                ),
            ),
            branching_potential=BranchingPotential(
                branch_count=2, divergence_level="moderate", convergence_likelihood=0.6
            ),
            emotional_appeal=EmotionalAppeal(
                primary_emotion="loyalty", moral_weight=8, personal_stakes=9
            ),
            moral_complexity=MoralComplexity(
                clear_right=False,
                gray_areas=("loyalty vs duty", "few vs many"),
                philosophical_depth=7,
            ),
            difficulty_level=8,
        ),
        Choice(
            choice_id="protect-intel",
            text="Secure the intel and let the team fend for themselves",
            description="Make the hard strategic choice that could end the war sooner",
            choice_type="premise-testing",
            magnitude="pivotal",
            scope="global",
            premise_alignment=PremiseAlignment(
                supports="Strategic sacrifice for greater good",
                tests="Personal cost of leadership",
                proves="Victory requires impossible choices",
            ),
            consequences=(
                Consequence(
                    consequence_id="intel-secured",
                    description="Intel secured but team potentially lost",
                    severity=7,
                    immediate_effect="Strategic advantage gained",
                    delayed_effect=DelayedEffect(description="Guilt and team resentment", delay=1),
                    cascade_risk=6,
                    butterfly_potential=(
                        ButterflyPotential(
                            description=(
                                "Intel leads to quick war victory but protagonist becomes isolated"
                            ),
                            probability_threshold=0.7,
                            cascade_delay=2,
                            ultimate_impact="Pyrrhic victory - win war, lose humanity",
                        ),
                    ),
                    world_facts={"intel secured": True, "intel status determined": True},
                ),
            ),
            branching_potential=BranchingPotential(
                branch_count=3, divergence_level="major", convergence_likelihood=0.4
            ),
            emotional_appeal=EmotionalAppeal(
                primary_emotion="duty", moral_weight=9, personal_stakes=8
            ),
            moral_complexity=MoralComplexity(
                clear_right=False,
                gray_areas=("utilitarian ethics", "leadership burdens"),
                philosophical_depth=9,
            ),
            difficulty_level=9,
        ),
        Choice(
            choice_id="attempt-negotiation",
            text="Try an impossible third option: negotiate",
            description="Risk everything on a desperate diplomatic gambit",
            choice_type="escape-triggering",
            magnitude="catastrophic",
            scope="meta",
            premise_alignment=PremiseAlignment(
                supports="Creative solutions over binary choices",
                tests="Willingness to break narrative expectations",
                proves="Sometimes the story itself can be changed",
            ),
            consequences=(
                Consequence(
                    consequence_id="negotiation-attempt",
                    description="Story derailment possibility activated",
                    severity=10,
                    immediate_effect="Escape hatch activated",
                    cascade_risk=10,
                    butterfly_potential=(
                        ButterflyPotential(
                            description="Story becomes entirely different",
                            probability_threshold=0.3,
                            cascade_delay=0,
                            ultimate_impact="Genre shift to political thriller",
                        ),
                    ),
                ),
            ),
            branching_potential=BranchingPotential(
                branch_count=1, divergence_level="catastrophic", convergence_likelihood=0.1
            ),
            emotional_appeal=EmotionalAppeal(
                primary_emotion="hope", moral_weight=6, personal_stakes=10
            ),
            moral_complexity=MoralComplexity(
                clear_right=False,
                gray_areas=("player agency vs narrative integrity",),
                philosophical_depth=10,
            ),
            difficulty_level=10,
            escape_hatch_id=_PEACEFUL_RESOLUTION.hatch_id,
        ),
        Choice(
            choice_id="regroup-hideout",
            text="Regroup at the hideout with the rescued team",
            description="Plan your next move with your loyal friends by your side",
            choice_type="plot-advancing",
            magnitude="minor",
            scope="interpersonal",
            premise_alignment=PremiseAlignment(
                supports="Strength through unity",
                tests="Team coordination under pressure",
                proves="Loyalty breeds loyalty",
            ),
            branching_potential=BranchingPotential(
                branch_count=2, divergence_level="minor", convergence_likelihood=0.8
            ),
            emotional_appeal=EmotionalAppeal(
                primary_emotion="relief", moral_weight=5, personal_stakes=6
            ),
            moral_complexity=MoralComplexity(clear_right=True, philosophical_depth=3),
            difficulty_level=4,
            requires_choices=("save-team",),
        ),
        Choice(
            choice_id="analyze-intel",
            text="Study the intel to find the enemy's weakness",
            description="Use the hard-won intelligence to plan a decisive strike",
            choice_type="plot-advancing",
            magnitude="major",
            scope="global",
            premise_alignment=PremiseAlignment(
                supports="Strategic thinking pays off",
                tests="Ability to act on difficult choices",
                proves="Sacrifice can lead to victory",
            ),
            branching_potential=BranchingPotential(
                branch_count=2, divergence_level="moderate", convergence_likelihood=0.7
            ),
            emotional_appeal=EmotionalAppeal(
                primary_emotion="determination", moral_weight=7, personal_stakes=8
            ),
            moral_complexity=MoralComplexity(
                clear_right=False, gray_areas=("ends justify means",), philosophical_depth=6
            ),
            difficulty_level=6,
            requires_choices=("protect-intel",),
        ),
        Choice(
            choice_id="send-word-to-team",
            text="Send word to the captured team that help will come later",
            description="Keep their hope alive without risking the intel",
            choice_type="relationship-shaping",
            magnitude="moderate",
            scope="interpersonal",
            consequences=(
                Consequence(
                    consequence_id="promise-made",
                    description="A promise the leader may not be able to keep",
                    severity=4,
                    immediate_effect="Team holds out a little longer",
                    cascade_risk=5,
                    reversible=True,
                ),
            ),
            branching_potential=BranchingPotential(
                branch_count=2, divergence_level="minor", convergence_likelihood=0.8
            ),
            emotional_appeal=EmotionalAppeal(
                primary_emotion="guilt", moral_weight=6, personal_stakes=7
            ),
            moral_complexity=MoralComplexity(
                clear_right=False, gray_areas=("comfort vs honesty",), philosophical_depth=5
            ),
            difficulty_level=5,
        ),
        Choice(
            choice_id="plan-final-strike",
            text="Plan the strike on the enemy command",
            description="Every road now leads to the same confrontation",
            choice_type="plot-advancing",
            magnitude="major",
            scope="interpersonal",
            branching_potential=BranchingPotential(
                branch_count=1, divergence_level="minor", convergence_likelihood=0.9
            ),
            moral_complexity=MoralComplexity(clear_right=True, philosophical_depth=4),
            difficulty_level=6,
        ),
        Choice(
            choice_id="diplomatic-mission",
            text="Arrange a secret meeting with enemy leadership",
            description="Risk everything on the possibility of peace",
            choice_type="plot-advancing",
            magnitude="major",
            scope="global",
            premise_alignment=PremiseAlignment(
                supports=_PEACEFUL_RESOLUTION.new_story_direction.premise,
                tests="Faith in human decency",
                proves="Communication can bridge any divide",
            ),
            branching_potential=BranchingPotential(
                branch_count=3, divergence_level="major", convergence_likelihood=0.5
            ),
            emotional_appeal=EmotionalAppeal(
                primary_emotion="hope", moral_weight=9, personal_stakes=10
            ),
            moral_complexity=MoralComplexity(
                clear_right=False, gray_areas=("trust vs caution",), philosophical_depth=8
            ),
            difficulty_level=9,
        ),
    ]


def _war_sacrifice_script() -> ChoiceScript:
    return ChoiceScript(
        choices={choice.choice_id: choice for choice in _war_sacrifice_choices()},
        initial_catalog=("save-team", "protect-intel", "attempt-negotiation"),
        successors={
            "save-team": ("regroup-hideout",),
            "protect-intel": ("analyze-intel", "send-word-to-team"),
            "attempt-negotiation": ("save-team", "protect-intel"),
            "regroup-hideout": ("plan-final-strike",),
            "analyze-intel": ("plan-final-strike",),
            "send-word-to-team": ("analyze-intel",),
            "plan-final-strike": (),
            "diplomatic-mission": (),
        },
        emergency_catalogs={_PEACEFUL_RESOLUTION.hatch_id: ("diplomatic-mission",)},
    )


def _war_sacrifice_opening(branch_id: str) -> BranchState:
    return BranchState(
        branch_id=branch_id,
        origin_choice="story-start",
        name="Main Timeline",
        description="The original story path where hard choices define the hero",
        world_state=WorldState(
            premise_progression=0,
            facts={
                "protagonist alive": True,
                "intel status determined": False,
                "hideout safe": True,
            },
        ),
        character_states=[
            CharacterState(
                name="Resistance Leader",
                stress_level=7,
                relationships={"Loyal Friend": 8},
                branch_specific_traits=["torn by duty"],
            )
        ],
        convergence_schedule=ConvergenceSchedule(
            upcoming_points=[_FINAL_CONFRONTATION],
            next_major_convergence=_FINAL_CONFRONTATION.target_episode,
            flexibility_window=2,
        ),
        derailment_risk=3,
        player_investment=PlayerInvestment(emotional_attachment=6),
    )


def war_sacrifice_scenario() -> Scenario:
    return Scenario(
        key=WAR_SACRIFICE_KEY,
        title="The Resistance Leader's Sacrifice",
        premise=_PREMISE,
        script=_war_sacrifice_script(),
        hatches=(_PEACEFUL_RESOLUTION,),
        opening=_war_sacrifice_opening,
    )


SCENARIOS: dict[str, Callable[[], Scenario]] = {
    WAR_SACRIFICE_KEY: war_sacrifice_scenario,
}


def load_scenario(key: str) -> Scenario:
    """Return a fresh scenario; raises ValueError for unknown keys."""
    factory = SCENARIOS.get(key.strip())
    if factory is None:
        raise ValueError(f"Unknown scenario '{key}'. Known: {', '.join(sorted(SCENARIOS))}.")
    return factory()
