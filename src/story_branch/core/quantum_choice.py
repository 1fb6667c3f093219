"""Fold pivotal follow-up candidates into one superposed decision."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from story_branch.core.determinism import stable_id
from story_branch.core.engine_settings import DEFAULT_SETTINGS, EngineSettings
from story_branch.domain.errors import ChoiceNotFound
from story_branch.domain.models import Choice, StoryPremise, WorldState, magnitude_rank


@dataclass(frozen=True)
class QuantumOutcome:
    choice_id: str
    outcome: str
    probability: float
    world_state_changes: tuple[str, ...] = ()
    character_impacts: tuple[str, ...] = ()


@dataclass(frozen=True)
class QuantumChoice:
    """Superposition of forward choices pending one commitment."""

    quantum_id: str
    name: str
    candidates: tuple[Choice, ...]
    outcomes: tuple[QuantumOutcome, ...]
    collapse_conditions: tuple[str, ...]
    quantum_duration: int

    def candidate_ids(self) -> list[str]:
        return [choice.choice_id for choice in self.candidates]


def create_quantum_choice(
    candidates: Sequence[Choice],
    world_state: WorldState,
    premise: StoryPremise,
    *,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> QuantumChoice:
    """Fold the first `quantum_fold_size` candidates into one entangled offering."""
    folded = tuple(candidates[: settings.quantum_fold_size])
    if len(folded) < 2:
        raise ValueError("A quantum choice needs at least two candidates.")

    weights = [_candidate_weight(choice, world_state, premise) for choice in folded]
    total = sum(weights)
    outcomes = tuple(
        QuantumOutcome(
            choice_id=choice.choice_id,
            outcome=choice.text,
            probability=round(weight / total, 4),
            world_state_changes=tuple(
                consequence.immediate_effect for consequence in choice.consequences
            ),
            character_impacts=_character_impacts(choice),
        )
        for choice, weight in zip(folded, weights, strict=True)
    )
    folded_ids = ",".join(choice.choice_id for choice in folded)
    return QuantumChoice(
        quantum_id=stable_id(
            prefix="quantum", text=f"{folded_ids}:{world_state.premise_progression}"
        ),
        name="Quantum Decision State",
        candidates=folded,
        outcomes=outcomes,
        collapse_conditions=tuple(f"Commit to '{choice.text}'" for choice in folded),
        quantum_duration=max(1, max(magnitude_rank(choice.magnitude) for choice in folded) - 2),
    )


def collapse_quantum_choice(quantum: QuantumChoice, choice_id: str) -> Choice:
    """Return the single committed candidate; the others are discarded."""
    for choice in quantum.candidates:
        if choice.choice_id == choice_id:
            return choice
    raise ChoiceNotFound(choice_id)


def _candidate_weight(choice: Choice, world_state: WorldState, premise: StoryPremise) -> float:
    weight = 0.5 + choice.branching_potential.convergence_likelihood
    if choice.emotional_appeal is not None:
        weight += choice.emotional_appeal.moral_weight / 20.0
    if choice.choice_type == "premise-testing" and world_state.premise_progression < 100:
        weight += 0.25
    alignment = choice.premise_alignment
    if alignment is not None and premise.theme.lower() in alignment.supports.lower():
        weight += 0.1
    return weight


def _character_impacts(choice: Choice) -> tuple[str, ...]:
    if choice.emotional_appeal is None:
        return ()
    return (
        f"{choice.emotional_appeal.primary_emotion} "
        f"(stakes {choice.emotional_appeal.personal_stakes}/10)",
    )
