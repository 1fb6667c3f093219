"""Butterfly-effect classification across a branch's choice history."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

from story_branch.core.determinism import stable_roll
from story_branch.core.engine_settings import DEFAULT_SETTINGS, EngineSettings
from story_branch.domain.models import (
    ActiveButterflyEffect,
    ButterflyAnalysis,
    ButterflyPotential,
    CascadePotential,
    Consequence,
    EmergingButterflyEffect,
    HistoryEntry,
    WorldState,
)

ButterflyClass = Literal["active", "emerging", "dormant"]


@dataclass(frozen=True)
class _PotentialContext:
    origin_choice: str
    consequence: Consequence
    potential: ButterflyPotential
    potential_index: int
    trigger_episode: int


def running_probability(*, trigger_episode: int, cascade_delay: int, current_episode: int) -> float:
    """Probability that rises from the choice episode to certainty at manifestation."""
    elapsed = current_episode - trigger_episode
    if elapsed < 0:
        return 0.0
    return round(min(1.0, (elapsed + 1) / (cascade_delay + 1)), 4)


def manifestation_roll(
    *,
    origin_choice: str,
    consequence_id: str,
    potential_index: int,
    trigger_episode: int,
    seed: int,
) -> float:
    """Seeded roll resolved once a potential is due; the same key always rolls the same."""
    return stable_roll(
        "butterfly", seed, origin_choice, consequence_id, potential_index, trigger_episode
    )


def classify_butterfly_potential(
    *,
    origin_choice: str,
    consequence_id: str,
    potential: ButterflyPotential,
    potential_index: int,
    trigger_episode: int,
    current_episode: int,
    seed: int = 0,
) -> tuple[ButterflyClass, float]:
    """Place one potential into exactly one of active, emerging, or dormant.

    A due potential manifests when its seeded roll clears `probability_threshold`,
    so a higher threshold makes activation less likely.
    """
    probability = running_probability(
        trigger_episode=trigger_episode,
        cascade_delay=potential.cascade_delay,
        current_episode=current_episode,
    )
    if probability <= 0.0:
        return "dormant", probability
    if probability < 1.0:
        return "emerging", probability
    roll = manifestation_roll(
        origin_choice=origin_choice,
        consequence_id=consequence_id,
        potential_index=potential_index,
        trigger_episode=trigger_episode,
        seed=seed,
    )
    if roll >= potential.probability_threshold:
        return "active", probability
    return "dormant", probability


def track_butterfly_effects(
    history: Sequence[HistoryEntry],
    world_state: WorldState,
    current_episode: int,
    *,
    seed: int = 0,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> ButterflyAnalysis:
    """Scan history for activating, emerging, and due consequences without mutating anything.

    `world_state` is part of the tracking signature but is currently unused:
    classification depends only on `history`, `current_episode` and `seed`.
    """
    del world_state
    active: list[ActiveButterflyEffect] = []
    emerging: list[EmergingButterflyEffect] = []
    dormant_count = 0

    for context in _iter_potentials(history):
        label, probability = classify_butterfly_potential(
            origin_choice=context.origin_choice,
            consequence_id=context.consequence.consequence_id,
            potential=context.potential,
            potential_index=context.potential_index,
            trigger_episode=context.trigger_episode,
            current_episode=current_episode,
            seed=seed,
        )
        manifestation = context.trigger_episode + context.potential.cascade_delay
        if label == "active":
            active.append(
                ActiveButterflyEffect(
                    origin_choice=context.origin_choice,
                    butterfly=context.potential,
                    severity=context.consequence.severity,
                    trigger_episode=context.trigger_episode,
                    manifestation_episode=manifestation,
                    impact=context.potential.ultimate_impact,
                )
            )
        elif label == "emerging":
            emerging.append(
                EmergingButterflyEffect(
                    origin_choice=context.origin_choice,
                    butterfly=context.potential,
                    severity=context.consequence.severity,
                    trigger_episode=context.trigger_episode,
                    expected_manifestation=manifestation,
                    current_probability=probability,
                )
            )
        else:
            dormant_count += 1

    cascades = _cascade_potential(history, active, settings=settings)
    return ButterflyAnalysis(
        active_effects=tuple(active),
        emerging_effects=tuple(emerging),
        cascade_potential=tuple(cascades),
        delayed_effects_due=tuple(_delayed_effects_due(history, current_episode)),
        dormant_count=dormant_count,
        systemic_risk=_systemic_risk(active, emerging),
        butterfly_storm=detect_butterfly_storm(emerging, settings=settings),
    )


def detect_butterfly_storm(
    emerging: Sequence[EmergingButterflyEffect],
    *,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> bool:
    """True when enough emerging effects are simultaneously close to manifesting."""
    hot = [effect for effect in emerging if effect.current_probability > settings.storm_probability]
    return len(hot) >= settings.storm_min_effects


def _iter_potentials(history: Sequence[HistoryEntry]) -> list[_PotentialContext]:
    contexts: list[_PotentialContext] = []
    for entry in history:
        for consequence in entry.consequences:
            for index, potential in enumerate(consequence.butterfly_potential):
                contexts.append(
                    _PotentialContext(
                        origin_choice=entry.choice.choice_id,
                        consequence=consequence,
                        potential=potential,
                        potential_index=index,
                        trigger_episode=entry.episode,
                    )
                )
    return contexts


def _systemic_risk(
    active: Sequence[ActiveButterflyEffect],
    emerging: Sequence[EmergingButterflyEffect],
) -> float:
    weighted = [(1.0, effect.severity) for effect in active]
    weighted.extend((effect.current_probability, effect.severity) for effect in emerging)
    total_weight = sum(weight for _, weight in weighted)
    if total_weight <= 0:
        return 0.0
    risk = sum(probability * weight for probability, weight in weighted) / total_weight
    return round(min(1.0, max(0.0, risk)), 4)


def _cascade_potential(
    history: Sequence[HistoryEntry],
    active: Sequence[ActiveButterflyEffect],
    *,
    settings: EngineSettings,
) -> list[CascadePotential]:
    risk_by_origin: dict[tuple[str, int], int] = {}
    for entry in history:
        for consequence in entry.consequences:
            key = (entry.choice.choice_id, entry.episode)
            risk_by_origin[key] = max(risk_by_origin.get(key, 0), consequence.cascade_risk)

    cascades: list[CascadePotential] = []
    for effect in active:
        cascade_risk = risk_by_origin.get((effect.origin_choice, effect.trigger_episode), 0)
        if cascade_risk < settings.cascade_risk_floor:
            continue
        cascades.append(
            CascadePotential(
                trigger=effect.origin_choice,
                cascade_chain=(effect.butterfly.description, effect.impact),
                ultimate_effect=effect.impact,
            )
        )
    return cascades


def _delayed_effects_due(history: Sequence[HistoryEntry], current_episode: int) -> list[str]:
    due: list[str] = []
    for entry in history:
        for consequence in entry.consequences:
            delayed = consequence.delayed_effect
            if delayed is None:
                continue
            if current_episode >= entry.episode + delayed.delay:
                due.append(delayed.description)
    return due
