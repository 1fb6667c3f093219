"""Tunable engine constants with environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class EngineSettings:
    """Numeric knobs of the branching engine."""

    premise_increment: int = 15
    escape_fire_threshold: float = 0.7
    storm_probability: float = 0.7
    storm_min_effects: int = 3
    quantum_fold_size: int = 3
    premise_choice_ceiling: int = 70
    escape_readiness_threshold: float = 0.6
    max_generated_choices: int = 2
    global_convergence_lead: int = 3
    cascade_risk_floor: int = 7


DEFAULT_SETTINGS = EngineSettings()


def load_engine_settings() -> EngineSettings:
    """Build settings from `STORY_BRANCH_*` environment variables."""
    return EngineSettings(
        premise_increment=_int_env(
            "STORY_BRANCH_PREMISE_INCREMENT", default=15, minimum=0, maximum=100
        ),
        escape_fire_threshold=_float_env(
            "STORY_BRANCH_ESCAPE_FIRE_THRESHOLD", default=0.7, minimum=0.0, maximum=1.0
        ),
        storm_probability=_float_env(
            "STORY_BRANCH_STORM_PROBABILITY", default=0.7, minimum=0.0, maximum=1.0
        ),
        storm_min_effects=_int_env(
            "STORY_BRANCH_STORM_MIN_EFFECTS", default=3, minimum=1, maximum=50
        ),
        quantum_fold_size=_int_env(
            "STORY_BRANCH_QUANTUM_FOLD_SIZE", default=3, minimum=2, maximum=10
        ),
        premise_choice_ceiling=_int_env(
            "STORY_BRANCH_PREMISE_CHOICE_CEILING", default=70, minimum=0, maximum=100
        ),
        escape_readiness_threshold=_float_env(
            "STORY_BRANCH_ESCAPE_READINESS_THRESHOLD", default=0.6, minimum=0.0, maximum=1.0
        ),
        max_generated_choices=_int_env(
            "STORY_BRANCH_MAX_GENERATED_CHOICES", default=2, minimum=0, maximum=10
        ),
        global_convergence_lead=_int_env(
            "STORY_BRANCH_GLOBAL_CONVERGENCE_LEAD", default=3, minimum=1, maximum=50
        ),
        cascade_risk_floor=_int_env(
            "STORY_BRANCH_CASCADE_RISK_FLOOR", default=7, minimum=1, maximum=10
        ),
    )


def _int_env(name: str, *, default: int, minimum: int, maximum: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, min(maximum, value))


def _float_env(name: str, *, default: float, minimum: float, maximum: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return max(minimum, min(maximum, value))
