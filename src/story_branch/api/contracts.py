"""Typed contracts shared by API handlers and the Python client."""

from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

SESSION_ID_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]{0,119}$")


class ContractModel(BaseModel):
    """Base model config used by all API contracts."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


def _normalize_session_id(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if not SESSION_ID_PATTERN.match(normalized):
        raise ValueError(
            f"session_id must match `{SESSION_ID_PATTERN.pattern}` "
            "(lowercase, digits, _ or -, starts with a-z or 0-9)."
        )
    return normalized


class ScenarioResponse(ContractModel):
    key: str
    title: str
    theme: str
    premise: str
    initial_choice_ids: list[str]


class SessionCreateRequest(ContractModel):
    """Start a play session from a bundled scenario."""

    scenario_key: str = Field(default="war-sacrifice", min_length=1, max_length=120)
    seed: int = Field(default=0, ge=0, le=2**31 - 1)
    session_id: str | None = None

    @field_validator("session_id")
    @classmethod
    def _validate_session_id(cls, value: str | None) -> str | None:
        return _normalize_session_id(value)


class ChoiceResolveRequest(ContractModel):
    """Resolve one offered choice.

    `escape_roll` pins the escape-hatch draw for replays and tests; omit it to
    use the session's seeded draw.
    """

    choice_id: str = Field(min_length=1, max_length=200)
    escape_roll: float | None = Field(default=None, ge=0.0, le=1.0)


class QuantumCollapseRequest(ContractModel):
    choice_id: str = Field(min_length=1, max_length=200)
    escape_roll: float | None = Field(default=None, ge=0.0, le=1.0)


class ForkRequest(ContractModel):
    session_id: str | None = None
    name: str | None = Field(default=None, min_length=1, max_length=200)

    @field_validator("session_id")
    @classmethod
    def _validate_session_id(cls, value: str | None) -> str | None:
        return _normalize_session_id(value)


class ChoiceResponse(ContractModel):
    choice_id: str
    text: str
    description: str
    choice_type: str
    magnitude: str
    scope: str
    difficulty_level: int
    consequence_count: int
    convergence_likelihood: float


class HistoryItemResponse(ContractModel):
    episode: int
    choice_id: str
    text: str
    timestamp_utc: str


class ConvergencePointResponse(ContractModel):
    point_id: str
    name: str
    target_episode: int
    convergence_type: str
    convergence_force: int
    status: Literal["scheduled", "resolved"]
    scar_count: int
    lasting_difference_count: int


class StoryDirectionResponse(ContractModel):
    genre: str
    premise: str
    protagonist: str


class BranchResponse(ContractModel):
    branch_id: str
    name: str
    description: str
    thematic_shift: str
    current_episode: int
    premise_progression: int
    derailment_risk: int
    parent_branch_id: str | None
    branched_episode: int
    story_direction: StoryDirectionResponse | None
    facts: dict[str, str | int | float | bool]
    history: list[HistoryItemResponse]
    upcoming_convergence: list[ConvergencePointResponse]
    resolved_convergence: list[ConvergencePointResponse]
    next_major_convergence: int | None
    armed_hatch_ids: list[str]
    fired_hatch_ids: list[str]
    expired_hatch_ids: list[str]


class QuantumOutcomeResponse(ContractModel):
    choice_id: str
    outcome: str
    probability: float


class QuantumChoiceResponse(ContractModel):
    quantum_id: str
    name: str
    candidate_ids: list[str]
    outcomes: list[QuantumOutcomeResponse]
    collapse_conditions: list[str]
    quantum_duration: int


class SessionResponse(ContractModel):
    session_id: str
    scenario_key: str
    seed: int
    parent_session_id: str | None
    branch: BranchResponse
    catalog: list[ChoiceResponse]
    quantum_choice: QuantumChoiceResponse | None
    created_at_utc: str
    updated_at_utc: str


class ButterflyEffectResponse(ContractModel):
    origin_choice: str
    description: str
    severity: int
    trigger_episode: int
    manifestation_episode: int
    probability: float
    impact: str


class CascadeResponse(ContractModel):
    trigger: str
    cascade_chain: list[str]
    ultimate_effect: str


class ButterflyResponse(ContractModel):
    active_effects: list[ButterflyEffectResponse]
    emerging_effects: list[ButterflyEffectResponse]
    cascade_potential: list[CascadeResponse]
    delayed_effects_due: list[str]
    dormant_count: int
    systemic_risk: float
    butterfly_storm: bool


class EngineIssueResponse(ContractModel):
    code: str
    severity: Literal["info", "warning"]
    message: str


class ChoiceResolutionResponse(ContractModel):
    session: SessionResponse
    resolved_choice_id: str
    derailed: bool
    fired_hatch_id: str | None
    forced_convergence: ConvergencePointResponse | None
    catalog_degraded: bool
    butterfly: ButterflyResponse
    issues: list[EngineIssueResponse]


class AnomalyResponse(ContractModel):
    anomaly_id: str
    created_at_utc: str
    session_id: str
    code: str
    severity: str
    message: str
