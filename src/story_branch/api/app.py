"""FastAPI service that plays branching scenarios one choice at a time."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Literal
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from story_branch.adapters.http_content_generator import HttpNarrativeContentGenerator
from story_branch.adapters.sqlite_anomaly_store import SQLiteAnomalyStore
from story_branch.adapters.sqlite_branch_store import SQLiteBranchStore, StoredSession
from story_branch.api.contracts import (
    AnomalyResponse,
    BranchResponse,
    ButterflyEffectResponse,
    ButterflyResponse,
    CascadeResponse,
    ChoiceResolutionResponse,
    ChoiceResolveRequest,
    ChoiceResponse,
    ConvergencePointResponse,
    EngineIssueResponse,
    ForkRequest,
    HistoryItemResponse,
    QuantumChoiceResponse,
    QuantumCollapseRequest,
    QuantumOutcomeResponse,
    ScenarioResponse,
    SessionCreateRequest,
    SessionResponse,
    StoryDirectionResponse,
)
from story_branch.core.determinism import FixedRoll
from story_branch.core.engine_settings import load_engine_settings
from story_branch.core.narrative_orchestrator import ChoiceResolution, NarrativeOrchestrator
from story_branch.core.quantum_choice import QuantumChoice
from story_branch.core.scenarios import SCENARIOS, Scenario, load_scenario
from story_branch.domain.errors import ChoiceNotFound, InvariantViolation
from story_branch.domain.models import (
    BranchState,
    ButterflyAnalysis,
    Choice,
    ConvergencePoint,
    fork_branch,
)
from story_branch.domain.ports import NarrativeContentGenerator

DEFAULT_DB_PATH = Path("work/local/story_branch.db")

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"
    service: str = "story_branch"


class ApiRootResponse(BaseModel):
    """Describes available API capabilities and runtime mode."""

    name: str = "story_branch"
    stage: Literal["local-preview"] = "local-preview"
    persistence: Literal["sqlite"] = "sqlite"
    generation: Literal["templates", "templates+http"] = "templates"
    endpoints: list[str] = Field(
        default_factory=lambda: [
            "/healthz",
            "/api/v1",
            "/api/v1/scenarios",
            "/api/v1/sessions",
            "/api/v1/sessions/{session_id}",
            "/api/v1/sessions/{session_id}/choices",
            "/api/v1/sessions/{session_id}/butterfly",
            "/api/v1/sessions/{session_id}/fork",
            "/api/v1/sessions/{session_id}/quantum/collapse",
            "/api/v1/sessions/{session_id}/anomalies",
        ]
    )


def _resolve_db_path(db_path: Path | None) -> Path:
    """Resolve DB path from explicit arg, env var, then default path."""
    if db_path is not None:
        return db_path
    env_value = os.environ.get("STORY_BRANCH_DB_PATH", "").strip()
    if env_value:
        return Path(env_value)
    return DEFAULT_DB_PATH


def _cors_origins() -> list[str]:
    raw = os.environ.get("STORY_BRANCH_CORS_ORIGINS", "").strip()
    if raw:
        return [origin.strip() for origin in raw.split(",") if origin.strip()]
    return ["http://127.0.0.1:5173", "http://localhost:5173"]


def _int_env(name: str, default: int, *, minimum: int, maximum: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, min(maximum, value))


def _scenario_response(scenario: Scenario) -> ScenarioResponse:
    return ScenarioResponse(
        key=scenario.key,
        title=scenario.title,
        theme=scenario.premise.theme,
        premise=scenario.premise.statement,
        initial_choice_ids=list(scenario.script.initial_catalog),
    )


def _choice_response(choice: Choice) -> ChoiceResponse:
    return ChoiceResponse(
        choice_id=choice.choice_id,
        text=choice.text,
        description=choice.description,
        choice_type=choice.choice_type,
        magnitude=choice.magnitude,
        scope=choice.scope,
        difficulty_level=choice.difficulty_level,
        consequence_count=len(choice.consequences),
        convergence_likelihood=choice.branching_potential.convergence_likelihood,
    )


def _point_response(point: ConvergencePoint) -> ConvergencePointResponse:
    return ConvergencePointResponse(
        point_id=point.point_id,
        name=point.name,
        target_episode=point.target_episode,
        convergence_type=point.convergence_type,
        convergence_force=point.convergence_force,
        status=point.status,
        scar_count=len(point.convergence_scars),
        lasting_difference_count=len(point.lasting_differences),
    )


def _branch_response(branch: BranchState) -> BranchResponse:
    direction = branch.story_direction
    schedule = branch.convergence_schedule
    return BranchResponse(
        branch_id=branch.branch_id,
        name=branch.name,
        description=branch.description,
        thematic_shift=branch.thematic_shift,
        current_episode=branch.current_episode,
        premise_progression=branch.world_state.premise_progression,
        derailment_risk=branch.derailment_risk,
        parent_branch_id=branch.parent_branch_id,
        branched_episode=branch.branched_episode,
        story_direction=(
            StoryDirectionResponse(
                genre=direction.genre,
                premise=direction.premise,
                protagonist=direction.protagonist,
            )
            if direction is not None
            else None
        ),
        facts=dict(branch.world_state.facts),
        history=[
            HistoryItemResponse(
                episode=entry.episode,
                choice_id=entry.choice.choice_id,
                text=entry.choice.text,
                timestamp_utc=entry.timestamp_utc,
            )
            for entry in branch.choice_history
        ],
        upcoming_convergence=[_point_response(point) for point in schedule.upcoming_points],
        resolved_convergence=[_point_response(point) for point in schedule.resolved_points],
        next_major_convergence=schedule.next_major_convergence,
        armed_hatch_ids=sorted(branch.armed_hatch_ids()),
        fired_hatch_ids=list(branch.fired_hatch_ids),
        expired_hatch_ids=list(branch.expired_hatch_ids),
    )


def _quantum_response(quantum: QuantumChoice | None) -> QuantumChoiceResponse | None:
    if quantum is None:
        return None
    return QuantumChoiceResponse(
        quantum_id=quantum.quantum_id,
        name=quantum.name,
        candidate_ids=quantum.candidate_ids(),
        outcomes=[
            QuantumOutcomeResponse(
                choice_id=outcome.choice_id,
                outcome=outcome.outcome,
                probability=outcome.probability,
            )
            for outcome in quantum.outcomes
        ],
        collapse_conditions=list(quantum.collapse_conditions),
        quantum_duration=quantum.quantum_duration,
    )


def _session_response(session: StoredSession) -> SessionResponse:
    return SessionResponse(
        session_id=session.session_id,
        scenario_key=session.scenario_key,
        seed=session.seed,
        parent_session_id=session.parent_session_id,
        branch=_branch_response(session.branch),
        catalog=[_choice_response(choice) for choice in session.catalog],
        quantum_choice=_quantum_response(session.quantum),
        created_at_utc=session.created_at_utc,
        updated_at_utc=session.updated_at_utc,
    )


def _butterfly_response(analysis: ButterflyAnalysis) -> ButterflyResponse:
    return ButterflyResponse(
        active_effects=[
            ButterflyEffectResponse(
                origin_choice=effect.origin_choice,
                description=effect.butterfly.description,
                severity=effect.severity,
                trigger_episode=effect.trigger_episode,
                manifestation_episode=effect.manifestation_episode,
                probability=1.0,
                impact=effect.impact,
            )
            for effect in analysis.active_effects
        ],
        emerging_effects=[
            ButterflyEffectResponse(
                origin_choice=effect.origin_choice,
                description=effect.butterfly.description,
                severity=effect.severity,
                trigger_episode=effect.trigger_episode,
                manifestation_episode=effect.expected_manifestation,
                probability=effect.current_probability,
                impact=effect.butterfly.ultimate_impact,
            )
            for effect in analysis.emerging_effects
        ],
        cascade_potential=[
            CascadeResponse(
                trigger=cascade.trigger,
                cascade_chain=list(cascade.cascade_chain),
                ultimate_effect=cascade.ultimate_effect,
            )
            for cascade in analysis.cascade_potential
        ],
        delayed_effects_due=list(analysis.delayed_effects_due),
        dormant_count=analysis.dormant_count,
        systemic_risk=analysis.systemic_risk,
        butterfly_storm=analysis.butterfly_storm,
    )


def create_app(
    db_path: Path | None = None,
    *,
    content_generator: NarrativeContentGenerator | None = None,
) -> FastAPI:
    """Create the API application."""
    effective_db_path = _resolve_db_path(db_path)
    store = SQLiteBranchStore(db_path=effective_db_path)
    anomaly_store = SQLiteAnomalyStore(db_path=effective_db_path)
    settings = load_engine_settings()
    generator = content_generator or HttpNarrativeContentGenerator.from_env()
    anomaly_retention_days = _int_env(
        "STORY_BRANCH_ANOMALY_RETENTION_DAYS", 30, minimum=1, maximum=3650
    )
    anomaly_max_rows = _int_env(
        "STORY_BRANCH_ANOMALY_MAX_ROWS", 10_000, minimum=100, maximum=2_000_000
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        removed = anomaly_store.prune(
            retention_days=anomaly_retention_days,
            max_rows=anomaly_max_rows,
        )
        logger.info("anomaly.prune removed=%s", removed)
        yield

    app = FastAPI(
        title="story_branch API",
        version="0.1.0",
        description=(
            "Interactive branching-narrative engine: resolve choices, track butterfly "
            "effects, fork timelines, and collapse quantum choices."
        ),
        lifespan=lifespan,
        openapi_tags=[
            {"name": "system", "description": "Service health and runtime metadata."},
            {"name": "api", "description": "API discovery and root-level capability listing."},
            {"name": "scenarios", "description": "Bundled playable scenarios."},
            {"name": "sessions", "description": "Play sessions and choice resolution."},
        ],
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    logger.info(
        "api.start db_path=%s generator=%s anomaly_retention_days=%s",
        effective_db_path,
        type(generator).__name__ if generator is not None else "none",
        anomaly_retention_days,
    )

    def record_anomaly(*, session_id: str, code: str, severity: str, message: str) -> None:
        """Persist anomaly breadcrumbs and mirror concise warning logs."""
        anomaly = anomaly_store.record(
            session_id=session_id, code=code, severity=severity, message=message
        )
        logger.warning(
            "anomaly.recorded id=%s session_id=%s code=%s severity=%s",
            anomaly.anomaly_id,
            session_id,
            code,
            severity,
        )

    def session_or_404(session_id: str) -> StoredSession:
        session = store.get_session(session_id=session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return session

    def orchestrator_for(session: StoredSession) -> tuple[NarrativeOrchestrator, Scenario]:
        scenario = load_scenario(session.scenario_key)
        orchestrator = NarrativeOrchestrator(
            script=scenario.script,
            premise=scenario.premise,
            settings=settings,
            content_generator=generator,
            seed=session.seed,
        )
        return orchestrator, scenario

    def persist_resolution(
        session: StoredSession, resolution: ChoiceResolution, resolved_choice_id: str
    ) -> ChoiceResolutionResponse:
        for issue in resolution.issues:
            if issue.severity == "warning":
                record_anomaly(
                    session_id=session.session_id,
                    code=issue.code,
                    severity=issue.severity,
                    message=issue.message,
                )
        saved = store.save_session(
            session_id=session.session_id,
            branch=resolution.branch,
            catalog=resolution.next_catalog,
            quantum=resolution.quantum_choice,
        )
        if saved is None:
            raise HTTPException(status_code=404, detail="Session not found")
        fired = resolution.escape_outcome.fired_hatch
        return ChoiceResolutionResponse(
            session=_session_response(saved),
            resolved_choice_id=resolved_choice_id,
            derailed=resolution.derailed,
            fired_hatch_id=fired.hatch_id if fired is not None else None,
            forced_convergence=(
                _point_response(resolution.forced_convergence)
                if resolution.forced_convergence is not None
                else None
            ),
            catalog_degraded=resolution.catalog_degraded,
            butterfly=_butterfly_response(resolution.butterfly),
            issues=[
                EngineIssueResponse(code=issue.code, severity=issue.severity, message=issue.message)
                for issue in resolution.issues
            ],
        )

    def invariant_conflict(session: StoredSession, exc: InvariantViolation) -> HTTPException:
        record_anomaly(
            session_id=session.session_id,
            code="invariant_violation",
            severity="error",
            message=str(exc),
        )
        return HTTPException(status_code=409, detail=str(exc))

    @app.get("/healthz", response_model=HealthResponse, tags=["system"])
    def healthz() -> HealthResponse:
        return HealthResponse()

    @app.get("/api/v1", response_model=ApiRootResponse, tags=["api"])
    def api_root() -> ApiRootResponse:
        generation = "templates+http" if generator is not None else "templates"
        return ApiRootResponse(generation=generation)

    @app.get("/api/v1/scenarios", response_model=list[ScenarioResponse], tags=["scenarios"])
    def list_scenarios() -> list[ScenarioResponse]:
        return [_scenario_response(factory()) for _, factory in sorted(SCENARIOS.items())]

    @app.get("/api/v1/sessions", response_model=list[SessionResponse], tags=["sessions"])
    def list_sessions(limit: int = Query(default=20, ge=1, le=200)) -> list[SessionResponse]:
        return [_session_response(session) for session in store.list_sessions(limit=limit)]

    @app.post(
        "/api/v1/sessions", response_model=SessionResponse, tags=["sessions"], status_code=201
    )
    def create_session(payload: SessionCreateRequest) -> SessionResponse:
        try:
            scenario = load_scenario(payload.scenario_key)
        except ValueError as exc:
            raise HTTPException(status_code=404, detail="Scenario not found") from exc
        branch = scenario.new_branch(payload.session_id or uuid4().hex)
        created = store.create_session(
            scenario_key=scenario.key,
            seed=payload.seed,
            branch=branch,
            catalog=scenario.initial_catalog(),
        )
        if created is None:
            raise HTTPException(status_code=409, detail="Session id already exists")
        return _session_response(created)

    @app.get("/api/v1/sessions/{session_id}", response_model=SessionResponse, tags=["sessions"])
    def get_session(session_id: str) -> SessionResponse:
        return _session_response(session_or_404(session_id))

    @app.post(
        "/api/v1/sessions/{session_id}/choices",
        response_model=ChoiceResolutionResponse,
        tags=["sessions"],
    )
    def resolve_choice(session_id: str, payload: ChoiceResolveRequest) -> ChoiceResolutionResponse:
        session = session_or_404(session_id)
        orchestrator, scenario = orchestrator_for(session)
        try:
            resolution = orchestrator.resolve(
                session.branch,
                session.catalog,
                payload.choice_id,
                scenario.hatches,
                random_source=(
                    FixedRoll(payload.escape_roll) if payload.escape_roll is not None else None
                ),
            )
        except ChoiceNotFound as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except InvariantViolation as exc:
            raise invariant_conflict(session, exc) from exc
        return persist_resolution(session, resolution, payload.choice_id)

    @app.post(
        "/api/v1/sessions/{session_id}/quantum/collapse",
        response_model=ChoiceResolutionResponse,
        tags=["sessions"],
    )
    def collapse_quantum(
        session_id: str, payload: QuantumCollapseRequest
    ) -> ChoiceResolutionResponse:
        session = session_or_404(session_id)
        if session.quantum is None:
            raise HTTPException(status_code=409, detail="No quantum choice is pending")
        orchestrator, scenario = orchestrator_for(session)
        try:
            resolution = orchestrator.collapse_and_resolve(
                session.branch,
                session.quantum,
                payload.choice_id,
                scenario.hatches,
                random_source=(
                    FixedRoll(payload.escape_roll) if payload.escape_roll is not None else None
                ),
            )
        except ChoiceNotFound as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except InvariantViolation as exc:
            raise invariant_conflict(session, exc) from exc
        return persist_resolution(session, resolution, payload.choice_id)

    @app.get(
        "/api/v1/sessions/{session_id}/butterfly",
        response_model=ButterflyResponse,
        tags=["sessions"],
    )
    def butterfly(session_id: str) -> ButterflyResponse:
        session = session_or_404(session_id)
        orchestrator, _ = orchestrator_for(session)
        return _butterfly_response(orchestrator.butterfly(session.branch))

    @app.post(
        "/api/v1/sessions/{session_id}/fork",
        response_model=SessionResponse,
        tags=["sessions"],
        status_code=201,
    )
    def fork_session(session_id: str, payload: ForkRequest) -> SessionResponse:
        parent = session_or_404(session_id)
        history = parent.branch.choice_history
        child = fork_branch(
            parent.branch,
            branch_id=payload.session_id or uuid4().hex,
            origin_choice=history[-1].choice.choice_id if history else "story-start",
            name=payload.name or f"{parent.branch.name} (fork)",
            description=(
                f"Forked from {parent.branch.name} at episode {parent.branch.current_episode}"
            ),
        )
        created = store.create_session(
            scenario_key=parent.scenario_key,
            seed=parent.seed,
            branch=child,
            catalog=parent.catalog,
            quantum=parent.quantum,
            parent_session_id=parent.session_id,
        )
        if created is None:
            raise HTTPException(status_code=409, detail="Session id already exists")
        return _session_response(created)

    @app.get(
        "/api/v1/sessions/{session_id}/anomalies",
        response_model=list[AnomalyResponse],
        tags=["sessions"],
    )
    def list_anomalies(
        session_id: str, limit: int = Query(default=50, ge=1, le=500)
    ) -> list[AnomalyResponse]:
        session_or_404(session_id)
        return [
            AnomalyResponse(
                anomaly_id=anomaly.anomaly_id,
                created_at_utc=anomaly.created_at_utc,
                session_id=anomaly.session_id,
                code=anomaly.code,
                severity=anomaly.severity,
                message=anomaly.message,
            )
            for anomaly in anomaly_store.list_recent(session_id=session_id, limit=limit)
        ]

    return app


app = create_app()
