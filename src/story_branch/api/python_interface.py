"""Python-first client for the story_branch HTTP API."""

from __future__ import annotations

import httpx

from story_branch.api.contracts import (
    ButterflyResponse,
    ChoiceResolutionResponse,
    ChoiceResolveRequest,
    ForkRequest,
    QuantumCollapseRequest,
    ScenarioResponse,
    SessionCreateRequest,
    SessionResponse,
)


class StoryBranchApiClient:
    """Tiny typed API client for Python users."""

    def __init__(self, api_base_url: str = "http://127.0.0.1:8000", timeout: float = 30.0) -> None:
        self._api_base_url = api_base_url.rstrip("/")
        self._timeout = timeout

    @property
    def api_base_url(self) -> str:
        """Return normalized API base URL."""
        return self._api_base_url

    def list_scenarios(self) -> list[ScenarioResponse]:
        response = httpx.get(f"{self._api_base_url}/api/v1/scenarios", timeout=self._timeout)
        response.raise_for_status()
        return [ScenarioResponse.model_validate(item) for item in response.json()]

    def start_session(
        self,
        *,
        scenario_key: str = "war-sacrifice",
        seed: int = 0,
        session_id: str | None = None,
    ) -> SessionResponse:
        request = SessionCreateRequest(scenario_key=scenario_key, seed=seed, session_id=session_id)
        response = httpx.post(
            f"{self._api_base_url}/api/v1/sessions",
            json=request.model_dump(mode="json"),
            timeout=self._timeout,
        )
        response.raise_for_status()
        return SessionResponse.model_validate(response.json())

    def get_session(self, *, session_id: str) -> SessionResponse:
        response = httpx.get(
            f"{self._api_base_url}/api/v1/sessions/{session_id}", timeout=self._timeout
        )
        response.raise_for_status()
        return SessionResponse.model_validate(response.json())

    def choose(
        self,
        *,
        session_id: str,
        choice_id: str,
        escape_roll: float | None = None,
    ) -> ChoiceResolutionResponse:
        """Resolve one offered choice; HTTP 409 means the catalog is stale or the branch broke."""
        request = ChoiceResolveRequest(choice_id=choice_id, escape_roll=escape_roll)
        response = httpx.post(
            f"{self._api_base_url}/api/v1/sessions/{session_id}/choices",
            json=request.model_dump(mode="json"),
            timeout=self._timeout,
        )
        response.raise_for_status()
        return ChoiceResolutionResponse.model_validate(response.json())

    def collapse_quantum(
        self,
        *,
        session_id: str,
        choice_id: str,
        escape_roll: float | None = None,
    ) -> ChoiceResolutionResponse:
        request = QuantumCollapseRequest(choice_id=choice_id, escape_roll=escape_roll)
        response = httpx.post(
            f"{self._api_base_url}/api/v1/sessions/{session_id}/quantum/collapse",
            json=request.model_dump(mode="json"),
            timeout=self._timeout,
        )
        response.raise_for_status()
        return ChoiceResolutionResponse.model_validate(response.json())

    def butterfly(self, *, session_id: str) -> ButterflyResponse:
        response = httpx.get(
            f"{self._api_base_url}/api/v1/sessions/{session_id}/butterfly",
            timeout=self._timeout,
        )
        response.raise_for_status()
        return ButterflyResponse.model_validate(response.json())

    def fork(
        self,
        *,
        session_id: str,
        new_session_id: str | None = None,
        name: str | None = None,
    ) -> SessionResponse:
        request = ForkRequest(session_id=new_session_id, name=name)
        response = httpx.post(
            f"{self._api_base_url}/api/v1/sessions/{session_id}/fork",
            json=request.model_dump(mode="json"),
            timeout=self._timeout,
        )
        response.raise_for_status()
        return SessionResponse.model_validate(response.json())
