"""OpenAI-compatible chat-completions client that authors extra choices."""

from __future__ import annotations

import json
import logging
import os
from typing import Any

import httpx

from story_branch.domain.errors import GenerationUnavailable

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You write branching choices for an interactive story. "
    "Reply with JSON only, shaped as {\"choices\": [...]}."
)


def _float_env(name: str, default: float, *, minimum: float, maximum: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return max(minimum, min(maximum, value))


class HttpNarrativeContentGenerator:
    """Calls `<base_url>/chat/completions` and returns the assistant message content."""

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        api_key: str = "",
        timeout_seconds: float = 20.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not base_url.strip():
            raise ValueError("base_url must not be empty.")
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    @classmethod
    def from_env(cls) -> HttpNarrativeContentGenerator | None:
        """Build from `STORY_BRANCH_CONTENT_*` variables; None when no endpoint is configured."""
        base_url = os.environ.get("STORY_BRANCH_CONTENT_API_URL", "").strip()
        if not base_url:
            return None
        return cls(
            base_url=base_url,
            model=os.environ.get("STORY_BRANCH_CONTENT_MODEL", "").strip() or "gpt-4o-mini",
            api_key=os.environ.get("STORY_BRANCH_CONTENT_API_KEY", "").strip(),
            timeout_seconds=_float_env(
                "STORY_BRANCH_CONTENT_TIMEOUT_SECONDS", 20.0, minimum=1.0, maximum=300.0
            ),
        )

    def generate(self, prompt: str, schema: dict[str, Any] | None = None) -> str | dict[str, Any]:
        body: dict[str, Any] = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }
        if schema is not None:
            body["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "story_choices", "schema": schema},
            }
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        try:
            with httpx.Client(
                timeout=self._timeout_seconds, transport=self._transport, headers=headers
            ) as client:
                response = client.post(f"{self._base_url}/chat/completions", json=body)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, json.JSONDecodeError) as exc:
            logger.warning("content_generator.request_failed model=%s error=%s", self._model, exc)
            raise GenerationUnavailable(f"Content endpoint request failed: {exc}") from exc

        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise GenerationUnavailable("Content endpoint returned no message content.") from exc
        if not isinstance(content, str) or not content.strip():
            raise GenerationUnavailable("Content endpoint returned empty content.")
        logger.info("content_generator.completed model=%s chars=%s", self._model, len(content))
        return content
