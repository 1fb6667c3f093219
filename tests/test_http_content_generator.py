from __future__ import annotations

import json

import httpx
import pytest

from story_branch.adapters.http_content_generator import HttpNarrativeContentGenerator
from story_branch.domain.errors import GenerationUnavailable


def _generator(handler: object) -> HttpNarrativeContentGenerator:
    return HttpNarrativeContentGenerator(
        base_url="http://llm.local/v1/",
        model="test-model",
        api_key="secret",
        transport=httpx.MockTransport(handler),  # type: ignore[arg-type]
    )


def test_generate_posts_chat_completion_with_schema() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200, json={"choices": [{"message": {"content": '{"choices": []}'}}]}
        )

    content = _generator(handler).generate("Write choices", {"type": "object"})

    assert content == '{"choices": []}'
    request = seen[0]
    assert str(request.url) == "http://llm.local/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer secret"
    body = json.loads(request.content)
    assert body["model"] == "test-model"
    assert body["messages"][-1] == {"role": "user", "content": "Write choices"}
    assert body["response_format"]["json_schema"]["schema"] == {"type": "object"}


def test_generate_wraps_http_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": "overloaded"})

    with pytest.raises(GenerationUnavailable, match="request failed"):
        _generator(handler).generate("Write choices")


def test_generate_rejects_empty_content() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": [{"message": {"content": "  "}}]})

    with pytest.raises(GenerationUnavailable, match="empty content"):
        _generator(handler).generate("Write choices")


def test_from_env_requires_endpoint(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("STORY_BRANCH_CONTENT_API_URL", raising=False)
    assert HttpNarrativeContentGenerator.from_env() is None

    monkeypatch.setenv("STORY_BRANCH_CONTENT_API_URL", "http://llm.local/v1")
    monkeypatch.setenv("STORY_BRANCH_CONTENT_TIMEOUT_SECONDS", "9999")
    generator = HttpNarrativeContentGenerator.from_env()
    assert generator is not None
    assert generator._timeout_seconds == 300.0
    assert generator._model == "gpt-4o-mini"
