"""JSON encoding and validation for branch artifacts."""

from __future__ import annotations

import json
from typing import Any

from pydantic import TypeAdapter

from story_branch.core.quantum_choice import QuantumChoice
from story_branch.domain.models import BranchState, Choice

BRANCH_CODEC_VERSION = "branch_state.v1"

_BRANCH_ADAPTER: TypeAdapter[BranchState] = TypeAdapter(BranchState)
_CATALOG_ADAPTER: TypeAdapter[list[Choice]] = TypeAdapter(list[Choice])
_QUANTUM_ADAPTER: TypeAdapter[QuantumChoice] = TypeAdapter(QuantumChoice)


def dump_branch_json(branch: BranchState) -> str:
    return _BRANCH_ADAPTER.dump_json(branch).decode("utf-8")


def load_branch_json(payload: str) -> BranchState:
    return _BRANCH_ADAPTER.validate_json(payload)


def dump_catalog_json(catalog: list[Choice]) -> str:
    return _CATALOG_ADAPTER.dump_json(catalog).decode("utf-8")


def load_catalog_json(payload: str) -> list[Choice]:
    return _CATALOG_ADAPTER.validate_json(payload)


def dump_quantum_json(quantum: QuantumChoice) -> str:
    return _QUANTUM_ADAPTER.dump_json(quantum).decode("utf-8")


def load_quantum_json(payload: str) -> QuantumChoice:
    return _QUANTUM_ADAPTER.validate_json(payload)


def choice_json_schema() -> dict[str, Any]:
    """JSON schema handed to the generative collaborator for new choices."""
    return {
        "type": "object",
        "properties": {"choices": _CATALOG_ADAPTER.json_schema()},
        "required": ["choices"],
    }


def parse_generated_choices(payload: str | dict[str, Any]) -> list[Choice]:
    """Validate generator output shaped as `{"choices": [...]}` into domain choices.

    Raises ValueError (including pydantic ValidationError) for unusable output.
    """
    if isinstance(payload, str):
        try:
            decoded = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Generated content is not JSON: {exc.msg}") from exc
    else:
        decoded = payload
    if isinstance(decoded, list):
        raw_choices: Any = decoded
    elif isinstance(decoded, dict) and isinstance(decoded.get("choices"), list):
        raw_choices = decoded["choices"]
    else:
        raise ValueError("Generated content must be a list or an object with a 'choices' list.")
    return _CATALOG_ADAPTER.validate_python(raw_choices)
