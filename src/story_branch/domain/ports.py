"""Ports for content generation, randomness, and persistence."""

from __future__ import annotations

from typing import Any, Protocol

from story_branch.domain.models import BranchState


class NarrativeContentGenerator(Protocol):
    """Authors new choice text beyond the deterministic templates."""

    def generate(self, prompt: str, schema: dict[str, Any] | None = None) -> str | dict[str, Any]:
        ...


class RandomSource(Protocol):
    """Uniform draws in [0, 1); `random.Random` satisfies this."""

    def random(self) -> float:
        ...


class BranchStateRepository(Protocol):
    """Loads a branch before and saves it after each resolution."""

    def load_branch(self, *, branch_id: str) -> BranchState | None:
        ...

    def save_branch(self, branch: BranchState) -> None:
        ...
