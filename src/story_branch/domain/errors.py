"""Error taxonomy for choice resolution."""

from __future__ import annotations


class BranchEngineError(RuntimeError):
    """Base class for branching engine failures."""


class ChoiceNotFound(BranchEngineError):
    """The requested choice is not in the offered catalog; re-fetch the catalog."""

    def __init__(self, choice_id: str) -> None:
        super().__init__(f"Choice '{choice_id}' is not in the current catalog.")
        self.choice_id = choice_id


class InvariantViolation(BranchEngineError):
    """A branch reached an impossible state and must not be persisted."""


class GenerationUnavailable(BranchEngineError):
    """The generative collaborator failed or returned unusable content."""


class EscapeHatchMisconfigured(BranchEngineError):
    """An escape hatch requirement cannot be evaluated by the engine."""

    def __init__(self, hatch_id: str, message: str) -> None:
        super().__init__(f"Escape hatch '{hatch_id}' is misconfigured: {message}")
        self.hatch_id = hatch_id
