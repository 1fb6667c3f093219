"""Domain models, errors, and ports for the branching engine."""

from story_branch.domain.errors import (
    BranchEngineError,
    ChoiceNotFound,
    EscapeHatchMisconfigured,
    GenerationUnavailable,
    InvariantViolation,
)
from story_branch.domain.models import (
    BranchState,
    ButterflyAnalysis,
    ButterflyPotential,
    Choice,
    Consequence,
    ConvergencePoint,
    EscapeHatch,
    HistoryEntry,
    StoryPremise,
    WorldState,
    fork_branch,
)
from story_branch.domain.ports import (
    BranchStateRepository,
    NarrativeContentGenerator,
    RandomSource,
)

__all__ = [
    "BranchEngineError",
    "BranchState",
    "BranchStateRepository",
    "ButterflyAnalysis",
    "ButterflyPotential",
    "Choice",
    "ChoiceNotFound",
    "Consequence",
    "ConvergencePoint",
    "EscapeHatch",
    "EscapeHatchMisconfigured",
    "GenerationUnavailable",
    "HistoryEntry",
    "InvariantViolation",
    "NarrativeContentGenerator",
    "RandomSource",
    "StoryPremise",
    "WorldState",
    "fork_branch",
]
