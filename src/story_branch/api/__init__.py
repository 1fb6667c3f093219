"""Public API surface for HTTP serving and the Python client."""

from story_branch.api.app import create_app
from story_branch.api.python_interface import StoryBranchApiClient

__all__ = [
    "StoryBranchApiClient",
    "create_app",
]
