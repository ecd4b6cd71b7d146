"""Project outline model shared by the backend and the front-end stores."""

from .project_model import (
    DEFAULT_PROJECT_NAME,
    OutlineError,
    Project,
    Refinement,
    Section,
    Topic,
    Workspace,
)

__all__ = [
    "DEFAULT_PROJECT_NAME",
    "OutlineError",
    "Project",
    "Refinement",
    "Section",
    "Topic",
    "Workspace",
]
