"""Project collaborator module.

The realtime core reads project membership and writes AI-generated file
trees through the ProjectRepository interface.
"""
from .repository import (
    HttpProjectRepository,
    InMemoryProjectRepository,
    ProjectRepository,
    ProjectStoreError,
)
from .schemas import Project

__all__ = [
    "Project",
    "ProjectRepository",
    "ProjectStoreError",
    "InMemoryProjectRepository",
    "HttpProjectRepository",
]
