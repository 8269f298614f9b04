"""Project record access for the realtime core.

The project store itself lives in another service. Two implementations of
ProjectRepository are provided:

- InMemoryProjectRepository: process-local dict, for development and tests.
- HttpProjectRepository: talks to the project service's REST API with httpx.

Usage:
    repo = InMemoryProjectRepository()
    repo.add_project(Project(id="...", users=["u1"], createdBy="u1"))
    project = await repo.get_project("...")
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from .schemas import Project

logger = logging.getLogger(__name__)


class ProjectStoreError(Exception):
    """Raised when the project store cannot be read or written."""
    error_type = "PROJECT_STORE_ERROR"


class ProjectRepository(ABC):
    """Abstract access to project records."""

    @abstractmethod
    async def get_project(self, project_id: str) -> Optional[Project]:
        """Fetch a project by id.

        Returns:
            The project, or None if no project has that id.

        Raises:
            ProjectStoreError: If the store cannot be reached.
        """
        pass

    @abstractmethod
    async def update_file_tree(self, project_id: str, file_tree: Dict[str, Any]) -> Project:
        """Replace a project's file tree.

        Returns:
            The updated project.

        Raises:
            ProjectStoreError: If the project is missing or the write fails.
        """
        pass

    async def aclose(self) -> None:
        """Release any held resources."""
        return None


class InMemoryProjectRepository(ProjectRepository):
    """Dict-backed repository used for local development and tests."""

    def __init__(self) -> None:
        self._projects: Dict[str, Project] = {}

    def add_project(self, project: Project) -> Project:
        self._projects[project.id] = project
        return project

    async def get_project(self, project_id: str) -> Optional[Project]:
        return self._projects.get(project_id)

    async def update_file_tree(self, project_id: str, file_tree: Dict[str, Any]) -> Project:
        project = self._projects.get(project_id)
        if project is None:
            raise ProjectStoreError(f"Project {project_id} not found")
        updated = project.model_copy(update={"fileTree": file_tree})
        self._projects[project_id] = updated
        return updated


class HttpProjectRepository(ProjectRepository):
    """Repository backed by the project service's REST API.

    Attributes:
        base_url: Root URL of the project service.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        service_token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        headers = {}
        if service_token:
            headers["Authorization"] = f"Bearer {service_token}"
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_seconds,
            headers=headers,
        )

    async def get_project(self, project_id: str) -> Optional[Project]:
        try:
            response = await self._client.get(f"/projects/get-project/{project_id}")
        except httpx.HTTPError as e:
            raise ProjectStoreError(f"Project lookup failed: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise ProjectStoreError(
                f"Project lookup failed with status {response.status_code}"
            )

        data = response.json().get("project")
        if not data:
            return None
        return Project.model_validate(data)

    async def update_file_tree(self, project_id: str, file_tree: Dict[str, Any]) -> Project:
        try:
            response = await self._client.put(
                "/projects/update-file-tree",
                json={"projectId": project_id, "fileTree": file_tree},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ProjectStoreError(f"File tree update failed: {e}") from e
        return Project.model_validate(response.json()["project"])

    async def aclose(self) -> None:
        await self._client.aclose()
