"""Project record as seen by the realtime core.

Projects are owned by the external project service; the chat core only needs
membership (for HTTP routes and the owner check on clear) and the file tree
(written back when the AI returns one).
"""
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field


class Project(BaseModel):
    """Project metadata.

    Attributes:
        id: Project id, also the chat room id.
        name: Project name.
        users: Ids of the project's collaborators (owner included).
        createdBy: Id of the owner.
        fileTree: Current file tree of the project.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id", description="Project id")
    name: str = Field(default="", description="Project name")
    users: List[str] = Field(default_factory=list, description="Member user ids")
    createdBy: str = Field(default="", description="Owner user id")
    fileTree: Dict[str, Any] = Field(default_factory=dict, description="Project file tree")

    def is_member(self, user_id: str) -> bool:
        return user_id in self.users

    def is_owner(self, user_id: str) -> bool:
        """Owner is the creator, and must still be a member."""
        return self.is_member(user_id) and self.createdBy == user_id
