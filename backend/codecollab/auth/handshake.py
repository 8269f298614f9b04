"""WebSocket handshake: gate room entry before a connection is admitted.

Checks run in this order, and any failure refuses the connection before it
is accepted or registered anywhere:

1. The room id (``projectId`` query parameter) is well-formed -> InvalidRoom
2. A session token is present (cookie, header, query) -> MissingCredential
3. The token verifies against the JWT secret -> InvalidCredential

The project record is then looked up best-effort. A missing project, or a
project service that cannot be reached, is logged but does not block the
handshake: the room id alone is enough for the message store and registry.
"""
import logging
import re
from typing import Optional

from fastapi import WebSocket

from codecollab.chat.registry import ConnectionHandle
from codecollab.config import AppSettings
from codecollab.projects import Project, ProjectRepository, ProjectStoreError

from .tokens import HandshakeError, decode_token, extract_credential

logger = logging.getLogger(__name__)


class InvalidRoom(HandshakeError):
    """The requested room id is missing or malformed."""
    error_type = "INVALID_ROOM"

    def __init__(self, room_id: Optional[str]):
        self.room_id = room_id
        super().__init__("Invalid projectId")


class ConnectionHandshake:
    """Validates inbound WebSocket connections and builds ConnectionHandles.

    Attributes:
        room_id_pattern: Compiled pattern a room id must fully match.
    """

    def __init__(self, settings: AppSettings, projects: ProjectRepository) -> None:
        self._settings = settings
        self._projects = projects
        self.room_id_pattern = re.compile(settings.chat.room_id_pattern)

    def validate_room_id(self, room_id: Optional[str]) -> str:
        if not room_id or not self.room_id_pattern.fullmatch(room_id):
            raise InvalidRoom(room_id)
        return room_id

    async def authenticate(self, websocket: WebSocket) -> ConnectionHandle:
        """Run the handshake checks for one inbound connection.

        Args:
            websocket: The not-yet-accepted WebSocket.

        Returns:
            ConnectionHandle with the decoded identity and (if found) project.

        Raises:
            InvalidRoom: Malformed or missing projectId.
            MissingCredential: No session token supplied.
            InvalidCredential: Token fails verification.
        """
        room_id = self.validate_room_id(websocket.query_params.get("projectId"))

        auth = self._settings.auth
        token = extract_credential(
            websocket.cookies,
            websocket.headers,
            websocket.query_params,
            cookie_name=auth.cookie_name,
            query_param=auth.query_param,
        )
        jwt_secrets = self._settings.secrets.jwt
        identity = decode_token(token, jwt_secrets.secret_key, jwt_secrets.algorithm)

        project = await self._lookup_project(room_id)
        return ConnectionHandle(websocket, room_id, identity, project)

    async def _lookup_project(self, room_id: str) -> Optional[Project]:
        try:
            project = await self._projects.get_project(room_id)
        except ProjectStoreError as e:
            logger.warning(f"[Handshake] Project lookup failed for {room_id}: {e}")
            return None
        if project is None:
            logger.warning(f"[Handshake] Project with ID {room_id} not found")
        return project
