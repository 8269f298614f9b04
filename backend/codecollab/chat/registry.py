"""Room membership and broadcast for realtime project chat.

A room is the set of connections currently joined to one project. Rooms
exist only while they have members: the first join creates one and the last
leave drops it. Nothing here is persisted; membership is rebuilt from each
connection's handshake.

Thread Safety:
    Designed for a single asyncio event loop. join/leave are plain set
    operations with no await inside, so they cannot interleave with each
    other. broadcast() copies the member set before its first await, so a
    connection joining mid-broadcast may or may not receive that message.

Performance Notes:
    - Broadcasting uses asyncio.gather() for concurrent delivery
    - Connections whose send fails are removed during broadcast
"""
import asyncio
import logging
import uuid
from typing import Dict, List, Optional, Set

from fastapi import WebSocket

from codecollab.auth.tokens import Identity
from codecollab.projects.schemas import Project

logger = logging.getLogger(__name__)


class ConnectionHandle:
    """One admitted client connection.

    Created by the handshake once the credential and room id check out, and
    owned by the relay until the client disconnects.

    Attributes:
        id: Server-generated connection id.
        room_id: Project id this connection is joined to.
        identity: Identity decoded from the session token.
        project: Project record, or None if the lookup failed.
        closed: Set once the connection has left its room.
    """

    def __init__(
        self,
        websocket: WebSocket,
        room_id: str,
        identity: Identity,
        project: Optional[Project] = None,
    ) -> None:
        self.id = str(uuid.uuid4())
        self.websocket = websocket
        self.room_id = room_id
        self.identity = identity
        self.project = project
        self.closed = False

    def __repr__(self) -> str:
        return f"ConnectionHandle(id={self.id!r}, room={self.room_id!r}, user={self.identity.id!r})"

    async def send(self, event: str, payload: dict) -> bool:
        """Send one event to this client.

        Returns:
            True if successful, False if the connection is closed or failed.
        """
        if self.closed:
            return False
        try:
            await self.websocket.send_json({"type": event, **payload})
            return True
        except Exception as e:
            logger.debug(f"[Registry] Failed to send {event} to {self.id}: {e}")
            return False


class RoomRegistry:
    """Maps room ids to their currently connected handles.

    One instance is built at application startup and passed to the
    components that need it.
    """

    def __init__(self) -> None:
        # room_id -> set of joined handles
        self._rooms: Dict[str, Set[ConnectionHandle]] = {}

    def join(self, room_id: str, handle: ConnectionHandle) -> None:
        """Add a connection to a room. Joining twice is a no-op."""
        members = self._rooms.setdefault(room_id, set())
        if handle not in members:
            members.add(handle)
            logger.info(
                f"[Registry] {handle.identity.id} joined room {room_id} "
                f"({len(members)} connections)"
            )

    def leave(self, room_id: str, handle: ConnectionHandle) -> None:
        """Remove a connection from a room. No-op if it is not a member."""
        members = self._rooms.get(room_id)
        if not members or handle not in members:
            return
        members.discard(handle)
        if not members:
            del self._rooms[room_id]
        logger.info(f"[Registry] {handle.identity.id} left room {room_id}")

    def members(self, room_id: str) -> List[ConnectionHandle]:
        """Snapshot of the room's current members."""
        return list(self._rooms.get(room_id, ()))

    def room_size(self, room_id: str) -> int:
        return len(self._rooms.get(room_id, ()))

    def rooms(self) -> List[str]:
        return list(self._rooms)

    def is_member(self, room_id: str, handle: ConnectionHandle) -> bool:
        return handle in self._rooms.get(room_id, ())

    async def send_to(self, handle: ConnectionHandle, event: str, payload: dict) -> bool:
        """Send an event to one connection, dropping it from its room on failure."""
        ok = await handle.send(event, payload)
        if not ok and self.is_member(handle.room_id, handle):
            logger.debug(f"[Registry] Removing dead connection {handle.id} from room {handle.room_id}")
            self.leave(handle.room_id, handle)
        return ok

    async def broadcast(
        self,
        room_id: str,
        event: str,
        payload: dict,
        exclude: Optional[ConnectionHandle] = None,
    ) -> int:
        """Deliver an event to every member of a room concurrently.

        Args:
            room_id: Room to broadcast to.
            event: Event name (sent as the ``type`` field).
            payload: JSON-serializable event body.
            exclude: Connection to skip, typically the sender of a user
                message, which already shows its own copy.

        Returns:
            Number of connections the event was delivered to.
        """
        connections = [conn for conn in self.members(room_id) if conn is not exclude]
        if not connections:
            return 0

        results = await asyncio.gather(
            *[conn.send(event, payload) for conn in connections],
            return_exceptions=True,
        )

        failed = [conn for conn, ok in zip(connections, results) if ok is not True]
        for conn in failed:
            logger.debug(f"[Registry] Removing dead connection {conn.id} from room {room_id}")
            self.leave(room_id, conn)
        return len(connections) - len(failed)
