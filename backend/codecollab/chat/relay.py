"""Per-connection event loop for realtime project chat.

The relay takes over a connection once the handshake has admitted it:

    CONNECTING -> JOINED -> CLOSED

On JOINED the client receives the room's message count and most recent page
(to that client only). After that it processes the client's events in
arrival order until the socket closes.

Protocol (every frame is a JSON object whose ``type`` names the event):

    Client -> server:
        project-message     {message}
        load-more-messages  {offset, limit}
        search-messages     {searchTerm}

    Server -> client:
        load-messages         {messages, totalCount}
        more-messages-loaded  {messages}
        search-results        {messages}
        project-message       {sender, message, timestamp}
        error                 {errorType, message}

Error handling:
    Each event handler converts failures into an ``error`` event for the
    originating connection only. A bad event never closes the connection.
    If a new chat message cannot be saved, it is still delivered and the
    whole room is told the shared history is missing it.
"""
import json
import logging
from enum import Enum
from typing import Dict, Tuple

from fastapi import WebSocketDisconnect
from pydantic import ValidationError

from codecollab.ai_provider.coordinator import AIRequestCoordinator
from codecollab.config import ChatSettings

from .registry import ConnectionHandle, RoomRegistry
from .schemas import (
    ChatMessage,
    ChatValidationError,
    LoadMoreInput,
    ProjectMessageInput,
    SearchInput,
    Sender,
)
from .store import MessageStore, StorageUnavailable

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Lifecycle of one relayed connection."""
    CONNECTING = "connecting"
    JOINED = "joined"
    CLOSED = "closed"


class MessageRelay:
    """Runs the chat protocol for admitted connections.

    One relay serves every connection in the process; per-connection state
    lives on the ConnectionHandle and in run()'s local scope.
    """

    def __init__(
        self,
        store: MessageStore,
        registry: RoomRegistry,
        coordinator: AIRequestCoordinator,
        settings: ChatSettings,
    ) -> None:
        self._store = store
        self._registry = registry
        self._coordinator = coordinator
        self._settings = settings

        # event name -> (handler, error type reported on unexpected failure)
        self._handlers: Dict[str, Tuple] = {
            "project-message": (self.on_project_message, "MESSAGE_HANDLING_ERROR"),
            "load-more-messages": (self.on_load_more, "LOAD_MORE_MESSAGES_ERROR"),
            "search-messages": (self.on_search, "SEARCH_MESSAGES_ERROR"),
        }

    async def run(self, handle: ConnectionHandle) -> None:
        """Accept the connection, join its room, and serve events until it closes."""
        state = ConnectionState.CONNECTING
        websocket = handle.websocket

        await websocket.accept()
        self._registry.join(handle.room_id, handle)
        state = ConnectionState.JOINED
        logger.info(
            f"[Relay] {handle.identity.id} connected to room {handle.room_id} "
            f"({self._registry.room_size(handle.room_id)} connections)"
        )

        try:
            await self.send_history(handle)

            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                raw = message.get("text")
                if raw is None:
                    raw = (message.get("bytes") or b"").decode("utf-8", errors="replace")
                await self.dispatch(handle, raw)

        except WebSocketDisconnect:
            logger.info(f"[Relay] {handle.identity.id} disconnected from room {handle.room_id}")
        finally:
            self.disconnect(handle)
            state = ConnectionState.CLOSED
            logger.debug(f"[Relay] Connection {handle.id} is {state.value}")

    def disconnect(self, handle: ConnectionHandle) -> None:
        """Remove the connection from its room. In-flight AI requests keep running."""
        handle.closed = True
        self._registry.leave(handle.room_id, handle)

    async def send_history(self, handle: ConnectionHandle) -> None:
        """Send the room's count and most recent page to the joining client only."""
        try:
            total = await self._store.count(handle.room_id)
            messages = await self._store.get_range(
                handle.room_id, self._settings.initial_page_size, 0
            )
        except StorageUnavailable as e:
            logger.error(f"[Relay] Error loading cached messages for room {handle.room_id}: {e}")
            await self._send_error(handle, "LOAD_MESSAGES_ERROR", "Failed to load message history")
            return

        await self._registry.send_to(handle, "load-messages", {
            "messages": [msg.to_wire() for msg in messages],
            "totalCount": total,
        })

    async def dispatch(self, handle: ConnectionHandle, raw: str) -> None:
        """Route one inbound frame to its handler, converting failures to error events."""
        try:
            data = json.loads(raw)
        except (ValueError, RecursionError):
            await self._send_error(handle, "INVALID_EVENT", "Event must be a JSON object")
            return
        if not isinstance(data, dict):
            await self._send_error(handle, "INVALID_EVENT", "Event must be a JSON object")
            return

        event = data.get("type")
        if not isinstance(event, str):
            await self._send_error(handle, "INVALID_EVENT", "Event type must be a string")
            return
        logger.debug("[Relay] Room %s received: type=%s", handle.room_id, event)
        entry = self._handlers.get(event)
        if entry is None:
            await self._send_error(handle, "INVALID_EVENT", f"Unknown event type: {event}")
            return

        handler, failure_type = entry
        try:
            await handler(handle, data)
        except (ChatValidationError, ValidationError) as e:
            await self._send_error(handle, ChatValidationError.error_type, _validation_message(e))
        except StorageUnavailable as e:
            logger.error(f"[Relay] {event} failed in room {handle.room_id}: {e}")
            await self._send_error(handle, failure_type, _failure_message(event))
        except Exception as e:
            logger.exception(f"[Relay] Unexpected error handling {event} in room {handle.room_id}: {e}")
            await self._send_error(handle, failure_type, _failure_message(event))

    # =========================================================================
    # Event handlers
    # =========================================================================

    async def on_project_message(self, handle: ConnectionHandle, data: dict) -> None:
        text = ProjectMessageInput.model_validate(data).message
        if not text.strip():
            raise ChatValidationError("Message cannot be empty")

        sender = Sender(id=handle.identity.id, displayName=handle.identity.displayName)
        message = ChatMessage.text(handle.room_id, sender, text)

        stored = True
        try:
            await self._store.append(handle.room_id, message)
        except StorageUnavailable as e:
            stored = False
            logger.error(f"[Relay] Could not store message in room {handle.room_id}: {e}")

        # Sender keeps its own optimistic copy
        await self._registry.broadcast(
            handle.room_id, "project-message", message.to_wire(), exclude=handle
        )

        if not stored:
            await self._registry.broadcast(handle.room_id, "error", {
                "errorType": "MESSAGE_NOT_SAVED",
                "message": "A message was delivered but could not be saved to history",
            })

        directive = self._settings.ai_directive
        if directive and directive in text:
            prompt = text.replace(directive, "", 1).strip()
            self._coordinator.submit(handle, prompt)

    async def on_load_more(self, handle: ConnectionHandle, data: dict) -> None:
        request = LoadMoreInput.model_validate(data)
        limit = min(request.limit, self._settings.max_page_size)
        messages = await self._store.get_range(handle.room_id, limit, request.offset)
        await self._registry.send_to(handle, "more-messages-loaded", {
            "messages": [msg.to_wire() for msg in messages],
        })

    async def on_search(self, handle: ConnectionHandle, data: dict) -> None:
        term = SearchInput.model_validate(data).require_term()
        messages = await self._store.search(handle.room_id, term)
        await self._registry.send_to(handle, "search-results", {
            "messages": [msg.to_wire() for msg in messages],
        })

    async def _send_error(self, handle: ConnectionHandle, error_type: str, message: str) -> None:
        await self._registry.send_to(handle, "error", {"errorType": error_type, "message": message})


_FAILURE_MESSAGES = {
    "project-message": "Failed to process message",
    "load-more-messages": "Failed to load more messages",
    "search-messages": "Failed to search messages",
}


def _failure_message(event: str) -> str:
    return _FAILURE_MESSAGES.get(event, "Failed to process event")


def _validation_message(error: Exception) -> str:
    if isinstance(error, ValidationError):
        first = error.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        return f"Invalid {field or 'event'}: {first.get('msg', 'invalid value')}"
    return str(error)
