"""Pydantic schemas for realtime project chat.

This module defines the data carried through the message log and over the
WebSocket:
- Sender: who produced a message (a user, or the reserved AI identity)
- PlainText / Structured: the tagged payload variant
- ChatMessage: one immutable chat event as stored in Redis
- Client event inputs (project-message, load-more-messages, search-messages)

Payloads are serialized in two shapes. In the store the full ChatMessage is
kept as JSON with the tagged payload, so it deserializes back to the right
variant. On the wire ``message`` is a string: plain text as-is, structured
payloads as a JSON object string, which is what clients already render.
"""
import json
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# Reserved sender id for messages produced by the AI coordinator
AI_SENDER_ID = "ai"


class ChatValidationError(ValueError):
    """Raised when a client request fails validation (blank term or prompt).

    Validation errors are rejected before any store mutation.
    """
    error_type = "VALIDATION_ERROR"


class Sender(BaseModel):
    """Identity attached to a chat message.

    Attributes:
        id: User id from the session token, or ``ai`` for the assistant.
        displayName: Name shown in the chat UI (the user's email by default).
    """
    id: str = Field(..., description="Sender id")
    displayName: str = Field(default="", description="Display name shown in UI")


AI_SENDER = Sender(id=AI_SENDER_ID, displayName="AI Assistant")


class PlainText(BaseModel):
    """Free-form text typed by a user."""
    kind: Literal["text"] = "text"
    text: str


class Structured(BaseModel):
    """Structured payload produced by the AI coordinator.

    ``text`` is always present; ``fileTree`` is optional. Any other keys the
    model returned (build or start commands, for example) are preserved.
    """
    model_config = ConfigDict(extra="allow")

    kind: Literal["structured"] = "structured"
    text: str
    fileTree: Optional[Dict[str, Any]] = None

    def to_json(self) -> str:
        data = self.model_dump(exclude={"kind"}, exclude_none=True)
        return json.dumps(data)


Payload = Annotated[Union[PlainText, Structured], Field(discriminator="kind")]


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ChatMessage(BaseModel):
    """One chat event.

    Messages are never mutated after creation. ``timestamp`` is assigned by
    the server when the message is appended; ordering for pagination and
    search is the store's insertion order, not the timestamp.

    Attributes:
        roomId: Project id the message belongs to.
        sender: User identity, or AI_SENDER.
        payload: PlainText or Structured.
        timestamp: ISO-8601 UTC time of append.
    """
    model_config = ConfigDict(frozen=True)

    roomId: str = Field(..., description="Room (project) id")
    sender: Sender = Field(..., description="Message sender")
    payload: Payload = Field(..., description="Tagged message payload")
    timestamp: str = Field(default_factory=utc_timestamp, description="ISO-8601 UTC")

    @classmethod
    def text(cls, room_id: str, sender: Sender, text: str) -> "ChatMessage":
        return cls(roomId=room_id, sender=sender, payload=PlainText(text=text))

    @classmethod
    def ai(cls, room_id: str, text: str, **extra: Any) -> "ChatMessage":
        """Build a structured message from the AI sender."""
        return cls(
            roomId=room_id,
            sender=AI_SENDER,
            payload=Structured(text=text, **extra),
        )

    @property
    def display_text(self) -> str:
        return self.payload.text

    def wire_message(self) -> str:
        if isinstance(self.payload, Structured):
            return self.payload.to_json()
        return self.payload.text

    def to_wire(self) -> dict:
        """Shape sent to clients in project-message and history events."""
        return {
            "sender": self.sender.model_dump(),
            "message": self.wire_message(),
            "timestamp": self.timestamp,
        }

    # Store boundary
    def to_store(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_store(cls, raw: str) -> "ChatMessage":
        return cls.model_validate_json(raw)


# =============================================================================
# Client -> server events
# =============================================================================


class ProjectMessageInput(BaseModel):
    """Client ``project-message`` event. Sender and timestamp come from the server."""
    message: str = Field(..., description="Message text")


class LoadMoreInput(BaseModel):
    """Client ``load-more-messages`` event."""
    offset: int = Field(default=0, ge=0, description="Messages to skip from the newest")
    limit: int = Field(default=50, ge=1, description="Page size")


class SearchInput(BaseModel):
    """Client ``search-messages`` event and HTTP search body."""
    searchTerm: str = Field(default="", description="Substring to look for")

    def require_term(self) -> str:
        term = self.searchTerm.strip()
        if not term:
            raise ChatValidationError("Search term is required")
        return term


# =============================================================================
# HTTP responses
# =============================================================================


class MessagePage(BaseModel):
    """Response for history and search routes."""
    messages: List[Dict[str, Any]] = Field(default_factory=list, description="Messages, oldest first")
    totalCount: int = Field(default=0, description="Messages retained (history) or matched (search)")


class MessageCount(BaseModel):
    count: int = Field(..., description="Messages currently retained for the room")


class ClearResult(BaseModel):
    status: str = "success"
    message: str = "Messages cleared successfully"
