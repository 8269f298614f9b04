"""AI request coordination for project chat rooms.

When a chat message carries the AI directive, the relay hands the prompt to
AIRequestCoordinator.submit(), which runs the request as its own asyncio task
so a slow or failing provider never blocks chat traffic.

Request lifecycle (all messages come from the reserved ``ai`` sender and go
to every member of the room, the requester included):

    1. Empty prompt -> one error message, no provider call.
    2. Processing message stored and broadcast.
    3. Provider call in a worker thread, bounded by the deadline.
    4. Exactly one terminal message: the structured result, or an error
       describing the timeout / failure / unreadable response.
    5. If the result carries a non-empty file tree and the project is known,
       the tree is written to the project. A failed write is reported to the
       requesting connection as UPDATE_FILE_TREE_ERROR; the result message
       stands.

The terminal message is written only by the request task after its single
awaited outcome. When the deadline wins, the provider thread may still
finish, but its return value is dropped with the cancelled future and has no
path to the store or the room.

Disconnecting the requester does not cancel its request; the rest of the
room and the stored history still get the outcome. A request cancelled at
shutdown publishes an error message as its terminal message before the
cancellation propagates.
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set

from codecollab.chat.registry import ConnectionHandle, RoomRegistry
from codecollab.chat.schemas import AI_SENDER, ChatMessage, ChatValidationError, Structured
from codecollab.chat.store import MessageStore, StorageUnavailable
from codecollab.projects import ProjectRepository, ProjectStoreError

from .base import AIProvider

logger = logging.getLogger(__name__)

# Deadline for a single AI generation call (seconds)
DEFAULT_TIMEOUT_SECONDS = 45.0

PROCESSING_TEXT = "I'm thinking about your request... This may take a moment."


class AIRequestError(Exception):
    """Base exception for a failed AI request. Terminal for that request only."""
    error_type = "AI_ERROR"


class AITimeout(AIRequestError):
    """The provider did not answer before the deadline."""
    error_type = "AI_TIMEOUT"

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"AI request timed out after {timeout_seconds:g} seconds")


class AIGenerationFailure(AIRequestError):
    """The provider call failed or no provider is configured."""
    error_type = "AI_GENERATION_FAILURE"


class AIResponseParseFailure(AIRequestError):
    """The provider answered, but not with a JSON object."""
    error_type = "AI_RESPONSE_PARSE_FAILURE"


def _strip_markdown_code_block(text: str) -> str:
    """Strip ```json ... ``` wrappers some models add around JSON."""
    text = text.strip()
    if text.startswith("```"):
        first_newline = text.find("\n")
        if first_newline != -1:
            text = text[first_newline + 1:]
        if text.endswith("```"):
            text = text[:-3].strip()
    return text


def parse_ai_response(raw: str, prompt: str) -> Structured:
    """Turn a provider response into a structured payload.

    A missing or blank ``text`` is replaced with an acknowledgement that
    references the prompt. A ``fileTree`` that is not an object is dropped.

    Raises:
        AIResponseParseFailure: If the response is not a JSON object.
    """
    try:
        data = json.loads(_strip_markdown_code_block(raw or ""))
    except json.JSONDecodeError as e:
        raise AIResponseParseFailure(f"AI response was not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise AIResponseParseFailure("AI response was not a JSON object")

    text = data.get("text")
    if not isinstance(text, str) or not text.strip():
        data["text"] = (
            f"I've processed your request for \"{prompt}\" "
            "but couldn't generate detailed text."
        )

    file_tree = data.get("fileTree")
    if file_tree is not None and not isinstance(file_tree, dict):
        logger.warning("[AI] Dropping fileTree of type %s", type(file_tree).__name__)
        data.pop("fileTree")

    data.pop("kind", None)
    return Structured(**data)


def failure_text(error: AIRequestError) -> str:
    """User-facing text for a failed request."""
    if isinstance(error, AITimeout):
        reason = str(error)
    elif isinstance(error, AIResponseParseFailure):
        reason = "The AI response could not be understood"
    else:
        reason = str(error) or "The AI service could not complete the request"
    return f"Error: {reason}. Please try again with a more specific prompt."


class AIRequestCoordinator:
    """Runs AI requests for chat rooms off the relay's hot path.

    Attributes:
        timeout_seconds: Deadline for each provider call.
    """

    def __init__(
        self,
        store: MessageStore,
        registry: RoomRegistry,
        provider: Optional[AIProvider],
        projects: ProjectRepository,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._store = store
        self._registry = registry
        self._provider = provider
        self._projects = projects
        self.timeout_seconds = timeout_seconds
        # Strong references so running requests are not garbage collected
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, handle: ConnectionHandle, prompt: str) -> asyncio.Task:
        """Schedule an AI request without waiting for it.

        Returns:
            The task running the request.
        """
        task = asyncio.create_task(
            self.handle_request(handle, prompt),
            name=f"ai-request:{handle.room_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def handle_request(self, handle: ConnectionHandle, prompt: str) -> None:
        """Run one AI request to completion, publishing its messages to the room."""
        room_id = handle.room_id
        prompt = prompt.strip()

        if not prompt:
            error = ChatValidationError("Empty prompt")
            logger.info(f"[AI] Rejected request in room {room_id}: {error}")
            await self._publish(room_id, ChatMessage.ai(
                room_id,
                f"Error: {error}. Please try again with a more specific prompt.",
            ))
            return

        logger.info(f"[AI] Request accepted in room {room_id} from {handle.identity.id}: {prompt[:50]}")
        await self._publish(room_id, ChatMessage.ai(room_id, PROCESSING_TEXT))

        try:
            result = await self._generate(prompt)
        except asyncio.CancelledError:
            logger.warning(f"[AI] Request cancelled in room {room_id}")
            await self._publish(room_id, ChatMessage.ai(
                room_id, failure_text(AIGenerationFailure("The AI request was cancelled"))
            ))
            raise
        except AIRequestError as e:
            logger.error(f"[AI] Request failed in room {room_id}: {e}")
            await self._publish(room_id, ChatMessage.ai(room_id, failure_text(e)))
            return
        except Exception as e:
            logger.exception(f"[AI] Unexpected error in room {room_id}: {e}")
            await self._publish(room_id, ChatMessage.ai(
                room_id, failure_text(AIGenerationFailure())
            ))
            return

        await self._publish(room_id, ChatMessage(
            roomId=room_id,
            sender=AI_SENDER,
            payload=result,
        ))
        logger.info(f"[AI] Response delivered to room {room_id}")

        if result.fileTree:
            await self._persist_file_tree(handle, result.fileTree)

    async def _generate(self, prompt: str) -> Structured:
        if self._provider is None:
            raise AIGenerationFailure("AI service is not configured")

        try:
            raw = await asyncio.wait_for(
                asyncio.to_thread(self._provider.generate, prompt),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise AITimeout(self.timeout_seconds)
        except Exception as e:
            logger.error(f"[AI] Provider {self._provider.name} error: {e}")
            raise AIGenerationFailure("The AI service could not complete the request") from e

        return parse_ai_response(raw, prompt)

    async def _publish(self, room_id: str, message: ChatMessage) -> None:
        """Store a message and deliver it to the whole room.

        A storage outage is logged but does not stop delivery, so connected
        members still see the outcome.
        """
        try:
            await self._store.append(room_id, message)
        except StorageUnavailable as e:
            logger.error(f"[AI] Could not store AI message for room {room_id}: {e}")
        await self._registry.broadcast(room_id, "project-message", message.to_wire())

    async def _persist_file_tree(self, handle: ConnectionHandle, file_tree: Dict[str, Any]) -> None:
        if handle.project is None:
            logger.info(f"[AI] No project record for room {handle.room_id}; file tree not saved")
            return
        try:
            await self._projects.update_file_tree(handle.room_id, file_tree)
            logger.info(f"[AI] Updated project {handle.room_id} with new file tree")
        except ProjectStoreError as e:
            logger.error(f"[AI] Error saving file tree to project {handle.room_id}: {e}")
            await self._registry.send_to(handle, "error", {
                "errorType": "UPDATE_FILE_TREE_ERROR",
                "message": "Failed to update project file tree",
            })

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Give in-flight requests a chance to finish, then cancel the rest."""
        if not self.pending:
            return
        pending = list(self._tasks)
        logger.info(f"[AI] Waiting for {len(pending)} in-flight request(s)")
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
