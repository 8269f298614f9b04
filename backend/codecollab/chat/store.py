"""Redis-backed message log for project chat rooms.

Each room has one Redis list (``{prefix}:{room_id}:messages``), oldest entry
at the head and newest at the tail. The list is capped: every append is
followed by an LTRIM in the same MULTI/EXEC transaction, so the log never
exceeds ``capacity`` and the oldest messages are evicted first.

All mutations are single atomic Redis operations. Nothing here reads a
value, awaits, and writes it back, so concurrent connections appending to
the same room cannot corrupt the log.

Search semantics:
    Case-insensitive substring match on the message's display text (the
    plain text, or the ``text`` field of a structured AI payload). Only the
    retained window is searched; results keep insertion order.
"""
import logging
from typing import List

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .schemas import ChatMessage

logger = logging.getLogger(__name__)

# Default number of messages retained per room (10 initial pages)
DEFAULT_CAPACITY = 1000


class StorageUnavailable(Exception):
    """Raised when the message cache cannot be reached.

    Callers surface this as an error event to the affected client and keep
    the connection open.
    """
    error_type = "STORAGE_UNAVAILABLE"

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Message store unavailable during {operation}: {cause}")


class MessageStore:
    """Capped, ordered, per-room message log.

    Attributes:
        capacity: Maximum number of messages retained per room.
        key_prefix: Prefix for the per-room list keys.
    """

    def __init__(
        self,
        redis: Redis,
        key_prefix: str = "project",
        capacity: int = DEFAULT_CAPACITY,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._redis = redis
        self.key_prefix = key_prefix
        self.capacity = capacity

    def _key(self, room_id: str) -> str:
        return f"{self.key_prefix}:{room_id}:messages"

    async def ping(self) -> bool:
        """Return True if the cache answers a PING."""
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            logger.warning(f"[Store] Redis ping failed: {e}")
            return False

    async def append(self, room_id: str, message: ChatMessage) -> None:
        """Append a message to the tail of the room's log, evicting the oldest beyond capacity.

        Raises:
            StorageUnavailable: If Redis cannot be reached.
        """
        key = self._key(room_id)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.rpush(key, message.to_store())
                pipe.ltrim(key, -self.capacity, -1)
                await pipe.execute()
        except RedisError as e:
            logger.error(f"[Store] append failed for room {room_id}: {e}")
            raise StorageUnavailable("append", e) from e

    async def get_range(self, room_id: str, limit: int, offset: int = 0) -> List[ChatMessage]:
        """Get up to ``limit`` messages, skipping the ``offset`` most recent.

        Messages are returned oldest first, ready for display. Offsets past
        the end of the log give an empty list.

        Args:
            room_id: The room ID.
            limit: Maximum number of messages to return.
            offset: Number of most recent messages to skip.

        Returns:
            List of messages in chronological (insertion) order.

        Raises:
            StorageUnavailable: If Redis cannot be reached.
        """
        # The log never holds more than capacity entries
        if limit <= 0 or offset < 0 or offset >= self.capacity:
            return []
        limit = min(limit, self.capacity - offset)

        # Newest message is at index -1
        start = -(offset + limit)
        end = -(offset + 1)
        try:
            raw = await self._redis.lrange(self._key(room_id), start, end)
        except RedisError as e:
            logger.error(f"[Store] range read failed for room {room_id}: {e}")
            raise StorageUnavailable("get_range", e) from e
        return self._decode_all(room_id, raw)

    async def count(self, room_id: str) -> int:
        """Number of messages currently retained for the room."""
        try:
            return int(await self._redis.llen(self._key(room_id)))
        except RedisError as e:
            logger.error(f"[Store] count failed for room {room_id}: {e}")
            raise StorageUnavailable("count", e) from e

    async def search(self, room_id: str, term: str) -> List[ChatMessage]:
        """Find retained messages whose text contains ``term`` (case-insensitive).

        An empty term matches nothing; callers reject blank terms before
        reaching the store.
        """
        if not term:
            return []
        try:
            raw = await self._redis.lrange(self._key(room_id), 0, -1)
        except RedisError as e:
            logger.error(f"[Store] search failed for room {room_id}: {e}")
            raise StorageUnavailable("search", e) from e

        needle = term.casefold()
        return [
            msg for msg in self._decode_all(room_id, raw)
            if needle in msg.display_text.casefold()
        ]

    async def clear(self, room_id: str) -> None:
        """Delete every stored message for the room. Clearing an empty room succeeds."""
        try:
            await self._redis.delete(self._key(room_id))
        except RedisError as e:
            logger.error(f"[Store] clear failed for room {room_id}: {e}")
            raise StorageUnavailable("clear", e) from e
        logger.info(f"[Store] Message history cleared for room {room_id}")

    def _decode_all(self, room_id: str, raw: List) -> List[ChatMessage]:
        messages = []
        for entry in raw:
            if isinstance(entry, bytes):
                entry = entry.decode("utf-8")
            try:
                messages.append(ChatMessage.from_store(entry))
            except ValueError as e:
                logger.warning(f"[Store] Skipping unreadable entry in room {room_id}: {e}")
        return messages
