"""
Room directory: the listing other clients read room metadata and member counts from.

The membership registry projects its authoritative member count here. Two
indexes keep sweeper reads proportional to stale rooms: rooms by creation
time and rooms by the time they became empty.
"""
import asyncio
import logging
from typing import Optional, Dict, List

import redis.asyncio as redis

from config.settings import settings
from core.errors import RoomNotFoundError
from core.models import Room
from utils.identifiers import decode, generate_short_room_id, now_ms

logger = logging.getLogger(__name__)

ROOM_ID_ATTEMPTS = 5


def _matches_search(room: Room, query: str) -> bool:
    query = query.lower()
    return query in room.name.lower() or query in (room.description or "").lower()


def _filter_rooms(
    rooms: List[Room],
    search: Optional[str],
    include_empty: bool,
    include_private: bool,
) -> List[Room]:
    result = []
    for room in rooms:
        if room.is_private and not include_private:
            continue
        if room.members == 0 and not include_empty:
            continue
        if search and not _matches_search(room, search):
            continue
        result.append(room)
    result.sort(key=lambda r: r.created_at)
    return result


class RoomDirectory:
    """Redis-based room directory."""

    def __init__(self, redis_client: redis.Redis, max_members: Optional[int] = None):
        """
        Initialize room directory with Redis client.

        Args:
            redis_client: Redis async client instance
            max_members: Upper bound for projected member counts
        """
        self.redis = redis_client
        self.rooms_key = "rooms:data"
        self.by_created_key = "rooms:by_created"
        self.empty_key = "rooms:empty"
        self.max_members = max_members if max_members is not None else settings.ROOM_MAX_MEMBERS

    async def create_room(
        self,
        name: str,
        description: str = "",
        is_private: bool = False,
        created_by: Optional[str] = None,
    ) -> Room:
        """
        Create a room with a short random ID.

        HSETNX only succeeds when the ID is unused, so collisions are retried
        with a fresh ID and a small backoff.
        """
        for attempt in range(1, ROOM_ID_ATTEMPTS + 1):
            created_at = now_ms()
            room_id = generate_short_room_id()
            room = Room(
                id=room_id,
                name=name,
                description=description,
                is_private=is_private,
                created_at=created_at,
                created_by=created_by,
                empty_since=created_at,
                media_room_id=f"media_{room_id}_{created_at}",
            )
            created = await self.redis.hsetnx(self.rooms_key, room_id, room.to_json())
            if created:
                async with self.redis.pipeline(transaction=True) as pipe:
                    pipe.zadd(self.by_created_key, {room_id: created_at})
                    pipe.zadd(self.empty_key, {room_id: created_at})
                    await pipe.execute()
                logger.info(f"Room created: {room_id} ({name})")
                return room
            logger.warning(f"Room ID collision on {room_id}, attempt {attempt}/{ROOM_ID_ATTEMPTS}")
            await asyncio.sleep(0.1 * attempt)
        raise RuntimeError("Failed to generate a unique room ID")

    async def get_room(self, room_id: str) -> Optional[Room]:
        raw = await self.redis.hget(self.rooms_key, room_id)
        if not raw:
            return None
        return Room.from_json(decode(raw))

    async def exists(self, room_id: str) -> bool:
        return bool(await self.redis.hexists(self.rooms_key, room_id))

    async def list_rooms(
        self,
        search: Optional[str] = None,
        include_empty: bool = False,
        include_private: bool = False,
    ) -> List[Room]:
        """List rooms; public rooms with members only, unless asked otherwise."""
        raws: Dict = await self.redis.hgetall(self.rooms_key)
        rooms = [Room.from_json(decode(raw)) for raw in raws.values()]
        return _filter_rooms(rooms, search, include_empty, include_private)

    async def update_members(self, room_id: str, members: int) -> Room:
        """
        Project a member count onto the room.

        The count is clamped to [0, max_members]. A room that reaches zero is
        indexed by the time it became empty; a room with members is removed
        from that index.

        Raises:
            RoomNotFoundError: If the room is not in the directory
        """
        room = await self.get_room(room_id)
        if not room:
            raise RoomNotFoundError(room_id)

        room.members = max(0, min(self.max_members, members))
        async with self.redis.pipeline(transaction=True) as pipe:
            if room.members == 0:
                if room.empty_since is None:
                    room.empty_since = now_ms()
                pipe.zadd(self.empty_key, {room_id: room.empty_since})
            else:
                room.empty_since = None
                pipe.zrem(self.empty_key, room_id)
            pipe.hset(self.rooms_key, room_id, room.to_json())
            await pipe.execute()
        return room

    async def delete_room(self, room_id: str) -> bool:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hdel(self.rooms_key, room_id)
            pipe.zrem(self.by_created_key, room_id)
            pipe.zrem(self.empty_key, room_id)
            deleted, _, _ = await pipe.execute()
        return bool(deleted)

    async def empty_rooms_before(self, cutoff_ms: int) -> List[str]:
        """IDs of rooms that have been empty since before cutoff_ms."""
        ids = await self.redis.zrangebyscore(self.empty_key, "-inf", f"({cutoff_ms}")
        return [decode(room_id) for room_id in ids]

    async def rooms_created_before(self, cutoff_ms: int) -> List[str]:
        ids = await self.redis.zrangebyscore(self.by_created_key, "-inf", f"({cutoff_ms}")
        return [decode(room_id) for room_id in ids]

    async def count(self) -> int:
        return await self.redis.hlen(self.rooms_key)


class InMemoryRoomDirectory:
    """In-memory room directory."""

    def __init__(self, max_members: Optional[int] = None) -> None:
        self._rooms: Dict[str, Room] = {}
        self.max_members = max_members if max_members is not None else settings.ROOM_MAX_MEMBERS

    async def create_room(
        self,
        name: str,
        description: str = "",
        is_private: bool = False,
        created_by: Optional[str] = None,
    ) -> Room:
        for _ in range(ROOM_ID_ATTEMPTS):
            room_id = generate_short_room_id()
            if room_id in self._rooms:
                continue
            created_at = now_ms()
            room = Room(
                id=room_id,
                name=name,
                description=description,
                is_private=is_private,
                created_at=created_at,
                created_by=created_by,
                empty_since=created_at,
                media_room_id=f"media_{room_id}_{created_at}",
            )
            self._rooms[room_id] = room
            logger.info(f"Room created: {room_id} ({name})")
            return room
        raise RuntimeError("Failed to generate a unique room ID")

    def add_room(self, room: Room) -> Room:
        """Insert a fully built room, e.g. seeded fixtures."""
        self._rooms[room.id] = room
        return room

    async def get_room(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    async def exists(self, room_id: str) -> bool:
        return room_id in self._rooms

    async def list_rooms(
        self,
        search: Optional[str] = None,
        include_empty: bool = False,
        include_private: bool = False,
    ) -> List[Room]:
        return _filter_rooms(list(self._rooms.values()), search, include_empty, include_private)

    async def update_members(self, room_id: str, members: int) -> Room:
        room = self._rooms.get(room_id)
        if not room:
            raise RoomNotFoundError(room_id)
        room.members = max(0, min(self.max_members, members))
        if room.members == 0:
            if room.empty_since is None:
                room.empty_since = now_ms()
        else:
            room.empty_since = None
        return room

    async def delete_room(self, room_id: str) -> bool:
        return self._rooms.pop(room_id, None) is not None

    async def empty_rooms_before(self, cutoff_ms: int) -> List[str]:
        return [
            room.id for room in self._rooms.values()
            if room.members == 0 and room.empty_since is not None and room.empty_since < cutoff_ms
        ]

    async def rooms_created_before(self, cutoff_ms: int) -> List[str]:
        return [room.id for room in self._rooms.values() if room.created_at < cutoff_ms]

    async def count(self) -> int:
        return len(self._rooms)
