"""
Session membership registry: who is in each room, keyed by stable participant identifiers.

Clients persist one stable identifier per (user, room) and send it again after
a reload, so joins are idempotent. A client that lost its identifier
generates a new one with the same user prefix; when the join carries the user
ID, the old identifier is replaced instead of taking a second slot. The registry owns the
authoritative member count and projects it onto the room directory on a
best-effort basis.
"""
import logging
from typing import Optional, Dict, List, Set, Tuple

import redis.asyncio as redis

from core.errors import RoomNotFoundError
from utils.identifiers import decode, user_prefix

logger = logging.getLogger(__name__)


# Returns {joined, count, replaced}
JOIN_LUA = """
if redis.call('SISMEMBER', KEYS[1], ARGV[1]) == 1 then
    return {0, redis.call('SCARD', KEYS[1]), 0}
end
local replaced = 0
local prefix = ARGV[2]
if prefix ~= '' then
    for _, member in ipairs(redis.call('SMEMBERS', KEYS[1])) do
        if string.sub(member, 1, string.len(prefix)) == prefix then
            redis.call('SREM', KEYS[1], member)
            replaced = replaced + 1
        end
    end
end
redis.call('SADD', KEYS[1], ARGV[1])
redis.call('SADD', KEYS[2], ARGV[3])
return {1, redis.call('SCARD', KEYS[1]), replaced}
"""

# Returns {removed, count}
LEAVE_LUA = """
local removed = 0
if ARGV[1] ~= '' then
    removed = redis.call('SREM', KEYS[1], ARGV[1])
end
local prefix = ARGV[2]
if prefix ~= '' then
    for _, member in ipairs(redis.call('SMEMBERS', KEYS[1])) do
        if string.sub(member, 1, string.len(prefix)) == prefix then
            removed = removed + redis.call('SREM', KEYS[1], member)
        end
    end
end
return {removed, redis.call('SCARD', KEYS[1])}
"""


class MembershipStore:
    """Redis-based storage of per-room member sets."""

    def __init__(self, redis_client: redis.Redis):
        """
        Initialize membership store with Redis client.

        Args:
            redis_client: Redis async client instance
        """
        self.redis = redis_client
        self.members_prefix = "rooms:members"
        self.index_key = "rooms:membership_index"
        self._join = redis_client.register_script(JOIN_LUA)
        self._leave = redis_client.register_script(LEAVE_LUA)

    def _get_members_key(self, room_id: str) -> str:
        """Get Redis key for a room's member set."""
        return f"{self.members_prefix}:{room_id}"

    async def add(self, room_id: str, stable_id: str, prefix: Optional[str]) -> Tuple[bool, int, int]:
        """Add a member, replacing members with the same prefix. Returns (joined, count, replaced)."""
        joined, count, replaced = await self._join(
            keys=[self._get_members_key(room_id), self.index_key],
            args=[stable_id, prefix or "", room_id],
        )
        return bool(joined), int(count), int(replaced)

    async def remove(self, room_id: str, stable_id: Optional[str], prefix: Optional[str]) -> Tuple[int, int]:
        """Remove the exact identifier and/or every identifier with prefix. Returns (removed, count)."""
        removed, count = await self._leave(
            keys=[self._get_members_key(room_id)],
            args=[stable_id or "", prefix or ""],
        )
        return int(removed), int(count)

    async def members(self, room_id: str) -> List[str]:
        members = await self.redis.smembers(self._get_members_key(room_id))
        return sorted(decode(member) for member in members)

    async def is_member(self, room_id: str, stable_id: str) -> bool:
        return bool(await self.redis.sismember(self._get_members_key(room_id), stable_id))

    async def count(self, room_id: str) -> int:
        return await self.redis.scard(self._get_members_key(room_id))

    async def room_ids(self) -> List[str]:
        room_ids = await self.redis.smembers(self.index_key)
        return [decode(room_id) for room_id in room_ids]

    async def drop(self, room_id: str) -> int:
        """Delete a room's member set. Returns how many members it held."""
        key = self._get_members_key(room_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.scard(key)
            pipe.delete(key)
            pipe.srem(self.index_key, room_id)
            count, _, _ = await pipe.execute()
        return int(count)


class InMemoryMembershipStore:
    """In-memory storage of per-room member sets."""

    def __init__(self) -> None:
        self._rooms: Dict[str, Set[str]] = {}

    async def add(self, room_id: str, stable_id: str, prefix: Optional[str]) -> Tuple[bool, int, int]:
        members = self._rooms.setdefault(room_id, set())
        if stable_id in members:
            return False, len(members), 0
        stale = {m for m in members if prefix and m.startswith(prefix)}
        members -= stale
        members.add(stable_id)
        return True, len(members), len(stale)

    async def remove(self, room_id: str, stable_id: Optional[str], prefix: Optional[str]) -> Tuple[int, int]:
        members = self._rooms.get(room_id)
        if members is None:
            return 0, 0
        doomed = {m for m in members if m == stable_id or (prefix and m.startswith(prefix))}
        members -= doomed
        return len(doomed), len(members)

    async def members(self, room_id: str) -> List[str]:
        return sorted(self._rooms.get(room_id, set()))

    async def is_member(self, room_id: str, stable_id: str) -> bool:
        return stable_id in self._rooms.get(room_id, set())

    async def count(self, room_id: str) -> int:
        return len(self._rooms.get(room_id, set()))

    async def room_ids(self) -> List[str]:
        return list(self._rooms.keys())

    async def drop(self, room_id: str) -> int:
        return len(self._rooms.pop(room_id, set()))


class MembershipRegistry:
    """Idempotent join/leave over a membership store, projected onto the room directory."""

    def __init__(self, store, directory):
        self.store = store
        self.directory = directory

    async def _project(self, room_id: str, count: int) -> None:
        """Push the member count to the directory. Failures are logged, never raised."""
        try:
            await self.directory.update_members(room_id, count)
        except RoomNotFoundError:
            logger.warning(f"Room {room_id} is gone from the directory, member count {count} not projected")
        except Exception as e:
            logger.warning(f"Failed to project member count {count} for room {room_id}: {e}", exc_info=True)

    async def join(self, room_id: str, stable_id: str, user_id: Optional[str] = None) -> int:
        """
        Add a stable identifier to a room.

        Joining again with the same identifier is a no-op. When user_id is
        given, any other identifier carrying the "<user_id>-" prefix is
        removed first, so a reloaded client swaps its slot instead of adding
        one.

        Args:
            room_id: Room to join
            stable_id: Client-persisted participant identifier
            user_id: Underlying user ID, when the client knows it

        Returns:
            Current member count

        Raises:
            RoomNotFoundError: If the room is not in the directory
        """
        if not await self.directory.exists(room_id):
            raise RoomNotFoundError(room_id)

        prefix = user_prefix(user_id)
        joined, count, replaced = await self.store.add(room_id, stable_id, prefix)
        if not joined:
            logger.info(f"{stable_id} already in room {room_id} ({count} members)")
        elif replaced:
            logger.info(f"{stable_id} joined room {room_id}, replacing {replaced} stale identifier(s) ({count} members)")
        else:
            logger.info(f"{stable_id} joined room {room_id} ({count} members)")

        await self._project(room_id, count)
        return count

    async def leave(self, room_id: str, stable_id: str) -> int:
        """Remove a stable identifier if present. Returns the current member count."""
        removed, count = await self.store.remove(room_id, stable_id, None)
        if removed:
            logger.info(f"{stable_id} left room {room_id} ({count} members)")
        await self._project(room_id, count)
        if count == 0:
            # Deletion is left to the sweeper's grace period
            logger.info(f"Room {room_id} is now empty")
        return count

    async def leave_by_user_prefix(
        self,
        room_id: str,
        user_id: Optional[str],
        stable_id: Optional[str] = None,
    ) -> int:
        """
        Remove a user's membership when the exact identifier may be unknown.

        Removes stable_id if given, plus every identifier carrying the user's
        prefix. Used by the page-unload beacon path.

        Returns:
            Number of identifiers removed
        """
        prefix = user_prefix(user_id)
        if not prefix and not stable_id:
            return 0
        removed, count = await self.store.remove(room_id, stable_id, prefix)
        if removed:
            logger.info(f"Removed {removed} identifier(s) of {user_id or stable_id} from room {room_id} ({count} members)")
            await self._project(room_id, count)
        return removed

    async def count(self, room_id: str) -> int:
        return await self.store.count(room_id)

    async def members(self, room_id: str) -> List[str]:
        return await self.store.members(room_id)

    async def is_member(self, room_id: str, stable_id: str) -> bool:
        return await self.store.is_member(room_id, stable_id)

    async def room_ids(self) -> List[str]:
        return await self.store.room_ids()

    async def drop_room(self, room_id: str) -> int:
        """Forget a room's membership entirely (used when the room itself is removed)."""
        return await self.store.drop(room_id)
