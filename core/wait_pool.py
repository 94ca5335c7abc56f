"""
Wait pool: users waiting for a partner, ordered by arrival time.

The Redis backend keeps the pool in a sorted set scored by arrival time with
the entries, session records and a connection index in hashes. Every write
is a Lua script so that one user's entry, session and connection index change
together. The in-memory backend offers the same contract for single-process
deployments and tests.
"""
import json
import logging
from typing import Optional, Dict, List, Tuple

import redis.asyncio as redis

from core.models import WaitingEntry
from utils.identifiers import decode

logger = logging.getLogger(__name__)


# Drops the session record of ARGV[1] and its connection index entry.
_DROP_SESSION_LUA = """
local function drop_session(sessions_key, connections_key, user_id)
    local session = redis.call('HGET', sessions_key, user_id)
    if session then
        local connection_id = cjson.decode(session)['connection_id']
        if connection_id and redis.call('HGET', connections_key, connection_id) == user_id then
            redis.call('HDEL', connections_key, connection_id)
        end
        redis.call('HDEL', sessions_key, user_id)
    end
end
"""

ENQUEUE_LUA = _DROP_SESSION_LUA + """
drop_session(KEYS[3], KEYS[4], ARGV[1])
redis.call('ZADD', KEYS[1], ARGV[2], ARGV[1])
redis.call('HSET', KEYS[2], ARGV[1], ARGV[3])
redis.call('HSET', KEYS[3], ARGV[1], ARGV[4])
redis.call('HSET', KEYS[4], ARGV[5], ARGV[1])
return 1
"""

DEQUEUE_LUA = _DROP_SESSION_LUA + """
local removed = redis.call('ZREM', KEYS[1], ARGV[1])
redis.call('HDEL', KEYS[2], ARGV[1])
drop_session(KEYS[3], KEYS[4], ARGV[1])
return removed
"""

# Removes both users only if both are still waiting.
CLAIM_PAIR_LUA = _DROP_SESSION_LUA + """
if not redis.call('ZSCORE', KEYS[1], ARGV[1]) or not redis.call('ZSCORE', KEYS[1], ARGV[2]) then
    return 0
end
for i = 1, 2 do
    redis.call('ZREM', KEYS[1], ARGV[i])
    redis.call('HDEL', KEYS[2], ARGV[i])
    drop_session(KEYS[3], KEYS[4], ARGV[i])
end
return 1
"""


class WaitPool:
    """Redis-based wait pool."""

    def __init__(self, redis_client: redis.Redis):
        """
        Initialize wait pool with Redis client.

        Args:
            redis_client: Redis async client instance
        """
        self.redis = redis_client
        self.queue_key = "matching:queue"
        self.entries_key = "matching:entries"
        self.sessions_key = "matching:user_sessions"
        self.connections_key = "matching:connections"
        self._enqueue = redis_client.register_script(ENQUEUE_LUA)
        self._dequeue = redis_client.register_script(DEQUEUE_LUA)
        self._claim_pair = redis_client.register_script(CLAIM_PAIR_LUA)

    @property
    def _keys(self) -> List[str]:
        return [self.queue_key, self.entries_key, self.sessions_key, self.connections_key]

    async def enqueue(self, entry: WaitingEntry) -> None:
        """
        Insert or replace the entry for entry.user_id.

        The previous entry, session record and connection index of the same
        user are replaced in the same script, so the pool never holds two
        entries for one user.
        """
        await self._enqueue(
            keys=self._keys,
            args=[
                entry.user_id,
                entry.arrival_timestamp,
                entry.to_json(),
                entry.session_json(),
                entry.connection_id,
            ],
        )

    async def dequeue(self, user_id: str) -> bool:
        """Remove a user's entry and session. Returns True if an entry was waiting."""
        removed = await self._dequeue(keys=self._keys, args=[user_id])
        return bool(removed)

    async def claim_pair(self, user_a: str, user_b: str) -> bool:
        """
        Remove two users together if both are still waiting.

        Returns False without touching the pool when either user already
        left or was claimed by a concurrent match.
        """
        claimed = await self._claim_pair(keys=self._keys, args=[user_a, user_b])
        return bool(claimed)

    async def get(self, user_id: str) -> Optional[WaitingEntry]:
        raw = await self.redis.hget(self.entries_key, user_id)
        if not raw:
            return None
        return WaitingEntry.from_json(decode(raw))

    async def contains(self, user_id: str) -> bool:
        score = await self.redis.zscore(self.queue_key, user_id)
        return score is not None

    async def snapshot(self) -> List[WaitingEntry]:
        """Return all waiting entries ordered by ascending arrival time."""
        members = await self.redis.zrange(self.queue_key, 0, -1)
        if not members:
            return []
        raws = await self.redis.hmget(self.entries_key, members)
        entries = []
        for raw in raws:
            # Left or matched between the two reads
            if not raw:
                continue
            entries.append(WaitingEntry.from_json(decode(raw)))
        return entries

    async def arrival_timestamps(self) -> List[int]:
        pairs: List[Tuple[bytes, float]] = await self.redis.zrange(self.queue_key, 0, -1, withscores=True)
        return [int(score) for _, score in pairs]

    async def size(self) -> int:
        return await self.redis.zcard(self.queue_key)

    async def get_session(self, user_id: str) -> Optional[Dict]:
        raw = await self.redis.hget(self.sessions_key, user_id)
        if not raw:
            return None
        return json.loads(decode(raw))

    async def user_for_connection(self, connection_id: str) -> Optional[str]:
        """Find the waiting user attached to a transport connection."""
        return decode(await self.redis.hget(self.connections_key, connection_id))


class InMemoryWaitPool:
    """
    In-memory wait pool.

    Methods never await while mutating, so each call is atomic with respect
    to other coroutines on the same event loop.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, WaitingEntry] = {}
        self._sessions: Dict[str, Dict] = {}
        self._connections: Dict[str, str] = {}

    def _drop(self, user_id: str) -> bool:
        entry = self._entries.pop(user_id, None)
        session = self._sessions.pop(user_id, None)
        if session:
            connection_id = session["connection_id"]
            if self._connections.get(connection_id) == user_id:
                del self._connections[connection_id]
        return entry is not None

    async def enqueue(self, entry: WaitingEntry) -> None:
        self._drop(entry.user_id)
        self._entries[entry.user_id] = entry
        self._sessions[entry.user_id] = json.loads(entry.session_json())
        self._connections[entry.connection_id] = entry.user_id

    async def dequeue(self, user_id: str) -> bool:
        return self._drop(user_id)

    async def claim_pair(self, user_a: str, user_b: str) -> bool:
        if user_a not in self._entries or user_b not in self._entries:
            return False
        self._drop(user_a)
        self._drop(user_b)
        return True

    async def get(self, user_id: str) -> Optional[WaitingEntry]:
        return self._entries.get(user_id)

    async def contains(self, user_id: str) -> bool:
        return user_id in self._entries

    async def snapshot(self) -> List[WaitingEntry]:
        # Same tie-break as a Redis sorted set: score, then member
        return sorted(self._entries.values(), key=lambda e: (e.arrival_timestamp, e.user_id))

    async def arrival_timestamps(self) -> List[int]:
        return [entry.arrival_timestamp for entry in self._entries.values()]

    async def size(self) -> int:
        return len(self._entries)

    async def get_session(self, user_id: str) -> Optional[Dict]:
        return self._sessions.get(user_id)

    async def user_for_connection(self, connection_id: str) -> Optional[str]:
        return self._connections.get(connection_id)
