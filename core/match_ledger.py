"""
Match ledger: match records keyed by match ID, with a creation-time index
so the sweeper only reads matches that are old enough to expire.
"""
import logging
from typing import Optional, Dict, List

import redis.asyncio as redis

from core.models import MatchRecord, MATCH_ENDED
from utils.identifiers import decode

logger = logging.getLogger(__name__)


class MatchLedger:
    """Redis-based match ledger."""

    def __init__(self, redis_client: redis.Redis):
        """
        Initialize match ledger with Redis client.

        Args:
            redis_client: Redis async client instance
        """
        self.redis = redis_client
        self.matches_key = "matching:matches"
        self.by_time_key = "matching:matches:by_time"

    async def insert(self, match: MatchRecord) -> None:
        """Persist a match record and index it by creation time."""
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(self.matches_key, match.match_id, match.to_json())
            pipe.zadd(self.by_time_key, {match.match_id: match.created_at})
            await pipe.execute()

    async def get(self, match_id: str) -> Optional[MatchRecord]:
        raw = await self.redis.hget(self.matches_key, match_id)
        if not raw:
            return None
        return MatchRecord.from_json(decode(raw))

    async def mark_ended(self, match_id: str) -> Optional[MatchRecord]:
        """Set a match's status to ended. Returns the updated record, or None if absent."""
        match = await self.get(match_id)
        if not match:
            return None
        match.status = MATCH_ENDED
        await self.redis.hset(self.matches_key, match_id, match.to_json())
        return match

    async def delete(self, match_id: str) -> bool:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hdel(self.matches_key, match_id)
            pipe.zrem(self.by_time_key, match_id)
            deleted, _ = await pipe.execute()
        return bool(deleted)

    async def scan(self) -> List[MatchRecord]:
        """Return every match record."""
        matches: Dict = await self.redis.hgetall(self.matches_key)
        return [MatchRecord.from_json(decode(raw)) for raw in matches.values()]

    async def created_before(self, cutoff_ms: int) -> List[str]:
        """IDs of matches created strictly before cutoff_ms."""
        ids = await self.redis.zrangebyscore(self.by_time_key, "-inf", f"({cutoff_ms}")
        return [decode(match_id) for match_id in ids]


class InMemoryMatchLedger:
    """In-memory match ledger."""

    def __init__(self) -> None:
        self._matches: Dict[str, MatchRecord] = {}

    async def insert(self, match: MatchRecord) -> None:
        self._matches[match.match_id] = match

    async def get(self, match_id: str) -> Optional[MatchRecord]:
        return self._matches.get(match_id)

    async def mark_ended(self, match_id: str) -> Optional[MatchRecord]:
        match = self._matches.get(match_id)
        if not match:
            return None
        match.status = MATCH_ENDED
        return match

    async def delete(self, match_id: str) -> bool:
        return self._matches.pop(match_id, None) is not None

    async def scan(self) -> List[MatchRecord]:
        return list(self._matches.values())

    async def created_before(self, cutoff_ms: int) -> List[str]:
        return [m.match_id for m in self._matches.values() if m.created_at < cutoff_ms]
