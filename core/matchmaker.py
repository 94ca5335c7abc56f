"""
Matchmaker: pairs an arriving user with the earliest compatible user already waiting.

Selection is first-fit in arrival order. Match creation writes the ledger
record first and then claims both users from the pool with a single
compare-and-remove, so two concurrent attempts for the same user cannot both
succeed: the loser's record is rolled back and it reports "no match".
"""
import asyncio
import logging
from typing import Optional, Dict

from redis.exceptions import RedisError

from config.settings import settings
from core.compatibility import is_compatible
from core.errors import MatchNotFoundError, StorageError
from core.models import MatchRecord, WaitingEntry
from utils.identifiers import generate_match_id, generate_session_room_id, now_ms

logger = logging.getLogger(__name__)


def is_stale_match(match_created_at: int, wait_started_at: Optional[int]) -> bool:
    """
    Check whether a match predates the client's current wait session.

    A client that left and rejoined the queue must not be routed into a
    room created for its previous session.
    """
    if wait_started_at is None:
        return False
    return match_created_at < wait_started_at


class Matchmaker:
    """Orchestrates the wait pool, the compatibility rules and the match ledger."""

    def __init__(self, pool, ledger, claim_retries: Optional[int] = None):
        """
        Initialize matchmaker.

        Args:
            pool: WaitPool or InMemoryWaitPool
            ledger: MatchLedger or InMemoryMatchLedger
            claim_retries: Attempts for the pool claim when the store errors
        """
        self.pool = pool
        self.ledger = ledger
        self.claim_retries = claim_retries if claim_retries is not None else settings.MATCH_CLAIM_RETRIES

    async def join_queue(self, entry: WaitingEntry) -> bool:
        """
        Enqueue a user, replacing any entry they already had.

        The entry, its session record and the connection index are written
        together, so a storage failure leaves the previous state intact.

        Returns:
            True if the entry was stored
        """
        try:
            await self.pool.enqueue(entry)
        except RedisError as e:
            logger.error(f"Failed to add user {entry.user_id} to queue: {e}", exc_info=True)
            return False
        logger.info(f"User {entry.user_id} joined matching queue")
        return True

    async def leave_queue(self, user_id: str) -> bool:
        """
        Remove a user's entry and session record. No-op if the user is not waiting.

        Returns:
            True if the storage operation completed without error
        """
        try:
            removed = await self.pool.dequeue(user_id)
        except RedisError as e:
            logger.error(f"Failed to remove user {user_id} from queue: {e}", exc_info=True)
            return False
        if removed:
            logger.info(f"User {user_id} left matching queue")
        return True

    async def find_match(self, user_id: str) -> Optional[WaitingEntry]:
        """
        Find the earliest-arrived compatible partner for a waiting user.

        Returns:
            Partner entry, or None if nobody fits or the user is no longer waiting
        """
        entries = await self.pool.snapshot()
        current = next((entry for entry in entries if entry.user_id == user_id), None)
        if not current:
            return None

        for candidate in entries:
            if candidate.user_id == user_id:
                continue
            if is_compatible(current, candidate):
                return candidate
        return None

    async def _claim(self, a: WaitingEntry, b: WaitingEntry) -> bool:
        """Claim both users from the pool, retrying on store errors."""
        for attempt in range(1, self.claim_retries + 1):
            try:
                return await self.pool.claim_pair(a.user_id, b.user_id)
            except RedisError as e:
                logger.warning(f"Claim of {a.user_id} and {b.user_id} failed (attempt {attempt}/{self.claim_retries}): {e}")
                if attempt == self.claim_retries:
                    raise
                await asyncio.sleep(0.05 * attempt)
        return False

    async def create_match(self, a: WaitingEntry, b: WaitingEntry) -> Optional[MatchRecord]:
        """
        Create an active match between two waiting users.

        The ledger record is written before the pool claim. If the claim
        loses a race (either user already left or was matched), the record
        is deleted and None is returned. Once the claim succeeds, any earlier
        active match of either user is ended, so a user is active in at most
        one match.

        Returns:
            The new match, or None if either user is no longer available

        Raises:
            StorageError: If the ledger write or the claim fails in the store
        """
        match = MatchRecord(
            match_id=generate_match_id(),
            participant_ids=(a.user_id, b.user_id),
            connection_ids=(a.connection_id, b.connection_id),
            room_id=generate_session_room_id(),
            created_at=now_ms(),
        )

        try:
            await self.ledger.insert(match)
        except RedisError as e:
            raise StorageError(f"Failed to record match between {a.user_id} and {b.user_id}") from e

        try:
            claimed = await self._claim(a, b)
        except RedisError as e:
            await self._discard(match)
            raise StorageError(f"Failed to remove {a.user_id} and {b.user_id} from the queue") from e

        if not claimed:
            logger.info(f"Match between {a.user_id} and {b.user_id} aborted, one of them is no longer waiting")
            await self._discard(match)
            return None

        logger.info(f"Match created: {match.match_id} between {a.user_id} and {b.user_id}")
        await self._end_previous_matches(match)
        return match

    async def _end_previous_matches(self, match: MatchRecord) -> None:
        """End every other active match of the new match's participants."""
        participants = set(match.participant_ids)
        try:
            for previous in await self.ledger.scan():
                if previous.match_id == match.match_id or not previous.is_active:
                    continue
                if participants.intersection(previous.participant_ids):
                    await self.ledger.mark_ended(previous.match_id)
                    logger.info(f"Match {previous.match_id} ended, a participant was matched again")
        except RedisError as e:
            # Left for the sweeper's max-age pass
            logger.error(f"Failed to end previous matches for {match.match_id}: {e}", exc_info=True)

    async def _discard(self, match: MatchRecord) -> None:
        try:
            await self.ledger.delete(match.match_id)
        except RedisError as e:
            # Left for the sweeper's max-age pass
            logger.error(f"Failed to roll back match {match.match_id}: {e}", exc_info=True)

    async def try_match(self, user_id: str) -> Optional[MatchRecord]:
        """Find a partner for user_id and create the match. Returns None when nobody is available."""
        current = await self.pool.get(user_id)
        if not current:
            return None
        partner = await self.find_match(user_id)
        if not partner:
            return None
        return await self.create_match(current, partner)

    async def get_stats(self, now: Optional[int] = None) -> Dict[str, float]:
        """
        Compute queue statistics from the shared store.

        Returns:
            Dictionary with waitingCount, activeMatches and averageWaitTime (ms)
        """
        now = now if now is not None else now_ms()
        waiting_count = await self.pool.size()
        arrivals = await self.pool.arrival_timestamps()
        matches = await self.ledger.scan()
        active_matches = sum(1 for match in matches if match.is_active)
        average_wait = sum(now - arrival for arrival in arrivals) / len(arrivals) if arrivals else 0
        return {
            "waitingCount": waiting_count,
            "activeMatches": active_matches,
            "averageWaitTime": average_wait,
        }

    async def get_match(self, match_id: str) -> MatchRecord:
        """
        Raises:
            MatchNotFoundError: If no such match exists
        """
        match = await self.ledger.get(match_id)
        if not match:
            raise MatchNotFoundError(match_id)
        return match

    async def end_match(self, match_id: str) -> MatchRecord:
        """
        Mark a match as ended.

        Raises:
            MatchNotFoundError: If no such match exists
        """
        match = await self.ledger.mark_ended(match_id)
        if not match:
            raise MatchNotFoundError(match_id)
        logger.info(f"Match {match_id} ended")
        return match

    async def get_user_active_match(self, user_id: str) -> Optional[MatchRecord]:
        for match in await self.ledger.scan():
            if match.is_active and user_id in match.participant_ids:
                return match
        return None

    async def is_user_in_queue(self, user_id: str) -> bool:
        return await self.pool.contains(user_id)

    async def find_user_by_connection(self, connection_id: str) -> Optional[str]:
        return await self.pool.user_for_connection(connection_id)
