"""
Reconciliation sweeper.
Periodically removes rooms that stayed empty past a grace period, rooms past
their maximum age, membership sets of rooms that no longer exist, and
expired matches.
"""
import asyncio
import logging
from dataclasses import dataclass, asdict
from typing import Optional, Dict

from config.settings import settings
from core.models import MATCH_ACTIVE
from utils.identifiers import now_ms

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Counts of what one sweep removed."""
    empty_rooms: int = 0
    old_rooms: int = 0
    orphaned_memberships: int = 0
    stale_matches: int = 0

    @property
    def total(self) -> int:
        return self.empty_rooms + self.old_rooms + self.orphaned_memberships + self.stale_matches

    def to_dict(self) -> Dict[str, int]:
        data = asdict(self)
        data["total"] = self.total
        return data


class ReconciliationSweeper:
    """
    Removes stale state from the room directory, the membership registry and the match ledger.

    Every step selects entries by an age predicate, so entries created or
    touched within the thresholds are never removed.
    """

    def __init__(
        self,
        directory,
        registry,
        ledger,
        pool=None,
        empty_grace_seconds: Optional[int] = None,
        room_max_age_hours: Optional[int] = None,
        match_max_age_seconds: Optional[int] = None,
        development: Optional[bool] = None,
    ):
        self.directory = directory
        self.registry = registry
        self.ledger = ledger
        self.pool = pool
        self.empty_grace_seconds = (
            empty_grace_seconds if empty_grace_seconds is not None else settings.ROOM_EMPTY_GRACE_SECONDS
        )
        self.room_max_age_hours = room_max_age_hours if room_max_age_hours is not None else settings.ROOM_MAX_AGE_HOURS
        self.match_max_age_seconds = (
            match_max_age_seconds if match_max_age_seconds is not None else settings.MATCH_MAX_AGE_SECONDS
        )
        self.development = development if development is not None else settings.is_development

    async def _remove_room(self, room_id: str) -> bool:
        deleted = await self.directory.delete_room(room_id)
        await self.registry.drop_room(room_id)
        return deleted

    async def cleanup_empty_rooms(self, now: Optional[int] = None) -> int:
        """Remove rooms that have had zero members for longer than the grace period."""
        now = now if now is not None else now_ms()
        cutoff = now - self.empty_grace_seconds * 1000
        cleaned = 0
        for room_id in await self.directory.empty_rooms_before(cutoff):
            # A join may have landed after the directory was last projected
            if await self.registry.count(room_id) > 0:
                continue
            deleted = await self.directory.delete_room(room_id)
            dropped = await self.registry.drop_room(room_id)
            if dropped:
                # Joined between the count check and the delete
                logger.warning(f"Empty room {room_id} removed with {dropped} member(s) that joined during the sweep")
            if deleted:
                cleaned += 1
                logger.info(f"Removed empty room {room_id}")
        return cleaned

    async def cleanup_old_rooms(self, now: Optional[int] = None, max_age_hours: Optional[int] = None) -> int:
        """Evict rooms older than the maximum age, members or not."""
        now = now if now is not None else now_ms()
        hours = max_age_hours if max_age_hours is not None else self.room_max_age_hours
        cutoff = now - hours * 3600 * 1000
        cleaned = 0
        for room_id in await self.directory.rooms_created_before(cutoff):
            members = await self.registry.count(room_id)
            if await self._remove_room(room_id):
                cleaned += 1
                logger.warning(f"Force-evicted room {room_id} older than {hours}h ({members} members)")
        return cleaned

    async def cleanup_orphaned_memberships(self) -> int:
        """Drop membership sets whose room is no longer in the directory."""
        cleaned = 0
        for room_id in await self.registry.room_ids():
            if await self.directory.exists(room_id):
                continue
            await self.registry.drop_room(room_id)
            cleaned += 1
            logger.info(f"Removed orphaned membership for room {room_id}")
        return cleaned

    async def cleanup_stale_matches(self, now: Optional[int] = None) -> int:
        """End and remove matches older than the maximum age."""
        now = now if now is not None else now_ms()
        cutoff = now - self.match_max_age_seconds * 1000
        cleaned = 0
        for match_id in await self.ledger.created_before(cutoff):
            match = await self.ledger.get(match_id)
            if match and match.status == MATCH_ACTIVE:
                await self.ledger.mark_ended(match_id)
            if await self.ledger.delete(match_id):
                cleaned += 1
                logger.info(f"Cleaned up old match: {match_id}")
        return cleaned

    async def run_once(self, now: Optional[int] = None) -> SweepReport:
        """Run every cleanup step once and log a summary."""
        now = now if now is not None else now_ms()
        report = SweepReport()
        report.empty_rooms = await self.cleanup_empty_rooms(now)
        report.old_rooms = await self.cleanup_old_rooms(now)
        report.orphaned_memberships = await self.cleanup_orphaned_memberships()
        report.stale_matches = await self.cleanup_stale_matches(now)

        logger.info(f"Sweep completed: {report.to_dict()}")
        if self.development:
            await self.log_usage()
        return report

    async def log_usage(self) -> None:
        """Log a usage report of the shared state."""
        room_ids = await self.registry.room_ids()
        total_members = 0
        for room_id in room_ids:
            total_members += await self.registry.count(room_id)
        waiting = await self.pool.size() if self.pool is not None else 0
        logger.info(
            f"Usage: rooms={await self.directory.count()}, membership sets={len(room_ids)}, "
            f"members={total_members}, waiting={waiting}"
        )

    async def run_forever(self, interval: Optional[int] = None) -> None:
        """Run sweeps on a fixed interval until cancelled."""
        interval = interval if interval is not None else settings.sweep_interval
        logger.info(f"🧹 Sweeper started (every {interval} seconds)")
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Sweep failed: {e}", exc_info=True)
            await asyncio.sleep(interval)
