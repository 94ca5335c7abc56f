"""
Service wiring: builds every core component on one storage backend.
"""
from dataclasses import dataclass
from typing import Optional

from redis.asyncio import Redis

from core.match_ledger import MatchLedger, InMemoryMatchLedger
from core.matchmaker import Matchmaker
from core.membership import MembershipRegistry, MembershipStore, InMemoryMembershipStore
from core.room_directory import RoomDirectory, InMemoryRoomDirectory
from core.sweeper import ReconciliationSweeper
from core.wait_pool import WaitPool, InMemoryWaitPool


@dataclass
class Services:
    """Core components sharing one store."""
    pool: object
    ledger: object
    directory: object
    memberships: object
    matchmaker: Matchmaker
    registry: MembershipRegistry
    sweeper: ReconciliationSweeper
    redis: Optional[Redis] = None


def build_services(redis_client: Optional[Redis] = None, **sweeper_options) -> Services:
    """
    Build the core components.

    Args:
        redis_client: Redis client; the in-memory backend is used when None
        **sweeper_options: Overrides for ReconciliationSweeper thresholds

    Returns:
        Services container
    """
    if redis_client is not None:
        pool = WaitPool(redis_client)
        ledger = MatchLedger(redis_client)
        directory = RoomDirectory(redis_client)
        memberships = MembershipStore(redis_client)
    else:
        pool = InMemoryWaitPool()
        ledger = InMemoryMatchLedger()
        directory = InMemoryRoomDirectory()
        memberships = InMemoryMembershipStore()

    registry = MembershipRegistry(memberships, directory)
    return Services(
        pool=pool,
        ledger=ledger,
        directory=directory,
        memberships=memberships,
        matchmaker=Matchmaker(pool, ledger),
        registry=registry,
        sweeper=ReconciliationSweeper(directory, registry, ledger, pool=pool, **sweeper_options),
        redis=redis_client,
    )
