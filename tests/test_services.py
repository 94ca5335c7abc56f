"""
Tests for service wiring.
"""
from unittest.mock import MagicMock

from core.match_ledger import MatchLedger, InMemoryMatchLedger
from core.membership import MembershipStore
from core.room_directory import RoomDirectory
from core.services import Services, build_services
from core.wait_pool import WaitPool, InMemoryWaitPool


class TestBuildServices:
    """Test build_services."""

    def test_in_memory_backend(self):
        """Without a Redis client every store is in-memory."""
        services = build_services(development=False)

        assert isinstance(services, Services)
        assert services.redis is None
        assert isinstance(services.pool, InMemoryWaitPool)
        assert isinstance(services.ledger, InMemoryMatchLedger)
        assert services.matchmaker.pool is services.pool
        assert services.registry.directory is services.directory

    def test_redis_backend(self):
        """A Redis client is shared by every store and kept on the container."""
        client = MagicMock()

        services = build_services(client, development=False)

        assert services.redis is client
        assert isinstance(services.pool, WaitPool)
        assert isinstance(services.ledger, MatchLedger)
        assert isinstance(services.directory, RoomDirectory)
        assert isinstance(services.memberships, MembershipStore)
        assert services.pool.redis is client
