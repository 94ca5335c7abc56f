"""
Tests for the wait pool backends.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from redis.exceptions import ConnectionError as RedisConnectionError

from core.models import Preferences
from core.wait_pool import WaitPool, InMemoryWaitPool
from tests.factories import make_entry


def mock_redis(script_result=1):
    """Redis client mock whose registered scripts all resolve to script_result."""
    client = MagicMock()
    script = AsyncMock(return_value=script_result)
    client.register_script = MagicMock(return_value=script)
    return client, script


class TestInMemoryWaitPool:
    """Test InMemoryWaitPool."""

    @pytest.mark.asyncio
    async def test_rejoin_keeps_one_entry(self):
        """Repeated enqueues for one user leave exactly one entry with the latest arrival."""
        pool = InMemoryWaitPool()
        await pool.enqueue(make_entry("alice", arrival=100))
        await pool.enqueue(make_entry("alice", arrival=200))
        await pool.enqueue(make_entry("alice", arrival=300))

        entries = await pool.snapshot()
        assert [e.user_id for e in entries] == ["alice"]
        assert entries[0].arrival_timestamp == 300
        assert await pool.size() == 1

    @pytest.mark.asyncio
    async def test_rejoin_moves_connection_index(self):
        """A rejoin from a new connection replaces the old connection mapping."""
        pool = InMemoryWaitPool()
        first = make_entry("alice", arrival=100)
        second = make_entry("alice", arrival=200)
        second.connection_id = "conn-new"
        await pool.enqueue(first)
        await pool.enqueue(second)

        assert await pool.user_for_connection("conn-alice") is None
        assert await pool.user_for_connection("conn-new") == "alice"
        session = await pool.get_session("alice")
        assert session["connection_id"] == "conn-new"
        assert session["joined_at"] == 200

    @pytest.mark.asyncio
    async def test_snapshot_orders_by_arrival(self):
        """Snapshot returns entries in ascending arrival order."""
        pool = InMemoryWaitPool()
        await pool.enqueue(make_entry("carol", arrival=300))
        await pool.enqueue(make_entry("alice", arrival=100))
        await pool.enqueue(make_entry("bob", arrival=200))

        assert [e.user_id for e in await pool.snapshot()] == ["alice", "bob", "carol"]

    @pytest.mark.asyncio
    async def test_dequeue_missing_user_is_noop(self):
        """Removing a user who is not waiting returns False and changes nothing."""
        pool = InMemoryWaitPool()
        await pool.enqueue(make_entry("alice"))

        assert await pool.dequeue("nobody") is False
        assert await pool.size() == 1

    @pytest.mark.asyncio
    async def test_dequeue_clears_session_and_connection(self):
        """Dequeue drops the entry, the session record and the connection index."""
        pool = InMemoryWaitPool()
        await pool.enqueue(make_entry("alice"))

        assert await pool.dequeue("alice") is True
        assert await pool.get("alice") is None
        assert await pool.get_session("alice") is None
        assert await pool.user_for_connection("conn-alice") is None

    @pytest.mark.asyncio
    async def test_claim_pair_requires_both(self):
        """claim_pair removes nobody unless both users are waiting."""
        pool = InMemoryWaitPool()
        await pool.enqueue(make_entry("alice"))

        assert await pool.claim_pair("alice", "bob") is False
        assert await pool.contains("alice")

        await pool.enqueue(make_entry("bob"))
        assert await pool.claim_pair("alice", "bob") is True
        assert await pool.size() == 0

    @pytest.mark.asyncio
    async def test_arrival_timestamps(self):
        """Test arrival timestamps are reported for every waiting user."""
        pool = InMemoryWaitPool()
        await pool.enqueue(make_entry("alice", arrival=100))
        await pool.enqueue(make_entry("bob", arrival=250))

        assert sorted(await pool.arrival_timestamps()) == [100, 250]


class TestRedisWaitPool:
    """Test WaitPool against a mocked Redis client."""

    @pytest.mark.asyncio
    async def test_enqueue_runs_script_with_all_keys(self):
        """Enqueue writes entry, session and connection index in one script call."""
        client, script = mock_redis()
        pool = WaitPool(client)
        entry = make_entry("alice", arrival=123, preferences=Preferences(age_range=(20, 30)))

        await pool.enqueue(entry)

        script.assert_awaited_once()
        kwargs = script.await_args.kwargs
        assert kwargs["keys"] == [
            "matching:queue",
            "matching:entries",
            "matching:user_sessions",
            "matching:connections",
        ]
        assert kwargs["args"][0] == "alice"
        assert kwargs["args"][1] == 123
        assert kwargs["args"][4] == "conn-alice"

    @pytest.mark.asyncio
    async def test_claim_pair_reports_lost_race(self):
        """A script result of 0 means one of the users was already gone."""
        client, _ = mock_redis(script_result=0)
        pool = WaitPool(client)

        assert await pool.claim_pair("alice", "bob") is False

    @pytest.mark.asyncio
    async def test_snapshot_skips_entries_removed_between_reads(self):
        """Members whose entry disappeared after the range read are skipped."""
        client, _ = mock_redis()
        alice = make_entry("alice", arrival=100)
        client.zrange = AsyncMock(return_value=[b"alice", b"bob"])
        client.hmget = AsyncMock(return_value=[alice.to_json().encode(), None])
        pool = WaitPool(client)

        entries = await pool.snapshot()

        assert [e.user_id for e in entries] == ["alice"]
        client.hmget.assert_awaited_once_with("matching:entries", [b"alice", b"bob"])

    @pytest.mark.asyncio
    async def test_snapshot_round_trips_preferences(self):
        """Entries read back from the store keep their preferences and profile."""
        client, _ = mock_redis()
        stored = make_entry("alice", arrival=100, preferences=Preferences(age_range=(20, 30), interests=["music"]), age=25)
        client.zrange = AsyncMock(return_value=[b"alice"])
        client.hmget = AsyncMock(return_value=[stored.to_json().encode()])
        pool = WaitPool(client)

        [entry] = await pool.snapshot()

        assert entry.preferences.age_range == (20, 30)
        assert entry.preferences.interests == ["music"]
        assert entry.profile.age == 25

    @pytest.mark.asyncio
    async def test_user_for_connection_decodes(self):
        """Connection lookups decode the stored user id."""
        client, _ = mock_redis()
        client.hget = AsyncMock(return_value=b"alice")
        pool = WaitPool(client)

        assert await pool.user_for_connection("conn-alice") == "alice"
        client.hget.assert_awaited_once_with("matching:connections", "conn-alice")

    @pytest.mark.asyncio
    async def test_store_errors_propagate(self):
        """Storage failures are left to the caller."""
        client, script = mock_redis()
        script.side_effect = RedisConnectionError("down")
        pool = WaitPool(client)

        with pytest.raises(RedisConnectionError):
            await pool.dequeue("alice")
