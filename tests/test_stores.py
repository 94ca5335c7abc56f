"""
Tests for the match ledger and the room directory backends.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from core.errors import RoomNotFoundError
from core.match_ledger import MatchLedger, InMemoryMatchLedger
from core.models import MATCH_ENDED, MatchRecord
from core.room_directory import RoomDirectory, InMemoryRoomDirectory
from tests.factories import make_room


def make_match(match_id: str = "match_1", created_at: int = 1000) -> MatchRecord:
    return MatchRecord(
        match_id=match_id,
        participant_ids=("alice", "bob"),
        connection_ids=("conn-alice", "conn-bob"),
        room_id="room_1",
        created_at=created_at,
    )


def mock_pipeline(client, results):
    """Attach a transactional pipeline mock to a Redis client mock."""
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=results)
    client.pipeline.return_value.__aenter__ = AsyncMock(return_value=pipe)
    client.pipeline.return_value.__aexit__ = AsyncMock(return_value=False)
    return pipe


class TestMatchLedger:
    """Test the match ledger backends."""

    @pytest.mark.asyncio
    async def test_in_memory_lifecycle(self):
        """Insert, end, expire and delete a record."""
        ledger = InMemoryMatchLedger()
        await ledger.insert(make_match("m1", created_at=1000))
        await ledger.insert(make_match("m2", created_at=5000))

        assert (await ledger.mark_ended("m1")).status == MATCH_ENDED
        assert await ledger.mark_ended("missing") is None
        assert await ledger.created_before(5000) == ["m1"]
        assert await ledger.delete("m1") is True
        assert await ledger.delete("m1") is False

    @pytest.mark.asyncio
    async def test_redis_insert_indexes_by_time(self):
        """Records are written with a creation-time index in one transaction."""
        client = MagicMock()
        pipe = mock_pipeline(client, [1, 1])
        ledger = MatchLedger(client)
        match = make_match()

        await ledger.insert(match)

        client.pipeline.assert_called_once_with(transaction=True)
        pipe.hset.assert_called_once_with("matching:matches", "match_1", match.to_json())
        pipe.zadd.assert_called_once_with("matching:matches:by_time", {"match_1": 1000})

    @pytest.mark.asyncio
    async def test_redis_created_before_is_exclusive(self):
        """The age query excludes records created exactly at the cutoff."""
        client = MagicMock()
        client.zrangebyscore = AsyncMock(return_value=[b"match_1"])
        ledger = MatchLedger(client)

        assert await ledger.created_before(2000) == ["match_1"]
        client.zrangebyscore.assert_awaited_once_with("matching:matches:by_time", "-inf", "(2000")

    @pytest.mark.asyncio
    async def test_redis_get_decodes(self):
        """Test stored records are decoded from bytes."""
        client = MagicMock()
        client.hget = AsyncMock(return_value=make_match().to_json().encode())
        ledger = MatchLedger(client)

        match = await ledger.get("match_1")

        assert match.participant_ids == ("alice", "bob")
        assert match.is_active


class TestRoomDirectory:
    """Test the room directory backends."""

    @pytest.mark.asyncio
    async def test_member_count_clamped(self):
        """Projected counts stay within [0, max_members]."""
        directory = InMemoryRoomDirectory(max_members=2)
        directory.add_room(make_room("R1"))

        assert (await directory.update_members("R1", 5)).members == 2
        assert (await directory.update_members("R1", -1)).members == 0

    @pytest.mark.asyncio
    async def test_empty_since_tracking(self):
        """A room is indexed as empty only while it has no members."""
        directory = InMemoryRoomDirectory()
        directory.add_room(make_room("R1", created_at=1000))

        assert await directory.empty_rooms_before(2000) == ["R1"]
        await directory.update_members("R1", 1)
        assert await directory.empty_rooms_before(2000) == []

    @pytest.mark.asyncio
    async def test_update_missing_room(self):
        """Projecting onto a missing room raises RoomNotFoundError."""
        with pytest.raises(RoomNotFoundError):
            await InMemoryRoomDirectory().update_members("NOPE", 1)

    @pytest.mark.asyncio
    async def test_private_rooms_hidden(self):
        """Private rooms are not listed by default."""
        directory = InMemoryRoomDirectory()
        room = await directory.create_room("Secret", is_private=True)
        await directory.update_members(room.id, 1)

        assert await directory.list_rooms() == []
        assert [r.id for r in await directory.list_rooms(include_private=True)] == [room.id]

    @pytest.mark.asyncio
    async def test_redis_create_retries_collision(self):
        """A taken room id is retried with a fresh one."""
        client = MagicMock()
        client.hsetnx = AsyncMock(side_effect=[0, 1])
        pipe = mock_pipeline(client, [1, 1])
        directory = RoomDirectory(client)

        with patch("core.room_directory.asyncio.sleep", new=AsyncMock()):
            room = await directory.create_room("Lobby")

        assert client.hsetnx.await_count == 2
        assert room.id.isalnum() and room.id.upper() == room.id
        assert room.media_room_id.startswith(f"media_{room.id}_")
        pipe.zadd.assert_any_call("rooms:by_created", {room.id: room.created_at})
        pipe.zadd.assert_any_call("rooms:empty", {room.id: room.created_at})
