"""
Tests for the reconciliation sweeper.
"""
import asyncio

import pytest
from unittest.mock import AsyncMock

from core.match_ledger import InMemoryMatchLedger
from core.membership import MembershipRegistry, InMemoryMembershipStore
from core.models import MatchRecord
from core.room_directory import InMemoryRoomDirectory
from core.sweeper import ReconciliationSweeper, SweepReport
from core.wait_pool import InMemoryWaitPool
from tests.factories import make_room

MINUTE = 60 * 1000
HOUR = 60 * MINUTE
NOW = 100 * HOUR


@pytest.fixture
def directory():
    return InMemoryRoomDirectory()


@pytest.fixture
def registry(directory):
    return MembershipRegistry(InMemoryMembershipStore(), directory)


@pytest.fixture
def ledger():
    return InMemoryMatchLedger()


@pytest.fixture
def sweeper(directory, registry, ledger):
    return ReconciliationSweeper(
        directory,
        registry,
        ledger,
        pool=InMemoryWaitPool(),
        empty_grace_seconds=600,
        room_max_age_hours=6,
        match_max_age_seconds=3600,
        development=False,
    )


def make_match(match_id: str, created_at: int) -> MatchRecord:
    return MatchRecord(
        match_id=match_id,
        participant_ids=("alice", "bob"),
        connection_ids=("conn-alice", "conn-bob"),
        room_id=f"room_{match_id}",
        created_at=created_at,
    )


class TestEmptyRooms:
    """Test cleanup_empty_rooms."""

    @pytest.mark.asyncio
    async def test_grace_period(self, sweeper, directory):
        """Rooms empty past the grace period go; rooms within it stay."""
        directory.add_room(make_room("OLD", created_at=NOW - 30 * MINUTE))
        directory.add_room(make_room("NEW", created_at=NOW - 2 * MINUTE))

        assert await sweeper.cleanup_empty_rooms(NOW) == 1

        assert not await directory.exists("OLD")
        assert await directory.exists("NEW")

    @pytest.mark.asyncio
    async def test_rooms_with_members_kept(self, sweeper, directory, registry):
        """A room with members is never removed as empty."""
        directory.add_room(make_room("BUSY", created_at=NOW - 30 * MINUTE))
        await registry.join("BUSY", "eve-x1")

        assert await sweeper.cleanup_empty_rooms(NOW) == 0
        assert await directory.exists("BUSY")

    @pytest.mark.asyncio
    async def test_unprojected_join_keeps_room(self, sweeper, directory, registry):
        """The registry count wins over a stale directory projection."""
        directory.add_room(make_room("LAG", created_at=NOW - 30 * MINUTE))
        await registry.store.add("LAG", "eve-x1", "eve-")

        assert await sweeper.cleanup_empty_rooms(NOW) == 0
        assert await directory.exists("LAG")

    @pytest.mark.asyncio
    async def test_join_during_removal_is_reported(self, sweeper, directory, registry, caplog):
        """A member who joined after the emptiness check is dropped with a warning."""
        directory.add_room(make_room("RACE", created_at=NOW - 30 * MINUTE))
        await registry.store.add("RACE", "eve-x1", None)
        registry.count = AsyncMock(return_value=0)

        with caplog.at_level("WARNING", logger="core.sweeper"):
            assert await sweeper.cleanup_empty_rooms(NOW) == 1

        assert not await directory.exists("RACE")
        assert await registry.store.room_ids() == []
        assert "joined during the sweep" in caplog.text


class TestOldRooms:
    """Test cleanup_old_rooms."""

    @pytest.mark.asyncio
    async def test_force_evicts_with_members(self, sweeper, directory, registry):
        """Rooms past the maximum age are removed even with members."""
        directory.add_room(make_room("ANCIENT", created_at=NOW - 7 * HOUR))
        directory.add_room(make_room("FRESH", created_at=NOW - 1 * HOUR))
        await registry.join("ANCIENT", "eve-x1")

        assert await sweeper.cleanup_old_rooms(NOW) == 1

        assert not await directory.exists("ANCIENT")
        assert await directory.exists("FRESH")
        assert await registry.count("ANCIENT") == 0

    @pytest.mark.asyncio
    async def test_custom_max_age(self, sweeper, directory):
        """An explicit max age overrides the configured one."""
        directory.add_room(make_room("HOURS", created_at=NOW - 2 * HOUR))

        assert await sweeper.cleanup_old_rooms(NOW, max_age_hours=1) == 1


class TestOrphans:
    """Test cleanup_orphaned_memberships."""

    @pytest.mark.asyncio
    async def test_membership_without_room(self, sweeper, directory, registry):
        """Membership sets of rooms missing from the directory are dropped."""
        directory.add_room(make_room("KEEP"))
        await registry.join("KEEP", "eve-x1")
        await registry.store.add("GONE", "frank-z9", "frank-")

        assert await sweeper.cleanup_orphaned_memberships() == 1

        assert await registry.room_ids() == ["KEEP"]


class TestStaleMatches:
    """Test cleanup_stale_matches."""

    @pytest.mark.asyncio
    async def test_old_matches_removed(self, sweeper, ledger):
        """Matches past the maximum age are ended and removed."""
        await ledger.insert(make_match("old", NOW - 2 * HOUR))
        await ledger.insert(make_match("recent", NOW - 10 * MINUTE))

        assert await sweeper.cleanup_stale_matches(NOW) == 1

        assert await ledger.get("old") is None
        assert (await ledger.get("recent")).is_active


class TestRunOnce:
    """Test run_once."""

    @pytest.mark.asyncio
    async def test_report(self, sweeper, directory, registry, ledger):
        """A full pass reports what each step removed."""
        directory.add_room(make_room("EMPTY", created_at=NOW - 30 * MINUTE))
        directory.add_room(make_room("GRACE", created_at=NOW - 1 * MINUTE))
        directory.add_room(make_room("ANCIENT", created_at=NOW - 7 * HOUR))
        await registry.join("ANCIENT", "eve-x1")
        await registry.store.add("GONE", "frank-z9", "frank-")
        await ledger.insert(make_match("old", NOW - 2 * HOUR))

        report = await sweeper.run_once(NOW)

        assert report == SweepReport(empty_rooms=1, old_rooms=1, orphaned_memberships=1, stale_matches=1)
        assert report.total == 4
        assert report.to_dict()["total"] == 4
        assert await directory.exists("GRACE")

    @pytest.mark.asyncio
    async def test_usage_report_in_development(self, directory, registry, ledger):
        """Development mode logs a usage report after each pass."""
        sweeper = ReconciliationSweeper(directory, registry, ledger, development=True)
        sweeper.log_usage = AsyncMock()

        await sweeper.run_once(NOW)

        sweeper.log_usage.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_forever_survives_errors(self, sweeper):
        """A failing pass is logged and the loop keeps going."""
        calls = 0

        async def flaky_run_once():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("store down")
            if calls >= 3:
                raise asyncio.CancelledError()
            return SweepReport()

        sweeper.run_once = flaky_run_once

        with pytest.raises(asyncio.CancelledError):
            await sweeper.run_forever(interval=0)

        assert calls == 3
