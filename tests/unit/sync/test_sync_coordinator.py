import asyncio
from datetime import timedelta

import pytest

from chatsync.conversation.models import utc_now
from chatsync.store.errors import Unavailable
from chatsync.sync.coordinator import SyncCoordinator
from chatsync.sync.state import SyncClock, SyncStateStore


@pytest.fixture
def clock(tmp_path):
    return SyncClock(SyncStateStore(tmp_path / "state.json"))


@pytest.fixture
def coordinator(primary, secondary, clock):
    return SyncCoordinator(primary, secondary, clock)


async def _wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_primary_version_wins_and_orphans_are_recovered(coordinator, primary, secondary, make_message):
    primary.rows["1"] = make_message("1", "A")
    secondary.rows["1"] = make_message("1", "B")
    secondary.rows["2"] = make_message("2", "offline", minutes=1)

    report = await coordinator.resolve_conflicts("user-1")

    assert (report.conflicts, report.propagated, report.failures) == (1, 1, 0)
    assert secondary.rows["1"].content == "A"
    assert primary.rows["2"].content == "offline"
    assert sorted(primary.rows) == sorted(secondary.rows) == ["1", "2"]


@pytest.mark.asyncio
async def test_timestamp_only_difference_is_a_conflict(coordinator, primary, secondary, make_message):
    primary.rows["1"] = make_message("1", "same text", minutes=5)
    secondary.rows["1"] = make_message("1", "same text", minutes=0)

    report = await coordinator.resolve_conflicts("user-1")

    assert report.conflicts == 1
    assert secondary.rows["1"].timestamp == primary.rows["1"].timestamp


@pytest.mark.asyncio
async def test_identical_records_are_not_conflicts(coordinator, primary, secondary, make_message):
    primary.rows["1"] = make_message("1", "same text")
    secondary.rows["1"] = make_message("1", "same text")

    report = await coordinator.resolve_conflicts("user-1")

    assert (report.conflicts, report.propagated, report.failures) == (0, 0, 0)
    assert secondary.save_calls == 0
    assert primary.save_calls == 0


@pytest.mark.asyncio
async def test_write_failures_are_counted_not_raised(coordinator, primary, secondary, make_message):
    secondary.rows["orphan"] = make_message("orphan")

    async def refuse(message, user_id, conversation_id=None):
        raise Unavailable("read only")

    primary.save_message = refuse
    report = await coordinator.resolve_conflicts("user-1")

    assert report.propagated == 0
    assert report.failures == 1


@pytest.mark.asyncio
async def test_resolution_propagates_load_failures(coordinator, primary):
    primary.fail_with = Unavailable("offline")

    with pytest.raises(Unavailable):
        await coordinator.resolve_conflicts("user-1")


@pytest.mark.asyncio
async def test_full_sync_is_single_flight(coordinator, primary, secondary, make_message):
    primary.rows["1"] = make_message("1")

    results = await asyncio.gather(coordinator.sync_all("user-1"), coordinator.sync_all("user-1"))

    assert sorted(results) == [False, True]
    assert primary.load_calls == 1
    assert secondary.batch_calls == 1
    assert list(secondary.rows) == ["1"]
    assert coordinator.is_syncing is False


@pytest.mark.asyncio
async def test_full_sync_records_timestamp(coordinator, clock):
    before = utc_now()

    assert coordinator.needs_sync()
    await coordinator.sync_all("user-1")

    assert clock.last_sync_at() >= before - timedelta(seconds=1)
    assert not coordinator.needs_sync()
    assert coordinator.needs_sync(max_age=timedelta(seconds=-1))


@pytest.mark.asyncio
async def test_failed_sync_releases_guard_and_keeps_timestamp(coordinator, primary, clock):
    primary.fail_with = Unavailable("offline")

    with pytest.raises(Unavailable):
        await coordinator.sync_all("user-1")

    assert coordinator.is_syncing is False
    assert clock.last_sync_at() is None


@pytest.mark.asyncio
async def test_incremental_sync_without_history_runs_full_sync(coordinator, primary, secondary, clock, make_message):
    primary.rows["1"] = make_message("1")

    assert await coordinator.incremental_sync("user-1") is True

    assert list(secondary.rows) == ["1"]
    assert clock.last_sync_at() is not None


@pytest.mark.asyncio
async def test_incremental_sync_copies_only_newer_messages(coordinator, primary, secondary, clock, make_message):
    old = make_message("old", minutes=0)
    new = make_message("new", minutes=10)
    primary.rows.update({"old": old, "new": new})
    await clock.mark(old.timestamp)

    await coordinator.incremental_sync("user-1")

    assert list(secondary.rows) == ["new"]
    assert clock.last_sync_at() > new.timestamp


@pytest.mark.asyncio
async def test_incremental_sync_with_nothing_new_skips_write(coordinator, primary, secondary, clock, make_message):
    primary.rows["1"] = make_message("1")
    await clock.mark(utc_now())

    await coordinator.incremental_sync("user-1")

    assert secondary.batch_calls == 0


@pytest.mark.asyncio
async def test_background_sync_survives_failed_ticks(coordinator, primary, secondary, clock, make_message):
    primary.rows["1"] = make_message("1")
    primary.fail_with = Unavailable("offline")

    coordinator.start_background_sync("user-1", interval=0.01)
    coordinator.start_background_sync("user-1", interval=0.01)
    await _wait_for(lambda: primary.load_calls >= 2)
    assert coordinator.background_running

    primary.fail_with = None
    await _wait_for(lambda: clock.last_sync_at() is not None)
    await coordinator.stop_background_sync()

    assert not coordinator.background_running
    assert list(secondary.rows) == ["1"]


@pytest.mark.asyncio
async def test_stop_without_start_is_harmless(coordinator):
    await coordinator.stop_background_sync()
    assert not coordinator.background_running
