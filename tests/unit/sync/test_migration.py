import asyncio

import pytest

from chatsync.store.errors import Unavailable
from chatsync.sync.migration import MigrationCoordinator
from chatsync.sync.state import MigrationLatch, SyncStateStore


class StaticLegacySource:
    def __init__(self, messages):
        self.messages = list(messages)
        self.load_calls = 0

    async def load(self):
        self.load_calls += 1
        return list(self.messages)


@pytest.fixture
def latch(tmp_path):
    return MigrationLatch(SyncStateStore(tmp_path / "state.json"))


@pytest.mark.asyncio
async def test_migrates_legacy_history_once(primary, secondary, latch, make_message):
    legacy = StaticLegacySource([make_message(str(i), minutes=i) for i in range(3)])
    migration = MigrationCoordinator(primary, latch, legacy, secondary)

    first = await migration.migrate("user-1")
    second = await migration.migrate("user-1")

    assert (first.migrated, first.completed) == (3, True)
    assert (second.migrated, second.completed) == (0, True)
    assert sorted(primary.rows) == ["0", "1", "2"]
    assert sorted(secondary.rows) == ["0", "1", "2"]
    assert primary.batch_calls == 1
    assert legacy.load_calls == 1
    assert migration.has_migrated()


@pytest.mark.asyncio
async def test_empty_legacy_history_still_latches(primary, latch):
    migration = MigrationCoordinator(primary, latch, StaticLegacySource([]))

    result = await migration.migrate("user-1")

    assert result.completed is True
    assert latch.is_set()
    assert primary.batch_calls == 0


@pytest.mark.asyncio
async def test_primary_failure_leaves_latch_unset_for_retry(primary, latch, make_message):
    migration = MigrationCoordinator(primary, latch, StaticLegacySource([make_message("1")]))
    primary.fail_with = Unavailable("offline")

    failed = await migration.migrate("user-1")
    assert failed.completed is False
    assert not latch.is_set()

    primary.fail_with = None
    retried = await migration.migrate("user-1")
    assert retried.completed is True
    assert list(primary.rows) == ["1"]


@pytest.mark.asyncio
async def test_secondary_failure_does_not_block_latch(primary, secondary, latch, make_message):
    migration = MigrationCoordinator(primary, latch, StaticLegacySource([make_message("1")]), secondary)
    secondary.fail_with = Unavailable("disk full")

    result = await migration.migrate("user-1")

    assert result.completed is True
    assert latch.is_set()
    assert list(primary.rows) == ["1"]


@pytest.mark.asyncio
async def test_concurrent_migrations_write_once(primary, latch, make_message):
    migration = MigrationCoordinator(primary, latch, StaticLegacySource([make_message("1"), make_message("2")]))

    results = await asyncio.gather(*(migration.migrate("user-1") for _ in range(3)))

    assert sum(result.migrated for result in results) == 2
    assert primary.batch_calls == 1


@pytest.mark.asyncio
async def test_exported_payload_import_ignores_latch(primary, latch):
    await latch.set()
    migration = MigrationCoordinator(primary, latch)
    payload = {"messages": [{"id": "web-1", "text": "from the web", "role": "user"}]}

    assert await migration.migrate_payload("user-1", payload) == 1
    assert await migration.migrate_payload("user-1", {"messages": []}) == 0
    assert list(primary.rows) == ["web-1"]
