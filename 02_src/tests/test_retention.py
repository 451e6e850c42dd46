"""Tests for RetentionManager."""

import asyncio
from datetime import timedelta

import pytest

from pulse_core.retention import RetentionManager


async def wait_until(condition, attempts: int = 200):
    for _ in range(attempts):
        if condition():
            return True
        await asyncio.sleep(0.01)
    return condition()


class TestRetentionSweep:
    """Tests for single eviction passes."""

    @pytest.mark.asyncio
    async def test_count_bound_keeps_newest(self, store, retention, make_event):
        """Test that ids 1..5 with max_events=3 leave {3, 4, 5}."""
        for i in range(5):
            await store.append(make_event(f"m{i}"))

        retention.max_events = 3
        assert await retention.sweep() == 2
        assert [e.seq for e in await store.read()] == [3, 4, 5]

    @pytest.mark.asyncio
    async def test_within_bounds_is_noop(self, store, retention, make_event):
        """Test that nothing is evicted under the limits."""
        await store.append(make_event())
        retention.max_events = 10
        retention.max_age = timedelta(hours=1)
        assert await retention.sweep() == 0
        assert store.count == 1

    @pytest.mark.asyncio
    async def test_no_bounds_is_noop(self, store, retention, make_event):
        """Test that an unbounded manager never evicts."""
        for i in range(3):
            await store.append(make_event(f"m{i}"))
        assert await retention.sweep() == 0

    @pytest.mark.asyncio
    async def test_age_bound_evicts_prefix_only(self, store, retention, make_event):
        """Test that an old event behind a young one is kept."""
        old = timedelta(hours=2)
        await store.append(make_event("old-1", age=old))
        await store.append(make_event("old-2", age=old))
        await store.append(make_event("young"))
        await store.append(make_event("old-late", age=old))

        retention.max_age = timedelta(hours=1)
        assert await retention.sweep() == 2
        assert [e.message for e in await store.read()] == ["young", "old-late"]

    @pytest.mark.asyncio
    async def test_age_bound_evicts_everything_old(self, store, retention, make_event):
        """Test that a fully expired log is emptied."""
        for i in range(3):
            await store.append(make_event(f"m{i}", age=timedelta(days=2)))

        retention.max_age = timedelta(days=1)
        assert await retention.sweep() == 3
        assert store.count == 0

    @pytest.mark.asyncio
    async def test_stricter_bound_wins(self, store, retention, make_event):
        """Test combining count and age bounds."""
        for i in range(4):
            await store.append(make_event(f"old{i}", age=timedelta(hours=2)))
        for i in range(4):
            await store.append(make_event(f"new{i}"))

        retention.max_events = 2
        retention.max_age = timedelta(hours=1)
        assert await retention.sweep() == 6
        assert [e.seq for e in await store.read()] == [7, 8]

    @pytest.mark.asyncio
    async def test_in_flight_query_blocks_eviction(
        self, store, retention, query_engine, make_event
    ):
        """Test that a running query sees every event it started with."""
        for i in range(8):
            await store.append(make_event(f"m{i}"))
        retention.max_events = 1

        seen = []
        async for event in query_engine.query():
            seen.append(event.seq)
            if event.seq == 1:
                assert await retention.sweep() == 0
        assert seen == list(range(1, 9))

        assert await retention.sweep() == 7
        assert [e.seq for e in await store.read()] == [8]

    @pytest.mark.asyncio
    async def test_eviction_removes_unreferenced_payloads(
        self, store, retention, make_event
    ):
        """Test that blobs are removed with their events."""
        await store.append(make_event("a"), payload=b"first")
        await store.append(make_event("b"), payload=b"second")

        retention.max_events = 1
        await retention.sweep()
        stats = await store.stats()
        assert stats["blob_count"] == 1
        assert stats["blob_bytes"] == len(b"second")


class TestRetentionBackground:
    """Tests for the background sweep task."""

    @pytest.mark.asyncio
    async def test_start_without_bounds_does_not_run(self, retention):
        """Test that start() is a no-op with no bounds."""
        await retention.start()
        assert not retention.running
        await retention.stop()

    @pytest.mark.asyncio
    async def test_start_stop(self, store):
        """Test background task lifecycle."""
        manager = RetentionManager(store, max_events=5, interval=60)
        await manager.start()
        assert manager.running
        await manager.start()
        await manager.stop()
        assert not manager.running

    @pytest.mark.asyncio
    async def test_periodic_sweep(self, store, make_event):
        """Test that the interval loop enforces the bounds."""
        for i in range(5):
            await store.append(make_event(f"m{i}"))

        manager = RetentionManager(store, max_events=2, interval=0.01)
        await manager.start()
        try:
            assert await wait_until(lambda: store.count == 2)
        finally:
            await manager.stop()
        assert [e.seq for e in await store.read()] == [4, 5]

    @pytest.mark.asyncio
    async def test_sweep_on_append(self, store, make_event):
        """Test that appends wake the background task."""
        manager = RetentionManager(
            store, max_events=2, interval=3600, sweep_on_append=True
        )
        store.add_listener(manager.notify_append)
        await manager.start()
        try:
            for i in range(5):
                await store.append(make_event(f"m{i}"))
            assert await wait_until(lambda: store.count == 2)
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_append_does_not_wake_without_flag(self, store, make_event):
        """Test that notify_append is ignored unless enabled."""
        manager = RetentionManager(store, max_events=1, interval=3600)
        store.add_listener(manager.notify_append)
        await manager.start()
        try:
            await store.append(make_event("a"))
            await store.append(make_event("b"))
            await asyncio.sleep(0.05)
            assert store.count == 2
        finally:
            await manager.stop()
