# test_poller_and_connectivity.py
#
# Tests for the pending-count poller, the connectivity monitor and the subscriber list they share.
#
# Imports
import asyncio
from unittest.mock import AsyncMock, MagicMock
#
# Third-party Libraries
import pytest
#
# Local Imports
from incident_sync.DB.Records_DB import StoreBusyError
from incident_sync.Sync.connectivity import ConnectivityMonitor
from incident_sync.Sync.events import CallbackList
from incident_sync.Sync.poller import PendingCountPoller
#
########################################################################################################################
#
# Tests:

class TestPendingCountPoller:
    @pytest.mark.asyncio
    async def test_poll_once_publishes_count(self, store, make_report):
        await store.add("report", make_report())
        await store.add("report", make_report())
        seen = []
        poller = PendingCountPoller(store, interval=0.05, on_count=seen.append)

        assert await poller.poll_once() == 2
        assert seen == [2]
        assert poller.last_count == 2

    @pytest.mark.asyncio
    async def test_busy_store_skips_the_tick(self):
        busy_store = MagicMock()
        busy_store.count_pending = AsyncMock(side_effect=[StoreBusyError("database is locked"), 4])
        seen = []
        poller = PendingCountPoller(busy_store, interval=0.05, on_count=seen.append)

        assert await poller.poll_once() is None
        assert seen == []
        assert await poller.poll_once() == 4
        assert seen == [4]

    @pytest.mark.asyncio
    async def test_background_loop_keeps_polling_after_errors(self):
        flaky_store = MagicMock()
        flaky_store.count_pending = AsyncMock(side_effect=[StoreBusyError("busy"), 1, 1, 1, 1, 1, 1, 1, 1, 1])
        counts = []
        poller = PendingCountPoller(flaky_store, interval=0.01, on_count=counts.append)

        poller.start()
        assert poller.is_running
        for _ in range(100):
            if len(counts) >= 2:
                break
            await asyncio.sleep(0.01)
        await poller.stop()

        assert counts[:2] == [1, 1]
        assert not poller.is_running

    @pytest.mark.asyncio
    async def test_start_twice_runs_one_task(self, store):
        poller = PendingCountPoller(store, interval=10)
        poller.start()
        task = poller._task
        poller.start()
        assert poller._task is task
        await poller.stop()
        # Stopping again is harmless
        await poller.stop()

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_stop_polling(self, store):
        poller = PendingCountPoller(store, interval=0.05)
        good = []
        poller.add_listener(MagicMock(side_effect=RuntimeError("ui gone")))
        poller.add_listener(good.append)
        assert await poller.poll_once() == 0
        assert good == [0]

    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            PendingCountPoller(MagicMock(), interval=0)


class TestConnectivityMonitor:
    def test_notifies_once_per_transition(self):
        monitor = ConnectivityMonitor(initially_online=False)
        changes = []
        monitor.subscribe(changes.append)

        assert monitor.mark_online() is True
        assert monitor.mark_online() is False
        assert monitor.set_online(True) is False
        assert monitor.mark_offline() is True
        assert monitor.mark_offline() is False

        assert changes == [True, False]
        assert monitor.is_online is False

    def test_unsubscribe(self):
        monitor = ConnectivityMonitor()
        changes = []
        unsubscribe = monitor.subscribe(changes.append)
        unsubscribe()
        monitor.mark_online()
        assert changes == []

    @pytest.mark.asyncio
    async def test_async_subscribers_are_scheduled(self):
        monitor = ConnectivityMonitor()
        seen = []

        async def on_change(online):
            seen.append(online)

        monitor.subscribe(on_change)
        monitor.mark_online()
        await monitor._subscribers.drain()
        assert seen == [True]


class TestCallbackList:
    def test_failing_callback_does_not_block_the_rest(self):
        callbacks = CallbackList("test")
        seen = []
        callbacks.add(MagicMock(side_effect=ValueError("boom")))
        callbacks.add(seen.append)
        callbacks.emit("event")
        assert seen == ["event"]
        assert len(callbacks) == 2

    @pytest.mark.asyncio
    async def test_failing_async_callback_is_logged_not_raised(self):
        callbacks = CallbackList("test")

        async def broken(_):
            raise RuntimeError("async boom")

        callbacks.add(broken)
        callbacks.emit(1)
        await callbacks.drain()

    def test_coroutine_outside_loop_is_closed(self):
        callbacks = CallbackList("test")

        async def handler(_):
            return None

        callbacks.add(handler)
        # No running loop here: the coroutine is discarded with a warning instead of leaking
        callbacks.emit(1)

#
# End of test_poller_and_connectivity.py
########################################################################################################################
